"""Spawn agent subprocesses and wrap their stdio in a framed transport."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
from collections.abc import Mapping, Sequence
from pathlib import Path

from agnet_runtime.env_protection import assert_command_allowed, sanitize_child_env
from agnet_runtime.exceptions import AgnetError, ErrorCode
from agnet_runtime.transport import DEFAULT_READ_SIZE, StdioTransport

logger = logging.getLogger(__name__)

DEFAULT_KILL_TIMEOUT = 5.0


class LocalAgentConnection:
    """One running agent process and the transport bound to its stdin/stdout."""

    def __init__(
        self,
        process: asyncio.subprocess.Process,
        transport: StdioTransport,
        *,
        kill_timeout: float = DEFAULT_KILL_TIMEOUT,
    ) -> None:
        self.process = process
        self.transport = transport
        self._kill_timeout = kill_timeout
        self._stderr_task: asyncio.Task[None] | None = None
        if process.stderr is not None:
            self._stderr_task = asyncio.get_running_loop().create_task(_drain_stderr(process.pid, process.stderr))
        self._closed = False

    @property
    def pid(self) -> int:
        return self.process.pid

    async def close(self) -> int | None:
        """Close the transport and stop the child; returns its exit code."""
        if self._closed:
            return self.process.returncode
        self._closed = True
        await self.transport.aclose()
        if self.process.stdin is not None and not self.process.stdin.is_closing():
            self.process.stdin.close()

        if self.process.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self.process.terminate()
            try:
                await asyncio.wait_for(self.process.wait(), timeout=self._kill_timeout)
            except asyncio.TimeoutError:
                logger.warning("agent pid=%s ignored terminate; killing", self.process.pid)
                with contextlib.suppress(ProcessLookupError):
                    self.process.kill()
                await self.process.wait()

        if self._stderr_task is not None:
            with contextlib.suppress(asyncio.CancelledError):
                await self._stderr_task
        logger.debug("agent pid=%s exited with %s", self.process.pid, self.process.returncode)
        return self.process.returncode

    async def __aenter__(self) -> "LocalAgentConnection":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.close()


async def _drain_stderr(pid: int, stream: asyncio.StreamReader) -> None:
    while True:
        line = await stream.readline()
        if not line:
            return
        logger.debug("agent[%s] %s", pid, line.decode("utf-8", errors="replace").rstrip())


async def spawn_local_agent(
    command: str,
    args: Sequence[str] = (),
    *,
    cwd: str | Path | None = None,
    env: Mapping[str, str] | None = None,
    kill_timeout: float = DEFAULT_KILL_TIMEOUT,
    read_size: int = DEFAULT_READ_SIZE,
) -> LocalAgentConnection:
    parent_env = dict(os.environ) if env is None else dict(env)
    assert_command_allowed(command, parent_env)
    child_env = dict(sanitize_child_env(parent_env))

    try:
        process = await asyncio.create_subprocess_exec(
            command,
            *args,
            cwd=None if cwd is None else str(cwd),
            env=child_env,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise AgnetError(
            ErrorCode.SPAWN_FAILED,
            f"failed to start agent command '{command}': {exc}",
            details={"command": command, "args": list(args), "cwd": None if cwd is None else str(cwd)},
            suggestion="Check the provider runtime command and working directory.",
        ) from exc

    assert process.stdout is not None and process.stdin is not None
    logger.debug("spawned agent pid=%s command=%s", process.pid, command)
    transport = StdioTransport(process.stdout, process.stdin, read_size=read_size)
    return LocalAgentConnection(process, transport, kill_timeout=kill_timeout)
