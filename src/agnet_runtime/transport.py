"""Framed message transport over an asyncio reader/writer pair (usually stdio pipes)."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

from pydantic import BaseModel

from agnet_runtime.exceptions import AgnetError, ErrorCode, FramingError
from agnet_runtime.framing import FrameDecoder, encode_frame

logger = logging.getLogger(__name__)

DEFAULT_READ_SIZE = 64 * 1024

_END = object()


class StdioTransport:
    """Bidirectional message stream.

    Outbound values are framed and written with `drain()` backpressure. Inbound
    bytes are decoded by a reader task into a queue that callers consume with
    `async for` or `__anext__`. Any read or decode failure closes the transport;
    the cause is kept on `error`.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        *,
        read_size: int = DEFAULT_READ_SIZE,
    ) -> None:
        self._reader = reader
        self._writer = writer
        self._read_size = read_size
        self._decoder = FrameDecoder()
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False
        self.error: BaseException | None = None
        self._reader_task = asyncio.get_running_loop().create_task(self._read_loop())

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, message: BaseModel | Any) -> None:
        if self._closed:
            raise AgnetError(ErrorCode.CONNECTION_CLOSED, "transport is closed")
        if isinstance(message, BaseModel):
            payload = message.model_dump(mode="json", by_alias=True, exclude_none=True)
        else:
            payload = message
        frame = encode_frame(payload)
        try:
            self._writer.write(frame)
            await self._writer.drain()
        except (ConnectionError, OSError) as exc:
            self.error = exc
            self.close()
            raise AgnetError(ErrorCode.CONNECTION_CLOSED, f"write failed: {exc}") from exc

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._reader_task is not asyncio.current_task() and not self._reader_task.done():
            self._reader_task.cancel()
        self._queue.put_nowait(_END)

    async def aclose(self) -> None:
        self.close()
        with contextlib.suppress(asyncio.CancelledError):
            await self._reader_task

    def __aiter__(self) -> "StdioTransport":
        return self

    async def __anext__(self) -> Any:
        item = await self._queue.get()
        if item is _END:
            # Keep the marker so every later pull also ends.
            self._queue.put_nowait(_END)
            raise StopAsyncIteration
        return item

    async def _read_loop(self) -> None:
        try:
            while True:
                chunk = await self._reader.read(self._read_size)
                if not chunk:
                    logger.debug("transport reached end of stream")
                    break
                for value in self._decoder.push(chunk):
                    self._queue.put_nowait(value)
        except FramingError as exc:
            logger.warning("closing transport on framing error: %s", exc.message)
            self.error = exc
        except (ConnectionError, OSError, ValueError) as exc:
            logger.warning("closing transport on read error: %s", exc)
            self.error = exc
        finally:
            self.close()
