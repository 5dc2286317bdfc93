"""Length-prefixed JSON frames: 4-byte big-endian length, then UTF-8 JSON."""

from __future__ import annotations

import json
import struct
from typing import Any

from agnet_runtime.exceptions import FramingError

MAX_FRAME_BYTES = 100 * 1024 * 1024
HEADER_SIZE = 4

_HEADER = struct.Struct("!I")


def encode_frame(value: Any) -> bytes:
    try:
        text = json.dumps(value, ensure_ascii=False, separators=(",", ":"))
    except (TypeError, ValueError) as exc:
        raise FramingError(f"value is not JSON serializable: {exc}") from exc
    payload = text.encode("utf-8")
    return _HEADER.pack(len(payload)) + payload


class FrameDecoder:
    """Incremental decoder; feed arbitrary chunks, get back every complete value.

    Any error raised by `push` is fatal: a corrupt length prefix leaves no way to
    find the next frame boundary, so the owning stream must be closed.
    """

    def __init__(self, max_frame_bytes: int = MAX_FRAME_BYTES) -> None:
        self._max_frame_bytes = max_frame_bytes
        self._buffer = bytearray()
        self._offset = 0

    @property
    def buffered(self) -> int:
        return len(self._buffer) - self._offset

    def push(self, chunk: bytes) -> list[Any]:
        if not chunk:
            return []

        if self._offset:
            del self._buffer[: self._offset]
            self._offset = 0
        self._buffer.extend(chunk)

        values: list[Any] = []
        while self.buffered >= HEADER_SIZE:
            (length,) = _HEADER.unpack_from(self._buffer, self._offset)
            if length > self._max_frame_bytes:
                raise FramingError(
                    f"frame of {length} bytes exceeds limit of {self._max_frame_bytes}",
                    details={"length": length, "limit": self._max_frame_bytes},
                )
            if self.buffered < HEADER_SIZE + length:
                break

            start = self._offset + HEADER_SIZE
            end = start + length
            text = bytes(self._buffer[start:end]).decode("utf-8", errors="replace")
            self._offset = end
            try:
                values.append(json.loads(text))
            except json.JSONDecodeError as exc:
                raise FramingError(f"frame payload is not valid JSON: {exc.msg}", details={"length": length}) from exc

        if self._offset == len(self._buffer):
            self._buffer = bytearray()
            self._offset = 0
        return values
