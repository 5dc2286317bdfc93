"""Agent runtime: frame codec, stdio transport, session protocol and local spawning."""

from agnet_runtime.exceptions import AgnetError, ErrorCode, FramingError
from agnet_runtime.framing import MAX_FRAME_BYTES, FrameDecoder, encode_frame
from agnet_runtime.transport import StdioTransport

__all__ = [
    "AgnetError",
    "ErrorCode",
    "FrameDecoder",
    "FramingError",
    "MAX_FRAME_BYTES",
    "StdioTransport",
    "encode_frame",
]
