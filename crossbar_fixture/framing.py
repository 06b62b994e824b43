"""2-byte big-endian length-prefixed message framing.

Used when the managed process writes control frames on stdout instead of
plain log lines.
"""

import struct

HEADER = struct.Struct('>H')
MAX_PAYLOAD = 0xFFFF


def encode_frame(payload: bytes) -> bytes:
    if len(payload) > MAX_PAYLOAD:
        raise ValueError(f'frame payload too large: {len(payload)} > {MAX_PAYLOAD}')
    return HEADER.pack(len(payload)) + payload


def _read_exact(stream, size):
    data = b''
    while len(data) < size:
        chunk = stream.read(size - len(data))
        if not chunk:
            break
        data += chunk
    return data


def read_frame(stream) -> bytes | None:
    """Read one frame, None on a clean end of stream."""
    header = _read_exact(stream, HEADER.size)
    if not header:
        return None
    if len(header) < HEADER.size:
        raise EOFError('stream ended inside frame header')
    (size,) = HEADER.unpack(header)
    payload = _read_exact(stream, size)
    if len(payload) < size:
        raise EOFError(f'stream ended inside frame: got {len(payload)} of {size} bytes')
    return payload


def iter_frames(stream):
    while True:
        frame = read_frame(stream)
        if frame is None:
            return
        yield frame
