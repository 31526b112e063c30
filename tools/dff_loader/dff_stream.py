"""Bounded cursor over a chunked RenderWare byte buffer."""
import logging
import struct
from typing import Iterator, List, Optional, Tuple, Union

from dff_types import (
    ChunkHeader,
    KNOWN_CHUNK_TYPES,
    MAX_VERSION,
    MIN_VERSION,
    TruncatedStream,
    UnexpectedChunk,
    UnsupportedVersion,
    chunk_name,
)

logger = logging.getLogger(__name__)

HEADER_SIZE = 12

Buffer = Union[bytes, bytearray, memoryview]


class ChunkStream:
    """Read-only view over [start, end) of a buffer.

    Offsets reported in errors and headers are absolute positions in the
    underlying buffer, so nested views still point at the right byte.
    """

    def __init__(self, data: Buffer, start: int = 0, end: Optional[int] = None):
        self._data = data if isinstance(data, memoryview) else memoryview(data)
        self.start = start
        self.end = len(self._data) if end is None else end
        self.position = start

    @property
    def remaining(self) -> int:
        return self.end - self.position

    def at_end(self) -> bool:
        return self.position >= self.end

    def _take(self, size: int) -> memoryview:
        if size < 0 or size > self.remaining:
            raise TruncatedStream(
                f"Need {size} bytes, only {self.remaining} left",
                self.position,
            )
        view = self._data[self.position:self.position + size]
        self.position += size
        return view

    def read_bytes(self, size: int) -> bytes:
        return self._take(size).tobytes()

    def read_struct(self, fmt: str) -> Tuple:
        """Unpack a little-endian struct format from the cursor."""
        return struct.unpack(fmt, self._take(struct.calcsize(fmt)))

    def read_u32(self) -> int:
        return self.read_struct("<I")[0]

    def read_floats(self, count: int) -> Tuple[float, ...]:
        return self.read_struct(f"<{count}f")

    def read_array(self, fmt: str, count: int) -> List[Tuple]:
        """Read count consecutive records of one struct format."""
        record = struct.Struct(fmt)
        data = self._take(record.size * count)
        return list(record.iter_unpack(data)) if count else []

    def read_string(self, size: Optional[int] = None) -> str:
        """Read a NUL-padded ASCII string (the rest of the view by default)."""
        raw = self.read_bytes(self.remaining if size is None else size)
        n = raw.find(b"\x00")
        if n != -1:
            raw = raw[:n]
        return raw.decode("ascii", errors="replace")

    def skip(self, size: int):
        self._take(size)

    def read_header(self) -> ChunkHeader:
        """Read a chunk header and check its payload fits in this view."""
        offset = self.position
        chunk_type, size, library_id = self.read_struct("<III")
        if size > self.remaining:
            raise TruncatedStream(
                f"Chunk 0x{chunk_type:X} declares {size} bytes, "
                f"only {self.remaining} left",
                offset,
            )
        return ChunkHeader(type=chunk_type, size=size,
                           library_id=library_id, offset=offset)

    def child_stream(self, size: int) -> "ChunkStream":
        """Bounded view over the next size bytes; the cursor moves past it."""
        if size < 0 or size > self.remaining:
            raise TruncatedStream(
                f"Child stream of {size} bytes exceeds {self.remaining} left",
                self.position,
            )
        child = ChunkStream(self._data, self.position, self.position + size)
        self.position += size
        return child

    def read_chunk(self) -> Tuple[ChunkHeader, "ChunkStream"]:
        header = self.read_header()
        return header, self.child_stream(header.size)

    def iter_chunks(self) -> Iterator[Tuple[ChunkHeader, "ChunkStream"]]:
        """Yield (header, payload) for each chunk left in this view."""
        while not self.at_end():
            yield self.read_chunk()

    def expect_chunk(self, chunk_type: int) -> Tuple[ChunkHeader, "ChunkStream"]:
        """Read the next known chunk, which must be of chunk_type.

        Chunks with unknown type codes in front of it are skipped.
        """
        while True:
            offset = self.position
            if self.at_end():
                raise UnexpectedChunk(
                    f"Expected {chunk_name(chunk_type)}, reached end of chunk", offset
                )
            header, payload = self.read_chunk()
            if header.type in KNOWN_CHUNK_TYPES:
                break
            skip_chunk(header, payload)
        if header.type != chunk_type:
            raise UnexpectedChunk(
                f"Expected {chunk_name(chunk_type)}, found {header.name}", offset
            )
        return header, payload


def skip_chunk(header: ChunkHeader, payload: ChunkStream):
    """Discard a chunk this reader does not interpret."""
    logger.debug("Skipping %s (%d bytes) at 0x%X",
                 header.name, header.size, header.offset)
    payload.position = payload.end


def require_version(header: ChunkHeader, kind: str):
    """Reject struct versions whose layout cannot be decoded."""
    version = header.version
    if not MIN_VERSION <= version <= MAX_VERSION:
        raise UnsupportedVersion(
            f"{kind} version 0x{version:X} outside "
            f"0x{MIN_VERSION:X}..0x{MAX_VERSION:X}",
            header.offset,
        )
