"""Loader for RenderWare DFF clump files.

Usage:
    loader = ClumpLoader(texture_lookup=textures.lookup)
    clump = loader.load_file("player.dff")

Clump chunk contents, in the only order accepted:
    Struct -> FrameList -> GeometryList -> Atomic* -> (Struct/Light/Camera/Extension)*
Chunk types missing from ChunkType are skipped wherever they appear.
"""
import logging
from enum import IntEnum
from pathlib import Path
from typing import List, Optional, Union

from dff_atomic import read_atomic
from dff_frames import read_frame_list
from dff_geometry import read_geometry_list
from dff_materials import TextureLookup
from dff_stream import Buffer, ChunkStream, require_version, skip_chunk
from dff_types import (
    Atomic,
    ChunkHeader,
    ChunkType,
    Clump,
    DanglingReference,
    Frame,
    Geometry,
    KNOWN_CHUNK_TYPES,
    OPTIONAL_CLUMP_CHUNKS,
    UnexpectedChunk,
)

logger = logging.getLogger(__name__)

CLUMP_LIGHTS_VERSION = 0x33000


class LoadState(IntEnum):
    """Position in the clump chunk sequence."""
    EXPECT_HEADER = 0
    EXPECT_FRAME_LIST = 1
    EXPECT_GEOMETRY_LIST = 2
    EXPECT_ATOMICS = 3
    EXPECT_EXTENSION = 4
    DONE = 5


class ClumpLoader:
    """Decodes clump files into Clump objects.

    The loader keeps only configuration between calls, so one instance can
    be shared by independent loads.
    """

    def __init__(self, texture_lookup: Optional[TextureLookup] = None,
                 skip_dangling_atomics: bool = False):
        """Initialize loader.

        Args:
            texture_lookup: Callable (name, mask_name) -> handle or None
            skip_dangling_atomics: Drop atomics with out-of-range indices
                instead of failing the whole load
        """
        self.texture_lookup = texture_lookup
        self.skip_dangling_atomics = skip_dangling_atomics

    def set_texture_lookup(self, texture_lookup: Optional[TextureLookup]):
        self.texture_lookup = texture_lookup

    def load_file(self, path: Union[str, Path]) -> Clump:
        """Read a whole file and load the clump in it."""
        return self.load(Path(path).read_bytes())

    def load(self, data: Buffer) -> Clump:
        """Load the first clump in a buffer.

        Args:
            data: Complete file contents

        Returns:
            Clump with every atomic index validated

        Raises:
            ClumpLoadError: Subclass describing the first problem found
        """
        root = ChunkStream(data)
        for header, payload in root.iter_chunks():
            if header.type == ChunkType.CLUMP:
                reader = ClumpReader(self.texture_lookup, self.skip_dangling_atomics)
                return reader.read(payload, header)
            if header.type == ChunkType.UV_ANIM_DICT or header.type not in KNOWN_CHUNK_TYPES:
                skip_chunk(header, payload)
                continue
            raise UnexpectedChunk(f"Expected CLUMP, found {header.name}", header.offset)
        raise UnexpectedChunk("No clump chunk found", root.position)


class ClumpReader:
    """Walks the chunks of a single Clump payload.

    A reader is made for one clump. After read() returns, state is DONE;
    after a failure it stays at the state the bad chunk was met in.
    """

    def __init__(self, texture_lookup: Optional[TextureLookup] = None,
                 skip_dangling_atomics: bool = False):
        self.texture_lookup = texture_lookup
        self.skip_dangling_atomics = skip_dangling_atomics
        self.state = LoadState.EXPECT_HEADER

    def read(self, stream: ChunkStream, clump_header: ChunkHeader) -> Clump:
        """Decode the clump payload in stream.

        Raises:
            UnexpectedChunk: If a required chunk is missing or out of order
        """
        clump = Clump()
        frames: List[Frame] = []
        geometries: List[Geometry] = []
        atomics: List[Atomic] = []
        expected_atomics = 0

        for header, payload in stream.iter_chunks():
            chunk_type = header.type
            if chunk_type not in KNOWN_CHUNK_TYPES:
                skip_chunk(header, payload)
                continue

            if self.state == LoadState.EXPECT_HEADER:
                if chunk_type != ChunkType.STRUCT:
                    raise UnexpectedChunk(
                        f"Expected clump STRUCT, found {header.name}", header.offset
                    )
                require_version(header, "Clump")
                expected_atomics = payload.read_u32()
                if header.version > CLUMP_LIGHTS_VERSION:
                    clump.light_count, clump.camera_count = payload.read_struct("<II")
                self.state = LoadState.EXPECT_FRAME_LIST

            elif chunk_type == ChunkType.FRAME_LIST and self.state == LoadState.EXPECT_FRAME_LIST:
                frames = read_frame_list(payload)
                self.state = LoadState.EXPECT_GEOMETRY_LIST

            elif chunk_type == ChunkType.GEOMETRY_LIST and self.state == LoadState.EXPECT_GEOMETRY_LIST:
                geometries = read_geometry_list(payload, self.texture_lookup)
                self.state = LoadState.EXPECT_ATOMICS

            elif chunk_type == ChunkType.ATOMIC and self.state == LoadState.EXPECT_ATOMICS:
                try:
                    atomics.append(read_atomic(payload, header, frames, geometries))
                except DanglingReference as e:
                    if not self.skip_dangling_atomics:
                        raise
                    logger.warning("Dropping atomic: %s", e)

            elif self.state >= LoadState.EXPECT_ATOMICS and (
                chunk_type in OPTIONAL_CLUMP_CHUNKS or chunk_type == ChunkType.STRUCT
            ):
                # Light records are a Struct (frame index) followed by a Light
                skip_chunk(header, payload)
                self.state = LoadState.EXPECT_EXTENSION

            elif chunk_type in OPTIONAL_CLUMP_CHUNKS:
                skip_chunk(header, payload)

            else:
                raise UnexpectedChunk(
                    f"{header.name} not allowed in state {self.state.name}", header.offset
                )

        if self.state < LoadState.EXPECT_ATOMICS:
            raise UnexpectedChunk(
                f"Clump ended in state {self.state.name}", stream.end
            )

        if len(atomics) != expected_atomics:
            logger.warning("Clump at 0x%X declares %d atomics, loaded %d",
                           clump_header.offset, expected_atomics, len(atomics))

        self.state = LoadState.DONE
        clump.frames = frames
        clump.geometries = geometries
        clump.atomics = atomics
        logger.debug("Clump loaded: %d frames, %d geometries, %d atomics",
                     len(frames), len(geometries), len(atomics))
        return clump


def load_clump(data: Buffer, texture_lookup: Optional[TextureLookup] = None,
               **options) -> Clump:
    """Load a clump from a buffer with a one-off ClumpLoader."""
    return ClumpLoader(texture_lookup=texture_lookup, **options).load(data)
