"""Atomic decoding.

Atomic chunk layout:
- Struct: frame index, geometry index, flags, unused (uint32 each)
- Extension (render pipeline, material effects, ...)
"""
from typing import List

from dff_stream import ChunkStream, skip_chunk
from dff_types import (
    Atomic,
    ChunkHeader,
    ChunkType,
    DanglingReference,
    Frame,
    Geometry,
)


def read_atomic(stream: ChunkStream, header: ChunkHeader,
                frames: List[Frame], geometries: List[Geometry]) -> Atomic:
    """Decode an Atomic payload and check it against the built lists.

    Raises:
        DanglingReference: If the frame or geometry index is out of range
    """
    _, struct_data = stream.expect_chunk(ChunkType.STRUCT)
    frame, geometry, flags, _ = struct_data.read_struct("<IIII")

    if frame >= len(frames):
        raise DanglingReference(
            f"Atomic frame {frame} out of range ({len(frames)} frames)",
            header.offset,
        )
    if geometry >= len(geometries):
        raise DanglingReference(
            f"Atomic geometry {geometry} out of range ({len(geometries)} geometries)",
            header.offset,
        )

    for child_header, child in stream.iter_chunks():
        skip_chunk(child_header, child)

    return Atomic(frame=frame, geometry=geometry, flags=flags)
