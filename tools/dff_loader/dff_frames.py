"""Frame list decoding.

FrameList chunk layout:
- Struct:
  - frame count (uint32)
  - per frame (56 bytes):
    - rotation: 9 floats, rows right/up/at
    - translation: 3 floats
    - parent index (int32, -1 = root)
    - matrix flags (uint32)
- one Extension chunk per frame, holding plugin data such as the node name
"""
import logging
import math
from typing import List

from dff_stream import ChunkStream, skip_chunk
from dff_types import ChunkType, Frame, MalformedFrame

logger = logging.getLogger(__name__)

FRAME_FORMAT = "<9f3fiI"


def read_frame_list(stream: ChunkStream) -> List[Frame]:
    """Decode a FrameList payload into frames in file order."""
    _, struct_data = stream.expect_chunk(ChunkType.STRUCT)
    count = struct_data.read_u32()
    base = struct_data.position
    records = struct_data.read_array(FRAME_FORMAT, count)

    frames = []
    for i, record in enumerate(records):
        offset = base + i * 56
        if not all(math.isfinite(v) for v in record[:12]):
            raise MalformedFrame(f"Frame {i} has non-finite transform", offset)
        rotation = (record[0:3], record[3:6], record[6:9])
        frames.append(Frame(
            rotation=rotation,
            translation=record[9:12],
            parent=record[12],
            flags=record[13],
        ))

    _check_hierarchy(frames, base)

    # Extensions are matched to frames by position
    index = 0
    for ext_header, ext in stream.iter_chunks():
        if ext_header.type != ChunkType.EXTENSION or index >= len(frames):
            skip_chunk(ext_header, ext)
            continue
        _read_frame_extension(frames[index], ext)
        index += 1

    if index < len(frames):
        logger.debug("%d of %d frames have no extension", len(frames) - index, len(frames))
    return frames


def _check_hierarchy(frames: List[Frame], offset: int):
    """Reject parent links that are out of range or form a cycle."""
    count = len(frames)
    for i, frame in enumerate(frames):
        if frame.parent < -1 or frame.parent >= count:
            raise MalformedFrame(
                f"Frame {i} parent {frame.parent} out of range", offset + i * 56
            )

    # 0 = unvisited, 1 = on current path, 2 = known to reach a root
    state = [0] * count
    for i in range(count):
        path = []
        current = i
        while current >= 0 and state[current] == 0:
            state[current] = 1
            path.append(current)
            current = frames[current].parent
        if current >= 0 and state[current] == 1:
            raise MalformedFrame(f"Frame {i} is part of a parent cycle",
                                 offset + current * 56)
        for visited in path:
            state[visited] = 2


def _read_frame_extension(frame: Frame, stream: ChunkStream):
    for header, payload in stream.iter_chunks():
        if header.type == ChunkType.NODE_NAME:
            frame.name = payload.read_string()
        elif header.type == ChunkType.HANIM_PLG:
            # version, node id, bone count (+ bone table on the root)
            _, bone_id, _ = payload.read_struct("<Iii")
            frame.bone_id = bone_id
        else:
            skip_chunk(header, payload)
