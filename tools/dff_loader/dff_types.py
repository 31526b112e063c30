"""Type definitions for RenderWare DFF (clump) model files.

A DFF file is a tree of chunks. Every chunk starts with a 12 byte header:
- type (uint32): chunk type code, see ChunkType
- size (uint32): payload length in bytes, nested chunks included
- library id (uint32): packed RenderWare version stamp

Clump layout:
- Struct: atomic count [, light count, camera count]
- FrameList: Struct (frames) + one Extension per frame
- GeometryList: Struct (count) + Geometry chunks
- Atomic * N
- Light / Camera records, Extension
"""
import math
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any, List, Optional, Tuple


class ChunkType(IntEnum):
    """Chunk type codes this loader knows about."""
    STRUCT = 0x0001
    STRING = 0x0002
    EXTENSION = 0x0003
    CAMERA = 0x0005
    TEXTURE = 0x0006
    MATERIAL = 0x0007
    MATERIAL_LIST = 0x0008
    FRAME_LIST = 0x000E
    GEOMETRY = 0x000F
    CLUMP = 0x0010
    LIGHT = 0x0012
    ATOMIC = 0x0014
    GEOMETRY_LIST = 0x001A
    UV_ANIM_DICT = 0x002B
    HANIM_PLG = 0x011E
    BIN_MESH_PLG = 0x050E
    NODE_NAME = 0x0253F2FE


KNOWN_CHUNK_TYPES = frozenset(ChunkType)

# Chunk kinds that may appear anywhere in a clump after its header
OPTIONAL_CLUMP_CHUNKS = frozenset({
    ChunkType.EXTENSION,
    ChunkType.LIGHT,
    ChunkType.CAMERA,
})

# Versions whose struct layouts this loader understands
MIN_VERSION = 0x30000
MAX_VERSION = 0x3FFFF


class GeometryFlags(IntEnum):
    """rpGEOMETRY* flag bits (low 16 bits of the geometry flags)."""
    TRISTRIP = 0x01
    POSITIONS = 0x02
    TEXTURED = 0x04
    PRELIT = 0x08
    NORMALS = 0x10
    LIGHT = 0x20
    MODULATE_MATERIAL_COLOR = 0x40
    TEXTURED2 = 0x80


GEOMETRY_NATIVE = 0x01000000


def chunk_name(chunk_type: int) -> str:
    """Readable name for a chunk type code."""
    try:
        return ChunkType(chunk_type).name
    except ValueError:
        return f"0x{chunk_type:08X}"


def unpack_version(library_id: int) -> int:
    """Decode a library id stamp into a version like 0x36003."""
    if library_id & 0xFFFF0000:
        return (((library_id >> 14) & 0x3FF00) + 0x30000) | ((library_id >> 16) & 0x3F)
    return library_id << 8


def pack_version(version: int, build: int = 0xFFFF) -> int:
    """Encode a version like 0x36003 into a library id stamp."""
    v = version - 0x30000
    return ((v & 0x3FF00) << 14) | ((v & 0x3F) << 16) | (build & 0xFFFF)


class ClumpLoadError(ValueError):
    """Base class for clump load failures.

    Attributes:
        offset: Absolute byte offset of the offending data
    """

    def __init__(self, message: str, offset: int = 0):
        super().__init__(f"{message} (at offset 0x{offset:X})")
        self.offset = offset


class TruncatedStream(ClumpLoadError):
    """Declared chunk size exceeds the remaining buffer."""


class MalformedFrame(ClumpLoadError):
    """Non-finite transform data or a broken parent link."""


class DanglingReference(ClumpLoadError):
    """An index points outside the list it refers to."""


class UnexpectedChunk(ClumpLoadError):
    """A required chunk sequence was violated."""


class UnsupportedVersion(ClumpLoadError):
    """A chunk version outside the range this loader can decode."""


@dataclass
class ChunkHeader:
    """Chunk header. Only exists while reading."""
    type: int
    size: int
    library_id: int
    offset: int = 0

    @property
    def version(self) -> int:
        return unpack_version(self.library_id)

    @property
    def name(self) -> str:
        return chunk_name(self.type)


Vector3 = Tuple[float, float, float]
Matrix3 = Tuple[Vector3, Vector3, Vector3]


@dataclass
class Frame:
    """One node of the transform hierarchy."""
    rotation: Matrix3
    translation: Vector3
    parent: int = -1  # -1 for root frames
    flags: int = 0
    name: str = ""
    bone_id: Optional[int] = None

    @property
    def is_root(self) -> bool:
        return self.parent < 0

    def local_matrix(self) -> List[List[float]]:
        """4x4 row-major local transform, translation in the last row."""
        rows = [list(row) + [0.0] for row in self.rotation]
        rows.append(list(self.translation) + [1.0])
        return rows


@dataclass
class TextureReference:
    """Texture lookup key plus the handle the lookup resolved it to."""
    name: str
    mask_name: str = ""
    handle: Any = None
    filter_mode: int = 0
    address_u: int = 0
    address_v: int = 0
    has_mipmaps: bool = False

    @property
    def is_resolved(self) -> bool:
        return self.handle is not None


@dataclass
class Material:
    """Surface description of one material."""
    color: Tuple[int, int, int, int] = (255, 255, 255, 255)
    ambient: float = 1.0
    specular: float = 1.0
    diffuse: float = 1.0
    texture: Optional[TextureReference] = None
    flags: int = 0


@dataclass
class MeshSplit:
    """Run of vertex indices drawn with one material."""
    material_index: int
    indices: List[int] = field(default_factory=list)


@dataclass
class BinMesh:
    """BinMesh extension: triangles grouped by material."""
    is_tristrip: bool = False
    splits: List[MeshSplit] = field(default_factory=list)
    total_indices: int = 0


@dataclass
class MorphTarget:
    """Additional vertex set of a geometry."""
    bounding_sphere: Tuple[float, float, float, float]
    vertices: List[Vector3] = field(default_factory=list)
    normals: List[Vector3] = field(default_factory=list)


@dataclass
class Geometry:
    """One mesh with its materials."""
    flags: int = 0
    vertices: List[Vector3] = field(default_factory=list)
    normals: List[Vector3] = field(default_factory=list)
    colors: List[Tuple[int, int, int, int]] = field(default_factory=list)
    uv_sets: List[List[Tuple[float, float]]] = field(default_factory=list)
    triangles: List[Tuple[int, int, int, int]] = field(default_factory=list)
    materials: List[Material] = field(default_factory=list)
    bin_mesh: Optional[BinMesh] = None
    bounding_sphere: Tuple[float, float, float, float] = (0.0, 0.0, 0.0, 0.0)
    ambient: float = 1.0
    specular: float = 1.0
    diffuse: float = 1.0
    morph_targets: List[MorphTarget] = field(default_factory=list)

    @property
    def vertex_count(self) -> int:
        return len(self.vertices)

    @property
    def triangle_count(self) -> int:
        return len(self.triangles)

    @property
    def is_empty(self) -> bool:
        return not self.vertices and not self.triangles

    @property
    def has_normals(self) -> bool:
        return bool(self.normals)

    @property
    def has_colors(self) -> bool:
        return bool(self.colors)

    @property
    def is_tristrip(self) -> bool:
        return bool(self.flags & GeometryFlags.TRISTRIP)

    @property
    def is_native(self) -> bool:
        return bool(self.flags & GEOMETRY_NATIVE)


@dataclass
class Atomic:
    """Binding of one frame to one geometry, by index."""
    frame: int
    geometry: int
    flags: int = 0


@dataclass
class Clump:
    """Parsed clump: frames, geometries and the atomics binding them."""
    frames: List[Frame] = field(default_factory=list)
    geometries: List[Geometry] = field(default_factory=list)
    atomics: List[Atomic] = field(default_factory=list)
    light_count: int = 0
    camera_count: int = 0

    def get_atomic_frame(self, atomic: Atomic) -> Frame:
        return self.frames[atomic.frame]

    def get_atomic_geometry(self, atomic: Atomic) -> Geometry:
        return self.geometries[atomic.geometry]

    def get_single_mesh(self) -> Optional[Geometry]:
        """Geometry of the first atomic, for single-mesh objects."""
        if not self.atomics:
            return None
        return self.get_atomic_geometry(self.atomics[0])

    @property
    def root_frames(self) -> List[int]:
        return [i for i, f in enumerate(self.frames) if f.is_root]

    def get_children(self, index: int) -> List[int]:
        """Indices of the direct children of a frame."""
        return [i for i, f in enumerate(self.frames) if f.parent == index]

    def find_frame(self, name: str) -> Optional[int]:
        """Index of the first frame with this name (case-insensitive)."""
        lowered = name.lower()
        for i, frame in enumerate(self.frames):
            if frame.name.lower() == lowered:
                return i
        return None

    def get_hierarchy_depth(self, index: int) -> int:
        """Depth of a frame in the hierarchy (0 for roots)."""
        depth = 0
        current = self.frames[index]
        while not current.is_root:
            depth += 1
            current = self.frames[current.parent]
        return depth

    def get_world_matrix(self, index: int) -> List[List[float]]:
        """4x4 row-major world transform of a frame."""
        matrix = self.frames[index].local_matrix()
        parent = self.frames[index].parent
        while parent >= 0:
            matrix = _multiply(matrix, self.frames[parent].local_matrix())
            parent = self.frames[parent].parent
        return matrix


def _multiply(a: List[List[float]], b: List[List[float]]) -> List[List[float]]:
    return [
        [math.fsum(a[r][k] * b[k][c] for k in range(4)) for c in range(4)]
        for r in range(4)
    ]
