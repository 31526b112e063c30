"""Geometry list and geometry decoding.

Geometry chunk layout:
- Struct:
  - flags (uint32): low 16 bits rpGEOMETRY flags,
    bits 16-23 UV set count, bit 24 native
  - triangle count, vertex count, morph target count (int32 each)
  - ambient, specular, diffuse (3 floats, version < 0x34000 only)
  - non-native geometry only:
    - prelit colors: vertex count * RGBA uint8 (PRELIT)
    - UV sets: vertex count * 2 floats each
    - triangles: uint16 b, a, material, c
  - per morph target:
    - bounding sphere (4 floats), has vertices, has normals (uint32)
    - positions / normals: vertex count * 3 floats
- MaterialList
- Extension: BinMesh and other plugins

BinMesh (0x050E):
- flags (uint32, 1 = tristrip), split count, total index count
- per split: index count, material index (uint32), indices (uint32)
  (indices are absent for native geometry)
"""
import logging
from typing import List, Optional

from dff_materials import TextureLookup, read_material_list
from dff_stream import ChunkStream, require_version, skip_chunk
from dff_types import (
    BinMesh,
    ChunkHeader,
    ChunkType,
    DanglingReference,
    GEOMETRY_NATIVE,
    Geometry,
    GeometryFlags,
    MeshSplit,
    MorphTarget,
    UnexpectedChunk,
)

logger = logging.getLogger(__name__)

GEOMETRY_SURFACE_VERSION = 0x34000


def read_geometry_list(stream: ChunkStream,
                       texture_lookup: Optional[TextureLookup] = None) -> List[Geometry]:
    """Decode a GeometryList payload into geometries in file order."""
    _, struct_data = stream.expect_chunk(ChunkType.STRUCT)
    count = struct_data.read_u32()

    geometries = []
    for header, payload in stream.iter_chunks():
        if header.type == ChunkType.GEOMETRY and len(geometries) < count:
            geometries.append(read_geometry(payload, header, texture_lookup))
        else:
            skip_chunk(header, payload)

    if len(geometries) < count:
        raise UnexpectedChunk(
            f"Geometry list expects {count} geometries, found {len(geometries)}",
            stream.end,
        )
    return geometries


def _uv_set_count(flags: int) -> int:
    count = (flags >> 16) & 0xFF
    if count:
        return count
    if flags & GeometryFlags.TEXTURED2:
        return 2
    if flags & GeometryFlags.TEXTURED:
        return 1
    return 0


def read_geometry(stream: ChunkStream, header: ChunkHeader,
                  texture_lookup: Optional[TextureLookup] = None) -> Geometry:
    """Decode one Geometry payload.

    Args:
        stream: Geometry payload
        header: Header of the Geometry chunk, for diagnostics
        texture_lookup: Resolver for material textures

    Returns:
        Geometry with vertex data, materials and BinMesh if present

    Raises:
        DanglingReference: If a triangle or BinMesh split indexes outside
            the vertex or material lists
    """
    struct_header, data = stream.expect_chunk(ChunkType.STRUCT)
    require_version(struct_header, "Geometry")

    flags, num_tris, num_verts, num_morphs = data.read_struct("<Iiii")
    if min(num_tris, num_verts, num_morphs) < 0:
        raise UnexpectedChunk(
            f"Negative count in geometry ({num_tris}, {num_verts}, {num_morphs})",
            struct_header.offset,
        )

    geometry = Geometry(flags=flags)
    if struct_header.version < GEOMETRY_SURFACE_VERSION:
        geometry.ambient, geometry.specular, geometry.diffuse = data.read_floats(3)

    triangles_offset = data.position
    if not flags & GEOMETRY_NATIVE:
        if flags & GeometryFlags.PRELIT:
            geometry.colors = data.read_array("<4B", num_verts)
        for _ in range(_uv_set_count(flags)):
            geometry.uv_sets.append(data.read_array("<2f", num_verts))
        triangles_offset = data.position
        geometry.triangles = [
            (a, b, c, material)
            for b, a, material, c in data.read_array("<4H", num_tris)
        ]

    for i in range(num_morphs):
        target = _read_morph_target(data, num_verts)
        if i == 0:
            geometry.bounding_sphere = target.bounding_sphere
            geometry.vertices = target.vertices
            geometry.normals = target.normals
        else:
            geometry.morph_targets.append(target)

    _, material_list = stream.expect_chunk(ChunkType.MATERIAL_LIST)
    geometry.materials = read_material_list(material_list, texture_lookup)

    for ext_header, ext in stream.iter_chunks():
        if ext_header.type == ChunkType.EXTENSION:
            _read_geometry_extension(geometry, ext)
        else:
            skip_chunk(ext_header, ext)

    _check_triangles(geometry, triangles_offset)
    logger.debug("Geometry at 0x%X: %d vertices, %d triangles, %d materials",
                 header.offset, num_verts, num_tris, len(geometry.materials))
    return geometry


def _read_morph_target(data: ChunkStream, num_verts: int) -> MorphTarget:
    sphere = data.read_floats(4)
    has_vertices, has_normals = data.read_struct("<II")
    target = MorphTarget(bounding_sphere=sphere)
    if has_vertices:
        target.vertices = data.read_array("<3f", num_verts)
    if has_normals:
        target.normals = data.read_array("<3f", num_verts)
    return target


def _read_geometry_extension(geometry: Geometry, stream: ChunkStream):
    for header, payload in stream.iter_chunks():
        if header.type == ChunkType.BIN_MESH_PLG:
            geometry.bin_mesh = read_bin_mesh(payload, header, geometry)
        else:
            skip_chunk(header, payload)


def read_bin_mesh(stream: ChunkStream, header: ChunkHeader,
                  geometry: Geometry) -> BinMesh:
    """Decode a BinMesh plugin payload for geometry."""
    flags, num_splits, total = stream.read_struct("<III")
    bin_mesh = BinMesh(is_tristrip=bool(flags & 1), total_indices=total)

    num_materials = len(geometry.materials)
    num_verts = len(geometry.vertices)
    for _ in range(num_splits):
        split_offset = stream.position
        count, material_index = stream.read_struct("<II")
        if material_index >= num_materials:
            raise DanglingReference(
                f"BinMesh split uses material {material_index} of {num_materials}",
                split_offset,
            )
        split = MeshSplit(material_index=material_index)
        if not geometry.is_native:
            split.indices = [i[0] for i in stream.read_array("<I", count)]
            if split.indices and max(split.indices) >= num_verts:
                raise DanglingReference(
                    f"BinMesh split indexes vertex {max(split.indices)} of {num_verts}",
                    split_offset,
                )
        bin_mesh.splits.append(split)

    logger.debug("BinMesh at 0x%X: %d splits, %d indices",
                 header.offset, num_splits, total)
    return bin_mesh


def _check_triangles(geometry: Geometry, offset: int):
    num_verts = len(geometry.vertices)
    num_materials = len(geometry.materials)
    for i, (a, b, c, material) in enumerate(geometry.triangles):
        if max(a, b, c) >= num_verts:
            raise DanglingReference(
                f"Triangle {i} indexes vertex {max(a, b, c)} of {num_verts}",
                offset + i * 8,
            )
        if material >= num_materials:
            raise DanglingReference(
                f"Triangle {i} uses material {material} of {num_materials}",
                offset + i * 8,
            )
