"""Material list, material and texture decoding.

MaterialList chunk:
- Struct: count (uint32), then count int32 entries
  (-1 = material chunk follows, n >= 0 = reuse material n of this list)
- Material chunks

Material chunk:
- Struct: flags (int32), RGBA color (4 uint8), unused (int32),
  textured (int32), ambient/specular/diffuse floats (version > 0x30400)
- Texture chunk if textured
- Extension

Texture chunk:
- Struct: filter mode (uint8), addressing (uint8, U low nibble, V high),
  flags (uint16, bit 0 = mipmaps)
- String: texture name
- String: mask name
- Extension
"""
import logging
from typing import Any, Callable, List, Optional

from dff_stream import ChunkStream, require_version, skip_chunk
from dff_types import (
    ChunkType,
    DanglingReference,
    Material,
    TextureReference,
    UnexpectedChunk,
)

logger = logging.getLogger(__name__)

# (texture name, mask name) -> caller-owned handle or None
TextureLookup = Callable[[str, str], Optional[Any]]

MATERIAL_SURFACE_VERSION = 0x30400


def read_material_list(stream: ChunkStream,
                       texture_lookup: Optional[TextureLookup] = None) -> List[Material]:
    """Decode a MaterialList payload.

    Args:
        stream: MaterialList payload
        texture_lookup: Resolver for texture references, may be None

    Returns:
        Materials in list order. Reused entries share the earlier Material.
    """
    _, struct_data = stream.expect_chunk(ChunkType.STRUCT)
    count = struct_data.read_u32()
    entries_offset = struct_data.position
    entries = [e[0] for e in struct_data.read_array("<i", count)]
    wanted = sum(1 for e in entries if e < 0)

    parsed: List[Material] = []
    for header, payload in stream.iter_chunks():
        if header.type == ChunkType.MATERIAL and len(parsed) < wanted:
            parsed.append(read_material(payload, texture_lookup))
        else:
            skip_chunk(header, payload)

    if len(parsed) < wanted:
        raise UnexpectedChunk(
            f"Material list expects {wanted} materials, found {len(parsed)}",
            stream.end,
        )

    materials: List[Material] = []
    fresh = iter(parsed)
    for i, entry in enumerate(entries):
        if entry < 0:
            materials.append(next(fresh))
        elif entry < len(materials):
            materials.append(materials[entry])
        else:
            raise DanglingReference(
                f"Material {i} reuses material {entry} of {len(materials)}",
                entries_offset + i * 4,
            )
    return materials


def read_material(stream: ChunkStream,
                  texture_lookup: Optional[TextureLookup] = None) -> Material:
    """Decode one Material payload."""
    struct_header, struct_data = stream.expect_chunk(ChunkType.STRUCT)
    require_version(struct_header, "Material")

    flags, r, g, b, a, _, textured = struct_data.read_struct("<i4Bii")
    material = Material(color=(r, g, b, a), flags=flags)
    if struct_header.version > MATERIAL_SURFACE_VERSION:
        material.ambient, material.specular, material.diffuse = struct_data.read_floats(3)

    for child_header, child in stream.iter_chunks():
        if child_header.type == ChunkType.TEXTURE and textured and material.texture is None:
            material.texture = read_texture(child, texture_lookup)
        else:
            skip_chunk(child_header, child)

    return material


def read_texture(stream: ChunkStream,
                 texture_lookup: Optional[TextureLookup] = None) -> TextureReference:
    """Decode a Texture payload and resolve it through texture_lookup."""
    _, struct_data = stream.expect_chunk(ChunkType.STRUCT)
    filter_mode, addressing, tex_flags = struct_data.read_struct("<BBH")

    _, name_data = stream.expect_chunk(ChunkType.STRING)
    name = name_data.read_string().lower()
    _, mask_data = stream.expect_chunk(ChunkType.STRING)
    mask_name = mask_data.read_string().lower()

    handle = None
    if texture_lookup is not None:
        handle = texture_lookup(name, mask_name)
    if handle is None:
        logger.debug("Texture %r (mask %r) unresolved", name, mask_name)

    return TextureReference(
        name=name,
        mask_name=mask_name,
        handle=handle,
        filter_mode=filter_mode,
        address_u=addressing & 0x0F,
        address_v=(addressing >> 4) & 0x0F,
        has_mipmaps=bool(tex_flags & 0x1),
    )
