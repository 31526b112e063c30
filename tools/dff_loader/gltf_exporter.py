"""glTF exporter for loaded DFF clumps."""
import struct
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from pygltflib import (
    GLTF2,
    Accessor,
    Asset,
    Buffer,
    BufferView,
    Image,
    Material as GLTFMaterial,
    Mesh,
    Node,
    PbrMetallicRoughness,
    Primitive,
    Sampler,
    Scene,
    Texture,
    TextureInfo,
)

from dff_loader import ClumpLoader
from dff_materials import TextureLookup
from dff_types import Clump, Geometry, Material

ARRAY_BUFFER = 34962
ELEMENT_ARRAY_BUFFER = 34963
FLOAT = 5126
UNSIGNED_BYTE = 5121
UNSIGNED_INT = 5125
TRIANGLES = 4


def strip_to_triangles(indices: List[int]) -> List[int]:
    """Convert a triangle strip into a triangle list, dropping degenerates."""
    triangles = []
    for i in range(len(indices) - 2):
        a, b, c = indices[i], indices[i + 1], indices[i + 2]
        if a == b or b == c or a == c:
            continue
        if i % 2:
            triangles.extend((b, a, c))
        else:
            triangles.extend((a, b, c))
    return triangles


def geometry_batches(geometry: Geometry) -> List[Tuple[int, List[int]]]:
    """Triangle-list index batches per material index.

    Uses the BinMesh splits when present, otherwise groups the triangle
    list by material.
    """
    if geometry.bin_mesh is not None and not geometry.is_native:
        batches = []
        for split in geometry.bin_mesh.splits:
            if geometry.bin_mesh.is_tristrip:
                indices = strip_to_triangles(split.indices)
            else:
                indices = list(split.indices)
            if indices:
                batches.append((split.material_index, indices))
        return batches

    grouped: Dict[int, List[int]] = {}
    for a, b, c, material in geometry.triangles:
        grouped.setdefault(material, []).extend((a, b, c))
    return sorted(grouped.items())


class GLTFExporter:
    """Exports a clump to glTF/GLB format."""

    def __init__(self, source: Union[Clump, str, Path],
                 texture_lookup: Optional[TextureLookup] = None):
        """Initialize exporter with a Clump or a DFF file path.

        Args:
            source: Loaded Clump or path to a DFF file
            texture_lookup: Used when loading from a path
        """
        self.source = source
        self.texture_lookup = texture_lookup
        self._clump: Optional[Clump] = None

    def _get_clump(self) -> Clump:
        if self._clump is None:
            if isinstance(self.source, Clump):
                self._clump = self.source
            else:
                loader = ClumpLoader(texture_lookup=self.texture_lookup)
                self._clump = loader.load_file(self.source)
        return self._clump

    def _compute_bounds(self, vertices) -> Tuple[List[float], List[float]]:
        """Compute min/max bounds for vertices."""
        if not vertices:
            return [0, 0, 0], [0, 0, 0]
        min_bounds = [min(v[i] for v in vertices) for i in range(3)]
        max_bounds = [max(v[i] for v in vertices) for i in range(3)]
        return min_bounds, max_bounds

    def export(self, output_path: str):
        """Export the clump to a GLB file.

        Args:
            output_path: Path for output .glb file

        Raises:
            ValueError: If the clump has no atomics
        """
        clump = self._get_clump()
        if not clump.atomics:
            raise ValueError("No atomics found in clump")

        self._gltf = GLTF2()
        self._gltf.asset = Asset(version="2.0", generator="DFF Loader")
        self._buffer = bytearray()
        self._images: Dict[str, int] = {}

        mesh_for_geometry = [self._add_geometry(g) for g in clump.geometries]

        nodes = []
        for i, frame in enumerate(clump.frames):
            matrix = [v for row in frame.local_matrix() for v in row]
            nodes.append(Node(
                name=frame.name or f"frame_{i}",
                matrix=matrix,
                children=clump.get_children(i),
            ))

        for i, atomic in enumerate(clump.atomics):
            node_index = len(nodes)
            nodes.append(Node(
                name=f"atomic_{i}",
                mesh=mesh_for_geometry[atomic.geometry],
            ))
            nodes[atomic.frame].children.append(node_index)

        for node in nodes:
            if not node.children:
                node.children = None

        self._gltf.nodes = nodes
        self._gltf.scenes = [Scene(nodes=clump.root_frames)]
        self._gltf.scene = 0
        self._gltf.buffers = [Buffer(byteLength=len(self._buffer))]
        self._gltf.set_binary_blob(bytes(self._buffer))
        self._gltf.save(output_path)

    def _add_view(self, data: bytes, target: Optional[int] = None) -> int:
        """Append data to the buffer, returning its buffer view index."""
        offset = len(self._buffer)
        self._buffer.extend(data)
        if len(self._buffer) % 4 != 0:
            self._buffer.extend(b"\x00" * (4 - len(self._buffer) % 4))
        self._gltf.bufferViews.append(
            BufferView(buffer=0, byteOffset=offset, byteLength=len(data), target=target)
        )
        return len(self._gltf.bufferViews) - 1

    def _add_accessor(self, data: bytes, component_type: int, count: int,
                      accessor_type: str, target: Optional[int] = ARRAY_BUFFER,
                      **kwargs) -> int:
        view = self._add_view(data, target)
        self._gltf.accessors.append(Accessor(
            bufferView=view,
            componentType=component_type,
            count=count,
            type=accessor_type,
            **kwargs,
        ))
        return len(self._gltf.accessors) - 1

    def _add_geometry(self, geometry: Geometry) -> Optional[int]:
        """Add a mesh for geometry, or return None if it has nothing to draw."""
        batches = geometry_batches(geometry)
        if not geometry.vertices or not batches:
            return None

        vertices = geometry.vertices
        min_bounds, max_bounds = self._compute_bounds(vertices)
        attributes = {
            "POSITION": self._add_accessor(
                b"".join(struct.pack("<3f", *v) for v in vertices),
                FLOAT, len(vertices), "VEC3", min=min_bounds, max=max_bounds,
            )
        }
        if geometry.normals:
            attributes["NORMAL"] = self._add_accessor(
                b"".join(struct.pack("<3f", *n) for n in geometry.normals),
                FLOAT, len(geometry.normals), "VEC3",
            )
        if geometry.uv_sets:
            uvs = geometry.uv_sets[0]
            attributes["TEXCOORD_0"] = self._add_accessor(
                b"".join(struct.pack("<2f", *uv) for uv in uvs),
                FLOAT, len(uvs), "VEC2",
            )
        if geometry.colors:
            attributes["COLOR_0"] = self._add_accessor(
                b"".join(struct.pack("<4B", *c) for c in geometry.colors),
                UNSIGNED_BYTE, len(geometry.colors), "VEC4", normalized=True,
            )

        primitives = []
        for material_index, indices in batches:
            primitives.append(Primitive(
                attributes=dict(attributes),
                indices=self._add_accessor(
                    struct.pack(f"<{len(indices)}I", *indices),
                    UNSIGNED_INT, len(indices), "SCALAR",
                    target=ELEMENT_ARRAY_BUFFER,
                ),
                material=self._add_material(geometry.materials[material_index]),
                mode=TRIANGLES,
            ))

        self._gltf.meshes.append(Mesh(primitives=primitives))
        return len(self._gltf.meshes) - 1

    def _add_material(self, material: Material) -> int:
        pbr = PbrMetallicRoughness(
            baseColorFactor=[c / 255.0 for c in material.color],
            metallicFactor=0.0,
            roughnessFactor=1.0,
        )
        texture = material.texture
        if texture is not None and texture.name:
            pbr.baseColorTexture = TextureInfo(index=self._add_texture(texture))

        self._gltf.materials.append(GLTFMaterial(
            pbrMetallicRoughness=pbr,
            alphaMode="BLEND" if material.color[3] < 255 else "OPAQUE",
            doubleSided=True,
        ))
        return len(self._gltf.materials) - 1

    def _add_texture(self, texture) -> int:
        if texture.name not in self._images:
            path = getattr(texture.handle, "path", None)
            uri = Path(path).name if path is not None else f"{texture.name}.png"
            self._gltf.images.append(Image(uri=uri, name=texture.name))
            if not self._gltf.samplers:
                self._gltf.samplers.append(Sampler())
            self._gltf.textures.append(
                Texture(source=len(self._gltf.images) - 1, sampler=0)
            )
            self._images[texture.name] = len(self._gltf.textures) - 1
        return self._images[texture.name]
