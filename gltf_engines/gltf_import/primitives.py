"""Mesh primitive -> renderer independent geometry buffers."""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np

from gltf_engines.common.errors import FormatError
from gltf_engines.gltf_import.accessors import decode_accessor
from gltf_engines.gltf_import.deserializer import record_warning
from gltf_engines.gltf_import.schema import GltfAsset, GltfDrawMode

INDEX_FORMAT_UINT16 = "uint16"
INDEX_FORMAT_UINT32 = "uint32"
MAX_UINT16_VERTICES = 65535

UV_CHANNELS = 4

# Expected component counts per attribute semantic
ATTRIBUTE_WIDTHS: Dict[str, Sequence[int]] = {
    "POSITION": (3,),
    "NORMAL": (3,),
    "TANGENT": (4,),
    "TEXCOORD_0": (2,),
    "TEXCOORD_1": (2,),
    "TEXCOORD_2": (2,),
    "TEXCOORD_3": (2,),
    "COLOR_0": (3, 4),
    "JOINTS_0": (4,),
    "WEIGHTS_0": (4,),
}


@dataclass(frozen=True)
class BoneWeight:
    joints: tuple
    weights: tuple


@dataclass
class SubMesh:
    indices: np.ndarray
    material: Optional[int] = None


@dataclass
class MeshGeometry:
    positions: np.ndarray
    submeshes: List[SubMesh]
    normals: Optional[np.ndarray] = None
    uvs: List[Optional[np.ndarray]] = field(default_factory=lambda: [None] * UV_CHANNELS)
    colors: Optional[np.ndarray] = None
    tangents: Optional[np.ndarray] = None
    bone_weights: Optional[List[BoneWeight]] = None
    index_format: str = INDEX_FORMAT_UINT16
    bounds_min: Optional[np.ndarray] = None
    bounds_max: Optional[np.ndarray] = None
    mode: GltfDrawMode = GltfDrawMode.TRIANGLES
    name: Optional[str] = None

    @property
    def vertex_count(self) -> int:
        return int(self.positions.shape[0])

    @property
    def indices(self) -> np.ndarray:
        if not self.submeshes:
            return np.zeros(0, dtype=np.uint32)
        return np.concatenate([sub.indices for sub in self.submeshes])

    @property
    def material_slots(self) -> List[Optional[int]]:
        return [sub.material for sub in self.submeshes]


def select_index_format(vertex_count: int) -> str:
    return INDEX_FORMAT_UINT32 if vertex_count > MAX_UINT16_VERTICES else INDEX_FORMAT_UINT16


def normalize_weights(weights: np.ndarray) -> np.ndarray:
    """Scale each weight vector to sum to one; zero-sum vectors are left as is."""
    result = np.array(weights, dtype=np.float32, copy=True)
    sums = result.sum(axis=1)
    mask = ~np.isclose(sums, 0.0, atol=1e-6)
    result[mask] = result[mask] / sums[mask][:, None]
    return result


def create_bone_weights(joints: np.ndarray, weights: np.ndarray) -> List[BoneWeight]:
    normalized = normalize_weights(weights)
    return [
        BoneWeight(joints=tuple(int(j) for j in joint_row), weights=tuple(float(w) for w in weight_row))
        for joint_row, weight_row in zip(joints, normalized)
    ]


def compute_bounds(positions: np.ndarray):
    if positions.shape[0] == 0:
        zero = np.zeros(3, dtype=np.float32)
        return zero, zero.copy()
    return positions.min(axis=0), positions.max(axis=0)


def _decode_attribute(graph: GltfAsset, name: str, accessor_index: int, vertex_count: Optional[int], where: str) -> np.ndarray:
    values = decode_accessor(graph, accessor_index)
    widths = ATTRIBUTE_WIDTHS[name]
    if values.shape[1] not in widths:
        raise FormatError(
            "attribute_type",
            f"{where}.{name} has {values.shape[1]} components, expected {' or '.join(str(w) for w in widths)}",
        )
    if vertex_count is not None and values.shape[0] != vertex_count:
        raise FormatError(
            "attribute_count",
            f"{where}.{name} has {values.shape[0]} elements but POSITION has {vertex_count}",
        )
    return values


def assemble_primitive(graph: GltfAsset, mesh_index: int, primitive_index: int) -> MeshGeometry:
    mesh = graph.item("meshes", mesh_index)
    primitive = mesh.primitives[primitive_index]
    where = f"meshes[{mesh_index}].primitives[{primitive_index}]"
    attributes = primitive.attributes or {}

    if "POSITION" not in attributes:
        raise FormatError("missing_position", f"{where} has no POSITION attribute and cannot be rendered")

    positions = _decode_attribute(graph, "POSITION", attributes["POSITION"], None, where).astype(np.float32)
    vertex_count = positions.shape[0]

    def attribute(name: str) -> Optional[np.ndarray]:
        if name not in attributes:
            return None
        return _decode_attribute(graph, name, attributes[name], vertex_count, where)

    normals = attribute("NORMAL")
    tangents = attribute("TANGENT")
    uvs = [attribute(f"TEXCOORD_{channel}") for channel in range(UV_CHANNELS)]
    colors = attribute("COLOR_0")
    if colors is not None:
        colors = colors.astype(np.float32)
        if colors.shape[1] == 3:
            colors = np.hstack([colors, np.ones((vertex_count, 1), dtype=np.float32)])

    joints = attribute("JOINTS_0")
    weights = attribute("WEIGHTS_0")
    bone_weights = None
    if joints is not None and weights is not None:
        bone_weights = create_bone_weights(joints, weights.astype(np.float32))
    elif joints is not None or weights is not None:
        record_warning(graph, "skin_attributes", f"{where} has only one of JOINTS_0/WEIGHTS_0; skinning skipped")

    if primitive.indices is not None:
        indices = decode_accessor(graph, primitive.indices).reshape(-1).astype(np.uint32)
        if indices.size and int(indices.max()) >= vertex_count:
            raise FormatError("index_range", f"{where} references vertex {int(indices.max())} of {vertex_count}")
    else:
        indices = np.arange(vertex_count, dtype=np.uint32)

    if primitive.mode != GltfDrawMode.TRIANGLES:
        record_warning(graph, "draw_mode", f"{where} uses draw mode {primitive.mode.name}; indices kept as-is")

    bounds_min, bounds_max = compute_bounds(positions)
    return MeshGeometry(
        positions=positions,
        submeshes=[SubMesh(indices=indices, material=primitive.material)],
        normals=None if normals is None else normals.astype(np.float32),
        uvs=[None if uv is None else uv.astype(np.float32) for uv in uvs],
        colors=colors,
        tangents=None if tangents is None else tangents.astype(np.float32),
        bone_weights=bone_weights,
        index_format=select_index_format(vertex_count),
        bounds_min=bounds_min,
        bounds_max=bounds_max,
        mode=primitive.mode,
        name=mesh.name,
    )


def _concat_optional(
    parts: List[Optional[np.ndarray]], counts: List[int], width: int, fill: float = 0.0
) -> Optional[np.ndarray]:
    if all(part is None for part in parts):
        return None
    filled = [
        part if part is not None else np.full((count, width), fill, dtype=np.float32)
        for part, count in zip(parts, counts)
    ]
    return np.concatenate(filled).astype(np.float32)


def combine_primitives(geometries: Sequence[MeshGeometry], name: Optional[str] = None) -> MeshGeometry:
    """Union several primitives into one geometry with one submesh per distinct material."""
    counts = [geometry.vertex_count for geometry in geometries]
    offsets = np.cumsum([0] + counts[:-1])

    groups: Dict[Optional[int], List[np.ndarray]] = {}
    for geometry, offset in zip(geometries, offsets):
        for sub in geometry.submeshes:
            groups.setdefault(sub.material, []).append(sub.indices.astype(np.uint32) + np.uint32(offset))
    submeshes = [SubMesh(indices=np.concatenate(parts), material=material) for material, parts in groups.items()]

    bone_weights = None
    if any(geometry.bone_weights is not None for geometry in geometries):
        empty = BoneWeight(joints=(0, 0, 0, 0), weights=(0.0, 0.0, 0.0, 0.0))
        bone_weights = []
        for geometry, count in zip(geometries, counts):
            bone_weights.extend(geometry.bone_weights if geometry.bone_weights is not None else [empty] * count)

    positions = np.concatenate([geometry.positions for geometry in geometries]).astype(np.float32)
    bounds_min, bounds_max = compute_bounds(positions)
    return MeshGeometry(
        positions=positions,
        submeshes=submeshes,
        normals=_concat_optional([g.normals for g in geometries], counts, 3),
        uvs=[_concat_optional([g.uvs[c] for g in geometries], counts, 2) for c in range(UV_CHANNELS)],
        colors=_concat_optional([g.colors for g in geometries], counts, 4, fill=1.0),
        tangents=_concat_optional([g.tangents for g in geometries], counts, 4),
        bone_weights=bone_weights,
        index_format=select_index_format(int(positions.shape[0])),
        bounds_min=bounds_min,
        bounds_max=bounds_max,
        mode=geometries[0].mode,
        name=name if name is not None else geometries[0].name,
    )
