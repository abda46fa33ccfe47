"""Fixture builders that assemble .gltf/.glb payloads in memory."""
import base64
import io
import json
import struct
from typing import Any, Dict, List, Optional

import numpy as np
import pytest
from PIL import Image

GLB_MAGIC = 0x46546C67
CHUNK_JSON = 0x4E4F534A
CHUNK_BIN = 0x004E4942

COMPONENT_TYPES = {
    np.dtype("int8"): 5120,
    np.dtype("uint8"): 5121,
    np.dtype("int16"): 5122,
    np.dtype("uint16"): 5123,
    np.dtype("uint32"): 5125,
    np.dtype("float32"): 5126,
}
TYPES = {1: "SCALAR", 2: "VEC2", 3: "VEC3", 4: "VEC4", 16: "MAT4"}


def pack_glb(document: Dict[str, Any], bin_chunk: Optional[bytes] = None, version: int = 2) -> bytes:
    """Frame a JSON document (and optional BIN chunk) as GLB with 4 byte padding."""
    json_bytes = json.dumps(document).encode("utf-8")
    json_bytes += b" " * (-len(json_bytes) % 4)
    body = struct.pack("<II", len(json_bytes), CHUNK_JSON) + json_bytes
    if bin_chunk is not None:
        padded = bin_chunk + b"\x00" * (-len(bin_chunk) % 4)
        body += struct.pack("<II", len(padded), CHUNK_BIN) + padded
    return struct.pack("<III", GLB_MAGIC, version, 12 + len(body)) + body


def png_bytes(color=(255, 0, 0, 255), size=(2, 2)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGBA", size, color).save(buf, format="PNG")
    return buf.getvalue()


class GltfFixtureBuilder:
    """Accumulates bufferViews/accessors/meshes/nodes over a single binary blob."""

    def __init__(self):
        self.doc: Dict[str, Any] = {"asset": {"version": "2.0", "generator": "fixture-builder"}}
        self.blob = bytearray()

    def _append(self, key: str, entry: Dict[str, Any]) -> int:
        items: List[Dict[str, Any]] = self.doc.setdefault(key, [])
        items.append(entry)
        return len(items) - 1

    def add_view(self, data: bytes, stride: Optional[int] = None) -> int:
        self.blob += b"\x00" * (-len(self.blob) % 4)
        entry = {"buffer": 0, "byteOffset": len(self.blob), "byteLength": len(data)}
        if stride is not None:
            entry["byteStride"] = stride
        self.blob += data
        return self._append("bufferViews", entry)

    def add_accessor(self, values, dtype="float32", normalized: bool = False, **extra) -> int:
        array = np.asarray(values, dtype=dtype)
        if array.ndim == 1:
            array = array.reshape(-1, 1)
        view = self.add_view(array.tobytes())
        entry = {
            "bufferView": view,
            "componentType": COMPONENT_TYPES[array.dtype],
            "count": int(array.shape[0]),
            "type": TYPES[array.shape[1]],
        }
        if normalized:
            entry["normalized"] = True
        entry.update(extra)
        return self._append("accessors", entry)

    def add_primitive_mesh(self, primitives: List[Dict[str, Any]], name: Optional[str] = None) -> int:
        entry: Dict[str, Any] = {"primitives": primitives}
        if name:
            entry["name"] = name
        return self._append("meshes", entry)

    def add_triangle(self, material: Optional[int] = None, offset=(0.0, 0.0, 0.0), name: Optional[str] = None) -> int:
        """A one-primitive triangle mesh; returns the mesh index."""
        return self.add_primitive_mesh([self.triangle_primitive(material, offset)], name=name)

    def triangle_primitive(self, material: Optional[int] = None, offset=(0.0, 0.0, 0.0)) -> Dict[str, Any]:
        positions = np.array([[0, 0, 0], [1, 0, 0], [0, 1, 0]], dtype=np.float32) + np.asarray(offset, dtype=np.float32)
        primitive: Dict[str, Any] = {
            "attributes": {"POSITION": self.add_accessor(positions)},
            "indices": self.add_accessor([0, 1, 2], dtype="uint16"),
        }
        if material is not None:
            primitive["material"] = material
        return primitive

    def add_material(self, **fields) -> int:
        return self._append("materials", dict(fields))

    def add_node(self, **fields) -> int:
        return self._append("nodes", dict(fields))

    def add_scene(self, nodes: List[int], name: Optional[str] = None) -> int:
        entry: Dict[str, Any] = {"nodes": nodes}
        if name:
            entry["name"] = name
        index = self._append("scenes", entry)
        self.doc.setdefault("scene", 0)
        return index

    def document(self, embed: bool = False) -> Dict[str, Any]:
        doc = json.loads(json.dumps(self.doc))
        if self.blob:
            buffer: Dict[str, Any] = {"byteLength": len(self.blob)}
            if embed:
                encoded = base64.b64encode(bytes(self.blob)).decode("ascii")
                buffer["uri"] = f"data:application/octet-stream;base64,{encoded}"
            doc["buffers"] = [buffer]
        return doc

    def glb(self) -> bytes:
        return pack_glb(self.document(), bytes(self.blob) if self.blob else None)

    def gltf(self) -> bytes:
        return json.dumps(self.document(embed=True)).encode("utf-8")


@pytest.fixture
def gltf_builder() -> GltfFixtureBuilder:
    return GltfFixtureBuilder()


@pytest.fixture
def triangle_glb(gltf_builder) -> bytes:
    mesh = gltf_builder.add_triangle(name="Triangle")
    node = gltf_builder.add_node(name="Tri", mesh=mesh)
    gltf_builder.add_scene([node], name="Main")
    return gltf_builder.glb()


@pytest.fixture
def glb_packer():
    return pack_glb


@pytest.fixture
def png_factory():
    return png_bytes
