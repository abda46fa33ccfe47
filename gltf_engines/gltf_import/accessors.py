"""Typed accessor decoding into numpy arrays."""
from __future__ import annotations

from typing import Optional

import numpy as np

from gltf_engines.common.errors import FormatError, ResolutionError
from gltf_engines.gltf_import.schema import GltfAccessor, GltfAsset, GltfComponentType

COMPONENT_DTYPES = {
    GltfComponentType.BYTE: np.dtype("<i1"),
    GltfComponentType.UNSIGNED_BYTE: np.dtype("<u1"),
    GltfComponentType.SHORT: np.dtype("<i2"),
    GltfComponentType.UNSIGNED_SHORT: np.dtype("<u2"),
    GltfComponentType.UNSIGNED_INT: np.dtype("<u4"),
    GltfComponentType.FLOAT: np.dtype("<f4"),
}

TYPE_COMPONENTS = {
    "SCALAR": 1,
    "VEC2": 2,
    "VEC3": 3,
    "VEC4": 4,
    "MAT2": 4,
    "MAT3": 9,
    "MAT4": 16,
}

SPARSE_INDEX_TYPES = {
    GltfComponentType.UNSIGNED_BYTE,
    GltfComponentType.UNSIGNED_SHORT,
    GltfComponentType.UNSIGNED_INT,
}

# Divisors for normalized integer components
_NORMALIZE_DIVISORS = {
    np.dtype("<i1"): 127.0,
    np.dtype("<u1"): 255.0,
    np.dtype("<i2"): 32767.0,
    np.dtype("<u2"): 65535.0,
}


def component_count(accessor: GltfAccessor) -> int:
    return TYPE_COMPONENTS[accessor.type.value]


def element_size(accessor: GltfAccessor) -> int:
    """Tightly packed size of one element in bytes."""
    return component_count(accessor) * COMPONENT_DTYPES[accessor.componentType].itemsize


def _bound_view(graph: GltfAsset, view_index: int) -> memoryview:
    view = graph.item("bufferViews", view_index)
    if view.data is None:
        raise ResolutionError(
            "unresolved_view",
            f"bufferViews[{view_index}] was read before its buffer was resolved",
            {"bufferView": view_index},
        )
    return view.data


def _read_elements(
    data: memoryview,
    offset: int,
    count: int,
    components: int,
    dtype: np.dtype,
    stride: Optional[int],
    where: str,
) -> np.ndarray:
    element_bytes = components * dtype.itemsize
    stride = stride or element_bytes
    if stride < element_bytes:
        raise FormatError("accessor_stride", f"{where}: byteStride {stride} smaller than element size {element_bytes}")
    needed = offset + (count - 1) * stride + element_bytes
    if needed > len(data):
        raise FormatError(
            "accessor_range",
            f"{where}: needs {needed} bytes but its bufferView holds {len(data)}",
            {"needed": needed, "available": len(data)},
        )

    if stride == element_bytes:
        values = np.frombuffer(data, dtype=dtype, count=count * components, offset=offset)
        return values.reshape(count, components).copy()

    raw = np.frombuffer(data, dtype=np.uint8, count=needed - offset, offset=offset)
    rows = np.lib.stride_tricks.as_strided(raw, shape=(count, element_bytes), strides=(stride, 1))
    return np.ascontiguousarray(rows).view(dtype).reshape(count, components)


def normalize_integers(values: np.ndarray) -> np.ndarray:
    divisor = _NORMALIZE_DIVISORS.get(values.dtype)
    if divisor is None:
        return values.astype(np.float32)
    return np.maximum(values.astype(np.float32) / divisor, -1.0)


def _apply_sparse(graph: GltfAsset, accessor: GltfAccessor, values: np.ndarray, where: str) -> np.ndarray:
    sparse = accessor.sparse
    if sparse.indices.componentType not in SPARSE_INDEX_TYPES:
        raise FormatError("sparse_index", f"{where}: sparse indices must use an unsigned component type")

    index_dtype = COMPONENT_DTYPES[sparse.indices.componentType]
    indices = _read_elements(
        _bound_view(graph, sparse.indices.bufferView),
        sparse.indices.byteOffset,
        sparse.count,
        1,
        index_dtype,
        None,
        f"{where}.sparse.indices",
    ).reshape(-1)
    if indices.size and int(indices.max()) >= accessor.count:
        raise FormatError(
            "sparse_index",
            f"{where}: sparse index {int(indices.max())} outside accessor count {accessor.count}",
        )

    overrides = _read_elements(
        _bound_view(graph, sparse.values.bufferView),
        sparse.values.byteOffset,
        sparse.count,
        values.shape[1],
        values.dtype,
        None,
        f"{where}.sparse.values",
    )
    values[indices.astype(np.int64)] = overrides
    return values


def decode_accessor(graph: GltfAsset, index: int) -> np.ndarray:
    """Decode an accessor into a (count, components) array.

    Elements come from the base bufferView (zeros when the accessor has none),
    then sparse overrides replace values at their indices. Normalized integer
    accessors are converted to float.
    """
    accessor = graph.item("accessors", index)
    where = f"accessors[{index}]"
    dtype = COMPONENT_DTYPES[accessor.componentType]
    components = component_count(accessor)

    if accessor.bufferView is None:
        values = np.zeros((accessor.count, components), dtype=dtype)
    else:
        view = graph.item("bufferViews", accessor.bufferView)
        values = _read_elements(
            _bound_view(graph, accessor.bufferView),
            accessor.byteOffset,
            accessor.count,
            components,
            dtype,
            view.byteStride,
            where,
        )

    if accessor.sparse is not None:
        values = _apply_sparse(graph, accessor, values, where)

    if accessor.normalized:
        values = normalize_integers(values)
    return values
