"""Node transform types and matrix helpers."""
from __future__ import annotations

import math
from typing import Sequence

import numpy as np
from pydantic import BaseModel

from gltf_engines.gltf_import.schema import GltfNode


class Vector3(BaseModel):
    x: float
    y: float
    z: float

    def as_tuple(self) -> tuple:
        return (self.x, self.y, self.z)


class Quaternion(BaseModel):
    x: float
    y: float
    z: float
    w: float

    def as_tuple(self) -> tuple:
        return (self.x, self.y, self.z, self.w)


class LocalTransform(BaseModel):
    position: Vector3
    rotation: Quaternion
    scale: Vector3

    @classmethod
    def identity(cls) -> LocalTransform:
        return cls(
            position=Vector3(x=0.0, y=0.0, z=0.0),
            rotation=Quaternion(x=0.0, y=0.0, z=0.0, w=1.0),
            scale=Vector3(x=1.0, y=1.0, z=1.0),
        )


def matrix_from_gltf(values: Sequence[float]) -> np.ndarray:
    """glTF stores matrices column-major; return a row-major 4x4 array."""
    return np.asarray(values, dtype=np.float64).reshape(4, 4).T


def is_identity(matrix: np.ndarray, tolerance: float = 1e-6) -> bool:
    return bool(np.allclose(matrix, np.eye(4), atol=tolerance))


def quaternion_from_rotation(rot: np.ndarray) -> Quaternion:
    trace = rot[0, 0] + rot[1, 1] + rot[2, 2]
    if trace > 0:
        s = math.sqrt(trace + 1.0) * 2
        w = 0.25 * s
        x = (rot[2, 1] - rot[1, 2]) / s
        y = (rot[0, 2] - rot[2, 0]) / s
        z = (rot[1, 0] - rot[0, 1]) / s
    elif rot[0, 0] > rot[1, 1] and rot[0, 0] > rot[2, 2]:
        s = math.sqrt(1.0 + rot[0, 0] - rot[1, 1] - rot[2, 2]) * 2
        w = (rot[2, 1] - rot[1, 2]) / s
        x = 0.25 * s
        y = (rot[0, 1] + rot[1, 0]) / s
        z = (rot[0, 2] + rot[2, 0]) / s
    elif rot[1, 1] > rot[2, 2]:
        s = math.sqrt(1.0 + rot[1, 1] - rot[0, 0] - rot[2, 2]) * 2
        w = (rot[0, 2] - rot[2, 0]) / s
        x = (rot[0, 1] + rot[1, 0]) / s
        y = 0.25 * s
        z = (rot[1, 2] + rot[2, 1]) / s
    else:
        s = math.sqrt(1.0 + rot[2, 2] - rot[0, 0] - rot[1, 1]) * 2
        w = (rot[1, 0] - rot[0, 1]) / s
        x = (rot[0, 2] + rot[2, 0]) / s
        y = (rot[1, 2] + rot[2, 1]) / s
        z = 0.25 * s
    norm = math.sqrt(x * x + y * y + z * z + w * w) or 1.0
    return Quaternion(x=x / norm, y=y / norm, z=z / norm, w=w / norm)


def decompose_matrix(matrix: np.ndarray) -> LocalTransform:
    """Split an affine 4x4 matrix into translation, rotation and scale."""
    translation = matrix[:3, 3]
    basis = matrix[:3, :3]
    scale = np.linalg.norm(basis, axis=0)
    if np.linalg.det(basis) < 0:
        scale[0] = -scale[0]
    safe_scale = np.where(np.abs(scale) < 1e-12, 1.0, scale)
    rotation = basis / safe_scale
    return LocalTransform(
        position=Vector3(x=float(translation[0]), y=float(translation[1]), z=float(translation[2])),
        rotation=quaternion_from_rotation(rotation),
        scale=Vector3(x=float(scale[0]), y=float(scale[1]), z=float(scale[2])),
    )


def compose_matrix(transform: LocalTransform) -> np.ndarray:
    x, y, z, w = transform.rotation.as_tuple()
    rot = np.array([
        [1 - 2 * (y * y + z * z), 2 * (x * y - z * w), 2 * (x * z + y * w)],
        [2 * (x * y + z * w), 1 - 2 * (x * x + z * z), 2 * (y * z - x * w)],
        [2 * (x * z - y * w), 2 * (y * z + x * w), 1 - 2 * (x * x + y * y)],
    ])
    matrix = np.eye(4)
    matrix[:3, :3] = rot * np.asarray(transform.scale.as_tuple())
    matrix[:3, 3] = transform.position.as_tuple()
    return matrix


def local_transform_for_node(node: GltfNode) -> LocalTransform:
    """Matrix wins unless it is identity, in which case TRS fields apply."""
    if node.matrix is not None:
        matrix = matrix_from_gltf(node.matrix)
        if not is_identity(matrix):
            return decompose_matrix(matrix)

    transform = LocalTransform.identity()
    if node.translation is not None:
        t = node.translation
        transform.position = Vector3(x=float(t[0]), y=float(t[1]), z=float(t[2]))
    if node.rotation is not None:
        r = node.rotation
        transform.rotation = Quaternion(x=float(r[0]), y=float(r[1]), z=float(r[2]), w=float(r[3]))
    if node.scale is not None:
        s = node.scale
        transform.scale = Vector3(x=float(s[0]), y=float(s[1]), z=float(s[2]))
    return transform
