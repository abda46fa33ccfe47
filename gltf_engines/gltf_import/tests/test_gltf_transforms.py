"""Tests for node transform derivation."""
import math

import numpy as np
import pytest

from gltf_engines.gltf_import.schema import GltfNode
from gltf_engines.gltf_import.transforms import (
    LocalTransform,
    compose_matrix,
    decompose_matrix,
    is_identity,
    local_transform_for_node,
    matrix_from_gltf,
)

IDENTITY = [1, 0, 0, 0, 0, 1, 0, 0, 0, 0, 1, 0, 0, 0, 0, 1]


def test_trs_wins_over_identity_matrix():
    node = GltfNode(matrix=IDENTITY, translation=[1, 2, 3], scale=[2, 2, 2])
    transform = local_transform_for_node(node)
    assert transform.position.as_tuple() == (1.0, 2.0, 3.0)
    assert transform.scale.as_tuple() == (2.0, 2.0, 2.0)
    assert transform.rotation.as_tuple() == (0.0, 0.0, 0.0, 1.0)


def test_matrix_translation_is_column_major():
    matrix = list(IDENTITY)
    matrix[12:15] = [4, 5, 6]
    transform = local_transform_for_node(GltfNode(matrix=matrix, translation=[9, 9, 9]))
    assert transform.position.as_tuple() == pytest.approx((4.0, 5.0, 6.0))


def test_decompose_rotation_and_scale():
    half = math.sqrt(0.5)
    source = LocalTransform.identity()
    source.rotation = source.rotation.model_copy(update={"z": half, "w": half})
    source.scale = source.scale.model_copy(update={"x": 3.0})
    transform = decompose_matrix(compose_matrix(source))
    assert transform.scale.as_tuple() == pytest.approx((3.0, 1.0, 1.0))
    assert transform.rotation.as_tuple() == pytest.approx((0.0, 0.0, half, half))


def test_identity_helpers():
    assert is_identity(matrix_from_gltf(IDENTITY))
    assert not is_identity(np.diag([2.0, 1.0, 1.0, 1.0]))
    assert local_transform_for_node(GltfNode()) == LocalTransform.identity()
