"""Tests for scene graph construction order and node semantics."""
import pytest

from gltf_engines.common.errors import FormatError
from gltf_engines.gltf_import.renderer import InMemoryRenderer
from gltf_engines.gltf_import.scene_builder import BuildEvent, NodeBuildState
from gltf_engines.gltf_import.service import GltfImportOptions, import_gltf_from_bytes_sync


def _import(builder, **options):
    renderer = InMemoryRenderer()
    result = import_gltf_from_bytes_sync(
        builder.glb(), renderer=renderer, options=GltfImportOptions(**options), name="Fixture"
    )
    return renderer, result


def _position(renderer, op, target, *args):
    for i, call in enumerate(renderer.trace):
        if call.op == op and call.target == target and call.args == args:
            return i
    raise AssertionError(f"{op} {target} {args} not in trace")


def _hierarchy(builder):
    mesh = builder.add_triangle()
    leaf = builder.add_node(name="Leaf", mesh=mesh)
    left = builder.add_node(name="Left", children=[leaf])
    right = builder.add_node(name="Right")
    root = builder.add_node(name="Top", children=[left, right])
    builder.add_scene([root])
    return {"Leaf": leaf, "Left": left, "Right": right, "Top": root}


def test_node_states_follow_build_order(gltf_builder):
    nodes = _hierarchy(gltf_builder)
    _, result = _import(gltf_builder)

    leaf_states = [e.state for e in result.trace if e.node == nodes["Leaf"]]
    assert leaf_states == [
        NodeBuildState.CREATED,
        NodeBuildState.POSE_APPLIED,
        NodeBuildState.MESH_ATTACHED,
        NodeBuildState.CHILDREN_ATTACHED,
        NodeBuildState.VISIBLE,
    ]
    top_states = [e.state for e in result.trace if e.node == nodes["Top"]]
    assert NodeBuildState.MESH_ATTACHED not in top_states

    visible = [e.node for e in result.trace if e.state == NodeBuildState.VISIBLE]
    assert visible == [nodes["Leaf"], nodes["Left"], nodes["Right"], nodes["Top"]]
    assert result.trace[0] == BuildEvent(node=nodes["Top"], state=NodeBuildState.CREATED)


def test_children_parented_before_parent_is_visible(gltf_builder):
    _hierarchy(gltf_builder)
    renderer, _ = _import(gltf_builder)

    for parent, children in (("Top", ["Left", "Right"]), ("Left", ["Leaf"])):
        shown = _position(renderer, "set_active", parent, True)
        for child in children:
            assert _position(renderer, "set_parent", child, parent) < shown
            assert _position(renderer, "set_active", child, True) < shown
    # every node starts hidden
    for name in ("Top", "Left", "Right", "Leaf"):
        assert _position(renderer, "set_active", name, False) < _position(renderer, "set_active", name, True)


def test_root_container_and_default_names(gltf_builder):
    mesh = gltf_builder.add_triangle()
    node = gltf_builder.add_node(mesh=mesh)
    gltf_builder.add_scene([node])
    renderer, result = _import(gltf_builder)

    root = result.root
    assert root.name == "glTF Scene Fixture"
    assert root.active
    assert [child.name for child in root.children] == ["glTF Node 0"]
    assert result.asset.root is root
    assert root.children[0].active_in_hierarchy


def test_inactive_root(gltf_builder):
    gltf_builder.add_scene([gltf_builder.add_node(name="Only")])
    _, result = _import(gltf_builder, set_active=False)
    assert not result.root.active
    assert result.root.children[0].active
    assert not result.root.children[0].active_in_hierarchy


def test_trs_over_identity_matrix(gltf_builder):
    identity = [1, 0, 0, 0, 0, 1, 0, 0, 0, 0, 1, 0, 0, 0, 0, 1]
    gltf_builder.add_scene([gltf_builder.add_node(matrix=identity, translation=[1, 2, 3])])
    _, result = _import(gltf_builder)
    assert result.root.children[0].transform.position.as_tuple() == (1.0, 2.0, 3.0)


def test_cycle_is_rejected_and_cleaned_up(gltf_builder):
    gltf_builder.add_node(name="A", children=[1])
    gltf_builder.add_node(name="B", children=[0])
    gltf_builder.add_scene([0])
    renderer = InMemoryRenderer()
    with pytest.raises(FormatError) as exc:
        import_gltf_from_bytes_sync(gltf_builder.glb(), renderer=renderer)
    assert exc.value.reason == "node_cycle"
    assert exc.value.details["path"] == [0, 1, 0]
    assert renderer.live_objects == 0


def test_node_with_two_parents_is_rejected(gltf_builder):
    leaf = gltf_builder.add_node(name="Leaf")
    left = gltf_builder.add_node(name="A", children=[leaf])
    right = gltf_builder.add_node(name="B", children=[leaf])
    gltf_builder.add_scene([gltf_builder.add_node(name="Top", children=[left, right])])
    renderer = InMemoryRenderer()
    with pytest.raises(FormatError) as exc:
        import_gltf_from_bytes_sync(gltf_builder.glb(), renderer=renderer)
    assert exc.value.reason == "node_parent"
    assert exc.value.details == {"node": leaf, "parent_path": [3, right]}
    assert renderer.live_objects == 0


def test_scenes_may_share_root_nodes(gltf_builder):
    shared = gltf_builder.add_node(name="Shared")
    gltf_builder.add_scene([shared], name="One")
    gltf_builder.add_scene([shared], name="Two")
    _, result = _import(gltf_builder)
    assert [child.name for child in result.root.children] == ["Shared", "Shared"]


def test_multi_primitive_mesh_combines_with_distinct_materials(gltf_builder):
    red = gltf_builder.add_material(name="Red")
    blue = gltf_builder.add_material(name="Blue")
    mesh = gltf_builder.add_primitive_mesh(
        [
            gltf_builder.triangle_primitive(material=red),
            gltf_builder.triangle_primitive(material=blue),
            gltf_builder.triangle_primitive(material=red),
        ],
        name="Trio",
    )
    gltf_builder.add_scene([gltf_builder.add_node(mesh=mesh)])
    renderer, result = _import(gltf_builder)

    node = result.root.children[0]
    assert len(renderer.meshes) == 1
    assert node.mesh.vertex_count == 9
    assert [m.name for m in node.materials] == ["Red", "Blue"]


def test_shared_mesh_is_created_once(gltf_builder):
    mesh = gltf_builder.add_triangle()
    first = gltf_builder.add_node(mesh=mesh)
    second = gltf_builder.add_node(mesh=mesh)
    gltf_builder.add_scene([first, second])
    renderer, result = _import(gltf_builder)
    assert len(renderer.meshes) == 1
    assert result.root.children[0].mesh is result.root.children[1].mesh


def test_default_material_for_unassigned_primitive(gltf_builder):
    gltf_builder.add_scene([gltf_builder.add_node(mesh=gltf_builder.add_triangle())])
    renderer, result = _import(gltf_builder)
    assert [m.name for m in renderer.materials] == ["glTF Default Material"]
    assert result.root.children[0].materials == renderer.materials


def test_only_default_scene(gltf_builder):
    gltf_builder.add_scene([gltf_builder.add_node(name="First")])
    gltf_builder.add_scene([gltf_builder.add_node(name="Second")])
    gltf_builder.doc["scene"] = 1

    _, everything = _import(gltf_builder)
    assert [c.name for c in everything.root.children] == ["First", "Second"]

    _, default_only = _import(gltf_builder, only_default_scene=True)
    assert [c.name for c in default_only.root.children] == ["Second"]


def test_missing_scenes_warns(gltf_builder):
    gltf_builder.add_node(name="Orphan")
    renderer, result = _import(gltf_builder)
    assert result.root.children == []
    assert "no_scenes" in [w.reason for w in result.warnings]
    assert [n.name for n in renderer.nodes] == ["glTF Scene Fixture"]
