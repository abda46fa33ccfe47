"""Asset graph -> renderer node hierarchy."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Set, Tuple

from gltf_engines.common.errors import FormatError
from gltf_engines.gltf_import.deserializer import record_warning
from gltf_engines.gltf_import.materials import default_material_params
from gltf_engines.gltf_import.primitives import assemble_primitive, combine_primitives
from gltf_engines.gltf_import.renderer import NodeHandle, RendererSession
from gltf_engines.gltf_import.scheduling import Affinity, ImportScheduler
from gltf_engines.gltf_import.schema import GltfAsset
from gltf_engines.gltf_import.transforms import local_transform_for_node

logger = logging.getLogger(__name__)


class NodeBuildState(str, Enum):
    CREATED = "created"
    POSE_APPLIED = "pose_applied"
    MESH_ATTACHED = "mesh_attached"
    CHILDREN_ATTACHED = "children_attached"
    VISIBLE = "visible"


@dataclass(frozen=True)
class BuildEvent:
    node: int
    state: NodeBuildState


class SceneGraphBuilder:
    """Builds every node hidden, attaches children depth-first, and only
    parents and activates a node once its whole subtree is done."""

    def __init__(self, graph: GltfAsset, session: RendererSession, scheduler: ImportScheduler):
        self.graph = graph
        self.session = session
        self.scheduler = scheduler
        self.trace: List[BuildEvent] = []
        self._mesh_materials: Dict[int, List[Any]] = {}
        self._default_material: Any = None
        self._visited: Set[int] = set()

    def _advance(self, index: int, state: NodeBuildState) -> None:
        self.trace.append(BuildEvent(node=index, state=state))
        logger.debug("node %d -> %s", index, state.value)

    async def build(
        self,
        root_name: Optional[str] = None,
        set_active: bool = True,
        only_default_scene: bool = False,
    ) -> NodeHandle:
        root = await self.session.create_node(f"glTF Scene {root_name if root_name is not None else self.graph.name}")
        await self.session.call(root.set_active, False)

        scenes = self.graph.scenes
        if not scenes:
            record_warning(self.graph, "no_scenes", "Asset defines no scenes; nothing to build")
        else:
            if only_default_scene:
                indices = [self.graph.scene if self.graph.scene is not None else 0]
            else:
                indices = list(range(len(scenes)))
            for scene_index in indices:
                await self.build_scene(scene_index, root)

        if set_active:
            await self.session.call(root.set_active, True)
        self.graph._root = root
        return root

    async def build_scene(self, index: int, root: NodeHandle) -> None:
        scene = self.graph.item("scenes", index)
        logger.debug("Building scene %d (%d root nodes)", index, len(scene.nodes))
        self._visited = set()
        # every scene's root nodes hang directly under the container node
        for node_index in scene.nodes:
            await self.build_node(node_index, root)

    async def build_node(self, index: int, parent: NodeHandle, ancestry: Tuple[int, ...] = ()) -> NodeHandle:
        if index in ancestry:
            path = " -> ".join(str(i) for i in ancestry + (index,))
            raise FormatError("node_cycle", f"Node hierarchy contains a cycle: {path}", {"path": list(ancestry + (index,))})
        if index in self._visited:
            raise FormatError(
                "node_parent",
                f"Node {index} is reached more than once in scene traversal; the hierarchy must be a tree",
                {"node": index, "parent_path": list(ancestry)},
            )
        self._visited.add(index)
        self.scheduler.checkpoint(f"node {index}")

        node = self.graph.item("nodes", index)
        handle = await self.session.create_node(node.name or f"glTF Node {index}")
        await self.session.call(handle.set_active, False)
        self._advance(index, NodeBuildState.CREATED)

        await self.session.call(handle.set_local_transform, local_transform_for_node(node))
        self._advance(index, NodeBuildState.POSE_APPLIED)

        if node.mesh is not None:
            await self.attach_mesh(handle, node.mesh)
            self._advance(index, NodeBuildState.MESH_ATTACHED)

        for child in node.children:
            await self.build_node(child, handle, ancestry + (index,))
        self._advance(index, NodeBuildState.CHILDREN_ATTACHED)

        await self.session.call(handle.set_parent, parent)
        await self.session.call(handle.set_active, True)
        self._advance(index, NodeBuildState.VISIBLE)
        node._handle = handle
        return handle

    async def default_material(self) -> Any:
        if self._default_material is None:
            self._default_material = await self.session.create_material(default_material_params())
        return self._default_material

    async def material_handle(self, slot: Optional[int]) -> Any:
        if slot is None:
            return await self.default_material()
        material = self.graph.item("materials", slot)
        if material.handle is None:
            return await self.default_material()
        return material.handle

    async def attach_mesh(self, handle: NodeHandle, mesh_index: int) -> None:
        mesh = self.graph.item("meshes", mesh_index)
        if mesh.mesh is None:
            geometries = []
            for primitive_index, primitive in enumerate(mesh.primitives):
                geometry = await self.scheduler.run(
                    Affinity.BACKGROUND, assemble_primitive, self.graph, mesh_index, primitive_index
                )
                primitive._geometry = geometry
                geometries.append(geometry)
            if len(geometries) == 1:
                combined = geometries[0]
            else:
                combined = await self.scheduler.run(
                    Affinity.BACKGROUND, combine_primitives, geometries, mesh.name or f"glTF Mesh {mesh_index}"
                )
            mesh._mesh = await self.session.create_mesh(combined)
            self._mesh_materials[mesh_index] = [
                await self.material_handle(slot) for slot in combined.material_slots
            ]
        await self.session.call(handle.set_mesh, mesh.mesh, self._mesh_materials[mesh_index])
