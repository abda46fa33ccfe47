"""Renderer collaborator contract plus an in-memory reference renderer."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterator, List, Optional, Protocol, Sequence, Tuple

from gltf_engines.gltf_import.scheduling import Affinity, ImportScheduler

if TYPE_CHECKING:
    from PIL import Image

    from gltf_engines.gltf_import.materials import MaterialParams
    from gltf_engines.gltf_import.primitives import MeshGeometry
    from gltf_engines.gltf_import.transforms import LocalTransform

logger = logging.getLogger(__name__)


class NodeHandle(Protocol):
    def set_parent(self, parent: Optional["NodeHandle"]) -> None: ...

    def set_local_transform(self, transform: "LocalTransform") -> None: ...

    def set_active(self, active: bool) -> None: ...

    def set_mesh(self, mesh: Any, materials: Sequence[Any]) -> None: ...


class Renderer(Protocol):
    def create_node(self, name: str) -> NodeHandle: ...

    def create_mesh(self, geometry: "MeshGeometry") -> Any: ...

    def create_material(self, params: "MaterialParams") -> Any: ...

    def create_texture(self, image: "Image.Image", name: str) -> Any: ...

    def destroy(self, handle: Any) -> None: ...


class RendererSession:
    """Routes renderer calls through the primary affinity and remembers every
    object created for one import so a failed import can be rolled back."""

    def __init__(self, renderer: Renderer, scheduler: ImportScheduler):
        self.renderer = renderer
        self.scheduler = scheduler
        self.created: List[Any] = []

    async def _create(self, fn, *args) -> Any:
        handle = await self.scheduler.run(Affinity.PRIMARY, fn, *args)
        self.created.append(handle)
        return handle

    async def create_node(self, name: str) -> NodeHandle:
        return await self._create(self.renderer.create_node, name)

    async def create_mesh(self, geometry: "MeshGeometry") -> Any:
        return await self._create(self.renderer.create_mesh, geometry)

    async def create_material(self, params: "MaterialParams") -> Any:
        return await self._create(self.renderer.create_material, params)

    async def create_texture(self, image: "Image.Image", name: str) -> Any:
        return await self._create(self.renderer.create_texture, image, name)

    async def call(self, fn, *args) -> Any:
        return await self.scheduler.run(Affinity.PRIMARY, fn, *args)

    def cleanup(self) -> int:
        """Destroy everything created so far, newest first."""
        destroyed = 0
        while self.created:
            handle = self.created.pop()
            try:
                self.renderer.destroy(handle)
                destroyed += 1
            except Exception as exc:
                logger.warning("Failed to destroy renderer object %r: %s", handle, exc)
        return destroyed

    def release(self) -> None:
        """Hand ownership of the created objects to the caller."""
        self.created = []


# --- In-memory reference renderer ---

@dataclass
class RenderCall:
    op: str
    target: str
    thread_id: int
    args: Tuple[Any, ...] = ()


@dataclass(eq=False)
class InMemoryTexture:
    name: str
    width: int
    height: int
    image: Any = field(repr=False, default=None)
    destroyed: bool = False


@dataclass(eq=False)
class InMemoryMaterial:
    name: str
    params: Any = field(repr=False, default=None)
    destroyed: bool = False


@dataclass(eq=False)
class InMemoryMesh:
    name: str
    geometry: Any = field(repr=False, default=None)
    destroyed: bool = False

    @property
    def vertex_count(self) -> int:
        return self.geometry.vertex_count if self.geometry is not None else 0


@dataclass(eq=False)
class InMemoryNode:
    name: str
    renderer: "InMemoryRenderer" = field(repr=False, default=None)
    parent: Optional["InMemoryNode"] = field(repr=False, default=None)
    children: List["InMemoryNode"] = field(default_factory=list, repr=False)
    transform: Any = None
    active: bool = True
    mesh: Optional[InMemoryMesh] = None
    materials: List[InMemoryMaterial] = field(default_factory=list)
    destroyed: bool = False

    def set_parent(self, parent: Optional["InMemoryNode"]) -> None:
        if self.parent is not None:
            self.parent.children.remove(self)
        self.parent = parent
        if parent is not None:
            parent.children.append(self)
        self.renderer.record("set_parent", self.name, parent.name if parent else None)

    def set_local_transform(self, transform: "LocalTransform") -> None:
        self.transform = transform
        self.renderer.record("set_local_transform", self.name)

    def set_active(self, active: bool) -> None:
        self.active = active
        self.renderer.record("set_active", self.name, active)

    def set_mesh(self, mesh: InMemoryMesh, materials: Sequence[InMemoryMaterial]) -> None:
        self.mesh = mesh
        self.materials = list(materials)
        self.renderer.record("set_mesh", self.name, mesh.name)

    @property
    def active_in_hierarchy(self) -> bool:
        return self.active and (self.parent is None or self.parent.active_in_hierarchy)

    def walk(self, depth: int = 0) -> Iterator[Tuple[int, "InMemoryNode"]]:
        yield depth, self
        for child in self.children:
            yield from child.walk(depth + 1)


class InMemoryRenderer:
    """Keeps every created object in lists and records each call in `trace`."""

    def __init__(self):
        self.trace: List[RenderCall] = []
        self.nodes: List[InMemoryNode] = []
        self.meshes: List[InMemoryMesh] = []
        self.materials: List[InMemoryMaterial] = []
        self.textures: List[InMemoryTexture] = []
        self._lock = threading.Lock()

    def record(self, op: str, target: str, *args: Any) -> None:
        with self._lock:
            self.trace.append(RenderCall(op=op, target=target, thread_id=threading.get_ident(), args=args))

    def create_node(self, name: str) -> InMemoryNode:
        node = InMemoryNode(name=name, renderer=self)
        self.nodes.append(node)
        self.record("create_node", name)
        return node

    def create_mesh(self, geometry: "MeshGeometry") -> InMemoryMesh:
        mesh = InMemoryMesh(name=geometry.name or "Mesh", geometry=geometry)
        self.meshes.append(mesh)
        self.record("create_mesh", mesh.name)
        return mesh

    def create_material(self, params: "MaterialParams") -> InMemoryMaterial:
        material = InMemoryMaterial(name=params.name, params=params)
        self.materials.append(material)
        self.record("create_material", material.name)
        return material

    def create_texture(self, image: "Image.Image", name: str) -> InMemoryTexture:
        texture = InMemoryTexture(name=name, width=image.width, height=image.height, image=image)
        self.textures.append(texture)
        self.record("create_texture", name)
        return texture

    def destroy(self, handle: Any) -> None:
        handle.destroyed = True
        for pool in (self.nodes, self.meshes, self.materials, self.textures):
            if handle in pool:
                pool.remove(handle)
        if isinstance(handle, InMemoryNode) and handle.parent is not None:
            handle.parent.children.remove(handle)
            handle.parent = None
        self.record("destroy", handle.name)

    @property
    def live_objects(self) -> int:
        return len(self.nodes) + len(self.meshes) + len(self.materials) + len(self.textures)

    def calls(self, op: str) -> List[RenderCall]:
        return [call for call in self.trace if call.op == op]
