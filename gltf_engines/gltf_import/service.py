"""glTF import service: source loading, staged construction, cleanup and restart."""
from __future__ import annotations

import asyncio
import logging
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx
from pydantic import BaseModel, Field

from gltf_engines.common.errors import FormatError, GltfImportError, ImportCancelled, PartialDataWarning, ResolutionError
from gltf_engines.config.runtime_config import get_fetch_timeout, get_load_async_default
from gltf_engines.gltf_import.container import SourceKind, extract_payload, sniff_kind
from gltf_engines.gltf_import.deserializer import deserialize
from gltf_engines.gltf_import.host import HostAssetPipeline, ReprocessRequired
from gltf_engines.gltf_import.materials import construct_material
from gltf_engines.gltf_import.renderer import InMemoryRenderer, Renderer, RendererSession
from gltf_engines.gltf_import.resolver import ReferenceResolver, is_url
from gltf_engines.gltf_import.scene_builder import BuildEvent, SceneGraphBuilder
from gltf_engines.gltf_import.scheduling import CancellationToken, ImportScheduler, ImportStage, run_blocking
from gltf_engines.gltf_import.schema import GltfAsset

logger = logging.getLogger(__name__)

GLTF_SUFFIXES = (".gltf", ".glb")


class GltfImportOptions(BaseModel):
    load_async: Optional[bool] = None
    set_active: bool = True
    only_default_scene: bool = False
    fetch_timeout: Optional[float] = Field(None, gt=0)

    def resolved_load_async(self) -> bool:
        return get_load_async_default() if self.load_async is None else self.load_async

    def resolved_fetch_timeout(self) -> float:
        return self.fetch_timeout or get_fetch_timeout()


@dataclass
class ImportResult:
    root: Any
    asset: GltfAsset
    trace: List[BuildEvent] = field(default_factory=list)
    warnings: List[PartialDataWarning] = field(default_factory=list)
    restarts: int = 0


class GltfImportPipeline:
    """One construction pass over a freshly deserialized graph."""

    def __init__(
        self,
        graph: GltfAsset,
        renderer: Renderer,
        scheduler: ImportScheduler,
        host: Optional[HostAssetPipeline] = None,
        fetch_timeout: Optional[float] = None,
    ):
        self.graph = graph
        self.scheduler = scheduler
        self.session = RendererSession(renderer, scheduler)
        self.resolver = ReferenceResolver(graph, scheduler, self.session, host=host, fetch_timeout=fetch_timeout)
        self.builder = SceneGraphBuilder(graph, self.session, scheduler)

    async def _each(self, count: int, fn: Callable[[int], Awaitable[Any]]) -> None:
        if self.scheduler.load_async:
            # let every sibling settle so nothing is created after cleanup
            results = await asyncio.gather(*(fn(index) for index in range(count)), return_exceptions=True)
            for result in results:
                if isinstance(result, BaseException):
                    raise result
            return
        for index in range(count):
            await fn(index)

    async def construct(self, set_active: bool = True, only_default_scene: bool = False) -> Any:
        self.scheduler.bind_primary()

        await self.scheduler.enter_stage(ImportStage.BUFFER_VIEWS)
        await self._each(len(self.graph.bufferViews), self.resolver.resolve_buffer_view)

        await self.scheduler.enter_stage(ImportStage.TEXTURES)
        await self._each(len(self.graph.textures), self.resolver.resolve_texture)

        await self.scheduler.enter_stage(ImportStage.MATERIALS)
        for index in range(len(self.graph.materials)):
            await construct_material(self.graph, index, self.session, self.scheduler)

        await self.scheduler.enter_stage(ImportStage.SCENES)
        return await self.builder.build(
            set_active=set_active,
            only_default_scene=only_default_scene,
        )

    async def aclose(self) -> None:
        await self.resolver.aclose()
        self.scheduler.close()


# --- Source handling ---

def resolve_source_path(path: str) -> str:
    """Unwrap zip archives next to the archive and pick the first glTF file."""
    if is_url(path):
        return path
    source = Path(path)
    if source.suffix.lower() != ".zip":
        return str(source)

    target = source.with_suffix("")
    if not target.exists():
        try:
            with zipfile.ZipFile(source) as archive:
                archive.extractall(target)
        except FileNotFoundError as exc:
            raise ResolutionError("fetch_failed", f"Archive {source} does not exist", {"path": str(source)}) from exc
        except zipfile.BadZipFile as exc:
            raise FormatError("archive", f"{source} is not a valid zip archive: {exc}") from exc
        logger.info("Extracted %s to %s", source, target)

    candidates = sorted(p for p in target.iterdir() if p.is_file() and p.suffix.lower() in GLTF_SUFFIXES)
    if not candidates:
        raise ResolutionError("no_gltf_in_archive", f"No .gltf or .glb file found in {target}", {"path": str(target)})
    return str(candidates[0])


async def _read_source(location: str, load_async: bool, timeout: float) -> bytes:
    if is_url(location):
        if not load_async:
            raise ResolutionError(
                "network_in_sync_mode",
                f"{location} requires a network fetch, which synchronous loading does not allow",
                {"url": location},
            )
        async with httpx.AsyncClient(timeout=timeout, follow_redirects=True) as client:
            try:
                resp = await client.get(location)
            except httpx.HTTPError as exc:
                raise ResolutionError("fetch_failed", f"Request to {location} failed: {exc}", {"url": location}) from exc
        if resp.status_code >= 400:
            raise ResolutionError(
                "fetch_failed", f"{location} returned {resp.status_code}", {"url": location, "status": resp.status_code}
            )
        return resp.content
    try:
        return Path(location).read_bytes()
    except OSError as exc:
        raise ResolutionError("fetch_failed", f"Cannot read {location}: {exc}", {"path": location}) from exc


def _source_name(location: Optional[str]) -> str:
    if not location:
        return "asset"
    return Path(location.split("?", 1)[0]).stem or "asset"


# --- Import operations ---

async def import_gltf_from_bytes(
    data: bytes,
    renderer: Optional[Renderer] = None,
    options: Optional[GltfImportOptions] = None,
    name: Optional[str] = None,
    uri: Optional[str] = None,
    kind: Optional[SourceKind] = None,
    host: Optional[HostAssetPipeline] = None,
    token: Optional[CancellationToken] = None,
    supported_extensions: Optional[Sequence[str]] = None,
) -> ImportResult:
    """Import a .gltf/.glb payload already held in memory.

    `uri` is the location relative references resolve against. Every renderer
    object created by a failed pass is destroyed before the error propagates.
    A host reprocess request restarts the pass once.
    """
    options = options or GltfImportOptions()
    renderer = renderer if renderer is not None else InMemoryRenderer()
    load_async = options.resolved_load_async()
    name = name or _source_name(uri)
    extensions = None if supported_extensions is None else frozenset(supported_extensions)
    source_kind = kind or sniff_kind(uri, data)

    logger.info("Importing glTF %s (%s, %s)", name, source_kind.value, "async" if load_async else "sync")
    restarts = 0
    while True:
        scheduler = ImportScheduler(load_async, token=token)
        pipeline: Optional[GltfImportPipeline] = None
        try:
            graph = deserialize(extract_payload(data, source_kind), extensions)
            graph.set_source(name, uri, load_async)
            pipeline = GltfImportPipeline(
                graph, renderer, scheduler, host=host, fetch_timeout=options.resolved_fetch_timeout()
            )
            root = await pipeline.construct(
                set_active=options.set_active,
                only_default_scene=options.only_default_scene,
            )
        except ReprocessRequired as exc:
            if pipeline is not None:
                pipeline.session.cleanup()
            if restarts:
                logger.error("glTF import of %s failed: host reprocess requested twice", name)
                raise ResolutionError(
                    "reprocess_loop", f"Host asset {exc.path} still requires reprocessing", {"path": exc.path}
                ) from exc
            restarts += 1
            logger.info("Restarting import of %s after host reprocess of %s", name, exc.path)
            continue
        except ImportCancelled as exc:
            destroyed = pipeline.session.cleanup() if pipeline is not None else 0
            logger.warning("glTF import of %s cancelled (%s); destroyed %d objects", name, exc.message, destroyed)
            raise
        except GltfImportError as exc:
            destroyed = pipeline.session.cleanup() if pipeline is not None else 0
            logger.error("glTF import of %s failed: %s (destroyed %d objects)", name, exc, destroyed)
            raise
        except Exception:
            if pipeline is not None:
                pipeline.session.cleanup()
            logger.exception("glTF import of %s failed unexpectedly", name)
            raise
        finally:
            if pipeline is not None:
                await pipeline.aclose()
            else:
                scheduler.close()

        pipeline.session.release()
        logger.info(
            "Imported glTF %s: %d nodes, %d warnings", name, len(graph.nodes), len(graph.warnings)
        )
        return ImportResult(
            root=root,
            asset=graph,
            trace=list(pipeline.builder.trace),
            warnings=list(graph.warnings),
            restarts=restarts,
        )


async def import_gltf_from_path(
    path: str,
    renderer: Optional[Renderer] = None,
    options: Optional[GltfImportOptions] = None,
    host: Optional[HostAssetPipeline] = None,
    token: Optional[CancellationToken] = None,
) -> ImportResult:
    options = options or GltfImportOptions()
    load_async = options.resolved_load_async()
    location = resolve_source_path(path)
    data = await _read_source(location, load_async, options.resolved_fetch_timeout())
    return await import_gltf_from_bytes(
        data,
        renderer=renderer,
        options=options,
        name=_source_name(location),
        uri=location,
        host=host,
        token=token,
    )


def _sync_options(options: Optional[GltfImportOptions]) -> GltfImportOptions:
    return (options or GltfImportOptions()).model_copy(update={"load_async": False})


def import_gltf_from_path_sync(
    path: str,
    renderer: Optional[Renderer] = None,
    options: Optional[GltfImportOptions] = None,
    host: Optional[HostAssetPipeline] = None,
    token: Optional[CancellationToken] = None,
) -> ImportResult:
    """Import on the calling thread; every resource must be local."""
    return run_blocking(
        import_gltf_from_path(path, renderer=renderer, options=_sync_options(options), host=host, token=token)
    )


def import_gltf_from_bytes_sync(data: bytes, renderer: Optional[Renderer] = None, options: Optional[GltfImportOptions] = None, **kwargs: Any) -> ImportResult:
    return run_blocking(import_gltf_from_bytes(data, renderer=renderer, options=_sync_options(options), **kwargs))


def summarize_node(node: Any) -> Dict[str, Any]:
    """JSON-friendly view of an in-memory node hierarchy."""
    summary: Dict[str, Any] = {
        "name": node.name,
        "active": node.active,
        "children": [summarize_node(child) for child in node.children],
    }
    if node.transform is not None:
        summary["transform"] = node.transform.model_dump()
    if node.mesh is not None:
        summary["mesh"] = {
            "name": node.mesh.name,
            "vertex_count": node.mesh.vertex_count,
            "materials": [material.name for material in node.materials],
        }
    return summary
