"""HTTP routes for the glTF import engine."""
from __future__ import annotations

from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from gltf_engines.common.error_envelope import error_response, import_error_response
from gltf_engines.common.errors import GltfImportError
from gltf_engines.gltf_import.container import SourceKind
from gltf_engines.gltf_import.renderer import InMemoryRenderer
from gltf_engines.gltf_import.service import GltfImportOptions, import_gltf_from_bytes, summarize_node

router = APIRouter(prefix="/gltf", tags=["gltf"])


class GltfWarningSummary(BaseModel):
    reason: str
    message: str


class GltfImportSummary(BaseModel):
    name: str
    generator: Optional[str] = None
    node_count: int
    mesh_count: int
    material_count: int
    texture_count: int
    root: Dict[str, Any]
    warnings: List[GltfWarningSummary] = Field(default_factory=list)


@router.get("/health")
def health() -> dict:
    return {"status": "ok"}


@router.post("/import", response_model=GltfImportSummary)
async def import_asset(
    request: Request,
    format: Optional[SourceKind] = Query(None),
    name: str = Query("upload"),
    set_active: bool = Query(True),
    only_default_scene: bool = Query(False),
) -> GltfImportSummary:
    data = await request.body()
    if not data:
        error_response(
            code="gltf.request.empty_body",
            message="Request body must contain a .gltf or .glb payload",
            status_code=400,
            resource_kind="gltf_asset",
        )

    renderer = InMemoryRenderer()
    options = GltfImportOptions(load_async=True, set_active=set_active, only_default_scene=only_default_scene)
    try:
        result = await import_gltf_from_bytes(data, renderer=renderer, options=options, name=name, kind=format)
    except GltfImportError as exc:
        import_error_response(exc)

    return GltfImportSummary(
        name=result.asset.name,
        generator=result.asset.asset.generator,
        node_count=len(renderer.nodes),
        mesh_count=len(renderer.meshes),
        material_count=len(renderer.materials),
        texture_count=len(renderer.textures),
        root=summarize_node(result.root),
        warnings=[GltfWarningSummary(reason=w.reason, message=w.message) for w in result.warnings],
    )
