"""glTF 2.0 import engine - container parsing through renderer hierarchy."""

from .container import SourceKind, extract_payload, sniff_kind
from .deserializer import deserialize
from .renderer import InMemoryRenderer, Renderer, RendererSession
from .scheduling import Affinity, CancellationToken, ImportScheduler, ImportStage
from .service import (
    GltfImportOptions,
    ImportResult,
    import_gltf_from_bytes,
    import_gltf_from_bytes_sync,
    import_gltf_from_path,
    import_gltf_from_path_sync,
    resolve_source_path,
)
from .routes import router

__all__ = [
    "SourceKind",
    "extract_payload",
    "sniff_kind",
    "deserialize",
    "InMemoryRenderer",
    "Renderer",
    "RendererSession",
    "Affinity",
    "CancellationToken",
    "ImportScheduler",
    "ImportStage",
    "GltfImportOptions",
    "ImportResult",
    "import_gltf_from_bytes",
    "import_gltf_from_bytes_sync",
    "import_gltf_from_path",
    "import_gltf_from_path_sync",
    "resolve_source_path",
    "router",
]
