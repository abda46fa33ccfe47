"""Host asset pipeline contract.

The host (an editor or asset database) may already own external images that a
glTF document references. Those must be readable before their pixels can be
repacked; marking one readable invalidates the current construction pass.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Protocol

from gltf_engines.common.errors import GltfImportError


@dataclass
class HostAsset:
    path: str
    readable: bool = True


class HostAssetPipeline(Protocol):
    def find_asset(self, path: str) -> Optional[HostAsset]: ...

    def mark_readable(self, path: str) -> None: ...

    def request_reimport(self, path: str) -> None: ...


class ReprocessRequired(GltfImportError):
    """Raised when the host had to change an asset; the pass must restart."""

    code_prefix = "gltf.import"

    def __init__(self, path: str):
        super().__init__("reprocess_required", f"Host asset {path} was made readable", {"path": path})
        self.path = path


@dataclass
class InMemoryHostPipeline:
    """Dictionary backed host used by tooling and tests."""

    assets: Dict[str, HostAsset] = field(default_factory=dict)
    reimported: List[str] = field(default_factory=list)

    def register(self, path: str, readable: bool = True) -> HostAsset:
        asset = HostAsset(path=path, readable=readable)
        self.assets[path] = asset
        return asset

    def find_asset(self, path: str) -> Optional[HostAsset]:
        return self.assets.get(path)

    def mark_readable(self, path: str) -> None:
        self.assets[path].readable = True

    def request_reimport(self, path: str) -> None:
        self.reimported.append(path)
