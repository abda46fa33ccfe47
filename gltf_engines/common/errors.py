"""Error taxonomy shared by the glTF import engines.

FormatError      -> malformed container or schema, always fatal, never retried.
ResolutionError  -> a referenced resource could not be fetched or located.
ImportCancelled  -> the caller cancelled the import at a stage boundary.
PartialDataWarning -> degraded feature, logged, import continues.
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class GltfImportError(Exception):
    """Base class for every caller-visible import failure."""

    code_prefix = "gltf"

    def __init__(self, reason: str, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.reason = reason
        self.message = message
        self.details = details or {}

    @property
    def code(self) -> str:
        return f"{self.code_prefix}.{self.reason}"

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"


class FormatError(GltfImportError):
    code_prefix = "gltf.format"


class ResolutionError(GltfImportError):
    code_prefix = "gltf.resolution"


class ImportCancelled(GltfImportError):
    code_prefix = "gltf.import"

    def __init__(self, stage: str):
        super().__init__("cancelled", f"Import cancelled during {stage}", {"stage": stage})


class PartialDataWarning(UserWarning):
    """A feature could not be honoured; the import carries on without it."""

    def __init__(self, reason: str, message: str):
        super().__init__(message)
        self.reason = reason
        self.message = message

    def __str__(self) -> str:
        return f"{self.reason}: {self.message}"


__all__ = [
    "GltfImportError",
    "FormatError",
    "ResolutionError",
    "ImportCancelled",
    "PartialDataWarning",
]
