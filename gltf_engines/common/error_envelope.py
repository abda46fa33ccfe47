"""Canonical error envelope for glTF engine responses.

Standardized structure:
{
  "error": {
    "code": "string",
    "message": "string",
    "http_status": 422,
    "resource_kind": "string | null",
    "details": {}
  }
}
"""
from __future__ import annotations

from typing import Any, Dict, Optional

from fastapi import HTTPException
from pydantic import BaseModel, Field

from gltf_engines.common.errors import FormatError, GltfImportError, ImportCancelled, ResolutionError


class ErrorDetail(BaseModel):
    """Canonical error detail structure."""
    code: str
    message: str
    http_status: int
    resource_kind: Optional[str] = None
    details: Dict[str, Any] = Field(default_factory=dict)


class ErrorEnvelope(BaseModel):
    """Top-level error envelope returned by glTF endpoints."""
    error: ErrorDetail


def build_error_envelope(
    code: str,
    message: str,
    status_code: int = 400,
    resource_kind: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> ErrorEnvelope:
    """Construct an ErrorEnvelope (without raising)."""
    error_detail = ErrorDetail(
        code=code,
        message=message,
        http_status=status_code,
        resource_kind=resource_kind,
        details=details or {},
    )
    return ErrorEnvelope(error=error_detail)


def error_response(
    code: str,
    message: str,
    status_code: int = 400,
    resource_kind: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
) -> HTTPException:
    """Construct and raise a standardized error response.

    Args:
        code: Machine-readable error code (e.g., "gltf.format.magic")
        message: Human-readable error message
        status_code: HTTP status code (default 400)
        resource_kind: The resource type (gltf_asset, buffer, image...)
        details: Additional context dict

    Raises:
        HTTPException with canonical error envelope body
    """
    envelope = build_error_envelope(
        code=code,
        message=message,
        status_code=status_code,
        resource_kind=resource_kind,
        details=details,
    )
    raise HTTPException(status_code=status_code, detail=envelope.model_dump())


def status_for_import_error(exc: GltfImportError) -> int:
    if isinstance(exc, FormatError):
        return 422
    if isinstance(exc, ResolutionError):
        return 424
    if isinstance(exc, ImportCancelled):
        return 409
    return 500


def import_error_response(exc: GltfImportError, resource_kind: str = "gltf_asset") -> HTTPException:
    """Raise the envelope matching an import failure."""
    return error_response(
        code=exc.code,
        message=exc.message,
        status_code=status_for_import_error(exc),
        resource_kind=resource_kind,
        details=exc.details,
    )
