"""Runtime configuration helpers for the glTF engines."""
from __future__ import annotations

import os
from typing import FrozenSet, Optional

SUPPORTED_EXTENSIONS: FrozenSet[str] = frozenset({"KHR_materials_pbrSpecularGlossiness"})

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(name, default)


def _get_bool(name: str, default: bool) -> bool:
    raw = (_get_env(name) or "").strip().lower()
    if raw in _TRUTHY:
        return True
    if raw in _FALSY:
        return False
    return default


def get_load_async_default() -> bool:
    """Async loading is the default outside import-time tooling."""
    return _get_bool("GLTF_LOAD_ASYNC", True)


def get_fetch_timeout() -> float:
    raw = _get_env("GLTF_FETCH_TIMEOUT")
    try:
        value = float(raw) if raw else 30.0
    except ValueError:
        value = 30.0
    return value if value > 0 else 30.0


def get_background_workers() -> int:
    raw = _get_env("GLTF_BACKGROUND_WORKERS")
    try:
        value = int(raw) if raw else 4
    except ValueError:
        value = 4
    return max(1, value)


def get_supported_extensions() -> FrozenSet[str]:
    """Built-in extensions plus any comma separated GLTF_SUPPORTED_EXTENSIONS."""
    extra = _get_env("GLTF_SUPPORTED_EXTENSIONS") or ""
    names = {name.strip() for name in extra.split(",") if name.strip()}
    return SUPPORTED_EXTENSIONS | frozenset(names)
