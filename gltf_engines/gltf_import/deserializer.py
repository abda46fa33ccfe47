"""JSON payload -> typed asset graph."""
from __future__ import annotations

import json
import logging
from typing import AbstractSet, Optional

from pydantic import ValidationError

from gltf_engines.common.errors import FormatError, PartialDataWarning
from gltf_engines.config.runtime_config import get_supported_extensions
from gltf_engines.gltf_import.container import ExtractedPayload, trim_bin_chunk
from gltf_engines.gltf_import.schema import MATERIAL_EXTENSIONS, GltfAsset

logger = logging.getLogger(__name__)


def record_warning(graph: GltfAsset, reason: str, message: str) -> PartialDataWarning:
    warning = PartialDataWarning(reason, message)
    graph.warnings.append(warning)
    logger.warning("glTF %s: %s", graph.name or "asset", warning)
    return warning


def deserialize(
    payload: ExtractedPayload,
    supported_extensions: Optional[AbstractSet[str]] = None,
) -> GltfAsset:
    """Parse and validate the JSON payload, then bind the embedded BIN chunk."""
    supported = get_supported_extensions() if supported_extensions is None else supported_extensions

    try:
        document = json.loads(payload.json_text)
    except json.JSONDecodeError as exc:
        raise FormatError("json", f"glTF JSON could not be parsed: {exc}") from exc
    if not isinstance(document, dict):
        raise FormatError("json", "glTF JSON root must be an object")

    try:
        graph = GltfAsset.model_validate(document)
    except ValidationError as exc:
        raise FormatError(
            "schema",
            f"glTF JSON does not match the 2.0 schema ({exc.error_count()} errors)",
            {"errors": [f"{'.'.join(str(p) for p in e['loc'])}: {e['msg']}" for e in exc.errors()[:10]]},
        ) from exc

    if not graph.asset.version.startswith("2."):
        raise FormatError("asset_version", f"Expected glTF 2.0, asset declares {graph.asset.version}")

    unsupported_required = [name for name in graph.extensionsRequired if name not in supported]
    if unsupported_required:
        raise FormatError(
            "extension_required",
            f"Required extension unsupported: {', '.join(unsupported_required)}",
            {"extensions": unsupported_required},
        )
    for name in graph.extensionsUsed:
        if name not in supported:
            record_warning(graph, "extension_used", f"Unsupported extension {name} ignored")

    _bind_primitive_attributes(graph)
    _register_extensions(graph, supported)
    _bind_bin_chunk(graph, payload.bin_chunk)
    return graph


def _bind_primitive_attributes(graph: GltfAsset) -> None:
    declared = sum(len(mesh.primitives) for mesh in graph.meshes)
    bound = sum(1 for mesh in graph.meshes for prim in mesh.primitives if prim.attributes is not None)
    if declared != bound:
        raise FormatError(
            "primitive_attributes",
            f"{declared} mesh primitives declared but {bound} attribute blocks found",
            {"declared": declared, "bound": bound},
        )


def _register_extensions(graph: GltfAsset, supported: AbstractSet[str]) -> None:
    for index, material in enumerate(graph.materials):
        for name, block in material.extensions.items():
            record_type = MATERIAL_EXTENSIONS.get(name)
            if record_type is None or name not in supported:
                continue
            try:
                record = record_type.model_validate(block)
            except ValidationError as exc:
                raise FormatError("schema", f"materials[{index}].extensions.{name} is invalid: {exc}") from exc
            material.extension_records[name] = record
            graph.registered_extensions.append(record)


def _bind_bin_chunk(graph: GltfAsset, bin_chunk: Optional[bytes]) -> None:
    for index, buffer in enumerate(graph.buffers):
        if buffer.uri is not None:
            continue
        if index == 0 and bin_chunk is not None:
            buffer.set_data(trim_bin_chunk(bin_chunk, buffer.byteLength))
            continue
        raise FormatError(
            "missing_bin_chunk",
            f"buffers[{index}] has no uri and no embedded BIN chunk backs it",
            {"buffer": index},
        )
    if bin_chunk is not None and (not graph.buffers or graph.buffers[0].uri is not None):
        record_warning(graph, "unused_bin_chunk", "GLB BIN chunk is not referenced by buffers[0]")
