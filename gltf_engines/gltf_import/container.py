"""GLB container framing and JSON payload extraction."""
from __future__ import annotations

import logging
import struct
from dataclasses import dataclass
from enum import Enum
from pathlib import PurePosixPath
from typing import Optional

from gltf_engines.common.errors import FormatError

logger = logging.getLogger(__name__)

# --- Constants ---
GLB_MAGIC = 0x46546C67
GLB_VERSION = 2
CHUNK_JSON = 0x4E4F534A
CHUNK_BIN = 0x004E4942

HEADER_SIZE = 12
CHUNK_HEADER_SIZE = 8
# BIN chunks are padded to a 4 byte boundary
MAX_BIN_PADDING = 3


class SourceKind(str, Enum):
    JSON = "gltf"
    BINARY = "glb"


@dataclass
class ExtractedPayload:
    json_text: str
    bin_chunk: Optional[bytes] = None
    kind: SourceKind = SourceKind.JSON


def sniff_kind(name: Optional[str], data: bytes) -> SourceKind:
    """Pick the container kind from the file suffix, falling back to the magic."""
    if name:
        suffix = PurePosixPath(name.split("?", 1)[0]).suffix.lower()
        if suffix == ".glb":
            return SourceKind.BINARY
        if suffix == ".gltf":
            return SourceKind.JSON
    if len(data) >= 4 and struct.unpack_from("<I", data, 0)[0] == GLB_MAGIC:
        return SourceKind.BINARY
    return SourceKind.JSON


def extract_payload(data: bytes, kind: SourceKind) -> ExtractedPayload:
    if kind == SourceKind.BINARY:
        return _extract_glb(data)
    try:
        text = data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise FormatError("encoding", f"glTF JSON is not valid UTF-8: {exc}") from exc
    return ExtractedPayload(json_text=text, bin_chunk=None, kind=SourceKind.JSON)


def _extract_glb(data: bytes) -> ExtractedPayload:
    actual_length = len(data)
    if actual_length < HEADER_SIZE:
        raise FormatError("total_length", f"GLB header truncated ({actual_length} bytes)")

    magic, version, total_length = struct.unpack_from("<III", data, 0)
    if magic != GLB_MAGIC:
        raise FormatError("magic", f"Not a GLB container (magic 0x{magic:08X})")
    if version != GLB_VERSION:
        raise FormatError("version", f"Unsupported GLB version {version}, expected {GLB_VERSION}")
    if total_length != actual_length:
        raise FormatError(
            "total_length",
            f"GLB header declares {total_length} bytes but {actual_length} were supplied",
            {"declared": total_length, "actual": actual_length},
        )

    json_bytes = _read_chunk(data, HEADER_SIZE, 0, CHUNK_JSON, "chunk0_type")
    offset = HEADER_SIZE + CHUNK_HEADER_SIZE + len(json_bytes)

    bin_chunk: Optional[bytes] = None
    if offset + CHUNK_HEADER_SIZE <= actual_length:
        bin_chunk = _read_chunk(data, offset, 1, CHUNK_BIN, "chunk1_type")
        offset += CHUNK_HEADER_SIZE + len(bin_chunk)
    elif offset != actual_length:
        raise FormatError("chunk_length", f"Trailing {actual_length - offset} bytes after JSON chunk")

    if offset < actual_length:
        logger.warning("Ignoring %d bytes of extra GLB chunks", actual_length - offset)

    try:
        text = json_bytes.decode("utf-8").rstrip(" \x00")
    except UnicodeDecodeError as exc:
        raise FormatError("encoding", f"GLB JSON chunk is not valid UTF-8: {exc}") from exc
    return ExtractedPayload(json_text=text, bin_chunk=bin_chunk, kind=SourceKind.BINARY)


def _read_chunk(data: bytes, offset: int, index: int, expected_type: int, type_reason: str) -> bytes:
    if offset + CHUNK_HEADER_SIZE > len(data):
        raise FormatError("chunk_length", f"GLB chunk {index} header truncated")
    chunk_length, chunk_type = struct.unpack_from("<II", data, offset)
    if chunk_type != expected_type:
        raise FormatError(
            type_reason,
            f"Expected chunk {index} type 0x{expected_type:08X}, found 0x{chunk_type:08X}",
        )
    start = offset + CHUNK_HEADER_SIZE
    end = start + chunk_length
    if end > len(data):
        raise FormatError(
            "chunk_length",
            f"GLB chunk {index} declares {chunk_length} bytes but only {len(data) - start} remain",
        )
    return data[start:end]


def trim_bin_chunk(bin_chunk: bytes, declared_length: int) -> bytes:
    """Match the BIN chunk against buffer 0 and drop alignment padding."""
    actual = len(bin_chunk)
    if actual < declared_length or actual - declared_length > MAX_BIN_PADDING:
        raise FormatError(
            "bin_length",
            f"Buffer 0 declares {declared_length} bytes but the BIN chunk holds {actual}",
            {"declared": declared_length, "actual": actual},
        )
    return bin_chunk[:declared_length]
