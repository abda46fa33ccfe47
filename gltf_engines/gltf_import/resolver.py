"""Lazy resolution of buffers, buffer views, images and textures."""
from __future__ import annotations

import asyncio
import base64
import io
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Set
from urllib.parse import unquote, unquote_to_bytes, urljoin, urlparse

import httpx
from PIL import Image, UnidentifiedImageError

from gltf_engines.common.errors import FormatError, ResolutionError
from gltf_engines.config.runtime_config import get_fetch_timeout
from gltf_engines.gltf_import.deserializer import record_warning
from gltf_engines.gltf_import.host import HostAssetPipeline, ReprocessRequired
from gltf_engines.gltf_import.renderer import RendererSession
from gltf_engines.gltf_import.scheduling import Affinity, ImportScheduler
from gltf_engines.gltf_import.schema import GltfAsset

logger = logging.getLogger(__name__)


def is_url(location: Optional[str]) -> bool:
    return bool(location) and urlparse(location).scheme in ("http", "https")


def decode_data_uri(uri: str) -> bytes:
    header, _, encoded = uri.partition(",")
    if ";base64" in header:
        try:
            return base64.b64decode(encoded, validate=False)
        except ValueError as exc:
            raise FormatError("data_uri", f"Malformed base64 data URI: {exc}") from exc
    return unquote_to_bytes(encoded)


def decode_image(data: bytes, where: str) -> Image.Image:
    try:
        image = Image.open(io.BytesIO(data))
        image.load()
    except (UnidentifiedImageError, OSError) as exc:
        raise ResolutionError("image_decode", f"{where} could not be decoded: {exc}") from exc
    return image.convert("RGBA")


def read_local_file(path: Path, where: str) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise ResolutionError("fetch_failed", f"{where}: cannot read {path}: {exc}", {"path": str(path)}) from exc


class ReferenceResolver:
    """Resolves cross references of one asset graph.

    Every buffer payload is fetched at most once. Concurrent decodes that
    reference the same buffer wait on the same per-buffer lock and observe the
    payload written by the first resolution.
    """

    def __init__(
        self,
        graph: GltfAsset,
        scheduler: ImportScheduler,
        session: RendererSession,
        host: Optional[HostAssetPipeline] = None,
        fetch_timeout: Optional[float] = None,
    ):
        self.graph = graph
        self.scheduler = scheduler
        self.session = session
        self.host = host
        self.fetch_timeout = fetch_timeout or get_fetch_timeout()
        self._locks: Dict[int, asyncio.Lock] = {}
        self._image_locks: Dict[int, asyncio.Lock] = {}
        self._attempted: Set[int] = set()
        self._client: Optional[httpx.AsyncClient] = None

    # --- Locations ---

    def locate(self, uri: str) -> str:
        """Absolute location of a URI relative to the document."""
        if uri.startswith("data:") or is_url(uri):
            return uri
        base = self.graph.uri
        if base is None:
            raise ResolutionError("no_base_uri", f"Relative uri {uri!r} cannot be resolved without a source location")
        if is_url(base):
            return urljoin(base, uri)
        return str(Path(base).parent / unquote(uri))

    async def load_uri(self, uri: str, where: str) -> bytes:
        if uri.startswith("data:"):
            return decode_data_uri(uri)
        location = self.locate(uri)
        if is_url(location):
            return await self.fetch(location, where)
        return await self.scheduler.run(Affinity.BACKGROUND, read_local_file, Path(location), where)

    async def fetch(self, url: str, where: str) -> bytes:
        if not self.scheduler.load_async:
            raise ResolutionError(
                "network_in_sync_mode",
                f"{where}: {url} requires a network fetch, which synchronous loading does not allow",
                {"url": url},
            )
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.fetch_timeout, follow_redirects=True)
        try:
            resp = await self.scheduler.io(self._client.get(url))
        except httpx.HTTPError as exc:
            raise ResolutionError("fetch_failed", f"{where}: request to {url} failed: {exc}", {"url": url}) from exc
        if resp.status_code >= 400:
            raise ResolutionError(
                "fetch_failed",
                f"{where}: {url} returned {resp.status_code}",
                {"url": url, "status": resp.status_code},
            )
        return resp.content

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    # --- Buffers ---

    async def resolve_buffer(self, index: int) -> bytes:
        buffer = self.graph.item("buffers", index)
        lock = self._locks.setdefault(index, asyncio.Lock())
        async with lock:
            if buffer.is_resolved:
                return buffer.data
            if index in self._attempted:
                raise ResolutionError("buffer_unavailable", f"buffers[{index}] failed to resolve earlier")
            self._attempted.add(index)
            if buffer.uri is None:
                raise ResolutionError("buffer_unavailable", f"buffers[{index}] has neither a uri nor embedded data")

            where = f"buffers[{index}]"
            payload = await self.load_uri(buffer.uri, where)
            if len(payload) < buffer.byteLength:
                raise ResolutionError(
                    "buffer_length",
                    f"{where} declares {buffer.byteLength} bytes but {len(payload)} were loaded",
                    {"declared": buffer.byteLength, "actual": len(payload)},
                )
            buffer.set_data(payload[: buffer.byteLength])
            logger.debug("Resolved %s (%d bytes)", where, buffer.byteLength)
            return buffer.data

    async def resolve_buffer_view(self, index: int) -> memoryview:
        view = self.graph.item("bufferViews", index)
        if view.data is not None:
            return view.data
        payload = await self.resolve_buffer(view.buffer)
        end = view.byteOffset + view.byteLength
        if end > len(payload):
            raise FormatError(
                "buffer_view_range",
                f"bufferViews[{index}] spans bytes {view.byteOffset}..{end} of a {len(payload)} byte buffer",
                {"bufferView": index, "end": end, "buffer_length": len(payload)},
            )
        view.bind(memoryview(payload)[view.byteOffset:end])
        return view.data

    # --- Images / textures ---

    def _check_host_readable(self, location: str) -> None:
        if self.host is None or is_url(location):
            return
        asset = self.host.find_asset(location)
        if asset is None or asset.readable:
            return
        logger.info("Marking host asset %s readable and requesting reprocess", location)
        self.host.mark_readable(location)
        self.host.request_reimport(location)
        raise ReprocessRequired(location)

    async def resolve_image(self, index: int) -> Image.Image:
        image = self.graph.item("images", index)
        if image.image is not None:
            return image.image

        where = f"images[{index}]"
        if image.uri is not None:
            if not image.uri.startswith("data:"):
                self._check_host_readable(self.locate(image.uri))
            data = await self.load_uri(image.uri, where)
        elif image.bufferView is not None:
            data = bytes(await self.resolve_buffer_view(image.bufferView))
        else:
            raise FormatError("image_source", f"{where} defines neither a uri nor a bufferView")

        image._image = await self.scheduler.run(Affinity.BACKGROUND, decode_image, data, where)
        return image.image

    async def resolve_texture(self, index: int) -> Any:
        texture = self.graph.item("textures", index)
        if texture.texture is not None:
            return texture.texture
        if texture.source is None:
            record_warning(self.graph, "texture_source", f"textures[{index}] has no image source")
            return None

        image = self.graph.item("images", texture.source)
        # textures sharing an image share one renderer texture
        lock = self._image_locks.setdefault(texture.source, asyncio.Lock())
        async with lock:
            if image.texture is None:
                decoded = await self.resolve_image(texture.source)
                name = texture.name or image.name or f"Texture_{index}"
                image._texture = await self.session.create_texture(decoded, name)
        texture._texture = image.texture
        return texture.texture
