"""Stage ordering, thread affinity and cancellation for an import pipeline.

Two affinities exist. PRIMARY work touches renderer-owned objects and always
runs on the thread driving the import (the event loop thread in async mode).
BACKGROUND work is CPU bound decode/fetch work and runs on a worker pool in
async mode. In synchronous mode every call runs inline and no coroutine ever
suspends, so `run_blocking` can drive the whole pipeline on the caller's
thread.
"""
from __future__ import annotations

import asyncio
import concurrent.futures
import functools
import logging
import threading
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

from gltf_engines.common.errors import ImportCancelled
from gltf_engines.config.runtime_config import get_background_workers

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Affinity(str, Enum):
    PRIMARY = "primary"
    BACKGROUND = "background"


class ImportStage(str, Enum):
    BUFFER_VIEWS = "buffer_views"
    TEXTURES = "textures"
    MATERIALS = "materials"
    SCENES = "scenes"


# Stages run strictly in this order; each stage's bulk work runs on one affinity.
STAGE_ORDER = (
    ImportStage.BUFFER_VIEWS,
    ImportStage.TEXTURES,
    ImportStage.MATERIALS,
    ImportStage.SCENES,
)

STAGE_AFFINITY: Dict[ImportStage, Affinity] = {
    ImportStage.BUFFER_VIEWS: Affinity.BACKGROUND,
    ImportStage.TEXTURES: Affinity.BACKGROUND,
    ImportStage.MATERIALS: Affinity.PRIMARY,
    ImportStage.SCENES: Affinity.PRIMARY,
}


class CancellationToken:
    """Thread-safe flag checked at every stage boundary."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self, stage: str) -> None:
        if self._event.is_set():
            raise ImportCancelled(stage)


class ImportScheduler:
    def __init__(
        self,
        load_async: bool,
        token: Optional[CancellationToken] = None,
        max_workers: Optional[int] = None,
    ):
        self.load_async = load_async
        self.token = token or CancellationToken()
        self._max_workers = max_workers or get_background_workers()
        self._executor: Optional[concurrent.futures.ThreadPoolExecutor] = None
        self._primary_thread: Optional[int] = None
        self._stage: Optional[ImportStage] = None

    @property
    def stage(self) -> Optional[ImportStage]:
        return self._stage

    def _get_executor(self) -> concurrent.futures.ThreadPoolExecutor:
        if self._executor is None:
            self._executor = concurrent.futures.ThreadPoolExecutor(
                max_workers=self._max_workers, thread_name_prefix="gltf-background"
            )
        return self._executor

    def bind_primary(self) -> None:
        """Record the current thread as the primary context."""
        self._primary_thread = threading.get_ident()

    def is_primary_thread(self) -> bool:
        return self._primary_thread is None or threading.get_ident() == self._primary_thread

    async def run(self, affinity: Affinity, fn: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        if not self.load_async:
            return fn(*args, **kwargs)
        if affinity is Affinity.BACKGROUND:
            loop = asyncio.get_running_loop()
            return await loop.run_in_executor(self._get_executor(), functools.partial(fn, *args, **kwargs))
        if not self.is_primary_thread():
            raise RuntimeError("Primary affinity work must be driven from the primary thread")
        # hand-off point: let other primary work interleave
        await asyncio.sleep(0)
        return fn(*args, **kwargs)

    async def io(self, awaitable: Awaitable[T]) -> T:
        """Suspend on an I/O coroutine (async mode only)."""
        if not self.load_async:
            raise RuntimeError("I/O suspension requested while loading synchronously")
        return await awaitable

    async def enter_stage(self, stage: ImportStage) -> None:
        self.token.raise_if_cancelled(stage.value)
        if self._stage is not None and STAGE_ORDER.index(stage) < STAGE_ORDER.index(self._stage):
            raise RuntimeError(f"Stage {stage.value} cannot run after {self._stage.value}")
        self._stage = stage
        logger.debug("gltf import entering stage %s (%s)", stage.value, STAGE_AFFINITY[stage].value)
        if self.load_async:
            await asyncio.sleep(0)

    def checkpoint(self, where: str) -> None:
        self.token.raise_if_cancelled(where)

    def close(self) -> None:
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None


def run_blocking(coro: Awaitable[T]) -> T:
    """Drive a coroutine that never suspends to completion on this thread."""
    try:
        coro.send(None)
    except StopIteration as stop:
        return stop.value
    coro.close()
    raise RuntimeError("Synchronous import suspended; all resources must be available locally")
