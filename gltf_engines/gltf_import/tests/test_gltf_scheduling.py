"""Tests for stage ordering, affinity and blocking execution."""
import asyncio
import threading

import pytest

from gltf_engines.common.errors import ImportCancelled
from gltf_engines.gltf_import.scheduling import (
    Affinity,
    CancellationToken,
    ImportScheduler,
    ImportStage,
    run_blocking,
)


def test_sync_mode_runs_inline():
    scheduler = ImportScheduler(load_async=False)

    async def work():
        await scheduler.enter_stage(ImportStage.BUFFER_VIEWS)
        background = await scheduler.run(Affinity.BACKGROUND, threading.get_ident)
        primary = await scheduler.run(Affinity.PRIMARY, threading.get_ident)
        return background, primary

    assert run_blocking(work()) == (threading.get_ident(), threading.get_ident())


def test_async_background_uses_worker_pool():
    scheduler = ImportScheduler(load_async=True, max_workers=2)

    async def work():
        scheduler.bind_primary()
        background = await scheduler.run(Affinity.BACKGROUND, threading.get_ident)
        primary = await scheduler.run(Affinity.PRIMARY, threading.get_ident)
        return background, primary

    try:
        background, primary = asyncio.run(work())
    finally:
        scheduler.close()
    assert primary == threading.get_ident()
    assert background != primary


def test_stages_cannot_run_backwards():
    scheduler = ImportScheduler(load_async=False)
    run_blocking(scheduler.enter_stage(ImportStage.MATERIALS))
    assert scheduler.stage == ImportStage.MATERIALS
    with pytest.raises(RuntimeError):
        run_blocking(scheduler.enter_stage(ImportStage.TEXTURES))


def test_cancellation_at_stage_boundary():
    token = CancellationToken()
    scheduler = ImportScheduler(load_async=False, token=token)
    run_blocking(scheduler.enter_stage(ImportStage.BUFFER_VIEWS))
    token.cancel()
    with pytest.raises(ImportCancelled) as exc:
        run_blocking(scheduler.enter_stage(ImportStage.TEXTURES))
    assert exc.value.details == {"stage": "textures"}


def test_run_blocking_rejects_suspension():
    async def suspends():
        await asyncio.sleep(0)

    with pytest.raises(RuntimeError):
        run_blocking(suspends())


def test_io_refused_in_sync_mode():
    scheduler = ImportScheduler(load_async=False)

    async def noop():
        return 1

    pending = noop()
    with pytest.raises(RuntimeError):
        run_blocking(scheduler.io(pending))
    pending.close()


def test_close_joins_background_workers():
    scheduler = ImportScheduler(load_async=True, max_workers=2)

    async def work():
        scheduler.bind_primary()
        return await scheduler.run(Affinity.BACKGROUND, sum, [1, 2, 3])

    assert asyncio.run(work()) == 6
    executor = scheduler._executor
    scheduler.close()
    assert scheduler._executor is None
    assert all(not thread.is_alive() for thread in executor._threads)
