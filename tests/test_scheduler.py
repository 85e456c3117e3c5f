from types import SimpleNamespace

import pytest

from upnext.progress import ProgressTracker, SyncPhase, SyncProgress
from upnext.scheduler import (
    JOB_ID, create_scheduler, get_next_run_time, scheduled_sync, start_scheduler, stop_scheduler,
    update_schedule
)


@pytest.mark.asyncio
async def test_update_schedule_adds_and_removes_job():
    scheduler = create_scheduler()
    start_scheduler(scheduler)
    try:
        update_schedule(scheduler, SimpleNamespace(), 6)
        assert scheduler.get_job(JOB_ID) is not None
        assert get_next_run_time(scheduler) is not None

        update_schedule(scheduler, SimpleNamespace(), 12)
        assert len(scheduler.get_jobs()) == 1

        update_schedule(scheduler, SimpleNamespace(), 0)
        assert get_next_run_time(scheduler) is None
    finally:
        stop_scheduler(scheduler)
    assert not scheduler.running


@pytest.mark.asyncio
async def test_scheduled_sync_skips_while_a_batch_runs():
    calls = []

    async def sync_all_shows():
        calls.append(True)

    tracker = ProgressTracker()
    tracker.start(3)
    service = SimpleNamespace(progress=tracker, sync_all_shows=sync_all_shows)

    await scheduled_sync(service)

    assert calls == []


def test_progress_tracker_counts():
    tracker = ProgressTracker()
    tracker.start(2)
    tracker.set_phase(7, SyncPhase.SYNCING_EPISODES, 3)

    snapshot = tracker.to_dict()
    assert snapshot["in_progress"] == {"7": {"phase": "syncing_episodes", "season": 3}}

    tracker.update(7, True, 10)
    tracker.update(8, False)
    tracker.finish()

    snapshot = tracker.to_dict()
    assert snapshot["is_running"] is False
    assert snapshot["completed_count"] == 2
    assert snapshot["failed_count"] == 1
    assert snapshot["episodes_synced"] == 10
    assert snapshot["in_progress"] == {}


def test_sync_progress_description():
    assert SyncProgress(1, 4, 7, SyncPhase.SYNCING_EPISODES, season=2).description == "Syncing season 2..."
    assert SyncProgress(1, 4, 7, SyncPhase.COMPLETED).percentage == 25.0
    assert SyncProgress(0, 0, 7, SyncPhase.STARTING).percentage == 0.0
