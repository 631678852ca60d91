import threading
from datetime import timedelta

import pytest

from errors import ConfigurationError, JobNotFound, UpstreamError
from models import utcnow
from scheduler import SchedulerCore


def timer_interval(aps, job_id):
    return aps.get_job(f"collect:{job_id}").trigger.interval.total_seconds()


def test_start_arms_one_timer_and_collects_immediately(core, store, make_job):
    job = make_job()

    core.start(job.id)

    assert core.get_active_jobs() == [job.id]
    assert store.get_job(job.id).status == "running"
    assert len(store.list_snapshots(job.id)) == 1


def test_start_twice_is_idempotent(core, store, aps, make_job):
    job = make_job()

    core.start(job.id)
    core.start(job.id)

    assert core.get_active_jobs() == [job.id]
    assert len([j for j in aps.get_jobs() if j.id == f"collect:{job.id}"]) == 1
    assert len(store.list_snapshots(job.id)) == 1


def test_interval_below_floor_is_clamped(core, aps, make_job):
    job = make_job(cycle_seconds=30)

    core.start(job.id)

    stored = core.store.get_job(job.id)
    assert stored.requested_interval_seconds() == 30
    assert core.effective_interval(stored) == 300
    assert timer_interval(aps, job.id) == 300


def test_cycle_minutes_used_when_seconds_unset(core, aps, make_job):
    job = make_job(cycle_seconds=0, cycle_minutes=15)

    core.start(job.id)

    assert timer_interval(aps, job.id) == 900


def test_floor_is_configurable(store, fake_client, aps, make_job):
    core = SchedulerCore(store, fake_client, scheduler=aps, min_interval_seconds=60)
    job = make_job(cycle_seconds=90)

    core.start(job.id)

    assert timer_interval(aps, job.id) == 90
    core.shutdown()


def test_end_to_end_start_then_manual_cycle(core, store, aps, make_job):
    job = make_job(cycle_seconds=30)

    core.start(job.id)
    assert timer_interval(aps, job.id) == 300
    [first] = store.list_snapshots(job.id)
    assert first.duration_seconds == 600

    assert core.run_collection_cycle(job.id) == 1

    snaps = store.list_snapshots(job.id)
    assert len(snaps) == 2
    assert [s.route_index for s in snaps] == [0, 0]


def test_start_unknown_job_raises(core):
    with pytest.raises(JobNotFound):
        core.start("missing")


def test_resume_unknown_job_raises(core):
    with pytest.raises(JobNotFound):
        core.resume("missing")


def test_pause_and_stop_unknown_job_are_noops(core):
    core.pause("missing")
    core.stop("missing")
    assert core.get_active_jobs() == []


def test_start_without_credentials_changes_nothing(core, store, fake_client, make_job):
    fake_client.configured = False
    job = make_job()

    with pytest.raises(ConfigurationError):
        core.start(job.id)

    assert store.get_job(job.id).status == "pending"
    assert core.get_active_jobs() == []


def test_pause_cancels_timer(core, store, aps, make_job):
    job = make_job()
    core.start(job.id)

    core.pause(job.id)

    assert core.get_active_jobs() == []
    assert aps.get_job(f"collect:{job.id}") is None
    assert store.get_job(job.id).status == "paused"


def test_pause_twice_changes_nothing(core, store, make_job):
    job = make_job()
    core.start(job.id)
    core.pause(job.id)
    updated_at = store.get_job(job.id).updated_at

    core.pause(job.id)

    after = store.get_job(job.id)
    assert after.status == "paused"
    assert after.updated_at == updated_at


def test_resume_restarts_paused_job(core, store, make_job):
    job = make_job()
    core.start(job.id)
    core.pause(job.id)

    core.resume(job.id)

    assert store.get_job(job.id).status == "running"
    assert core.get_active_jobs() == [job.id]
    assert len(store.list_snapshots(job.id)) == 2


def test_resume_only_applies_to_paused_jobs(core, store, make_job):
    pending = make_job()
    completed = make_job(status="completed")

    core.resume(pending.id)
    core.resume(completed.id)

    assert store.get_job(pending.id).status == "pending"
    assert store.get_job(completed.id).status == "completed"
    assert core.get_active_jobs() == []


def test_stop_completes_running_job(core, store, make_job):
    job = make_job()
    core.start(job.id)

    core.stop(job.id)

    assert store.get_job(job.id).status == "completed"
    assert core.get_active_jobs() == []


def test_stop_paused_job(core, store, make_job):
    job = make_job()
    core.start(job.id)
    core.pause(job.id)

    core.stop(job.id)

    assert store.get_job(job.id).status == "completed"


def test_stop_twice_is_a_noop(core, store, make_job):
    job = make_job()
    core.start(job.id)
    core.stop(job.id)

    core.stop(job.id)

    assert store.get_job(job.id).status == "completed"
    assert core.get_active_jobs() == []


def test_completed_job_can_be_started_again(core, store, make_job):
    job = make_job()
    core.start(job.id)
    core.stop(job.id)

    core.start(job.id)

    assert store.get_job(job.id).status == "running"
    assert core.get_active_jobs() == [job.id]
    assert len(store.list_snapshots(job.id)) == 2


def test_start_of_expired_job_completes_it(core, store, make_job):
    job = make_job(end_time=utcnow() - timedelta(hours=1))

    core.start(job.id)

    assert store.get_job(job.id).status == "completed"
    assert core.get_active_jobs() == []
    assert store.list_snapshots(job.id) == []


def test_upstream_failure_keeps_timer(core, store, fake_client, make_job):
    fake_client.error = UpstreamError("UNKNOWN_ERROR")
    job = make_job()

    core.start(job.id)

    assert store.get_job(job.id).status == "running"
    assert core.get_active_jobs() == [job.id]
    assert store.list_snapshots(job.id) == []


def test_scheduler_instances_are_isolated(store, fake_client, aps, make_job):
    a = SchedulerCore(store, fake_client, scheduler=aps)
    b = SchedulerCore(store, fake_client)
    job = make_job()

    a.start(job.id)

    assert a.get_active_jobs() == [job.id]
    assert b.get_active_jobs() == []
    a.shutdown()
    b.shutdown()


def test_shutdown_cancels_all_timers(core, aps, make_job):
    jobs = [make_job(), make_job()]
    for job in jobs:
        core.start(job.id)

    core.shutdown()

    assert core.get_active_jobs() == []
    assert aps.get_jobs() == []


def test_stop_pending_job_is_a_noop(core, store, make_job):
    job = make_job()

    core.stop(job.id)

    assert store.get_job(job.id).status == "pending"


def test_rearm_skips_job_no_longer_running(core, store, fake_client, make_job):
    job = make_job(status="paused")

    assert core.rearm(job.id) is False

    assert core.get_active_jobs() == []
    assert fake_client.calls == []


def test_timer_tick_appends_snapshots(store, fake_client, aps, make_job, monkeypatch):
    core = SchedulerCore(store, fake_client, scheduler=aps, min_interval_seconds=1)
    job = make_job(cycle_seconds=1)
    ticked = threading.Event()
    run = core.runner.run

    def counting_run(job_id):
        written = run(job_id)
        if len(fake_client.calls) >= 2:
            ticked.set()
        return written

    monkeypatch.setattr(core.runner, "run", counting_run)

    core.start(job.id)
    assert ticked.wait(timeout=10)
    core.shutdown()

    assert len(store.list_snapshots(job.id)) >= 2
