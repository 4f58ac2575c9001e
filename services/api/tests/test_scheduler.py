from app import scheduler


def test_daily_job_is_registered():
    sched = scheduler.build_scheduler()

    job = sched.get_job(scheduler.JOB_ID)

    assert job is not None
    assert job.func is scheduler.run_scheduled_rebuild
    assert job.max_instances == 1
    assert job.coalesce is True
    assert "hour='3'" in str(job.trigger)
    assert "minute='0'" in str(job.trigger)


async def test_scheduled_run_uses_shared_rebuild(monkeypatch):
    calls = []

    async def fake_rebuild(**kwargs):
        calls.append(kwargs)

    monkeypatch.setattr(scheduler, "rebuild_similarity", fake_rebuild)

    await scheduler.run_scheduled_rebuild()

    assert calls == [{"trigger": "schedule"}]


async def test_scheduled_run_failure_is_logged_not_raised(monkeypatch, caplog):
    async def broken_rebuild(**kwargs):
        raise RuntimeError("db down")

    monkeypatch.setattr(scheduler, "rebuild_similarity", broken_rebuild)

    await scheduler.run_scheduled_rebuild()

    assert "Scheduled similarity rebuild failed" in caplog.text


def test_disabled_schedule_does_not_start():
    # SIMILARITY_SCHEDULE_ENABLED=false in the test environment
    scheduler.start_scheduler()

    assert scheduler._scheduler is None
