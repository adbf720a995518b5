import asyncio

import pytest
from fastapi import FastAPI

from account_lifecycle.core.config import settings
from account_lifecycle.services import account_deletion_scheduler, deletion_sweeper, leader_lock


def test_scheduler_runs_sweep_and_stops_cleanly(fake_identity, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "account_deletion_scheduler_enabled", True)
    monkeypatch.setattr(settings, "account_deletion_poll_interval_seconds", 3600)
    runs = []

    async def fake_run_sweep(*, session_factory, identity):
        runs.append(identity)
        return deletion_sweeper.SweepSummary(run_id="r", started_at=None)

    monkeypatch.setattr(deletion_sweeper, "run_sweep", fake_run_sweep)

    async def scenario(app: FastAPI) -> None:
        account_deletion_scheduler.start(app, identity=fake_identity)
        task = app.state.account_deletion_scheduler_task
        account_deletion_scheduler.start(app, identity=fake_identity)
        assert app.state.account_deletion_scheduler_task is task
        await asyncio.sleep(0.05)
        await account_deletion_scheduler.stop(app)

    app = FastAPI()
    asyncio.run(scenario(app))
    assert runs == [fake_identity]
    assert getattr(app.state, "account_deletion_scheduler_task", None) is None


def test_scheduler_disabled_by_default(fake_identity, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(settings, "account_deletion_scheduler_enabled", False)
    app = FastAPI()

    account_deletion_scheduler.start(app, identity=fake_identity)

    assert getattr(app.state, "account_deletion_scheduler_task", None) is None


def test_lock_key_is_stable_signed_bigint() -> None:
    key = leader_lock.lock_key("account_deletion_sweeper")
    assert key == leader_lock.lock_key("account_deletion_sweeper")
    assert 0 <= key < 2**63 - 1
    assert key != leader_lock.lock_key("other")
