from __future__ import annotations

import pytest
from sqlalchemy import select

from crm_ai.storage.models import AIUsageLog
from crm_ai.telemetry.usage import UsageLogger, UsageRecord, UsageTracker


def _record(**overrides) -> UsageRecord:
    values = {
        "organization_id": "org-1",
        "feature": "ai_generic",
        "success": True,
        "attempts": 2,
        "latency_ms": 812.5,
        "user_id": "user-1",
        "provider": "openai",
        "model": "gpt-4o",
    }
    values.update(overrides)
    return UsageRecord(**values)


@pytest.mark.asyncio
async def test_tracker_writes_usage_row_in_background(database):
    tracker = UsageTracker(UsageLogger(database))

    task = tracker.track(_record())
    await tracker.drain()

    assert task.done()
    with database.session_scope() as session:
        rows = session.scalars(select(AIUsageLog)).all()
    assert len(rows) == 1
    assert rows[0].provider == "openai"
    assert rows[0].attempts == 2
    assert rows[0].success is True


@pytest.mark.asyncio
async def test_tracker_logs_and_swallows_sink_failures(caplog):
    def broken_sink(record: UsageRecord) -> None:
        raise RuntimeError("db down")

    tracker = UsageTracker(broken_sink)

    task = tracker.track(_record(success=False, provider=None, error_code="ALL_PROVIDERS_FAILED"))
    await task

    assert task.exception() is None
    assert "Failed to record AI usage" in caplog.text
