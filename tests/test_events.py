from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import select

from crm_ai.logging import reset_request_id, set_request_id
from crm_ai.storage.models import OrchestratorEvent
from crm_ai.telemetry.events import EventLog, current_retention_cutoff

EXPECTED_EVENT_COUNT = 2


def _add_event(database, ts: datetime, level: str = "INFO", kind: str = "test_event") -> None:
    with database.session_scope() as session:
        session.add(OrchestratorEvent(ts=ts, level=level, kind=kind))


def _aware(ts: datetime) -> datetime:
    return ts if ts.tzinfo else ts.replace(tzinfo=timezone.utc)


def test_record_prunes_events_older_than_yesterday(database):
    now = datetime.now(timezone.utc)
    _add_event(database, now - timedelta(days=3))
    _add_event(database, now - timedelta(hours=1))

    EventLog(database, enabled=True).record("provider_fail", "warning", message="kept")

    with database.session_scope() as session:
        rows = session.scalars(select(OrchestratorEvent).order_by(OrchestratorEvent.ts)).all()

    assert len(rows) == EXPECTED_EVENT_COUNT
    assert _aware(rows[0].ts) >= current_retention_cutoff()
    assert rows[-1].level == "WARNING"


def test_list_recent_returns_newest_first_with_meta(database):
    log = EventLog(database, enabled=True)
    _add_event(database, datetime.now(timezone.utc) - timedelta(days=4))

    log.record(
        "provider_fail",
        "WARNING",
        organization_id="org-1",
        provider_from="anthropic",
        error_code="MODEL_OVERLOADED",
        message="Anthropic API error: 529",
        meta={"feature": "ai_generic", "attempt": 1},
    )
    log.record("provider_switched", "INFO", provider_from="anthropic", provider_to="openai")

    data = log.list_recent(limit=10)

    assert [item["kind"] for item in data] == ["provider_switched", "provider_fail"]
    failure = data[1]
    assert failure["organization_id"] == "org-1"
    assert failure["error_code"] == "MODEL_OVERLOADED"
    assert failure["meta"] == {"feature": "ai_generic", "attempt": 1}


def test_record_redacts_keys_and_binds_request_id(database):
    log = EventLog(database, enabled=True)
    token = set_request_id("req-123")
    try:
        log.record("provider_fail", "WARNING", message="Incorrect API key provided: sk-proj-abcdefghijklmnop")
    finally:
        reset_request_id(token)

    (event,) = log.list_recent()
    assert "sk-proj-abcdefghijklmnop" not in event["message"]
    assert event["request_id"] == "req-123"


def test_disabled_log_records_nothing(database):
    log = EventLog(database, enabled=False)

    log.record("provider_fail", "WARNING", message="ignored")

    assert log.list_recent() == []
    with database.session_scope() as session:
        assert session.scalars(select(OrchestratorEvent)).all() == []


def test_storage_failure_is_swallowed(database, caplog):
    log = EventLog(database, enabled=True)
    OrchestratorEvent.__table__.drop(database.engine)

    log.record("provider_fail", "WARNING", message="lost")

    assert "Failed to record event" in caplog.text
