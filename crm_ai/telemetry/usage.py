"""Best-effort AI usage tracking.

Usage rows are written from detached tasks: the orchestration result is returned
to the caller without waiting for the write, and a failed write is only logged.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Callable

from crm_ai.storage.database import Database
from crm_ai.storage.models import AIUsageLog

logger = logging.getLogger("crm_ai.usage")


@dataclass(frozen=True)
class UsageRecord:
    organization_id: str
    feature: str
    success: bool
    attempts: int
    latency_ms: float
    user_id: str | None = None
    provider: str | None = None
    model: str | None = None
    error_code: str | None = None


UsageSink = Callable[[UsageRecord], None]


class UsageLogger:
    """Writes usage records to ``ai_usage_logs``."""

    def __init__(self, database: Database) -> None:
        self._database = database

    def __call__(self, record: UsageRecord) -> None:
        with self._database.session_scope() as session:
            session.add(
                AIUsageLog(
                    organization_id=record.organization_id,
                    user_id=record.user_id,
                    feature=record.feature,
                    provider=record.provider,
                    model=record.model,
                    success=record.success,
                    error_code=record.error_code,
                    attempts=record.attempts,
                    latency_ms=record.latency_ms,
                )
            )


class UsageTracker:
    """Schedules usage writes as detached tasks on the running event loop."""

    def __init__(self, sink: UsageSink) -> None:
        self._sink = sink
        self._pending: set[asyncio.Task[None]] = set()

    @property
    def pending(self) -> int:
        return len(self._pending)

    def track(self, record: UsageRecord) -> asyncio.Task[None]:
        task = asyncio.get_running_loop().create_task(self._write(record))
        # Hold a reference until completion so the task is not garbage collected.
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)
        return task

    async def _write(self, record: UsageRecord) -> None:
        try:
            await asyncio.to_thread(self._sink, record)
        except Exception:
            logger.warning(
                "Failed to record AI usage",
                exc_info=True,
                extra={
                    "event": "usage_persist_error",
                    "feature": record.feature,
                    "organization_id": record.organization_id,
                },
            )

    async def drain(self) -> None:
        """Wait for outstanding writes, e.g. on shutdown."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)


__all__ = ["UsageLogger", "UsageRecord", "UsageTracker"]
