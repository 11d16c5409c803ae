"""Fixed-window rate limit counters kept in the database."""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable, Sequence

from sqlalchemy import delete, select, update
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from crm_ai.core.exceptions import RateLimitExceeded
from crm_ai.storage.database import Database
from crm_ai.storage.models import RateLimitCounter

from .buckets import DAY, ExceededBucket, RateLimitBucket, get_rate_limit_message

logger = logging.getLogger("crm_ai.quota")

# Counters older than this are pruned whenever a request is counted.
_COUNTER_RETENTION_SECONDS = 2 * DAY

_COUNTER_KEY = ("subject_id", "bucket", "window_seconds", "window_start")
_UPSERT_DIALECTS = {"postgresql": postgresql.insert, "sqlite": sqlite.insert}


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    exceeded_bucket: ExceededBucket | None = None


def _subject(bucket: RateLimitBucket, user_id: str, organization_id: str) -> str:
    if bucket.scope == "org":
        return f"org:{organization_id}"
    return f"user:{user_id}"


def _window_start(now: float, window_seconds: int) -> int:
    return int(now // window_seconds) * window_seconds


class RateLimitGuard:
    """Plan-aware request counters checked before any provider is called.

    Buckets are counted in one transaction. When any of them is full the
    transaction is rolled back, so a denied request consumes nothing.
    """

    def __init__(self, database: Database, *, clock: Callable[[], float] = time.time) -> None:
        self._database = database
        self._clock = clock

    def check_rate_limits(
        self,
        user_id: str,
        organization_id: str,
        buckets: Sequence[RateLimitBucket],
    ) -> RateLimitDecision:
        now = self._clock()
        try:
            with self._database.session_scope() as session:
                for bucket in buckets:
                    if self._try_increment(session, bucket, user_id, organization_id, now):
                        continue
                    # Undo the buckets already counted for this request.
                    session.rollback()
                    window_start = _window_start(now, bucket.window_seconds)
                    exceeded = ExceededBucket(
                        bucket=bucket.bucket,
                        limit=bucket.limit,
                        window_seconds=bucket.window_seconds,
                        retry_after_seconds=max(
                            1, math.ceil(window_start + bucket.window_seconds - now)
                        ),
                        message=get_rate_limit_message(bucket),
                    )
                    logger.info(
                        "Rate limit exceeded",
                        extra={
                            "event": "rate_limited",
                            "organization_id": organization_id,
                            "bucket": bucket.bucket,
                            "window_seconds": bucket.window_seconds,
                            "limit": bucket.limit,
                        },
                    )
                    return RateLimitDecision(allowed=False, exceeded_bucket=exceeded)

                session.execute(
                    delete(RateLimitCounter).where(
                        RateLimitCounter.window_start < int(now) - _COUNTER_RETENTION_SECONDS
                    )
                )
        except SQLAlchemyError:
            # Fail open.
            logger.warning(
                "Rate limit check failed; allowing request",
                exc_info=True,
                extra={"event": "rate_limit_error", "organization_id": organization_id},
            )
        return RateLimitDecision(allowed=True)

    def enforce(
        self,
        user_id: str,
        organization_id: str,
        buckets: Sequence[RateLimitBucket],
    ) -> None:
        """Like ``check_rate_limits`` but raises ``RateLimitExceeded`` when denied."""
        decision = self.check_rate_limits(user_id, organization_id, buckets)
        if not decision.allowed and decision.exceeded_bucket is not None:
            raise RateLimitExceeded(decision.exceeded_bucket)

    def _try_increment(
        self,
        session: Session,
        bucket: RateLimitBucket,
        user_id: str,
        organization_id: str,
        now: float,
    ) -> bool:
        """Count one request against ``bucket`` unless its window is already full.

        The limit is part of the UPDATE's WHERE clause, so concurrent requests
        racing for the last slot are serialized by the database row lock.
        """
        subject = _subject(bucket, user_id, organization_id)
        window_start = _window_start(now, bucket.window_seconds)
        _ensure_counter(session, subject, bucket, window_start)
        result = session.execute(
            update(RateLimitCounter)
            .where(RateLimitCounter.subject_id == subject)
            .where(RateLimitCounter.bucket == bucket.bucket)
            .where(RateLimitCounter.window_seconds == bucket.window_seconds)
            .where(RateLimitCounter.window_start == window_start)
            .where(RateLimitCounter.count < bucket.limit)
            .values(count=RateLimitCounter.count + 1)
            .execution_options(synchronize_session=False)
        )
        return bool(result.rowcount)


def _ensure_counter(session: Session, subject: str, bucket: RateLimitBucket, window_start: int) -> None:
    values = {
        "subject_id": subject,
        "bucket": bucket.bucket,
        "window_seconds": bucket.window_seconds,
        "window_start": window_start,
        "count": 0,
    }
    dialect = session.get_bind().dialect.name
    if dialect in _UPSERT_DIALECTS:
        statement = _UPSERT_DIALECTS[dialect](RateLimitCounter).values(**values)
        session.execute(statement.on_conflict_do_nothing(index_elements=_COUNTER_KEY))
        return

    exists = session.scalar(
        select(RateLimitCounter.id)
        .where(RateLimitCounter.subject_id == subject)
        .where(RateLimitCounter.bucket == bucket.bucket)
        .where(RateLimitCounter.window_seconds == bucket.window_seconds)
        .where(RateLimitCounter.window_start == window_start)
    )
    if exists is None:
        session.add(RateLimitCounter(**values))
        session.flush()


__all__ = ["RateLimitDecision", "RateLimitGuard"]
