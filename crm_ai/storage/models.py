"""ORM models for provider connections, quotas, usage and telemetry events."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)

from .database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AIProvider(Base):
    __tablename__ = "ai_providers"
    __table_args__ = (
        UniqueConstraint(
            "organization_id", "provider_type", name="uq_ai_providers_org_provider_type"
        ),
        Index("ix_ai_providers_org_active_created", "organization_id", "active", "created_at"),
    )

    id = Column(String(36), primary_key=True, default=_uuid)
    organization_id = Column(String(64), nullable=False)
    provider_type = Column(String(32), nullable=False)
    display_name = Column(String(100))
    model = Column(String(200))
    api_key_encrypted = Column(Text, nullable=False)
    active = Column(Boolean, nullable=False, default=True)
    # Set client-side for sub-second precision; connection order depends on it.
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


class Organization(Base):
    __tablename__ = "organizations"

    id = Column(String(64), primary_key=True)
    name = Column(String(200))
    plan = Column(String(32), nullable=False, default="free")


class RateLimitCounter(Base):
    __tablename__ = "rate_limit_counters"
    __table_args__ = (
        UniqueConstraint(
            "subject_id",
            "bucket",
            "window_seconds",
            "window_start",
            name="uq_rate_limit_counters_window",
        ),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    subject_id = Column(String(100), nullable=False)
    bucket = Column(String(64), nullable=False)
    window_seconds = Column(Integer, nullable=False)
    window_start = Column(Integer, nullable=False)
    count = Column(Integer, nullable=False, default=0)


class AIUsageLog(Base):
    __tablename__ = "ai_usage_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    organization_id = Column(String(64), nullable=False)
    user_id = Column(String(64))
    feature = Column(String(64), nullable=False)
    provider = Column(String(32))
    model = Column(String(200))
    success = Column(Boolean, nullable=False)
    error_code = Column(String(64))
    attempts = Column(Integer, nullable=False, default=0)
    latency_ms = Column(Float)

    __table_args__ = (Index("ix_ai_usage_logs_org_created", "organization_id", "created_at"),)


class OrchestratorEvent(Base):
    __tablename__ = "events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    ts = Column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    level = Column(String(16), nullable=False)
    kind = Column(String(64), nullable=False)
    request_id = Column(String(64))
    organization_id = Column(String(64))
    provider_from = Column(String(100))
    provider_to = Column(String(100))
    model = Column(String(200))
    error_code = Column(String(128))
    message = Column(String(512))
    meta = Column(Text)

    __table_args__ = (
        Index("ix_events_ts", "ts"),
        Index("ix_events_kind_ts", "kind", "ts"),
    )
