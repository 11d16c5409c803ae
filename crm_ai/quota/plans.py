"""Plan tiers and the rate limit quotas they grant."""

from __future__ import annotations

import logging

from pydantic import BaseModel, ConfigDict
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from crm_ai.storage.database import Database
from crm_ai.storage.models import Organization

from .buckets import RATE_LIMIT_BUCKETS, RATE_LIMIT_GROUPS, RateLimitBucket

logger = logging.getLogger("crm_ai.quota")

DEFAULT_PLAN = "free"

# Feature name -> bucket group checked before running it.
FEATURE_GROUPS: dict[str, str] = {
    "plan_my_day": "plan_my_day_with_generic",
    "ai_insights": "ai_insights",
    "insights": "ai_insights",
}
DEFAULT_GROUP = "ai_generic"


class PlanConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    display_name: str
    monthly_ai_requests: int
    ai_generic_per_minute: int
    ai_generic_per_hour: int
    ai_generic_per_day: int
    ai_insights_per_hour: int
    ai_insights_per_day: int
    plan_my_day_per_user_per_day: int
    plan_my_day_per_org_per_day: int

    @property
    def unlimited_ai(self) -> bool:
        return self.monthly_ai_requests == -1


PLAN_QUOTAS: dict[str, PlanConfig] = {
    "free": PlanConfig(
        name="Free",
        display_name="Free Plan",
        monthly_ai_requests=100,
        ai_generic_per_minute=5,
        ai_generic_per_hour=30,
        ai_generic_per_day=100,
        ai_insights_per_hour=5,
        ai_insights_per_day=15,
        plan_my_day_per_user_per_day=2,
        plan_my_day_per_org_per_day=3,
    ),
    "startup": PlanConfig(
        name="Startup",
        display_name="Startup Plan",
        monthly_ai_requests=1000,
        ai_generic_per_minute=15,
        ai_generic_per_hour=100,
        ai_generic_per_day=500,
        ai_insights_per_hour=15,
        ai_insights_per_day=50,
        plan_my_day_per_user_per_day=5,
        plan_my_day_per_org_per_day=15,
    ),
    "growth": PlanConfig(
        name="Growth",
        display_name="Growth Plan",
        monthly_ai_requests=5000,
        ai_generic_per_minute=25,
        ai_generic_per_hour=200,
        ai_generic_per_day=1000,
        ai_insights_per_hour=30,
        ai_insights_per_day=100,
        plan_my_day_per_user_per_day=10,
        plan_my_day_per_org_per_day=40,
    ),
    "pro": PlanConfig(
        name="Pro",
        display_name="Pro Plan",
        monthly_ai_requests=-1,
        ai_generic_per_minute=60,
        ai_generic_per_hour=500,
        ai_generic_per_day=3000,
        ai_insights_per_hour=60,
        ai_insights_per_day=300,
        plan_my_day_per_user_per_day=20,
        plan_my_day_per_org_per_day=100,
    ),
}


def is_valid_plan(plan_id: str | None) -> bool:
    return bool(plan_id) and plan_id in PLAN_QUOTAS


def get_plan_config(plan_id: str | None) -> PlanConfig:
    """Return the quotas for ``plan_id``; unknown plans get the free tier."""
    if is_valid_plan(plan_id):
        return PLAN_QUOTAS[plan_id]
    return PLAN_QUOTAS[DEFAULT_PLAN]


def group_for_feature(feature: str) -> str:
    return FEATURE_GROUPS.get(feature, DEFAULT_GROUP)


def buckets_for_plan(plan_id: str | None, group: str) -> list[RateLimitBucket]:
    """Buckets of ``group`` with limits taken from the organization's plan."""
    try:
        names = RATE_LIMIT_GROUPS[group]
    except KeyError:
        raise ValueError(f"Unknown rate limit group '{group}'") from None
    plan = get_plan_config(plan_id)
    return [RATE_LIMIT_BUCKETS[name].with_limit(getattr(plan, name)) for name in names]


def get_org_plan(database: Database, organization_id: str) -> str:
    """Read the organization's plan id, falling back to the free tier.

    Lookup failures are logged and treated as free so a plan read never blocks
    an AI request.
    """
    try:
        with database.session_scope() as session:
            plan = session.scalar(
                select(Organization.plan).where(Organization.id == organization_id)
            )
    except SQLAlchemyError:
        logger.warning(
            "Failed to load organization plan",
            exc_info=True,
            extra={"event": "plan_lookup_error", "organization_id": organization_id},
        )
        return DEFAULT_PLAN
    return plan if is_valid_plan(plan) else DEFAULT_PLAN


__all__ = [
    "PLAN_QUOTAS",
    "PlanConfig",
    "buckets_for_plan",
    "get_org_plan",
    "get_plan_config",
    "group_for_feature",
]
