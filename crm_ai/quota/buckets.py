"""Rate limit bucket definitions.

Bucket names group counters in storage; one bucket name may carry several
windows (e.g. ``ai.generic`` per minute, hour and day). ``scope`` decides
whether the counter is kept per user or per organization.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Literal

MINUTE = 60
HOUR = 3600
DAY = 86400


@dataclass(frozen=True)
class RateLimitBucket:
    bucket: str
    window_seconds: int
    limit: int
    description: str
    scope: Literal["user", "org"] = "user"

    def with_limit(self, limit: int) -> RateLimitBucket:
        return replace(self, limit=limit)


@dataclass(frozen=True)
class ExceededBucket:
    bucket: str
    limit: int
    window_seconds: int
    retry_after_seconds: int
    message: str


RATE_LIMIT_BUCKETS: dict[str, RateLimitBucket] = {
    "ai_generic_per_minute": RateLimitBucket("ai.generic", MINUTE, 20, "AI requests per minute"),
    "ai_generic_per_hour": RateLimitBucket("ai.generic", HOUR, 200, "AI requests per hour"),
    "ai_generic_per_day": RateLimitBucket("ai.generic", DAY, 1000, "AI requests per day"),
    "plan_my_day_per_user_per_day": RateLimitBucket(
        "ai.plan_my_day", DAY, 5, "Plan My Day runs per day (per user)"
    ),
    "plan_my_day_per_org_per_day": RateLimitBucket(
        "ai.plan_my_day_org", DAY, 20, "Plan My Day runs per day (per organization)", scope="org"
    ),
    "ai_insights_per_hour": RateLimitBucket("ai.insights", HOUR, 30, "AI Insights requests per hour"),
    "ai_insights_per_day": RateLimitBucket("ai.insights", DAY, 100, "AI Insights requests per day"),
}

RATE_LIMIT_GROUPS: dict[str, tuple[str, ...]] = {
    "ai_generic": ("ai_generic_per_minute", "ai_generic_per_hour", "ai_generic_per_day"),
    "plan_my_day": ("plan_my_day_per_user_per_day", "plan_my_day_per_org_per_day"),
    "ai_insights": ("ai_insights_per_hour", "ai_insights_per_day"),
    "plan_my_day_with_generic": (
        "plan_my_day_per_user_per_day",
        "plan_my_day_per_org_per_day",
        "ai_generic_per_minute",
        "ai_generic_per_hour",
        "ai_generic_per_day",
    ),
}


def get_bucket_group(group: str) -> list[RateLimitBucket]:
    """Return the default (plan-independent) buckets of ``group``."""
    try:
        names = RATE_LIMIT_GROUPS[group]
    except KeyError:
        raise ValueError(f"Unknown rate limit group '{group}'") from None
    return [RATE_LIMIT_BUCKETS[name] for name in names]


def get_rate_limit_message(bucket: RateLimitBucket) -> str:
    return f"You've reached the limit of {bucket.limit} {bucket.description}. Please try again later."


__all__ = [
    "ExceededBucket",
    "RATE_LIMIT_BUCKETS",
    "RATE_LIMIT_GROUPS",
    "RateLimitBucket",
    "get_bucket_group",
    "get_rate_limit_message",
]
