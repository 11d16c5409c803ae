from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest
from sqlalchemy import select

from crm_ai.core.exceptions import RateLimitExceeded
from crm_ai.quota.buckets import DAY, RateLimitBucket, get_bucket_group, get_rate_limit_message
from crm_ai.quota.guard import RateLimitGuard
from crm_ai.quota.plans import buckets_for_plan, get_org_plan, get_plan_config, group_for_feature
from crm_ai.storage.database import Database
from crm_ai.storage.models import Organization, RateLimitCounter

ORG_ID = "org-quota"
WINDOW_START = 1_700_000_040  # divisible by 60


class FakeClock:
    def __init__(self, now: float) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _minute_bucket(limit: int) -> RateLimitBucket:
    return RateLimitBucket("ai.generic", 60, limit, "AI requests per minute")


def test_requests_are_allowed_until_the_limit(database):
    guard = RateLimitGuard(database, clock=FakeClock(WINDOW_START + 5))
    buckets = [_minute_bucket(2)]

    assert guard.check_rate_limits("user-1", ORG_ID, buckets).allowed
    assert guard.check_rate_limits("user-1", ORG_ID, buckets).allowed
    decision = guard.check_rate_limits("user-1", ORG_ID, buckets)

    assert decision.allowed is False
    exceeded = decision.exceeded_bucket
    assert exceeded.bucket == "ai.generic"
    assert exceeded.limit == 2
    assert exceeded.retry_after_seconds == 55
    assert exceeded.message == "You've reached the limit of 2 AI requests per minute. Please try again later."


def test_new_window_resets_the_count(database):
    clock = FakeClock(WINDOW_START + 59.5)
    guard = RateLimitGuard(database, clock=clock)
    buckets = [_minute_bucket(1)]

    assert guard.check_rate_limits("user-1", ORG_ID, buckets).allowed
    denied = guard.check_rate_limits("user-1", ORG_ID, buckets)
    assert denied.exceeded_bucket.retry_after_seconds == 1

    clock.now = WINDOW_START + 60
    assert guard.check_rate_limits("user-1", ORG_ID, buckets).allowed


def test_denied_request_consumes_nothing(database):
    guard = RateLimitGuard(database, clock=FakeClock(WINDOW_START))
    generous = RateLimitBucket("ai.generic", DAY, 100, "AI requests per day")
    tight = RateLimitBucket("ai.plan_my_day", DAY, 1, "Plan My Day runs per day (per user)")

    assert guard.check_rate_limits("user-1", ORG_ID, [generous, tight]).allowed
    assert not guard.check_rate_limits("user-1", ORG_ID, [generous, tight]).allowed

    with database.session_scope() as session:
        count = session.scalar(
            select(RateLimitCounter.count).where(RateLimitCounter.bucket == "ai.generic")
        )
    assert count == 1


def test_user_buckets_are_per_user_and_org_buckets_are_shared(database):
    guard = RateLimitGuard(database, clock=FakeClock(WINDOW_START))
    per_user = [RateLimitBucket("ai.plan_my_day", DAY, 1, "Plan My Day runs per day (per user)")]
    per_org = [
        RateLimitBucket("ai.plan_my_day_org", DAY, 1, "Plan My Day runs per day (per organization)", scope="org")
    ]

    assert guard.check_rate_limits("user-1", ORG_ID, per_user).allowed
    assert guard.check_rate_limits("user-2", ORG_ID, per_user).allowed

    assert guard.check_rate_limits("user-1", ORG_ID, per_org).allowed
    assert not guard.check_rate_limits("user-2", ORG_ID, per_org).allowed
    assert guard.check_rate_limits("user-2", "org-other", per_org).allowed


def test_enforce_raises_with_retry_after(database):
    guard = RateLimitGuard(database, clock=FakeClock(WINDOW_START + 20))
    buckets = [_minute_bucket(1)]
    guard.enforce("user-1", ORG_ID, buckets)

    with pytest.raises(RateLimitExceeded) as excinfo:
        guard.enforce("user-1", ORG_ID, buckets)

    assert excinfo.value.retry_after_seconds == 40
    assert excinfo.value.exceeded.bucket == "ai.generic"


def test_storage_failure_fails_open(database):
    guard = RateLimitGuard(database, clock=FakeClock(WINDOW_START))
    RateLimitCounter.__table__.drop(database.engine)

    assert guard.check_rate_limits("user-1", ORG_ID, [_minute_bucket(1)]).allowed


def test_unknown_plan_falls_back_to_free():
    assert get_plan_config("enterprise-legacy") == get_plan_config("free")
    assert get_plan_config(None).ai_generic_per_minute == 5
    assert get_plan_config("pro").unlimited_ai is True


def test_buckets_for_plan_apply_plan_limits():
    free = buckets_for_plan("free", "plan_my_day_with_generic")
    growth = buckets_for_plan("growth", "ai_generic")

    assert [(b.bucket, b.limit) for b in free] == [
        ("ai.plan_my_day", 2),
        ("ai.plan_my_day_org", 3),
        ("ai.generic", 5),
        ("ai.generic", 30),
        ("ai.generic", 100),
    ]
    assert free[1].scope == "org"
    assert [b.limit for b in growth] == [25, 200, 1000]
    with pytest.raises(ValueError):
        buckets_for_plan("free", "nope")


def test_default_bucket_groups():
    assert [b.window_seconds for b in get_bucket_group("ai_generic")] == [60, 3600, 86400]
    assert get_rate_limit_message(get_bucket_group("ai_insights")[0]) == (
        "You've reached the limit of 30 AI Insights requests per hour. Please try again later."
    )


def test_feature_groups():
    assert group_for_feature("plan_my_day") == "plan_my_day_with_generic"
    assert group_for_feature("ai_insights") == "ai_insights"
    assert group_for_feature("deal_coach") == "ai_generic"


def test_get_org_plan_reads_organizations_table(database):
    with database.session_scope() as session:
        session.add(Organization(id="org-growth", name="Acme", plan="growth"))
        session.add(Organization(id="org-weird", name="Globex", plan="platinum"))

    assert get_org_plan(database, "org-growth") == "growth"
    assert get_org_plan(database, "org-weird") == "free"
    assert get_org_plan(database, "org-missing") == "free"


def _race(guard: RateLimitGuard, buckets: list[RateLimitBucket], users: list[str]) -> list[bool]:
    barrier = threading.Barrier(len(users))

    def attempt(user_id: str) -> bool:
        barrier.wait()
        return guard.check_rate_limits(user_id, ORG_ID, buckets).allowed

    with ThreadPoolExecutor(max_workers=len(users)) as pool:
        return list(pool.map(attempt, users))


@pytest.fixture
def file_database(tmp_path):
    db = Database(f"sqlite:///{tmp_path / 'quota.db'}")
    db.create_all()
    yield db
    db.dispose()


def test_concurrent_requests_cannot_share_the_last_slot(file_database):
    guard = RateLimitGuard(file_database, clock=FakeClock(WINDOW_START))
    buckets = [_minute_bucket(2)]
    assert guard.check_rate_limits("user-1", ORG_ID, buckets).allowed

    outcomes = _race(guard, buckets, ["user-1", "user-1"])

    assert sorted(outcomes) == [False, True]
    with file_database.session_scope() as session:
        count = session.scalar(select(RateLimitCounter.count).where(RateLimitCounter.bucket == "ai.generic"))
    assert count == 2


def test_concurrent_requests_opening_a_window_are_both_counted(file_database):
    guard = RateLimitGuard(file_database, clock=FakeClock(WINDOW_START))
    org_bucket = [
        RateLimitBucket("ai.plan_my_day_org", DAY, 5, "Plan My Day runs per day (per organization)", scope="org")
    ]

    outcomes = _race(guard, org_bucket, ["user-1", "user-2", "user-3"])

    assert outcomes == [True, True, True]
    with file_database.session_scope() as session:
        rows = session.scalars(select(RateLimitCounter)).all()
    assert [(row.subject_id, row.count) for row in rows] == [(f"org:{ORG_ID}", 3)]
