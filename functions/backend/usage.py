"""
Monthly usage counters, plan limits and plan feature gates.
"""

from __future__ import annotations

import logging
import time
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Callable, Optional

from sqlalchemy.exc import SQLAlchemyError

from backend.db import DbClient, UsageRecord
from shared.constants import DEFAULT_PLAN_ID, PLAN_CATALOG, PLAN_LIMITS
from shared.types import PlanTier, UsageType, UserPlan

logger = logging.getLogger(__name__)

FEATURE_PDF = "pdf"
FEATURE_AI = "ai"


def month_start(now: float) -> float:
    moment = datetime.fromtimestamp(now, tz=timezone.utc)
    return moment.replace(day=1, hour=0, minute=0, second=0, microsecond=0).timestamp()


def next_month_start(now: float) -> float:
    moment = datetime.fromtimestamp(now, tz=timezone.utc)
    if moment.month == 12:
        first = datetime(moment.year + 1, 1, 1, tzinfo=timezone.utc)
    else:
        first = datetime(moment.year, moment.month + 1, 1, tzinfo=timezone.utc)
    return first.timestamp()


@dataclass
class UsageStats:
    scans_used: int
    scans_limit: int
    optimizations_used: int
    optimizations_limit: int
    ai_rewrites_used: int
    ai_rewrites_limit: int
    reset_date: str
    current_month_scans: int
    current_month_optimizations: int
    current_month_ai_rewrites: int

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class PlanCheckResult:
    allowed: bool
    plan: Optional[UserPlan] = None
    error: Optional[str] = None


class UsageTracker:
    def __init__(self, db: DbClient, clock: Callable[[], float] = time.time):
        self.db = db
        self.clock = clock

    def ensure_usage_row(self, user_id: str) -> UsageRecord:
        """Returns the user's usage row, creating it or rolling it into a new month."""
        now = self.clock()
        usage = self.db.get_usage(user_id)
        if usage is None:
            return self.db.create_usage(user_id, next_month_start(now))
        if usage.reset_date <= now:
            self.db.reset_usage(user_id, now=now, next_reset=next_month_start(now))
            usage = self.db.get_usage(user_id) or usage
        return usage

    def get_user_current_plan(self, user_id: str) -> UserPlan:
        """Returns the user's plan, provisioning the free plan on first use."""
        record = self.db.get_user_plan(user_id)
        if record is None:
            logger.info("Provisioning %s plan for user %s", DEFAULT_PLAN_ID, user_id)
            record = self.db.create_user_plan(user_id, DEFAULT_PLAN_ID)
        plan_id = record.plan_id if record.plan_id in PLAN_CATALOG else DEFAULT_PLAN_ID
        name, monthly_limit, pdf_enabled, ai_enabled = PLAN_CATALOG[plan_id]
        return UserPlan(
            plan_id=plan_id,
            plan_name=name,
            monthly_limit=monthly_limit,
            pdf_enabled=pdf_enabled,
            ai_enabled=ai_enabled,
            used_count=record.used_count,
        )

    def get_usage_stats(self, user_id: str) -> UsageStats:
        # Independent reads; the view is not a consistent snapshot.
        now = self.clock()
        plan = self.get_user_current_plan(user_id)
        profile = self.db.get_profile(user_id)
        usage = self.ensure_usage_row(user_id)

        since = month_start(now)
        scans = self.db.count_scan_results_since(user_id, since)
        optimizations = self.db.count_optimizations_since(user_id, since)
        ai_rewrites = self.db.count_ai_content_logs_since(user_id, since)

        tier = profile.tier if profile else PlanTier.FREE
        limits = PLAN_LIMITS.get(tier, PLAN_LIMITS[PlanTier.FREE])
        return UsageStats(
            # The plan counter tracks AI plan usage, not scans.
            scans_used=usage.scans_used,
            scans_limit=plan.monthly_limit or limits[UsageType.SCANS],
            optimizations_used=usage.optimizations_used,
            optimizations_limit=limits[UsageType.OPTIMIZATIONS],
            ai_rewrites_used=usage.ai_rewrites_used,
            ai_rewrites_limit=limits[UsageType.AI_REWRITES],
            reset_date=datetime.fromtimestamp(
                next_month_start(now), tz=timezone.utc
            ).isoformat(),
            current_month_scans=scans,
            current_month_optimizations=optimizations,
            current_month_ai_rewrites=ai_rewrites,
        )

    def increment_usage(self, user_id: str, usage_type: UsageType) -> bool:
        """
        Adds one to the ``{type}_used`` counter in a single store update.

        Returns:
            True if the counter moved by exactly one, False if the store
            update failed and the counter is unchanged.
        """
        try:
            self.ensure_usage_row(user_id)
            value = self.db.increment_usage(user_id, usage_type)
        except SQLAlchemyError:
            logger.exception("Error incrementing %s for user %s", usage_type.value, user_id)
            return False
        if value is None:
            logger.warning("No usage row for user %s", user_id)
            return False
        return True

    def check_plan_limit(self, user_id: str, feature: Optional[str] = None) -> PlanCheckResult:
        plan = self.get_user_current_plan(user_id)
        if feature == FEATURE_PDF and not plan.pdf_enabled:
            return PlanCheckResult(
                False, plan, "PDF reports are only available on the Pro plan. Please upgrade."
            )
        if feature == FEATURE_AI and not plan.ai_enabled:
            return PlanCheckResult(
                False, plan, "AI features are only available on the Pro plan. Please upgrade."
            )
        if plan.remaining_count <= 0:
            return PlanCheckResult(
                False,
                plan,
                f"You have used all analyses for this month ({plan.used_count}/{plan.monthly_limit}). "
                "Please upgrade your plan or wait until next month.",
            )
        return PlanCheckResult(True, plan)

    def record_plan_usage(self, user_id: str) -> bool:
        try:
            return self.db.increment_plan_usage(user_id)
        except SQLAlchemyError:
            logger.exception("Error incrementing plan usage for user %s", user_id)
            return False
