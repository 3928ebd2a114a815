"""
Data store abstraction for Postgres and an in-memory test implementation.

The tables mirror the managed store the dashboard talks to. Timestamps are
epoch seconds.
"""

from __future__ import annotations

import time
import uuid
from dataclasses import asdict, dataclass, field
from typing import Dict, List, Optional, Protocol

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Float,
    Integer,
    String,
    create_engine,
    func,
    or_,
    select,
    update,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker

from shared.constants import HOUR_SECONDS
from shared.types import (
    MemberRole,
    MemberStatus,
    OptimizationStatus,
    PlanTier,
    UsageType,
    UserRole,
)

SCHEDULED_SCAN_MUTABLE_FIELDS = {
    "frequency_days",
    "next_scan_at",
    "last_scan_at",
    "is_active",
    "email_alerts",
    "auto_optimize",
    "claimed_until",
    "failure_count",
    "last_error",
}


def _new_id() -> str:
    return uuid.uuid4().hex


def _hour_bucket(now: float) -> float:
    return float(int(now // HOUR_SECONDS) * HOUR_SECONDS)


@dataclass
class ScheduledScanRecord:
    scan_id: str
    user_id: str
    website_url: str
    frequency_days: int
    next_scan_at: float
    last_scan_at: Optional[float] = None
    is_active: bool = True
    email_alerts: bool = True
    auto_optimize: bool = False
    claimed_until: Optional[float] = None
    failure_count: int = 0
    last_error: Optional[str] = None
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def is_due(self, now: float) -> bool:
        return self.is_active and self.next_scan_at <= now

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class ScanResultRecord:
    result_id: str
    user_id: str
    website_url: str
    seo_score: float
    issues: List[dict] = field(default_factory=list)
    details: dict = field(default_factory=dict)
    created_at: float = field(default_factory=lambda: time.time())

    @property
    def issues_count(self) -> int:
        return len(self.issues)

    def as_dict(self) -> dict:
        payload = asdict(self)
        payload["issues_count"] = self.issues_count
        return payload


@dataclass
class ScanComparisonRecord:
    user_id: str
    website_url: str
    previous_seo_score: float
    current_seo_score: float
    score_change: float
    new_issues: List[dict] = field(default_factory=list)
    fixed_issues: List[dict] = field(default_factory=list)
    comparison_id: str = field(default_factory=_new_id)
    created_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class UsageRecord:
    user_id: str
    reset_date: float
    scans_used: int = 0
    optimizations_used: int = 0
    ai_rewrites_used: int = 0
    updated_at: float = field(default_factory=lambda: time.time())

    def used(self, usage_type: UsageType) -> int:
        return getattr(self, usage_type.column)


@dataclass
class ProfileRecord:
    user_id: str
    tier: PlanTier = PlanTier.FREE
    role: UserRole = UserRole.USER
    email: Optional[str] = None


@dataclass
class UserPlanRecord:
    user_id: str
    plan_id: str
    start_date: float = field(default_factory=lambda: time.time())
    used_count: int = 0


@dataclass
class OptimizationRecord:
    user_id: str
    website_url: str
    seo_score_before: Optional[float] = None
    seo_score_after: Optional[float] = None
    desktop_speed_before: Optional[float] = None
    desktop_speed_after: Optional[float] = None
    mobile_speed_before: Optional[float] = None
    mobile_speed_after: Optional[float] = None
    fixes_applied: List[dict] = field(default_factory=list)
    backup_url: Optional[str] = None
    report_url: Optional[str] = None
    status: OptimizationStatus = OptimizationStatus.COMPLETED
    history_id: str = field(default_factory=_new_id)
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        payload = asdict(self)
        payload["status"] = self.status.value
        return payload


@dataclass
class ApiTokenRecord:
    user_id: str
    token_name: str
    token_prefix: str
    token_hash: str
    rate_limit_per_hour: int
    is_active: bool = True
    last_used_at: Optional[float] = None
    token_id: str = field(default_factory=_new_id)
    created_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        # Never expose the hash.
        return {
            "token_id": self.token_id,
            "token_name": self.token_name,
            "token_prefix": self.token_prefix,
            "rate_limit_per_hour": self.rate_limit_per_hour,
            "is_active": self.is_active,
            "last_used_at": self.last_used_at,
            "created_at": self.created_at,
        }


@dataclass
class OrganizationRecord:
    name: str
    created_by: str
    description: Optional[str] = None
    organization_id: str = field(default_factory=_new_id)
    created_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return asdict(self)


@dataclass
class MemberRecord:
    organization_id: str
    email: str
    role: MemberRole
    status: MemberStatus = MemberStatus.INVITED
    user_id: Optional[str] = None
    invited_by: Optional[str] = None
    member_id: str = field(default_factory=_new_id)
    created_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        payload = asdict(self)
        payload["role"] = self.role.value
        payload["status"] = self.status.value
        return payload


class DbClient(Protocol):
    """Interface for data store access."""

    # Scheduled scans
    def create_scheduled_scan(
        self,
        user_id: str,
        website_url: str,
        frequency_days: int,
        *,
        email_alerts: bool = True,
        auto_optimize: bool = False,
        next_scan_at: Optional[float] = None,
    ) -> ScheduledScanRecord:
        ...

    def get_scheduled_scan(self, scan_id: str) -> Optional[ScheduledScanRecord]:
        ...

    def list_scheduled_scans(self, user_id: str) -> list[ScheduledScanRecord]:
        ...

    def list_due_scans(self, now: float) -> list[ScheduledScanRecord]:
        ...

    def claim_scheduled_scan(
        self, scan_id: str, *, now: float, lease_seconds: float
    ) -> bool:
        """Leases an active scan that is still due; False if it is claimed or was rescheduled."""
        ...

    def update_scheduled_scan(
        self, scan_id: str, **changes
    ) -> Optional[ScheduledScanRecord]:
        ...

    # Scan results and comparisons
    def save_scan_result(
        self,
        user_id: str,
        website_url: str,
        seo_score: float,
        issues: list[dict],
        details: Optional[dict] = None,
    ) -> ScanResultRecord:
        ...

    def get_latest_scan_result(
        self, user_id: str, website_url: str
    ) -> Optional[ScanResultRecord]:
        ...

    def list_scan_results(
        self, user_id: str, *, website_url: Optional[str] = None, limit: int = 10
    ) -> list[ScanResultRecord]:
        ...

    def count_scan_results_since(self, user_id: str, since: float) -> int:
        ...

    def save_scan_comparison(self, comparison: ScanComparisonRecord) -> None:
        ...

    def list_scan_comparisons(
        self, user_id: str, *, website_url: Optional[str] = None, limit: int = 20
    ) -> list[ScanComparisonRecord]:
        ...

    # Usage, profiles and plans
    def get_usage(self, user_id: str) -> Optional[UsageRecord]:
        ...

    def create_usage(self, user_id: str, reset_date: float) -> UsageRecord:
        ...

    def increment_usage(self, user_id: str, usage_type: UsageType) -> Optional[int]:
        ...

    def reset_usage(self, user_id: str, *, now: float, next_reset: float) -> bool:
        ...

    def get_profile(self, user_id: str) -> Optional[ProfileRecord]:
        ...

    def save_profile(self, profile: ProfileRecord) -> None:
        ...

    def get_user_plan(self, user_id: str) -> Optional[UserPlanRecord]:
        ...

    def create_user_plan(self, user_id: str, plan_id: str) -> UserPlanRecord:
        ...

    def increment_plan_usage(self, user_id: str) -> bool:
        ...

    # Optimization history
    def save_optimization(self, record: OptimizationRecord) -> None:
        ...

    def get_optimization(self, history_id: str) -> Optional[OptimizationRecord]:
        ...

    def list_optimizations(
        self,
        user_id: str,
        *,
        website_url: Optional[str] = None,
        with_backup_only: bool = False,
    ) -> list[OptimizationRecord]:
        ...

    def update_optimization_status(
        self, history_id: str, user_id: str, status: OptimizationStatus
    ) -> bool:
        ...

    def count_optimizations_since(self, user_id: str, since: float) -> int:
        ...

    # AI content logs
    def save_ai_content_log(
        self, user_id: str, content_type: str, website_url: Optional[str]
    ) -> None:
        ...

    def count_ai_content_logs_since(self, user_id: str, since: float) -> int:
        ...

    # API tokens and per-token rate limiting
    def create_api_token(self, record: ApiTokenRecord) -> None:
        ...

    def get_active_token_by_hash(self, token_hash: str) -> Optional[ApiTokenRecord]:
        ...

    def list_api_tokens(self, user_id: str) -> list[ApiTokenRecord]:
        ...

    def deactivate_api_token(self, token_id: str, user_id: str) -> bool:
        ...

    def check_api_rate_limit(
        self, token_id: str, endpoint: str, rate_limit: int, *, now: float
    ) -> bool:
        ...

    def record_api_usage(
        self, token_id: str, user_id: str, endpoint: str, *, now: float
    ) -> None:
        ...

    # Organizations
    def create_organization(
        self, name: str, created_by: str, description: Optional[str] = None
    ) -> OrganizationRecord:
        ...

    def get_organization(self, organization_id: str) -> Optional[OrganizationRecord]:
        ...

    def add_member(self, member: MemberRecord) -> None:
        ...

    def get_member(self, member_id: str) -> Optional[MemberRecord]:
        ...

    def list_members(
        self, organization_id: str, *, active_only: bool = True
    ) -> list[MemberRecord]:
        ...

    def update_member_role(self, member_id: str, role: MemberRole) -> bool:
        ...

    def deactivate_member(self, member_id: str) -> bool:
        ...


class InMemoryDbClient:
    """Simple in-memory store for development and tests."""

    def __init__(self):
        self.scheduled_scans: Dict[str, ScheduledScanRecord] = {}
        self.scan_results: List[ScanResultRecord] = []
        self.comparisons: List[ScanComparisonRecord] = []
        self.usage: Dict[str, UsageRecord] = {}
        self.profiles: Dict[str, ProfileRecord] = {}
        self.plans: Dict[str, UserPlanRecord] = {}
        self.optimizations: Dict[str, OptimizationRecord] = {}
        self.ai_logs: List[dict] = []
        self.tokens: Dict[str, ApiTokenRecord] = {}
        self.api_usage: Dict[tuple[str, str, float], int] = {}
        self.organizations: Dict[str, OrganizationRecord] = {}
        self.members: Dict[str, MemberRecord] = {}

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        self.scheduled_scans.clear()
        self.scan_results.clear()
        self.comparisons.clear()
        self.usage.clear()
        self.profiles.clear()
        self.plans.clear()
        self.optimizations.clear()
        self.ai_logs.clear()
        self.tokens.clear()
        self.api_usage.clear()
        self.organizations.clear()
        self.members.clear()

    def create_scheduled_scan(
        self,
        user_id: str,
        website_url: str,
        frequency_days: int,
        *,
        email_alerts: bool = True,
        auto_optimize: bool = False,
        next_scan_at: Optional[float] = None,
    ) -> ScheduledScanRecord:
        record = ScheduledScanRecord(
            scan_id=_new_id(),
            user_id=user_id,
            website_url=website_url,
            frequency_days=frequency_days,
            next_scan_at=next_scan_at if next_scan_at is not None else time.time(),
            email_alerts=email_alerts,
            auto_optimize=auto_optimize,
        )
        self.scheduled_scans[record.scan_id] = record
        return record

    def get_scheduled_scan(self, scan_id: str) -> Optional[ScheduledScanRecord]:
        return self.scheduled_scans.get(scan_id)

    def list_scheduled_scans(self, user_id: str) -> list[ScheduledScanRecord]:
        return [s for s in self.scheduled_scans.values() if s.user_id == user_id]

    def list_due_scans(self, now: float) -> list[ScheduledScanRecord]:
        due = [s for s in self.scheduled_scans.values() if s.is_due(now)]
        return sorted(due, key=lambda s: s.next_scan_at)

    def claim_scheduled_scan(
        self, scan_id: str, *, now: float, lease_seconds: float
    ) -> bool:
        scan = self.scheduled_scans.get(scan_id)
        if not scan or not scan.is_active:
            return False
        if scan.next_scan_at is None or scan.next_scan_at > now:
            return False
        if scan.claimed_until is not None and scan.claimed_until > now:
            return False
        scan.claimed_until = now + lease_seconds
        scan.updated_at = now
        return True

    def update_scheduled_scan(
        self, scan_id: str, **changes
    ) -> Optional[ScheduledScanRecord]:
        unknown = set(changes) - SCHEDULED_SCAN_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")
        scan = self.scheduled_scans.get(scan_id)
        if not scan:
            return None
        for key, value in changes.items():
            setattr(scan, key, value)
        scan.updated_at = time.time()
        return scan

    def save_scan_result(
        self,
        user_id: str,
        website_url: str,
        seo_score: float,
        issues: list[dict],
        details: Optional[dict] = None,
    ) -> ScanResultRecord:
        record = ScanResultRecord(
            result_id=_new_id(),
            user_id=user_id,
            website_url=website_url,
            seo_score=seo_score,
            issues=list(issues),
            details=dict(details or {}),
        )
        self.scan_results.append(record)
        return record

    def get_latest_scan_result(
        self, user_id: str, website_url: str
    ) -> Optional[ScanResultRecord]:
        results = self.list_scan_results(user_id, website_url=website_url, limit=1)
        return results[0] if results else None

    def list_scan_results(
        self, user_id: str, *, website_url: Optional[str] = None, limit: int = 10
    ) -> list[ScanResultRecord]:
        matches = [
            r
            for r in self.scan_results
            if r.user_id == user_id
            and (website_url is None or r.website_url == website_url)
        ]
        # Stable sort keeps insertion order for equal timestamps; newest first.
        ordered = sorted(
            enumerate(matches), key=lambda pair: (pair[1].created_at, pair[0]), reverse=True
        )
        return [r for _, r in ordered][:limit]

    def count_scan_results_since(self, user_id: str, since: float) -> int:
        return sum(
            1 for r in self.scan_results if r.user_id == user_id and r.created_at >= since
        )

    def save_scan_comparison(self, comparison: ScanComparisonRecord) -> None:
        self.comparisons.append(comparison)

    def list_scan_comparisons(
        self, user_id: str, *, website_url: Optional[str] = None, limit: int = 20
    ) -> list[ScanComparisonRecord]:
        matches = [
            c
            for c in reversed(self.comparisons)
            if c.user_id == user_id
            and (website_url is None or c.website_url == website_url)
        ]
        return matches[:limit]

    def get_usage(self, user_id: str) -> Optional[UsageRecord]:
        return self.usage.get(user_id)

    def create_usage(self, user_id: str, reset_date: float) -> UsageRecord:
        record = UsageRecord(user_id=user_id, reset_date=reset_date)
        self.usage[user_id] = record
        return record

    def increment_usage(self, user_id: str, usage_type: UsageType) -> Optional[int]:
        record = self.usage.get(user_id)
        if not record:
            return None
        value = getattr(record, usage_type.column) + 1
        setattr(record, usage_type.column, value)
        record.updated_at = time.time()
        return value

    def reset_usage(self, user_id: str, *, now: float, next_reset: float) -> bool:
        record = self.usage.get(user_id)
        if not record or record.reset_date > now:
            return False
        for usage_type in UsageType:
            setattr(record, usage_type.column, 0)
        record.reset_date = next_reset
        record.updated_at = now
        return True

    def get_profile(self, user_id: str) -> Optional[ProfileRecord]:
        return self.profiles.get(user_id)

    def save_profile(self, profile: ProfileRecord) -> None:
        self.profiles[profile.user_id] = profile

    def get_user_plan(self, user_id: str) -> Optional[UserPlanRecord]:
        return self.plans.get(user_id)

    def create_user_plan(self, user_id: str, plan_id: str) -> UserPlanRecord:
        record = UserPlanRecord(user_id=user_id, plan_id=plan_id)
        self.plans[user_id] = record
        return record

    def increment_plan_usage(self, user_id: str) -> bool:
        plan = self.plans.get(user_id)
        if not plan:
            return False
        plan.used_count += 1
        return True

    def save_optimization(self, record: OptimizationRecord) -> None:
        self.optimizations[record.history_id] = record

    def get_optimization(self, history_id: str) -> Optional[OptimizationRecord]:
        return self.optimizations.get(history_id)

    def list_optimizations(
        self,
        user_id: str,
        *,
        website_url: Optional[str] = None,
        with_backup_only: bool = False,
    ) -> list[OptimizationRecord]:
        matches = [
            o
            for o in self.optimizations.values()
            if o.user_id == user_id
            and (website_url is None or o.website_url == website_url)
            and (not with_backup_only or o.backup_url)
        ]
        return sorted(matches, key=lambda o: o.created_at, reverse=True)

    def update_optimization_status(
        self, history_id: str, user_id: str, status: OptimizationStatus
    ) -> bool:
        record = self.optimizations.get(history_id)
        if not record or record.user_id != user_id:
            return False
        record.status = status
        record.updated_at = time.time()
        return True

    def count_optimizations_since(self, user_id: str, since: float) -> int:
        return sum(
            1
            for o in self.optimizations.values()
            if o.user_id == user_id and o.created_at >= since
        )

    def save_ai_content_log(
        self, user_id: str, content_type: str, website_url: Optional[str]
    ) -> None:
        self.ai_logs.append(
            {
                "log_id": _new_id(),
                "user_id": user_id,
                "content_type": content_type,
                "website_url": website_url,
                "created_at": time.time(),
            }
        )

    def count_ai_content_logs_since(self, user_id: str, since: float) -> int:
        return sum(
            1 for log in self.ai_logs if log["user_id"] == user_id and log["created_at"] >= since
        )

    def create_api_token(self, record: ApiTokenRecord) -> None:
        self.tokens[record.token_id] = record

    def get_active_token_by_hash(self, token_hash: str) -> Optional[ApiTokenRecord]:
        for token in self.tokens.values():
            if token.token_hash == token_hash and token.is_active:
                return token
        return None

    def list_api_tokens(self, user_id: str) -> list[ApiTokenRecord]:
        matches = [t for t in self.tokens.values() if t.user_id == user_id]
        return sorted(matches, key=lambda t: t.created_at, reverse=True)

    def deactivate_api_token(self, token_id: str, user_id: str) -> bool:
        token = self.tokens.get(token_id)
        if not token or token.user_id != user_id:
            return False
        token.is_active = False
        return True

    def check_api_rate_limit(
        self, token_id: str, endpoint: str, rate_limit: int, *, now: float
    ) -> bool:
        used = self.api_usage.get((token_id, endpoint, _hour_bucket(now)), 0)
        return used < rate_limit

    def record_api_usage(
        self, token_id: str, user_id: str, endpoint: str, *, now: float
    ) -> None:
        key = (token_id, endpoint, _hour_bucket(now))
        self.api_usage[key] = self.api_usage.get(key, 0) + 1
        token = self.tokens.get(token_id)
        if token:
            token.last_used_at = now

    def create_organization(
        self, name: str, created_by: str, description: Optional[str] = None
    ) -> OrganizationRecord:
        record = OrganizationRecord(name=name, created_by=created_by, description=description)
        self.organizations[record.organization_id] = record
        return record

    def get_organization(self, organization_id: str) -> Optional[OrganizationRecord]:
        return self.organizations.get(organization_id)

    def add_member(self, member: MemberRecord) -> None:
        self.members[member.member_id] = member

    def get_member(self, member_id: str) -> Optional[MemberRecord]:
        return self.members.get(member_id)

    def list_members(
        self, organization_id: str, *, active_only: bool = True
    ) -> list[MemberRecord]:
        matches = [
            m
            for m in self.members.values()
            if m.organization_id == organization_id
            and (not active_only or m.status == MemberStatus.ACTIVE)
        ]
        return sorted(matches, key=lambda m: m.created_at, reverse=True)

    def update_member_role(self, member_id: str, role: MemberRole) -> bool:
        member = self.members.get(member_id)
        if not member:
            return False
        member.role = role
        return True

    def deactivate_member(self, member_id: str) -> bool:
        member = self.members.get(member_id)
        if not member:
            return False
        member.status = MemberStatus.INACTIVE
        return True


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        self.engine = create_engine(
            database_url,
            future=True,
            pool_pre_ping=True,
            pool_recycle=1800,
        )
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    @staticmethod
    def _to_scan_record(row: "ScheduledScanRow") -> ScheduledScanRecord:
        return ScheduledScanRecord(
            scan_id=row.scan_id,
            user_id=row.user_id,
            website_url=row.website_url,
            frequency_days=row.frequency_days,
            next_scan_at=row.next_scan_at,
            last_scan_at=row.last_scan_at,
            is_active=row.is_active,
            email_alerts=row.email_alerts,
            auto_optimize=row.auto_optimize,
            claimed_until=row.claimed_until,
            failure_count=row.failure_count,
            last_error=row.last_error,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _to_result_record(row: "ScanResultRow") -> ScanResultRecord:
        return ScanResultRecord(
            result_id=row.result_id,
            user_id=row.user_id,
            website_url=row.website_url,
            seo_score=row.seo_score,
            issues=list(row.issues or []),
            details=dict(row.details or {}),
            created_at=row.created_at,
        )

    @staticmethod
    def _to_optimization_record(row: "OptimizationRow") -> OptimizationRecord:
        return OptimizationRecord(
            history_id=row.history_id,
            user_id=row.user_id,
            website_url=row.website_url,
            seo_score_before=row.seo_score_before,
            seo_score_after=row.seo_score_after,
            desktop_speed_before=row.desktop_speed_before,
            desktop_speed_after=row.desktop_speed_after,
            mobile_speed_before=row.mobile_speed_before,
            mobile_speed_after=row.mobile_speed_after,
            fixes_applied=list(row.fixes_applied or []),
            backup_url=row.backup_url,
            report_url=row.report_url,
            status=OptimizationStatus(row.status),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    @staticmethod
    def _to_token_record(row: "ApiTokenRow") -> ApiTokenRecord:
        return ApiTokenRecord(
            token_id=row.token_id,
            user_id=row.user_id,
            token_name=row.token_name,
            token_prefix=row.token_prefix,
            token_hash=row.token_hash,
            rate_limit_per_hour=row.rate_limit_per_hour,
            is_active=row.is_active,
            last_used_at=row.last_used_at,
            created_at=row.created_at,
        )

    @staticmethod
    def _to_member_record(row: "MemberRow") -> MemberRecord:
        return MemberRecord(
            member_id=row.member_id,
            organization_id=row.organization_id,
            email=row.email,
            role=MemberRole(row.role),
            status=MemberStatus(row.status),
            user_id=row.user_id,
            invited_by=row.invited_by,
            created_at=row.created_at,
        )

    def create_scheduled_scan(
        self,
        user_id: str,
        website_url: str,
        frequency_days: int,
        *,
        email_alerts: bool = True,
        auto_optimize: bool = False,
        next_scan_at: Optional[float] = None,
    ) -> ScheduledScanRecord:
        now = time.time()
        with self.Session() as session:
            row = ScheduledScanRow(
                scan_id=_new_id(),
                user_id=user_id,
                website_url=website_url,
                frequency_days=frequency_days,
                next_scan_at=next_scan_at if next_scan_at is not None else now,
                last_scan_at=None,
                is_active=True,
                email_alerts=email_alerts,
                auto_optimize=auto_optimize,
                claimed_until=None,
                failure_count=0,
                last_error=None,
                created_at=now,
                updated_at=now,
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_scan_record(row)

    def get_scheduled_scan(self, scan_id: str) -> Optional[ScheduledScanRecord]:
        with self.Session() as session:
            row = session.get(ScheduledScanRow, scan_id)
            return self._to_scan_record(row) if row else None

    def list_scheduled_scans(self, user_id: str) -> list[ScheduledScanRecord]:
        with self.Session() as session:
            stmt = (
                select(ScheduledScanRow)
                .where(ScheduledScanRow.user_id == user_id)
                .order_by(ScheduledScanRow.created_at.desc())
            )
            return [self._to_scan_record(r) for r in session.execute(stmt).scalars()]

    def list_due_scans(self, now: float) -> list[ScheduledScanRecord]:
        with self.Session() as session:
            stmt = (
                select(ScheduledScanRow)
                .where(
                    ScheduledScanRow.is_active.is_(True),
                    ScheduledScanRow.next_scan_at <= now,
                )
                .order_by(ScheduledScanRow.next_scan_at.asc())
            )
            return [self._to_scan_record(r) for r in session.execute(stmt).scalars()]

    def claim_scheduled_scan(
        self, scan_id: str, *, now: float, lease_seconds: float
    ) -> bool:
        with self.Session() as session:
            stmt = (
                update(ScheduledScanRow)
                .where(
                    ScheduledScanRow.scan_id == scan_id,
                    ScheduledScanRow.is_active.is_(True),
                    ScheduledScanRow.next_scan_at <= now,
                    or_(
                        ScheduledScanRow.claimed_until.is_(None),
                        ScheduledScanRow.claimed_until <= now,
                    ),
                )
                .values(claimed_until=now + lease_seconds, updated_at=now)
            )
            result = session.execute(stmt)
            session.commit()
            return result.rowcount == 1

    def update_scheduled_scan(
        self, scan_id: str, **changes
    ) -> Optional[ScheduledScanRecord]:
        unknown = set(changes) - SCHEDULED_SCAN_MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Cannot update fields: {sorted(unknown)}")
        with self.Session() as session:
            row = session.get(ScheduledScanRow, scan_id)
            if not row:
                return None
            for key, value in changes.items():
                setattr(row, key, value)
            row.updated_at = time.time()
            session.commit()
            session.refresh(row)
            return self._to_scan_record(row)

    def save_scan_result(
        self,
        user_id: str,
        website_url: str,
        seo_score: float,
        issues: list[dict],
        details: Optional[dict] = None,
    ) -> ScanResultRecord:
        with self.Session() as session:
            row = ScanResultRow(
                result_id=_new_id(),
                user_id=user_id,
                website_url=website_url,
                seo_score=seo_score,
                issues=list(issues),
                details=dict(details or {}),
                created_at=time.time(),
            )
            session.add(row)
            session.commit()
            session.refresh(row)
            return self._to_result_record(row)

    def get_latest_scan_result(
        self, user_id: str, website_url: str
    ) -> Optional[ScanResultRecord]:
        results = self.list_scan_results(user_id, website_url=website_url, limit=1)
        return results[0] if results else None

    def list_scan_results(
        self, user_id: str, *, website_url: Optional[str] = None, limit: int = 10
    ) -> list[ScanResultRecord]:
        with self.Session() as session:
            stmt = select(ScanResultRow).where(ScanResultRow.user_id == user_id)
            if website_url is not None:
                stmt = stmt.where(ScanResultRow.website_url == website_url)
            stmt = stmt.order_by(
                ScanResultRow.created_at.desc(), ScanResultRow.seq.desc()
            ).limit(limit)
            return [self._to_result_record(r) for r in session.execute(stmt).scalars()]

    def count_scan_results_since(self, user_id: str, since: float) -> int:
        with self.Session() as session:
            stmt = select(func.count()).select_from(ScanResultRow).where(
                ScanResultRow.user_id == user_id, ScanResultRow.created_at >= since
            )
            return session.execute(stmt).scalar_one()

    def save_scan_comparison(self, comparison: ScanComparisonRecord) -> None:
        with self.Session() as session:
            session.add(
                ScanComparisonRow(
                    comparison_id=comparison.comparison_id,
                    user_id=comparison.user_id,
                    website_url=comparison.website_url,
                    previous_seo_score=comparison.previous_seo_score,
                    current_seo_score=comparison.current_seo_score,
                    score_change=comparison.score_change,
                    new_issues=comparison.new_issues,
                    fixed_issues=comparison.fixed_issues,
                    created_at=comparison.created_at,
                )
            )
            session.commit()

    def list_scan_comparisons(
        self, user_id: str, *, website_url: Optional[str] = None, limit: int = 20
    ) -> list[ScanComparisonRecord]:
        with self.Session() as session:
            stmt = select(ScanComparisonRow).where(ScanComparisonRow.user_id == user_id)
            if website_url is not None:
                stmt = stmt.where(ScanComparisonRow.website_url == website_url)
            stmt = stmt.order_by(ScanComparisonRow.created_at.desc()).limit(limit)
            return [
                ScanComparisonRecord(
                    comparison_id=r.comparison_id,
                    user_id=r.user_id,
                    website_url=r.website_url,
                    previous_seo_score=r.previous_seo_score,
                    current_seo_score=r.current_seo_score,
                    score_change=r.score_change,
                    new_issues=list(r.new_issues or []),
                    fixed_issues=list(r.fixed_issues or []),
                    created_at=r.created_at,
                )
                for r in session.execute(stmt).scalars()
            ]

    def get_usage(self, user_id: str) -> Optional[UsageRecord]:
        with self.Session() as session:
            row = session.get(UsageRow, user_id)
            if not row:
                return None
            return UsageRecord(
                user_id=row.user_id,
                reset_date=row.reset_date,
                scans_used=row.scans_used,
                optimizations_used=row.optimizations_used,
                ai_rewrites_used=row.ai_rewrites_used,
                updated_at=row.updated_at,
            )

    def create_usage(self, user_id: str, reset_date: float) -> UsageRecord:
        now = time.time()
        with self.Session() as session:
            session.add(
                UsageRow(
                    user_id=user_id,
                    reset_date=reset_date,
                    scans_used=0,
                    optimizations_used=0,
                    ai_rewrites_used=0,
                    updated_at=now,
                )
            )
            session.commit()
        return UsageRecord(user_id=user_id, reset_date=reset_date, updated_at=now)

    def increment_usage(self, user_id: str, usage_type: UsageType) -> Optional[int]:
        column = getattr(UsageRow, usage_type.column)
        with self.Session() as session:
            result = session.execute(
                update(UsageRow)
                .where(UsageRow.user_id == user_id)
                .values({column: column + 1, UsageRow.updated_at: time.time()})
            )
            if result.rowcount != 1:
                session.rollback()
                return None
            value = session.execute(
                select(column).where(UsageRow.user_id == user_id)
            ).scalar_one()
            session.commit()
            return value

    def reset_usage(self, user_id: str, *, now: float, next_reset: float) -> bool:
        # Conditional on reset_date so concurrent callers reset a period once.
        with self.Session() as session:
            result = session.execute(
                update(UsageRow)
                .where(UsageRow.user_id == user_id, UsageRow.reset_date <= now)
                .values(
                    scans_used=0,
                    optimizations_used=0,
                    ai_rewrites_used=0,
                    reset_date=next_reset,
                    updated_at=now,
                )
            )
            session.commit()
            return result.rowcount == 1

    def get_profile(self, user_id: str) -> Optional[ProfileRecord]:
        with self.Session() as session:
            row = session.get(ProfileRow, user_id)
            if not row:
                return None
            return ProfileRecord(
                user_id=row.user_id,
                tier=PlanTier(row.tier),
                role=UserRole(row.role),
                email=row.email,
            )

    def save_profile(self, profile: ProfileRecord) -> None:
        with self.Session() as session:
            row = session.get(ProfileRow, profile.user_id)
            if row:
                row.tier = profile.tier.value
                row.role = profile.role.value
                row.email = profile.email
            else:
                session.add(
                    ProfileRow(
                        user_id=profile.user_id,
                        tier=profile.tier.value,
                        role=profile.role.value,
                        email=profile.email,
                    )
                )
            session.commit()

    def get_user_plan(self, user_id: str) -> Optional[UserPlanRecord]:
        with self.Session() as session:
            row = session.get(UserPlanRow, user_id)
            if not row:
                return None
            return UserPlanRecord(
                user_id=row.user_id,
                plan_id=row.plan_id,
                start_date=row.start_date,
                used_count=row.used_count,
            )

    def create_user_plan(self, user_id: str, plan_id: str) -> UserPlanRecord:
        record = UserPlanRecord(user_id=user_id, plan_id=plan_id)
        with self.Session() as session:
            session.add(
                UserPlanRow(
                    user_id=record.user_id,
                    plan_id=record.plan_id,
                    start_date=record.start_date,
                    used_count=0,
                )
            )
            session.commit()
        return record

    def increment_plan_usage(self, user_id: str) -> bool:
        with self.Session() as session:
            result = session.execute(
                update(UserPlanRow)
                .where(UserPlanRow.user_id == user_id)
                .values(used_count=UserPlanRow.used_count + 1)
            )
            session.commit()
            return result.rowcount == 1

    def save_optimization(self, record: OptimizationRecord) -> None:
        with self.Session() as session:
            session.add(
                OptimizationRow(
                    history_id=record.history_id,
                    user_id=record.user_id,
                    website_url=record.website_url,
                    seo_score_before=record.seo_score_before,
                    seo_score_after=record.seo_score_after,
                    desktop_speed_before=record.desktop_speed_before,
                    desktop_speed_after=record.desktop_speed_after,
                    mobile_speed_before=record.mobile_speed_before,
                    mobile_speed_after=record.mobile_speed_after,
                    fixes_applied=record.fixes_applied,
                    backup_url=record.backup_url,
                    report_url=record.report_url,
                    status=record.status.value,
                    created_at=record.created_at,
                    updated_at=record.updated_at,
                )
            )
            session.commit()

    def get_optimization(self, history_id: str) -> Optional[OptimizationRecord]:
        with self.Session() as session:
            row = session.get(OptimizationRow, history_id)
            return self._to_optimization_record(row) if row else None

    def list_optimizations(
        self,
        user_id: str,
        *,
        website_url: Optional[str] = None,
        with_backup_only: bool = False,
    ) -> list[OptimizationRecord]:
        with self.Session() as session:
            stmt = select(OptimizationRow).where(OptimizationRow.user_id == user_id)
            if website_url is not None:
                stmt = stmt.where(OptimizationRow.website_url == website_url)
            if with_backup_only:
                stmt = stmt.where(OptimizationRow.backup_url.is_not(None))
            stmt = stmt.order_by(OptimizationRow.created_at.desc())
            return [
                self._to_optimization_record(r) for r in session.execute(stmt).scalars()
            ]

    def update_optimization_status(
        self, history_id: str, user_id: str, status: OptimizationStatus
    ) -> bool:
        with self.Session() as session:
            result = session.execute(
                update(OptimizationRow)
                .where(
                    OptimizationRow.history_id == history_id,
                    OptimizationRow.user_id == user_id,
                )
                .values(status=status.value, updated_at=time.time())
            )
            session.commit()
            return result.rowcount == 1

    def count_optimizations_since(self, user_id: str, since: float) -> int:
        with self.Session() as session:
            stmt = select(func.count()).select_from(OptimizationRow).where(
                OptimizationRow.user_id == user_id, OptimizationRow.created_at >= since
            )
            return session.execute(stmt).scalar_one()

    def save_ai_content_log(
        self, user_id: str, content_type: str, website_url: Optional[str]
    ) -> None:
        with self.Session() as session:
            session.add(
                AiContentLogRow(
                    log_id=_new_id(),
                    user_id=user_id,
                    content_type=content_type,
                    website_url=website_url,
                    created_at=time.time(),
                )
            )
            session.commit()

    def count_ai_content_logs_since(self, user_id: str, since: float) -> int:
        with self.Session() as session:
            stmt = select(func.count()).select_from(AiContentLogRow).where(
                AiContentLogRow.user_id == user_id, AiContentLogRow.created_at >= since
            )
            return session.execute(stmt).scalar_one()

    def create_api_token(self, record: ApiTokenRecord) -> None:
        with self.Session() as session:
            session.add(
                ApiTokenRow(
                    token_id=record.token_id,
                    user_id=record.user_id,
                    token_name=record.token_name,
                    token_prefix=record.token_prefix,
                    token_hash=record.token_hash,
                    rate_limit_per_hour=record.rate_limit_per_hour,
                    is_active=record.is_active,
                    last_used_at=record.last_used_at,
                    created_at=record.created_at,
                )
            )
            session.commit()

    def get_active_token_by_hash(self, token_hash: str) -> Optional[ApiTokenRecord]:
        with self.Session() as session:
            stmt = select(ApiTokenRow).where(
                ApiTokenRow.token_hash == token_hash, ApiTokenRow.is_active.is_(True)
            )
            row = session.execute(stmt).scalars().first()
            return self._to_token_record(row) if row else None

    def list_api_tokens(self, user_id: str) -> list[ApiTokenRecord]:
        with self.Session() as session:
            stmt = (
                select(ApiTokenRow)
                .where(ApiTokenRow.user_id == user_id)
                .order_by(ApiTokenRow.created_at.desc())
            )
            return [self._to_token_record(r) for r in session.execute(stmt).scalars()]

    def deactivate_api_token(self, token_id: str, user_id: str) -> bool:
        with self.Session() as session:
            result = session.execute(
                update(ApiTokenRow)
                .where(ApiTokenRow.token_id == token_id, ApiTokenRow.user_id == user_id)
                .values(is_active=False)
            )
            session.commit()
            return result.rowcount == 1

    def check_api_rate_limit(
        self, token_id: str, endpoint: str, rate_limit: int, *, now: float
    ) -> bool:
        with self.Session() as session:
            row = session.get(ApiUsageRow, (token_id, endpoint, _hour_bucket(now)))
            used = row.request_count if row else 0
            return used < rate_limit

    def record_api_usage(
        self, token_id: str, user_id: str, endpoint: str, *, now: float
    ) -> None:
        bucket = _hour_bucket(now)
        with self.Session() as session:
            result = session.execute(
                update(ApiUsageRow)
                .where(
                    ApiUsageRow.token_id == token_id,
                    ApiUsageRow.endpoint == endpoint,
                    ApiUsageRow.hour_bucket == bucket,
                )
                .values(request_count=ApiUsageRow.request_count + 1)
            )
            if result.rowcount == 0:
                session.add(
                    ApiUsageRow(
                        token_id=token_id,
                        endpoint=endpoint,
                        hour_bucket=bucket,
                        user_id=user_id,
                        request_count=1,
                    )
                )
            session.execute(
                update(ApiTokenRow)
                .where(ApiTokenRow.token_id == token_id)
                .values(last_used_at=now)
            )
            session.commit()

    def create_organization(
        self, name: str, created_by: str, description: Optional[str] = None
    ) -> OrganizationRecord:
        record = OrganizationRecord(name=name, created_by=created_by, description=description)
        with self.Session() as session:
            session.add(
                OrganizationRow(
                    organization_id=record.organization_id,
                    name=record.name,
                    description=record.description,
                    created_by=record.created_by,
                    created_at=record.created_at,
                )
            )
            session.commit()
        return record

    def get_organization(self, organization_id: str) -> Optional[OrganizationRecord]:
        with self.Session() as session:
            row = session.get(OrganizationRow, organization_id)
            if not row:
                return None
            return OrganizationRecord(
                organization_id=row.organization_id,
                name=row.name,
                description=row.description,
                created_by=row.created_by,
                created_at=row.created_at,
            )

    def add_member(self, member: MemberRecord) -> None:
        with self.Session() as session:
            session.add(
                MemberRow(
                    member_id=member.member_id,
                    organization_id=member.organization_id,
                    email=member.email,
                    role=member.role.value,
                    status=member.status.value,
                    user_id=member.user_id,
                    invited_by=member.invited_by,
                    created_at=member.created_at,
                )
            )
            session.commit()

    def get_member(self, member_id: str) -> Optional[MemberRecord]:
        with self.Session() as session:
            row = session.get(MemberRow, member_id)
            return self._to_member_record(row) if row else None

    def list_members(
        self, organization_id: str, *, active_only: bool = True
    ) -> list[MemberRecord]:
        with self.Session() as session:
            stmt = select(MemberRow).where(MemberRow.organization_id == organization_id)
            if active_only:
                stmt = stmt.where(MemberRow.status == MemberStatus.ACTIVE.value)
            stmt = stmt.order_by(MemberRow.created_at.desc())
            return [self._to_member_record(r) for r in session.execute(stmt).scalars()]

    def update_member_role(self, member_id: str, role: MemberRole) -> bool:
        with self.Session() as session:
            result = session.execute(
                update(MemberRow).where(MemberRow.member_id == member_id).values(role=role.value)
            )
            session.commit()
            return result.rowcount == 1

    def deactivate_member(self, member_id: str) -> bool:
        with self.Session() as session:
            result = session.execute(
                update(MemberRow)
                .where(MemberRow.member_id == member_id)
                .values(status=MemberStatus.INACTIVE.value)
            )
            session.commit()
            return result.rowcount == 1


Base = declarative_base()


class ScheduledScanRow(Base):
    __tablename__ = "scheduled_scans"

    scan_id = Column("id", String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    website_url = Column(String, nullable=False)
    frequency_days = Column(Integer, nullable=False)
    next_scan_at = Column(Float, nullable=False, index=True)
    last_scan_at = Column(Float, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    email_alerts = Column(Boolean, nullable=False, default=True)
    auto_optimize = Column(Boolean, nullable=False, default=False)
    claimed_until = Column(Float, nullable=True)
    failure_count = Column(Integer, nullable=False, default=0)
    last_error = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class ScanResultRow(Base):
    __tablename__ = "scan_results"

    seq = Column(Integer, primary_key=True, autoincrement=True)
    result_id = Column(String, nullable=False, unique=True)
    user_id = Column(String, nullable=False, index=True)
    website_url = Column(String, nullable=False, index=True)
    seo_score = Column(Float, nullable=False)
    issues = Column(JSON, nullable=False)
    details = Column(JSON, nullable=False)
    created_at = Column(Float, nullable=False, index=True)


class ScanComparisonRow(Base):
    __tablename__ = "scan_comparisons"

    comparison_id = Column("id", String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    website_url = Column(String, nullable=False)
    previous_seo_score = Column(Float, nullable=False)
    current_seo_score = Column(Float, nullable=False)
    score_change = Column(Float, nullable=False)
    new_issues = Column(JSON, nullable=False)
    fixed_issues = Column(JSON, nullable=False)
    created_at = Column(Float, nullable=False)


class UsageRow(Base):
    __tablename__ = "user_usage"

    user_id = Column(String, primary_key=True)
    scans_used = Column(Integer, nullable=False, default=0)
    optimizations_used = Column(Integer, nullable=False, default=0)
    ai_rewrites_used = Column(Integer, nullable=False, default=0)
    reset_date = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class ProfileRow(Base):
    __tablename__ = "user_profiles"

    user_id = Column(String, primary_key=True)
    tier = Column(String, nullable=False, default=PlanTier.FREE.value)
    role = Column(String, nullable=False, default=UserRole.USER.value)
    email = Column(String, nullable=True)


class UserPlanRow(Base):
    __tablename__ = "user_plans"

    user_id = Column(String, primary_key=True)
    plan_id = Column(String, nullable=False)
    start_date = Column(Float, nullable=False)
    used_count = Column(Integer, nullable=False, default=0)


class OptimizationRow(Base):
    __tablename__ = "optimization_history"

    history_id = Column("id", String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    website_url = Column(String, nullable=False)
    seo_score_before = Column(Float, nullable=True)
    seo_score_after = Column(Float, nullable=True)
    desktop_speed_before = Column(Float, nullable=True)
    desktop_speed_after = Column(Float, nullable=True)
    mobile_speed_before = Column(Float, nullable=True)
    mobile_speed_after = Column(Float, nullable=True)
    fixes_applied = Column(JSON, nullable=False)
    backup_url = Column(String, nullable=True)
    report_url = Column(String, nullable=True)
    status = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class AiContentLogRow(Base):
    __tablename__ = "ai_content_logs"

    log_id = Column("id", String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    content_type = Column(String, nullable=False)
    website_url = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)


class ApiTokenRow(Base):
    __tablename__ = "api_tokens"

    token_id = Column("id", String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    token_name = Column(String, nullable=False)
    token_prefix = Column(String, nullable=False)
    token_hash = Column(String, nullable=False, unique=True)
    rate_limit_per_hour = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    last_used_at = Column(Float, nullable=True)
    created_at = Column(Float, nullable=False)


class ApiUsageRow(Base):
    __tablename__ = "api_usage"

    token_id = Column(String, primary_key=True)
    endpoint = Column(String, primary_key=True)
    hour_bucket = Column(Float, primary_key=True)
    user_id = Column(String, nullable=False)
    request_count = Column(Integer, nullable=False, default=0)


class OrganizationRow(Base):
    __tablename__ = "organizations"

    organization_id = Column("id", String, primary_key=True)
    name = Column(String, nullable=False)
    description = Column(String, nullable=True)
    created_by = Column(String, nullable=False)
    created_at = Column(Float, nullable=False)


class MemberRow(Base):
    __tablename__ = "organization_members"

    member_id = Column("id", String, primary_key=True)
    organization_id = Column(String, nullable=False, index=True)
    email = Column(String, nullable=False)
    role = Column(String, nullable=False)
    status = Column(String, nullable=False)
    user_id = Column(String, nullable=True)
    invited_by = Column(String, nullable=True)
    created_at = Column(Float, nullable=False)
