"""
HTTP routes for the SEO automation API.
"""

from __future__ import annotations

import logging
from typing import List, Optional
from urllib.parse import quote

from fastapi import APIRouter, Depends, Query

from backend.analyzer import SiteAnalyzer
from backend.auth import AuthUser, issue_api_token
from backend.db import ApiTokenRecord, DbClient, MemberRecord
from backend.dependencies import (
    get_analyzer,
    get_completion_client,
    get_current_user,
    get_db_client,
    get_notifier,
    get_optimizer,
    get_rescan_scheduler,
    get_rollback_service,
    get_usage_tracker,
    get_wp_client_factory,
    require_api_token,
    require_internal_key,
)
from backend.errors import (
    ForbiddenError,
    NotFoundError,
    ServiceError,
    UpstreamError,
    ValidationError,
)
from backend.notifier import AlertNotifier
from backend.optimizer import WebsiteOptimizer, WordPressClientFactory
from backend.publishing import schedule_post
from backend.rollback import RollbackService
from backend.scheduler import RescanScheduler
from backend.schemas import (
    ApiTokenCreate,
    IncrementUsageRequest,
    InvitationCreate,
    MemberUpdate,
    MetaSuggestRequest,
    OptimizeRequest,
    OrganizationCreate,
    RewriteRequest,
    RewriteResponse,
    RollbackRequest,
    ScanRequest,
    ScheduledScanCreate,
    ScheduledScanUpdate,
    ScheduleToWordPressRequest,
    SendScanAlertRequest,
)
from backend.usage import FEATURE_AI, UsageTracker
from models.completion import CompletionClient, CompletionError, InvalidCompletionResponse
from models.prompts import (
    METASUGGEST_SYSTEM_PROMPT,
    REWRITE_SYSTEM_PROMPT,
    make_metasuggest_prompt,
    make_rewrite_prompt,
    parse_metasuggest_response,
    parse_rewrite_response,
)
from shared.constants import MAX_RESULTS_LIMIT, SECONDS_PER_DAY
from shared.navigation import entries_for_role
from shared.types import MemberRole, MemberStatus, UsageType, UserRole, WordPressCredentials

logger = logging.getLogger(__name__)

router = APIRouter()


# --- Scheduled rescans ---


@router.post("/automated-rescan", dependencies=[Depends(require_internal_key)])
def automated_rescan(scheduler: RescanScheduler = Depends(get_rescan_scheduler)):
    """
    Runs one scheduler pass. Meant to be hit by cron; the rescan daemon
    does the same thing in-process.
    """
    return scheduler.run_once().as_dict()


@router.get("/scheduled-scans")
def list_scheduled_scans(
    user: AuthUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    scans = db.list_scheduled_scans(user.user_id)
    return {"success": True, "scans": [s.as_dict() for s in scans]}


@router.post("/scheduled-scans", status_code=201)
def create_scheduled_scan(
    payload: ScheduledScanCreate,
    user: AuthUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    scan = db.create_scheduled_scan(
        user.user_id,
        payload.website_url,
        payload.frequency_days,
        email_alerts=payload.email_alerts,
        auto_optimize=payload.auto_optimize,
    )
    logger.info("Scheduled %s every %d days for %s", scan.website_url, scan.frequency_days, user.user_id)
    return {"success": True, "scan": scan.as_dict()}


@router.patch("/scheduled-scans/{scan_id}")
def update_scheduled_scan(
    scan_id: str,
    payload: ScheduledScanUpdate,
    user: AuthUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    scan = db.get_scheduled_scan(scan_id)
    if not scan or scan.user_id != user.user_id:
        raise NotFoundError("Scheduled scan not found")

    changes = payload.model_dump(exclude_none=True)
    if "frequency_days" in changes and scan.last_scan_at is not None:
        changes["next_scan_at"] = scan.last_scan_at + changes["frequency_days"] * SECONDS_PER_DAY
    if changes.get("is_active") and not scan.is_active:
        # Reactivation starts a fresh failure streak.
        changes["failure_count"] = 0
        changes["last_error"] = None
    updated = db.update_scheduled_scan(scan_id, **changes)
    return {"success": True, "scan": updated.as_dict()}


@router.get("/scan-comparisons")
def list_scan_comparisons(
    url: Optional[str] = Query(default=None),
    limit: int = Query(default=20, ge=1, le=MAX_RESULTS_LIMIT),
    user: AuthUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    comparisons = db.list_scan_comparisons(user.user_id, website_url=url, limit=limit)
    return {"success": True, "comparisons": [c.as_dict() for c in comparisons]}


# --- Public API (API tokens) ---


@router.post("/v1/scan")
def api_scan(
    payload: ScanRequest,
    token: ApiTokenRecord = Depends(require_api_token("scan")),
    analyzer: SiteAnalyzer = Depends(get_analyzer),
    usage: UsageTracker = Depends(get_usage_tracker),
):
    result = analyzer.analyze(token.user_id, payload.url)
    if not usage.increment_usage(token.user_id, UsageType.SCANS):
        logger.error("Failed to increment scan usage for user %s", token.user_id)
    return {
        "success": True,
        "message": "Scan completed",
        "scan_id": result.result_id,
        "seo_score": result.seo_score,
    }


@router.get("/v1/results")
def api_results(
    url: Optional[str] = Query(default=None),
    limit: int = Query(default=10, ge=1, le=MAX_RESULTS_LIMIT),
    token: ApiTokenRecord = Depends(require_api_token("results")),
    db: DbClient = Depends(get_db_client),
):
    results = db.list_scan_results(token.user_id, website_url=url, limit=limit)
    return {
        "success": True,
        "results": [r.as_dict() for r in results],
        "count": len(results),
    }


@router.post("/v1/metasuggest")
def api_metasuggest(
    payload: MetaSuggestRequest,
    token: ApiTokenRecord = Depends(require_api_token("metasuggest")),
    completion: CompletionClient = Depends(get_completion_client),
):
    if not payload.title or not payload.content:
        raise ValidationError("Title and content are required")

    try:
        text = completion.complete(
            METASUGGEST_SYSTEM_PROMPT,
            make_metasuggest_prompt(payload.title, payload.content),
        )
    except (CompletionError, InvalidCompletionResponse) as exc:
        raise UpstreamError("Failed to generate meta suggestions", details=str(exc) or None) from exc

    return {
        "success": True,
        "suggestions": parse_metasuggest_response(text, payload.title),
        "preview_url": f"https://www.google.com/search?q={quote(payload.title, safe='')}",
    }


# --- Dashboard (session) ---


@router.post("/rewrite-content", response_model=RewriteResponse)
def rewrite_content(
    payload: RewriteRequest,
    user: AuthUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
    usage: UsageTracker = Depends(get_usage_tracker),
    completion: CompletionClient = Depends(get_completion_client),
):
    check = usage.check_plan_limit(user.user_id, FEATURE_AI)
    if not check.allowed:
        raise ForbiddenError(
            check.error,
            plan=check.plan.as_dict() if check.plan else None,
            limitExceeded=True,
            featureRequired=FEATURE_AI,
        )

    try:
        text = completion.complete(
            REWRITE_SYSTEM_PROMPT,
            make_rewrite_prompt(payload.type, payload.original_content, payload.url),
            json_mode=True,
        )
    except (CompletionError, InvalidCompletionResponse) as exc:
        logger.exception("Rewrite failed for %s (%s)", payload.url, payload.type.value)
        raise ServiceError(
            "Failed to rewrite content", details=str(exc) or "Empty completion"
        ) from exc

    result = parse_rewrite_response(text)
    db.save_ai_content_log(user.user_id, payload.type.value, payload.url)
    if not usage.increment_usage(user.user_id, UsageType.AI_REWRITES):
        logger.error("Failed to increment AI rewrite usage for user %s", user.user_id)
    usage.record_plan_usage(user.user_id)
    logger.info("Content rewrite completed for %s, type %s", user.user_id, payload.type.value)
    return result


@router.post("/optimize-website")
def optimize_website(
    payload: OptimizeRequest,
    user: AuthUser = Depends(get_current_user),
    optimizer: WebsiteOptimizer = Depends(get_optimizer),
):
    report = optimizer.optimize(
        user.user_id,
        payload.url,
        fixes=[f.to_fix() for f in payload.fixes] if payload.fixes is not None else None,
        wp_credentials=payload.wp_credentials.to_credentials() if payload.wp_credentials else None,
        schema_markup=payload.schema_markup.model_dump(by_alias=True) if payload.schema_markup else None,
    )
    return report.as_dict()


@router.post("/rollback-website")
def rollback_website(
    payload: RollbackRequest,
    user: AuthUser = Depends(get_current_user),
    rollback: RollbackService = Depends(get_rollback_service),
):
    if payload.action == "list-backups":
        return {"success": True, "backups": rollback.list_backups(user.user_id, payload.url)}

    if payload.action == "rollback":
        if not payload.backup_id:
            raise ValidationError("Missing required fields: backupId")
        credentials = payload.wp_credentials.to_credentials() if payload.wp_credentials else None
        result = rollback.rollback(user.user_id, payload.backup_id, credentials)
        if not result.success:
            raise UpstreamError(result.message, details=result.details or None, success=False)
        return result.as_dict()

    raise ValidationError("Invalid action")


@router.post("/schedule-to-wordpress")
def schedule_to_wordpress(
    payload: ScheduleToWordPressRequest,
    user: AuthUser = Depends(get_current_user),
    wp_client_factory: WordPressClientFactory = Depends(get_wp_client_factory),
):
    client = wp_client_factory(
        payload.wordpress_url, WordPressCredentials(payload.username, payload.password)
    )
    logger.info("User %s publishing '%s' to %s", user.user_id, payload.title, payload.wordpress_url)
    return schedule_post(
        client,
        payload.title,
        payload.content,
        slug=payload.slug,
        publish_date=payload.publish_date,
    )


@router.post("/send-scan-alert", dependencies=[Depends(require_internal_key)])
def send_scan_alert(
    payload: SendScanAlertRequest,
    notifier: AlertNotifier = Depends(get_notifier),
):
    notifier.send_scan_alert(
        user_id=payload.user_id,
        website_url=payload.website_url,
        previous_score=payload.previous_score,
        current_score=payload.current_score,
        score_change=payload.score_change,
        new_issues=payload.new_issues,
    )
    return {"success": True, "message": "Alert sent successfully"}


# --- Usage and plans ---


@router.get("/usage")
def get_usage(
    user: AuthUser = Depends(get_current_user),
    usage: UsageTracker = Depends(get_usage_tracker),
):
    return {"success": True, "usage": usage.get_usage_stats(user.user_id).as_dict()}


@router.post("/usage/increment")
def increment_usage(
    payload: IncrementUsageRequest,
    user: AuthUser = Depends(get_current_user),
    usage: UsageTracker = Depends(get_usage_tracker),
):
    return {"success": usage.increment_usage(user.user_id, payload.type)}


@router.post("/get-user-current-plan")
def get_user_current_plan(
    user: AuthUser = Depends(get_current_user),
    usage: UsageTracker = Depends(get_usage_tracker),
):
    return usage.get_user_current_plan(user.user_id).as_dict()


# --- API tokens ---


@router.get("/api-tokens")
def list_api_tokens(
    user: AuthUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    return {"success": True, "tokens": [t.as_dict() for t in db.list_api_tokens(user.user_id)]}


@router.post("/api-tokens", status_code=201)
def create_api_token(
    payload: ApiTokenCreate,
    user: AuthUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    token, record = issue_api_token(
        db, user.user_id, payload.token_name, payload.rate_limit_per_hour
    )
    # The plaintext token is only ever returned here.
    return {"success": True, "token": token, "tokenInfo": record.as_dict()}


@router.delete("/api-tokens/{token_id}")
def delete_api_token(
    token_id: str,
    user: AuthUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    if not db.deactivate_api_token(token_id, user.user_id):
        raise NotFoundError("API token not found")
    return {"success": True}


# --- Organizations ---


def _find_membership(db: DbClient, organization_id: str, user_id: str) -> Optional[MemberRecord]:
    for member in db.list_members(organization_id):
        if member.user_id == user_id:
            return member
    return None


def _require_org_role(
    db: DbClient, organization_id: str, user_id: str, roles: List[MemberRole]
) -> MemberRecord:
    if not db.get_organization(organization_id):
        raise NotFoundError("Organization not found")
    member = _find_membership(db, organization_id, user_id)
    if not member or member.role not in roles:
        raise ForbiddenError("Insufficient organization permissions")
    return member


@router.post("/organizations", status_code=201)
def create_organization(
    payload: OrganizationCreate,
    user: AuthUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    organization = db.create_organization(payload.name, user.user_id, payload.description)
    db.add_member(
        MemberRecord(
            organization_id=organization.organization_id,
            email=user.email or "",
            role=MemberRole.ADMIN,
            status=MemberStatus.ACTIVE,
            user_id=user.user_id,
            invited_by=user.user_id,
        )
    )
    return {"success": True, "organization": organization.as_dict()}


@router.get("/organizations/{organization_id}/members")
def list_organization_members(
    organization_id: str,
    user: AuthUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    _require_org_role(db, organization_id, user.user_id, list(MemberRole))
    members = db.list_members(organization_id)
    return {"success": True, "members": [m.as_dict() for m in members]}


@router.post("/organizations/{organization_id}/invitations", status_code=201)
def invite_member(
    organization_id: str,
    payload: InvitationCreate,
    user: AuthUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    _require_org_role(db, organization_id, user.user_id, [MemberRole.ADMIN])
    member = MemberRecord(
        organization_id=organization_id,
        email=payload.email,
        role=payload.role,
        invited_by=user.user_id,
    )
    db.add_member(member)
    logger.info("Invited %s to organization %s as %s", payload.email, organization_id, payload.role.value)
    return {"success": True, "member": member.as_dict()}


def _load_managed_member(db: DbClient, member_id: str, user_id: str) -> MemberRecord:
    member = db.get_member(member_id)
    if not member:
        raise NotFoundError("Member not found")
    _require_org_role(db, member.organization_id, user_id, [MemberRole.ADMIN])
    return member


def _ensure_other_admin(db: DbClient, member: MemberRecord) -> None:
    if member.role != MemberRole.ADMIN or member.status != MemberStatus.ACTIVE:
        return
    admins = [m for m in db.list_members(member.organization_id) if m.role == MemberRole.ADMIN]
    if len(admins) <= 1:
        raise ValidationError("Organization must keep at least one active admin")


@router.patch("/members/{member_id}")
def update_member_role(
    member_id: str,
    payload: MemberUpdate,
    user: AuthUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    member = _load_managed_member(db, member_id, user.user_id)
    if payload.role != MemberRole.ADMIN:
        _ensure_other_admin(db, member)
    db.update_member_role(member_id, payload.role)
    return {"success": True, "member": db.get_member(member_id).as_dict()}


@router.delete("/members/{member_id}")
def remove_member(
    member_id: str,
    user: AuthUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    member = _load_managed_member(db, member_id, user.user_id)
    _ensure_other_admin(db, member)
    # Members are soft-deactivated, never deleted.
    db.deactivate_member(member_id)
    return {"success": True}


# --- Navigation ---


@router.get("/navigation")
def navigation(
    user: AuthUser = Depends(get_current_user),
    db: DbClient = Depends(get_db_client),
):
    profile = db.get_profile(user.user_id)
    role = profile.role if profile else UserRole.USER
    return {
        "success": True,
        "role": role.value,
        "items": [entry.as_dict() for entry in entries_for_role(role)],
    }
