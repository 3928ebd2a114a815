"""
Dependency wiring for the FastAPI app and the daemons.

Every client is built from ``Settings`` once per process and handed to the
services by constructor; routes receive them through ``Depends``.
"""

from __future__ import annotations

import hmac
from functools import partial
from typing import Callable, Optional

from fastapi import Depends, Header

from backend.analyzer import SiteAnalyzer
from backend.auth import (
    AuthClient,
    AuthUser,
    InMemoryAuthClient,
    SupabaseAuthClient,
    authenticate_api_token,
    authenticate_session,
    parse_bearer,
)
from backend.config import get_settings
from backend.db import ApiTokenRecord, DbClient, InMemoryDbClient, PostgresDbClient
from backend.errors import AuthError, ServiceError
from backend.notifier import AlertNotifier
from backend.optimizer import WebsiteOptimizer, WordPressClientFactory, default_wp_client_factory
from backend.queue import AlertQueue, InMemoryAlertQueue, RedisAlertQueue
from backend.rollback import RollbackService
from backend.scheduler import RescanScheduler
from backend.storage import InMemoryStorageClient, S3StorageClient, StorageClient
from backend.usage import UsageTracker
from models import gemini, openai_chat
from models.completion import CompletionClient

_db_client: DbClient | None = None
_storage_client: StorageClient | None = None
_alert_queue: AlertQueue | None = None
_auth_client: AuthClient | None = None
_completion_client: CompletionClient | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    return _db_client


def get_storage_client() -> StorageClient:
    global _storage_client
    if _storage_client:
        return _storage_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.backup_bucket:
        _storage_client = InMemoryStorageClient()
    else:
        _storage_client = S3StorageClient(
            bucket=settings.backup_bucket,
            region=settings.backup_region or "",
            endpoint=settings.backup_endpoint or "",
            access_key_id=settings.aws_access_key_id or "",
            secret_access_key=settings.aws_secret_access_key or "",
        )
    return _storage_client


def get_alert_queue() -> AlertQueue:
    """
    Return a singleton queue for handing alert emails to the alert worker.
    """
    global _alert_queue
    if _alert_queue:
        return _alert_queue

    settings = get_settings()
    if settings.redis_url and not settings.use_in_memory_backends:
        _alert_queue = RedisAlertQueue(url=settings.redis_url, queue_key=settings.alert_queue_key)
    else:
        _alert_queue = InMemoryAlertQueue()
    return _alert_queue


def get_auth_client() -> AuthClient:
    global _auth_client
    if _auth_client:
        return _auth_client

    settings = get_settings()
    if (
        settings.use_in_memory_backends
        or not settings.supabase_url
        or not settings.supabase_service_role_key
    ):
        _auth_client = InMemoryAuthClient()
    else:
        _auth_client = SupabaseAuthClient(
            settings.supabase_url,
            settings.supabase_service_role_key,
            timeout=settings.http_timeout_seconds,
        )
    return _auth_client


def get_completion_client() -> CompletionClient:
    global _completion_client
    if _completion_client:
        return _completion_client

    settings = get_settings()
    if settings.completion_provider == "gemini":
        if not settings.gemini_api_key:
            raise ServiceError("Gemini API key not configured")
        _completion_client = gemini.GeminiCompletionClient(
            settings.gemini_api_key, model=settings.completion_model or gemini.DEFAULT_MODEL
        )
    else:
        if not settings.openai_api_key:
            raise ServiceError("OpenAI API key not configured")
        _completion_client = openai_chat.OpenAIChatClient(
            settings.openai_api_key, model=settings.completion_model or openai_chat.DEFAULT_MODEL
        )
    return _completion_client


def reset_clients() -> None:
    """Drops the cached clients; the next call rebuilds them from settings."""
    global _db_client, _storage_client, _alert_queue, _auth_client, _completion_client
    _db_client = None
    _storage_client = None
    _alert_queue = None
    _auth_client = None
    _completion_client = None


# Services are cheap to build; only their clients are shared.


def get_wp_client_factory() -> WordPressClientFactory:
    return partial(default_wp_client_factory, timeout=get_settings().http_timeout_seconds)


def get_analyzer(db: DbClient = Depends(get_db_client)) -> SiteAnalyzer:
    return SiteAnalyzer(db, timeout=get_settings().http_timeout_seconds)


def get_usage_tracker(db: DbClient = Depends(get_db_client)) -> UsageTracker:
    return UsageTracker(db)


def get_notifier(
    auth_client: AuthClient = Depends(get_auth_client),
    queue: AlertQueue = Depends(get_alert_queue),
) -> AlertNotifier:
    settings = get_settings()
    optimize_url = f"{settings.public_base_url.rstrip('/')}{settings.api_prefix}/optimize-website"
    return AlertNotifier(auth_client, queue, optimize_url)


def get_optimizer(
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    analyzer: SiteAnalyzer = Depends(get_analyzer),
    usage: UsageTracker = Depends(get_usage_tracker),
    wp_client_factory: WordPressClientFactory = Depends(get_wp_client_factory),
) -> WebsiteOptimizer:
    return WebsiteOptimizer(
        db,
        storage,
        analyzer,
        usage,
        backup_url_ttl=get_settings().backup_url_ttl_seconds,
        wp_client_factory=wp_client_factory,
    )


def get_rollback_service(
    db: DbClient = Depends(get_db_client),
    storage: StorageClient = Depends(get_storage_client),
    wp_client_factory: WordPressClientFactory = Depends(get_wp_client_factory),
) -> RollbackService:
    return RollbackService(db, storage, wp_client_factory)


def get_rescan_scheduler(
    db: DbClient = Depends(get_db_client),
    analyzer: SiteAnalyzer = Depends(get_analyzer),
    notifier: AlertNotifier = Depends(get_notifier),
    optimizer: WebsiteOptimizer = Depends(get_optimizer),
) -> RescanScheduler:
    settings = get_settings()
    return RescanScheduler(
        db,
        analyzer,
        notifier,
        optimizer,
        lease_seconds=settings.scheduler_lease_seconds,
        max_failures=settings.scheduler_max_failures,
        retry_base_seconds=settings.scheduler_retry_base_seconds,
    )


def build_rescan_scheduler() -> RescanScheduler:
    """Builds the scheduler outside a request, for the rescan daemon."""
    db = get_db_client()
    analyzer = get_analyzer(db)
    return get_rescan_scheduler(
        db,
        analyzer,
        get_notifier(get_auth_client(), get_alert_queue()),
        get_optimizer(
            db,
            get_storage_client(),
            analyzer,
            get_usage_tracker(db),
            get_wp_client_factory(),
        ),
    )


def get_current_user(
    authorization: Optional[str] = Header(default=None),
    auth_client: AuthClient = Depends(get_auth_client),
) -> AuthUser:
    return authenticate_session(auth_client, authorization)


def require_api_token(endpoint: str) -> Callable[..., ApiTokenRecord]:
    """Builds a dependency that authenticates and meters an API-token call."""

    def dependency(
        authorization: Optional[str] = Header(default=None),
        db: DbClient = Depends(get_db_client),
    ) -> ApiTokenRecord:
        return authenticate_api_token(db, authorization, endpoint)

    return dependency


def require_internal_key(authorization: Optional[str] = Header(default=None)) -> None:
    """
    Guards cron and service-to-service triggers. Open when no
    ``INTERNAL_API_KEY`` is configured.
    """
    expected = get_settings().internal_api_key
    if not expected:
        return
    token = parse_bearer(authorization)
    if not token or not hmac.compare_digest(token, expected):
        raise AuthError("Invalid internal API key")
