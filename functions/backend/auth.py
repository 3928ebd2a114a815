"""
Session and API-token authentication.

Session tokens are issued by the managed auth provider and resolved to a user
over its REST API. API tokens are issued by this service, stored as sha256
hashes, and rate limited per token and endpoint each hour.
"""

from __future__ import annotations

import hashlib
import logging
import secrets
import time
from dataclasses import dataclass, field
from typing import Dict, Optional, Protocol

import requests

from backend.db import ApiTokenRecord, DbClient
from backend.errors import AuthError, RateLimitError, UpstreamError
from shared.constants import API_TOKEN_PREFIX, DEFAULT_RATE_LIMIT_PER_HOUR, HOUR_SECONDS

logger = logging.getLogger(__name__)


@dataclass
class AuthUser:
    user_id: str
    email: Optional[str] = None


class AuthClient(Protocol):
    def get_user(self, access_token: str) -> Optional[AuthUser]:
        ...

    def get_user_email(self, user_id: str) -> Optional[str]:
        ...


@dataclass
class InMemoryAuthClient:
    """Test double: maps session tokens to users."""

    sessions: Dict[str, AuthUser] = field(default_factory=dict)

    def add_session(self, access_token: str, user_id: str, email: Optional[str] = None) -> AuthUser:
        user = AuthUser(user_id=user_id, email=email)
        self.sessions[access_token] = user
        return user

    def get_user(self, access_token: str) -> Optional[AuthUser]:
        return self.sessions.get(access_token)

    def get_user_email(self, user_id: str) -> Optional[str]:
        for user in self.sessions.values():
            if user.user_id == user_id:
                return user.email
        return None


class SupabaseAuthClient:
    """Resolves users through the provider's GoTrue REST endpoints."""

    def __init__(self, base_url: str, service_role_key: str, timeout: float = 30.0):
        if not base_url or not service_role_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY are required")
        self.base_url = base_url.rstrip("/")
        self.service_role_key = service_role_key
        self.timeout = timeout

    def _headers(self, bearer: str) -> dict:
        return {
            "apikey": self.service_role_key,
            "Authorization": f"Bearer {bearer}",
            "Content-Type": "application/json",
        }

    def get_user(self, access_token: str) -> Optional[AuthUser]:
        try:
            response = requests.get(
                f"{self.base_url}/auth/v1/user",
                headers=self._headers(access_token),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise UpstreamError("Auth provider unavailable", details=str(exc)) from exc
        if response.status_code in (401, 403, 404):
            return None
        if not response.ok:
            raise UpstreamError("Auth provider error", details=response.text)
        payload = response.json()
        return AuthUser(user_id=payload["id"], email=payload.get("email"))

    def get_user_email(self, user_id: str) -> Optional[str]:
        try:
            response = requests.get(
                f"{self.base_url}/auth/v1/admin/users/{user_id}",
                headers=self._headers(self.service_role_key),
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            raise UpstreamError("Auth provider unavailable", details=str(exc)) from exc
        if response.status_code == 404:
            return None
        if not response.ok:
            raise UpstreamError("Auth provider error", details=response.text)
        return response.json().get("email")


def parse_bearer(authorization: Optional[str]) -> Optional[str]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    token = authorization[len("Bearer "):].strip()
    return token or None


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def authenticate_session(auth_client: AuthClient, authorization: Optional[str]) -> AuthUser:
    token = parse_bearer(authorization)
    if not token:
        raise AuthError("Authentication required")
    user = auth_client.get_user(token)
    if not user:
        raise AuthError("Authentication required")
    return user


def issue_api_token(
    db: DbClient,
    user_id: str,
    token_name: str,
    rate_limit_per_hour: int = DEFAULT_RATE_LIMIT_PER_HOUR,
) -> tuple[str, ApiTokenRecord]:
    """
    Creates a new API token for the user.

    Returns:
        The plaintext token (shown once) and the stored record.
    """
    token = f"{API_TOKEN_PREFIX}{secrets.token_urlsafe(32)}"
    record = ApiTokenRecord(
        user_id=user_id,
        token_name=token_name,
        token_prefix=token[: len(API_TOKEN_PREFIX) + 4],
        token_hash=hash_token(token),
        rate_limit_per_hour=rate_limit_per_hour,
    )
    db.create_api_token(record)
    return token, record


def authenticate_api_token(
    db: DbClient,
    authorization: Optional[str],
    endpoint: str,
    now: Optional[float] = None,
) -> ApiTokenRecord:
    """
    Validates a bearer API token, enforces its hourly limit and records the call.

    Raises:
        AuthError: Missing, malformed, unknown or inactive token.
        RateLimitError: The token used up its hourly quota for this endpoint.
    """
    token = parse_bearer(authorization)
    if not token:
        raise AuthError("Missing or invalid API token")

    record = db.get_active_token_by_hash(hash_token(token))
    if not record:
        raise AuthError("Invalid API token")

    now = time.time() if now is None else now
    if not db.check_api_rate_limit(
        record.token_id, endpoint, record.rate_limit_per_hour, now=now
    ):
        logger.info("Rate limit hit for token %s on %s", record.token_id, endpoint)
        retry_after = int(HOUR_SECONDS - (now % HOUR_SECONDS)) or 1
        raise RateLimitError(retry_after=retry_after)

    db.record_api_usage(record.token_id, record.user_id, endpoint, now=now)
    return record
