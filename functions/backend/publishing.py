"""
WordPress REST client (Basic auth with an application password) and the
post-scheduling flow built on it.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any, Optional

import requests

from backend.errors import UpstreamError, ValidationError
from shared.types import PostStatus

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30  # seconds

_SLUG_SEPARATORS = re.compile(r"[^a-z0-9]+")

_STATUS_VERBS = {
    PostStatus.FUTURE: "scheduled",
    PostStatus.PUBLISH: "published",
    PostStatus.DRAFT: "saved as draft",
}


def slugify(title: str) -> str:
    return _SLUG_SEPARATORS.sub("-", title.lower()).strip("-")


def parse_publish_date(value: str) -> datetime:
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as exc:
        raise ValidationError(f"Invalid publishDate: {value}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def build_post_payload(
    title: str,
    content: str,
    *,
    slug: Optional[str] = None,
    publish_date: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    """
    Builds the posts-collection body.

    Status is ``future`` for a publish date after ``now``, ``publish`` for a
    date at or before it, and ``draft`` when no date is given.
    """
    payload: dict[str, Any] = {
        "title": title,
        "content": content,
        "status": PostStatus.DRAFT.value,
        "slug": slug or slugify(title),
    }
    if publish_date:
        when = parse_publish_date(publish_date)
        now = now or datetime.now(timezone.utc)
        status = PostStatus.FUTURE if when > now else PostStatus.PUBLISH
        payload["status"] = status.value
        payload["date"] = when.astimezone(timezone.utc).isoformat()
    return payload


class WordPressClient:
    """Thin wrapper over ``/wp-json/wp/v2`` for one site."""

    def __init__(
        self,
        site_url: str,
        username: str,
        application_password: str,
        timeout: float = REQUEST_TIMEOUT,
    ):
        self.site_url = site_url.rstrip("/")
        self.api_url = f"{self.site_url}/wp-json/wp/v2"
        self.timeout = timeout
        self._session = requests.Session()
        self._session.auth = (username, application_password)
        self._session.headers.update(
            {"Content-Type": "application/json", "Accept": "application/json"}
        )

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.api_url}/{path.lstrip('/')}"
        try:
            response = self._session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as exc:
            raise UpstreamError(f"Cannot connect to WordPress site: {exc}") from exc

        try:
            data = response.json()
        except ValueError:
            data = {"body": response.text}

        if not response.ok:
            message = data.get("message") if isinstance(data, dict) else None
            logger.error("WordPress API error %s on %s %s", response.status_code, method, url)
            raise UpstreamError(
                message or f"WordPress API error: {response.status_code}",
                status_code=response.status_code,
                details=data,
            )
        return data

    def verify(self) -> None:
        """Raises UpstreamError when the REST API is not reachable."""
        self._request("GET", "")

    def create_post(self, payload: dict) -> dict:
        return self._request("POST", "posts", json=payload)

    def get_settings(self) -> dict:
        return self._request("GET", "settings")

    def get_page(self, page_id: int) -> dict:
        return self._request("GET", f"pages/{page_id}")

    def update_page(self, page_id: int, **fields) -> dict:
        return self._request("POST", f"pages/{page_id}", json=fields)

    def list_media(self, per_page: int = 20) -> list:
        return self._request("GET", "media", params={"per_page": per_page})

    def update_media(self, media_id: int, **fields) -> dict:
        return self._request("POST", f"media/{media_id}", json=fields)


def schedule_post(
    client: WordPressClient,
    title: str,
    content: str,
    *,
    slug: Optional[str] = None,
    publish_date: Optional[str] = None,
    now: Optional[datetime] = None,
) -> dict:
    payload = build_post_payload(
        title, content, slug=slug, publish_date=publish_date, now=now
    )
    logger.info("Posting to %s with status %s", client.api_url, payload["status"])
    try:
        created = client.create_post(payload)
    except UpstreamError as exc:
        if not (isinstance(exc.details, dict) and exc.details.get("message")):
            exc.details = exc.details or exc.message
            exc.message = "Failed to publish to WordPress"
        exc.extra["success"] = False
        raise
    status = PostStatus(payload["status"])
    return {
        "success": True,
        "postId": created.get("id"),
        "postUrl": created.get("link"),
        "status": created.get("status"),
        "message": f"Post successfully {_STATUS_VERBS[status]}",
    }
