"""
Scan alert emails: rendering, queueing, and the delivery side drained by the
alert worker.
"""

from __future__ import annotations

import html
import logging
import uuid
from typing import Optional
from urllib.parse import quote, urlparse

from backend.auth import AuthClient
from backend.errors import NotFoundError
from backend.queue import AlertQueue
from shared.types import AlertMessage

logger = logging.getLogger(__name__)


def _format_score(value: float) -> str:
    return f"{value:g}"


def render_alert_html(
    *,
    website_url: str,
    user_id: str,
    previous_score: float,
    current_score: float,
    score_change: float,
    new_issues: list[dict],
    optimize_url: str,
) -> str:
    domain = urlparse(website_url).hostname or website_url
    sign = "+" if score_change >= 0 else ""
    color = "green" if score_change >= 0 else "red"

    issues_html = ""
    if new_issues:
        items = "".join(
            f"<li>{html.escape(issue.get('description') or issue.get('title') or '')}</li>"
            for issue in new_issues
        )
        issues_html = f"<h3>New Issues Found:</h3><ul>{items}</ul>"

    link = f"{optimize_url}?url={quote(website_url, safe='')}&userId={quote(user_id, safe='')}"
    return (
        f"<h2>SEO Alert for {html.escape(domain)}</h2>"
        "<p>Your website's SEO score has changed:</p>"
        '<div style="background: #f5f5f5; padding: 20px; border-radius: 8px; margin: 20px 0;">'
        f"<p><strong>Previous Score:</strong> {_format_score(previous_score)}</p>"
        f"<p><strong>Current Score:</strong> {_format_score(current_score)}</p>"
        f'<p><strong>Change:</strong> <span style="color: {color};">'
        f"{sign}{_format_score(score_change)}</span></p>"
        "</div>"
        f"{issues_html}"
        '<div style="margin: 30px 0;">'
        f'<a href="{html.escape(link)}" style="background: #007bff; color: white; '
        'padding: 12px 24px; text-decoration: none; border-radius: 6px; display: inline-block;">'
        "Auto-optimize with 1 Click</a>"
        "</div>"
        "<p>You can also visit your dashboard to review detailed analysis and make manual optimizations.</p>"
    )


class AlertNotifier:
    def __init__(self, auth_client: AuthClient, queue: AlertQueue, optimize_url: str):
        self.auth_client = auth_client
        self.queue = queue
        self.optimize_url = optimize_url

    def send_scan_alert(
        self,
        *,
        user_id: str,
        website_url: str,
        previous_score: float,
        current_score: float,
        score_change: float,
        new_issues: list[dict],
    ) -> AlertMessage:
        email = self.auth_client.get_user_email(user_id)
        if not email:
            raise NotFoundError("User email not found")

        domain = urlparse(website_url).hostname or website_url
        message = AlertMessage(
            user_id=user_id,
            to_email=email,
            subject=f"SEO Alert for {domain}",
            html=render_alert_html(
                website_url=website_url,
                user_id=user_id,
                previous_score=previous_score,
                current_score=current_score,
                score_change=score_change,
                new_issues=new_issues,
                optimize_url=self.optimize_url,
            ),
            website_url=website_url,
            score_change=score_change,
            new_issue_ids=[issue.get("id", "") for issue in new_issues],
            message_id=uuid.uuid4().hex,
        )
        self.queue.enqueue(message)
        logger.info("Queued alert %s for %s (%s)", message.message_id, email, website_url)
        return message


def deliver(message: AlertMessage) -> None:
    # No mail provider is wired in; delivery is the log line.
    logger.info(
        "Email alert %s to %s: %s (change %s)",
        message.message_id,
        message.to_email,
        message.subject,
        _format_score(message.score_change),
    )


def drain_alert_queue(
    queue: AlertQueue,
    *,
    max_messages: Optional[int] = None,
    block: bool = False,
    timeout: Optional[int] = None,
) -> int:
    """Delivers queued alerts until the queue is empty or ``max_messages`` is hit."""
    delivered = 0
    while max_messages is None or delivered < max_messages:
        message = queue.dequeue(block=block, timeout=timeout)
        if message is None:
            break
        deliver(message)
        delivered += 1
    return delivered
