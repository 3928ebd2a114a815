"""
Website optimizer: snapshots the site to backup storage, applies fixes over
the WordPress REST API and records an optimization history row.
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import asdict, dataclass, field
from typing import Callable, List, Optional
from urllib.parse import urlparse

from backend.analyzer import SiteAnalyzer
from backend.db import DbClient, OptimizationRecord
from backend.errors import UpstreamError
from backend.publishing import REQUEST_TIMEOUT, WordPressClient
from backend.storage import StorageClient, backup_path
from backend.usage import UsageTracker
from shared.types import (
    FixResult,
    OptimizationFix,
    OptimizationStatus,
    UsageType,
    WordPressCredentials,
)

logger = logging.getLogger(__name__)

SUCCESS = "success"
FAILED = "failed"
SKIPPED = "skipped"

MEDIA_PAGE_SIZE = 20

# Analyzer issue type -> fix type understood by the optimizer.
ISSUE_FIX_TYPES = {
    "meta_title": "title",
    "meta_description": "meta",
    "heading": "heading",
    "image_alt": "image",
}

WordPressClientFactory = Callable[[str, WordPressCredentials], WordPressClient]


def default_wp_client_factory(
    site_url: str, credentials: WordPressCredentials, timeout: float = REQUEST_TIMEOUT
) -> WordPressClient:
    return WordPressClient(
        site_url, credentials.username, credentials.application_password, timeout=timeout
    )


def site_origin(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def extract_recommended_value(recommendation: str, key: str, default: str) -> str:
    """Pulls the quoted value after ``key`` out of a free-text recommendation."""
    if key not in recommendation:
        return default
    match = re.search(rf"{key}[:\s]*[\"']?([^\"']+)[\"']?", recommendation)
    return match.group(1).strip() if match else default


def fixes_from_issues(issues: List[dict]) -> List[OptimizationFix]:
    fixes: List[OptimizationFix] = []
    seen_types = set()
    for issue in issues:
        fix_type = ISSUE_FIX_TYPES.get(issue.get("type", ""))
        # One media pass covers every image.
        if not fix_type or fix_type in seen_types:
            continue
        seen_types.add(fix_type)
        fixes.append(
            OptimizationFix(
                id=issue.get("id", fix_type),
                type=fix_type,
                title=issue.get("title", ""),
                description=issue.get("description", ""),
                recommendation=issue.get("recommendation", ""),
            )
        )
    return fixes


@dataclass
class OptimizationReport:
    history_id: str
    backup_url: Optional[str]
    results: List[FixResult] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return sum(1 for r in self.results if r.status == SUCCESS)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if r.status == FAILED)

    def as_dict(self) -> dict:
        return {
            "success": True,
            "historyId": self.history_id,
            "backupUrl": self.backup_url,
            "results": [asdict(r) for r in self.results],
            "successCount": self.success_count,
            "failedCount": self.failed_count,
            "totalFixes": len(self.results),
        }


class WordPressFixer:
    """Applies individual fixes to a site's front page and media library."""

    def __init__(self, client: WordPressClient):
        self.client = client
        self._front_page_id: Optional[int] = None

    def front_page_id(self) -> Optional[int]:
        if self._front_page_id is None:
            self._front_page_id = self.client.get_settings().get("page_on_front") or 0
        return self._front_page_id or None

    def snapshot(self) -> dict:
        """Captures what the fixes may overwrite so a rollback can restore it."""
        backup: dict = {"front_page": None, "media": []}
        page_id = self.front_page_id()
        if page_id:
            page = self.client.get_page(page_id)
            backup["front_page"] = {
                "id": page_id,
                "title": _rendered(page.get("title")),
                "excerpt": _rendered(page.get("excerpt")),
                "content": _rendered(page.get("content")),
            }
        backup["media"] = [
            {"id": media["id"], "alt_text": media.get("alt_text", "")}
            for media in self.client.list_media(per_page=MEDIA_PAGE_SIZE)
        ]
        return backup

    def apply(self, fix: OptimizationFix) -> FixResult:
        handlers = {
            "title": self.fix_meta_title,
            "meta": self.fix_meta_description,
            "heading": self.fix_heading_structure,
            "image": self.fix_image_alt_text,
        }
        handler = handlers.get(fix.type)
        if handler is None:
            return FixResult(fix.id, SKIPPED, f"Fix type '{fix.type}' not supported")
        try:
            return handler(fix)
        except UpstreamError as exc:
            logger.warning("Fix %s failed: %s", fix.type, exc.message)
            return FixResult(fix.id, FAILED, exc.message)

    def fix_meta_title(self, fix: OptimizationFix) -> FixResult:
        page_id = self.front_page_id()
        if not page_id:
            return FixResult("meta-title", SKIPPED, "No front page set")
        title = extract_recommended_value(fix.recommendation, "title", "Optimized Page Title")
        self.client.update_page(page_id, title=title)
        return FixResult("meta-title", SUCCESS, "Page title updated successfully")

    def fix_meta_description(self, fix: OptimizationFix) -> FixResult:
        page_id = self.front_page_id()
        if not page_id:
            return FixResult("meta-description", SKIPPED, "No front page set")
        # Without an SEO plugin the excerpt stands in for the meta description.
        excerpt = extract_recommended_value(
            fix.recommendation,
            "description",
            "Optimized meta description for better SEO performance.",
        )
        self.client.update_page(page_id, excerpt=excerpt)
        return FixResult("meta-description", SUCCESS, "Meta description updated via excerpt")

    def fix_heading_structure(self, fix: OptimizationFix) -> FixResult:
        page_id = self.front_page_id()
        if not page_id:
            return FixResult("heading-structure", SKIPPED, "No front page set")
        page = self.client.get_page(page_id)
        content = _rendered(page.get("content"))
        if "<h1" in content:
            return FixResult("heading-structure", SKIPPED, "Heading structure already good")
        title = _rendered(page.get("title")) or "Main Heading"
        self.client.update_page(page_id, content=f"<h1>{title}</h1>\n{content}")
        return FixResult("heading-structure", SUCCESS, "Added H1 heading to page")

    def fix_image_alt_text(self, fix: OptimizationFix) -> FixResult:
        updated = 0
        for media in self.client.list_media(per_page=MEDIA_PAGE_SIZE):
            if (media.get("alt_text") or "").strip():
                continue
            alt_text = _rendered(media.get("title")) or f"Image {media['id']}"
            self.client.update_media(media["id"], alt_text=alt_text)
            updated += 1
        return FixResult("image-alt", SUCCESS, f"Updated alt text for {updated} images")

    def insert_schema_markup(self, schema_type: str, json_ld: dict) -> FixResult:
        try:
            page_id = self.front_page_id()
            if not page_id:
                return FixResult("schema-markup", SKIPPED, "No front page set")
            page = self.client.get_page(page_id)
            content = _rendered(page.get("content"))
            if "application/ld+json" in content:
                return FixResult("schema-markup", SKIPPED, "Schema markup already exists")
            script = (
                '\n<script type="application/ld+json">\n'
                f"{json.dumps(json_ld, indent=2)}\n</script>"
            )
            self.client.update_page(page_id, content=content + script)
            return FixResult("schema-markup", SUCCESS, f"Added {schema_type} schema markup")
        except UpstreamError as exc:
            return FixResult("schema-markup", FAILED, exc.message)


def _rendered(value) -> str:
    if isinstance(value, dict):
        return value.get("rendered") or value.get("raw") or ""
    return value or ""


class WebsiteOptimizer:
    def __init__(
        self,
        db: DbClient,
        storage: StorageClient,
        analyzer: SiteAnalyzer,
        usage: UsageTracker,
        *,
        backup_url_ttl: int = 7 * 24 * 3600,
        wp_client_factory: WordPressClientFactory = default_wp_client_factory,
        clock: Callable[[], float] = time.time,
    ):
        self.db = db
        self.storage = storage
        self.analyzer = analyzer
        self.usage = usage
        self.backup_url_ttl = backup_url_ttl
        self.wp_client_factory = wp_client_factory
        self.clock = clock

    def optimize(
        self,
        user_id: str,
        url: str,
        *,
        fixes: Optional[List[OptimizationFix]] = None,
        wp_credentials: Optional[WordPressCredentials] = None,
        schema_markup: Optional[dict] = None,
    ) -> OptimizationReport:
        """
        Backs the site up, applies fixes and records the run.

        With no explicit fixes, the issues of the latest scan decide which
        fixes run. Without WordPress credentials every fix is skipped but the
        backup and history row are still written.
        """
        latest = self.db.get_latest_scan_result(user_id, url)
        if fixes is None:
            fixes = fixes_from_issues(latest.issues if latest else [])

        record = OptimizationRecord(
            user_id=user_id,
            website_url=url,
            seo_score_before=latest.seo_score if latest else None,
            created_at=self.clock(),
            updated_at=self.clock(),
        )

        fixer = None
        backup = {
            "website_url": url,
            "taken_at": record.created_at,
            "page": self.analyzer.fetch_snapshot(url).as_dict(),
        }
        if wp_credentials:
            client = self.wp_client_factory(site_origin(url), wp_credentials)
            client.verify()
            fixer = WordPressFixer(client)
            backup["wordpress"] = fixer.snapshot()

        path = backup_path(user_id, record.history_id)
        self.storage.upload_json(path, backup)
        record.backup_url = self.storage.presign_get(path, expires_in=self.backup_url_ttl)

        results: List[FixResult] = []
        for fix in fixes:
            if fixer is None:
                results.append(FixResult(fix.id, SKIPPED, "WordPress credentials required"))
                continue
            logger.info("Applying fix %s to %s", fix.type, url)
            results.append(fixer.apply(fix))
        if fixer is not None and schema_markup:
            results.append(
                fixer.insert_schema_markup(
                    schema_markup.get("type", "WebPage"), schema_markup.get("jsonLd", {})
                )
            )

        record.fixes_applied = [asdict(r) for r in results]
        record.status = OptimizationStatus.COMPLETED
        self.db.save_optimization(record)
        self.usage.increment_usage(user_id, UsageType.OPTIMIZATIONS)

        report = OptimizationReport(record.history_id, record.backup_url, results)
        logger.info(
            "Optimization of %s completed: %d success, %d failed",
            url,
            report.success_count,
            report.failed_count,
        )
        return report
