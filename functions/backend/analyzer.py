"""
Site analyzer: crawls a page, scores its on-page SEO and persists a ScanResult.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import List, Optional, Tuple

import requests
from bs4 import BeautifulSoup

from backend.db import DbClient, ScanResultRecord
from backend.errors import UpstreamError
from shared import seo_validator
from shared.types import SeoIssue

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; SEO-Analyzer/1.0)"
REQUEST_TIMEOUT = 30  # seconds


@dataclass
class PageSnapshot:
    """On-page signals extracted from one HTML document."""

    url: str
    title: str = ""
    meta_description: str = ""
    headings: List[Tuple[int, str]] = field(default_factory=list)
    images: List[dict] = field(default_factory=list)
    html: str = ""

    @classmethod
    def from_html(cls, url: str, html: str) -> "PageSnapshot":
        soup = BeautifulSoup(html, "html.parser")
        title = soup.title.get_text(strip=True) if soup.title else ""
        meta = soup.find("meta", attrs={"name": "description"})
        description = (meta.get("content") or "").strip() if meta else ""
        headings = [
            (int(tag.name[1]), tag.get_text(strip=True))
            for tag in soup.find_all(["h1", "h2", "h3", "h4", "h5", "h6"])
        ]
        images = [
            {"src": img.get("src", ""), "alt": (img.get("alt") or "").strip()}
            for img in soup.find_all("img")
        ]
        return cls(
            url=url,
            title=title,
            meta_description=description,
            headings=headings,
            images=images,
            html=html,
        )

    @property
    def missing_alt(self) -> int:
        return sum(1 for image in self.images if not image["alt"])

    def headings_at(self, level: int) -> List[str]:
        return [text for lvl, text in self.headings if lvl == level]

    def validations(self, keyword: Optional[str] = None) -> dict:
        return {
            "meta_title": seo_validator.validate_meta_title(self.title, keyword),
            "meta_description": seo_validator.validate_meta_description(
                self.meta_description, keyword
            ),
            "headings": seo_validator.validate_headings(self.headings),
            "alt_text": seo_validator.validate_alt_text(len(self.images), self.missing_alt),
        }

    def issues(self) -> List[SeoIssue]:
        issues = []
        if not self.title:
            issues.append(
                SeoIssue(
                    id="missing-title",
                    type="meta_title",
                    title="Missing page title",
                    description="The page has no <title> element.",
                    severity="high",
                    recommendation="Add a descriptive title of 50-60 characters.",
                )
            )
        if not self.meta_description:
            issues.append(
                SeoIssue(
                    id="missing-meta-description",
                    type="meta_description",
                    title="Missing meta description",
                    description="The page has no meta description.",
                    severity="high",
                    recommendation="Add a meta description of 150-160 characters with a call-to-action.",
                )
            )
        if not self.headings_at(1):
            issues.append(
                SeoIssue(
                    id="missing-h1",
                    type="heading",
                    title="Missing H1 heading",
                    description="The page has no H1 heading.",
                    recommendation="Add a single H1 that states the main topic.",
                )
            )
        for index, image in enumerate(self.images):
            if image["alt"]:
                continue
            issues.append(
                SeoIssue(
                    id=f"missing-alt:{image['src'] or index}",
                    type="image_alt",
                    title="Image missing alt text",
                    description=f"Image {image['src'] or index} has no alt text.",
                    severity="low",
                    recommendation="Describe the image in its alt attribute.",
                )
            )
        return issues

    def as_dict(self) -> dict:
        return {
            "url": self.url,
            "title": self.title,
            "meta_description": self.meta_description,
            "headings": {
                "h1": self.headings_at(1),
                "h2": self.headings_at(2),
                "h3": self.headings_at(3),
            },
            "images": {
                "total": len(self.images),
                "missing_alt": self.missing_alt,
                "with_alt": len(self.images) - self.missing_alt,
            },
        }


class SiteAnalyzer:
    def __init__(self, db: DbClient, timeout: float = REQUEST_TIMEOUT):
        self.db = db
        self.timeout = timeout

    def fetch_snapshot(self, url: str) -> PageSnapshot:
        """
        Fetches and parses a page.

        Raises:
            UpstreamError: If the page cannot be fetched (rendered as 400).
        """
        try:
            response = requests.get(
                url, headers={"User-Agent": USER_AGENT}, timeout=self.timeout
            )
        except requests.RequestException as exc:
            raise UpstreamError(
                f"Failed to crawl website: {exc}", status_code=400
            ) from exc
        if not response.ok:
            raise UpstreamError(
                f"Failed to fetch {url}: {response.status_code} {response.reason}",
                status_code=400,
            )
        return PageSnapshot.from_html(url, response.text)

    def analyze(self, user_id: str, url: str) -> ScanResultRecord:
        """Crawls the page, scores it and appends one ScanResult row."""
        snapshot = self.fetch_snapshot(url)
        validations = snapshot.validations()
        score = seo_validator.overall_score(list(validations.values()))
        issues = [asdict(issue) for issue in snapshot.issues()]

        details = snapshot.as_dict()
        details["validation"] = {name: v.as_dict() for name, v in validations.items()}

        record = self.db.save_scan_result(user_id, url, score, issues, details)
        logger.info("Analyzed %s for user %s: score=%s issues=%d", url, user_id, score, len(issues))
        return record
