"""
Scheduled rescans: picks up due scans, re-analyzes the site, records a
comparison against the previous result, then alerts, auto-optimizes and
reschedules.

Intended to be driven by ``scripts/rescan_daemon.py`` or the
``/automated-rescan`` route.
"""

from __future__ import annotations

import logging
import random
import time
from dataclasses import asdict, dataclass, field
from typing import Callable, List, Optional, Protocol

from backend.db import DbClient, ScanComparisonRecord, ScanResultRecord, ScheduledScanRecord
from shared.constants import ALERT_SCORE_DROP, AUTO_OPTIMIZE_SCORE_DROP, SECONDS_PER_DAY

logger = logging.getLogger(__name__)

PROCESSED = "processed"
SKIPPED = "skipped"
FAILED = "failed"

MAX_ERROR_LENGTH = 500


class Analyzer(Protocol):
    def analyze(self, user_id: str, url: str) -> ScanResultRecord:
        ...


class Notifier(Protocol):
    def send_scan_alert(
        self,
        *,
        user_id: str,
        website_url: str,
        previous_score: float,
        current_score: float,
        score_change: float,
        new_issues: list[dict],
    ):
        ...


class Optimizer(Protocol):
    def optimize(self, user_id: str, url: str):
        ...


def _issue_key(issue: dict) -> str:
    return issue.get("id") or issue.get("title") or ""


def diff_issues(previous: List[dict], current: List[dict]) -> tuple[List[dict], List[dict]]:
    """Returns (new, fixed) issues, matched by issue key."""
    previous_keys = {_issue_key(i) for i in previous}
    current_keys = {_issue_key(i) for i in current}
    new = [i for i in current if _issue_key(i) not in previous_keys]
    fixed = [i for i in previous if _issue_key(i) not in current_keys]
    return new, fixed


def should_alert(email_alerts: bool, score_change: float, new_issue_count: int) -> bool:
    return email_alerts and (score_change < ALERT_SCORE_DROP or new_issue_count > 0)


def should_auto_optimize(auto_optimize: bool, score_change: float) -> bool:
    return auto_optimize and score_change < AUTO_OPTIMIZE_SCORE_DROP


@dataclass
class ScanCycleOutcome:
    scan_id: str
    website_url: str
    status: str
    previous_score: Optional[float] = None
    current_score: Optional[float] = None
    score_change: Optional[float] = None
    new_issues: int = 0
    fixed_issues: int = 0
    alerted: bool = False
    optimized: bool = False
    next_scan_at: Optional[float] = None
    error: Optional[str] = None


@dataclass
class RescanReport:
    outcomes: List[ScanCycleOutcome] = field(default_factory=list)

    def _count(self, status: str) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def processed_scans(self) -> int:
        return self._count(PROCESSED)

    @property
    def skipped_scans(self) -> int:
        return self._count(SKIPPED)

    @property
    def failed_scans(self) -> int:
        return self._count(FAILED)

    def as_dict(self) -> dict:
        return {
            "success": True,
            "processedScans": self.processed_scans,
            "skippedScans": self.skipped_scans,
            "failedScans": self.failed_scans,
            "results": [asdict(o) for o in self.outcomes],
        }


class RescanScheduler:
    def __init__(
        self,
        db: DbClient,
        analyzer: Analyzer,
        notifier: Notifier,
        optimizer: Optimizer,
        *,
        lease_seconds: float = 900,
        max_failures: int = 5,
        retry_base_seconds: float = 3600,
        clock: Callable[[], float] = time.time,
    ):
        self.db = db
        self.analyzer = analyzer
        self.notifier = notifier
        self.optimizer = optimizer
        self.lease_seconds = lease_seconds
        self.max_failures = max_failures
        self.retry_base_seconds = retry_base_seconds
        self.clock = clock

    def run_once(self) -> RescanReport:
        """Processes every scan due now, one at a time."""
        due = self.db.list_due_scans(self.clock())
        logger.info("Found %d scans due for processing", len(due))
        report = RescanReport()
        for scan in due:
            report.outcomes.append(self.process_scan(scan))
        logger.info(
            "Rescan pass done: %d processed, %d skipped, %d failed",
            report.processed_scans,
            report.skipped_scans,
            report.failed_scans,
        )
        return report

    def process_scan(self, scan: ScheduledScanRecord) -> ScanCycleOutcome:
        if not self.db.claim_scheduled_scan(
            scan.scan_id, now=self.clock(), lease_seconds=self.lease_seconds
        ):
            logger.info("Scan %s is claimed by another run, skipping", scan.scan_id)
            return ScanCycleOutcome(scan.scan_id, scan.website_url, SKIPPED)

        try:
            return self._run_cycle(scan)
        except Exception as exc:
            # One failing site must not stop the rest of the pass.
            logger.exception("Error processing scan %s (%s)", scan.scan_id, scan.website_url)
            return self._record_failure(scan, exc)

    def _run_cycle(self, scan: ScheduledScanRecord) -> ScanCycleOutcome:
        logger.info("Processing scan for %s", scan.website_url)
        previous = self.db.get_latest_scan_result(scan.user_id, scan.website_url)
        previous_score = previous.seo_score if previous else 0
        previous_issues = previous.issues if previous else []

        current = self.analyzer.analyze(scan.user_id, scan.website_url)
        score_change = current.seo_score - previous_score
        new_issues, fixed_issues = diff_issues(previous_issues, current.issues)

        self.db.save_scan_comparison(
            ScanComparisonRecord(
                user_id=scan.user_id,
                website_url=scan.website_url,
                previous_seo_score=previous_score,
                current_seo_score=current.seo_score,
                score_change=score_change,
                new_issues=new_issues,
                fixed_issues=fixed_issues,
            )
        )

        outcome = ScanCycleOutcome(
            scan_id=scan.scan_id,
            website_url=scan.website_url,
            status=PROCESSED,
            previous_score=previous_score,
            current_score=current.seo_score,
            score_change=score_change,
            new_issues=len(new_issues),
            fixed_issues=len(fixed_issues),
        )

        if should_alert(scan.email_alerts, score_change, len(new_issues)):
            try:
                self.notifier.send_scan_alert(
                    user_id=scan.user_id,
                    website_url=scan.website_url,
                    previous_score=previous_score,
                    current_score=current.seo_score,
                    score_change=score_change,
                    new_issues=new_issues,
                )
                outcome.alerted = True
            except Exception:
                logger.exception("Failed to send alert for %s", scan.website_url)

        if should_auto_optimize(scan.auto_optimize, score_change):
            try:
                self.optimizer.optimize(scan.user_id, scan.website_url)
                outcome.optimized = True
            except Exception:
                logger.exception("Auto-optimization failed for %s", scan.website_url)

        t = self.clock()
        next_scan_at = t + scan.frequency_days * SECONDS_PER_DAY
        self.db.update_scheduled_scan(
            scan.scan_id,
            last_scan_at=t,
            next_scan_at=next_scan_at,
            failure_count=0,
            last_error=None,
            claimed_until=None,
        )
        outcome.next_scan_at = next_scan_at
        return outcome

    def retry_delay(self, failure_count: int, frequency_days: int) -> float:
        delay = self.retry_base_seconds * (2 ** (failure_count - 1))
        return min(delay, frequency_days * SECONDS_PER_DAY)

    def _record_failure(self, scan: ScheduledScanRecord, exc: Exception) -> ScanCycleOutcome:
        t = self.clock()
        failures = scan.failure_count + 1
        error = str(exc)[:MAX_ERROR_LENGTH] or exc.__class__.__name__
        changes = {"failure_count": failures, "last_error": error, "claimed_until": None}
        if failures >= self.max_failures:
            logger.warning(
                "Deactivating scan %s after %d consecutive failures", scan.scan_id, failures
            )
            changes["is_active"] = False
            next_scan_at = None
        else:
            next_scan_at = t + self.retry_delay(failures, scan.frequency_days)
            changes["next_scan_at"] = next_scan_at
        self.db.update_scheduled_scan(scan.scan_id, **changes)
        return ScanCycleOutcome(
            scan.scan_id, scan.website_url, FAILED, next_scan_at=next_scan_at, error=error
        )


def run_loop(
    scheduler: RescanScheduler,
    poll_interval_seconds: float = 300.0,
    *,
    jitter_seconds: float = 0.0,
    max_passes: Optional[int] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> int:
    """
    Polling loop for the rescan daemon. Runs until ``max_passes`` passes
    have completed, or forever when it is None.

    Returns:
        The number of passes run.
    """
    passes = 0
    while max_passes is None or passes < max_passes:
        try:
            scheduler.run_once()
        except Exception:
            logger.exception("Rescan pass failed")
        passes += 1
        if max_passes is not None and passes >= max_passes:
            break
        sleep_for = poll_interval_seconds + random.uniform(0, jitter_seconds)
        logger.info("Sleeping for %.1fs", sleep_for)
        sleep(sleep_for)
    return passes
