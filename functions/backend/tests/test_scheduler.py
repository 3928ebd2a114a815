import unittest
from unittest.mock import MagicMock

from backend.db import InMemoryDbClient
from backend.errors import UpstreamError
from backend.scheduler import RescanScheduler, diff_issues, run_loop
from shared.constants import SECONDS_PER_DAY

NOW = 1_700_000_000.0
USER = "user-1"
URL = "https://a.com"


class FakeAnalyzer:
    """Appends a ScanResult with a fixed score, like SiteAnalyzer does."""

    def __init__(self, db, score=70, issues=None, error=None):
        self.db = db
        self.score = score
        self.issues = issues or []
        self.error = error
        self.calls = []

    def analyze(self, user_id, url):
        self.calls.append((user_id, url))
        if self.error:
            raise self.error
        return self.db.save_scan_result(user_id, url, self.score, self.issues)


class RescanSchedulerTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.notifier = MagicMock()
        self.optimizer = MagicMock()

    def _scheduler(self, analyzer, **kwargs):
        return RescanScheduler(
            self.db,
            analyzer,
            self.notifier,
            self.optimizer,
            clock=lambda: NOW,
            **kwargs,
        )

    def _due_scan(self, **kwargs):
        return self.db.create_scheduled_scan(
            USER, URL, 7, next_scan_at=NOW - SECONDS_PER_DAY, **kwargs
        )

    def test_score_drop_triggers_optimizer_and_reschedules(self):
        scan = self._due_scan(auto_optimize=True)
        self.db.save_scan_result(USER, URL, 80, [])

        report = self._scheduler(FakeAnalyzer(self.db, score=70)).run_once()

        self.assertEqual(report.processed_scans, 1)
        self.assertEqual(len(self.db.comparisons), 1)
        comparison = self.db.comparisons[0]
        self.assertEqual(comparison.previous_seo_score, 80)
        self.assertEqual(comparison.current_seo_score, 70)
        self.assertEqual(comparison.score_change, -10)
        self.optimizer.optimize.assert_called_once_with(USER, URL)

        updated = self.db.get_scheduled_scan(scan.scan_id)
        self.assertEqual(updated.last_scan_at, NOW)
        self.assertEqual(updated.next_scan_at, NOW + 7 * SECONDS_PER_DAY)
        self.assertEqual(updated.next_scan_at, updated.last_scan_at + 7 * SECONDS_PER_DAY)
        self.assertIsNone(updated.claimed_until)

    def test_score_gain_without_alerts_does_nothing_extra(self):
        self._due_scan(email_alerts=False, auto_optimize=True)
        self.db.save_scan_result(USER, URL, 70, [])

        report = self._scheduler(FakeAnalyzer(self.db, score=75)).run_once()

        self.assertEqual(report.processed_scans, 1)
        self.assertEqual(self.db.comparisons[0].score_change, 5)
        self.notifier.send_scan_alert.assert_not_called()
        self.optimizer.optimize.assert_not_called()

    def test_small_drop_alerts_but_does_not_optimize(self):
        self._due_scan(auto_optimize=True)
        self.db.save_scan_result(USER, URL, 80, [])

        self._scheduler(FakeAnalyzer(self.db, score=77)).run_once()

        self.notifier.send_scan_alert.assert_called_once()
        self.optimizer.optimize.assert_not_called()

    def test_new_issue_alerts_even_when_score_improves(self):
        self._due_scan()
        old_issue = {"id": "missing-h1", "title": "Missing H1 heading"}
        new_issue = {"id": "missing-alt:logo.png", "title": "Image missing alt text"}
        self.db.save_scan_result(USER, URL, 60, [old_issue])

        self._scheduler(FakeAnalyzer(self.db, score=65, issues=[new_issue])).run_once()

        comparison = self.db.comparisons[0]
        self.assertEqual(comparison.new_issues, [new_issue])
        self.assertEqual(comparison.fixed_issues, [old_issue])
        kwargs = self.notifier.send_scan_alert.call_args.kwargs
        self.assertEqual(kwargs["new_issues"], [new_issue])
        self.assertEqual(kwargs["score_change"], 5)

    def test_first_scan_uses_zero_as_previous_score(self):
        self._due_scan(email_alerts=False)

        self._scheduler(FakeAnalyzer(self.db, score=64)).run_once()

        comparison = self.db.comparisons[0]
        self.assertEqual(comparison.previous_seo_score, 0)
        self.assertEqual(comparison.score_change, 64)

    def test_scans_not_due_are_ignored(self):
        self.db.create_scheduled_scan(USER, URL, 7, next_scan_at=NOW + 60)
        inactive = self._due_scan()
        self.db.update_scheduled_scan(inactive.scan_id, is_active=False)
        analyzer = FakeAnalyzer(self.db)

        report = self._scheduler(analyzer).run_once()

        self.assertEqual(report.outcomes, [])
        self.assertEqual(analyzer.calls, [])

    def test_claimed_scan_is_skipped(self):
        scan = self._due_scan()
        self.assertTrue(self.db.claim_scheduled_scan(scan.scan_id, now=NOW, lease_seconds=900))
        analyzer = FakeAnalyzer(self.db)

        report = self._scheduler(analyzer).run_once()

        self.assertEqual(report.skipped_scans, 1)
        self.assertEqual(analyzer.calls, [])
        self.assertEqual(self.db.comparisons, [])

    def test_expired_lease_can_be_reclaimed(self):
        scan = self._due_scan()
        self.db.claim_scheduled_scan(scan.scan_id, now=NOW - 1000, lease_seconds=900)

        report = self._scheduler(FakeAnalyzer(self.db)).run_once()

        self.assertEqual(report.processed_scans, 1)

    def test_stale_due_list_does_not_reprocess_rescheduled_scan(self):
        self._due_scan()
        stale = self.db.list_due_scans(NOW)
        analyzer = FakeAnalyzer(self.db)
        scheduler = self._scheduler(analyzer)

        scheduler.run_once()
        outcome = scheduler.process_scan(stale[0])

        self.assertEqual(outcome.status, "skipped")
        self.assertEqual(len(analyzer.calls), 1)
        self.assertEqual(len(self.db.comparisons), 1)

    def test_failure_backs_off_and_keeps_going(self):
        failing = self._due_scan()
        other = self.db.create_scheduled_scan(
            USER, "https://b.com", 1, next_scan_at=NOW - 10
        )

        class PartlyFailingAnalyzer(FakeAnalyzer):
            def analyze(self, user_id, url):
                if url == URL:
                    raise UpstreamError("Failed to crawl website: timeout", status_code=400)
                return super().analyze(user_id, url)

        report = self._scheduler(
            PartlyFailingAnalyzer(self.db), retry_base_seconds=3600
        ).run_once()

        self.assertEqual(report.failed_scans, 1)
        self.assertEqual(report.processed_scans, 1)
        updated = self.db.get_scheduled_scan(failing.scan_id)
        self.assertEqual(updated.failure_count, 1)
        self.assertEqual(updated.next_scan_at, NOW + 3600)
        self.assertIn("timeout", updated.last_error)
        self.assertIsNone(updated.claimed_until)
        self.assertTrue(updated.is_active)
        self.assertEqual(self.db.get_scheduled_scan(other.scan_id).last_scan_at, NOW)

    def test_backoff_is_capped_at_frequency(self):
        scheduler = self._scheduler(FakeAnalyzer(self.db), retry_base_seconds=3600)
        self.assertEqual(scheduler.retry_delay(1, 7), 3600)
        self.assertEqual(scheduler.retry_delay(3, 7), 4 * 3600)
        self.assertEqual(scheduler.retry_delay(10, 1), SECONDS_PER_DAY)

    def test_repeated_failures_deactivate_scan(self):
        scan = self._due_scan()
        self.db.update_scheduled_scan(scan.scan_id, failure_count=2)

        self._scheduler(
            FakeAnalyzer(self.db, error=RuntimeError("boom")), max_failures=3
        ).run_once()

        updated = self.db.get_scheduled_scan(scan.scan_id)
        self.assertFalse(updated.is_active)
        self.assertEqual(updated.failure_count, 3)
        self.assertEqual(updated.last_error, "boom")

    def test_success_resets_failure_count(self):
        scan = self._due_scan()
        self.db.update_scheduled_scan(scan.scan_id, failure_count=2, last_error="boom")

        self._scheduler(FakeAnalyzer(self.db)).run_once()

        updated = self.db.get_scheduled_scan(scan.scan_id)
        self.assertEqual(updated.failure_count, 0)
        self.assertIsNone(updated.last_error)

    def test_alert_failure_still_reschedules_once(self):
        scan = self._due_scan(auto_optimize=True)
        self.db.save_scan_result(USER, URL, 80, [])
        self.notifier.send_scan_alert.side_effect = RuntimeError("no email")

        report = self._scheduler(FakeAnalyzer(self.db, score=60)).run_once()

        self.assertEqual(report.processed_scans, 1)
        self.assertFalse(report.outcomes[0].alerted)
        self.assertTrue(report.outcomes[0].optimized)
        self.assertEqual(len(self.db.comparisons), 1)
        updated = self.db.get_scheduled_scan(scan.scan_id)
        self.assertEqual(updated.next_scan_at, NOW + 7 * SECONDS_PER_DAY)

    def test_report_as_dict(self):
        self._due_scan()
        payload = self._scheduler(FakeAnalyzer(self.db)).run_once().as_dict()
        self.assertTrue(payload["success"])
        self.assertEqual(payload["processedScans"], 1)
        self.assertEqual(payload["failedScans"], 0)
        self.assertEqual(payload["results"][0]["website_url"], URL)


class RunLoopTests(unittest.TestCase):
    def test_runs_limited_passes_and_survives_errors(self):
        scheduler = MagicMock()
        scheduler.run_once.side_effect = [RuntimeError("db down"), None, None]
        sleeps = []

        passes = run_loop(scheduler, 60, max_passes=3, sleep=sleeps.append)

        self.assertEqual(passes, 3)
        self.assertEqual(scheduler.run_once.call_count, 3)
        self.assertEqual(sleeps, [60, 60])

    def test_single_pass_does_not_sleep(self):
        sleeps = []
        run_loop(MagicMock(), 60, jitter_seconds=5, max_passes=1, sleep=sleeps.append)
        self.assertEqual(sleeps, [])


class DiffIssuesTests(unittest.TestCase):
    def test_matches_by_id_then_title(self):
        previous = [{"id": "a"}, {"title": "Slow page"}]
        current = [{"id": "a"}, {"title": "Thin content"}]
        new, fixed = diff_issues(previous, current)
        self.assertEqual(new, [{"title": "Thin content"}])
        self.assertEqual(fixed, [{"title": "Slow page"}])


if __name__ == "__main__":
    unittest.main()
