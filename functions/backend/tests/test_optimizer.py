import json
import unittest
from unittest.mock import MagicMock

from backend.analyzer import PageSnapshot
from backend.db import InMemoryDbClient
from backend.errors import NotFoundError, UpstreamError
from backend.optimizer import (
    FAILED,
    SKIPPED,
    SUCCESS,
    WebsiteOptimizer,
    WordPressFixer,
    extract_recommended_value,
    fixes_from_issues,
    site_origin,
)
from backend.rollback import MANUAL_ROLLBACK_STEPS, RollbackService
from backend.storage import InMemoryStorageClient, backup_path
from backend.usage import UsageTracker
from shared.types import OptimizationFix, OptimizationStatus, WordPressCredentials

USER = "u1"
URL = "https://shop.example.com/products"


def _fake_wp(page_on_front=7, content="<p>Hello</p>"):
    wp = MagicMock()
    wp.get_settings.return_value = {"page_on_front": page_on_front}
    wp.get_page.return_value = {
        "title": {"rendered": "Home"},
        "excerpt": {"rendered": "Old excerpt"},
        "content": {"rendered": content},
    }
    wp.list_media.return_value = [
        {"id": 1, "alt_text": "Already set", "title": {"rendered": "Hero"}},
        {"id": 2, "alt_text": "", "title": {"rendered": ""}},
    ]
    return wp


class HelperTests(unittest.TestCase):
    def test_extract_recommended_value(self):
        self.assertEqual(
            extract_recommended_value('Use title: "Best Coffee Beans"', "title", "x"),
            "Best Coffee Beans",
        )
        self.assertEqual(extract_recommended_value("Shorten it", "title", "x"), "x")

    def test_fixes_from_issues(self):
        issues = [
            {"id": "missing-alt:a.png", "type": "image_alt"},
            {"id": "missing-alt:b.png", "type": "image_alt"},
            {"id": "missing-h1", "type": "heading", "title": "Missing H1 heading"},
            {"id": "slow", "type": "performance"},
        ]
        fixes = fixes_from_issues(issues)
        self.assertEqual([(f.id, f.type) for f in fixes], [("missing-alt:a.png", "image"), ("missing-h1", "heading")])

    def test_site_origin(self):
        self.assertEqual(site_origin(URL), "https://shop.example.com")


class WordPressFixerTests(unittest.TestCase):
    def test_title_fix_uses_recommendation(self):
        wp = _fake_wp()
        fix = OptimizationFix("t", "title", recommendation="title: 'Shop Coffee Online'")

        result = WordPressFixer(wp).apply(fix)

        self.assertEqual(result.status, SUCCESS)
        wp.update_page.assert_called_once_with(7, title="Shop Coffee Online")

    def test_meta_fix_writes_excerpt(self):
        wp = _fake_wp()
        WordPressFixer(wp).apply(OptimizationFix("m", "meta"))
        wp.update_page.assert_called_once_with(
            7, excerpt="Optimized meta description for better SEO performance."
        )

    def test_no_front_page(self):
        result = WordPressFixer(_fake_wp(page_on_front=0)).apply(OptimizationFix("t", "title"))
        self.assertEqual((result.status, result.message), (SKIPPED, "No front page set"))

    def test_existing_h1_is_left_alone(self):
        wp = _fake_wp(content="<h1>Home</h1><p>x</p>")
        result = WordPressFixer(wp).apply(OptimizationFix("h", "heading"))
        self.assertEqual(result.status, SKIPPED)
        wp.update_page.assert_not_called()

    def test_alt_text_only_fills_missing(self):
        wp = _fake_wp()
        result = WordPressFixer(wp).apply(OptimizationFix("i", "image"))
        self.assertEqual(result.message, "Updated alt text for 1 images")
        wp.update_media.assert_called_once_with(2, alt_text="Image 2")

    def test_unsupported_and_failing_fixes(self):
        wp = _fake_wp()
        fixer = WordPressFixer(wp)
        self.assertEqual(fixer.apply(OptimizationFix("s", "speed")).status, SKIPPED)

        wp.update_page.side_effect = UpstreamError("Sorry, you are not allowed.", status_code=403)
        result = fixer.apply(OptimizationFix("t", "title"))
        self.assertEqual((result.status, result.message), (FAILED, "Sorry, you are not allowed."))

    def test_schema_markup(self):
        wp = _fake_wp()
        result = WordPressFixer(wp).insert_schema_markup("Organization", {"@type": "Organization"})
        self.assertEqual(result.status, SUCCESS)
        content = wp.update_page.call_args.kwargs["content"]
        self.assertTrue(content.startswith("<p>Hello</p>"))
        self.assertIn('<script type="application/ld+json">', content)

        wp = _fake_wp(content='<script type="application/ld+json">{}</script>')
        self.assertEqual(WordPressFixer(wp).insert_schema_markup("WebPage", {}).status, SKIPPED)


class FakeAnalyzer:
    def fetch_snapshot(self, url):
        return PageSnapshot.from_html(url, "<html><head><title>Home</title></head></html>")


class WebsiteOptimizerTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.storage = InMemoryStorageClient()
        self.wp = _fake_wp()
        self.factory = MagicMock(return_value=self.wp)
        self.optimizer = WebsiteOptimizer(
            self.db,
            self.storage,
            FakeAnalyzer(),
            UsageTracker(self.db),
            backup_url_ttl=60,
            wp_client_factory=self.factory,
            clock=lambda: 1_700_000_000.0,
        )

    def test_fixes_come_from_latest_scan(self):
        self.db.save_scan_result(USER, URL, 55, [{"id": "missing-h1", "type": "heading"}])

        report = self.optimizer.optimize(
            USER, URL, wp_credentials=WordPressCredentials("admin", "pass")
        )

        self.assertEqual([r.id for r in report.results], ["heading-structure"])
        self.assertEqual(report.success_count, 1)
        self.factory.assert_called_once_with(
            "https://shop.example.com", WordPressCredentials("admin", "pass")
        )
        record = self.db.get_optimization(report.history_id)
        self.assertEqual(record.seo_score_before, 55)
        self.assertEqual(record.fixes_applied[0]["status"], SUCCESS)
        self.assertTrue(record.backup_url.endswith("?op=get&expires=60"))

    def test_backup_holds_page_and_wordpress_state(self):
        report = self.optimizer.optimize(
            USER, URL, fixes=[], wp_credentials=WordPressCredentials("admin", "pass")
        )

        backup = self.storage.stored_objects[backup_path(USER, report.history_id)]
        self.assertEqual(backup["page"]["title"], "Home")
        self.assertEqual(backup["wordpress"]["front_page"]["excerpt"], "Old excerpt")
        self.assertEqual(len(backup["wordpress"]["media"]), 2)
        self.assertEqual(report.as_dict()["totalFixes"], 0)

    def test_unreachable_site_aborts_before_backup(self):
        self.wp.verify.side_effect = UpstreamError("Cannot connect to WordPress site: refused")

        with self.assertRaises(UpstreamError):
            self.optimizer.optimize(
                USER, URL, fixes=[], wp_credentials=WordPressCredentials("admin", "pass")
            )

        self.assertEqual(self.storage.stored_objects, {})
        self.assertEqual(self.db.optimizations, {})

    def test_without_credentials_everything_is_skipped(self):
        report = self.optimizer.optimize(
            USER,
            URL,
            fixes=[OptimizationFix("t", "title")],
            schema_markup={"type": "WebPage", "jsonLd": {}},
        )

        self.assertEqual(report.results[0].status, SKIPPED)
        self.assertEqual(len(report.results), 1)
        self.assertEqual(self.db.get_usage(USER).optimizations_used, 1)


class RollbackServiceTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.storage = InMemoryStorageClient()
        self.wp = _fake_wp()
        self.service = RollbackService(self.db, self.storage, MagicMock(return_value=self.wp))
        optimizer = WebsiteOptimizer(
            self.db,
            self.storage,
            FakeAnalyzer(),
            UsageTracker(self.db),
            wp_client_factory=MagicMock(return_value=_fake_wp()),
        )
        self.report = optimizer.optimize(
            USER, URL, fixes=[], wp_credentials=WordPressCredentials("admin", "pass")
        )

    def test_list_backups(self):
        backups = self.service.list_backups(USER)
        self.assertEqual(backups[0]["id"], self.report.history_id)
        self.assertEqual(backups[0]["status"], "completed")
        self.assertEqual(self.service.list_backups("someone-else"), [])

    def test_manual_rollback_without_credentials(self):
        result = self.service.rollback(USER, self.report.history_id)

        self.assertTrue(result.success)
        self.assertEqual(result.details, MANUAL_ROLLBACK_STEPS)
        self.wp.update_page.assert_not_called()
        self.assertEqual(
            self.db.get_optimization(self.report.history_id).status,
            OptimizationStatus.ROLLED_BACK,
        )

    def test_wordpress_rollback_restores_snapshot(self):
        result = self.service.rollback(
            USER, self.report.history_id, WordPressCredentials("admin", "pass")
        )

        self.assertTrue(result.success)
        self.wp.update_page.assert_called_once_with(
            7, title="Home", excerpt="Old excerpt", content="<p>Hello</p>"
        )
        self.assertEqual(self.wp.update_media.call_count, 2)
        self.assertEqual(result.details[-1], "Alt text restored for 2 images")

    def test_missing_backup_file(self):
        del self.storage.stored_objects[backup_path(USER, self.report.history_id)]
        with self.assertRaises(NotFoundError) as ctx:
            self.service.rollback(USER, self.report.history_id)
        self.assertEqual(ctx.exception.message, "Backup file not found")

    def test_unknown_backup(self):
        with self.assertRaises(NotFoundError):
            self.service.rollback(USER, "missing")

    def test_backup_is_plain_json(self):
        raw = self.storage.get_bytes(backup_path(USER, self.report.history_id))
        self.assertEqual(json.loads(raw)["website_url"], URL)


if __name__ == "__main__":
    unittest.main()
