import unittest
from unittest.mock import MagicMock, patch

import requests

from backend.analyzer import USER_AGENT, PageSnapshot, SiteAnalyzer
from backend.db import InMemoryDbClient
from backend.errors import UpstreamError

DESCRIPTION = ("Learn more about brewing coffee at home. " + "a" * 200)[:130]

GOOD_PAGE = f"""
<html>
  <head>
    <title>Best Coffee Beans for Home Brewing in 2025</title>
    <meta name="description" content="{DESCRIPTION}">
  </head>
  <body>
    <h1>Coffee</h1>
    <h2>Beans</h2>
    <img src="beans.jpg" alt="Roasted beans">
  </body>
</html>
"""

BAD_PAGE = """
<html><body>
  <h2>Welcome</h2>
  <img src="a.png">
  <img alt="  ">
</body></html>
"""


class PageSnapshotTests(unittest.TestCase):
    def test_extracts_signals(self):
        snapshot = PageSnapshot.from_html("https://a.com", GOOD_PAGE)

        self.assertEqual(snapshot.title, "Best Coffee Beans for Home Brewing in 2025")
        self.assertEqual(snapshot.meta_description, DESCRIPTION)
        self.assertEqual(snapshot.headings, [(1, "Coffee"), (2, "Beans")])
        self.assertEqual(snapshot.missing_alt, 0)
        self.assertEqual(snapshot.issues(), [])

    def test_issues_for_bad_page(self):
        snapshot = PageSnapshot.from_html("https://a.com", BAD_PAGE)

        ids = [issue.id for issue in snapshot.issues()]

        self.assertEqual(
            ids,
            [
                "missing-title",
                "missing-meta-description",
                "missing-h1",
                "missing-alt:a.png",
                "missing-alt:1",
            ],
        )
        self.assertEqual(snapshot.as_dict()["images"], {"total": 2, "missing_alt": 2, "with_alt": 0})


class SiteAnalyzerTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.analyzer = SiteAnalyzer(self.db, timeout=5)

    @patch("backend.analyzer.requests.get")
    def test_analyze_saves_scored_result(self, mock_get):
        mock_get.return_value = MagicMock(ok=True, text=GOOD_PAGE)

        result = self.analyzer.analyze("u1", "https://a.com")

        self.assertEqual(result.seo_score, 86)
        self.assertEqual(result.issues, [])
        self.assertEqual(result.details["validation"]["meta_title"]["score"], 95)
        self.assertEqual(self.db.get_latest_scan_result("u1", "https://a.com"), result)
        self.assertEqual(mock_get.call_args.kwargs["headers"], {"User-Agent": USER_AGENT})
        self.assertEqual(mock_get.call_args.kwargs["timeout"], 5)

    @patch("backend.analyzer.requests.get")
    def test_fetch_failures_are_400(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("refused")
        with self.assertRaises(UpstreamError) as ctx:
            self.analyzer.analyze("u1", "https://a.com")
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertIn("Failed to crawl website", ctx.exception.message)

        mock_get.side_effect = None
        mock_get.return_value = MagicMock(ok=False, status_code=404, reason="Not Found")
        with self.assertRaises(UpstreamError) as ctx:
            self.analyzer.fetch_snapshot("https://a.com/missing")
        self.assertEqual(ctx.exception.status_code, 400)
        self.assertEqual(self.db.scan_results, [])


if __name__ == "__main__":
    unittest.main()
