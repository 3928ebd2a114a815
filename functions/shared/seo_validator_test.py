# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

import unittest

from shared import seo_validator
from shared.seo_validator import ValidationResult


def _padded(text, length):
    return (text + "a" * length)[:length]


class MetaTitleTest(unittest.TestCase):

    def test_empty_title(self):
        result = seo_validator.validate_meta_title("")
        self.assertEqual(result.status, "error")
        self.assertEqual(result.score, 0)

    def test_length_bounds(self):
        self.assertEqual(seo_validator.validate_meta_title("Short").score, 50)
        self.assertEqual(seo_validator.validate_meta_title("x" * 61).score, 70)

    def test_keyword(self):
        title = "Best Coffee Beans for Home Brewing in 2025"
        self.assertEqual(seo_validator.validate_meta_title(title).score, 95)
        self.assertEqual(seo_validator.validate_meta_title(title, "coffee").score, 95)
        missing = seo_validator.validate_meta_title(title, "espresso")
        self.assertEqual(missing.score, 75)
        self.assertIn("missing focus keyword", missing.message)


class MetaDescriptionTest(unittest.TestCase):

    def test_call_to_action(self):
        description = _padded("Learn more about brewing coffee at home. ", 130)
        result = seo_validator.validate_meta_description(description)
        self.assertEqual(result.status, "valid")
        self.assertEqual(result.score, 80)

    def test_vietnamese_call_to_action(self):
        description = _padded("Cà phê ngon, liên hệ ngay hôm nay. ", 130)
        self.assertEqual(seo_validator.validate_meta_description(description).score, 80)

    def test_penalties_stack(self):
        description = _padded("Coffee guide. ", 130)
        self.assertEqual(seo_validator.validate_meta_description(description).score, 70)

        result = seo_validator.validate_meta_description(description, "espresso")
        self.assertEqual(result.score, 55)
        self.assertEqual(result.status, "warning")
        self.assertEqual(
            result.message, "130 characters - no call-to-action, missing focus keyword"
        )

    def test_length_bounds(self):
        self.assertEqual(seo_validator.validate_meta_description("").score, 0)
        self.assertEqual(seo_validator.validate_meta_description("too short").score, 60)
        self.assertEqual(seo_validator.validate_meta_description("x" * 161).score, 70)


class HeadingsTest(unittest.TestCase):

    def test_no_headings(self):
        self.assertEqual(seo_validator.validate_headings([]).score, 0)

    def test_clean_outline(self):
        result = seo_validator.validate_headings([(1, "Coffee"), (2, "Beans"), (3, "Arabica")])
        self.assertEqual(result.score, 70)
        self.assertEqual(result.message, "3 headings - good structure")

    def test_all_problems(self):
        """Missing H1, a duplicate and a skipped level are all penalized."""
        result = seo_validator.validate_headings([(2, "A"), (2, "A"), (4, "C")])
        self.assertEqual(result.score, 15)
        self.assertEqual(result.status, "error")

    def test_multiple_h1(self):
        result = seo_validator.validate_headings([(1, "A"), (1, "B")])
        self.assertEqual(result.score, 50)
        self.assertIn("2 H1 tags", result.message)

    def test_structure(self):
        self.assertFalse(seo_validator.has_proper_heading_structure([(1, "a"), (3, "b")]))
        # Going back up the outline is fine.
        self.assertTrue(
            seo_validator.has_proper_heading_structure([(1, "a"), (2, "b"), (3, "c"), (2, "d")])
        )
        self.assertEqual(
            seo_validator.find_duplicate_headings([(2, "x"), (3, "x"), (2, "x"), (2, "y")]),
            ["x"],
        )


class AltTextTest(unittest.TestCase):

    def test_no_images(self):
        result = seo_validator.validate_alt_text(0, 0)
        self.assertEqual((result.status, result.score), ("valid", 100))

    def test_missing_alt(self):
        result = seo_validator.validate_alt_text(4, 1)
        self.assertEqual(result.score, 75)
        self.assertEqual(result.status, "warning")

    def test_keyword_penalty_only_with_keyword(self):
        self.assertEqual(seo_validator.validate_alt_text(4, 0).score, 100)
        result = seo_validator.validate_alt_text(4, 0, keyword_matches=0)
        self.assertEqual(result.score, 80)
        self.assertIn("few keywords in alt text", result.message)


class OverallScoreTest(unittest.TestCase):

    def test_rounds_mean(self):
        results = [ValidationResult("valid", "", s) for s in (95, 80, 70, 100)]
        self.assertEqual(seo_validator.overall_score(results), 86)
        self.assertEqual(seo_validator.overall_score([]), 0)


if __name__ == "__main__":
    unittest.main()
