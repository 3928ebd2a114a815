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

from models import prompts
from shared.types import RewriteType


class RewritePromptTest(unittest.TestCase):

    def test_prompt_includes_instruction_and_content(self):
        prompt = prompts.make_rewrite_prompt(RewriteType.H1, "Welcome", "https://a.com")
        self.assertTrue(prompt.startswith(prompts.REWRITE_INSTRUCTIONS[RewriteType.H1]))
        self.assertIn('Original content: "Welcome"', prompt)
        self.assertIn("Website URL: https://a.com", prompt)

    def test_every_type_has_instructions(self):
        self.assertEqual(set(prompts.REWRITE_INSTRUCTIONS), set(RewriteType))

    def test_parse_fenced_json(self):
        text = '```json\n{"suggestion": "New H1", "reasoning": "Clearer"}\n```'
        self.assertEqual(
            prompts.parse_rewrite_response(text),
            {"suggestion": "New H1", "reasoning": "Clearer"},
        )

    def test_parse_json_without_reasoning(self):
        result = prompts.parse_rewrite_response('{"suggestion": "New H1"}')
        self.assertEqual(result["reasoning"], prompts.REWRITE_FALLBACK_REASONING)

    def test_parse_plain_text(self):
        result = prompts.parse_rewrite_response("New H1\nIt is shorter.")
        self.assertEqual(result["suggestion"], "New H1")
        self.assertEqual(result["reasoning"], prompts.REWRITE_FALLBACK_REASONING)


class MetaSuggestPromptTest(unittest.TestCase):

    def test_content_is_truncated(self):
        prompt = prompts.make_metasuggest_prompt("Title", "x" * 5000)
        self.assertIn("Article Title: Title", prompt)
        self.assertEqual(prompt.count("x"), 2000)

    def test_parse_array(self):
        text = '[{"title": "A", "meta_description": "B", "focus_keyword": "c"}]'
        self.assertEqual(prompts.parse_metasuggest_response(text, "Title")[0]["title"], "A")

    def test_parse_wrapped_object(self):
        text = '{"suggestions": [{"title": "A"}, {"title": "B"}]}'
        result = prompts.parse_metasuggest_response(text, "Title")
        self.assertEqual([s["title"] for s in result], ["A", "B"])

    def test_parse_single_object(self):
        result = prompts.parse_metasuggest_response('{"title": "A"}', "Title")
        self.assertEqual(result, [{"title": "A"}])

    def test_fallback(self):
        """Unparseable or non-list output falls back to one generated suggestion."""
        title = "The Complete Guide to Brewing Specialty Coffee at Home Every Day"
        for text in ("not json", "42"):
            result = prompts.parse_metasuggest_response(text, title)
            self.assertEqual(len(result), 1)
            self.assertEqual(result[0]["title"], title[:57] + "...")
            self.assertEqual(result[0]["focus_keyword"], "the complete")
            self.assertTrue(result[0]["meta_description"].startswith("Learn about the complete"))


if __name__ == "__main__":
    unittest.main()
