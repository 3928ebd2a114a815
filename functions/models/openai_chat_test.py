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
from unittest.mock import MagicMock

import openai

from models.completion import CompletionError, InvalidCompletionResponse
from models.gemini import GeminiCompletionClient
from models.openai_chat import OpenAIChatClient


def _chat_response(content):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    return response


class OpenAIChatClientTest(unittest.TestCase):

    def setUp(self):
        self.sdk = MagicMock()
        self.client = OpenAIChatClient("", model="gpt-4o-mini", client=self.sdk)

    def test_complete_sends_system_and_user_messages(self):
        self.sdk.chat.completions.create.return_value = _chat_response("hello")

        self.assertEqual(self.client.complete("sys", "user"), "hello")

        kwargs = self.sdk.chat.completions.create.call_args.kwargs
        self.assertEqual(kwargs["model"], "gpt-4o-mini")
        self.assertEqual(
            kwargs["messages"],
            [{"role": "system", "content": "sys"}, {"role": "user", "content": "user"}],
        )
        self.assertEqual(kwargs["max_tokens"], 500)
        self.assertNotIn("response_format", kwargs)

    def test_json_mode(self):
        self.sdk.chat.completions.create.return_value = _chat_response("{}")
        self.client.complete("sys", "user", json_mode=True)
        kwargs = self.sdk.chat.completions.create.call_args.kwargs
        self.assertEqual(kwargs["response_format"], {"type": "json_object"})

    def test_sdk_error_becomes_completion_error(self):
        self.sdk.chat.completions.create.side_effect = openai.OpenAIError("quota exceeded")
        with self.assertRaises(CompletionError) as ctx:
            self.client.complete("sys", "user")
        self.assertEqual(str(ctx.exception), "quota exceeded")

    def test_empty_content(self):
        self.sdk.chat.completions.create.return_value = _chat_response("")
        with self.assertRaises(InvalidCompletionResponse):
            self.client.complete("sys", "user")

    def test_requires_key_without_client(self):
        with self.assertRaises(ValueError):
            OpenAIChatClient("")


class GeminiCompletionClientTest(unittest.TestCase):

    def setUp(self):
        self.sdk = MagicMock()
        self.client = GeminiCompletionClient("", client=self.sdk)

    def test_json_mode_sets_mime_type(self):
        self.sdk.models.generate_content.return_value = MagicMock(text='{"a": 1}')

        self.assertEqual(self.client.complete("sys", "user", json_mode=True), '{"a": 1}')

        config = self.sdk.models.generate_content.call_args.kwargs["config"]
        self.assertEqual(config.response_mime_type, "application/json")
        self.assertEqual(config.system_instruction, "sys")

    def test_empty_text(self):
        self.sdk.models.generate_content.return_value = MagicMock(text="")
        with self.assertRaises(InvalidCompletionResponse):
            self.client.complete("sys", "user")


if __name__ == "__main__":
    unittest.main()
