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

"""Completion client contract shared by the OpenAI and Gemini backends."""

import json
from typing import Any, Protocol

DEFAULT_TEMPERATURE = 0.7
DEFAULT_MAX_TOKENS = 500


class InvalidCompletionResponse(Exception):
    """The completion service answered without usable text."""


class CompletionError(Exception):
    """The completion service could not be reached or rejected the request."""


class CompletionClient(Protocol):
    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        json_mode: bool = False,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> str:
        ...


def strip_code_fences(text: str) -> str:
    """Removes a surrounding ```json ... ``` block if the model added one."""
    stripped = text.strip()
    if stripped.startswith("```"):
        stripped = stripped.split("\n", 1)[1] if "\n" in stripped else ""
        if stripped.rstrip().endswith("```"):
            stripped = stripped.rstrip()[:-3]
    return stripped.strip()


def parse_json_response(text: str) -> Any:
    """
    Parses a completion as JSON.

    Raises:
        ValueError: If the text is not valid JSON.
    """
    return json.loads(strip_code_fences(text))
