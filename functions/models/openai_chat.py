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

import logging
import time

import openai
from openai import OpenAI

from models.completion import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    CompletionError,
    InvalidCompletionResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"


class OpenAIChatClient:
    """Chat-completions backend (system + user message, optional JSON mode)."""

    def __init__(self, api_key: str, model: str = DEFAULT_MODEL, client: OpenAI | None = None):
        if not api_key and client is None:
            raise ValueError("OPENAI_API_KEY is required for OpenAIChatClient")
        self.model = model
        self._client = client or OpenAI(api_key=api_key)

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        json_mode: bool = False,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> str:
        kwargs = {}
        if json_mode:
            kwargs["response_format"] = {"type": "json_object"}

        start_time = time.time()
        try:
            response = self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=temperature,
                max_tokens=max_tokens,
                **kwargs,
            )
        except openai.OpenAIError as exc:
            logger.exception("OpenAI request failed for model '%s'", self.model)
            raise CompletionError(str(exc)) from exc
        logger.info("OpenAI call took %.2fs", time.time() - start_time)

        content = response.choices[0].message.content if response.choices else None
        if not content:
            logger.error("OpenAI returned empty content for model '%s'", self.model)
            raise InvalidCompletionResponse()
        return content
