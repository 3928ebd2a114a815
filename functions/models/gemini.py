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

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from models.completion import (
    DEFAULT_MAX_TOKENS,
    DEFAULT_TEMPERATURE,
    CompletionError,
    InvalidCompletionResponse,
)

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.5-flash"


class GeminiCompletionClient:
    """Gemini backend for the same system + user completion contract."""

    def __init__(self, api_key: str, model: str = DEFAULT_MODEL, client: genai.Client | None = None):
        if not api_key and client is None:
            raise ValueError("GEMINI_API_KEY is required for GeminiCompletionClient")
        self.model = model
        self._client = client or genai.Client(api_key=api_key)

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        json_mode: bool = False,
        temperature: float = DEFAULT_TEMPERATURE,
        max_tokens: int = DEFAULT_MAX_TOKENS,
    ) -> str:
        config = types.GenerateContentConfig(
            system_instruction=system_prompt,
            temperature=temperature,
            max_output_tokens=max_tokens,
            response_mime_type="application/json" if json_mode else None,
        )
        start_time = time.time()
        try:
            response = self._client.models.generate_content(
                model=self.model,
                contents=user_prompt,
                config=config,
            )
        except genai_errors.APIError as exc:
            logger.exception("Gemini request failed for model '%s'", self.model)
            raise CompletionError(str(exc)) from exc
        logger.info("Gemini call took %.2fs", time.time() - start_time)

        if not response.text:
            raise InvalidCompletionResponse()
        return response.text
