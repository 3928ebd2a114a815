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

from models.completion import parse_json_response
from shared.constants import MAX_METASUGGEST_CONTENT_CHARS
from shared.types import RewriteType

REWRITE_INSTRUCTIONS = {
    RewriteType.META_TITLE: "Create an SEO-optimized meta title (50-60 characters) that is compelling, includes relevant keywords, and encourages clicks.",
    RewriteType.META_DESC: "Write an engaging meta description (150-160 characters) that summarizes the content, includes keywords, and has a clear call-to-action.",
    RewriteType.H1: "Rewrite this H1 heading to be more engaging, SEO-friendly, and clearly communicate the main topic while including relevant keywords.",
    RewriteType.ALT_TEXT: "Create descriptive alt text that accurately describes the image for accessibility and SEO, keeping it concise but informative.",
    RewriteType.PARAGRAPH: "Rewrite this paragraph to be more engaging, readable, and SEO-optimized while maintaining the original meaning and adding relevant keywords naturally.",
}

REWRITE_SYSTEM_PROMPT = """You are an expert SEO content writer. Your task is to rewrite content to improve SEO performance, user engagement, and keyword relevance while maintaining readability and authenticity.

Guidelines:
- Keep content natural and user-focused
- Avoid keyword stuffing
- Maintain the original intent and meaning
- Use clear, engaging language
- Follow SEO best practices for the content type
- Provide a brief reasoning for your rewrite"""

_REWRITE_USER_TEMPLATE = """{instruction}

Original content: "{original_content}"
Website URL: {url}

Please provide:
1. The rewritten content
2. A brief explanation of the changes made

Format your response as JSON with "suggestion" and "reasoning" fields."""

METASUGGEST_SYSTEM_PROMPT = """You are an SEO expert. Generate 5 different SEO-optimized title and meta description suggestions based on the given article title and content. Each title should be under 60 characters and each meta description should be under 155 characters. Return your response as a JSON array with this structure:
[
  {
    "title": "SEO optimized title",
    "meta_description": "SEO optimized meta description",
    "focus_keyword": "main keyword"
  }
]"""


def make_rewrite_prompt(rewrite_type: RewriteType, original_content: str, url: str) -> str:
    return _REWRITE_USER_TEMPLATE.format(
        instruction=REWRITE_INSTRUCTIONS[rewrite_type],
        original_content=original_content,
        url=url,
    )


def make_metasuggest_prompt(title: str, content: str) -> str:
    return f"Article Title: {title}\n\nContent: {content[:MAX_METASUGGEST_CONTENT_CHARS]}..."


REWRITE_FALLBACK_REASONING = "Content rewritten for improved SEO and user engagement"


def parse_rewrite_response(text: str) -> dict:
    """
    Reads ``{"suggestion", "reasoning"}`` from a rewrite completion.

    Falls back to the first line of the text when the model ignored the
    requested JSON format.
    """
    try:
        parsed = parse_json_response(text)
    except ValueError:
        parsed = None
    if isinstance(parsed, dict) and parsed.get("suggestion"):
        return {
            "suggestion": str(parsed["suggestion"]),
            "reasoning": str(parsed.get("reasoning") or REWRITE_FALLBACK_REASONING),
        }
    return {
        "suggestion": text.split("\n")[0] or text,
        "reasoning": REWRITE_FALLBACK_REASONING,
    }


def fallback_meta_suggestions(title: str) -> list[dict]:
    short_title = title if len(title) <= 60 else title[:57] + "..."
    return [
        {
            "title": short_title,
            "meta_description": (
                f"Learn about {title.lower()}. "
                "Comprehensive guide with practical tips and insights."
            ),
            "focus_keyword": " ".join(title.split(" ")[:2]).lower(),
        }
    ]


def parse_metasuggest_response(text: str, title: str) -> list[dict]:
    try:
        suggestions = parse_json_response(text)
    except ValueError:
        return fallback_meta_suggestions(title)
    if isinstance(suggestions, dict):
        # JSON mode backends wrap arrays in an object.
        suggestions = suggestions.get("suggestions") or [suggestions]
    if not isinstance(suggestions, list):
        return fallback_meta_suggestions(title)
    return suggestions
