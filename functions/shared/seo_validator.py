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

"""Scores the on-page SEO signals of a crawled page (0-100 per component)."""

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

CTA_PATTERN = re.compile(
    r"\b(buy|order|download|view|contact|sign up|register|learn more|get started|"
    r"mua|đặt|tải|xem|liên hệ|đăng ký|tìm hiểu)\b",
    re.IGNORECASE,
)


@dataclass
class ValidationResult:
    status: str  # valid | warning | error
    message: str
    score: float

    def as_dict(self) -> dict:
        return {"status": self.status, "message": self.message, "score": self.score}


def _status_for(score: float) -> str:
    if score >= 80:
        return "valid"
    if score >= 60:
        return "warning"
    return "error"


def validate_meta_title(title: str, keyword: Optional[str] = None) -> ValidationResult:
    length = len(title)
    if length == 0:
        return ValidationResult("error", "Meta title is empty", 0)
    if length < 30:
        return ValidationResult("warning", f"{length} characters - too short", 50)
    if length > 60:
        return ValidationResult("warning", f"{length} characters - too long", 70)
    if keyword and keyword.lower() not in title.lower():
        return ValidationResult("warning", f"{length} characters - missing focus keyword", 75)
    return ValidationResult("valid", f"{length} characters - well optimized", 95)


def validate_meta_description(
    description: str, keyword: Optional[str] = None
) -> ValidationResult:
    length = len(description)
    if length == 0:
        return ValidationResult("error", "Meta description is empty", 0)
    if length < 120:
        return ValidationResult("warning", f"{length} characters - too short", 60)
    if length > 160:
        return ValidationResult("warning", f"{length} characters - too long", 70)

    score = 80
    problems = []
    if not CTA_PATTERN.search(description):
        score -= 10
        problems.append("no call-to-action")
    if keyword and keyword.lower() not in description.lower():
        score -= 15
        problems.append("missing focus keyword")

    if problems:
        message = f"{length} characters - {', '.join(problems)}"
    else:
        message = f"{length} characters - well optimized"
    return ValidationResult("valid" if score >= 80 else "warning", message, score)


def find_duplicate_headings(headings: List[Tuple[int, str]]) -> List[str]:
    seen = set()
    duplicates = []
    for _, text in headings:
        if text in seen and text not in duplicates:
            duplicates.append(text)
        seen.add(text)
    return duplicates


def has_proper_heading_structure(headings: List[Tuple[int, str]]) -> bool:
    """False when the outline skips a level going down (e.g. H1 -> H3)."""
    for (prev, _), (curr, _) in zip(headings, headings[1:]):
        if curr > prev + 1:
            return False
    return True


def validate_headings(headings: List[Tuple[int, str]]) -> ValidationResult:
    """
    Args:
        headings: (level, text) pairs in document order.
    """
    if not headings:
        return ValidationResult("error", "No headings found", 0)

    h1_count = sum(1 for level, _ in headings if level == 1)
    duplicates = find_duplicate_headings(headings)

    score = 70
    problems = []
    if h1_count == 0:
        score -= 30
        problems.append("missing H1")
    elif h1_count > 1:
        score -= 20
        problems.append(f"{h1_count} H1 tags")
    if duplicates:
        score -= 15
        problems.append(f"{len(duplicates)} duplicate headings")
    if not has_proper_heading_structure(headings):
        score -= 10
        problems.append("skipped heading levels")

    if problems:
        message = f"{len(headings)} headings - {', '.join(problems)}"
    else:
        message = f"{len(headings)} headings - good structure"
    return ValidationResult(_status_for(score), message, score)


def validate_alt_text(
    total_images: int, missing_alt: int, keyword_matches: Optional[int] = None
) -> ValidationResult:
    if total_images == 0:
        return ValidationResult("valid", "No images", 100)

    score = (total_images - missing_alt) / total_images * 100
    problems = []
    if missing_alt > 0:
        problems.append(f"{missing_alt} images missing alt text")
    # Only penalize keyword coverage when a focus keyword was supplied.
    if keyword_matches is not None and keyword_matches / total_images * 100 < 30:
        score -= 20
        problems.append("few keywords in alt text")

    if problems:
        message = f"{total_images} images - {', '.join(problems)}"
    else:
        message = f"{total_images} images - alt text complete"
    return ValidationResult(_status_for(score), message, score)


def overall_score(results: List[ValidationResult]) -> int:
    if not results:
        return 0
    return round(sum(r.score for r in results) / len(results))
