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

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional


class OptimizationStatus(str, Enum):
    COMPLETED = "completed"
    ROLLED_BACK = "rolled_back"
    ROLLBACK_FAILED = "rollback_failed"


class UsageType(str, Enum):
    """Counters tracked per user per billing period."""

    SCANS = "scans"
    OPTIMIZATIONS = "optimizations"
    AI_REWRITES = "ai_rewrites"

    @property
    def column(self) -> str:
        return f"{self.value}_used"


class PlanTier(str, Enum):
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class UserRole(str, Enum):
    USER = "user"
    EDITOR = "editor"
    ADMIN = "admin"


class MemberRole(str, Enum):
    ADMIN = "admin"
    EDITOR = "editor"
    VIEWER = "viewer"


class MemberStatus(str, Enum):
    INVITED = "invited"
    ACTIVE = "active"
    INACTIVE = "inactive"


class RewriteType(str, Enum):
    META_TITLE = "meta_title"
    META_DESC = "meta_desc"
    H1 = "h1"
    ALT_TEXT = "alt_text"
    PARAGRAPH = "paragraph"


class PostStatus(str, Enum):
    DRAFT = "draft"
    PUBLISH = "publish"
    FUTURE = "future"


@dataclass
class SeoIssue:
    """A single problem found by the site analyzer."""

    id: str
    type: str
    title: str
    description: str
    severity: str = "medium"
    recommendation: str = ""

    @property
    def key(self) -> str:
        return self.id


@dataclass
class UserPlan:
    """Current plan of a user, as returned by get_user_current_plan."""

    plan_id: str
    plan_name: str
    monthly_limit: int
    pdf_enabled: bool
    ai_enabled: bool
    used_count: int = 0

    @property
    def remaining_count(self) -> int:
        return max(self.monthly_limit - self.used_count, 0)

    def as_dict(self) -> dict:
        return {
            "plan_id": self.plan_id,
            "plan_name": self.plan_name,
            "monthly_limit": self.monthly_limit,
            "pdf_enabled": self.pdf_enabled,
            "ai_enabled": self.ai_enabled,
            "used_count": self.used_count,
            "remaining_count": self.remaining_count,
        }


@dataclass
class WordPressCredentials:
    username: str
    application_password: str


@dataclass
class FixResult:
    id: str
    status: str  # success | failed | skipped
    message: str


@dataclass
class OptimizationFix:
    id: str
    type: str
    title: str = ""
    description: str = ""
    recommendation: str = ""


@dataclass
class AlertMessage:
    """Rendered alert email waiting in the alert queue."""

    user_id: str
    to_email: str
    subject: str
    html: str
    website_url: str
    score_change: float
    new_issue_ids: List[str] = field(default_factory=list)
    message_id: Optional[str] = None
