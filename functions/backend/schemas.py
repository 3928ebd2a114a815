"""
Pydantic schemas for the SEO automation API.

Field names follow the wire format of the dashboard, which mixes camelCase
(``wpCredentials``) and snake_case (``original_content``) keys.
"""

from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from shared.constants import DEFAULT_RATE_LIMIT_PER_HOUR, MAX_ORIGINAL_CONTENT_LENGTH
from shared.types import (
    MemberRole,
    OptimizationFix,
    RewriteType,
    UsageType,
    WordPressCredentials,
)


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ScanRequest(BaseModel):
    url: str = Field(..., min_length=1)


class MetaSuggestRequest(BaseModel):
    # Checked in the handler so the error text matches the public API.
    title: Optional[str] = None
    content: Optional[str] = None


class RewriteRequest(BaseModel):
    type: RewriteType
    url: str = Field(..., min_length=1)
    original_content: str = Field(..., min_length=1, max_length=MAX_ORIGINAL_CONTENT_LENGTH)


class RewriteResponse(BaseModel):
    suggestion: str
    reasoning: str


class WpCredentialsPayload(CamelModel):
    username: str = Field(..., min_length=1)
    application_password: str = Field(..., min_length=1, alias="applicationPassword")

    def to_credentials(self) -> WordPressCredentials:
        return WordPressCredentials(self.username, self.application_password)


class FixPayload(BaseModel):
    id: str
    type: str
    title: str = ""
    description: str = ""
    recommendation: str = ""

    def to_fix(self) -> OptimizationFix:
        return OptimizationFix(
            id=self.id,
            type=self.type,
            title=self.title,
            description=self.description,
            recommendation=self.recommendation,
        )


class SchemaMarkupPayload(CamelModel):
    type: str = "WebPage"
    json_ld: dict = Field(default_factory=dict, alias="jsonLd")


class OptimizeRequest(CamelModel):
    url: str = Field(..., min_length=1)
    fixes: Optional[List[FixPayload]] = None
    wp_credentials: Optional[WpCredentialsPayload] = Field(default=None, alias="wpCredentials")
    schema_markup: Optional[SchemaMarkupPayload] = Field(default=None, alias="schemaMarkup")


class RollbackRequest(CamelModel):
    action: str
    url: Optional[str] = None
    backup_id: Optional[str] = Field(default=None, alias="backupId")
    wp_credentials: Optional[WpCredentialsPayload] = Field(default=None, alias="wpCredentials")


class ScheduleToWordPressRequest(CamelModel):
    wordpress_url: str = Field(..., min_length=1, alias="wordpressUrl")
    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    content: str = Field(..., min_length=1)
    slug: Optional[str] = None
    publish_date: Optional[str] = Field(default=None, alias="publishDate")


class SendScanAlertRequest(CamelModel):
    user_id: str = Field(..., alias="userId")
    website_url: str = Field(..., alias="websiteUrl")
    previous_score: float = Field(..., alias="previousScore")
    current_score: float = Field(..., alias="currentScore")
    score_change: float = Field(..., alias="scoreChange")
    new_issues: List[dict] = Field(default_factory=list, alias="newIssues")


class IncrementUsageRequest(BaseModel):
    type: UsageType


class ScheduledScanCreate(CamelModel):
    website_url: str = Field(..., min_length=1, alias="websiteUrl")
    frequency_days: int = Field(..., gt=0, alias="frequencyDays")
    email_alerts: bool = Field(default=True, alias="emailAlerts")
    auto_optimize: bool = Field(default=False, alias="autoOptimize")


class ScheduledScanUpdate(CamelModel):
    frequency_days: Optional[int] = Field(default=None, gt=0, alias="frequencyDays")
    email_alerts: Optional[bool] = Field(default=None, alias="emailAlerts")
    auto_optimize: Optional[bool] = Field(default=None, alias="autoOptimize")
    is_active: Optional[bool] = Field(default=None, alias="isActive")


class ApiTokenCreate(CamelModel):
    token_name: str = Field(..., min_length=1, max_length=100, alias="tokenName")
    rate_limit_per_hour: int = Field(
        default=DEFAULT_RATE_LIMIT_PER_HOUR, gt=0, alias="rateLimitPerHour"
    )


class OrganizationCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None


class InvitationCreate(BaseModel):
    email: str = Field(..., min_length=3)
    role: MemberRole = MemberRole.VIEWER


class MemberUpdate(BaseModel):
    role: MemberRole
