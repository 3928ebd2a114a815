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

from shared.types import PlanTier, UsageType

SECONDS_PER_DAY = 86400
HOUR_SECONDS = 3600

# Scheduler policy. These apply to every scheduled scan.
AUTO_OPTIMIZE_SCORE_DROP = -5
ALERT_SCORE_DROP = 0

# Monthly quotas per subscription tier.
PLAN_LIMITS = {
    PlanTier.FREE: {
        UsageType.SCANS: 10,
        UsageType.OPTIMIZATIONS: 3,
        UsageType.AI_REWRITES: 2,
    },
    PlanTier.PRO: {
        UsageType.SCANS: 100,
        UsageType.OPTIMIZATIONS: 50,
        UsageType.AI_REWRITES: 25,
    },
    PlanTier.ENTERPRISE: {
        UsageType.SCANS: 500,
        UsageType.OPTIMIZATIONS: 200,
        UsageType.AI_REWRITES: 100,
    },
}

# plan_id -> (plan_name, monthly_limit, pdf_enabled, ai_enabled)
PLAN_CATALOG = {
    "free": ("Free Plan", 10, False, True),
    "pro": ("Pro Plan", 100, True, True),
    "enterprise": ("Enterprise Plan", 500, True, True),
}
DEFAULT_PLAN_ID = "free"

DEFAULT_RATE_LIMIT_PER_HOUR = 100
API_TOKEN_PREFIX = "sk_live_"

MAX_ORIGINAL_CONTENT_LENGTH = 5000
MAX_METASUGGEST_CONTENT_CHARS = 2000
MAX_RESULTS_LIMIT = 100
