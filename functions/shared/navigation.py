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

"""Dashboard navigation entries and the roles allowed to see them."""

from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet, List

from shared.types import UserRole

_ALL_ROLES = frozenset(UserRole)
_STAFF = frozenset({UserRole.EDITOR, UserRole.ADMIN})
_ADMIN_ONLY = frozenset({UserRole.ADMIN})


@dataclass(frozen=True)
class NavSpec:
    label: str
    path: str
    icon: str
    roles: FrozenSet[UserRole]


class NavEntry(Enum):
    DASHBOARD = NavSpec("Dashboard", "/dashboard", "layout-dashboard", _ALL_ROLES)
    SCAN_HISTORY = NavSpec("Scan History", "/dashboard/scans", "history", _ALL_ROLES)
    AUTOMATED_RESCANS = NavSpec(
        "Automated Rescans", "/dashboard/rescans", "calendar-clock", _ALL_ROLES
    )
    BACKUPS = NavSpec("Backups & Rollback", "/dashboard/backups", "archive", _ALL_ROLES)
    AI_CONTENT = NavSpec("AI Content Studio", "/dashboard/content", "sparkles", _STAFF)
    WORDPRESS = NavSpec("WordPress Sites", "/dashboard/wordpress", "globe", _STAFF)
    API_TOKENS = NavSpec("API Access", "/dashboard/api", "key", _ALL_ROLES)
    ACCOUNT = NavSpec("Account", "/account", "user", _ALL_ROLES)
    ADMIN = NavSpec("Admin Panel", "/admin", "shield", _ADMIN_ONLY)
    SYSTEM_MONITORING = NavSpec(
        "System Monitoring", "/admin/monitoring", "activity", _ADMIN_ONLY
    )

    def allows(self, role: UserRole) -> bool:
        return role in self.value.roles

    def as_dict(self) -> dict:
        spec = self.value
        return {"id": self.name.lower(), "label": spec.label, "path": spec.path, "icon": spec.icon}


def entries_for_role(role: UserRole) -> List[NavEntry]:
    return [entry for entry in NavEntry if entry.allows(role)]
