"""
Backup listing and rollback of optimization runs.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import List, Optional

from backend.db import DbClient, OptimizationRecord
from backend.errors import NotFoundError, UpstreamError
from backend.optimizer import WordPressClientFactory, default_wp_client_factory, site_origin
from backend.storage import StorageClient, backup_path
from shared.types import OptimizationStatus, WordPressCredentials

logger = logging.getLogger(__name__)

MANUAL_ROLLBACK_STEPS = [
    "Download the backup file from the provided URL",
    "Extract the backup to your local system",
    "Upload files to your server via FTP/SFTP",
    "Restore database from the SQL dump",
    "Update file permissions and clear cache",
]


@dataclass
class RollbackResult:
    success: bool
    message: str
    details: List[str] = field(default_factory=list)

    def as_dict(self) -> dict:
        return {"success": self.success, "message": self.message, "details": self.details}


def backup_summary(record: OptimizationRecord) -> dict:
    return {
        "id": record.history_id,
        "url": record.website_url,
        "backupUrl": record.backup_url,
        "reportUrl": record.report_url,
        "createdAt": record.created_at,
        "seoScoreBefore": record.seo_score_before,
        "seoScoreAfter": record.seo_score_after,
        "fixesApplied": record.fixes_applied,
        "status": record.status.value,
    }


class RollbackService:
    def __init__(
        self,
        db: DbClient,
        storage: StorageClient,
        wp_client_factory: WordPressClientFactory = default_wp_client_factory,
    ):
        self.db = db
        self.storage = storage
        self.wp_client_factory = wp_client_factory

    def list_backups(self, user_id: str, url: Optional[str] = None) -> List[dict]:
        records = self.db.list_optimizations(user_id, website_url=url, with_backup_only=True)
        return [backup_summary(r) for r in records]

    def _load_backup(self, record: OptimizationRecord) -> dict:
        try:
            raw = self.storage.get_bytes(backup_path(record.user_id, record.history_id))
        except FileNotFoundError as exc:
            raise NotFoundError("Backup file not found") from exc
        return json.loads(raw)

    def _restore_wordpress(
        self, url: str, snapshot: dict, credentials: WordPressCredentials
    ) -> List[str]:
        client = self.wp_client_factory(site_origin(url), credentials)
        details = []
        front_page = snapshot.get("front_page")
        if front_page:
            client.update_page(
                front_page["id"],
                title=front_page["title"],
                excerpt=front_page["excerpt"],
                content=front_page["content"],
            )
            details.append("Front page restored")
        for media in snapshot.get("media", []):
            client.update_media(media["id"], alt_text=media["alt_text"])
        details.append(f"Alt text restored for {len(snapshot.get('media', []))} images")
        return details

    def rollback(
        self,
        user_id: str,
        backup_id: str,
        wp_credentials: Optional[WordPressCredentials] = None,
    ) -> RollbackResult:
        record = self.db.get_optimization(backup_id)
        if not record or record.user_id != user_id or not record.backup_url:
            raise NotFoundError("Backup not found")

        logger.info("Starting rollback for %s using backup %s", record.website_url, backup_id)
        backup = self._load_backup(record)
        snapshot = backup.get("wordpress")

        if wp_credentials and snapshot:
            try:
                details = self._restore_wordpress(record.website_url, snapshot, wp_credentials)
                result = RollbackResult(
                    True,
                    "Rollback completed successfully",
                    ["Backup file downloaded and verified", *details],
                )
            except UpstreamError as exc:
                logger.error("WordPress rollback failed for %s: %s", record.website_url, exc.message)
                result = RollbackResult(False, f"Rollback failed: {exc.message}")
        else:
            result = RollbackResult(True, "Rollback instructions prepared", list(MANUAL_ROLLBACK_STEPS))

        status = (
            OptimizationStatus.ROLLED_BACK if result.success else OptimizationStatus.ROLLBACK_FAILED
        )
        if not self.db.update_optimization_status(backup_id, user_id, status):
            logger.error("Failed to update rollback status for %s", backup_id)
        return result
