"""
Storage abstraction for site backups on S3-compatible storage and in-memory testing.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol
import json

import boto3
from botocore.config import Config
from botocore.exceptions import ClientError


class StorageClient(Protocol):
    """Defines the operations the backup flow needs from object storage."""

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        ...

    def upload_json(self, path: str, payload: dict) -> None:
        ...

    def get_bytes(self, path: str) -> bytes:
        """Raises FileNotFoundError when nothing is stored at ``path``."""
        ...


def backup_path(user_id: str, history_id: str) -> str:
    return f"backups/{user_id}/{history_id}.json"


@dataclass
class InMemoryStorageClient:
    """Test double for storage interactions."""

    base_url: str = "https://example.test/storage"
    stored_objects: dict = None

    def __post_init__(self):
        if self.stored_objects is None:
            self.stored_objects = {}

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        return f"{self.base_url}/{path}?op=get&expires={expires_in}"

    def upload_json(self, path: str, payload: dict) -> None:
        # Round-trip through JSON to mimic a real upload
        self.stored_objects[path] = json.loads(json.dumps(payload, default=str))

    def get_bytes(self, path: str) -> bytes:
        stored = self.stored_objects.get(path)
        if stored is None:
            raise FileNotFoundError(path)
        if isinstance(stored, bytes):
            return stored
        return json.dumps(stored, default=str).encode("utf-8")


@dataclass
class S3StorageClient:
    """
    S3-compatible storage client for backup snapshots.
    """

    bucket: str
    region: str
    endpoint: str
    access_key_id: str
    secret_access_key: str

    def __post_init__(self):
        config = Config(
            s3={"addressing_style": "virtual"},
            signature_version="s3v4",
        )
        self._client = boto3.client(
            "s3",
            endpoint_url=self.endpoint or None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=config,
        )

    def presign_get(self, path: str, expires_in: int = 3600) -> str:
        return self._client.generate_presigned_url(
            ClientMethod="get_object",
            Params={"Bucket": self.bucket, "Key": path},
            ExpiresIn=expires_in,
        )

    def upload_json(self, path: str, payload: dict) -> None:
        body = json.dumps(payload, default=str).encode("utf-8")
        self._client.put_object(
            Bucket=self.bucket,
            Key=path,
            Body=body,
            ContentType="application/json",
        )

    def get_bytes(self, path: str) -> bytes:
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=path)
        except ClientError as exc:
            if exc.response.get("Error", {}).get("Code") in ("NoSuchKey", "404"):
                raise FileNotFoundError(path) from exc
            raise
        return response["Body"].read()
