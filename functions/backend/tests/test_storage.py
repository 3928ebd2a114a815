import io
import unittest

from botocore.exceptions import ClientError
from botocore.response import StreamingBody
from botocore.stub import Stubber

from backend.db import InMemoryDbClient, OptimizationRecord
from backend.errors import NotFoundError
from backend.rollback import RollbackService
from backend.storage import S3StorageClient, backup_path

BUCKET = "site-backups"


def _s3_client():
    return S3StorageClient(
        bucket=BUCKET,
        region="us-east-1",
        endpoint="",
        access_key_id="test-key",
        secret_access_key="test-secret",
    )


class S3StorageClientTests(unittest.TestCase):
    def setUp(self):
        self.storage = _s3_client()
        self.stubber = Stubber(self.storage._client)
        self.stubber.activate()
        self.addCleanup(self.stubber.deactivate)

    def test_get_bytes_reads_body(self):
        data = b'{"website_url": "https://a.com"}'
        self.stubber.add_response(
            "get_object",
            {"Body": StreamingBody(io.BytesIO(data), len(data))},
            {"Bucket": BUCKET, "Key": "backups/u1/h1.json"},
        )

        self.assertEqual(self.storage.get_bytes("backups/u1/h1.json"), data)

    def test_missing_object_is_file_not_found(self):
        self.stubber.add_client_error(
            "get_object", service_error_code="NoSuchKey", http_status_code=404
        )

        with self.assertRaises(FileNotFoundError):
            self.storage.get_bytes("backups/u1/missing.json")

    def test_other_errors_propagate(self):
        self.stubber.add_client_error(
            "get_object", service_error_code="AccessDenied", http_status_code=403
        )

        with self.assertRaises(ClientError):
            self.storage.get_bytes("backups/u1/h1.json")

    def test_rollback_with_missing_s3_backup_is_not_found(self):
        db = InMemoryDbClient()
        record = OptimizationRecord(
            user_id="u1", website_url="https://a.com", backup_url="https://s3/backup"
        )
        db.save_optimization(record)
        self.stubber.add_client_error(
            "get_object",
            service_error_code="NoSuchKey",
            http_status_code=404,
            expected_params={"Bucket": BUCKET, "Key": backup_path("u1", record.history_id)},
        )

        with self.assertRaises(NotFoundError) as ctx:
            RollbackService(db, self.storage).rollback("u1", record.history_id)
        self.assertEqual(ctx.exception.message, "Backup file not found")


if __name__ == "__main__":
    unittest.main()
