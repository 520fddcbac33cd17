"""S3-compatible storage for migration backups"""
import os
import boto3
from botocore.exceptions import ClientError
from typing import Optional, List
import logging

logger = logging.getLogger(__name__)

BACKUP_PREFIX = "backups/"


class S3Service:
    def __init__(self):
        self.endpoint_url = os.getenv("S3_ENDPOINT_URL")
        self.region = os.getenv("S3_REGION")
        self.access_key = os.getenv("S3_ACCESS_KEY")
        self.secret_key = os.getenv("S3_SECRET_KEY")
        self.bucket_name = os.getenv("S3_BUCKET_NAME")

        if not all([self.access_key, self.secret_key, self.bucket_name]):
            raise ValueError("Missing S3 configuration. Please set S3_ACCESS_KEY, S3_SECRET_KEY, and S3_BUCKET_NAME")

        self.client = boto3.client(
            's3',
            endpoint_url=self.endpoint_url,
            aws_access_key_id=self.access_key,
            aws_secret_access_key=self.secret_key,
            region_name=self.region
        )

        logger.info(f"✅ S3 Service initialized with bucket: {self.bucket_name}")

    def upload_backup(self, path: str, key: Optional[str] = None) -> Optional[str]:
        """Upload a local backup file; returns its object key or None on failure"""
        key = key or BACKUP_PREFIX + os.path.basename(path)
        try:
            logger.info(f"📤 Uploading backup: {key}")
            with open(path, "rb") as f:
                self.client.put_object(
                    Bucket=self.bucket_name,
                    Key=key,
                    Body=f.read(),
                    ContentType="application/x-ndjson",
                )
            logger.info(f"✅ Backup uploaded to s3://{self.bucket_name}/{key}")
            return key

        except ClientError as e:
            logger.error(f"❌ S3 Error: {e}")
            logger.error(f"   Error Code: {e.response.get('Error', {}).get('Code', 'Unknown')}")
            return None

    def download_backup(self, key: str, path: str) -> bool:
        try:
            self.client.download_file(self.bucket_name, key, path)
            logger.info(f"📥 Downloaded s3://{self.bucket_name}/{key} to {path}")
            return True
        except ClientError as e:
            logger.error(f"❌ Failed to download {key}: {e}")
            return False

    def list_backups(self, prefix: str = BACKUP_PREFIX) -> List[str]:
        """Object keys under the backup prefix, newest name last"""
        keys = []
        paginator = self.client.get_paginator('list_objects_v2')
        for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
            keys.extend(obj['Key'] for obj in page.get('Contents', []))
        return sorted(keys)


# Global instance
_s3_service: Optional[S3Service] = None


def s3_configured() -> bool:
    return bool(os.getenv("S3_BUCKET_NAME"))


def get_s3_service() -> S3Service:
    """Get or create S3 service instance"""
    global _s3_service
    if _s3_service is None:
        _s3_service = S3Service()
    return _s3_service
