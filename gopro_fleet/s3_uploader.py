"""
S3 archive uploads

Objects are keyed {prefix}/{camera ip}/{YYYY-MM-DD}/{file name} so cameras
never overwrite each other's files.
"""
import asyncio
import logging
import os
from dataclasses import dataclass
from datetime import date, datetime, timezone
from pathlib import Path
from typing import List, Optional, Union

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

from gopro_fleet.errors import ConfigInvalid, UploadError

logger = logging.getLogger(__name__)

CONTENT_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".gif": "image/gif",
    ".mp4": "video/mp4",
    ".mov": "video/quicktime",
    ".avi": "video/x-msvideo",
    ".lrv": "video/mp4",  # GoPro low-res video
    ".thm": "image/jpeg",  # GoPro thumbnail
    ".gpr": "image/x-gopro-gpr",  # GoPro RAW
}
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def get_content_type(file_name: str) -> str:
    return CONTENT_TYPES.get(Path(file_name).suffix.lower(), DEFAULT_CONTENT_TYPE)


@dataclass(frozen=True)
class S3Config:
    region: str
    bucket: str
    prefix: str = ""
    endpoint_url: Optional[str] = None
    max_attempts: int = 3  # boto retries on transient errors

    @classmethod
    def from_env(cls) -> "S3Config":
        region = os.environ.get("AWS_REGION")
        bucket = os.environ.get("AWS_S3_BUCKET")
        if not region or not bucket:
            raise ConfigInvalid(
                "Missing AWS configuration. Please set AWS_REGION and AWS_S3_BUCKET in .env file"
            )
        return cls(
            region=region,
            bucket=bucket,
            prefix=os.environ.get("AWS_S3_PREFIX", ""),
            endpoint_url=os.environ.get("AWS_S3_ENDPOINT_URL") or None,
        )


class S3Uploader:
    def __init__(self, config: S3Config, s3_client=None):
        self.config = config
        self.bucket = config.bucket
        self.prefix = config.prefix.strip("/")
        if s3_client is None:
            boto_cfg = BotoConfig(
                region_name=config.region,
                retries={"max_attempts": config.max_attempts, "mode": "standard"},
            )
            s3_client = boto3.client("s3", endpoint_url=config.endpoint_url, config=boto_cfg)
        self.s3 = s3_client

    def build_key(self, camera_ip: str, file_name: str, upload_date: Optional[date] = None) -> str:
        day = (upload_date or datetime.now(timezone.utc).date()).isoformat()
        parts = [self.prefix, camera_ip, day, file_name]
        return "/".join(p for p in parts if p)

    async def upload_file(self, local_path: Union[str, Path], camera_ip: str, serial: Optional[str] = None,
                          upload_date: Optional[date] = None) -> str:
        """Upload one file and return its s3:// URL. Raises UploadError."""
        local_path = Path(local_path)
        key = self.build_key(camera_ip, local_path.name, upload_date)
        logger.info(f"  Uploading {local_path.name} to s3://{self.bucket}/{key}")

        def _put():
            self.s3.upload_file(
                str(local_path), self.bucket, key,
                ExtraArgs={"ContentType": get_content_type(local_path.name)},
            )

        try:
            await asyncio.get_running_loop().run_in_executor(None, _put)
        except (BotoCoreError, ClientError, OSError) as e:
            raise UploadError(serial or camera_ip, f"Failed to upload {local_path.name}: {e}") from e

        url = f"s3://{self.bucket}/{key}"
        logger.info(f"  ✓ Uploaded to {url}")
        return url

    async def upload_directory(self, local_dir: Union[str, Path], camera_ip: str,
                               serial: Optional[str] = None) -> List[str]:
        """Upload every regular file in local_dir, carrying on past failures.

        Returns the URLs that made it.
        """
        local_dir = Path(local_dir)
        if not local_dir.is_dir():
            raise UploadError(serial or camera_ip, f"Directory not found: {local_dir}")

        urls = []
        for path in sorted(local_dir.iterdir()):
            if not path.is_file():
                continue
            try:
                urls.append(await self.upload_file(path, camera_ip, serial=serial))
            except UploadError as e:
                logger.error(f"  ✗ {e}")
        return urls
