"""
Upload storage: takes the bytes of an uploaded file and returns the URL the
stored copy is served from. Local disk by default, S3-compatible buckets in
production, and an in-memory double for tests.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Protocol

import boto3
from botocore.config import Config


def _object_name(filename: str, folder: str) -> str:
    suffix = PurePosixPath(filename or "").suffix.lower()
    name = f"{uuid.uuid4().hex}{suffix}"
    return f"{folder.strip('/')}/{name}" if folder else name


class UploadClient(Protocol):
    """Stores a blob and returns its URL."""

    def save(self, data: bytes, filename: str, folder: str = "") -> str:
        ...


@dataclass
class InMemoryUploadClient:
    """Test double for uploads."""

    base_url: str = "https://example.test/uploads"
    stored_objects: dict = field(default_factory=dict)

    def save(self, data: bytes, filename: str, folder: str = "") -> str:
        key = _object_name(filename, folder)
        self.stored_objects[key] = data
        return f"{self.base_url}/{key}"


@dataclass
class LocalUploadClient:
    """Writes uploads below ``root``; served by the app under ``base_url``."""

    root: str = "uploads"
    base_url: str = "/uploads"

    def save(self, data: bytes, filename: str, folder: str = "") -> str:
        key = _object_name(filename, folder)
        target = Path(self.root) / key
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(data)
        return f"{self.base_url.rstrip('/')}/{key}"


@dataclass
class S3UploadClient:
    """
    S3-compatible upload target.
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
            aws_access_key_id=self.access_key_id or None,
            aws_secret_access_key=self.secret_access_key or None,
            config=config,
        )

    def save(self, data: bytes, filename: str, folder: str = "") -> str:
        key = _object_name(filename, folder)
        self._client.put_object(Bucket=self.bucket, Key=key, Body=data)
        if self.endpoint:
            return f"{self.endpoint.rstrip('/')}/{self.bucket}/{key}"
        return f"https://{self.bucket}.s3.{self.region}.amazonaws.com/{key}"
