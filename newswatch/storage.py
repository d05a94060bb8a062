"""Where finished jobs leave their classifier output and aggregated intervals."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Protocol

import boto3
from botocore.client import BaseClient

from .settings import Settings


class ResultArchive(Protocol):
    def put_json(self, key: str, payload: Any) -> str:
        """Store ``payload`` under ``key`` and return where it landed."""


def _encode(payload: Any) -> bytes:
    return json.dumps(payload, ensure_ascii=False, default=str).encode("utf-8")


def raw_results_key(job_id: str) -> str:
    return f"results/{job_id}.json"


def processed_results_key(job_id: str) -> str:
    return f"results/{job_id}_processed.json"


class LocalArchive:
    def __init__(self, root: Path | str) -> None:
        self.root = Path(root).resolve()
        self.root.mkdir(parents=True, exist_ok=True)

    def put_json(self, key: str, payload: Any) -> str:
        destination = self.root / key.lstrip("/")
        destination.parent.mkdir(parents=True, exist_ok=True)
        partial = destination.with_name(destination.name + ".part")
        partial.write_bytes(_encode(payload))
        partial.replace(destination)
        return str(destination)


class S3Archive:
    """Results kept as JSON objects under ``s3://<bucket>/<prefix>/``."""

    def __init__(self, bucket: str, prefix: str = "", client: BaseClient | None = None) -> None:
        if not bucket:
            raise ValueError("an S3 bucket is required for the results archive")
        self.bucket = bucket
        self.prefix = prefix.strip("/")
        self._client = client or boto3.client("s3")

    @classmethod
    def from_settings(cls, settings: Settings) -> "S3Archive":
        client = boto3.client(
            "s3",
            region_name=settings.aws_region,
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
        )
        return cls(settings.s3_bucket or "", settings.s3_prefix, client)

    def _key(self, key: str) -> str:
        key = key.lstrip("/")
        return f"{self.prefix}/{key}" if self.prefix else key

    def put_json(self, key: str, payload: Any) -> str:
        object_key = self._key(key)
        self._client.put_object(
            Bucket=self.bucket,
            Key=object_key,
            Body=_encode(payload),
            ContentType="application/json",
        )
        return f"s3://{self.bucket}/{object_key}"


def build_archive(settings: Settings) -> ResultArchive:
    if settings.storage_backend == "s3":
        return S3Archive.from_settings(settings)
    return LocalArchive(settings.results_dir)
