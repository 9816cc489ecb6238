"""Evidence store gateway over MinIO object storage or a local upload directory."""

from __future__ import annotations

import io
import os
import re
from datetime import timedelta
from typing import Optional, Protocol
from uuid import uuid4

import urllib3
from minio import Minio
from minio.error import MinioException

from .errors import EvidenceUploadFailed

# purpose: accept evidence blobs under a run namespace and hand back short-lived read handles
# inputs: namespace path fragment, logical filename, bytes
# outputs: opaque storage pointers and signed retrieval URLs
# status: active

EVIDENCE_TIMEOUT_SECONDS = float(os.getenv("EVIDENCE_TIMEOUT_SECONDS", "15"))
EVIDENCE_URL_TTL_SECONDS = int(os.getenv("EVIDENCE_URL_TTL_SECONDS", "120"))

_GATEWAY: Optional["EvidenceGateway"] = None


class EvidenceGateway(Protocol):
    def put(
        self,
        namespace: str,
        name: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> str: ...

    def signed_url(self, pointer: str, ttl_seconds: int = EVIDENCE_URL_TTL_SECONDS) -> str: ...


def _build_object_name(namespace: str | None, filename: str) -> str:
    """Construct a normalized storage object key within an optional namespace."""

    safe_name = re.sub(r"[^A-Za-z0-9_.-]", "_", filename) or "evidence.bin"
    if not namespace:
        return f"{uuid4()}_{safe_name}"
    clean_namespace = re.sub(r"[^A-Za-z0-9/_.-]", "_", namespace).strip("/")
    return f"{clean_namespace}/{uuid4()}_{safe_name}"


class LocalEvidenceGateway:
    """Write evidence into ``UPLOAD_DIR``; pointers are filesystem paths."""

    def __init__(self, upload_dir: str | None = None):
        self.upload_dir = upload_dir or os.getenv("UPLOAD_DIR", "uploaded_files")

    def put(
        self,
        namespace: str,
        name: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        object_name = _build_object_name(namespace, name)
        storage_path = os.path.join(self.upload_dir, *object_name.split("/"))
        try:
            os.makedirs(os.path.dirname(storage_path), exist_ok=True)
            with open(storage_path, "wb") as handle:
                handle.write(data)
        except OSError as exc:
            raise EvidenceUploadFailed(f"Local evidence write failed: {exc}") from exc
        return storage_path

    def signed_url(self, pointer: str, ttl_seconds: int = EVIDENCE_URL_TTL_SECONDS) -> str:
        # local files have no signing authority; the path is the handle
        return pointer


class MinioEvidenceGateway:
    """Store evidence in a MinIO/S3 bucket with bounded request timeouts."""

    def __init__(self, client: Minio, bucket: str):
        self.client = client
        self.bucket = bucket

    @classmethod
    def from_env(cls) -> Optional["MinioEvidenceGateway"]:
        endpoint = os.getenv("MINIO_ENDPOINT", "").strip()
        access_key = os.getenv("MINIO_ACCESS_KEY")
        secret_key = os.getenv("MINIO_SECRET_KEY")
        bucket = os.getenv("MINIO_BUCKET", "evidence")
        if not endpoint or not access_key or not secret_key:
            return None
        secure = endpoint.startswith("https")
        host = re.sub(r"^https?://", "", endpoint)
        http_client = urllib3.PoolManager(
            timeout=urllib3.Timeout(connect=EVIDENCE_TIMEOUT_SECONDS, read=EVIDENCE_TIMEOUT_SECONDS),
            retries=urllib3.Retry(total=2, backoff_factor=0.2),
        )
        client = Minio(
            host,
            access_key=access_key,
            secret_key=secret_key,
            secure=secure,
            http_client=http_client,
        )
        return cls(client, bucket)

    def _ensure_bucket(self) -> None:
        if not self.client.bucket_exists(self.bucket):
            self.client.make_bucket(self.bucket)

    def put(
        self,
        namespace: str,
        name: str,
        data: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        object_name = _build_object_name(namespace, name)
        try:
            self._ensure_bucket()
            self.client.put_object(
                self.bucket,
                object_name,
                io.BytesIO(data),
                length=len(data),
                content_type=content_type,
            )
        except (MinioException, urllib3.exceptions.HTTPError, OSError) as exc:
            raise EvidenceUploadFailed(f"Evidence upload failed: {exc}") from exc
        return f"s3://{self.bucket}/{object_name}"

    def signed_url(self, pointer: str, ttl_seconds: int = EVIDENCE_URL_TTL_SECONDS) -> str:
        if not pointer.startswith("s3://"):
            raise FileNotFoundError("Evidence pointer is not an s3 path")
        _, _, bucket, object_name = pointer.split("/", 3)
        if not object_name:
            raise FileNotFoundError("Invalid s3 storage path for presigned URL")
        return self.client.presigned_get_object(bucket, object_name, expires=timedelta(seconds=ttl_seconds))


def get_evidence_gateway() -> EvidenceGateway:
    """Return the configured gateway, preferring object storage when configured."""

    global _GATEWAY
    if _GATEWAY is None:
        _GATEWAY = MinioEvidenceGateway.from_env() or LocalEvidenceGateway()
    return _GATEWAY
