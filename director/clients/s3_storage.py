from __future__ import annotations

from typing import Dict, List, Protocol

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError


class StorageError(Exception):
    pass


class StorageClient(Protocol):
    def upload_bytes(self, path: str, content: bytes, content_type: str = ...) -> str: ...

    def download_bytes(self, path: str) -> bytes: ...

    def delete(self, path: str) -> None: ...

    def public_url(self, path: str) -> str: ...

    def key_from_url(self, url: str) -> str | None: ...


class S3StorageClient:
    """S3-compatible object store; keeps objects in memory when unconfigured."""

    def __init__(
        self,
        bucket: str,
        access_key: str | None,
        secret_key: str | None,
        endpoint_url: str | None = None,
        region_name: str | None = None,
        public_url: str | None = None,
        addressing_style: str | None = None,
    ) -> None:
        self.bucket = (bucket or "").strip()
        self.access_key = (access_key or "").strip()
        self.secret_key = (secret_key or "").strip()
        self.endpoint_url = (endpoint_url or "").rstrip("/") or None
        self.region_name = (region_name or "").strip() or None
        self.public_url_base = (public_url or "").rstrip("/")
        self._memory: Dict[str, bytes] = {}
        self._client = None
        if self.is_configured():
            session = boto3.session.Session(
                aws_access_key_id=self.access_key,
                aws_secret_access_key=self.secret_key,
                region_name=self.region_name,
            )
            config = BotoConfig(
                s3={"addressing_style": (addressing_style or "virtual").lower()}
            )
            self._client = session.client("s3", endpoint_url=self.endpoint_url, config=config)

    def is_configured(self) -> bool:
        return bool(self.bucket and self.access_key and self.secret_key)

    def upload_bytes(
        self,
        path: str,
        content: bytes,
        content_type: str = "application/octet-stream",
    ) -> str:
        key = self._normalize_path(path)
        if not self.is_configured() or self._client is None:
            self._memory[key] = content
            return self.public_url(key)
        try:
            self._client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=content,
                ContentType=content_type,
            )
        except (BotoCoreError, ClientError) as exc:  # pragma: no cover - AWS error surface
            raise StorageError(f"S3 upload failed: {exc}") from exc
        return self.public_url(key)

    def download_bytes(self, path: str) -> bytes:
        key = self._normalize_path(path)
        if not self.is_configured() or self._client is None:
            if key not in self._memory:
                raise StorageError(f"object {key} not found in memory storage")
            return self._memory[key]
        try:
            response = self._client.get_object(Bucket=self.bucket, Key=key)
            body = response.get("Body")
            if body is None:
                return b""
            return body.read()
        except (BotoCoreError, ClientError) as exc:  # pragma: no cover
            raise StorageError(f"S3 download failed: {exc}") from exc

    def delete(self, path: str) -> None:
        """Remove an object. Deleting a missing key is not an error."""
        key = self._normalize_path(path)
        if not self.is_configured() or self._client is None:
            self._memory.pop(key, None)
            return
        try:
            self._client.delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as exc:  # pragma: no cover
            raise StorageError(f"S3 delete failed: {exc}") from exc

    def exists(self, path: str) -> bool:
        key = self._normalize_path(path)
        if not self.is_configured() or self._client is None:
            return key in self._memory
        try:
            self._client.head_object(Bucket=self.bucket, Key=key)
        except ClientError:
            return False
        return True

    def list_keys(self, prefix: str | None = None) -> List[str]:
        key_prefix = self._normalize_path(prefix) if prefix else ""
        if not self.is_configured() or self._client is None:
            return sorted(key for key in self._memory if key.startswith(key_prefix))
        keys: List[str] = []
        paginator = self._client.get_paginator("list_objects_v2")
        try:
            for page in paginator.paginate(Bucket=self.bucket, Prefix=key_prefix):
                keys.extend(obj["Key"] for obj in page.get("Contents", []) if obj.get("Key"))
        except (BotoCoreError, ClientError) as exc:  # pragma: no cover
            raise StorageError(f"S3 list failed: {exc}") from exc
        return keys

    def public_url(self, path: str) -> str:
        clean = self._normalize_path(path)
        return f"{self._url_root()}/{clean}"

    def key_from_url(self, url: str) -> str | None:
        """Return the object key for a URL this client produced, else None."""
        root = self._url_root() + "/"
        if not url or not url.startswith(root):
            return None
        return self._normalize_path(url[len(root):].split("?", 1)[0]) or None

    def _url_root(self) -> str:
        if self.public_url_base:
            return self.public_url_base
        if self.endpoint_url:
            return f"{self.endpoint_url}/{self.bucket}"
        return f"/{self.bucket}"

    def _normalize_path(self, path: str | None) -> str:
        if not path:
            return ""
        return "/".join(part for part in path.strip().split("/") if part)
