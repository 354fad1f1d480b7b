from __future__ import annotations

import os
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, TypeVar

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from quote_intake.core.config import settings
from quote_intake.core.logging import get_logger, log_event, log_exception, monotonic_ms

logger = get_logger(__name__)

T = TypeVar("T")


class StorageError(RuntimeError):
    pass


@dataclass(frozen=True)
class StoredObject:
    key: str
    byte_size: int
    uploaded_at: datetime | None = None


@dataclass(frozen=True)
class ListPage:
    objects: list[StoredObject]
    truncated: bool


@dataclass(frozen=True)
class SignedUpload:
    method: str
    url: str
    fields: dict[str, str] = field(default_factory=dict)
    headers: dict[str, str] = field(default_factory=dict)


class ObjectStorage:
    backend = "abstract"

    def put(
        self, *, key: str, body: bytes, content_type: str | None = None
    ) -> StoredObject:  # pragma: no cover
        raise NotImplementedError

    def get(self, *, key: str) -> bytes:  # pragma: no cover
        raise NotImplementedError

    def list(
        self, *, prefix: str, start_after: str | None = None, limit: int = 1000
    ) -> ListPage:  # pragma: no cover
        raise NotImplementedError

    def sign_upload(
        self,
        *,
        key: str,
        allowed_content_types: list[str],
        max_bytes: int,
        client_token: str,
        expires_s: int,
    ) -> SignedUpload:  # pragma: no cover
        raise NotImplementedError

    def public_base_url(self) -> str:  # pragma: no cover
        raise NotImplementedError

    def url_for(self, key: str) -> str:
        return f"{self.public_base_url().rstrip('/')}/{key}"

    def key_from_url(self, url: str) -> str | None:
        base = self.public_base_url().rstrip("/") + "/"
        if not url.startswith(base):
            return None
        key = url[len(base):].split("?", 1)[0].split("#", 1)[0]
        if not key or ".." in key.split("/"):
            return None
        return key


class LocalObjectStorage(ObjectStorage):
    backend = "local"

    def __init__(self, root: Path):
        self._root = root
        self._root.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        path = (self._root / key).resolve()
        if self._root.resolve() not in path.parents:
            raise StorageError(f"Invalid key: {key}")
        return path

    def put(self, *, key: str, body: bytes, content_type: str | None = None) -> StoredObject:
        start = time.monotonic()
        path = self._path(key)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(body)
        except Exception:
            log_exception(
                logger,
                "storage.put.failure",
                backend="local",
                storage_key=key,
                byte_size=len(body),
            )
            raise
        log_event(
            logger,
            "storage.put.success",
            backend="local",
            storage_key=key,
            byte_size=len(body),
            content_type=content_type,
            duration_ms=monotonic_ms(start),
        )
        return StoredObject(key=key, byte_size=len(body), uploaded_at=datetime.now(timezone.utc))

    def get(self, *, key: str) -> bytes:
        start = time.monotonic()
        path = self._path(key)
        if not path.is_file():
            log_event(
                logger,
                "storage.get.failure",
                backend="local",
                storage_key=key,
                duration_ms=monotonic_ms(start),
            )
            raise StorageError(f"Object not found: {key}")
        try:
            data = path.read_bytes()
        except Exception:
            log_exception(
                logger,
                "storage.get.failure",
                backend="local",
                storage_key=key,
                duration_ms=monotonic_ms(start),
            )
            raise
        return data

    def list(self, *, prefix: str, start_after: str | None = None, limit: int = 1000) -> ListPage:
        keys: list[tuple[str, Path]] = []
        for path in self._root.rglob("*"):
            if not path.is_file():
                continue
            key = path.relative_to(self._root).as_posix()
            if not key.startswith(prefix):
                continue
            if start_after is not None and key <= start_after:
                continue
            keys.append((key, path))
        keys.sort(key=lambda kp: kp[0])

        objects: list[StoredObject] = []
        for key, path in keys[:limit]:
            stat = path.stat()
            objects.append(
                StoredObject(
                    key=key,
                    byte_size=stat.st_size,
                    uploaded_at=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc),
                )
            )
        return ListPage(objects=objects, truncated=len(keys) > limit)

    def sign_upload(
        self,
        *,
        key: str,
        allowed_content_types: list[str],
        max_bytes: int,
        client_token: str,
        expires_s: int,
    ) -> SignedUpload:
        # The token carries the key, size and content-type limits; /blob/upload enforces them.
        return SignedUpload(
            method="PUT",
            url=settings.base_url.rstrip("/") + "/blob/upload",
            headers={"Authorization": f"Bearer {client_token}"},
        )

    def public_base_url(self) -> str:
        if settings.storage_public_base_url:
            return settings.storage_public_base_url
        return settings.base_url.rstrip("/") + "/blob/files"


_RETRYABLE_S3_CODES = frozenset(
    {
        "RequestCanceled",
        "RequestTimeout",
        "Throttling",
        "ThrottlingException",
        "SlowDown",
        "InternalError",
        "ServiceUnavailable",
    }
)


def _s3_error_code(error: Exception) -> str | None:
    if isinstance(error, ClientError):
        return (error.response.get("Error") or {}).get("Code")
    return None


class S3ObjectStorage(ObjectStorage):
    """S3 or any S3-compatible service (R2, MinIO); buckets are provisioned outside the app."""

    backend = "s3"
    max_attempts = 5

    def __init__(self) -> None:
        # boto3 rejects "auto", which S3-compatible providers often document
        region = settings.s3_region
        if not region or region.lower() == "auto":
            region = "us-east-1"

        session = boto3.session.Session(
            aws_access_key_id=settings.s3_access_key_id,
            aws_secret_access_key=settings.s3_secret_access_key,
            region_name=region,
        )
        config = Config(
            s3={"addressing_style": "virtual"},
            retries={"max_attempts": 3, "mode": "adaptive"},
            connect_timeout=10,
            read_timeout=30,
        )
        self._client = session.client(
            "s3", endpoint_url=settings.s3_endpoint_url or None, config=config
        )
        self._bucket = settings.s3_bucket
        self._region = region

    @staticmethod
    def _retry_delay_s(attempt: int) -> float:
        # 0.25s, 0.5s, 1.0s, ... capped at 3s
        return min(3.0, 0.25 * (2 ** (attempt - 1)))

    @staticmethod
    def _is_retryable(error: Exception) -> bool:
        if isinstance(error, ClientError):
            return _s3_error_code(error) in _RETRYABLE_S3_CODES
        return isinstance(error, BotoCoreError)

    def _call(self, op: str, fn: Callable[[], T], **log_fields: Any) -> T:
        """Run one S3 call, retrying transient errors with backoff; the last error propagates."""
        start = time.monotonic()
        for attempt in range(1, self.max_attempts + 1):
            try:
                return fn()
            except Exception as e:  # noqa: BLE001
                if attempt < self.max_attempts and self._is_retryable(e):
                    delay_s = self._retry_delay_s(attempt)
                    log_event(
                        logger,
                        f"storage.{op}.retry",
                        backend="s3",
                        attempt=attempt,
                        delay_s=delay_s,
                        error_code=_s3_error_code(e),
                        error_type=type(e).__name__,
                        **log_fields,
                    )
                    time.sleep(delay_s)
                    continue
                log_exception(
                    logger,
                    f"storage.{op}.failure",
                    backend="s3",
                    attempt=attempt,
                    duration_ms=monotonic_ms(start),
                    **log_fields,
                )
                raise
        raise AssertionError("unreachable")

    def put(self, *, key: str, body: bytes, content_type: str | None = None) -> StoredObject:
        start = time.monotonic()
        extra: dict[str, Any] = {"ContentType": content_type} if content_type else {}
        self._call(
            "put",
            lambda: self._client.put_object(Bucket=self._bucket, Key=key, Body=body, **extra),
            storage_key=key,
            byte_size=len(body),
        )
        log_event(
            logger,
            "storage.put.success",
            backend="s3",
            storage_key=key,
            byte_size=len(body),
            content_type=content_type,
            duration_ms=monotonic_ms(start),
        )
        return StoredObject(key=key, byte_size=len(body), uploaded_at=datetime.now(timezone.utc))

    def get(self, *, key: str) -> bytes:
        try:
            return self._call(
                "get",
                lambda: self._client.get_object(Bucket=self._bucket, Key=key)["Body"].read(),
                storage_key=key,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Object not found: {key}") from e

    def list(self, *, prefix: str, start_after: str | None = None, limit: int = 1000) -> ListPage:
        params: dict[str, Any] = {"Bucket": self._bucket, "Prefix": prefix, "MaxKeys": limit}
        if start_after:
            params["StartAfter"] = start_after
        try:
            resp = self._call("list", lambda: self._client.list_objects_v2(**params), prefix=prefix)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"List failed: {prefix}") from e
        objects = [
            StoredObject(
                key=item["Key"],
                byte_size=int(item.get("Size") or 0),
                uploaded_at=item.get("LastModified"),
            )
            for item in resp.get("Contents") or []
        ]
        return ListPage(objects=objects, truncated=bool(resp.get("IsTruncated")))

    def sign_upload(
        self,
        *,
        key: str,
        allowed_content_types: list[str],
        max_bytes: int,
        client_token: str,
        expires_s: int,
    ) -> SignedUpload:
        # Presigned POST policies cannot enumerate types; the image/ prefix is the bucket-side guard.
        conditions: list[Any] = [
            ["content-length-range", 1, max_bytes],
            ["starts-with", "$Content-Type", "image/"],
        ]
        post = self._client.generate_presigned_post(
            Bucket=self._bucket,
            Key=key,
            Conditions=conditions,
            ExpiresIn=expires_s,
        )
        return SignedUpload(
            method="POST",
            url=post["url"],
            fields={k: str(v) for k, v in post["fields"].items()},
        )

    def public_base_url(self) -> str:
        if settings.storage_public_base_url:
            return settings.storage_public_base_url
        if settings.s3_endpoint_url:
            return f"{settings.s3_endpoint_url.rstrip('/')}/{self._bucket}"
        return f"https://{self._bucket}.s3.{self._region}.amazonaws.com"


_storage: ObjectStorage | None = None


def get_storage() -> ObjectStorage:
    global _storage  # noqa: PLW0603
    if _storage is not None:
        return _storage

    if settings.storage_backend == "s3":
        _storage = S3ObjectStorage()
    else:
        root = settings.local_storage_path
        if not root.is_absolute():
            root = Path(os.getcwd()) / root
        _storage = LocalObjectStorage(root)
    return _storage
