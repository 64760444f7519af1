from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO

import boto3
from botocore.exceptions import BotoCoreError, ClientError


class StorageError(RuntimeError):
    pass


META_SUFFIX = ".meta.json"


@dataclass(frozen=True)
class StoredObject:
    key: str
    size_bytes: int
    content_type: str | None
    metadata: dict[str, str] = field(default_factory=dict)


class Storage:
    def put_bytes(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> None:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def head(self, key: str) -> StoredObject | None:
        """Object info, or None when the key is absent."""
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def url_for(self, key: str) -> str:
        raise NotImplementedError


@dataclass(frozen=True)
class LocalStorage(Storage):
    root: Path
    public_base_url: str = "/images"

    def _path(self, key: str) -> Path:
        safe_key = key.lstrip("/").replace("\\", "/")
        p = (self.root / safe_key).resolve()
        if self.root.resolve() not in p.parents:
            raise StorageError(f"Key escapes storage root: {key!r}")
        return p

    def _meta_path(self, key: str) -> Path:
        p = self._path(key)
        return p.with_name(p.name + META_SUFFIX)

    def put_bytes(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> None:
        p = self._path(key)
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_bytes(data)
            self._meta_path(key).write_text(
                json.dumps({"content_type": content_type, "metadata": metadata or {}}),
                encoding="utf-8",
            )
        except OSError as e:
            raise StorageError(f"Cannot write {key!r}: {e}") from e

    def open(self, key: str) -> BinaryIO:
        p = self._path(key)
        try:
            return p.open("rb")
        except OSError as e:
            raise StorageError(f"Cannot read {key!r}: {e}") from e

    def head(self, key: str) -> StoredObject | None:
        # Sidecars describe objects; they are not objects themselves.
        if key.endswith(META_SUFFIX):
            return None
        p = self._path(key)
        if not p.is_file():
            return None
        content_type = None
        metadata: dict[str, str] = {}
        mp = self._meta_path(key)
        if mp.is_file():
            try:
                raw = json.loads(mp.read_text(encoding="utf-8"))
                content_type = raw.get("content_type")
                metadata = {str(k): str(v) for k, v in (raw.get("metadata") or {}).items()}
            except (OSError, ValueError, AttributeError) as e:
                raise StorageError(f"Corrupt metadata for {key!r}: {e}") from e
        return StoredObject(key=key, size_bytes=p.stat().st_size, content_type=content_type, metadata=metadata)

    def delete(self, key: str) -> None:
        try:
            self._path(key).unlink(missing_ok=True)
            self._meta_path(key).unlink(missing_ok=True)
        except OSError as e:
            raise StorageError(f"Cannot delete {key!r}: {e}") from e

    def url_for(self, key: str) -> str:
        return f"{self.public_base_url.rstrip('/')}/{key.lstrip('/')}"


@dataclass(frozen=True)
class S3Storage(Storage):
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str
    url_expires_seconds: int = 3600

    def _client(self):
        return boto3.client(
            "s3",
            endpoint_url=f"https://{self.endpoint}" if self.endpoint else None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
        )

    def put_bytes(
        self,
        key: str,
        data: bytes,
        *,
        content_type: str | None = None,
        metadata: dict[str, str] | None = None,
    ) -> None:
        extra: dict[str, object] = {}
        if content_type:
            extra["ContentType"] = content_type
        if metadata:
            extra["Metadata"] = metadata
        try:
            self._client().put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"S3 put failed for {key!r}: {e}") from e

    def open(self, key: str) -> BinaryIO:
        try:
            obj = self._client().get_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"S3 get failed for {key!r}: {e}") from e
        return obj["Body"]  # type: ignore[return-value]

    def head(self, key: str) -> StoredObject | None:
        try:
            obj = self._client().head_object(Bucket=self.bucket, Key=key)
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in ("404", "NoSuchKey", "NotFound"):
                return None
            raise StorageError(f"S3 head failed for {key!r}: {e}") from e
        except BotoCoreError as e:
            raise StorageError(f"S3 head failed for {key!r}: {e}") from e
        return StoredObject(
            key=key,
            size_bytes=int(obj.get("ContentLength") or 0),
            content_type=obj.get("ContentType"),
            metadata=dict(obj.get("Metadata") or {}),
        )

    def delete(self, key: str) -> None:
        try:
            self._client().delete_object(Bucket=self.bucket, Key=key)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"S3 delete failed for {key!r}: {e}") from e

    def url_for(self, key: str) -> str:
        try:
            return self._client().generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.url_expires_seconds,
            )
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"S3 presign failed for {key!r}: {e}") from e


def storage_from_config(config: dict) -> Storage:
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "s3":
        return S3Storage(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "nyc3").strip(),
            bucket=(config.get("S3_BUCKET") or "").strip(),
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
        )
    # default local
    root = Path(config.get("STORAGE_ROOT") or "storage")
    return LocalStorage(root=root)
