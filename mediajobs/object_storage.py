from __future__ import annotations

import os
import re
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

OBJECT_URI_SCHEME = "object://"
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def _safe_segment(value: str) -> str:
    cleaned = re.sub(r"[^A-Za-z0-9._-]+", "_", value.strip())
    return cleaned or "object"


def _env_flag(value: str, default: bool) -> bool:
    raw = value.strip().lower()
    if not raw:
        return default
    return raw not in {"0", "false", "no", "off"}


def split_object_uri(uri: str) -> tuple[str, str, str]:
    """``object://<backend>/<bucket>/<key>`` as ``(backend, bucket, key)``."""
    if not uri.startswith(OBJECT_URI_SCHEME):
        raise ValueError(f"not an object storage uri: {uri}")
    parts = uri[len(OBJECT_URI_SCHEME) :].split("/", 2)
    if len(parts) != 3 or not all(parts):
        raise ValueError(f"not an object storage uri: {uri}")
    return parts[0], parts[1], parts[2]


@dataclass(frozen=True)
class ObjectStorageConfig:
    backend: str
    bucket: str
    root: str
    prefix: str
    public_base_url: str
    endpoint: str
    region: str
    access_key: str
    secret_key: str
    force_path_style: bool


class ObjectStorageBackend:
    """Durable home for finalized artifacts.

    Objects are written under ``<prefix>/<category>/<object_id>/<filename>``
    and addressed by ``object://`` URIs; ``public_url`` turns a URI into the
    address stored on the owning resource.
    """

    backend_name = "base"

    def __init__(self, *, config: ObjectStorageConfig) -> None:
        self._bucket = config.bucket
        self._prefix = config.prefix.strip("/")
        self._public_base_url = config.public_base_url.rstrip("/")

    def put_object(
        self,
        *,
        category: str,
        object_id: str,
        filename: str,
        content_bytes: bytes,
        content_type: str | None = None,
    ) -> str:
        raise NotImplementedError

    def public_url(self, *, storage_uri: str) -> str:
        _, _, key = split_object_uri(storage_uri)
        if not self._public_base_url:
            return storage_uri
        return f"{self._public_base_url}/{key}"

    def _object_key(self, *, category: str, object_id: str, filename: str) -> str:
        key = "/".join(_safe_segment(part) for part in (category, object_id, filename))
        return f"{self._prefix}/{key}" if self._prefix else key

    def _object_uri(self, key: str) -> str:
        return f"{OBJECT_URI_SCHEME}{self.backend_name}/{self._bucket}/{key}"


class LocalObjectStorage(ObjectStorageBackend):
    backend_name = "local"

    def __init__(self, *, config: ObjectStorageConfig) -> None:
        super().__init__(config=config)
        self._root = Path(config.root)
        self._root.mkdir(parents=True, exist_ok=True)

    def put_object(
        self,
        *,
        category: str,
        object_id: str,
        filename: str,
        content_bytes: bytes,
        content_type: str | None = None,
    ) -> str:
        key = self._object_key(category=category, object_id=object_id, filename=filename)
        target = self._root / self._bucket / key
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content_bytes)
        return self._object_uri(key)


class S3ObjectStorage(ObjectStorageBackend):
    backend_name = "s3"

    def __init__(self, *, config: ObjectStorageConfig) -> None:
        super().__init__(config=config)
        try:
            import boto3  # type: ignore
            from botocore.config import Config  # type: ignore
        except ImportError as exc:  # pragma: no cover - optional dependency
            raise RuntimeError("boto3 is required for s3 object storage backend") from exc
        session = boto3.session.Session(
            aws_access_key_id=config.access_key or None,
            aws_secret_access_key=config.secret_key or None,
            region_name=config.region or None,
        )
        self._client = session.client(
            "s3",
            endpoint_url=config.endpoint or None,
            config=Config(s3={"addressing_style": "path" if config.force_path_style else "auto"}),
        )

    def put_object(
        self,
        *,
        category: str,
        object_id: str,
        filename: str,
        content_bytes: bytes,
        content_type: str | None = None,
    ) -> str:
        key = self._object_key(category=category, object_id=object_id, filename=filename)
        self._client.put_object(
            Bucket=self._bucket,
            Key=key,
            Body=content_bytes,
            ContentType=content_type or DEFAULT_CONTENT_TYPE,
        )
        return self._object_uri(key)


def create_object_storage_from_env(environ: Mapping[str, str] | None = None) -> ObjectStorageBackend:
    env = os.environ if environ is None else environ
    backend = env.get("MEDIAJOBS_OBJECT_STORAGE_BACKEND", "local").strip().lower() or "local"
    config = ObjectStorageConfig(
        backend=backend,
        bucket=env.get("OBJECT_STORAGE_BUCKET", "").strip() or "mediajobs",
        root=env.get("OBJECT_STORAGE_ROOT", "").strip() or "/tmp/mediajobs-object-storage",
        prefix=env.get("OBJECT_STORAGE_PREFIX", "").strip(),
        public_base_url=env.get("OBJECT_STORAGE_PUBLIC_BASE_URL", "").strip(),
        endpoint=env.get("OBJECT_STORAGE_ENDPOINT", "").strip(),
        region=env.get("OBJECT_STORAGE_REGION", "").strip(),
        access_key=env.get("OBJECT_STORAGE_ACCESS_KEY", "").strip(),
        secret_key=env.get("OBJECT_STORAGE_SECRET_KEY", "").strip(),
        force_path_style=_env_flag(env.get("OBJECT_STORAGE_FORCE_PATH_STYLE", ""), True),
    )
    if config.backend == "s3":
        return S3ObjectStorage(config=config)
    return LocalObjectStorage(config=config)
