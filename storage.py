"""Object storage: named buckets of files on disk, each reachable at a public URL."""

from __future__ import annotations

import logging
from pathlib import Path

logger = logging.getLogger(__name__)

HAZARD_PHOTOS = "hazard-photos"
AVATARS = "avatars"
BUCKETS = (HAZARD_PHOTOS, AVATARS)


class StorageError(Exception):
    """Upload, lookup or removal of an object failed."""


def is_safe_key(key: str) -> bool:
    # Keys may nest under "/" but must stay inside their bucket
    if not key or key.startswith("/") or "\\" in key:
        return False
    return all(part not in ("", ".", "..") for part in key.split("/"))


class ObjectStorage:
    def __init__(self, root: str | Path, public_base_url: str):
        self.root = Path(root)
        self.public_base_url = public_base_url.rstrip("/")

    def path(self, bucket: str, key: str) -> Path:
        if bucket not in BUCKETS:
            raise StorageError(f"Bucket not found: {bucket}")
        if not is_safe_key(key):
            raise StorageError(f"Invalid key: {key!r}")
        return self.root / bucket / key

    def upload(self, bucket: str, key: str, data: bytes, content_type: str | None = None, upsert: bool = False) -> str:
        """Write `data` under bucket/key. Returns the key."""
        target = self.path(bucket, key)
        if target.exists() and not upsert:
            raise StorageError(f"The resource already exists: {bucket}/{key}")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            raise StorageError(f"Upload to {bucket}/{key} failed: {e}") from e
        logger.info("Stored %d bytes at %s/%s (%s)", len(data), bucket, key, content_type or "unknown type")
        return key

    def public_url(self, bucket: str, key: str) -> str:
        self.path(bucket, key)
        return f"{self.public_base_url}/storage/{bucket}/{key}"

    def remove(self, bucket: str, key: str) -> bool:
        """Delete an object. Returns False if it was not there."""
        target = self.path(bucket, key)
        try:
            target.unlink()
        except FileNotFoundError:
            return False
        except OSError as e:
            raise StorageError(f"Removal of {bucket}/{key} failed: {e}") from e
        logger.info("Removed %s/%s", bucket, key)
        return True
