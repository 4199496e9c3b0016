"""
Blob storage for extracted SCORM package assets.

The package service only talks to the ``BlobStore`` interface: put one
object, list a prefix (objects plus sub-prefixes), delete one object and
resolve a fetchable URL. ``LocalBlobStore`` keeps objects on the local
filesystem under ``SCORM_STORAGE_ROOT`` with per-object metadata in JSON
sidecar files, and URLs served by the ``/scorm/files`` endpoint.
"""

import json
import logging
import mimetypes
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional
from urllib.parse import quote

import aiofiles
import aiofiles.os

logger = logging.getLogger(__name__)

# Configuration constants
STORAGE_ROOT = Path(os.getenv("SCORM_STORAGE_ROOT", "media/scorm"))
PUBLIC_BASE_URL = os.getenv("SCORM_PUBLIC_BASE_URL", "/api/v1/scorm/files")
METADATA_DIR = ".metadata"


class BlobStoreError(Exception):
    """Raised when a blob operation fails."""


class BlobNotFoundError(BlobStoreError):
    """Raised when a blob does not exist."""


class BlobPathError(BlobStoreError):
    """Raised for object paths escaping the storage root."""


@dataclass
class BlobListing:
    """Direct children of a prefix: object paths and sub-prefixes."""
    items: List[str] = field(default_factory=list)
    prefixes: List[str] = field(default_factory=list)


class BlobStore:
    """Object storage interface used by the package service."""

    async def put(
        self,
        path: str,
        data: bytes,
        content_type: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        raise NotImplementedError

    async def list(self, prefix: str) -> BlobListing:
        raise NotImplementedError

    async def delete(self, path: str) -> None:
        raise NotImplementedError

    async def get_url(self, path: str) -> str:
        raise NotImplementedError


def normalize_blob_path(path: str) -> str:
    """
    Normalize an object path and reject traversal.

    Args:
        path: Slash separated object path

    Returns:
        Path without leading/trailing slashes or empty segments

    Raises:
        BlobPathError: absolute paths, drive letters or '..' segments
    """
    raw = path.replace("\\", "/")
    if raw.startswith("/") or (len(raw) > 1 and raw[1] == ":"):
        raise BlobPathError(f"Absolute object path not allowed: {path!r}")
    parts = [part for part in raw.split("/") if part not in ("", ".")]
    if any(part == ".." for part in parts):
        raise BlobPathError(f"Object path escapes storage root: {path!r}")
    return "/".join(parts)


class LocalBlobStore(BlobStore):
    """Filesystem-backed blob store"""

    def __init__(
        self,
        root: Optional[Path] = None,
        public_base_url: str = PUBLIC_BASE_URL,
    ):
        self.root = Path(root or STORAGE_ROOT)
        self.public_base_url = public_base_url.rstrip("/")
        self.root.mkdir(parents=True, exist_ok=True)

    def resolve(self, path: str) -> Path:
        """
        Absolute filesystem location of an object path.

        Raises:
            BlobPathError: the path escapes the root or points into the
                sidecar metadata directory
        """
        normalized = normalize_blob_path(path)
        if normalized.split("/", 1)[0] == METADATA_DIR:
            raise BlobPathError(f"Object path is reserved for metadata: {path!r}")
        resolved = (self.root / normalized).resolve()
        root_resolved = self.root.resolve()
        if resolved != root_resolved and root_resolved not in resolved.parents:
            raise BlobPathError(f"Object path escapes storage root: {path!r}")
        return resolved

    def _metadata_path(self, path: str) -> Path:
        return self.root / METADATA_DIR / f"{normalize_blob_path(path)}.json"

    async def put(
        self,
        path: str,
        data: bytes,
        content_type: str,
        metadata: Optional[Dict[str, str]] = None,
    ) -> None:
        target = self.resolve(path)
        meta_path = self._metadata_path(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            meta_path.parent.mkdir(parents=True, exist_ok=True)
            async with aiofiles.open(target, "wb") as f:
                await f.write(data)
            async with aiofiles.open(meta_path, "w") as f:
                await f.write(
                    json.dumps(
                        {
                            "contentType": content_type,
                            "size": len(data),
                            "customMetadata": metadata or {},
                        }
                    )
                )
        except OSError as e:
            raise BlobStoreError(f"Failed to store {path}: {e}") from e
        logger.debug(f"Stored blob {path} ({len(data)} bytes)")

    async def list(self, prefix: str) -> BlobListing:
        directory = self.resolve(prefix)
        listing = BlobListing()
        if not directory.is_dir():
            return listing

        base = normalize_blob_path(prefix)
        for entry in sorted(directory.iterdir()):
            if entry.name == METADATA_DIR and directory == self.root.resolve():
                continue
            child = f"{base}/{entry.name}" if base else entry.name
            if entry.is_dir():
                listing.prefixes.append(child)
            else:
                listing.items.append(child)
        return listing

    async def delete(self, path: str) -> None:
        target = self.resolve(path)
        if not target.is_file():
            raise BlobNotFoundError(f"Blob not found: {path}")
        await aiofiles.os.remove(target)

        meta_path = self._metadata_path(path)
        if meta_path.exists():
            await aiofiles.os.remove(meta_path)
            self._prune_empty_dirs(meta_path.resolve().parent)
        self._prune_empty_dirs(target.parent)

    def _prune_empty_dirs(self, directory: Path) -> None:
        root = self.root.resolve()
        while directory != root and root in directory.parents:
            try:
                directory.rmdir()
            except OSError:
                break  # not empty
            directory = directory.parent

    async def get_url(self, path: str) -> str:
        normalized = normalize_blob_path(path)
        if not self.resolve(normalized).is_file():
            raise BlobNotFoundError(f"Blob not found: {path}")
        return f"{self.public_base_url}/{quote(normalized)}"

    async def get_metadata(self, path: str) -> Dict:
        meta_path = self._metadata_path(path)
        if not meta_path.exists():
            return {}
        async with aiofiles.open(meta_path, "r") as f:
            return json.loads(await f.read())

    async def get_content_type(self, path: str) -> str:
        metadata = await self.get_metadata(path)
        if metadata.get("contentType"):
            return metadata["contentType"]
        mime_type, _ = mimetypes.guess_type(path)
        return mime_type or "application/octet-stream"


_default_store: Optional[LocalBlobStore] = None


def get_blob_store() -> LocalBlobStore:
    """FastAPI dependency returning the process-wide blob store."""
    global _default_store
    if _default_store is None:
        _default_store = LocalBlobStore()
    return _default_store
