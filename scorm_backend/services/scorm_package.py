"""
SCORM Package Service

Validates, ingests and retires SCORM content packages (zip archives with an
``imsmanifest.xml`` at the root). Assets go to the blob store one file at a
time; the package metadata row is written only after every asset is stored,
so an existing row always means a complete, playable package.
"""

import asyncio
import inspect
import io
import logging
import os
import time
import uuid
import zipfile
from pathlib import PurePosixPath
from typing import Awaitable, Callable, List, Optional, Tuple, Union

from ..models.persisted_scorm import now_ms
from ..models.scorm import (
    PackageValidationResult,
    ParsedManifest,
    SCORMPackage,
)
from ..repositories.scorm_package_repo import (
    PackageNotFoundError,
    ScormPackageRepository,
)
from ..storage.blob_store import BlobStore, BlobStoreError, normalize_blob_path
from .manifest_parser import (
    LaunchResolutionError,
    ManifestParseError,
    SCORMManifestParser,
    manifest_parser,
)

logger = logging.getLogger(__name__)

MANIFEST_FILENAME = "imsmanifest.xml"
STORAGE_PREFIX = os.getenv("SCORM_STORAGE_PREFIX", "uploads/scorm")
MAX_PACKAGE_SIZE = int(
    os.getenv("SCORM_MAX_PACKAGE_SIZE", str(500 * 1024 * 1024))
)  # 500MB
DEFAULT_CONTENT_TYPE = "application/octet-stream"

MIME_TYPES = {
    ".html": "text/html",
    ".htm": "text/html",
    ".js": "application/javascript",
    ".css": "text/css",
    ".json": "application/json",
    ".xml": "application/xml",
    ".xsd": "application/xml",
    ".dtd": "application/xml-dtd",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".svg": "image/svg+xml",
    ".webp": "image/webp",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".ogg": "audio/ogg",
    ".pdf": "application/pdf",
    ".swf": "application/x-shockwave-flash",
    ".woff": "font/woff",
    ".woff2": "font/woff2",
    ".ttf": "font/ttf",
    ".eot": "application/vnd.ms-fontobject",
}

ProgressCallback = Callable[[int], Union[None, Awaitable[None]]]


class PackageValidationError(Exception):
    """Raised when an archive is not an acceptable SCORM package."""


class UploadCancelledError(Exception):
    """Raised when an upload is cancelled before its metadata is written."""


def get_mime_type(filename: str) -> str:
    """Content type from the fixed extension table."""
    return MIME_TYPES.get(PurePosixPath(filename).suffix.lower(), DEFAULT_CONTENT_TYPE)


def generate_package_id() -> str:
    return f"scorm_{int(time.time() * 1000)}_{uuid.uuid4().hex[:6]}"


class SCORMPackageService:
    """Service for ingesting SCORM packages into blob storage + metadata"""

    def __init__(
        self,
        repository: ScormPackageRepository,
        blob_store: BlobStore,
        parser: SCORMManifestParser = manifest_parser,
        storage_prefix: str = STORAGE_PREFIX,
        max_package_size: int = MAX_PACKAGE_SIZE,
    ):
        self.repository = repository
        self.blob_store = blob_store
        self.parser = parser
        self.storage_prefix = storage_prefix.strip("/")
        self.max_package_size = max_package_size

    # Archive handling -----------------------------------------------------

    def _open_archive(
        self, archive_bytes: bytes, filename: Optional[str] = None
    ) -> zipfile.ZipFile:
        if filename is not None and not filename.lower().endswith(".zip"):
            raise PackageValidationError("Package file must be a .zip archive")
        if not archive_bytes:
            raise PackageValidationError("Empty package files are not allowed")
        if len(archive_bytes) > self.max_package_size:
            raise PackageValidationError(
                f"Package size ({len(archive_bytes)} bytes) exceeds maximum "
                f"allowed size ({self.max_package_size} bytes)"
            )
        try:
            return zipfile.ZipFile(io.BytesIO(archive_bytes))
        except zipfile.BadZipFile as e:
            raise PackageValidationError(f"Invalid zip archive: {e}") from e

    def _read_manifest(
        self, archive: zipfile.ZipFile
    ) -> Tuple[ParsedManifest, str]:
        """Parse the root manifest and resolve its launch URL."""
        try:
            manifest_bytes = archive.read(MANIFEST_FILENAME)
        except KeyError:
            raise PackageValidationError(
                f"{MANIFEST_FILENAME} not found at the package root"
            )
        parsed = self.parser.parse_manifest(manifest_bytes)
        launch_url = self.parser.get_launch_url(parsed.manifest)
        return parsed, launch_url

    def _asset_entries(
        self, archive: zipfile.ZipFile
    ) -> List[Tuple[str, str]]:
        """
        (archive member name, normalized relative path) of every file.

        The declared uncompressed sizes are summed so a small, highly
        compressed archive cannot expand past ``max_package_size``.
        """
        entries = []
        extracted_size = 0
        for info in archive.infolist():
            if info.is_dir():
                continue
            try:
                entries.append((info.filename, normalize_blob_path(info.filename)))
            except BlobStoreError as e:
                raise PackageValidationError(
                    f"Unsafe path in package: {info.filename}"
                ) from e
            extracted_size += info.file_size
            if extracted_size > self.max_package_size:
                raise PackageValidationError(
                    f"Extracted package size exceeds maximum allowed size "
                    f"({self.max_package_size} bytes)"
                )
        return entries

    @staticmethod
    def _package_title(parsed: ParsedManifest, filename: Optional[str]) -> str:
        manifest = parsed.manifest
        if manifest.organizations and manifest.organizations[0].title:
            return manifest.organizations[0].title
        return manifest.identifier or filename or "SCORM package"

    # Operations -----------------------------------------------------------

    async def validate_package(
        self, archive_bytes: bytes, filename: Optional[str] = None
    ) -> PackageValidationResult:
        """
        Dry-run validation of an archive; nothing is stored.

        Returns:
            PackageValidationResult with version/title when valid, otherwise
            ``isValid=False`` and an error message
        """
        try:
            with self._open_archive(archive_bytes, filename) as archive:
                self._asset_entries(archive)
                parsed, _ = self._read_manifest(archive)
        except (
            PackageValidationError,
            ManifestParseError,
            LaunchResolutionError,
        ) as e:
            logger.info(f"SCORM package validation failed: {e}")
            return PackageValidationResult(
                isValid=False, error=f"Package validation failed: {e}"
            )

        return PackageValidationResult(
            isValid=True,
            version=parsed.version,
            title=self._package_title(parsed, filename),
        )

    async def upload_package(
        self,
        archive_bytes: bytes,
        course_id: str,
        lesson_id: str,
        uploaded_by: str,
        on_progress: Optional[ProgressCallback] = None,
        cancel_event: Optional[asyncio.Event] = None,
        filename: Optional[str] = None,
    ) -> SCORMPackage:
        """
        Store every archive entry, then write the package metadata record.

        Args:
            archive_bytes: Raw zip content
            course_id: Owning course
            lesson_id: Lesson the package is attached to
            uploaded_by: Uploading user id
            on_progress: Called with a 0-100 percentage after each file
            cancel_event: When set, the upload stops before the next file
            filename: Original upload name, used for validation and title

        Raises:
            PackageValidationError, ManifestParseError, LaunchResolutionError:
                before any storage I/O
            UploadCancelledError: cancelled through ``cancel_event``
            BlobStoreError: an asset could not be stored
        """
        if not course_id or "/" in course_id or course_id in (".", ".."):
            raise PackageValidationError(f"Invalid course id: {course_id!r}")

        with self._open_archive(archive_bytes, filename) as archive:
            entries = self._asset_entries(archive)
            parsed, launch_url = self._read_manifest(archive)

            package_id = generate_package_id()
            storage_path = f"{self.storage_prefix}/{course_id}/{package_id}"
            total_files = len(entries)
            logger.info(
                f"Uploading SCORM package {package_id} "
                f"({total_files} files) for course {course_id}"
            )

            if launch_url.partition("?")[0] not in {path for _, path in entries}:
                logger.warning(
                    f"Launch file {launch_url} is not present in package {package_id}"
                )

            for uploaded_files, (member, entry) in enumerate(entries, start=1):
                if cancel_event is not None and cancel_event.is_set():
                    logger.warning(
                        f"Upload of {package_id} cancelled after "
                        f"{uploaded_files - 1}/{total_files} files"
                    )
                    raise UploadCancelledError(
                        f"Upload of package {package_id} was cancelled"
                    )

                data = await asyncio.to_thread(archive.read, member)
                await self.blob_store.put(
                    f"{storage_path}/{entry}",
                    data,
                    content_type=get_mime_type(entry),
                    metadata={
                        "packageId": package_id,
                        "courseId": course_id,
                        "originalPath": entry,
                    },
                )
                await self._report_progress(
                    on_progress, round(uploaded_files / total_files * 100)
                )

        now = now_ms()
        package = SCORMPackage(
            id=package_id,
            courseId=course_id,
            lessonId=lesson_id,
            version=parsed.version,
            title=self._package_title(parsed, filename),
            storageBasePath=storage_path,
            launchUrl=launch_url,
            manifest=parsed.manifest,
            packageSize=len(archive_bytes),
            uploadedBy=uploaded_by,
            uploadedAt=now,
            createdAt=now,
            updatedAt=now,
        )
        record = await self.repository.create(package)
        logger.info(f"SCORM package {package_id} stored; launch URL {launch_url}")
        return SCORMPackage.model_validate(record.to_dict())

    @staticmethod
    async def _report_progress(
        on_progress: Optional[ProgressCallback], percent: int
    ) -> None:
        if on_progress is None:
            return
        result = on_progress(percent)
        if inspect.isawaitable(result):
            await result

    async def delete_package(self, package_id: str) -> None:
        """
        Retire a package: tombstone, best-effort blob cleanup, drop metadata.

        Blob deletion failures are logged and never block metadata removal.

        Raises:
            PackageNotFoundError: no record (live or tombstoned) exists
        """
        record = await self.repository.mark_deleted(package_id)
        storage_path = record.storage_base_path

        try:
            blob_paths = await self._list_recursive(storage_path)
        except BlobStoreError as e:
            logger.warning(f"Could not list blobs under {storage_path}: {e}")
            blob_paths = []

        failed = 0
        for path in blob_paths:
            try:
                await self.blob_store.delete(path)
            except BlobStoreError as e:
                failed += 1
                logger.warning(f"Failed to delete blob {path}: {e}")
        if failed:
            logger.warning(
                f"{failed}/{len(blob_paths)} blobs of package {package_id} "
                "could not be deleted"
            )

        await self.repository.delete_record(package_id)
        logger.info(f"SCORM package {package_id} deleted")

    async def _list_recursive(self, prefix: str) -> List[str]:
        """Every object under ``prefix``, nested prefixes included."""
        items: List[str] = []
        pending = [prefix]
        while pending:
            listing = await self.blob_store.list(pending.pop())
            items.extend(listing.items)
            pending.extend(listing.prefixes)
        return items

    async def get_launch_url(self, package_id: str) -> str:
        """Fetchable URL of the stored launch asset."""
        record = await self.repository.get(package_id)
        path, _, query = record.launch_url.partition("?")
        url = await self.blob_store.get_url(f"{record.storage_base_path}/{path}")
        return f"{url}?{query}" if query else url

    async def get_package(self, package_id: str) -> Optional[SCORMPackage]:
        try:
            record = await self.repository.get(package_id)
        except PackageNotFoundError:
            return None
        return SCORMPackage.model_validate(record.to_dict())

    async def get_package_by_lesson(self, lesson_id: str) -> Optional[SCORMPackage]:
        record = await self.repository.get_by_lesson(lesson_id)
        if record is None:
            return None
        return SCORMPackage.model_validate(record.to_dict())

    async def get_packages_by_course(self, course_id: str) -> List[SCORMPackage]:
        records = await self.repository.list_by_course(course_id)
        return [SCORMPackage.model_validate(r.to_dict()) for r in records]
