"""Repository layer for SCORM package metadata.

Keeps SQLAlchemy session usage out of the package service and routers.
Tombstoned rows (``deleted_at`` set) are hidden from every read except the
ones the two-phase delete needs.
"""
from __future__ import annotations
from typing import Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select

from ..models.persisted_scorm import ScormPackageRecord, now_ms
from ..models.scorm import SCORMPackage


class PackageNotFoundError(Exception):
    """Raised when a SCORM package record could not be located."""


class ScormPackageRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    # CREATE -----------------------------------------------------------------
    async def create(self, package: SCORMPackage) -> ScormPackageRecord:
        record = ScormPackageRecord(
            id=package.id,
            course_id=package.courseId,
            lesson_id=package.lessonId,
            version=package.version,
            title=package.title,
            storage_base_path=package.storageBasePath,
            launch_url=package.launchUrl,
            manifest_json=package.manifest.to_json(),
            package_size=package.packageSize,
            uploaded_by=package.uploadedBy,
            uploaded_at=package.uploadedAt,
            created_at=package.createdAt,
            updated_at=package.updatedAt,
        )
        self.session.add(record)
        await self.session.commit()
        await self.session.refresh(record)
        return record

    # READ -------------------------------------------------------------------
    async def get(
        self, package_id: str, include_deleted: bool = False
    ) -> ScormPackageRecord:
        stmt = select(ScormPackageRecord).where(
            ScormPackageRecord.id == package_id
        )
        if not include_deleted:
            stmt = stmt.where(ScormPackageRecord.deleted_at.is_(None))
        result = await self.session.execute(stmt)
        record = result.scalar_one_or_none()
        if not record:
            raise PackageNotFoundError(f"SCORM package {package_id} not found")
        return record

    async def get_by_lesson(self, lesson_id: str) -> Optional[ScormPackageRecord]:
        result = await self.session.execute(
            select(ScormPackageRecord)
            .where(
                ScormPackageRecord.lesson_id == lesson_id,
                ScormPackageRecord.deleted_at.is_(None),
            )
            .order_by(ScormPackageRecord.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def list_by_course(self, course_id: str) -> Sequence[ScormPackageRecord]:
        result = await self.session.execute(
            select(ScormPackageRecord)
            .where(
                ScormPackageRecord.course_id == course_id,
                ScormPackageRecord.deleted_at.is_(None),
            )
            .order_by(ScormPackageRecord.created_at)
        )
        return result.scalars().all()

    # DELETE -----------------------------------------------------------------
    async def mark_deleted(self, package_id: str) -> ScormPackageRecord:
        """Tombstone a package; repeated calls keep the first timestamp."""
        record = await self.get(package_id, include_deleted=True)
        if record.deleted_at is None:
            record.deleted_at = now_ms()
            await self.session.commit()
            await self.session.refresh(record)
        return record

    async def delete_record(self, package_id: str) -> None:
        record = await self.get(package_id, include_deleted=True)
        await self.session.delete(record)
        await self.session.commit()
