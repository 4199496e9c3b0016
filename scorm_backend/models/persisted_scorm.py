"""SQLAlchemy ORM models for persisted SCORM entities.

Separate from the Pydantic models in scorm.py which describe the manifest
tree and API payloads. This layer manages persistence concerns only.
Timestamps are epoch milliseconds to stay compatible with stored records.
"""
from __future__ import annotations
import time
from typing import Optional
from sqlalchemy.orm import Mapped, mapped_column, declarative_base
from sqlalchemy import (
    BigInteger,
    Float,
    Index,
    Integer,
    JSON,
    String,
    Text,
    UniqueConstraint,
)

Base = declarative_base()


def now_ms() -> int:
    return int(time.time() * 1000)


class ScormPackageRecord(Base):
    """Metadata of a fully stored SCORM package.

    ``deleted_at`` marks a package whose blob cleanup is in progress; such
    rows are invisible to reads and removed once cleanup finishes.
    """

    __tablename__ = "scorm_packages"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    course_id: Mapped[str] = mapped_column(String(128), index=True)
    lesson_id: Mapped[str] = mapped_column(String(128), index=True)
    version: Mapped[str] = mapped_column(String(8))
    title: Mapped[str] = mapped_column(String(255))
    storage_base_path: Mapped[str] = mapped_column(String(1024))
    launch_url: Mapped[str] = mapped_column(String(2048))
    manifest_json: Mapped[dict] = mapped_column(JSON, nullable=False)
    package_size: Mapped[int] = mapped_column(BigInteger, default=0)
    uploaded_by: Mapped[str] = mapped_column(String(128))
    uploaded_at: Mapped[int] = mapped_column(BigInteger, default=now_ms)
    created_at: Mapped[int] = mapped_column(BigInteger, default=now_ms)
    updated_at: Mapped[int] = mapped_column(
        BigInteger, default=now_ms, onupdate=now_ms
    )
    deleted_at: Mapped[Optional[int]] = mapped_column(
        BigInteger, nullable=True, default=None
    )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "courseId": self.course_id,
            "lessonId": self.lesson_id,
            "version": self.version,
            "title": self.title,
            "storageBasePath": self.storage_base_path,
            "launchUrl": self.launch_url,
            "manifest": self.manifest_json,
            "packageSize": self.package_size,
            "uploadedBy": self.uploaded_by,
            "uploadedAt": self.uploaded_at,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


class ScormRuntimeRecord(Base):
    """A learner's CMI interaction record for one package.

    The (user_id, package_id) pair is unique: one gradebook row per learner
    per package.
    """

    __tablename__ = "scorm_runtime_data"
    __table_args__ = (
        UniqueConstraint(
            "user_id", "package_id", name="uq_scorm_runtime_user_package"
        ),
        Index("ix_scorm_runtime_course_user", "course_id", "user_id"),
    )

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(128))
    package_id: Mapped[str] = mapped_column(String(64), index=True)
    lesson_id: Mapped[str] = mapped_column(String(128))
    course_id: Mapped[str] = mapped_column(String(128))
    version: Mapped[str] = mapped_column(String(8))
    cmi_data: Mapped[dict] = mapped_column(JSON, nullable=False, default=dict)
    session_time: Mapped[int] = mapped_column(BigInteger, default=0)
    total_time: Mapped[int] = mapped_column(BigInteger, default=0)
    completion_status: Mapped[str] = mapped_column(
        String(32), default="not attempted"
    )
    success_status: Mapped[str] = mapped_column(String(16), default="unknown")
    score_raw: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    score_min: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    score_max: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    score_scaled: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    suspend_data: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    attempt_count: Mapped[int] = mapped_column(Integer, default=1)
    first_accessed_at: Mapped[int] = mapped_column(BigInteger, default=now_ms)
    last_accessed_at: Mapped[int] = mapped_column(BigInteger, default=now_ms)
    created_at: Mapped[int] = mapped_column(BigInteger, default=now_ms)
    updated_at: Mapped[int] = mapped_column(BigInteger, default=now_ms)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "userId": self.user_id,
            "packageId": self.package_id,
            "lessonId": self.lesson_id,
            "courseId": self.course_id,
            "version": self.version,
            "cmiData": dict(self.cmi_data or {}),
            "sessionTime": self.session_time,
            "totalTime": self.total_time,
            "completionStatus": self.completion_status,
            "successStatus": self.success_status,
            "scoreRaw": self.score_raw,
            "scoreMin": self.score_min,
            "scoreMax": self.score_max,
            "scoreScaled": self.score_scaled,
            "suspendData": self.suspend_data,
            "location": self.location,
            "attemptCount": self.attempt_count,
            "firstAccessedAt": self.first_accessed_at,
            "lastAccessedAt": self.last_accessed_at,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }
