"""Repository layer for SCORM runtime (CMI) records.

Creation goes through an insert that yields to the unique
(user_id, package_id) constraint, so concurrent first launches of the same
learner converge on a single row.
"""
from __future__ import annotations
from typing import Optional, Sequence
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError

from ..models.persisted_scorm import ScormRuntimeRecord

# Columns a whole-record save may overwrite (identity columns excluded)
_MUTABLE_COLUMNS = (
    "lesson_id",
    "course_id",
    "version",
    "cmi_data",
    "session_time",
    "total_time",
    "completion_status",
    "success_status",
    "score_raw",
    "score_min",
    "score_max",
    "score_scaled",
    "suspend_data",
    "location",
    "attempt_count",
    "first_accessed_at",
    "last_accessed_at",
    "created_at",
    "updated_at",
)

_UPSERT_DIALECTS = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class RuntimeDataNotFoundError(Exception):
    """Raised when a runtime record could not be located."""


class RuntimeDataRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    # CREATE -----------------------------------------------------------------
    async def insert_if_absent(self, values: dict) -> ScormRuntimeRecord:
        """Insert ``values`` unless a row for the same learner/package exists.

        Returns whichever row holds the (user_id, package_id) slot afterwards.
        """
        dialect = self.session.get_bind().dialect.name
        insert = _UPSERT_DIALECTS.get(dialect)

        if insert is not None:
            stmt = (
                insert(ScormRuntimeRecord)
                .values(**values)
                .on_conflict_do_nothing(index_elements=["user_id", "package_id"])
            )
            await self.session.execute(stmt)
        else:
            try:
                async with self.session.begin_nested():
                    self.session.add(ScormRuntimeRecord(**values))
            except IntegrityError:
                pass  # another writer won the unique slot
        await self.session.commit()

        record = await self.get_for_user_package(
            values["user_id"], values["package_id"]
        )
        if record is None:  # pragma: no cover
            raise RuntimeDataNotFoundError(
                "Runtime record vanished right after upsert"
            )
        return record

    # READ -------------------------------------------------------------------
    async def get(self, record_id: str) -> ScormRuntimeRecord:
        result = await self.session.execute(
            select(ScormRuntimeRecord).where(ScormRuntimeRecord.id == record_id)
        )
        record = result.scalar_one_or_none()
        if not record:
            raise RuntimeDataNotFoundError(f"Runtime data {record_id} not found")
        return record

    async def get_for_user_package(
        self, user_id: str, package_id: str
    ) -> Optional[ScormRuntimeRecord]:
        result = await self.session.execute(
            select(ScormRuntimeRecord).where(
                ScormRuntimeRecord.user_id == user_id,
                ScormRuntimeRecord.package_id == package_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_for_user_course(
        self, user_id: str, course_id: str
    ) -> Sequence[ScormRuntimeRecord]:
        result = await self.session.execute(
            select(ScormRuntimeRecord)
            .where(
                ScormRuntimeRecord.course_id == course_id,
                ScormRuntimeRecord.user_id == user_id,
            )
            .order_by(ScormRuntimeRecord.created_at)
        )
        return result.scalars().all()

    # UPDATE -----------------------------------------------------------------
    async def overwrite(self, record_id: str, values: dict) -> ScormRuntimeRecord:
        """Replace every mutable column of a record with ``values``."""
        record = await self.get(record_id)
        for column in _MUTABLE_COLUMNS:
            setattr(record, column, values.get(column))
        await self.session.commit()
        await self.session.refresh(record)
        return record
