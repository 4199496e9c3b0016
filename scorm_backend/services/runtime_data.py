"""
SCORM Runtime Data Service

Owns one tracking record per (learner, package): the raw CMI map written by
content plus the summary fields (status, score, time) read by progress views.
"""

import logging
import uuid
from typing import List, Mapping, Optional, Union

from ..models.persisted_scorm import now_ms
from ..models.scorm import SCORMRuntimeData, SCORMVersion
from ..repositories.runtime_data_repo import RuntimeDataRepository
from .cmi_sync import apply_cmi_commit

logger = logging.getLogger(__name__)


def _to_columns(data: SCORMRuntimeData) -> dict:
    """camelCase runtime model -> snake_case column values"""
    return {
        "id": data.id,
        "user_id": data.userId,
        "package_id": data.packageId,
        "lesson_id": data.lessonId,
        "course_id": data.courseId,
        "version": data.version,
        "cmi_data": dict(data.cmiData),
        "session_time": data.sessionTime,
        "total_time": data.totalTime,
        "completion_status": data.completionStatus,
        "success_status": data.successStatus,
        "score_raw": data.scoreRaw,
        "score_min": data.scoreMin,
        "score_max": data.scoreMax,
        "score_scaled": data.scoreScaled,
        "suspend_data": data.suspendData,
        "location": data.location,
        "attempt_count": data.attemptCount,
        "first_accessed_at": data.firstAccessedAt,
        "last_accessed_at": data.lastAccessedAt,
        "created_at": data.createdAt,
        "updated_at": data.updatedAt,
    }


class SCORMRuntimeDataService:
    """Service for learner runtime (CMI) records"""

    def __init__(self, repository: RuntimeDataRepository):
        self.repository = repository

    async def get_or_create_runtime_data(
        self,
        user_id: str,
        package_id: str,
        lesson_id: str,
        course_id: str,
        version: SCORMVersion,
    ) -> SCORMRuntimeData:
        """
        Return the learner's record for a package, creating it on first launch.

        Creation is a single conflict-tolerant insert, so concurrent first
        launches end up sharing one record.
        """
        now = now_ms()
        fresh = SCORMRuntimeData(
            id=str(uuid.uuid4()),
            userId=user_id,
            packageId=package_id,
            lessonId=lesson_id,
            courseId=course_id,
            version=version,
            firstAccessedAt=now,
            lastAccessedAt=now,
            createdAt=now,
            updatedAt=now,
        )
        record = await self.repository.insert_if_absent(_to_columns(fresh))
        if record.id == fresh.id:
            logger.info(
                f"Created runtime record {record.id} for user {user_id} "
                f"on package {package_id}"
            )
        return SCORMRuntimeData.model_validate(record.to_dict())

    async def save_runtime_data(self, data: SCORMRuntimeData) -> SCORMRuntimeData:
        """
        Overwrite a whole runtime record (last writer wins).

        Raises:
            RuntimeDataNotFoundError: no record with ``data.id``
        """
        stamped = data.model_copy(update={"updatedAt": now_ms()})
        record = await self.repository.overwrite(stamped.id, _to_columns(stamped))
        return SCORMRuntimeData.model_validate(record.to_dict())

    async def get_runtime_data_by_course(
        self, user_id: str, course_id: str
    ) -> List[SCORMRuntimeData]:
        records = await self.repository.list_for_user_course(user_id, course_id)
        return [SCORMRuntimeData.model_validate(r.to_dict()) for r in records]

    async def get_runtime_data(
        self, user_id: str, package_id: str
    ) -> Optional[SCORMRuntimeData]:
        record = await self.repository.get_for_user_package(user_id, package_id)
        if record is None:
            return None
        return SCORMRuntimeData.model_validate(record.to_dict())

    async def commit_cmi(
        self,
        record_id: str,
        cmi_values: Mapping[str, Union[str, int, float]],
        session_time_ms: Optional[int] = None,
        finish: bool = False,
    ) -> SCORMRuntimeData:
        """
        Fold committed CMI values into the record's summary fields and save.

        Raises:
            RuntimeDataNotFoundError: no record with ``record_id``
        """
        record = await self.repository.get(record_id)
        current = SCORMRuntimeData.model_validate(record.to_dict())
        updated = apply_cmi_commit(
            current, cmi_values, session_time_ms=session_time_ms, finish=finish
        )
        if finish:
            logger.info(
                f"Runtime record {record_id} finished session: "
                f"{updated.completionStatus}/{updated.successStatus}, "
                f"total time {updated.totalTime}ms"
            )
        saved = await self.repository.overwrite(record_id, _to_columns(updated))
        return SCORMRuntimeData.model_validate(saved.to_dict())
