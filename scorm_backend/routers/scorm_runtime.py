"""SCORM runtime router: learner tracking records for launched packages."""
from __future__ import annotations
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.config import get_session
from ..models.scorm import CMICommitRequest, RuntimeDataRequest, SCORMRuntimeData
from ..repositories.runtime_data_repo import (
    RuntimeDataNotFoundError,
    RuntimeDataRepository,
)
from ..services.runtime_data import SCORMRuntimeDataService

router = APIRouter(prefix="/scorm/runtime", tags=["SCORM Runtime"])

# Helpers ------------------------------------------------------------------


async def _get_runtime_service(
    session: AsyncSession = Depends(get_session),
) -> SCORMRuntimeDataService:
    return SCORMRuntimeDataService(RuntimeDataRepository(session))


# Routes -------------------------------------------------------------------


@router.post("", response_model=SCORMRuntimeData)
async def get_or_create_runtime_data(
    payload: RuntimeDataRequest,
    service: SCORMRuntimeDataService = Depends(_get_runtime_service),
):
    return await service.get_or_create_runtime_data(
        user_id=payload.userId,
        package_id=payload.packageId,
        lesson_id=payload.lessonId,
        course_id=payload.courseId,
        version=payload.version,
    )


@router.get("", response_model=List[SCORMRuntimeData])
async def list_course_runtime_data(
    userId: str = Query(..., min_length=1),
    courseId: str = Query(..., min_length=1),
    service: SCORMRuntimeDataService = Depends(_get_runtime_service),
):
    return await service.get_runtime_data_by_course(userId, courseId)


@router.get("/{user_id}/{package_id}", response_model=SCORMRuntimeData)
async def get_runtime_data(
    user_id: str,
    package_id: str,
    service: SCORMRuntimeDataService = Depends(_get_runtime_service),
):
    data = await service.get_runtime_data(user_id, package_id)
    if data is None:
        raise HTTPException(status_code=404, detail="Runtime data not found")
    return data


@router.put("/{record_id}", response_model=SCORMRuntimeData)
async def save_runtime_data(
    record_id: str,
    payload: SCORMRuntimeData,
    service: SCORMRuntimeDataService = Depends(_get_runtime_service),
):
    if payload.id != record_id:
        raise HTTPException(
            status_code=400, detail="Record id does not match request path"
        )
    try:
        return await service.save_runtime_data(payload)
    except RuntimeDataNotFoundError:
        raise HTTPException(status_code=404, detail="Runtime data not found")


@router.post("/{record_id}/commit", response_model=SCORMRuntimeData)
async def commit_cmi(
    record_id: str,
    payload: CMICommitRequest,
    service: SCORMRuntimeDataService = Depends(_get_runtime_service),
):
    try:
        return await service.commit_cmi(
            record_id,
            payload.cmiData,
            session_time_ms=payload.sessionTime,
            finish=payload.finish,
        )
    except RuntimeDataNotFoundError:
        raise HTTPException(status_code=404, detail="Runtime data not found")
