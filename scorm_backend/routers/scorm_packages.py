"""
SCORM Packages Router

Upload, validation, lookup and deletion of SCORM content packages, plus
serving of the extracted package assets from the local blob store.
"""

import logging
from typing import List

from fastapi import (
    APIRouter,
    Depends,
    File,
    Form,
    HTTPException,
    UploadFile,
    status,
)
from fastapi.responses import FileResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.config import get_session
from ..models.scorm import PackageValidationResult, SCORMPackage
from ..repositories.scorm_package_repo import (
    PackageNotFoundError,
    ScormPackageRepository,
)
from ..services.manifest_parser import LaunchResolutionError, ManifestParseError
from ..services.scorm_package import (
    PackageValidationError,
    SCORMPackageService,
    UploadCancelledError,
)
from ..storage.blob_store import (
    BlobNotFoundError,
    BlobPathError,
    BlobStoreError,
    LocalBlobStore,
    get_blob_store,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/scorm", tags=["SCORM Packages"])

# Helpers ------------------------------------------------------------------


async def _get_package_service(
    session: AsyncSession = Depends(get_session),
    blob_store: LocalBlobStore = Depends(get_blob_store),
) -> SCORMPackageService:
    return SCORMPackageService(ScormPackageRepository(session), blob_store)


# Routes -------------------------------------------------------------------


@router.post(
    "/packages/validate",
    response_model=PackageValidationResult,
    response_model_exclude_none=True,
    summary="Validate SCORM Package",
)
async def validate_package(
    file: UploadFile = File(...),
    service: SCORMPackageService = Depends(_get_package_service),
):
    """
    Dry-run validation of a SCORM zip; nothing is stored.

    Always answers 200; ``isValid`` and ``error`` carry the outcome.
    """
    content = await file.read()
    return await service.validate_package(content, filename=file.filename)


@router.post(
    "/packages",
    response_model=SCORMPackage,
    status_code=status.HTTP_201_CREATED,
    summary="Upload SCORM Package",
)
async def upload_package(
    file: UploadFile = File(...),
    courseId: str = Form(..., min_length=1, max_length=128),
    lessonId: str = Form(..., min_length=1, max_length=128),
    uploadedBy: str = Form(..., min_length=1, max_length=128),
    service: SCORMPackageService = Depends(_get_package_service),
):
    """
    Extract a SCORM zip into blob storage and register the package.

    Raises:
        HTTPException: 400 for invalid archives or manifests, 500 when
            storage fails part way (no package record is written)
    """
    content = await file.read()
    logger.info(
        f"SCORM upload: {file.filename} ({len(content)} bytes) "
        f"for course {courseId}, lesson {lessonId}"
    )

    def log_progress(percent: int) -> None:
        logger.debug(f"SCORM upload {file.filename}: {percent}%")

    try:
        return await service.upload_package(
            content,
            course_id=courseId,
            lesson_id=lessonId,
            uploaded_by=uploadedBy,
            on_progress=log_progress,
            filename=file.filename,
        )
    except (PackageValidationError, ManifestParseError, LaunchResolutionError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UploadCancelledError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except BlobStoreError as e:
        logger.error(f"SCORM upload storage failure: {e}", exc_info=True)
        raise HTTPException(
            status_code=500, detail="Failed to store package files"
        )


@router.get("/packages/{package_id}", response_model=SCORMPackage)
async def get_package(
    package_id: str,
    service: SCORMPackageService = Depends(_get_package_service),
):
    package = await service.get_package(package_id)
    if package is None:
        raise HTTPException(status_code=404, detail="SCORM package not found")
    return package


@router.get("/packages/{package_id}/launch", summary="Resolve Launch URL")
async def get_launch_url(
    package_id: str,
    service: SCORMPackageService = Depends(_get_package_service),
):
    try:
        launch_url = await service.get_launch_url(package_id)
    except PackageNotFoundError:
        raise HTTPException(status_code=404, detail="SCORM package not found")
    except BlobNotFoundError:
        logger.warning(f"Launch file missing from storage for {package_id}")
        raise HTTPException(status_code=404, detail="Launch file not found")
    return {"packageId": package_id, "launchUrl": launch_url}


@router.delete(
    "/packages/{package_id}", status_code=status.HTTP_204_NO_CONTENT
)
async def delete_package(
    package_id: str,
    service: SCORMPackageService = Depends(_get_package_service),
):
    try:
        await service.delete_package(package_id)
    except PackageNotFoundError:
        raise HTTPException(status_code=404, detail="SCORM package not found")
    return None


@router.get(
    "/courses/{course_id}/packages", response_model=List[SCORMPackage]
)
async def list_course_packages(
    course_id: str,
    service: SCORMPackageService = Depends(_get_package_service),
):
    return await service.get_packages_by_course(course_id)


@router.get("/lessons/{lesson_id}/package", response_model=SCORMPackage)
async def get_lesson_package(
    lesson_id: str,
    service: SCORMPackageService = Depends(_get_package_service),
):
    package = await service.get_package_by_lesson(lesson_id)
    if package is None:
        raise HTTPException(
            status_code=404, detail="No SCORM package attached to lesson"
        )
    return package


@router.get("/files/{file_path:path}", summary="Serve SCORM Asset")
async def serve_package_file(
    file_path: str,
    blob_store: LocalBlobStore = Depends(get_blob_store),
) -> FileResponse:
    """
    Serve an extracted package asset with its stored content type.

    Raises:
        HTTPException: 403 on path traversal, 404 when the asset is missing
    """
    try:
        resolved_path = blob_store.resolve(file_path)
    except BlobPathError:
        logger.warning(f"Path traversal attempt detected: {file_path}")
        raise HTTPException(status_code=403, detail="Access denied")

    if not resolved_path.is_file():
        raise HTTPException(status_code=404, detail="File not found")

    return FileResponse(
        path=resolved_path,
        media_type=await blob_store.get_content_type(file_path),
        headers={"Cache-Control": "public, max-age=3600"},
    )
