"""
Pydantic Models for SCORM Packages and Runtime Data

These models describe the manifest tree extracted from ``imsmanifest.xml``,
the package metadata record and the per-learner runtime record. Field names
follow the stored JSON shape (camelCase) so records written by earlier
versions of the platform stay readable.
"""

from datetime import datetime
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

SCORMVersion = Literal["1.2", "2004"]
ScormType = Literal["sco", "asset"]
CompletionStatus = Literal["not attempted", "incomplete", "completed"]
SuccessStatus = Literal["unknown", "passed", "failed"]


class SCORMSequencing(BaseModel):
    """Item sequencing subset (SCORM 2004)"""
    completionThreshold: Optional[float] = Field(
        None, ge=0.0, le=1.0, description="Minimum progress measure"
    )


class SCORMItem(BaseModel):
    """Node of an organization's item tree"""
    identifier: str
    title: str
    resourceIdentifier: Optional[str] = Field(
        None, description="identifierref of the launched resource"
    )
    children: List["SCORMItem"] = Field(default_factory=list)
    sequencing: Optional[SCORMSequencing] = None


SCORMItem.model_rebuild()


class SCORMOrganization(BaseModel):
    identifier: str
    title: str
    items: List[SCORMItem] = Field(default_factory=list)


class SCORMResource(BaseModel):
    identifier: str
    type: str = "webcontent"
    href: Optional[str] = None
    scormType: ScormType = "sco"
    files: List[str] = Field(default_factory=list)
    dependencies: Optional[List[str]] = None


class SCORMMetadata(BaseModel):
    # "schema" collides with a BaseModel attribute, hence the alias
    model_config = ConfigDict(populate_by_name=True)

    schema_: Optional[str] = Field(None, alias="schema")
    schemaVersion: Optional[str] = None


class SCORMManifest(BaseModel):
    """Parsed imsmanifest.xml"""
    identifier: str
    version: Optional[str] = None
    organizations: List[SCORMOrganization] = Field(default_factory=list)
    defaultOrganization: str = ""
    resources: List[SCORMResource] = Field(default_factory=list)
    metadata: Optional[SCORMMetadata] = None

    def to_json(self) -> dict:
        """Serialize in the stored shape (aliases applied, unset optionals dropped)."""
        return self.model_dump(by_alias=True, exclude_none=True)


class ParsedManifest(BaseModel):
    version: SCORMVersion
    manifest: SCORMManifest


class PackageValidationResult(BaseModel):
    isValid: bool
    version: Optional[SCORMVersion] = None
    title: Optional[str] = None
    error: Optional[str] = None


class SCORMPackage(BaseModel):
    """Package metadata record; exists only for fully stored packages"""
    id: str
    courseId: str
    lessonId: str
    version: SCORMVersion
    title: str
    storageBasePath: str
    launchUrl: str
    manifest: SCORMManifest
    packageSize: int = Field(..., ge=0)
    uploadedBy: str
    uploadedAt: int
    createdAt: int
    updatedAt: int


class SCORMRuntimeData(BaseModel):
    """One learner's interaction record for one package"""
    id: str
    userId: str
    packageId: str
    lessonId: str
    courseId: str
    version: SCORMVersion
    cmiData: Dict[str, str] = Field(default_factory=dict)
    sessionTime: int = Field(0, ge=0, description="Last session length (ms)")
    totalTime: int = Field(0, ge=0, description="Accumulated time (ms)")
    completionStatus: CompletionStatus = "not attempted"
    successStatus: SuccessStatus = "unknown"
    scoreRaw: Optional[float] = None
    scoreMin: Optional[float] = None
    scoreMax: Optional[float] = None
    scoreScaled: Optional[float] = None
    suspendData: Optional[str] = None
    location: Optional[str] = None
    attemptCount: int = Field(1, ge=1)
    firstAccessedAt: int
    lastAccessedAt: int
    createdAt: int
    updatedAt: int


# Request DTOs ---------------------------------------------------------------


class RuntimeDataRequest(BaseModel):
    """Body for get-or-create of a runtime record"""
    userId: str = Field(..., min_length=1, max_length=128)
    packageId: str = Field(..., min_length=1, max_length=64)
    lessonId: str = Field(..., min_length=1, max_length=128)
    courseId: str = Field(..., min_length=1, max_length=128)
    version: SCORMVersion


class CMICommitRequest(BaseModel):
    """CMI values pushed by the content runtime on commit/finish"""
    cmiData: Dict[str, Union[str, int, float]] = Field(default_factory=dict)
    sessionTime: Optional[int] = Field(
        None, ge=0, description="Session length in ms; parsed from CMI if absent"
    )
    finish: bool = False


class HealthCheckResponse(BaseModel):
    """Health check response model"""
    status: str = Field(..., description="Service status")
    version: str = Field(..., description="Application version")
    environment: str = Field(..., description="Current environment")
    timestamp: datetime = Field(default_factory=datetime.utcnow, description="Check timestamp")
    uptime: Optional[float] = Field(None, description="Uptime in seconds")
