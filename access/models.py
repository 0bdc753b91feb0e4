# LibraryGate - access-control protocol objects
from datetime import datetime
from typing import Any
from pydantic import BaseModel, Field, model_validator

from database.models import AccessLevel, ResourceType, RESOURCE_ID_FIELDS


# --- Identity Scope ---
class IdentityScope(BaseModel):
    """Who is making the request: user_id, role, school, session context."""
    user_id: str = Field(..., description="Unique user identifier")
    role: str = Field(..., description="school_director | school_admin | teacher | student | library_owner")
    school_id: str | None = Field(default=None, description="School the user belongs to")
    session_id: str | None = Field(default=None, description="Session for traceability")


# --- Resolution results ---
class AccessCheckResult(BaseModel):
    """Outcome of one access check. Computed per call, never persisted."""
    has_access: bool
    access_level: str | None = None
    reason: str | None = None
    grant_path: list[str] | None = None


class ExcludedIds(BaseModel):
    topic_ids: list[str] = Field(default_factory=list)
    video_ids: list[str] = Field(default_factory=list)
    material_ids: list[str] = Field(default_factory=list)
    assessment_ids: list[str] = Field(default_factory=list)


class ResourceRef(BaseModel):
    resource_type: ResourceType
    resource_id: str


# --- Grant-management requests ---
class ResourceScope(BaseModel):
    resource_type: ResourceType
    subject_id: str | None = None
    topic_id: str | None = None
    video_id: str | None = None
    material_id: str | None = None
    assessment_id: str | None = None

    def resource_id(self) -> str | None:
        """Id carried for the scope's own kind; None for ALL."""
        field = RESOURCE_ID_FIELDS.get(self.resource_type)
        return getattr(self, field) if field else None

    def scope_fields(self) -> dict[str, str | None]:
        return {
            "resource_type": self.resource_type.value,
            "subject_id": self.subject_id,
            "topic_id": self.topic_id,
            "video_id": self.video_id,
            "material_id": self.material_id,
            "assessment_id": self.assessment_id,
        }


class LibraryGrantRequest(ResourceScope):
    school_id: str
    access_level: AccessLevel = AccessLevel.FULL
    expires_at: datetime | None = None
    notes: str | None = None


class LibraryBulkGrantRequest(ResourceScope):
    school_ids: list[str] = Field(..., min_length=1)
    access_level: AccessLevel = AccessLevel.FULL
    expires_at: datetime | None = None
    notes: str | None = None


class GrantUpdateRequest(BaseModel):
    access_level: AccessLevel | None = None
    expires_at: datetime | None = None
    is_active: bool | None = None
    notes: str | None = None


class RevokeRequest(BaseModel):
    reason: str | None = None


class LibraryExcludeRequest(ResourceScope):
    school_id: str

    @model_validator(mode="after")
    def _child_kind_only(self):
        if self.resource_type in (ResourceType.ALL, ResourceType.SUBJECT):
            raise ValueError("Only TOPIC, VIDEO, MATERIAL or ASSESSMENT can be turned off")
        return self


class SchoolGrantRequest(ResourceScope):
    library_resource_access_id: str
    user_id: str | None = None
    role_type: str | None = None
    class_id: str | None = None
    access_level: AccessLevel = AccessLevel.READ_ONLY
    expires_at: datetime | None = None
    notes: str | None = None


class SchoolBulkGrantRequest(ResourceScope):
    library_resource_access_id: str
    user_ids: list[str] = Field(default_factory=list)
    class_ids: list[str] = Field(default_factory=list)
    access_level: AccessLevel = AccessLevel.READ_ONLY
    expires_at: datetime | None = None
    notes: str | None = None

    @model_validator(mode="after")
    def _has_targets(self):
        if not self.user_ids and not self.class_ids:
            raise ValueError("Must specify at least one of: user_ids or class_ids")
        return self


class SubjectExclusionRequest(BaseModel):
    subject_id: str


class TeacherGrantRequest(ResourceScope):
    school_resource_access_id: str
    student_id: str | None = None
    class_id: str | None = None
    access_level: AccessLevel = AccessLevel.READ_ONLY
    expires_at: datetime | None = None
    notes: str | None = None


class TeacherBulkGrantRequest(ResourceScope):
    school_resource_access_id: str
    student_ids: list[str] = Field(default_factory=list)
    class_ids: list[str] = Field(default_factory=list)
    access_level: AccessLevel = AccessLevel.READ_ONLY
    expires_at: datetime | None = None
    notes: str | None = None

    @model_validator(mode="after")
    def _has_targets(self):
        if not self.student_ids and not self.class_ids:
            raise ValueError("Must specify at least one of: student_ids or class_ids")
        return self


class TeacherExcludeRequest(ResourceScope):
    subject_id: str
    class_id: str | None = None
    library_class_id: str | None = None
    student_id: str | None = None


# --- Service responses ---
class OperationResult(BaseModel):
    success: bool = True
    message: str
    data: Any = None


# --- Audit log entry ---
class AuditLogEntry(BaseModel):
    trace_id: str
    entity_type: str
    entity_id: str
    action: str
    performed_by_id: str
    performed_by_role: str
    platform_id: str | None = None
    school_id: str | None = None
    changes: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=datetime.utcnow)
