# LibraryGate - three-tier access-control resolution
from .models import (
    IdentityScope,
    AccessCheckResult,
    ExcludedIds,
    ResourceRef,
    AuditLogEntry,
    OperationResult,
)
from .errors import AccessControlError, BadRequestError, ForbiddenError, NotFoundError
from .gates import Allow, Deny, Continue, GateContext, DEFAULT_GATES, determine_access_level
from .exclusions import ExclusionSet, LibraryExclusionSet, SchoolExclusionSet, TeacherExclusionSet
from .resolver import AccessControlResolver, resolve_effective
from .library_grants import LibraryAccessService
from .school_grants import SchoolAccessService
from .teacher_grants import TeacherAccessService

__all__ = [
    "IdentityScope",
    "AccessCheckResult",
    "ExcludedIds",
    "ResourceRef",
    "AuditLogEntry",
    "OperationResult",
    "AccessControlError",
    "BadRequestError",
    "ForbiddenError",
    "NotFoundError",
    "Allow",
    "Deny",
    "Continue",
    "GateContext",
    "DEFAULT_GATES",
    "determine_access_level",
    "ExclusionSet",
    "LibraryExclusionSet",
    "SchoolExclusionSet",
    "TeacherExclusionSet",
    "AccessControlResolver",
    "resolve_effective",
    "LibraryAccessService",
    "SchoolAccessService",
    "TeacherAccessService",
]
