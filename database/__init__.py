# LibraryGate database
from .models import (
    Base,
    Role,
    ResourceType,
    AccessLevel,
    School,
    SchoolClass,
    Platform,
    User,
    LibraryClass,
    LibrarySubject,
    LibraryTopic,
    LibraryVideoLesson,
    LibraryMaterial,
    LibraryAssessment,
    LibraryResourceAccess,
    SchoolResourceAccess,
    TeacherResourceAccess,
    TeacherResourceExclusion,
    SchoolResourceExclusion,
    AccessControlAuditLog,
)
from .database import get_db, init_db

__all__ = [
    "Base",
    "Role",
    "ResourceType",
    "AccessLevel",
    "School",
    "SchoolClass",
    "Platform",
    "User",
    "LibraryClass",
    "LibrarySubject",
    "LibraryTopic",
    "LibraryVideoLesson",
    "LibraryMaterial",
    "LibraryAssessment",
    "LibraryResourceAccess",
    "SchoolResourceAccess",
    "TeacherResourceAccess",
    "TeacherResourceExclusion",
    "SchoolResourceExclusion",
    "AccessControlAuditLog",
    "get_db",
    "init_db",
]
