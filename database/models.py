# LibraryGate - database models (content catalogue + grant store)
import uuid
from datetime import datetime
from sqlalchemy import (
    Column, String, ForeignKey, DateTime, Text, Boolean, JSON, UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship, declarative_base
import enum


Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


class Role(str, enum.Enum):
    school_director = "school_director"
    school_admin = "school_admin"
    teacher = "teacher"
    student = "student"
    library_owner = "library_owner"


SCHOOL_OWNER_ROLES = (Role.school_director.value, Role.school_admin.value)


class ResourceType(str, enum.Enum):
    ALL = "ALL"
    SUBJECT = "SUBJECT"
    TOPIC = "TOPIC"
    VIDEO = "VIDEO"
    MATERIAL = "MATERIAL"
    ASSESSMENT = "ASSESSMENT"


class AccessLevel(str, enum.Enum):
    FULL = "FULL"
    READ_ONLY = "READ_ONLY"
    LIMITED = "LIMITED"


# Column on a grant row that carries the id for each scope
RESOURCE_ID_FIELDS = {
    ResourceType.SUBJECT: "subject_id",
    ResourceType.TOPIC: "topic_id",
    ResourceType.VIDEO: "video_id",
    ResourceType.MATERIAL: "material_id",
    ResourceType.ASSESSMENT: "assessment_id",
}


# --- Tenants and people ---

class School(Base):
    __tablename__ = "schools"
    id = Column(String(36), primary_key=True, default=_uuid)
    school_name = Column(String(256), nullable=False)
    status = Column(String(20), nullable=False, default="pending")  # pending | approved | rejected
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<School(id={self.id}, name={self.school_name}, status={self.status})>"


class SchoolClass(Base):
    __tablename__ = "school_classes"
    id = Column(String(36), primary_key=True, default=_uuid)
    school_id = Column(String(36), ForeignKey("schools.id"), nullable=False, index=True)
    name = Column(String(128), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)

    school = relationship("School", backref="classes")


class Platform(Base):
    __tablename__ = "platforms"
    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(256), nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class User(Base):
    __tablename__ = "users"
    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(256), unique=True, nullable=False, index=True)
    password_hash = Column(String(256), nullable=False)
    role = Column(String(32), nullable=False)
    full_name = Column(String(128), nullable=True)
    school_id = Column(String(36), ForeignKey("schools.id"), nullable=True, index=True)
    platform_id = Column(String(36), ForeignKey("platforms.id"), nullable=True)  # library owners only
    current_class_id = Column(String(36), ForeignKey("school_classes.id"), nullable=True)  # students only
    created_at = Column(DateTime, default=datetime.utcnow)

    def __repr__(self):
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"


# --- Library content catalogue ---

class LibraryClass(Base):
    __tablename__ = "library_classes"
    id = Column(String(36), primary_key=True, default=_uuid)
    platform_id = Column(String(36), ForeignKey("platforms.id"), nullable=False)
    name = Column(String(128), nullable=False)


class LibrarySubject(Base):
    __tablename__ = "library_subjects"
    id = Column(String(36), primary_key=True, default=_uuid)
    platform_id = Column(String(36), ForeignKey("platforms.id"), nullable=False, index=True)
    class_id = Column(String(36), ForeignKey("library_classes.id"), nullable=True)
    name = Column(String(256), nullable=False)
    code = Column(String(32), nullable=True)


class LibraryTopic(Base):
    __tablename__ = "library_topics"
    id = Column(String(36), primary_key=True, default=_uuid)
    platform_id = Column(String(36), ForeignKey("platforms.id"), nullable=False)
    subject_id = Column(String(36), ForeignKey("library_subjects.id"), nullable=False, index=True)
    title = Column(String(256), nullable=False)


class LibraryVideoLesson(Base):
    __tablename__ = "library_video_lessons"
    id = Column(String(36), primary_key=True, default=_uuid)
    platform_id = Column(String(36), ForeignKey("platforms.id"), nullable=False)
    subject_id = Column(String(36), ForeignKey("library_subjects.id"), nullable=False, index=True)
    topic_id = Column(String(36), ForeignKey("library_topics.id"), nullable=True)
    title = Column(String(256), nullable=False)
    status = Column(String(20), nullable=False, default="draft")  # draft | published


class LibraryMaterial(Base):
    __tablename__ = "library_materials"
    id = Column(String(36), primary_key=True, default=_uuid)
    platform_id = Column(String(36), ForeignKey("platforms.id"), nullable=False)
    subject_id = Column(String(36), ForeignKey("library_subjects.id"), nullable=False, index=True)
    topic_id = Column(String(36), ForeignKey("library_topics.id"), nullable=True)
    title = Column(String(256), nullable=False)


class LibraryAssessment(Base):
    __tablename__ = "library_assessments"
    id = Column(String(36), primary_key=True, default=_uuid)
    platform_id = Column(String(36), ForeignKey("platforms.id"), nullable=False)
    subject_id = Column(String(36), ForeignKey("library_subjects.id"), nullable=False, index=True)
    topic_id = Column(String(36), ForeignKey("library_topics.id"), nullable=True)
    title = Column(String(256), nullable=False)


# Content table per resource kind; used for id validation and parent-subject joins
CONTENT_MODELS = {
    ResourceType.SUBJECT: LibrarySubject,
    ResourceType.TOPIC: LibraryTopic,
    ResourceType.VIDEO: LibraryVideoLesson,
    ResourceType.MATERIAL: LibraryMaterial,
    ResourceType.ASSESSMENT: LibraryAssessment,
}


# --- Grant store ---

class _ScopedGrant:
    """Columns shared by every tier's grant rows."""
    resource_type = Column(String(20), nullable=False)
    subject_id = Column(String(36), nullable=True)
    topic_id = Column(String(36), nullable=True)
    video_id = Column(String(36), nullable=True)
    material_id = Column(String(36), nullable=True)
    assessment_id = Column(String(36), nullable=True)
    access_level = Column(String(20), nullable=False, default=AccessLevel.FULL.value)
    is_active = Column(Boolean, nullable=False, default=True)
    expires_at = Column(DateTime, nullable=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class LibraryResourceAccess(_ScopedGrant, Base):
    """Tier 1: library owner -> school. An inactive row on a child kind is a "turned off" marker."""
    __tablename__ = "library_resource_access"
    id = Column(String(36), primary_key=True, default=_uuid)
    platform_id = Column(String(36), ForeignKey("platforms.id"), nullable=False)
    school_id = Column(String(36), ForeignKey("schools.id"), nullable=False)
    granted_by_id = Column(String(36), nullable=True)

    school = relationship("School")

    __table_args__ = (
        Index("ix_library_access_school_type", "school_id", "resource_type"),
    )


class SchoolResourceAccess(_ScopedGrant, Base):
    """Tier 2: school owner -> user / role / class, narrowing a tier-1 grant."""
    __tablename__ = "school_resource_access"
    id = Column(String(36), primary_key=True, default=_uuid)
    school_id = Column(String(36), ForeignKey("schools.id"), nullable=False)
    library_resource_access_id = Column(
        String(36), ForeignKey("library_resource_access.id"), nullable=False, index=True
    )
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    role_type = Column(String(32), nullable=True)
    class_id = Column(String(36), ForeignKey("school_classes.id"), nullable=True)
    granted_by_id = Column(String(36), nullable=True)

    library_resource_access = relationship("LibraryResourceAccess")


class TeacherResourceAccess(_ScopedGrant, Base):
    """Tier 3: teacher -> student / class, restricting a tier-2 grant."""
    __tablename__ = "teacher_resource_access"
    id = Column(String(36), primary_key=True, default=_uuid)
    teacher_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    school_id = Column(String(36), ForeignKey("schools.id"), nullable=False)
    school_resource_access_id = Column(
        String(36), ForeignKey("school_resource_access.id"), nullable=False, index=True
    )
    student_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    class_id = Column(String(36), ForeignKey("school_classes.id"), nullable=True)


class TeacherResourceExclusion(Base):
    __tablename__ = "teacher_resource_exclusions"
    id = Column(String(36), primary_key=True, default=_uuid)
    teacher_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    school_id = Column(String(36), ForeignKey("schools.id"), nullable=False, index=True)
    subject_id = Column(String(36), ForeignKey("library_subjects.id"), nullable=False)
    resource_type = Column(String(20), nullable=False)
    resource_id = Column(String(36), nullable=False)
    library_class_id = Column(String(36), ForeignKey("library_classes.id"), nullable=True)
    class_id = Column(String(36), ForeignKey("school_classes.id"), nullable=True)
    student_id = Column(String(36), ForeignKey("users.id"), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class SchoolResourceExclusion(Base):
    __tablename__ = "school_resource_exclusions"
    id = Column(String(36), primary_key=True, default=_uuid)
    school_id = Column(String(36), ForeignKey("schools.id"), nullable=False)
    subject_id = Column(String(36), ForeignKey("library_subjects.id"), nullable=False)
    excluded_by_id = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)

    __table_args__ = (UniqueConstraint("school_id", "subject_id", name="uq_school_subject_exclusion"),)


class AccessControlAuditLog(Base):
    __tablename__ = "access_control_audit_log"
    id = Column(String(36), primary_key=True, default=_uuid)
    entity_type = Column(String(64), nullable=False)
    entity_id = Column(String(36), nullable=False)
    action = Column(String(32), nullable=False)  # CREATED | UPDATED | REVOKED | REACTIVATED | EXCLUDED | INCLUDED
    performed_by_id = Column(String(36), nullable=False)
    performed_by_role = Column(String(32), nullable=False)
    platform_id = Column(String(36), nullable=True)
    school_id = Column(String(36), nullable=True)
    changes = Column(JSON, default=dict)
    created_at = Column(DateTime, default=datetime.utcnow)
