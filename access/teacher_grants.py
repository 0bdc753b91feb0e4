# LibraryGate - tier 3: teachers restrict school grants to students and classes
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import (
    Role,
    SchoolClass,
    SchoolResourceAccess,
    TeacherResourceAccess,
    TeacherResourceExclusion,
    User,
)
from .audit import record_change
from .errors import AccessControlError, BadRequestError, NotFoundError
from .models import (
    GrantUpdateRequest,
    IdentityScope,
    OperationResult,
    RevokeRequest,
    TeacherBulkGrantRequest,
    TeacherExcludeRequest,
    TeacherGrantRequest,
)
from .policy import bulk_result, load_teacher, service_operation
from .resources import validate_resource_belongs_to_subject

logger = logging.getLogger(__name__)

ENTITY = "TeacherResourceAccess"


def teacher_grant_to_dict(grant: TeacherResourceAccess) -> dict:
    return {
        "id": grant.id,
        "teacher_id": grant.teacher_id,
        "school_id": grant.school_id,
        "school_resource_access_id": grant.school_resource_access_id,
        "student_id": grant.student_id,
        "class_id": grant.class_id,
        "resource_type": grant.resource_type,
        "subject_id": grant.subject_id,
        "topic_id": grant.topic_id,
        "video_id": grant.video_id,
        "material_id": grant.material_id,
        "assessment_id": grant.assessment_id,
        "access_level": grant.access_level,
        "is_active": grant.is_active,
        "expires_at": grant.expires_at,
    }


def exclusion_to_dict(row: TeacherResourceExclusion) -> dict:
    return {
        "id": row.id,
        "teacher_id": row.teacher_id,
        "subject_id": row.subject_id,
        "resource_type": row.resource_type,
        "resource_id": row.resource_id,
        "class_id": row.class_id,
        "library_class_id": row.library_class_id,
        "student_id": row.student_id,
    }


class TeacherAccessService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _check_class(self, school_id: str, class_id: str) -> None:
        r = await self.session.execute(
            select(SchoolClass.id).where(SchoolClass.id == class_id, SchoolClass.school_id == school_id)
        )
        if r.scalar_one_or_none() is None:
            raise NotFoundError("Class not found in your school")

    async def _check_student(self, school_id: str, student_id: str) -> None:
        r = await self.session.execute(
            select(User.id).where(
                User.id == student_id,
                User.school_id == school_id,
                User.role == Role.student.value,
            )
        )
        if r.scalar_one_or_none() is None:
            raise NotFoundError("Student not found in your school")

    async def _usable_school_grant(self, school_id: str, access_id: str) -> SchoolResourceAccess:
        r = await self.session.execute(
            select(SchoolResourceAccess).where(
                SchoolResourceAccess.id == access_id,
                SchoolResourceAccess.school_id == school_id,
                SchoolResourceAccess.is_active.is_(True),
            )
        )
        school_grant = r.scalar_one_or_none()
        if school_grant is None:
            raise NotFoundError("School resource access not found or not available")
        return school_grant

    async def _own_grant(self, teacher: User, access_id: str) -> TeacherResourceAccess:
        r = await self.session.execute(
            select(TeacherResourceAccess).where(
                TeacherResourceAccess.id == access_id,
                TeacherResourceAccess.teacher_id == teacher.id,
                TeacherResourceAccess.school_id == teacher.school_id,
            )
        )
        grant = r.scalar_one_or_none()
        if grant is None:
            raise NotFoundError("Access not found or does not belong to you")
        return grant

    async def _write_grant(self, teacher: User, school_grant: SchoolResourceAccess,
                           dto: TeacherGrantRequest | TeacherBulkGrantRequest,
                           student_id: str | None, class_id: str | None) -> TeacherResourceAccess:
        r = await self.session.execute(
            select(TeacherResourceAccess.id).where(
                TeacherResourceAccess.teacher_id == teacher.id,
                TeacherResourceAccess.school_resource_access_id == school_grant.id,
                TeacherResourceAccess.is_active.is_(True),
                TeacherResourceAccess.student_id == student_id if student_id
                else TeacherResourceAccess.student_id.is_(None),
                TeacherResourceAccess.class_id == class_id if class_id
                else TeacherResourceAccess.class_id.is_(None),
            ).limit(1)
        )
        if r.scalar_one_or_none() is not None:
            raise BadRequestError("Access already granted")

        grant = TeacherResourceAccess(
            teacher_id=teacher.id,
            school_id=teacher.school_id,
            school_resource_access_id=school_grant.id,
            student_id=student_id,
            class_id=class_id,
            access_level=dto.access_level.value,
            expires_at=dto.expires_at,
            notes=dto.notes,
            **dto.scope_fields(),
        )
        self.session.add(grant)
        await self.session.flush()
        return grant

    @service_operation("Failed to grant access")
    async def grant_access(self, identity: IdentityScope, dto: TeacherGrantRequest) -> OperationResult:
        logger.info("[TEACHER ACCESS] Granting access to students")
        teacher = await load_teacher(self.session, identity, "Only teachers can grant student access")

        if not dto.student_id and not dto.class_id:
            raise BadRequestError("Must specify either student_id or class_id")
        school_grant = await self._usable_school_grant(teacher.school_id, dto.school_resource_access_id)
        if dto.student_id:
            await self._check_student(teacher.school_id, dto.student_id)
        if dto.class_id:
            await self._check_class(teacher.school_id, dto.class_id)

        grant = await self._write_grant(teacher, school_grant, dto, dto.student_id, dto.class_id)
        record_change(self.session, entity_type=ENTITY, entity_id=grant.id, action="CREATED",
                      performed_by_id=teacher.id, performed_by_role=teacher.role, school_id=teacher.school_id,
                      changes={"student_id": dto.student_id, "class_id": dto.class_id,
                               "access_level": dto.access_level.value})
        logger.info("Teacher access granted: %s", grant.id)
        return OperationResult(message="Access granted successfully", data=teacher_grant_to_dict(grant))

    @service_operation("Failed to grant bulk access")
    async def grant_bulk_access(self, identity: IdentityScope, dto: TeacherBulkGrantRequest) -> OperationResult:
        logger.info("[TEACHER ACCESS] Bulk granting access to %d students and %d classes",
                    len(dto.student_ids), len(dto.class_ids))
        teacher = await load_teacher(self.session, identity, "Only teachers can grant student access")
        school_grant = await self._usable_school_grant(teacher.school_id, dto.school_resource_access_id)

        targets = [("student_id", student_id) for student_id in dto.student_ids]
        targets += [("class_id", class_id) for class_id in dto.class_ids]
        results = []
        for field, value in targets:
            student_id = value if field == "student_id" else None
            class_id = value if field == "class_id" else None
            try:
                async with self.session.begin_nested():
                    if student_id:
                        await self._check_student(teacher.school_id, student_id)
                    else:
                        await self._check_class(teacher.school_id, class_id)
                    grant = await self._write_grant(teacher, school_grant, dto, student_id, class_id)
            except (AccessControlError, SQLAlchemyError) as e:
                logger.warning("Bulk teacher grant failed for %s %s: %s", field, value, e)
                error = e.detail if isinstance(e, AccessControlError) else str(e)
                results.append({field: value, "status": "failed", "error": error})
                continue
            record_change(self.session, entity_type=ENTITY, entity_id=grant.id, action="CREATED",
                          performed_by_id=teacher.id, performed_by_role=teacher.role, school_id=teacher.school_id,
                          changes={field: value, "access_level": dto.access_level.value, "bulk": True})
            results.append({field: value, "status": "success", "id": grant.id})

        return bulk_result(results)

    @service_operation("Failed to update access")
    async def update_access(self, identity: IdentityScope, access_id: str,
                            dto: GrantUpdateRequest) -> OperationResult:
        logger.info("[TEACHER ACCESS] Updating access grant: %s", access_id)
        teacher = await load_teacher(self.session, identity, "Only teachers can update student access")
        grant = await self._own_grant(teacher, access_id)
        if dto.access_level is not None:
            grant.access_level = dto.access_level.value
        if dto.expires_at is not None:
            grant.expires_at = dto.expires_at
        if dto.is_active is not None:
            grant.is_active = dto.is_active
        if dto.notes is not None:
            grant.notes = dto.notes
        await self.session.flush()
        record_change(self.session, entity_type=ENTITY, entity_id=grant.id, action="UPDATED",
                      performed_by_id=teacher.id, performed_by_role=teacher.role, school_id=teacher.school_id,
                      changes=dto.model_dump(exclude_none=True))
        return OperationResult(message="Access updated successfully", data=teacher_grant_to_dict(grant))

    @service_operation("Failed to revoke access")
    async def revoke_access(self, identity: IdentityScope, access_id: str,
                            dto: RevokeRequest | None = None) -> OperationResult:
        """Soft delete: the row stays for the audit trail but no longer restricts or grants."""
        logger.info("[TEACHER ACCESS] Revoking access grant: %s", access_id)
        teacher = await load_teacher(self.session, identity, "Only teachers can revoke student access")
        grant = await self._own_grant(teacher, access_id)
        reason = dto.reason if dto else None
        grant.is_active = False
        grant.notes = f"REVOKED: {reason}" if reason else "REVOKED"
        await self.session.flush()
        record_change(self.session, entity_type=ENTITY, entity_id=grant.id, action="REVOKED",
                      performed_by_id=teacher.id, performed_by_role=teacher.role, school_id=teacher.school_id,
                      changes={"reason": reason})
        return OperationResult(message="Access revoked successfully", data=teacher_grant_to_dict(grant))

    def _exclusion_filter(self, teacher: User, dto: TeacherExcludeRequest, resource_id: str) -> list:
        clauses = [
            TeacherResourceExclusion.teacher_id == teacher.id,
            TeacherResourceExclusion.subject_id == dto.subject_id,
            TeacherResourceExclusion.resource_type == dto.resource_type.value,
            TeacherResourceExclusion.resource_id == resource_id,
        ]
        for field in ("class_id", "library_class_id", "student_id"):
            value = getattr(dto, field)
            column = getattr(TeacherResourceExclusion, field)
            clauses.append(column == value if value is not None else column.is_(None))
        return clauses

    async def _exclusion_target(self, teacher: User, dto: TeacherExcludeRequest) -> str:
        if not dto.class_id and not dto.library_class_id and not dto.student_id:
            raise BadRequestError("Must specify class_id, library_class_id or student_id")
        resource_id = dto.resource_id()
        if not resource_id:
            raise BadRequestError(f"Resource id is required for {dto.resource_type.value} resource type")
        if dto.class_id:
            await self._check_class(teacher.school_id, dto.class_id)
        return resource_id

    @service_operation("Failed to exclude resource")
    async def exclude_resource(self, identity: IdentityScope, dto: TeacherExcludeRequest) -> OperationResult:
        """Hide one topic/video/material/assessment from a class or a single student."""
        teacher = await load_teacher(self.session, identity, "Only teachers can exclude resources")
        resource_id = await self._exclusion_target(teacher, dto)
        await validate_resource_belongs_to_subject(self.session, dto.subject_id, dto.resource_type, resource_id)

        r = await self.session.execute(
            select(TeacherResourceExclusion).where(*self._exclusion_filter(teacher, dto, resource_id)).limit(1)
        )
        existing = r.scalar_one_or_none()
        if existing is not None:
            return OperationResult(message="Resource already excluded", data=exclusion_to_dict(existing))

        row = TeacherResourceExclusion(
            teacher_id=teacher.id,
            school_id=teacher.school_id,
            subject_id=dto.subject_id,
            resource_type=dto.resource_type.value,
            resource_id=resource_id,
            class_id=dto.class_id,
            library_class_id=dto.library_class_id,
            student_id=dto.student_id,
        )
        self.session.add(row)
        await self.session.flush()
        record_change(self.session, entity_type="TeacherResourceExclusion", entity_id=row.id, action="EXCLUDED",
                      performed_by_id=teacher.id, performed_by_role=teacher.role, school_id=teacher.school_id,
                      changes={"resource_type": dto.resource_type.value, "resource_id": resource_id})
        logger.info("Teacher excluded %s %s", dto.resource_type.value, resource_id)
        return OperationResult(message="Resource excluded successfully", data=exclusion_to_dict(row))

    @service_operation("Failed to include resource")
    async def include_resource(self, identity: IdentityScope, dto: TeacherExcludeRequest) -> OperationResult:
        teacher = await load_teacher(self.session, identity, "Only teachers can include resources")
        resource_id = await self._exclusion_target(teacher, dto)
        r = await self.session.execute(
            select(TeacherResourceExclusion).where(*self._exclusion_filter(teacher, dto, resource_id))
        )
        rows = r.scalars().all()
        if not rows:
            return OperationResult(message="Resource was not excluded", data=None)
        for row in rows:
            await self.session.delete(row)
        await self.session.flush()
        record_change(self.session, entity_type="TeacherResourceExclusion", entity_id=rows[0].id,
                      action="INCLUDED", performed_by_id=teacher.id, performed_by_role=teacher.role,
                      school_id=teacher.school_id,
                      changes={"resource_type": dto.resource_type.value, "resource_id": resource_id})
        return OperationResult(message="Resource included successfully", data={"removed": len(rows)})
