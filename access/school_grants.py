# LibraryGate - tier 2: school owner narrows library grants to users, roles and classes
import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import (
    LibraryResourceAccess,
    LibrarySubject,
    SchoolClass,
    SchoolResourceAccess,
    SchoolResourceExclusion,
    User,
)
from .audit import record_change
from .errors import AccessControlError, BadRequestError, NotFoundError
from .models import (
    GrantUpdateRequest,
    IdentityScope,
    OperationResult,
    RevokeRequest,
    SchoolBulkGrantRequest,
    SchoolGrantRequest,
)
from .policy import bulk_result, is_expired, load_school_owner, service_operation, validate_school_scope

logger = logging.getLogger(__name__)

ENTITY = "SchoolResourceAccess"


def school_grant_to_dict(grant: SchoolResourceAccess) -> dict:
    return {
        "id": grant.id,
        "school_id": grant.school_id,
        "library_resource_access_id": grant.library_resource_access_id,
        "user_id": grant.user_id,
        "role_type": grant.role_type,
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


class SchoolAccessService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _school_grant(self, school_id: str, access_id: str) -> SchoolResourceAccess:
        r = await self.session.execute(
            select(SchoolResourceAccess).where(
                SchoolResourceAccess.id == access_id,
                SchoolResourceAccess.school_id == school_id,
            )
        )
        grant = r.scalar_one_or_none()
        if grant is None:
            raise NotFoundError("Access not found or does not belong to your school")
        return grant

    async def _usable_library_grant(self, school_id: str, access_id: str) -> LibraryResourceAccess:
        r = await self.session.execute(
            select(LibraryResourceAccess).where(
                LibraryResourceAccess.id == access_id,
                LibraryResourceAccess.school_id == school_id,
                LibraryResourceAccess.is_active.is_(True),
            )
        )
        library_grant = r.scalar_one_or_none()
        if library_grant is None:
            raise NotFoundError("Library resource access not found or not available to your school")
        if is_expired(library_grant.expires_at, datetime.utcnow()):
            raise BadRequestError("Library resource access has expired")
        return library_grant

    async def _check_targets(self, school_id: str, user_id: str | None, class_id: str | None) -> None:
        if user_id:
            r = await self.session.execute(
                select(User.id).where(User.id == user_id, User.school_id == school_id)
            )
            if r.scalar_one_or_none() is None:
                raise NotFoundError("User not found in your school")
        if class_id:
            r = await self.session.execute(
                select(SchoolClass.id).where(SchoolClass.id == class_id, SchoolClass.school_id == school_id)
            )
            if r.scalar_one_or_none() is None:
                raise NotFoundError("Class not found in your school")

    async def _write_grant(self, actor: User, library_grant: LibraryResourceAccess,
                           dto: SchoolGrantRequest | SchoolBulkGrantRequest,
                           target: dict) -> tuple[SchoolResourceAccess, bool]:
        """Create the row, or reactivate an inactive one for the same target and scope.

        Returns the grant and whether it was reactivated.
        """
        match = {**target, **dto.scope_fields()}
        r = await self.session.execute(
            select(SchoolResourceAccess).where(
                SchoolResourceAccess.school_id == actor.school_id,
                SchoolResourceAccess.library_resource_access_id == library_grant.id,
                *[getattr(SchoolResourceAccess, k) == v if v is not None
                  else getattr(SchoolResourceAccess, k).is_(None) for k, v in match.items()],
            ).limit(1)
        )
        existing = r.scalar_one_or_none()
        if existing is not None:
            if existing.is_active:
                raise BadRequestError("Similar access grant already exists")
            existing.is_active = True
            existing.access_level = dto.access_level.value
            existing.expires_at = dto.expires_at
            existing.notes = dto.notes
            await self.session.flush()
            return existing, True

        grant = SchoolResourceAccess(
            school_id=actor.school_id,
            library_resource_access_id=library_grant.id,
            access_level=dto.access_level.value,
            granted_by_id=actor.id,
            expires_at=dto.expires_at,
            notes=dto.notes,
            **match,
        )
        self.session.add(grant)
        await self.session.flush()
        return grant, False

    def _record_grant(self, actor: User, grant: SchoolResourceAccess, reactivated: bool,
                      changes: dict) -> None:
        record_change(self.session, entity_type=ENTITY, entity_id=grant.id,
                      action="REACTIVATED" if reactivated else "CREATED",
                      performed_by_id=actor.id, performed_by_role=actor.role, school_id=actor.school_id,
                      changes=changes)

    @service_operation("Failed to grant access")
    async def grant_access(self, identity: IdentityScope, dto: SchoolGrantRequest) -> OperationResult:
        logger.info("[SCHOOL ACCESS] Granting access within school")
        actor = await load_school_owner(self.session, identity, "grant")
        library_grant = await self._usable_library_grant(actor.school_id, dto.library_resource_access_id)

        if not dto.user_id and not dto.role_type and not dto.class_id:
            raise BadRequestError("Must specify at least one of: user_id, role_type, or class_id")
        await self._check_targets(actor.school_id, dto.user_id, dto.class_id)
        validate_school_scope(library_grant, dto)

        target = {"user_id": dto.user_id, "role_type": dto.role_type, "class_id": dto.class_id}
        grant, reactivated = await self._write_grant(actor, library_grant, dto, target)
        if reactivated:
            self._record_grant(actor, grant, True, {"access_level": dto.access_level.value})
            logger.info("Reactivated school access: %s", grant.id)
            return OperationResult(message="Access reactivated successfully", data=school_grant_to_dict(grant))

        self._record_grant(actor, grant, False, {"resource_type": dto.resource_type.value,
                                                 "access_level": dto.access_level.value, **target})
        logger.info("School access granted successfully: %s", grant.id)
        return OperationResult(message="Access granted successfully", data=school_grant_to_dict(grant))

    @service_operation("Failed to grant bulk access")
    async def grant_bulk_access(self, identity: IdentityScope, dto: SchoolBulkGrantRequest) -> OperationResult:
        """Grant one scope to many users and classes; each target succeeds or fails on its own."""
        logger.info("[SCHOOL ACCESS] Bulk granting access to %d users and %d classes",
                    len(dto.user_ids), len(dto.class_ids))
        actor = await load_school_owner(self.session, identity, "grant")
        library_grant = await self._usable_library_grant(actor.school_id, dto.library_resource_access_id)
        validate_school_scope(library_grant, dto)

        targets = [("user_id", user_id) for user_id in dto.user_ids]
        targets += [("class_id", class_id) for class_id in dto.class_ids]
        results = []
        for field, value in targets:
            target = {"user_id": None, "role_type": None, "class_id": None, field: value}
            try:
                async with self.session.begin_nested():
                    await self._check_targets(actor.school_id, target["user_id"], target["class_id"])
                    grant, reactivated = await self._write_grant(actor, library_grant, dto, target)
            except (AccessControlError, SQLAlchemyError) as e:
                logger.warning("Bulk school grant failed for %s %s: %s", field, value, e)
                error = e.detail if isinstance(e, AccessControlError) else str(e)
                results.append({field: value, "status": "failed", "error": error})
                continue
            self._record_grant(actor, grant, reactivated, {"resource_type": dto.resource_type.value,
                                                           "access_level": dto.access_level.value,
                                                           "bulk": True, field: value})
            results.append({field: value, "status": "success", "id": grant.id})

        return bulk_result(results)

    @service_operation("Failed to update access")
    async def update_access(self, identity: IdentityScope, access_id: str,
                            dto: GrantUpdateRequest) -> OperationResult:
        actor = await load_school_owner(self.session, identity, "update")
        grant = await self._school_grant(actor.school_id, access_id)
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
                      performed_by_id=actor.id, performed_by_role=actor.role, school_id=actor.school_id,
                      changes=dto.model_dump(exclude_none=True))
        return OperationResult(message="Access updated successfully", data=school_grant_to_dict(grant))

    @service_operation("Failed to revoke access")
    async def revoke_access(self, identity: IdentityScope, access_id: str,
                            dto: RevokeRequest | None = None) -> OperationResult:
        actor = await load_school_owner(self.session, identity, "revoke")
        grant = await self._school_grant(actor.school_id, access_id)
        grant.is_active = False
        await self.session.flush()
        record_change(self.session, entity_type=ENTITY, entity_id=grant.id, action="REVOKED",
                      performed_by_id=actor.id, performed_by_role=actor.role, school_id=actor.school_id,
                      changes={"reason": dto.reason if dto else None})
        return OperationResult(message="Access revoked successfully", data=school_grant_to_dict(grant))

    @service_operation("Failed to exclude subject")
    async def exclude_subject(self, identity: IdentityScope, subject_id: str) -> OperationResult:
        """Turn a library-granted subject off for everyone in the school except its owners."""
        actor = await load_school_owner(self.session, identity)
        if await self.session.get(LibrarySubject, subject_id) is None:
            raise NotFoundError("Subject not found")
        r = await self.session.execute(
            select(SchoolResourceExclusion).where(
                SchoolResourceExclusion.school_id == actor.school_id,
                SchoolResourceExclusion.subject_id == subject_id,
            )
        )
        existing = r.scalar_one_or_none()
        if existing is not None:
            return OperationResult(message="Subject already excluded", data={"id": existing.id})
        exclusion = SchoolResourceExclusion(
            school_id=actor.school_id, subject_id=subject_id, excluded_by_id=actor.id,
        )
        self.session.add(exclusion)
        await self.session.flush()
        record_change(self.session, entity_type="SchoolResourceExclusion", entity_id=exclusion.id,
                      action="EXCLUDED", performed_by_id=actor.id, performed_by_role=actor.role,
                      school_id=actor.school_id, changes={"subject_id": subject_id})
        return OperationResult(message="Subject excluded successfully", data={"id": exclusion.id})

    @service_operation("Failed to include subject")
    async def include_subject(self, identity: IdentityScope, subject_id: str) -> OperationResult:
        actor = await load_school_owner(self.session, identity)
        r = await self.session.execute(
            select(SchoolResourceExclusion).where(
                SchoolResourceExclusion.school_id == actor.school_id,
                SchoolResourceExclusion.subject_id == subject_id,
            )
        )
        existing = r.scalar_one_or_none()
        if existing is None:
            return OperationResult(message="Subject was not excluded", data=None)
        await self.session.delete(existing)
        await self.session.flush()
        record_change(self.session, entity_type="SchoolResourceExclusion", entity_id=existing.id,
                      action="INCLUDED", performed_by_id=actor.id, performed_by_role=actor.role,
                      school_id=actor.school_id, changes={"subject_id": subject_id})
        return OperationResult(message="Subject included successfully", data={"id": existing.id, "removed": True})
