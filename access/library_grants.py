# LibraryGate - tier 1: library owner grants schools access to content
import logging

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import AccessLevel, LibraryResourceAccess, School
from .audit import record_change
from .errors import BadRequestError, NotFoundError
from .models import (
    GrantUpdateRequest,
    IdentityScope,
    LibraryBulkGrantRequest,
    LibraryExcludeRequest,
    LibraryGrantRequest,
    OperationResult,
    RevokeRequest,
)
from .policy import bulk_result, load_library_owner, service_operation
from .resources import validate_resource_ids

logger = logging.getLogger(__name__)

ENTITY = "LibraryResourceAccess"
EXCLUDED_NOTE = "Excluded (turned off) by library owner"


def grant_to_dict(grant: LibraryResourceAccess) -> dict:
    return {
        "id": grant.id,
        "platform_id": grant.platform_id,
        "school_id": grant.school_id,
        "resource_type": grant.resource_type,
        "subject_id": grant.subject_id,
        "topic_id": grant.topic_id,
        "video_id": grant.video_id,
        "material_id": grant.material_id,
        "assessment_id": grant.assessment_id,
        "access_level": grant.access_level,
        "is_active": grant.is_active,
        "expires_at": grant.expires_at,
        "notes": grant.notes,
    }


class LibraryAccessService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def _find_same_scope(self, platform_id: str, school_id: str, scope: dict):
        r = await self.session.execute(
            select(LibraryResourceAccess).where(
                LibraryResourceAccess.platform_id == platform_id,
                LibraryResourceAccess.school_id == school_id,
                *[getattr(LibraryResourceAccess, k) == v if v is not None
                  else getattr(LibraryResourceAccess, k).is_(None) for k, v in scope.items()],
            ).limit(1)
        )
        return r.scalar_one_or_none()

    async def _owned_grant(self, platform_id: str, access_id: str) -> LibraryResourceAccess:
        r = await self.session.execute(
            select(LibraryResourceAccess).where(
                LibraryResourceAccess.id == access_id,
                LibraryResourceAccess.platform_id == platform_id,
            )
        )
        grant = r.scalar_one_or_none()
        if grant is None:
            raise NotFoundError("Access grant not found or does not belong to your platform")
        return grant

    @service_operation("Failed to grant access")
    async def grant_access(self, identity: IdentityScope, dto: LibraryGrantRequest) -> OperationResult:
        logger.info("[LIBRARY ACCESS] Granting access to school: %s", dto.school_id)
        owner = await load_library_owner(self.session, identity)

        school = await self.session.get(School, dto.school_id)
        if school is None:
            raise NotFoundError(f"School with ID {dto.school_id} not found")
        if school.status != "approved":
            raise BadRequestError(f"Cannot grant access to non-approved school: {school.school_name}")

        await validate_resource_ids(self.session, owner.platform_id, dto)

        existing = await self._find_same_scope(owner.platform_id, dto.school_id, dto.scope_fields())
        if existing is not None:
            if existing.is_active:
                raise BadRequestError("Access grant already exists for this resource")
            existing.is_active = True
            existing.access_level = dto.access_level.value
            existing.expires_at = dto.expires_at
            existing.notes = dto.notes
            await self.session.flush()
            record_change(self.session, entity_type=ENTITY, entity_id=existing.id, action="REACTIVATED",
                          performed_by_id=owner.id, performed_by_role=owner.role,
                          platform_id=owner.platform_id, school_id=dto.school_id,
                          changes={"access_level": dto.access_level.value, "expires_at": dto.expires_at})
            logger.info("Reactivated access grant: %s", existing.id)
            return OperationResult(message="Access reactivated successfully", data=grant_to_dict(existing))

        grant = LibraryResourceAccess(
            platform_id=owner.platform_id,
            school_id=dto.school_id,
            access_level=dto.access_level.value,
            granted_by_id=owner.id,
            expires_at=dto.expires_at,
            notes=dto.notes,
            **dto.scope_fields(),
        )
        self.session.add(grant)
        await self.session.flush()
        record_change(self.session, entity_type=ENTITY, entity_id=grant.id, action="CREATED",
                      performed_by_id=owner.id, performed_by_role=owner.role,
                      platform_id=owner.platform_id, school_id=dto.school_id,
                      changes={"resource_type": dto.resource_type.value,
                               "access_level": dto.access_level.value,
                               "expires_at": dto.expires_at})
        logger.info("Access granted successfully: %s", grant.id)
        return OperationResult(message="Access granted successfully", data=grant_to_dict(grant))

    @service_operation("Failed to grant bulk access")
    async def grant_bulk_access(self, identity: IdentityScope, dto: LibraryBulkGrantRequest) -> OperationResult:
        logger.info("[LIBRARY ACCESS] Bulk granting access to %d schools", len(dto.school_ids))
        owner = await load_library_owner(self.session, identity)
        await validate_resource_ids(self.session, owner.platform_id, dto)

        r = await self.session.execute(
            select(School.id).where(School.id.in_(dto.school_ids), School.status == "approved")
        )
        found = set(r.scalars().all())
        missing = [sid for sid in dto.school_ids if sid not in found]
        if missing:
            raise BadRequestError(f"Some schools not found or inactive: {', '.join(missing)}")

        results = []
        for school_id in dto.school_ids:
            try:
                async with self.session.begin_nested():
                    existing = await self._find_same_scope(owner.platform_id, school_id, dto.scope_fields())
                    if existing is not None:
                        existing.is_active = True
                        existing.access_level = dto.access_level.value
                        existing.expires_at = dto.expires_at
                        existing.notes = dto.notes
                        grant = existing
                    else:
                        grant = LibraryResourceAccess(
                            platform_id=owner.platform_id,
                            school_id=school_id,
                            access_level=dto.access_level.value,
                            granted_by_id=owner.id,
                            expires_at=dto.expires_at,
                            notes=dto.notes,
                            **dto.scope_fields(),
                        )
                        self.session.add(grant)
                    await self.session.flush()
            except SQLAlchemyError as e:
                logger.warning("Bulk grant failed for school %s: %s", school_id, e)
                results.append({"school_id": school_id, "status": "failed", "error": str(e)})
                continue
            record_change(self.session, entity_type=ENTITY, entity_id=grant.id, action="CREATED",
                          performed_by_id=owner.id, performed_by_role=owner.role,
                          platform_id=owner.platform_id, school_id=school_id,
                          changes={"resource_type": dto.resource_type.value, "bulk": True})
            results.append({"school_id": school_id, "status": "success", "id": grant.id})

        return bulk_result(results)

    @service_operation("Failed to update access")
    async def update_access(self, identity: IdentityScope, access_id: str,
                            dto: GrantUpdateRequest) -> OperationResult:
        logger.info("[LIBRARY ACCESS] Updating access grant: %s", access_id)
        owner = await load_library_owner(self.session, identity)
        grant = await self._owned_grant(owner.platform_id, access_id)

        changes = dto.model_dump(exclude_none=True)
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
                      performed_by_id=owner.id, performed_by_role=owner.role,
                      platform_id=owner.platform_id, school_id=grant.school_id, changes=changes)
        return OperationResult(message="Access updated successfully", data=grant_to_dict(grant))

    @service_operation("Failed to revoke access")
    async def revoke_access(self, identity: IdentityScope, access_id: str,
                            dto: RevokeRequest | None = None) -> OperationResult:
        """Soft delete: the row stays, inactive."""
        logger.info("[LIBRARY ACCESS] Revoking access grant: %s", access_id)
        owner = await load_library_owner(self.session, identity)
        grant = await self._owned_grant(owner.platform_id, access_id)
        grant.is_active = False
        await self.session.flush()
        record_change(self.session, entity_type=ENTITY, entity_id=grant.id, action="REVOKED",
                      performed_by_id=owner.id, performed_by_role=owner.role,
                      platform_id=owner.platform_id, school_id=grant.school_id,
                      changes={"reason": dto.reason if dto else None})
        return OperationResult(message="Access revoked successfully", data=grant_to_dict(grant))

    def _exclusion_scope(self, dto: LibraryExcludeRequest) -> dict:
        scope = dto.scope_fields()
        scope["subject_id"] = None
        return scope

    @service_operation("Failed to exclude resource")
    async def exclude_resource(self, identity: IdentityScope, dto: LibraryExcludeRequest) -> OperationResult:
        """Turn off one child resource under an otherwise granted subject."""
        logger.info("[LIBRARY ACCESS] Excluding resource for school: %s", dto.school_id)
        owner = await load_library_owner(self.session, identity)
        await validate_resource_ids(self.session, owner.platform_id, dto)

        existing = await self._find_same_scope(owner.platform_id, dto.school_id, self._exclusion_scope(dto))
        if existing is not None:
            if not existing.is_active:
                return OperationResult(message="Resource already excluded", data=grant_to_dict(existing))
            existing.is_active = False
            existing.notes = EXCLUDED_NOTE
            marker = existing
        else:
            marker = LibraryResourceAccess(
                platform_id=owner.platform_id,
                school_id=dto.school_id,
                access_level=AccessLevel.FULL.value,
                granted_by_id=owner.id,
                is_active=False,
                notes=EXCLUDED_NOTE,
                **self._exclusion_scope(dto),
            )
            self.session.add(marker)
        await self.session.flush()
        record_change(self.session, entity_type=ENTITY, entity_id=marker.id, action="EXCLUDED",
                      performed_by_id=owner.id, performed_by_role=owner.role,
                      platform_id=owner.platform_id, school_id=dto.school_id,
                      changes={"resource_type": dto.resource_type.value, "resource_id": dto.resource_id()})
        logger.info("Resource excluded: %s", marker.id)
        return OperationResult(message="Resource excluded successfully", data=grant_to_dict(marker))

    @service_operation("Failed to include resource")
    async def include_resource(self, identity: IdentityScope, dto: LibraryExcludeRequest) -> OperationResult:
        """Remove a "turned off" marker so the resource follows its subject grant again."""
        logger.info("[LIBRARY ACCESS] Including resource for school: %s", dto.school_id)
        owner = await load_library_owner(self.session, identity)
        existing = await self._find_same_scope(owner.platform_id, dto.school_id, self._exclusion_scope(dto))
        if existing is None or existing.is_active:
            return OperationResult(message="Resource was not excluded", data=None)
        await self.session.delete(existing)
        await self.session.flush()
        record_change(self.session, entity_type=ENTITY, entity_id=existing.id, action="INCLUDED",
                      performed_by_id=owner.id, performed_by_role=owner.role,
                      platform_id=owner.platform_id, school_id=dto.school_id,
                      changes={"resource_type": dto.resource_type.value, "resource_id": dto.resource_id()})
        return OperationResult(message="Resource included successfully", data={"id": existing.id, "removed": True})
