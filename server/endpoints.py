"""
Access resolution routes: what can the signed-in user see?
"""

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field

from auth import require_auth
from access import AccessControlResolver, AccessCheckResult, ExcludedIds, IdentityScope, ResourceRef
from access.audit import get_audit_sample
from database.database import get_db
from database.models import SCHOOL_OWNER_ROLES, ResourceType, Role, User

router = APIRouter(prefix="/api/access", tags=["Access"])
audit_router = APIRouter(prefix="/api/audit", tags=["Audit"])


class BulkCheckRequest(BaseModel):
    resources: list[ResourceRef] = Field(..., min_length=1)


@router.get("/check", response_model=AccessCheckResult)
async def check_access(
    resource_type: ResourceType,
    resource_id: str,
    identity: IdentityScope = Depends(require_auth),
    db=Depends(get_db),
):
    return await AccessControlResolver(db).check_user_access(identity.user_id, resource_type, resource_id)


@router.post("/check-bulk", response_model=dict[str, AccessCheckResult])
async def check_bulk_access(
    body: BulkCheckRequest,
    identity: IdentityScope = Depends(require_auth),
    db=Depends(get_db),
):
    return await AccessControlResolver(db).check_bulk_access(identity.user_id, body.resources)


@router.get("/subjects")
async def accessible_subjects(identity: IdentityScope = Depends(require_auth), db=Depends(get_db)):
    subject_ids = await AccessControlResolver(db).get_accessible_subject_ids(identity.user_id)
    return {"subject_ids": subject_ids, "total": len(subject_ids)}


@router.get("/videos")
async def accessible_videos(identity: IdentityScope = Depends(require_auth), db=Depends(get_db)):
    video_ids = await AccessControlResolver(db).get_accessible_video_ids(identity.user_id)
    return {"video_ids": video_ids, "total": len(video_ids)}


@router.get("/subjects/{subject_id}/excluded", response_model=ExcludedIds)
async def excluded_in_subject(
    subject_id: str,
    identity: IdentityScope = Depends(require_auth),
    db=Depends(get_db),
):
    """Ids hidden from the caller inside one subject (library and teacher exclusions)."""
    return await AccessControlResolver(db).get_excluded_ids_for_subject(identity.user_id, subject_id)


@router.get("/resources")
async def accessible_resources(
    resource_type: ResourceType | None = None,
    identity: IdentityScope = Depends(require_auth),
    db=Depends(get_db),
):
    resource_ids = await AccessControlResolver(db).get_user_accessible_resources(identity.user_id, resource_type)
    return {"resource_ids": resource_ids, "total": len(resource_ids)}


# ============ AUDIT LOG ============

AUDIT_READER_ROLES = (Role.library_owner.value, *SCHOOL_OWNER_ROLES)


@audit_router.get("/sample")
async def audit_sample(
    limit: int = 20,
    identity: IdentityScope = Depends(require_auth),
    db=Depends(get_db),
):
    """Recent audit entries for the caller's platform or school (sanitized, no notes or emails)."""
    if identity.role not in AUDIT_READER_ROLES:
        raise HTTPException(status_code=403, detail="Only library owners and school owners can read the audit log")
    user = await db.get(User, identity.user_id)
    if user is None:
        raise HTTPException(status_code=404, detail="User not found")
    if user.role == Role.library_owner.value:
        entries = get_audit_sample(limit, platform_id=user.platform_id)
    else:
        entries = get_audit_sample(limit, school_id=user.school_id)
    return {"total_entries": len(entries), "entries": entries}
