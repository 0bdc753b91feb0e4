# LibraryGate - grant management routes for the three tiers
from fastapi import APIRouter, Depends

from auth import require_auth
from access import (
    AccessControlError,
    IdentityScope,
    LibraryAccessService,
    OperationResult,
    SchoolAccessService,
    TeacherAccessService,
)
from access.models import (
    GrantUpdateRequest,
    LibraryBulkGrantRequest,
    LibraryExcludeRequest,
    LibraryGrantRequest,
    RevokeRequest,
    SchoolBulkGrantRequest,
    SchoolGrantRequest,
    SubjectExclusionRequest,
    TeacherBulkGrantRequest,
    TeacherExcludeRequest,
    TeacherGrantRequest,
)
from database.database import get_db

library_router = APIRouter(prefix="/api/library-access", tags=["Library access"])
school_router = APIRouter(prefix="/api/school-access", tags=["School access"])
teacher_router = APIRouter(prefix="/api/teacher-access", tags=["Teacher access"])


async def _run(operation) -> OperationResult:
    try:
        return await operation
    except AccessControlError as e:
        raise e.to_http() from e


# ============ LIBRARY (tier 1) ============

@library_router.post("/grant", response_model=OperationResult)
async def library_grant(body: LibraryGrantRequest, identity: IdentityScope = Depends(require_auth),
                        db=Depends(get_db)):
    return await _run(LibraryAccessService(db).grant_access(identity, body))


@library_router.post("/grant-bulk", response_model=OperationResult)
async def library_grant_bulk(body: LibraryBulkGrantRequest, identity: IdentityScope = Depends(require_auth),
                             db=Depends(get_db)):
    return await _run(LibraryAccessService(db).grant_bulk_access(identity, body))


@library_router.patch("/{access_id}", response_model=OperationResult)
async def library_update(access_id: str, body: GrantUpdateRequest,
                         identity: IdentityScope = Depends(require_auth), db=Depends(get_db)):
    return await _run(LibraryAccessService(db).update_access(identity, access_id, body))


@library_router.delete("/{access_id}", response_model=OperationResult)
async def library_revoke(access_id: str, reason: str | None = None,
                         identity: IdentityScope = Depends(require_auth), db=Depends(get_db)):
    return await _run(LibraryAccessService(db).revoke_access(identity, access_id, RevokeRequest(reason=reason)))


@library_router.post("/exclude", response_model=OperationResult)
async def library_exclude(body: LibraryExcludeRequest, identity: IdentityScope = Depends(require_auth),
                          db=Depends(get_db)):
    return await _run(LibraryAccessService(db).exclude_resource(identity, body))


@library_router.post("/include", response_model=OperationResult)
async def library_include(body: LibraryExcludeRequest, identity: IdentityScope = Depends(require_auth),
                          db=Depends(get_db)):
    return await _run(LibraryAccessService(db).include_resource(identity, body))


# ============ SCHOOL (tier 2) ============

@school_router.post("/grant", response_model=OperationResult)
async def school_grant(body: SchoolGrantRequest, identity: IdentityScope = Depends(require_auth),
                       db=Depends(get_db)):
    return await _run(SchoolAccessService(db).grant_access(identity, body))


@school_router.post("/grant-bulk", response_model=OperationResult)
async def school_grant_bulk(body: SchoolBulkGrantRequest, identity: IdentityScope = Depends(require_auth),
                            db=Depends(get_db)):
    return await _run(SchoolAccessService(db).grant_bulk_access(identity, body))


@school_router.patch("/{access_id}", response_model=OperationResult)
async def school_update(access_id: str, body: GrantUpdateRequest,
                        identity: IdentityScope = Depends(require_auth), db=Depends(get_db)):
    return await _run(SchoolAccessService(db).update_access(identity, access_id, body))


@school_router.delete("/{access_id}", response_model=OperationResult)
async def school_revoke(access_id: str, reason: str | None = None,
                        identity: IdentityScope = Depends(require_auth), db=Depends(get_db)):
    return await _run(SchoolAccessService(db).revoke_access(identity, access_id, RevokeRequest(reason=reason)))


@school_router.post("/exclusions", response_model=OperationResult)
async def school_exclude_subject(body: SubjectExclusionRequest, identity: IdentityScope = Depends(require_auth),
                                 db=Depends(get_db)):
    return await _run(SchoolAccessService(db).exclude_subject(identity, body.subject_id))


@school_router.delete("/exclusions/{subject_id}", response_model=OperationResult)
async def school_include_subject(subject_id: str, identity: IdentityScope = Depends(require_auth),
                                 db=Depends(get_db)):
    return await _run(SchoolAccessService(db).include_subject(identity, subject_id))


# ============ TEACHER (tier 3) ============

@teacher_router.post("/grant", response_model=OperationResult)
async def teacher_grant(body: TeacherGrantRequest, identity: IdentityScope = Depends(require_auth),
                        db=Depends(get_db)):
    return await _run(TeacherAccessService(db).grant_access(identity, body))


@teacher_router.post("/grant-bulk", response_model=OperationResult)
async def teacher_grant_bulk(body: TeacherBulkGrantRequest, identity: IdentityScope = Depends(require_auth),
                             db=Depends(get_db)):
    return await _run(TeacherAccessService(db).grant_bulk_access(identity, body))


@teacher_router.patch("/{access_id}", response_model=OperationResult)
async def teacher_update(access_id: str, body: GrantUpdateRequest,
                         identity: IdentityScope = Depends(require_auth), db=Depends(get_db)):
    return await _run(TeacherAccessService(db).update_access(identity, access_id, body))


@teacher_router.delete("/{access_id}", response_model=OperationResult)
async def teacher_revoke(access_id: str, reason: str | None = None,
                         identity: IdentityScope = Depends(require_auth), db=Depends(get_db)):
    return await _run(TeacherAccessService(db).revoke_access(identity, access_id, RevokeRequest(reason=reason)))


@teacher_router.post("/exclude", response_model=OperationResult)
async def teacher_exclude(body: TeacherExcludeRequest, identity: IdentityScope = Depends(require_auth),
                          db=Depends(get_db)):
    return await _run(TeacherAccessService(db).exclude_resource(identity, body))


@teacher_router.post("/include", response_model=OperationResult)
async def teacher_include(body: TeacherExcludeRequest, identity: IdentityScope = Depends(require_auth),
                          db=Depends(get_db)):
    return await _run(TeacherAccessService(db).include_resource(identity, body))
