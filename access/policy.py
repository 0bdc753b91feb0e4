# LibraryGate - grant-management policy (who may grant what)
import functools
import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import (
    LibraryResourceAccess,
    RESOURCE_ID_FIELDS,
    ResourceType,
    Role,
    SCHOOL_OWNER_ROLES,
    User,
)
from .errors import AccessControlError, BadRequestError, ForbiddenError, NotFoundError
from .models import IdentityScope, OperationResult, ResourceScope

logger = logging.getLogger(__name__)


def service_operation(failure_message: str):
    """Let domain errors through; log anything else and surface it as a generic 500."""
    def decorator(func):
        @functools.wraps(func)
        async def wrapper(*args, **kwargs):
            try:
                return await func(*args, **kwargs)
            except AccessControlError:
                raise
            except Exception as e:
                logger.error("%s: %s", failure_message, e, exc_info=True)
                raise AccessControlError(failure_message) from e
        return wrapper
    return decorator


async def load_actor(session: AsyncSession, identity: IdentityScope, allowed_roles: tuple[str, ...],
                     forbidden_message: str) -> User:
    r = await session.execute(select(User).where(User.id == identity.user_id))
    user = r.scalar_one_or_none()
    if user is None:
        raise NotFoundError("User not found")
    if user.role not in allowed_roles:
        raise ForbiddenError(forbidden_message)
    return user


async def load_library_owner(session: AsyncSession, identity: IdentityScope) -> User:
    user = await load_actor(session, identity, (Role.library_owner.value,),
                            "Only library owners can manage library access")
    if user.platform_id is None:
        raise NotFoundError("Library user not found")
    return user


async def load_school_owner(session: AsyncSession, identity: IdentityScope, action: str = "manage") -> User:
    return await load_actor(session, identity, SCHOOL_OWNER_ROLES,
                            f"Only school directors and admins can {action} access")


async def load_teacher(session: AsyncSession, identity: IdentityScope, forbidden_message: str) -> User:
    return await load_actor(session, identity, (Role.teacher.value,), forbidden_message)


def is_expired(expires_at: datetime | None, now: datetime) -> bool:
    return expires_at is not None and expires_at <= now


def validate_school_scope(library_grant: LibraryResourceAccess, dto: ResourceScope) -> None:
    """A school grant may narrow its library grant but never widen it."""
    if library_grant.resource_type == ResourceType.ALL.value:
        return
    if library_grant.resource_type == ResourceType.SUBJECT.value:
        if dto.resource_type == ResourceType.SUBJECT and dto.subject_id != library_grant.subject_id:
            raise BadRequestError("Cannot grant access to a different subject than what library granted")
        if dto.resource_type == ResourceType.ALL:
            raise BadRequestError("Cannot grant a broader scope than what library granted")
        return
    if dto.resource_type in (ResourceType.ALL, ResourceType.SUBJECT):
        raise BadRequestError("Cannot grant a broader scope than what library granted")
    if dto.resource_type.value == library_grant.resource_type and dto.resource_id() not in (
        None, _grant_resource_id(library_grant),
    ):
        raise BadRequestError("Cannot grant access to a different resource than what library granted")


def _grant_resource_id(grant: LibraryResourceAccess) -> str | None:
    field = RESOURCE_ID_FIELDS.get(ResourceType(grant.resource_type))
    return getattr(grant, field) if field else None


def bulk_result(results: list[dict]) -> OperationResult:
    """Summarise per-target outcomes of a bulk grant ("success" or "failed")."""
    successful = sum(1 for res in results if res["status"] == "success")
    failed = len(results) - successful
    logger.info("Bulk access grant completed: %d successful, %d failed", successful, failed)
    return OperationResult(
        message=f"Bulk access granted: {successful} successful, {failed} failed",
        data={"successful": successful, "failed": failed, "total": len(results), "results": results},
    )
