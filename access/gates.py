# LibraryGate - three-tier gate pipeline (library -> school -> teacher)
"""
Each gate looks at one tier of the grant store and returns a tagged outcome:

  Allow(step, level, grant)  the tier let the request through (grant may be None)
  Deny(step, reason)         stop here, access denied
  Continue()                 the tier does not apply to this request

The resolver runs the gates in order and short-circuits on Deny. A gate sees
the grants accepted by the gates before it through ``GateContext.grants``.
"""
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import (
    AccessLevel,
    LibraryResourceAccess,
    LibraryVideoLesson,
    ResourceType,
    RESOURCE_ID_FIELDS,
    Role,
    SchoolResourceAccess,
    TeacherResourceAccess,
)

LIBRARY = "library"
SCHOOL = "school"
TEACHER = "teacher"

LIBRARY_DENIED_REASON = "School does not have library access to this resource"
SCHOOL_DENIED_REASON = "School has not granted you access to this resource"
TEACHER_DENIED_REASON = "Your teacher has not granted access to this resource yet"


@dataclass(frozen=True)
class Allow:
    tier: str
    step: str
    level: str | None = None
    grant: Any = None


@dataclass(frozen=True)
class Deny:
    tier: str
    step: str
    reason: str


@dataclass(frozen=True)
class Continue:
    tier: str


GateOutcome = Allow | Deny | Continue


@dataclass
class GateContext:
    user_id: str
    school_id: str | None
    role: str
    class_id: str | None
    resource_type: ResourceType
    resource_id: str
    now: datetime
    grants: dict[str, Any] = field(default_factory=dict)


Gate = Callable[[AsyncSession, GateContext], Awaitable[GateOutcome]]


def active_clause(model, now: datetime):
    """is_active AND (no expiry OR expiry strictly after now)."""
    return and_(
        model.is_active.is_(True),
        or_(model.expires_at.is_(None), model.expires_at > now),
    )


def determine_access_level(levels: list[str | None]) -> str:
    """Most restrictive level wins: LIMITED, then READ_ONLY, else FULL."""
    present = [lvl for lvl in levels if lvl is not None]
    if AccessLevel.LIMITED.value in present:
        return AccessLevel.LIMITED.value
    if AccessLevel.READ_ONLY.value in present:
        return AccessLevel.READ_ONLY.value
    return AccessLevel.FULL.value


async def _library_candidates(session: AsyncSession, ctx: GateContext) -> list[tuple]:
    """(resource_type, id_field, id) in priority order; first active match wins."""
    candidates = [(ResourceType.ALL, None, None)]
    id_field = RESOURCE_ID_FIELDS.get(ctx.resource_type)
    if id_field is None:
        return candidates
    candidates.append((ctx.resource_type, id_field, ctx.resource_id))
    if ctx.resource_type == ResourceType.VIDEO:
        # A grant on the containing subject or topic covers the video
        r = await session.execute(
            select(LibraryVideoLesson.subject_id, LibraryVideoLesson.topic_id)
            .where(LibraryVideoLesson.id == ctx.resource_id)
        )
        video = r.one_or_none()
        if video is not None:
            if video.subject_id:
                candidates.append((ResourceType.SUBJECT, "subject_id", video.subject_id))
            if video.topic_id:
                candidates.append((ResourceType.TOPIC, "topic_id", video.topic_id))
    return candidates


async def library_gate(session: AsyncSession, ctx: GateContext) -> GateOutcome:
    """Tier 1: has the library owner granted this resource (or a container of it) to the school?"""
    if ctx.school_id is not None:
        for resource_type, id_field, resource_id in await _library_candidates(session, ctx):
            stmt = select(LibraryResourceAccess).where(
                LibraryResourceAccess.school_id == ctx.school_id,
                LibraryResourceAccess.resource_type == resource_type.value,
                active_clause(LibraryResourceAccess, ctx.now),
            )
            if id_field:
                stmt = stmt.where(getattr(LibraryResourceAccess, id_field) == resource_id)
            r = await session.execute(stmt.limit(1))
            grant = r.scalar_one_or_none()
            if grant is not None:
                return Allow(LIBRARY, "library_granted", grant.access_level, grant)
    return Deny(LIBRARY, "library_denied", LIBRARY_DENIED_REASON)


async def school_gate(session: AsyncSession, ctx: GateContext) -> GateOutcome:
    """Tier 2: a school grant for this user, role or class under the winning library grant.

    No matching row means the whole school inherits the library grant, so this
    gate only denies when there is no library grant to fall back to.
    """
    library_grant = ctx.grants.get(LIBRARY)
    if library_grant is None:
        return Deny(SCHOOL, "school_denied", SCHOOL_DENIED_REASON)
    targets = [SchoolResourceAccess.user_id == ctx.user_id, SchoolResourceAccess.role_type == ctx.role]
    if ctx.class_id:
        targets.append(SchoolResourceAccess.class_id == ctx.class_id)
    r = await session.execute(
        select(SchoolResourceAccess).where(
            SchoolResourceAccess.school_id == ctx.school_id,
            SchoolResourceAccess.library_resource_access_id == library_grant.id,
            or_(*targets),
            active_clause(SchoolResourceAccess, ctx.now),
        ).limit(1)
    )
    grant = r.scalar_one_or_none()
    if grant is not None:
        return Allow(SCHOOL, "school_granted", grant.access_level, grant)
    return Allow(SCHOOL, "school_granted", library_grant.access_level, None)


async def teacher_gate(session: AsyncSession, ctx: GateContext) -> GateOutcome:
    """Tier 3 (students only, and only under a concrete school grant row)."""
    school_grant = ctx.grants.get(SCHOOL)
    if ctx.role != Role.student.value or school_grant is None:
        return Continue(TEACHER)
    targets = [TeacherResourceAccess.student_id == ctx.user_id]
    if ctx.class_id:
        targets.append(TeacherResourceAccess.class_id == ctx.class_id)
    r = await session.execute(
        select(TeacherResourceAccess).where(
            TeacherResourceAccess.school_id == ctx.school_id,
            TeacherResourceAccess.school_resource_access_id == school_grant.id,
            or_(*targets),
            active_clause(TeacherResourceAccess, ctx.now),
        )
    )
    restrictions = r.scalars().all()
    if not restrictions:
        return Allow(TEACHER, "no_teacher_restrictions")
    for row in restrictions:
        if row.student_id == ctx.user_id or (row.student_id is None and row.class_id == ctx.class_id):
            return Allow(TEACHER, "teacher_granted", row.access_level, row)
    return Deny(TEACHER, "teacher_denied", TEACHER_DENIED_REASON)


DEFAULT_GATES: tuple[Gate, ...] = (library_gate, school_gate, teacher_gate)
