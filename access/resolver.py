# LibraryGate - access resolution (single resource + bulk listings)
"""
Resolves what a user can see across the three grant tiers:

  1. Library owner -> school      (LibraryResourceAccess)
  2. School owner -> user/role/class (SchoolResourceAccess)
  3. Teacher -> student/class     (TeacherResourceAccess / TeacherResourceExclusion)

The resolver holds nothing but a session and a clock; every call recomputes
from the store. Public methods never raise: failures are logged and turned
into a deny (single checks) or an empty result (listings).
"""
import logging
from datetime import datetime
from typing import Callable, Iterable

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import (
    LibraryResourceAccess,
    LibrarySubject,
    LibraryVideoLesson,
    ResourceType,
    SCHOOL_OWNER_ROLES,
    SchoolResourceAccess,
    User,
)
from .exclusions import (
    CHILD_KINDS,
    LibraryExclusionSet,
    SchoolExclusionSet,
    TeacherExclusionSet,
)
from .gates import (
    DEFAULT_GATES,
    Allow,
    Deny,
    Gate,
    GateContext,
    active_clause,
    determine_access_level,
)
from .models import AccessCheckResult, ExcludedIds, ResourceRef

logger = logging.getLogger(__name__)

GRANT_ID_FIELDS = ("subject_id", "topic_id", "video_id", "material_id", "assessment_id")

# Tier-1 scopes that can contain a resource of the given kind
CONTAINING_SCOPES = {
    ResourceType.SUBJECT: [ResourceType.ALL, ResourceType.SUBJECT],
    ResourceType.TOPIC: [ResourceType.ALL, ResourceType.SUBJECT, ResourceType.TOPIC],
    ResourceType.VIDEO: [ResourceType.ALL, ResourceType.SUBJECT, ResourceType.TOPIC, ResourceType.VIDEO],
}


def resolve_effective(child, parent, field: str):
    """A narrower grant's own value if it sets one, otherwise the parent's."""
    value = getattr(child, field, None) if child is not None else None
    if value is not None:
        return value
    return getattr(parent, field, None) if parent is not None else None


def is_school_owner(role: str | None) -> bool:
    return role in SCHOOL_OWNER_ROLES


class AccessControlResolver:
    def __init__(
        self,
        session: AsyncSession,
        gates: Iterable[Gate] = DEFAULT_GATES,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.session = session
        self.gates = tuple(gates)
        self.clock = clock

    async def _get_user(self, user_id: str) -> User | None:
        r = await self.session.execute(select(User).where(User.id == user_id))
        return r.scalar_one_or_none()

    # ------------------------------------------------------------------
    # Single resource
    # ------------------------------------------------------------------

    async def check_user_access(
        self, user_id: str, resource_type: ResourceType, resource_id: str
    ) -> AccessCheckResult:
        """Walk library -> school -> teacher for one resource."""
        try:
            user = await self._get_user(user_id)
            if user is None:
                return AccessCheckResult(has_access=False, reason="User not found")

            ctx = GateContext(
                user_id=user.id,
                school_id=user.school_id,
                role=user.role,
                class_id=user.current_class_id,
                resource_type=ResourceType(resource_type),
                resource_id=resource_id,
                now=self.clock(),
            )
            path: list[str] = []
            levels: list[str | None] = []
            for gate in self.gates:
                outcome = await gate(self.session, ctx)
                if isinstance(outcome, Deny):
                    logger.debug("Access denied for %s on %s:%s at %s",
                                 user_id, ctx.resource_type.value, resource_id, outcome.step)
                    return AccessCheckResult(
                        has_access=False, reason=outcome.reason, grant_path=path + [outcome.step],
                    )
                if isinstance(outcome, Allow):
                    path.append(outcome.step)
                    levels.append(outcome.level)
                    ctx.grants[outcome.tier] = outcome.grant

            return AccessCheckResult(
                has_access=True,
                access_level=determine_access_level(levels),
                grant_path=path,
            )
        except Exception as e:
            logger.error("Error checking access: %s", e, exc_info=True)
            return AccessCheckResult(has_access=False, reason="Error checking access")

    async def check_bulk_access(
        self, user_id: str, resources: Iterable[ResourceRef]
    ) -> dict[str, AccessCheckResult]:
        results: dict[str, AccessCheckResult] = {}
        for resource in resources:
            key = f"{resource.resource_type.value}:{resource.resource_id}"
            results[key] = await self.check_user_access(user_id, resource.resource_type, resource.resource_id)
        return results

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    async def _library_grants(self, school_id: str, scopes: list[ResourceType] | None = None):
        stmt = select(LibraryResourceAccess).where(
            LibraryResourceAccess.school_id == school_id,
            active_clause(LibraryResourceAccess, self.clock()),
        )
        if scopes:
            stmt = stmt.where(LibraryResourceAccess.resource_type.in_([s.value for s in scopes]))
        r = await self.session.execute(stmt)
        return r.scalars().all()

    async def _platform_subject_ids(self, platform_ids: Iterable[str]) -> list[str]:
        platform_ids = list(dict.fromkeys(platform_ids))
        if not platform_ids:
            return []
        r = await self.session.execute(
            select(LibrarySubject.id).where(LibrarySubject.platform_id.in_(platform_ids))
        )
        return list(r.scalars().all())

    async def _subject_ids_granted_to_school(self, school_id: str) -> list[str]:
        """Subjects from tier-1 grants only; tier-2 rows are deliberately ignored here
        so teachers and students get the same list."""
        grants = await self._library_grants(school_id, [ResourceType.ALL, ResourceType.SUBJECT])
        subject_ids = dict.fromkeys(
            await self._platform_subject_ids(
                g.platform_id for g in grants if g.resource_type == ResourceType.ALL.value
            )
        )
        for g in grants:
            if g.resource_type == ResourceType.SUBJECT.value and g.subject_id:
                subject_ids.setdefault(g.subject_id)
        return list(subject_ids)

    async def get_accessible_subject_ids(self, user_id: str) -> list[str]:
        """Subjects granted to the user's school, minus the school's subject exclusions
        (school owners are not affected by those)."""
        logger.info("Getting accessible subject ids for user %s", user_id)
        try:
            user = await self._get_user(user_id)
            if user is None or user.school_id is None:
                return []
            subject_ids = await self._subject_ids_granted_to_school(user.school_id)
            if not subject_ids or is_school_owner(user.role):
                return subject_ids
            return await SchoolExclusionSet(user.school_id).apply(self.session, subject_ids)
        except Exception as e:
            logger.error("Error getting accessible subject ids: %s", e, exc_info=True)
            return []

    async def get_accessible_video_ids(self, user_id: str) -> list[str]:
        """Published videos in accessible subjects, minus library and teacher exclusions."""
        try:
            subject_ids = await self.get_accessible_subject_ids(user_id)
            if not subject_ids:
                return []
            r = await self.session.execute(
                select(LibraryVideoLesson.id).where(
                    LibraryVideoLesson.status == "published",
                    LibraryVideoLesson.subject_id.in_(subject_ids),
                )
            )
            video_ids = list(r.scalars().all())
            user = await self._get_user(user_id)
            # One AsyncSession cannot run statements concurrently, so the two sets load in turn
            library_excluded = await LibraryExclusionSet(user.school_id, ResourceType.VIDEO).ids(self.session)
            teacher_excluded = await TeacherExclusionSet(
                user.school_id, user.id,
                class_id=user.current_class_id,
                resource_type=ResourceType.VIDEO,
            ).ids(self.session)
            excluded = library_excluded | teacher_excluded
            return [v for v in video_ids if v not in excluded]
        except Exception as e:
            logger.error("Error getting accessible video ids: %s", e, exc_info=True)
            return []

    async def get_excluded_resource_ids_in_subject(
        self, school_id: str, platform_id: str, subject_id: str, resource_type: ResourceType
    ) -> list[str]:
        """Library-level "turned off" markers for one kind under one subject."""
        try:
            resource_type = ResourceType(resource_type)
            if resource_type not in CHILD_KINDS:
                return []
            excluded = await LibraryExclusionSet(
                school_id, resource_type, platform_id=platform_id, subject_id=subject_id,
            ).ids(self.session)
            return sorted(excluded)
        except Exception as e:
            logger.error("Error getting excluded resources: %s", e, exc_info=True)
            return []

    async def get_excluded_ids_for_subject(self, user_id: str, subject_id: str) -> ExcludedIds:
        """Library exclusions under a subject, plus teacher exclusions for non-owners."""
        try:
            user = await self._get_user(user_id)
            if user is None:
                return ExcludedIds()
            r = await self.session.execute(
                select(LibrarySubject.platform_id, LibrarySubject.class_id)
                .where(LibrarySubject.id == subject_id)
            )
            subject = r.one_or_none()
            if subject is None:
                return ExcludedIds()

            excluded: dict[ResourceType, set[str]] = {}
            for kind in CHILD_KINDS:
                excluded[kind] = set(await self.get_excluded_resource_ids_in_subject(
                    user.school_id, subject.platform_id, subject_id, kind,
                ))

            if not is_school_owner(user.role):
                teacher = await TeacherExclusionSet(
                    user.school_id, user.id,
                    library_class_id=subject.class_id,
                    subject_id=subject_id,
                ).ids_by_kind(self.session)
                for kind, ids in teacher.items():
                    excluded[kind] |= ids

            return ExcludedIds(
                topic_ids=sorted(excluded[ResourceType.TOPIC]),
                video_ids=sorted(excluded[ResourceType.VIDEO]),
                material_ids=sorted(excluded[ResourceType.MATERIAL]),
                assessment_ids=sorted(excluded[ResourceType.ASSESSMENT]),
            )
        except Exception as e:
            logger.error("Error getting excluded ids for subject %s: %s", subject_id, e, exc_info=True)
            return ExcludedIds()

    async def get_user_accessible_resources(
        self, user_id: str, resource_type: ResourceType | None = None
    ) -> list[str]:
        """General-purpose listing that honours tier-2 grants when the user has any."""
        try:
            user = await self._get_user(user_id)
            if user is None or user.school_id is None:
                return []

            scopes = None
            if resource_type is not None:
                resource_type = ResourceType(resource_type)
                scopes = CONTAINING_SCOPES.get(resource_type, [ResourceType.ALL, resource_type])
            library_grants = await self._library_grants(user.school_id, scopes)
            if not library_grants:
                return []

            now = self.clock()
            targets = [SchoolResourceAccess.user_id == user.id, SchoolResourceAccess.role_type == user.role]
            if user.current_class_id:
                targets.append(SchoolResourceAccess.class_id == user.current_class_id)
            r = await self.session.execute(
                select(SchoolResourceAccess).where(
                    SchoolResourceAccess.school_id == user.school_id,
                    SchoolResourceAccess.library_resource_access_id.in_([g.id for g in library_grants]),
                    or_(*targets),
                    active_clause(SchoolResourceAccess, now),
                )
            )
            school_grants = r.scalars().all()

            by_id = {g.id: g for g in library_grants}
            if school_grants:
                pairs = [(sa, by_id[sa.library_resource_access_id]) for sa in school_grants]
            else:
                # No tier-2 rows: everyone in the school sees what the library granted
                pairs = [(None, lib) for lib in library_grants]

            resource_ids: dict[str, None] = {}
            for child, lib in pairs:
                effective = {f: resolve_effective(child, lib, f) for f in GRANT_ID_FIELDS}
                if lib.resource_type == ResourceType.ALL.value:
                    for sid in await self._platform_subject_ids([lib.platform_id]):
                        resource_ids.setdefault(sid)
                elif effective["subject_id"]:
                    resource_ids.setdefault(effective["subject_id"])
                for f in GRANT_ID_FIELDS[1:]:
                    if effective[f]:
                        resource_ids.setdefault(effective[f])
            return list(resource_ids)
        except Exception as e:
            logger.error("Error getting accessible resources: %s", e, exc_info=True)
            return []
