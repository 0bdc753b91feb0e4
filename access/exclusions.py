# LibraryGate - "turned off" sets per tier
"""
Every tier can hide resources that an upper tier granted. The storage differs
per tier but the question is always the same (which ids are off?), so each
tier gets an ExclusionSet with one ``ids()`` call.

- LibraryExclusionSet: inactive tier-1 rows on a child kind (explicit marker,
  not the absence of a grant).
- SchoolExclusionSet: school owner's subject "turn off" list.
- TeacherExclusionSet: a teacher's exclusions for a student or a class.
"""
from abc import ABC, abstractmethod
from collections.abc import Iterable

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import (
    CONTENT_MODELS,
    LibraryResourceAccess,
    RESOURCE_ID_FIELDS,
    ResourceType,
    SchoolResourceExclusion,
    TeacherResourceExclusion,
)

CHILD_KINDS = (ResourceType.TOPIC, ResourceType.VIDEO, ResourceType.MATERIAL, ResourceType.ASSESSMENT)


class ExclusionSet(ABC):
    @abstractmethod
    async def ids(self, session: AsyncSession) -> set[str]:
        ...

    async def apply(self, session: AsyncSession, visible: Iterable[str]) -> list[str]:
        """Drop excluded ids from ``visible``, keeping order."""
        excluded = await self.ids(session)
        return [i for i in visible if i not in excluded]


class LibraryExclusionSet(ExclusionSet):
    def __init__(self, school_id: str, resource_type: ResourceType,
                 platform_id: str | None = None, subject_id: str | None = None):
        if resource_type not in CHILD_KINDS:
            raise ValueError(f"Library exclusions only exist for child kinds, got {resource_type}")
        self.school_id = school_id
        self.resource_type = resource_type
        self.platform_id = platform_id
        self.subject_id = subject_id

    async def ids(self, session: AsyncSession) -> set[str]:
        id_column = getattr(LibraryResourceAccess, RESOURCE_ID_FIELDS[self.resource_type])
        stmt = select(id_column).where(
            LibraryResourceAccess.school_id == self.school_id,
            LibraryResourceAccess.resource_type == self.resource_type.value,
            LibraryResourceAccess.is_active.is_(False),
            id_column.is_not(None),
        )
        if self.platform_id is not None:
            stmt = stmt.where(LibraryResourceAccess.platform_id == self.platform_id)
        if self.subject_id is not None:
            content = CONTENT_MODELS[self.resource_type]
            stmt = stmt.join(content, content.id == id_column).where(content.subject_id == self.subject_id)
        r = await session.execute(stmt)
        return {row[0] for row in r.all()}


class SchoolExclusionSet(ExclusionSet):
    def __init__(self, school_id: str):
        self.school_id = school_id

    async def ids(self, session: AsyncSession) -> set[str]:
        r = await session.execute(
            select(SchoolResourceExclusion.subject_id)
            .where(SchoolResourceExclusion.school_id == self.school_id)
        )
        return set(r.scalars().all())


class TeacherExclusionSet(ExclusionSet):
    """Exclusions aimed at one student, or class-wide (no student) at a class.

    ``class_id`` matches the student's school class; ``library_class_id``
    matches the library class a subject belongs to.
    """

    def __init__(self, school_id: str, student_id: str, *,
                 class_id: str | None = None, library_class_id: str | None = None,
                 subject_id: str | None = None, resource_type: ResourceType | None = None):
        self.school_id = school_id
        self.student_id = student_id
        self.class_id = class_id
        self.library_class_id = library_class_id
        self.subject_id = subject_id
        self.resource_type = resource_type

    def _statement(self):
        targets = [TeacherResourceExclusion.student_id == self.student_id]
        if self.class_id:
            targets.append(and_(
                TeacherResourceExclusion.class_id == self.class_id,
                TeacherResourceExclusion.student_id.is_(None),
            ))
        if self.library_class_id:
            targets.append(and_(
                TeacherResourceExclusion.library_class_id == self.library_class_id,
                TeacherResourceExclusion.student_id.is_(None),
            ))
        stmt = select(TeacherResourceExclusion.resource_type, TeacherResourceExclusion.resource_id).where(
            TeacherResourceExclusion.school_id == self.school_id,
            or_(*targets),
        )
        if self.subject_id is not None:
            stmt = stmt.where(TeacherResourceExclusion.subject_id == self.subject_id)
        if self.resource_type is not None:
            stmt = stmt.where(TeacherResourceExclusion.resource_type == self.resource_type.value)
        return stmt

    async def ids(self, session: AsyncSession) -> set[str]:
        r = await session.execute(self._statement())
        return {row.resource_id for row in r.all()}

    async def ids_by_kind(self, session: AsyncSession) -> dict[ResourceType, set[str]]:
        grouped: dict[ResourceType, set[str]] = {kind: set() for kind in CHILD_KINDS}
        r = await session.execute(self._statement())
        for row in r.all():
            kind = ResourceType(row.resource_type)
            if kind in grouped:
                grouped[kind].add(row.resource_id)
        return grouped
