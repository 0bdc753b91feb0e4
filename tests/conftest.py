"""Shared fixtures: a fresh in-memory database per test plus a small catalogue.

- ``session``: AsyncSession on an isolated aiosqlite engine
- ``catalog``: platform, schools, classes, subjects, topics, videos and users
- ``grants``: helpers that insert grant / exclusion rows for the catalogue
- ``resolver``: AccessControlResolver pinned to ``NOW``
"""
from datetime import datetime
from types import SimpleNamespace

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from access import AccessControlResolver, IdentityScope
from database.database import enable_sqlite_savepoints
from database.models import (
    AccessLevel,
    Base,
    LibraryClass,
    LibraryMaterial,
    LibraryResourceAccess,
    LibrarySubject,
    LibraryTopic,
    LibraryVideoLesson,
    Platform,
    ResourceType,
    Role,
    School,
    SchoolClass,
    SchoolResourceAccess,
    SchoolResourceExclusion,
    TeacherResourceAccess,
    TeacherResourceExclusion,
    User,
)

NOW = datetime(2026, 3, 2, 9, 0, 0)


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_savepoints(engine)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine):
    maker = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with maker() as s:
        yield s


@pytest.fixture
async def catalog(session) -> SimpleNamespace:
    platform = Platform(name="Open Library")
    other_platform = Platform(name="Rival Library")
    school = School(school_name="Hillside Academy", status="approved")
    other_school = School(school_name="Riverside College", status="approved")
    pending_school = School(school_name="Pending Prep", status="pending")
    session.add_all([platform, other_platform, school, other_school, pending_school])
    await session.flush()

    class7 = SchoolClass(school_id=school.id, name="Grade 7")
    class8 = SchoolClass(school_id=school.id, name="Grade 8")
    other_class = SchoolClass(school_id=other_school.id, name="Year 1")
    jss1 = LibraryClass(platform_id=platform.id, name="JSS1")
    session.add_all([class7, class8, other_class, jss1])
    await session.flush()

    maths = LibrarySubject(platform_id=platform.id, class_id=jss1.id, name="Mathematics", code="MTH")
    science = LibrarySubject(platform_id=platform.id, class_id=jss1.id, name="Basic Science", code="SCI")
    foreign_subject = LibrarySubject(platform_id=other_platform.id, name="Rival Maths")
    session.add_all([maths, science, foreign_subject])
    await session.flush()

    fractions = LibraryTopic(platform_id=platform.id, subject_id=maths.id, title="Fractions")
    cells = LibraryTopic(platform_id=platform.id, subject_id=science.id, title="Cells")
    session.add_all([fractions, cells])
    await session.flush()

    video_a = LibraryVideoLesson(platform_id=platform.id, subject_id=maths.id, topic_id=fractions.id,
                                 title="Adding fractions", status="published")
    video_b = LibraryVideoLesson(platform_id=platform.id, subject_id=maths.id,
                                 title="Times tables", status="published")
    video_draft = LibraryVideoLesson(platform_id=platform.id, subject_id=maths.id,
                                     title="Work in progress", status="draft")
    sci_video = LibraryVideoLesson(platform_id=platform.id, subject_id=science.id, topic_id=cells.id,
                                   title="Inside a cell", status="published")
    worksheet = LibraryMaterial(platform_id=platform.id, subject_id=maths.id, topic_id=fractions.id,
                                title="Fractions worksheet")
    session.add_all([video_a, video_b, video_draft, sci_video, worksheet])

    def user(email, role, **kwargs):
        return User(email=email, password_hash="x", role=role.value, full_name=email.split("@")[0], **kwargs)

    owner = user("owner@library.test", Role.library_owner, platform_id=platform.id)
    director = user("director@hillside.test", Role.school_director, school_id=school.id)
    admin = user("admin@hillside.test", Role.school_admin, school_id=school.id)
    teacher = user("teacher@hillside.test", Role.teacher, school_id=school.id)
    student1 = user("s1@hillside.test", Role.student, school_id=school.id, current_class_id=class7.id)
    student2 = user("s2@hillside.test", Role.student, school_id=school.id, current_class_id=class7.id)
    student3 = user("s3@hillside.test", Role.student, school_id=school.id, current_class_id=class8.id)
    other_director = user("director@riverside.test", Role.school_director, school_id=other_school.id)
    drifter = user("drifter@nowhere.test", Role.teacher)
    session.add_all([owner, director, admin, teacher, student1, student2, student3, other_director, drifter])
    await session.flush()

    return SimpleNamespace(
        platform=platform, other_platform=other_platform,
        school=school, other_school=other_school, pending_school=pending_school,
        class7=class7, class8=class8, other_class=other_class, jss1=jss1,
        maths=maths, science=science, foreign_subject=foreign_subject,
        fractions=fractions, cells=cells,
        video_a=video_a, video_b=video_b, video_draft=video_draft, sci_video=sci_video,
        worksheet=worksheet,
        owner=owner, director=director, admin=admin, teacher=teacher,
        student1=student1, student2=student2, student3=student3,
        other_director=other_director, drifter=drifter,
    )


class GrantFactory:
    def __init__(self, session: AsyncSession, catalog: SimpleNamespace):
        self.session = session
        self.catalog = catalog

    async def _save(self, row):
        self.session.add(row)
        await self.session.flush()
        return row

    async def library(self, resource_type=ResourceType.ALL, *, school=None,
                      access_level=AccessLevel.FULL, **fields) -> LibraryResourceAccess:
        return await self._save(LibraryResourceAccess(
            platform_id=self.catalog.platform.id,
            school_id=(school or self.catalog.school).id,
            resource_type=resource_type.value,
            access_level=access_level.value,
            granted_by_id=self.catalog.owner.id,
            **fields,
        ))

    async def library_marker(self, resource_type, **fields) -> LibraryResourceAccess:
        """Inactive tier-1 row: the library turned this resource off."""
        return await self.library(resource_type, is_active=False, **fields)

    async def school(self, library_grant, resource_type=None, *,
                     access_level=AccessLevel.FULL, **fields) -> SchoolResourceAccess:
        return await self._save(SchoolResourceAccess(
            school_id=library_grant.school_id,
            library_resource_access_id=library_grant.id,
            resource_type=(resource_type.value if resource_type else library_grant.resource_type),
            access_level=access_level.value,
            granted_by_id=self.catalog.director.id,
            **fields,
        ))

    async def teacher(self, school_grant, *, access_level=AccessLevel.FULL, **fields) -> TeacherResourceAccess:
        return await self._save(TeacherResourceAccess(
            teacher_id=self.catalog.teacher.id,
            school_id=school_grant.school_id,
            school_resource_access_id=school_grant.id,
            resource_type=school_grant.resource_type,
            access_level=access_level.value,
            **fields,
        ))

    async def teacher_exclusion(self, resource_type, resource_id, subject_id, **fields) -> TeacherResourceExclusion:
        return await self._save(TeacherResourceExclusion(
            teacher_id=self.catalog.teacher.id,
            school_id=self.catalog.school.id,
            subject_id=subject_id,
            resource_type=resource_type.value,
            resource_id=resource_id,
            **fields,
        ))

    async def school_exclusion(self, subject_id) -> SchoolResourceExclusion:
        return await self._save(SchoolResourceExclusion(
            school_id=self.catalog.school.id,
            subject_id=subject_id,
            excluded_by_id=self.catalog.director.id,
        ))


@pytest.fixture
def grants(session, catalog) -> GrantFactory:
    return GrantFactory(session, catalog)


@pytest.fixture
def resolver(session) -> AccessControlResolver:
    return AccessControlResolver(session, clock=lambda: NOW)


@pytest.fixture
def identity_of():
    """Build the identity scope a signed-in user would carry."""
    def _identity(user: User) -> IdentityScope:
        return IdentityScope(user_id=user.id, role=user.role, school_id=user.school_id)
    return _identity
