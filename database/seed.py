# LibraryGate - seed database with a demo platform, school and grants
import asyncio
from passlib.context import CryptContext
from sqlalchemy import select

from config import get_settings
from . import database
from .models import (
    AccessLevel,
    LibraryClass,
    LibraryResourceAccess,
    LibrarySubject,
    LibraryTopic,
    LibraryVideoLesson,
    Platform,
    ResourceType,
    Role,
    School,
    SchoolClass,
    User,
)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def _user(email: str, password: str, role: Role, full_name: str, **kwargs) -> User:
    return User(email=email, password_hash=pwd_context.hash(password), role=role.value,
                full_name=full_name, **kwargs)


async def seed():
    await database.init_db(get_settings().database_url)
    async with database.async_session() as session:
        r = await session.execute(select(User).limit(1))
        if r.scalar_one_or_none():
            print("Database already seeded. Skip.")
            return

        platform = Platform(name="Open Library")
        school = School(school_name="Hillside Academy", status="approved")
        session.add_all([platform, school])
        await session.flush()

        grade7 = SchoolClass(school_id=school.id, name="Grade 7")
        grade8 = SchoolClass(school_id=school.id, name="Grade 8")
        jss1 = LibraryClass(platform_id=platform.id, name="JSS1")
        session.add_all([grade7, grade8, jss1])
        await session.flush()

        maths = LibrarySubject(platform_id=platform.id, class_id=jss1.id, name="Mathematics", code="MTH")
        science = LibrarySubject(platform_id=platform.id, class_id=jss1.id, name="Basic Science", code="SCI")
        session.add_all([maths, science])
        await session.flush()

        fractions = LibraryTopic(platform_id=platform.id, subject_id=maths.id, title="Fractions")
        cells = LibraryTopic(platform_id=platform.id, subject_id=science.id, title="Cells")
        session.add_all([fractions, cells])
        await session.flush()

        session.add_all([
            LibraryVideoLesson(platform_id=platform.id, subject_id=maths.id, topic_id=fractions.id,
                               title="Adding fractions", status="published"),
            LibraryVideoLesson(platform_id=platform.id, subject_id=maths.id, topic_id=fractions.id,
                               title="Dividing fractions", status="draft"),
            LibraryVideoLesson(platform_id=platform.id, subject_id=science.id, topic_id=cells.id,
                               title="Inside a cell", status="published"),
        ])

        owner = _user("owner@library.test", "owner123", Role.library_owner, "Lena Library",
                      platform_id=platform.id)
        director = _user("director@hillside.test", "director123", Role.school_director, "Dan Director",
                         school_id=school.id)
        teacher = _user("teacher@hillside.test", "teach123", Role.teacher, "Tara Teacher",
                        school_id=school.id)
        student1 = _user("student1@hillside.test", "stu1", Role.student, "Sam Student",
                         school_id=school.id, current_class_id=grade7.id)
        student2 = _user("student2@hillside.test", "stu2", Role.student, "Sade Student",
                         school_id=school.id, current_class_id=grade8.id)
        session.add_all([owner, director, teacher, student1, student2])
        await session.flush()

        session.add(LibraryResourceAccess(
            platform_id=platform.id, school_id=school.id, resource_type=ResourceType.ALL.value,
            access_level=AccessLevel.FULL.value, granted_by_id=owner.id,
        ))
        await session.commit()
    print("Seed completed.")


if __name__ == "__main__":
    asyncio.run(seed())
