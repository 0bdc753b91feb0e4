"""Per-tier "turned off" sets."""
import pytest

from access import LibraryExclusionSet, SchoolExclusionSet, TeacherExclusionSet
from database.models import ResourceType


def test_library_set_rejects_container_kinds(catalog):
    with pytest.raises(ValueError):
        LibraryExclusionSet(catalog.school.id, ResourceType.SUBJECT)


async def test_library_set_only_sees_inactive_rows(session, catalog, grants):
    await grants.library(ResourceType.VIDEO, video_id=catalog.video_a.id)
    await grants.library_marker(ResourceType.VIDEO, video_id=catalog.video_b.id)
    await grants.library_marker(ResourceType.VIDEO, video_id=catalog.sci_video.id, school=catalog.other_school)
    assert await LibraryExclusionSet(catalog.school.id, ResourceType.VIDEO).ids(session) == {catalog.video_b.id}


async def test_school_set_apply_keeps_order(session, catalog, grants):
    await grants.school_exclusion(catalog.maths.id)
    visible = [catalog.science.id, catalog.maths.id, "later"]
    assert await SchoolExclusionSet(catalog.school.id).apply(session, visible) == [catalog.science.id, "later"]


async def test_teacher_set_matches_student_or_whole_class(session, catalog, grants):
    await grants.teacher_exclusion(ResourceType.VIDEO, catalog.video_a.id, catalog.maths.id,
                                   class_id=catalog.class7.id)
    # Aimed at one student of class 7 only
    await grants.teacher_exclusion(ResourceType.VIDEO, catalog.video_b.id, catalog.maths.id,
                                   class_id=catalog.class7.id, student_id=catalog.student2.id)
    await grants.teacher_exclusion(ResourceType.TOPIC, catalog.fractions.id, catalog.maths.id,
                                   student_id=catalog.student1.id)

    student1 = TeacherExclusionSet(catalog.school.id, catalog.student1.id, class_id=catalog.class7.id)
    assert await student1.ids(session) == {catalog.video_a.id, catalog.fractions.id}

    by_kind = await student1.ids_by_kind(session)
    assert by_kind[ResourceType.VIDEO] == {catalog.video_a.id}
    assert by_kind[ResourceType.TOPIC] == {catalog.fractions.id}
    assert by_kind[ResourceType.ASSESSMENT] == set()

    videos_only = TeacherExclusionSet(catalog.school.id, catalog.student2.id, class_id=catalog.class7.id,
                                      resource_type=ResourceType.VIDEO)
    assert await videos_only.ids(session) == {catalog.video_a.id, catalog.video_b.id}
