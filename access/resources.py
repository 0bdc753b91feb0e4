# LibraryGate - catalogue lookups used when validating grants
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from database.models import CONTENT_MODELS, RESOURCE_ID_FIELDS, ResourceType
from .errors import BadRequestError, NotFoundError
from .models import ResourceScope

RESOURCE_LABELS = {
    ResourceType.SUBJECT: "Subject",
    ResourceType.TOPIC: "Topic",
    ResourceType.VIDEO: "Video",
    ResourceType.MATERIAL: "Material",
    ResourceType.ASSESSMENT: "Assessment",
}


async def validate_resource_ids(session: AsyncSession, platform_id: str, dto: ResourceScope) -> None:
    """The id for the scope's kind must be present and belong to the platform."""
    if dto.resource_type == ResourceType.ALL:
        return
    field = RESOURCE_ID_FIELDS[dto.resource_type]
    resource_id = getattr(dto, field)
    if not resource_id:
        raise BadRequestError(f"{field} is required for {dto.resource_type.value} resource type")
    model = CONTENT_MODELS[dto.resource_type]
    r = await session.execute(
        select(model.id).where(model.id == resource_id, model.platform_id == platform_id)
    )
    if r.scalar_one_or_none() is None:
        raise NotFoundError(f"{RESOURCE_LABELS[dto.resource_type]} not found in your platform")


async def validate_resource_belongs_to_subject(
    session: AsyncSession, subject_id: str, resource_type: ResourceType, resource_id: str
) -> None:
    label = RESOURCE_LABELS.get(resource_type)
    if resource_type in (ResourceType.ALL, ResourceType.SUBJECT) or label is None:
        raise BadRequestError("Only topics, videos, materials and assessments can be excluded")
    model = CONTENT_MODELS[resource_type]
    r = await session.execute(
        select(model.id).where(model.id == resource_id, model.subject_id == subject_id)
    )
    if r.scalar_one_or_none() is None:
        raise BadRequestError(f"{label} not found or does not belong to this subject")
