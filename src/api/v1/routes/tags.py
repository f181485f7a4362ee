"""Tag API routes."""

from fastapi import APIRouter, Depends, Query, Request, status

from api.v1.dependencies import get_tag_service
from api.v1.schemas.tag import (
    InsertUnitRequest,
    StartAutoTagRequest,
    TagContentCount,
    TagContentCountResponse,
    TagCreate,
    TagDetailResponse,
    TagEmpty,
    TagEmptyResponse,
    TagItemSchema,
    TagListResponse,
    TagParentResponse,
    TagResponse,
    TagRoot,
    TagRootResponse,
)
from core.config import settings
from core.exceptions import NoActiveAutoTagError
from core.rate_limit import READ_LIMIT, WRITE_LIMIT, limiter
from domain.entities.tag import Tag
from domain.entities.tag_type import TagType
from domain.services.tag_service import TagService

router = APIRouter(prefix="/tags", tags=["tags"])


def _to_response(tag: Tag) -> TagResponse:
    return TagResponse.model_validate(tag)


def _to_list(tags: list[Tag]) -> TagListResponse:
    return TagListResponse(data=[_to_response(tag) for tag in tags])


# Fixed paths are registered before /{tag_id} routes so they are matched first.


@router.get(
    "",
    response_model=TagListResponse,
    summary="List tags",
)
@limiter.limit(READ_LIMIT)  # type: ignore[untyped-decorator]
async def list_tags(
    request: Request,
    page: int = Query(1, ge=1),
    page_size: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    service: TagService = Depends(get_tag_service),
) -> TagListResponse:
    """Get one page of tags ordered by ID, each with its contents."""
    return _to_list(await service.get_tags(page, page_size))


@router.post(
    "",
    response_model=TagDetailResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a tag",
    responses={
        201: {"description": "Tag created successfully"},
        409: {"description": "Tag number already used for this type"},
    },
)
@limiter.limit(WRITE_LIMIT)  # type: ignore[untyped-decorator]
async def create_tag(
    request: Request,
    body: TagCreate,
    service: TagService = Depends(get_tag_service),
) -> TagDetailResponse:
    """Create a tag. The next free number for the type is used when none is given."""
    tag = await service.create_tag(
        tag_type=body.tag_type,
        location_key_id=body.location_key_id,
        is_auto=body.is_auto,
        tag_number=body.tag_number,
        holds_items=body.holds_items,
        in_tag_group_key_id=body.in_tag_group_key_id,
    )
    return TagDetailResponse(data=_to_response(tag))


@router.post(
    "/auto/start",
    response_model=TagDetailResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Start an auto tag",
    responses={400: {"description": "Tag type cannot be used automatically"}},
)
@limiter.limit(WRITE_LIMIT)  # type: ignore[untyped-decorator]
async def start_auto_tag(
    request: Request,
    body: StartAutoTagRequest,
    service: TagService = Depends(get_tag_service),
) -> TagDetailResponse:
    """Stop conflicting auto tags and reserve one of the requested type."""
    tag = await service.start_auto_tag(body.tag_type, body.location_key_id, body.user_key_id)
    return TagDetailResponse(data=_to_response(tag))


@router.post(
    "/auto/stop-all",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Stop all auto tags",
)
@limiter.limit(WRITE_LIMIT)  # type: ignore[untyped-decorator]
async def stop_all_auto_tags(
    request: Request,
    service: TagService = Depends(get_tag_service),
) -> None:
    await service.stop_all_auto_tags()
    return None


@router.post(
    "/auto/stop/{tag_type}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Stop the auto tag of a type",
    responses={404: {"description": "No auto tag of this type is running"}},
)
@limiter.limit(WRITE_LIMIT)  # type: ignore[untyped-decorator]
async def stop_auto_tag(
    request: Request,
    tag_type: TagType,
    service: TagService = Depends(get_tag_service),
) -> None:
    if not await service.stop_auto_tag(tag_type):
        raise NoActiveAutoTagError(tag_type.value)
    return None


@router.get(
    "/number/{tag_number}/type/{tag_type}",
    response_model=TagDetailResponse,
    summary="Get a tag by number and type",
    responses={404: {"description": "Tag not found"}},
)
@limiter.limit(READ_LIMIT)  # type: ignore[untyped-decorator]
async def get_tag_by_number_and_type(
    request: Request,
    tag_number: int,
    tag_type: TagType,
    service: TagService = Depends(get_tag_service),
) -> TagDetailResponse:
    tag = await service.get_tag_by_number_and_type(tag_number, tag_type)
    return TagDetailResponse(data=_to_response(tag))


@router.get(
    "/units/{unit_id}/tags",
    response_model=TagListResponse,
    summary="List tags holding a unit",
)
@limiter.limit(READ_LIMIT)  # type: ignore[untyped-decorator]
async def get_unit_tags(
    request: Request,
    unit_id: int,
    service: TagService = Depends(get_tag_service),
) -> TagListResponse:
    """At most one tag, unless the unit has split placements."""
    return _to_list(await service.get_unit_tags(unit_id))


@router.post(
    "/transport-box/{transport_box_tag_id}/units/{unit_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Move a unit into a transport box",
    responses={
        400: {"description": "Target is not a transport box"},
        404: {"description": "Tag not found"},
    },
)
@limiter.limit(WRITE_LIMIT)  # type: ignore[untyped-decorator]
async def move_unit_to_transport_box(
    request: Request,
    transport_box_tag_id: int,
    unit_id: int,
    service: TagService = Depends(get_tag_service),
) -> None:
    """Take the unit out of every tag and place it in the transport box."""
    await service.move_unit_to_transport_box_tag(unit_id, transport_box_tag_id)
    return None


@router.get(
    "/{tag_id}",
    response_model=TagDetailResponse,
    summary="Get a tag",
    responses={404: {"description": "Tag not found"}},
)
@limiter.limit(READ_LIMIT)  # type: ignore[untyped-decorator]
async def get_tag(
    request: Request,
    tag_id: int,
    service: TagService = Depends(get_tag_service),
) -> TagDetailResponse:
    """Get a tag with its contents, nested tags included."""
    return TagDetailResponse(data=_to_response(await service.get_tag(tag_id)))


@router.delete(
    "/{tag_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete a tag",
    responses={
        404: {"description": "Tag not found"},
        409: {"description": "Tag still has contents"},
    },
)
@limiter.limit(WRITE_LIMIT)  # type: ignore[untyped-decorator]
async def delete_tag(
    request: Request,
    tag_id: int,
    service: TagService = Depends(get_tag_service),
) -> None:
    """Delete an empty tag."""
    await service.delete_tag(tag_id)
    return None


@router.post(
    "/{tag_id}/units",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Place a unit in a tag",
    responses={
        400: {"description": "Tag is dead"},
        404: {"description": "Tag not found"},
        409: {"description": "Placement conflicts with another request"},
    },
)
@limiter.limit(WRITE_LIMIT)  # type: ignore[untyped-decorator]
async def insert_unit(
    request: Request,
    tag_id: int,
    body: InsertUnitRequest,
    service: TagService = Depends(get_tag_service),
) -> None:
    """Place a unit, removing it from any other tag unless marked as split."""
    await service.insert_unit_in_tag(tag_id, body.unit_id, body.time, body.mark_as_split)
    return None


@router.delete(
    "/{tag_id}/units/{unit_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove a unit from a tag",
    responses={404: {"description": "Tag not found or unit not in tag"}},
)
@limiter.limit(WRITE_LIMIT)  # type: ignore[untyped-decorator]
async def remove_unit(
    request: Request,
    tag_id: int,
    unit_id: int,
    service: TagService = Depends(get_tag_service),
) -> None:
    await service.remove_unit_from_tag(tag_id, unit_id)
    return None


@router.post(
    "/{tag_id}/items",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Place an item in a tag",
    responses={
        400: {"description": "Tag does not hold items"},
        404: {"description": "Tag not found"},
    },
)
@limiter.limit(WRITE_LIMIT)  # type: ignore[untyped-decorator]
async def insert_item(
    request: Request,
    tag_id: int,
    body: TagItemSchema,
    service: TagService = Depends(get_tag_service),
) -> None:
    await service.insert_item_in_tag(tag_id, body.to_entity())
    return None


@router.delete(
    "/{tag_id}/items",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove an item from a tag",
    responses={404: {"description": "Tag not found or item not in tag"}},
)
@limiter.limit(WRITE_LIMIT)  # type: ignore[untyped-decorator]
async def remove_item(
    request: Request,
    tag_id: int,
    body: TagItemSchema,
    service: TagService = Depends(get_tag_service),
) -> None:
    """Remove the placement matching item, serial and lot; the count is ignored."""
    await service.remove_item_from_tag(tag_id, body.to_entity())
    return None


@router.post(
    "/{tag_id}/indicators/{indicator_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Place an indicator in a tag",
    responses={404: {"description": "Tag not found"}},
)
@limiter.limit(WRITE_LIMIT)  # type: ignore[untyped-decorator]
async def insert_indicator(
    request: Request,
    tag_id: int,
    indicator_id: int,
    service: TagService = Depends(get_tag_service),
) -> None:
    await service.insert_indicator_in_tag(tag_id, indicator_id)
    return None


@router.delete(
    "/{tag_id}/indicators/{indicator_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Remove an indicator from a tag",
    responses={404: {"description": "Tag not found or indicator not in tag"}},
)
@limiter.limit(WRITE_LIMIT)  # type: ignore[untyped-decorator]
async def remove_indicator(
    request: Request,
    tag_id: int,
    indicator_id: int,
    service: TagService = Depends(get_tag_service),
) -> None:
    await service.remove_indicator_from_tag(tag_id, indicator_id)
    return None


@router.post(
    "/{target_tag_id}/tags/{source_tag_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Nest a tag inside another",
    responses={
        400: {"description": "Nesting would create a cycle"},
        404: {"description": "Tag not found"},
    },
)
@limiter.limit(WRITE_LIMIT)  # type: ignore[untyped-decorator]
async def insert_tag(
    request: Request,
    target_tag_id: int,
    source_tag_id: int,
    service: TagService = Depends(get_tag_service),
) -> None:
    """Nest the source tag in the target, detaching it from its old parent."""
    await service.insert_tag_in_tag(source_tag_id, target_tag_id)
    return None


@router.delete(
    "/{target_tag_id}/tags/{source_tag_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Take a nested tag out",
    responses={404: {"description": "Tag not found or not nested in target"}},
)
@limiter.limit(WRITE_LIMIT)  # type: ignore[untyped-decorator]
async def remove_tag(
    request: Request,
    target_tag_id: int,
    source_tag_id: int,
    service: TagService = Depends(get_tag_service),
) -> None:
    await service.remove_tag_from_tag(source_tag_id, target_tag_id)
    return None


@router.post(
    "/{source_tag_id}/move-to/{transport_tag_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Move a tag's contents onto a transport tag",
    responses={
        400: {"description": "Destination is not a transport tag"},
        404: {"description": "Tag not found"},
    },
)
@limiter.limit(WRITE_LIMIT)  # type: ignore[untyped-decorator]
async def move_content_to_transport(
    request: Request,
    source_tag_id: int,
    transport_tag_id: int,
    service: TagService = Depends(get_tag_service),
) -> None:
    await service.move_tag_content_to_transport_tag(source_tag_id, transport_tag_id)
    return None


@router.get(
    "/{tag_id}/is-empty",
    response_model=TagEmptyResponse,
    summary="Check whether a tag is empty",
)
@limiter.limit(READ_LIMIT)  # type: ignore[untyped-decorator]
async def is_tag_empty(
    request: Request,
    tag_id: int,
    service: TagService = Depends(get_tag_service),
) -> TagEmptyResponse:
    is_empty = await service.is_tag_empty(tag_id)
    return TagEmptyResponse(data=TagEmpty(tag_id=tag_id, is_empty=is_empty))


@router.get(
    "/{tag_id}/content-count",
    response_model=TagContentCountResponse,
    summary="Count a tag's direct contents",
)
@limiter.limit(READ_LIMIT)  # type: ignore[untyped-decorator]
async def get_content_count(
    request: Request,
    tag_id: int,
    service: TagService = Depends(get_tag_service),
) -> TagContentCountResponse:
    count = await service.get_tag_content_count(tag_id)
    return TagContentCountResponse(data=TagContentCount(tag_id=tag_id, content_count=count))


@router.get(
    "/{tag_id}/children",
    response_model=TagListResponse,
    summary="List tags nested directly in a tag",
)
@limiter.limit(READ_LIMIT)  # type: ignore[untyped-decorator]
async def get_children(
    request: Request,
    tag_id: int,
    service: TagService = Depends(get_tag_service),
) -> TagListResponse:
    return _to_list(await service.get_child_tags(tag_id))


@router.get(
    "/{tag_id}/parent",
    response_model=TagParentResponse,
    summary="Get the tag a tag is nested in",
)
@limiter.limit(READ_LIMIT)  # type: ignore[untyped-decorator]
async def get_parent(
    request: Request,
    tag_id: int,
    service: TagService = Depends(get_tag_service),
) -> TagParentResponse:
    parent = await service.get_parent_tag(tag_id)
    return TagParentResponse(data=_to_response(parent) if parent else None)


@router.get(
    "/{tag_id}/root",
    response_model=TagRootResponse,
    summary="Get the outermost tag containing a tag",
)
@limiter.limit(READ_LIMIT)  # type: ignore[untyped-decorator]
async def get_root(
    request: Request,
    tag_id: int,
    service: TagService = Depends(get_tag_service),
) -> TagRootResponse:
    root_tag_id = await service.get_root_tag_id(tag_id)
    return TagRootResponse(data=TagRoot(tag_id=tag_id, root_tag_id=root_tag_id))


@router.delete(
    "/{tag_id}/dissolve",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Dissolve a tag",
    responses={404: {"description": "Tag not found"}},
)
@limiter.limit(WRITE_LIMIT)  # type: ignore[untyped-decorator]
async def dissolve_tag(
    request: Request,
    tag_id: int,
    location_key_id: int | None = Query(None, description="Defaults to the tag's location"),
    service: TagService = Depends(get_tag_service),
) -> None:
    """Release everything the tag holds. The tag itself is kept."""
    await service.dissolve_tag(tag_id, location_key_id)
    return None


@router.delete(
    "/{tag_id}/contents",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Clear a tag's contents",
    responses={404: {"description": "Tag not found"}},
)
@limiter.limit(WRITE_LIMIT)  # type: ignore[untyped-decorator]
async def clear_contents(
    request: Request,
    tag_id: int,
    service: TagService = Depends(get_tag_service),
) -> None:
    await service.clear_tag_contents(tag_id)
    return None
