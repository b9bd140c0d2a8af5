"""Code system administration API endpoints."""

from datetime import datetime

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status
from pydantic import BaseModel, Field

from acm_gateway.core.config import settings
from acm_gateway.core.deps import get_registry
from acm_gateway.integrations.base import LoadError, StoreError
from acm_gateway.services.codesystem_service import (
    CodeTableRegistry,
    CodeTag,
    CodesystemError,
)

logger = structlog.get_logger()

router = APIRouter()


class CodeTagSchema(BaseModel):
    """Code tag keyed by backing table column names."""

    tagkey: str | None = None
    observationtype: str | None = None
    datatype: str | None = None
    encode: str | None = None
    parameterlabel: str | None = None
    encodesystem: str | None = None
    subid: str | None = None
    description: str | None = None
    source: str | None = None
    mds: str | None = None
    mdsid: str | None = None
    vmd: str | None = None
    vmdid: str | None = None
    channel: str | None = None
    channelid: str | None = None


class CodesystemResponse(BaseModel):
    """Code system catalogue entry."""

    name: str
    filename: str | None
    table_name: str
    is_default: bool
    is_current: bool
    active: bool
    created_at: datetime | None
    updated_at: datetime | None


class PaginatedCodeTagResponse(BaseModel):
    """Paginated code tag response."""

    items: list[CodeTagSchema]
    total: int
    page: int
    page_size: int
    total_pages: int


class CodeTagUpsertRequest(BaseModel):
    """Bulk upsert request."""

    tags: list[CodeTagSchema] = Field(..., min_length=1)
    force_update: bool = True


class CodeTagUpsertResponse(BaseModel):
    """Bulk upsert result."""

    name: str
    table_name: str
    updated: int


class CodesystemCreate(BaseModel):
    """Create code system mapping request."""

    name: str = Field(..., min_length=1, max_length=50)
    tags: list[CodeTagSchema] = Field(default_factory=list)


class BootstrapResponse(BaseModel):
    """Code system reload result."""

    status: str
    name: str
    table_name: str
    tag_count: int
    message: str


def _to_tags(items: list[CodeTagSchema]) -> list[CodeTag]:
    return [CodeTag.from_row(item.model_dump()) for item in items]


@router.get("", response_model=list[CodesystemResponse])
async def list_codesystems(
    registry: CodeTableRegistry = Depends(get_registry),
) -> list[CodesystemResponse]:
    """List code system mappings."""
    try:
        entries = await registry.list_mappings()
    except StoreError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return [
        CodesystemResponse(
            name=entry.name,
            filename=entry.filename,
            table_name=entry.table_name,
            is_default=entry.is_default,
            is_current=entry.is_current,
            active=entry.name == registry.active_name,
            created_at=entry.created_at,
            updated_at=entry.updated_at,
        )
        for entry in entries
    ]


@router.post("", response_model=CodeTagUpsertResponse, status_code=status.HTTP_201_CREATED)
async def create_codesystem(
    data: CodesystemCreate,
    registry: CodeTableRegistry = Depends(get_registry),
) -> CodeTagUpsertResponse:
    """Create a new code system mapping with its own backing table."""
    try:
        mapping = await registry.create_mapping(data.name, _to_tags(data.tags))
    except CodesystemError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except StoreError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    return CodeTagUpsertResponse(
        name=mapping.name,
        table_name=mapping.table_name,
        updated=len(mapping.tags),
    )


@router.post("/reload", response_model=BootstrapResponse)
async def reload_codesystem(
    registry: CodeTableRegistry = Depends(get_registry),
) -> BootstrapResponse:
    """Re-run the bootstrap from the configured code system document."""
    path = settings.resolve_codesystem_document()
    try:
        result = await registry.bootstrap_file(path)
    except LoadError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=str(e))
    except StoreError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    logger.info("Code system reloaded via API", name=result.name, status=result.status.value)
    return BootstrapResponse(
        status=result.status.value,
        name=result.name,
        table_name=result.table_name,
        tag_count=result.tag_count,
        message=result.message,
    )


@router.get("/{name}/tags", response_model=PaginatedCodeTagResponse)
async def list_codesystem_tags(
    name: str,
    page: int = Query(1, ge=1),
    page_size: int = Query(50, ge=1, le=500),
    registry: CodeTableRegistry = Depends(get_registry),
) -> PaginatedCodeTagResponse:
    """Browse the backing table of a code system mapping."""
    try:
        tags, total = await registry.page_tags(name, page=page, page_size=page_size)
    except StoreError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    total_pages = (total + page_size - 1) // page_size if page_size > 0 else 0

    return PaginatedCodeTagResponse(
        items=[CodeTagSchema(**tag.to_row()) for tag in tags],
        total=total,
        page=page,
        page_size=page_size,
        total_pages=total_pages,
    )


@router.post("/{name}/tags", response_model=CodeTagUpsertResponse)
async def upsert_codesystem_tags(
    name: str,
    data: CodeTagUpsertRequest,
    registry: CodeTableRegistry = Depends(get_registry),
) -> CodeTagUpsertResponse:
    """Insert or update tags of a code system mapping, keyed on tagkey."""
    try:
        table_name = await registry.table_name_for(name)
        updated = await registry.upsert(table_name, _to_tags(data.tags), force_update=data.force_update)
    except CodesystemError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except StoreError as e:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(e))

    logger.info("Code tags updated via API", name=name, table=table_name, updated=updated)
    return CodeTagUpsertResponse(name=name, table_name=table_name, updated=updated)
