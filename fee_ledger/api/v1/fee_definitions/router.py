"""Fee definitions router: create draft, publish, archive, lookup."""

from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from fee_ledger.core.enums import FeeDefinitionStatus
from fee_ledger.core.exceptions import ServiceError
from fee_ledger.db.session import get_db

from .schemas import FeeDefinitionActionRequest, FeeDefinitionCreate, FeeDefinitionResponse
from . import service

router = APIRouter(prefix="/api/v1/fee-definitions", tags=["fee-definitions"])


def _http_error(e: ServiceError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail={"code": e.code, "message": e.message})


@router.post(
    "",
    response_model=FeeDefinitionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_fee_definition(
    payload: FeeDefinitionCreate,
    db: AsyncSession = Depends(get_db),
) -> FeeDefinitionResponse:
    try:
        return await service.create_definition(db, payload)
    except ServiceError as e:
        raise _http_error(e)


@router.get("", response_model=List[FeeDefinitionResponse])
async def list_fee_definitions(
    class_ref: Optional[UUID] = Query(None),
    period_ref: Optional[UUID] = Query(None),
    status_filter: Optional[FeeDefinitionStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_db),
) -> List[FeeDefinitionResponse]:
    return await service.list_definitions(db, class_ref=class_ref, period_ref=period_ref, status_filter=status_filter)


@router.get("/active", response_model=FeeDefinitionResponse)
async def read_active_fee_definition(
    class_ref: UUID,
    period_ref: UUID,
    db: AsyncSession = Depends(get_db),
) -> FeeDefinitionResponse:
    try:
        return await service.get_active_definition(db, class_ref, period_ref)
    except ServiceError as e:
        raise _http_error(e)


@router.get("/{definition_id}", response_model=FeeDefinitionResponse)
async def read_fee_definition(
    definition_id: UUID,
    db: AsyncSession = Depends(get_db),
) -> FeeDefinitionResponse:
    try:
        return await service.get_definition(db, definition_id)
    except ServiceError as e:
        raise _http_error(e)


@router.post("/{definition_id}/publish", response_model=FeeDefinitionResponse)
async def publish_fee_definition(
    definition_id: UUID,
    payload: FeeDefinitionActionRequest = FeeDefinitionActionRequest(),
    db: AsyncSession = Depends(get_db),
) -> FeeDefinitionResponse:
    try:
        return await service.publish_definition(db, definition_id, actor=payload.actor)
    except ServiceError as e:
        raise _http_error(e)


@router.post("/{definition_id}/archive", response_model=FeeDefinitionResponse)
async def archive_fee_definition(
    definition_id: UUID,
    payload: FeeDefinitionActionRequest = FeeDefinitionActionRequest(),
    db: AsyncSession = Depends(get_db),
) -> FeeDefinitionResponse:
    try:
        return await service.archive_definition(db, definition_id, actor=payload.actor)
    except ServiceError as e:
        raise _http_error(e)
