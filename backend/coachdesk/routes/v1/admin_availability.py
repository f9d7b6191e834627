# backend/coachdesk/routes/v1/admin_availability.py
"""
Admin availability routes - API v1

Endpoints (all require X-Admin-Token):
    GET /exceptions - List blocks, holidays and booked ranges
    POST /exceptions - Block a time range
    DELETE /exceptions/{exception_id} - Remove a block (booked ranges are refused)
    GET / - List weekly rules
    POST / - Create a weekly rule
    PATCH /{rule_id} - Update a weekly rule
    DELETE /{rule_id} - Delete a weekly rule with no future bookings
"""

import asyncio
from datetime import datetime
import logging
from typing import List, NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status

from ...api.dependencies import (
    get_availability_exception_service,
    get_availability_service,
    require_admin,
)
from ...core.exceptions import DomainException, ValidationException
from ...schemas.availability import (
    AvailabilityExceptionCreate,
    AvailabilityExceptionListResponse,
    AvailabilityExceptionResponse,
    AvailabilityRuleCreate,
    AvailabilityRuleResponse,
    AvailabilityRuleUpdate,
)
from ...services.availability_exception_service import AvailabilityExceptionService
from ...services.availability_service import AvailabilityService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin-availability-v1"], dependencies=[Depends(require_admin)])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


# ============================================================================
# Exceptions (static paths first)
# ============================================================================


@router.get("/exceptions", response_model=AvailabilityExceptionListResponse)
async def list_exceptions(
    reason: Optional[str] = Query(None, pattern="^(booked|blocked|holiday)$"),
    start: Optional[datetime] = Query(None, description="Only ranges starting at or after this instant"),
    end: Optional[datetime] = Query(None, description="Only ranges ending at or before this instant"),
    service: AvailabilityExceptionService = Depends(get_availability_exception_service),
) -> AvailabilityExceptionListResponse:
    try:
        for value in (start, end):
            if value is not None and value.tzinfo is None:
                raise ValidationException("Dates must include a timezone offset", code="NAIVE_DATETIME")
        exceptions = await asyncio.to_thread(
            service.list_exceptions, reason=reason, start=start, end=end
        )
    except DomainException as e:
        handle_domain_exception(e)
    items = [AvailabilityExceptionResponse(**exc.to_dict()) for exc in exceptions]
    return AvailabilityExceptionListResponse(exceptions=items, total=len(items))


@router.post(
    "/exceptions",
    response_model=AvailabilityExceptionResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_exception(
    payload: AvailabilityExceptionCreate,
    service: AvailabilityExceptionService = Depends(get_availability_exception_service),
) -> AvailabilityExceptionResponse:
    try:
        block = await asyncio.to_thread(
            service.create_block,
            payload.date,
            payload.end_date,
            reason=payload.reason,
            notes=payload.notes,
            slot_id=payload.slot_id,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return AvailabilityExceptionResponse(**block.to_dict())


@router.delete("/exceptions/{exception_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_exception(
    exception_id: str,
    service: AvailabilityExceptionService = Depends(get_availability_exception_service),
) -> Response:
    try:
        await asyncio.to_thread(service.delete_block, exception_id)
    except DomainException as e:
        handle_domain_exception(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ============================================================================
# Weekly rules
# ============================================================================


@router.get("", response_model=List[AvailabilityRuleResponse])
async def list_rules(
    session_type: Optional[str] = Query(None, alias="sessionType"),
    day_of_week: Optional[int] = Query(None, alias="dayOfWeek", ge=0, le=6),
    service: AvailabilityService = Depends(get_availability_service),
) -> List[AvailabilityRuleResponse]:
    rules = await asyncio.to_thread(
        service.list_rules, session_type=session_type, day_of_week=day_of_week
    )
    return [AvailabilityRuleResponse(**rule.to_dict()) for rule in rules]


@router.post("", response_model=AvailabilityRuleResponse, status_code=status.HTTP_201_CREATED)
async def create_rule(
    payload: AvailabilityRuleCreate,
    service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityRuleResponse:
    try:
        rule = await asyncio.to_thread(service.create_rule, payload.model_dump())
    except DomainException as e:
        handle_domain_exception(e)
    return AvailabilityRuleResponse(**rule.to_dict())


@router.patch("/{rule_id}", response_model=AvailabilityRuleResponse)
async def update_rule(
    rule_id: str,
    payload: AvailabilityRuleUpdate,
    service: AvailabilityService = Depends(get_availability_service),
) -> AvailabilityRuleResponse:
    try:
        rule = await asyncio.to_thread(
            service.update_rule, rule_id, payload.model_dump(exclude_unset=True)
        )
    except DomainException as e:
        handle_domain_exception(e)
    return AvailabilityRuleResponse(**rule.to_dict())


@router.delete("/{rule_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_rule(
    rule_id: str,
    service: AvailabilityService = Depends(get_availability_service),
) -> Response:
    try:
        await asyncio.to_thread(service.delete_rule, rule_id)
    except DomainException as e:
        handle_domain_exception(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
