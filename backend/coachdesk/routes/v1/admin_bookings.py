"""Admin booking routes - API v1 (require X-Admin-Token)."""

import asyncio
import logging
from typing import List, NoReturn, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from sqlalchemy.orm import sessionmaker

from ...api.dependencies import get_reservation_service, get_session_factory, require_admin
from ...core.exceptions import DomainException
from ...models.booking import BookingStatus
from ...schemas.admin_bookings import AdminBookingUpdate
from ...schemas.booking import BookingResponse
from ...services.reservation_service import ReservationService
from ...tasks.event_worker import drain_events

logger = logging.getLogger(__name__)

router = APIRouter(tags=["admin-bookings-v1"], dependencies=[Depends(require_admin)])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.get("", response_model=List[BookingResponse])
async def list_bookings(
    booking_status: Optional[BookingStatus] = Query(None, alias="status"),
    limit: int = Query(100, ge=1, le=500),
    service: ReservationService = Depends(get_reservation_service),
) -> List[BookingResponse]:
    bookings = await asyncio.to_thread(
        service.list_bookings,
        booking_status.value if booking_status else None,
        limit,
    )
    return [BookingResponse.from_booking(booking) for booking in bookings]


@router.get("/{booking_id}", response_model=BookingResponse)
async def get_booking(
    booking_id: str,
    service: ReservationService = Depends(get_reservation_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(service.get_reservation, booking_id)
    except DomainException as e:
        handle_domain_exception(e)
    return BookingResponse.from_booking(booking)


@router.patch("/{booking_id}", response_model=BookingResponse)
async def update_booking(
    booking_id: str,
    payload: AdminBookingUpdate,
    background_tasks: BackgroundTasks,
    service: ReservationService = Depends(get_reservation_service),
    session_factory: sessionmaker = Depends(get_session_factory),
) -> BookingResponse:
    """Change status and/or notes. CANCELLED frees the slot for new reservations."""
    try:
        booking = await asyncio.to_thread(
            service.update_booking,
            booking_id,
            status=payload.status.value if payload.status else None,
            notes=payload.notes,
        )
    except DomainException as e:
        handle_domain_exception(e)
    background_tasks.add_task(drain_events, session_factory)
    return BookingResponse.from_booking(booking)
