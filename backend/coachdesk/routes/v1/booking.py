# backend/coachdesk/routes/v1/booking.py
"""
Public booking routes - API v1

Endpoints:
    GET /available-slots - Bookable slots for one business-zone day
    POST /reservations - Reserve a slot (payment follows)
    POST /friend-code - Reserve a slot with a friend code (no payment)
    GET /reservations/{booking_id} - Reservation status
    POST /reservations/{booking_id}/checkout - Attach a Stripe checkout session
"""

import asyncio
from datetime import date
import logging
from typing import NoReturn

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, status
from fastapi.params import Path
from sqlalchemy.orm import sessionmaker

from ...api.dependencies import (
    get_availability_service,
    get_reservation_service,
    get_session_factory,
)
from ...core.exceptions import DomainException
from ...ratelimit import rate_limit
from ...schemas.booking import (
    AvailableSlotsResponse,
    BookingResponse,
    CheckoutCreate,
    FriendCodeReservationCreate,
    PaymentResponse,
    ReservationCreate,
    ReservationResponse,
)
from ...services.availability_service import AvailabilityService
from ...services.reservation_service import ClientInfo, ReservationService
from ...tasks.event_worker import drain_events

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["booking-v1"])

ULID_PATH_PATTERN = r"^[0-9A-HJKMNP-TV-Z]{26}$"


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


def _client_info(payload: ReservationCreate) -> ClientInfo:
    return ClientInfo(
        email=str(payload.email),
        discord_tag=payload.discord_tag,
        rank=payload.rank,
        role=payload.role,
        hero=payload.hero,
        replay_code=payload.replay_code,
        notes=payload.notes,
    )


@router.get("/available-slots", response_model=AvailableSlotsResponse)
async def get_available_slots(
    target_date: date = Query(..., alias="date", description="Business-zone date, YYYY-MM-DD"),
    session_type: str = Query(..., alias="sessionType"),
    service: AvailabilityService = Depends(get_availability_service),
) -> AvailableSlotsResponse:
    """
    List bookable slots for a day.

    An empty list is not an error; ``reason`` explains why nothing is offered.
    """
    try:
        listing = await asyncio.to_thread(
            service.list_available_slots, target_date, session_type
        )
    except DomainException as e:
        handle_domain_exception(e)
    return AvailableSlotsResponse(**listing.to_dict())


@router.post(
    "/reservations",
    response_model=ReservationResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("reservation"))],
)
async def create_reservation(
    payload: ReservationCreate,
    background_tasks: BackgroundTasks,
    service: ReservationService = Depends(get_reservation_service),
    session_factory: sessionmaker = Depends(get_session_factory),
) -> ReservationResponse:
    """Reserve a slot. The booking stays PENDING until payment succeeds."""
    try:
        result = await asyncio.to_thread(
            service.reserve,
            payload.slot,
            payload.session_type,
            _client_info(payload),
            submission_id=payload.submission_id,
        )
    except DomainException as e:
        handle_domain_exception(e)
    background_tasks.add_task(drain_events, session_factory)
    return ReservationResponse(**result.to_dict())


@router.post(
    "/friend-code",
    response_model=ReservationResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(rate_limit("friend_code"))],
)
async def create_friend_code_reservation(
    payload: FriendCodeReservationCreate,
    background_tasks: BackgroundTasks,
    service: ReservationService = Depends(get_reservation_service),
    session_factory: sessionmaker = Depends(get_session_factory),
) -> ReservationResponse:
    """Reserve and confirm a slot in one step using a friend code."""
    try:
        result = await asyncio.to_thread(
            service.reserve,
            payload.slot,
            payload.session_type,
            _client_info(payload),
            submission_id=payload.submission_id,
            friend_code=payload.friend_code,
        )
    except DomainException as e:
        handle_domain_exception(e)
    background_tasks.add_task(drain_events, session_factory)
    return ReservationResponse(**result.to_dict())


@router.get("/reservations/{booking_id}", response_model=BookingResponse)
async def get_reservation(
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    service: ReservationService = Depends(get_reservation_service),
) -> BookingResponse:
    try:
        booking = await asyncio.to_thread(service.get_reservation, booking_id)
    except DomainException as e:
        handle_domain_exception(e)
    return BookingResponse.from_booking(booking)


@router.post(
    "/reservations/{booking_id}/checkout",
    response_model=PaymentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def record_checkout(
    payload: CheckoutCreate,
    booking_id: str = Path(..., description="Booking ULID", pattern=ULID_PATH_PATTERN),
    service: ReservationService = Depends(get_reservation_service),
) -> PaymentResponse:
    """Link the Stripe checkout session created for this booking."""
    try:
        payment = await asyncio.to_thread(
            service.record_checkout,
            booking_id,
            stripe_session_id=payload.stripe_session_id,
            stripe_payment_id=payload.stripe_payment_id,
            amount=payload.amount,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return PaymentResponse.model_validate(payment, from_attributes=True)
