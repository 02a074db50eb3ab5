import logging

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy.orm import Session

from src.infrastructure.db.session import SessionLocal
from src.application.booking_service import BookingService
from src.application.webhook_processor import WebhookProcessor
from src.api.schemas.schemas import (
    BookingCreateRequest,
    BookingCreateResponse,
    BookingItemResponse,
    BookingResponse,
    CheckoutSessionRequest,
    CheckoutSessionResponse,
    EventAvailabilityResponse,
    OutboxEventResponse,
    TicketResponse,
    TicketTypeAvailabilityResponse,
    WebhookAckResponse,
)
from src.domain.exceptions import (
    BookingCreationFailed,
    BookingNotPayable,
    EventNotBookable,
    FulfillmentError,
    InsufficientInventory,
    InvalidSignature,
    InvalidStateTransitionError,
    MalformedNotification,
    NotFound,
    OrderLimitExceeded,
    PaymentAccountNotReady,
    PaymentGatewayNotConfigured,
    PaymentSessionFailed,
)
from src.domain.quote import CustomerContact, RequestedLine
from src.infrastructure.db.models import Booking, OutboxEvent, Ticket
from src.infrastructure.payments.stripe_gateway import StripeGateway
from src.infrastructure.repositories.event_repository import EventRepository
from src.infrastructure.repositories.outbox_repository import OutboxRepository
from src.infrastructure.repositories.ticket_repository import TicketRepository
from src.infrastructure.repositories.ticket_type_repository import TicketTypeRepository


router = APIRouter()
logger = logging.getLogger(__name__)

_ERROR_STATUS: dict[type[FulfillmentError], int] = {
    NotFound: status.HTTP_404_NOT_FOUND,
    EventNotBookable: status.HTTP_400_BAD_REQUEST,
    InsufficientInventory: status.HTTP_409_CONFLICT,
    OrderLimitExceeded: status.HTTP_400_BAD_REQUEST,
    BookingCreationFailed: status.HTTP_500_INTERNAL_SERVER_ERROR,
    BookingNotPayable: status.HTTP_409_CONFLICT,
    InvalidStateTransitionError: status.HTTP_409_CONFLICT,
    PaymentAccountNotReady: status.HTTP_400_BAD_REQUEST,
    PaymentSessionFailed: status.HTTP_502_BAD_GATEWAY,
    PaymentGatewayNotConfigured: status.HTTP_500_INTERNAL_SERVER_ERROR,
    InvalidSignature: status.HTTP_400_BAD_REQUEST,
    MalformedNotification: status.HTTP_400_BAD_REQUEST,
}


def get_db():
    db = SessionLocal()
    try:
        yield db
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


def get_payment_gateway() -> StripeGateway:
    return StripeGateway()


async def get_raw_body(request: Request) -> bytes:
    return await request.body()


def _http_error(exc: FulfillmentError) -> HTTPException:
    for cls in type(exc).__mro__:
        if cls in _ERROR_STATUS:
            return HTTPException(status_code=_ERROR_STATUS[cls], detail=str(exc))
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=str(exc),
    )


def _ticket_response(ticket: Ticket) -> TicketResponse:
    return TicketResponse(
        id=ticket.id,
        booking_id=ticket.booking_id,
        ticket_type_id=ticket.ticket_type_id,
        ticket_code=ticket.ticket_code,
        qr_code=ticket.qr_code,
        status=ticket.status.value,
        scanned_at=ticket.scanned_at.isoformat() if ticket.scanned_at else None,
    )


def _booking_response(booking: Booking) -> BookingResponse:
    return BookingResponse(
        id=booking.id,
        event_id=booking.event_id,
        user_id=booking.user_id,
        status=booking.status.value,
        total_price=booking.total_price,
        customer_name=booking.customer_name,
        customer_email=booking.customer_email,
        customer_phone=booking.customer_phone,
        payment_session_id=booking.payment_session_id,
        payment_intent_id=booking.payment_intent_id,
        items=[
            BookingItemResponse(
                ticket_type_id=item.ticket_type_id,
                quantity=item.quantity,
                unit_price=item.unit_price,
                total_price=item.total_price,
            )
            for item in booking.items
        ],
        tickets=[_ticket_response(ticket) for ticket in booking.tickets],
    )


def _outbox_response(item: OutboxEvent) -> OutboxEventResponse:
    return OutboxEventResponse(
        id=item.id,
        aggregate_type=item.aggregate_type,
        aggregate_id=item.aggregate_id,
        event_type=item.event_type,
        status=item.status,
        attempts=item.attempts,
        payload=item.payload,
        created_at=item.created_at.isoformat(),
    )


@router.get("/health")
def health():
    return {"message": "Ticket Fulfillment Engine is running"}


@router.post(
    "/bookings",
    response_model=BookingCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_booking(
    request: BookingCreateRequest,
    x_user_id: str | None = Header(default=None),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    service = BookingService(db, gateway)

    try:
        booking = service.create_booking(
            event_id=request.event_id,
            items=[
                RequestedLine(item.ticket_type_id, item.quantity)
                for item in request.items
            ],
            customer=CustomerContact(
                name=request.customer_name,
                email=request.customer_email,
                phone=request.customer_phone,
            ),
            user_id=x_user_id,
        )
    except FulfillmentError as exc:
        raise _http_error(exc) from exc

    # The booking is already committed; the client needs its id to retry checkout.
    try:
        handoff = service.start_checkout(booking.id)
    except FulfillmentError as exc:
        error = _http_error(exc)
        raise HTTPException(
            status_code=error.status_code,
            detail={"message": str(exc), "booking_id": booking.id},
        ) from exc

    return BookingCreateResponse(
        booking=_booking_response(booking),
        checkout_url=handoff.checkout_url,
    )


@router.get("/bookings/{booking_id}", response_model=BookingResponse)
def get_booking(
    booking_id: str,
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    try:
        booking = BookingService(db, gateway).get_booking(booking_id)
    except FulfillmentError as exc:
        raise _http_error(exc) from exc
    return _booking_response(booking)


@router.post("/bookings/{booking_id}/checkout", response_model=CheckoutSessionResponse)
def retry_booking_checkout(
    booking_id: str,
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    try:
        handoff = BookingService(db, gateway).start_checkout(booking_id)
    except FulfillmentError as exc:
        raise _http_error(exc) from exc

    return CheckoutSessionResponse(
        checkout_url=handoff.checkout_url,
        session_id=handoff.session_id,
    )


@router.post("/bookings/{booking_id}/cancel", response_model=BookingResponse)
def cancel_booking(
    booking_id: str,
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    try:
        booking = BookingService(db, gateway).cancel_booking(booking_id)
    except FulfillmentError as exc:
        raise _http_error(exc) from exc
    return _booking_response(booking)


@router.post("/checkout/sessions", response_model=CheckoutSessionResponse)
def create_checkout_session(
    request: CheckoutSessionRequest,
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    try:
        handoff = BookingService(db, gateway).start_metadata_checkout(
            event_id=request.event_id,
            items=[
                RequestedLine(ticket.ticket_type_id, ticket.quantity)
                for ticket in request.tickets
            ],
            customer_email=request.customer_email,
        )
    except FulfillmentError as exc:
        raise _http_error(exc) from exc

    return CheckoutSessionResponse(
        checkout_url=handoff.checkout_url,
        session_id=handoff.session_id,
    )


@router.post("/webhooks/payment", response_model=WebhookAckResponse)
def payment_webhook(
    raw_body: bytes = Depends(get_raw_body),
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    db: Session = Depends(get_db),
    gateway: StripeGateway = Depends(get_payment_gateway),
):
    try:
        outcome = WebhookProcessor(db, gateway).handle(raw_body, stripe_signature)
    except FulfillmentError as exc:
        logger.warning("Rejected payment notification: %s", exc)
        raise _http_error(exc) from exc

    return WebhookAckResponse(received=True, outcome=outcome.value)


@router.get("/events/{event_id}/availability", response_model=EventAvailabilityResponse)
def get_event_availability(event_id: str, db: Session = Depends(get_db)):
    event = EventRepository(db).get_by_id(event_id)
    if not event:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Event not found",
        )

    ticket_types = TicketTypeRepository(db).list_for_event(event.id)
    return EventAvailabilityResponse(
        event_id=event.id,
        title=event.title,
        status=event.status.value,
        starts_at=event.starts_at.isoformat(),
        ticket_types=[
            TicketTypeAvailabilityResponse(
                ticket_type_id=ticket_type.id,
                name=ticket_type.name,
                price=ticket_type.price,
                quantity_available=ticket_type.quantity_available,
                quantity_sold=ticket_type.quantity_sold,
                remaining=max(ticket_type.quantity_available - ticket_type.quantity_sold, 0),
                max_per_order=ticket_type.max_per_order,
                is_active=ticket_type.is_active,
            )
            for ticket_type in ticket_types
        ],
    )


@router.get("/tickets/{ticket_code}", response_model=TicketResponse)
def get_ticket(ticket_code: str, db: Session = Depends(get_db)):
    ticket = TicketRepository(db).get_by_code(ticket_code)
    if not ticket:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Ticket not found",
        )
    return _ticket_response(ticket)


@router.get("/outbox/events", response_model=list[OutboxEventResponse])
def list_outbox_events(
    status_filter: str = "PENDING",
    limit: int = 50,
    db: Session = Depends(get_db),
):
    safe_limit = max(1, min(limit, 200))
    events = OutboxRepository(db).list_by_status(status_filter, safe_limit)
    return [_outbox_response(item) for item in events]


@router.post("/outbox/events/{event_id}/mark-published", response_model=OutboxEventResponse)
def mark_outbox_event_published(
    event_id: str,
    db: Session = Depends(get_db),
):
    repo = OutboxRepository(db)
    item = repo.get_by_id(event_id)
    if not item:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Outbox event not found",
        )

    repo.mark_published(item)
    return _outbox_response(item)
