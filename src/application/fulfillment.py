from dataclasses import dataclass, field
from decimal import Decimal
import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.application.ticket_issuer import TicketIssuer
from src.domain.exceptions import (
    FulfillmentError,
    MalformedNotification,
    NotFound,
    PartialFulfillmentFailure,
)
from src.domain.state_machine import BookingStateMachine, BookingStatus
from src.infrastructure.db.models import Booking, BookingItem, Ticket
from src.infrastructure.payments.payloads import CheckoutSessionPayload
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.event_repository import EventRepository
from src.infrastructure.repositories.outbox_repository import OutboxRepository
from src.infrastructure.repositories.ticket_type_repository import TicketTypeRepository


logger = logging.getLogger(__name__)


@dataclass
class FulfillmentResult:
    booking: Booking
    outcome: str
    tickets: list[Ticket] = field(default_factory=list)


@dataclass
class _Line:
    ticket_type_id: str
    quantity: int
    item: BookingItem | None = None


class FulfillmentFinalizer:
    """
    Turns a completed checkout session into a confirmed booking, sold
    inventory and issued tickets.

    Two entry shapes converge here: sessions carrying a booking_id update
    that booking in place, sessions without one materialize a booking from
    their metadata. Each purchased line runs in its own SAVEPOINT; a line
    that fails is rolled back and skipped while the others proceed, because
    the payment has already been captured.
    """

    def __init__(self, db: Session, issuer: TicketIssuer | None = None):
        self.db = db
        self.issuer = issuer or TicketIssuer(db)
        self.bookings = BookingRepository(db)
        self.events = EventRepository(db)
        self.ticket_types = TicketTypeRepository(db)
        self.outbox = OutboxRepository(db)

    def finalize(self, session: CheckoutSessionPayload) -> FulfillmentResult:
        booking = self._resolve_booking(session)

        if booking is None:
            booking = self._booking_from_metadata(session)
            lines = [
                _Line(line.ticket_type_id, line.quantity)
                for line in session.metadata.tickets
            ]
        elif booking.status == BookingStatus.CONFIRMED:
            logger.warning(
                "Booking %s already confirmed; ignoring completed session %s",
                booking.id,
                session.id,
            )
            return FulfillmentResult(booking=booking, outcome="already_confirmed")
        elif booking.status != BookingStatus.PENDING:
            logger.error(
                "Payment captured for booking %s in status %s (session %s); needs review",
                booking.id,
                booking.status.value,
                session.id,
            )
            self.outbox.add_event(
                aggregate_type="booking",
                aggregate_id=booking.id,
                event_type="BOOKING_PAYMENT_NEEDS_REVIEW",
                payload={
                    "booking_id": booking.id,
                    "status": booking.status.value,
                    "payment_session_id": session.id,
                    "payment_intent_id": session.payment_intent,
                },
                dedupe_key=f"booking:{booking.id}:needs_review:{session.id}",
            )
            self.db.flush()
            return FulfillmentResult(booking=booking, outcome="needs_review")
        else:
            lines = [
                _Line(item.ticket_type_id, item.quantity, item)
                for item in booking.items
            ]

        BookingStateMachine.validate_transition(booking.status, BookingStatus.CONFIRMED)
        self.bookings.update_status(booking, BookingStatus.CONFIRMED)
        booking.payment_session_id = session.id
        booking.payment_intent_id = session.payment_intent
        self.db.flush()

        issued: list[Ticket] = []
        failed: list[str] = []
        for line in lines:
            try:
                issued.extend(self._fulfill_line(booking, line))
            except (FulfillmentError, SQLAlchemyError):
                logger.exception(
                    "Could not fulfill %s x ticket type %s for booking %s",
                    line.quantity,
                    line.ticket_type_id,
                    booking.id,
                )
                failed.append(line.ticket_type_id)

        if session.amount_total is None:
            booking.total_price = sum((item.total_price for item in booking.items), Decimal("0"))

        self.outbox.add_event(
            aggregate_type="booking",
            aggregate_id=booking.id,
            event_type="BOOKING_CONFIRMED",
            payload={
                "booking_id": booking.id,
                "event_id": booking.event_id,
                "customer_name": booking.customer_name,
                "customer_email": booking.customer_email,
                "ticket_codes": [ticket.ticket_code for ticket in issued],
            },
            dedupe_key=f"booking:{booking.id}:confirmed",
        )
        self.db.flush()
        logger.info(
            "Booking %s confirmed with %s ticket(s) via session %s",
            booking.id,
            len(issued),
            session.id,
        )

        if failed:
            self.outbox.add_event(
                aggregate_type="booking",
                aggregate_id=booking.id,
                event_type="BOOKING_FULFILLMENT_INCOMPLETE",
                payload={
                    "booking_id": booking.id,
                    "failed_ticket_type_ids": failed,
                    "payment_session_id": session.id,
                },
                dedupe_key=f"booking:{booking.id}:incomplete:{session.id}",
            )
            self.db.flush()
            raise PartialFulfillmentFailure(booking.id, failed)

        return FulfillmentResult(booking=booking, outcome="fulfilled", tickets=issued)

    def _resolve_booking(self, session: CheckoutSessionPayload) -> Booking | None:
        booking_id = session.metadata.booking_id
        if booking_id:
            booking = self.bookings.get_by_id(booking_id, for_update=True)
            if booking:
                return booking
            logger.warning(
                "Booking %s from session %s no longer exists; rebuilding from metadata",
                booking_id,
                session.id,
            )
        return self.bookings.get_by_payment_session_id(session.id)

    def _booking_from_metadata(self, session: CheckoutSessionPayload) -> Booking:
        if not session.metadata.event_id or not session.metadata.tickets:
            raise MalformedNotification(
                f"Checkout session {session.id} is missing event_id or tickets metadata"
            )
        if not self.events.get_by_id(session.metadata.event_id):
            raise MalformedNotification(
                f"Checkout session {session.id} references unknown event {session.metadata.event_id}"
            )

        details = session.customer_details
        total = (
            Decimal(session.amount_total) / 100
            if session.amount_total is not None
            else Decimal("0")
        )
        booking = self.bookings.create_booking(
            event_id=session.metadata.event_id,
            total_price=total,
            customer_name=(details.name if details and details.name else "Unknown"),
            customer_email=(details.email if details and details.email else session.customer_email) or "",
            customer_phone=details.phone if details else None,
        )
        booking.payment_session_id = session.id
        self.db.flush()
        logger.info(
            "Booking %s created from session %s metadata for event %s",
            booking.id,
            session.id,
            booking.event_id,
        )
        return booking

    def _fulfill_line(self, booking: Booking, line: _Line) -> list[Ticket]:
        with self.db.begin_nested():
            item = line.item
            if item is None:
                ticket_type = self.ticket_types.get_by_id(line.ticket_type_id)
                if not ticket_type or ticket_type.event_id != booking.event_id:
                    raise NotFound(
                        f"Ticket type {line.ticket_type_id} not found for event {booking.event_id}"
                    )
                item = self.bookings.add_item(
                    booking,
                    ticket_type_id=ticket_type.id,
                    quantity=line.quantity,
                    unit_price=ticket_type.price,
                )
                self.db.flush()

            ticket_type = self.ticket_types.increment_sold(line.ticket_type_id, line.quantity)
            tickets = self.issuer.issue(
                booking_id=booking.id,
                booking_item_id=item.id,
                ticket_type_id=line.ticket_type_id,
                count=line.quantity,
            )

        if ticket_type.quantity_sold > ticket_type.quantity_available:
            logger.warning(
                "Ticket type %s oversold: %s sold of %s available",
                ticket_type.id,
                ticket_type.quantity_sold,
                ticket_type.quantity_available,
            )
        return tickets
