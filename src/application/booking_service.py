import logging
from typing import Iterable

from sqlalchemy.orm import Session

from src.application.availability import AvailabilityValidator
from src.application.booking_writer import BookingWriter
from src.application.payment_handoff import CheckoutHandoff, PaymentHandoff
from src.domain.exceptions import NotFound
from src.domain.quote import CustomerContact, RequestedLine
from src.domain.state_machine import BookingStateMachine, BookingStatus
from src.infrastructure.db.models import Booking
from src.infrastructure.payments.stripe_gateway import StripeGateway
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.outbox_repository import OutboxRepository


logger = logging.getLogger(__name__)


class BookingService:
    """Application service coordinating booking workflow."""

    def __init__(self, db: Session, gateway: StripeGateway):
        self.db = db
        self.booking_repository = BookingRepository(db)
        self.outbox = OutboxRepository(db)
        self.validator = AvailabilityValidator(db)
        self.writer = BookingWriter(db)
        self.handoff = PaymentHandoff(db, gateway)

    def create_booking(
        self,
        event_id: str,
        items: Iterable[RequestedLine],
        customer: CustomerContact,
        user_id: str | None = None,
    ) -> Booking:
        quote = self.validator.validate(event_id, items)
        booking = self.writer.write(quote, customer, user_id=user_id)

        # Committed before any processor call: a failed handoff must leave
        # the booking pending and reusable.
        self.db.commit()
        return booking

    def start_checkout(self, booking_id: str) -> CheckoutHandoff:
        booking = self.get_booking(booking_id)
        return self.handoff.start_for_booking(booking)

    def start_metadata_checkout(
        self,
        event_id: str,
        items: Iterable[RequestedLine],
        customer_email: str | None = None,
    ) -> CheckoutHandoff:
        quote = self.validator.validate(event_id, items)
        return self.handoff.start_for_quote(quote, customer_email=customer_email)

    def cancel_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id, for_update=True)
        if not booking:
            raise NotFound(f"Booking not found: {booking_id}")

        self._transition(booking, BookingStatus.CANCELLED)
        self.outbox.add_event(
            aggregate_type="booking",
            aggregate_id=booking.id,
            event_type="BOOKING_CANCELLED",
            payload={
                "booking_id": booking.id,
                "event_id": booking.event_id,
                "customer_email": booking.customer_email,
            },
            dedupe_key=f"booking:{booking.id}:cancelled",
        )
        self.db.flush()
        logger.info("Booking %s cancelled on request", booking.id)
        return booking

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise NotFound(f"Booking not found: {booking_id}")
        return booking

    def _transition(self, booking: Booking, to_status: BookingStatus) -> None:
        BookingStateMachine.validate_transition(booking.status, to_status)
        self.booking_repository.update_status(booking, to_status)
