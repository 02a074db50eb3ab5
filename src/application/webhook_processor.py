from enum import Enum
import logging
from typing import Any, Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.application.fulfillment import FulfillmentFinalizer
from src.domain.exceptions import PartialFulfillmentFailure
from src.domain.state_machine import BookingStateMachine, BookingStatus
from src.domain.statuses import NotificationKind, VerificationStatus
from src.infrastructure.db.models import Booking
from src.infrastructure.payments.payloads import (
    AccountPayload,
    CheckoutSessionPayload,
    PaymentIntentPayload,
    parse_envelope,
    parse_object,
)
from src.infrastructure.payments.stripe_gateway import StripeGateway
from src.infrastructure.repositories.booking_repository import BookingRepository
from src.infrastructure.repositories.event_repository import EventRepository
from src.infrastructure.repositories.outbox_repository import OutboxRepository
from src.infrastructure.repositories.webhook_event_repository import WebhookEventRepository


logger = logging.getLogger(__name__)


class WebhookOutcome(str, Enum):
    PROCESSED = "processed"
    DUPLICATE = "duplicate"
    IGNORED = "ignored"


def account_verification_status(account: AccountPayload) -> VerificationStatus:
    if account.charges_enabled and account.payouts_enabled:
        return VerificationStatus.VERIFIED
    if account.requirements and account.requirements.currently_due:
        return VerificationStatus.PENDING
    return VerificationStatus.REJECTED


class WebhookProcessor:
    """
    Entry point for signed payment notifications.

    Order of work: verify the signature, parse the envelope, drop kinds we
    do not handle, claim the notification id in the ledger, dispatch.
    Nothing is written before the signature checks out.
    """

    def __init__(
        self,
        db: Session,
        gateway: StripeGateway,
        finalizer: FulfillmentFinalizer | None = None,
    ):
        self.db = db
        self.gateway = gateway
        self.finalizer = finalizer or FulfillmentFinalizer(db)
        self.ledger = WebhookEventRepository(db, provider=gateway.provider)
        self.bookings = BookingRepository(db)
        self.events = EventRepository(db)
        self.outbox = OutboxRepository(db)
        self._handlers: dict[NotificationKind, Callable[[dict[str, Any]], str | None]] = {
            NotificationKind.PAYMENT_SESSION_COMPLETED: self._on_session_completed,
            NotificationKind.PAYMENT_INTENT_SUCCEEDED: self._on_intent_succeeded,
            NotificationKind.PAYMENT_INTENT_FAILED: self._on_intent_failed,
            NotificationKind.PROCESSOR_ACCOUNT_UPDATED: self._on_account_updated,
        }

    def handle(self, raw_body: bytes, signature_header: str | None) -> WebhookOutcome:
        self.gateway.verify_notification(raw_body, signature_header)
        envelope = parse_envelope(raw_body)
        kind = NotificationKind.from_type(envelope.type)

        logger.info("Received payment notification %s: %s", envelope.id, envelope.type)

        if kind is NotificationKind.UNKNOWN:
            logger.info("Unhandled payment notification type: %s", envelope.type)
            return WebhookOutcome.IGNORED

        if self.ledger.get(envelope.id):
            logger.info("Payment notification %s already processed", envelope.id)
            return WebhookOutcome.DUPLICATE

        try:
            with self.db.begin_nested():
                entry = self.ledger.record(envelope.id, kind.value, raw_body)
                self.db.flush()
        except IntegrityError:
            logger.info("Payment notification %s claimed by a concurrent delivery", envelope.id)
            return WebhookOutcome.DUPLICATE

        try:
            entry.booking_id = self._handlers[kind](envelope.data.payload)
            entry.status = "PROCESSED"
        except PartialFulfillmentFailure as exc:
            logger.error("Notification %s: %s", envelope.id, exc)
            entry.booking_id = exc.booking_id
            entry.status = "PARTIAL"

        self.db.flush()
        return WebhookOutcome.PROCESSED

    def _on_session_completed(self, payload: dict[str, Any]) -> str | None:
        session = parse_object(CheckoutSessionPayload, payload)
        result = self.finalizer.finalize(session)
        return result.booking.id

    def _on_intent_succeeded(self, payload: dict[str, Any]) -> str | None:
        intent = parse_object(PaymentIntentPayload, payload)
        booking = self._booking_for_intent(intent)
        if not booking:
            logger.info("Payment succeeded: %s (no booking linked yet)", intent.id)
            return None

        if not booking.payment_intent_id:
            booking.payment_intent_id = intent.id
        logger.info("Payment succeeded: %s for booking %s", intent.id, booking.id)
        return booking.id

    def _on_intent_failed(self, payload: dict[str, Any]) -> str | None:
        intent = parse_object(PaymentIntentPayload, payload)
        booking = self._booking_for_intent(intent)
        if not booking:
            logger.warning("Payment failed: %s but no booking matches it", intent.id)
            return None

        if not BookingStateMachine.can_transition(booking.status, BookingStatus.CANCELLED):
            logger.warning(
                "Payment failed: %s for booking %s in status %s; left unchanged",
                intent.id,
                booking.id,
                booking.status.value,
            )
            return booking.id

        self.bookings.update_status(booking, BookingStatus.CANCELLED)
        booking.payment_intent_id = booking.payment_intent_id or intent.id
        self.outbox.add_event(
            aggregate_type="booking",
            aggregate_id=booking.id,
            event_type="BOOKING_PAYMENT_FAILED",
            payload={
                "booking_id": booking.id,
                "event_id": booking.event_id,
                "customer_email": booking.customer_email,
                "payment_intent_id": intent.id,
            },
            dedupe_key=f"booking:{booking.id}:payment_failed:{intent.id}",
        )
        logger.info("Booking %s cancelled after failed payment %s", booking.id, intent.id)
        return booking.id

    def _on_account_updated(self, payload: dict[str, Any]) -> str | None:
        account = parse_object(AccountPayload, payload)
        organizer = self.events.get_organizer_by_payment_account(account.id)
        if not organizer:
            logger.info("Account update for unknown payment account %s", account.id)
            return None

        new_status = account_verification_status(account)
        if organizer.verification_status != new_status:
            organizer.verification_status = new_status
        logger.info("Account %s status updated to %s", account.id, new_status.value)
        return None

    def _booking_for_intent(self, intent: PaymentIntentPayload) -> Booking | None:
        booking_id = intent.metadata.get("booking_id")
        if booking_id:
            booking = self.bookings.get_by_id(booking_id, for_update=True)
            if booking:
                return booking
        return self.bookings.get_by_payment_intent_id(intent.id)
