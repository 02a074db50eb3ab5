from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
import json
import logging

from sqlalchemy.orm import Session

from src.application.ticket_issuer import PUBLIC_BASE_URL
from src.domain.exceptions import BookingNotPayable, NotFound, PaymentAccountNotReady
from src.domain.quote import PriceQuote
from src.domain.state_machine import BookingStatus
from src.domain.statuses import VerificationStatus
from src.infrastructure.db.models import Booking, Event
from src.infrastructure.payments.stripe_gateway import CheckoutLineItem, StripeGateway
from src.infrastructure.repositories.event_repository import EventRepository
from src.infrastructure.repositories.ticket_type_repository import TicketTypeRepository


logger = logging.getLogger(__name__)

PLATFORM_FEE_RATE = Decimal("0.05")


def to_minor_units(amount: Decimal) -> int:
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def platform_fee(total_minor: int) -> int:
    return int((Decimal(total_minor) * PLATFORM_FEE_RATE).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass(frozen=True)
class CheckoutHandoff:
    checkout_url: str
    session_id: str


class PaymentHandoff:
    """
    Delegates payment collection to Stripe Checkout.

    The session metadata carries the event id and every purchased
    (ticket_type_id, quantity) pair; webhook fulfillment rebuilds the
    order from it and never from anything the client reports.
    """

    def __init__(self, db: Session, gateway: StripeGateway):
        self.db = db
        self.gateway = gateway
        self.events = EventRepository(db)
        self.ticket_types = TicketTypeRepository(db)

    def start_for_booking(self, booking: Booking) -> CheckoutHandoff:
        if booking.status != BookingStatus.PENDING:
            raise BookingNotPayable(
                f"Booking {booking.id} is {booking.status.value} and cannot be paid"
            )

        event = self._get_event(booking.event_id)
        line_items = []
        purchased = []
        for item in booking.items:
            ticket_type = self.ticket_types.get_by_id(item.ticket_type_id)
            name = ticket_type.name if ticket_type else item.ticket_type_id
            line_items.append(
                CheckoutLineItem(
                    name=f"{event.title} - {name}",
                    unit_amount=to_minor_units(item.unit_price),
                    quantity=item.quantity,
                )
            )
            purchased.append({"ticket_type_id": item.ticket_type_id, "quantity": item.quantity})

        session = self._create_session(
            event,
            line_items,
            purchased,
            customer_email=booking.customer_email,
            booking_id=booking.id,
        )
        booking.payment_session_id = session.session_id
        self.db.flush()
        return session

    def start_for_quote(
        self,
        quote: PriceQuote,
        customer_email: str | None = None,
    ) -> CheckoutHandoff:
        event = self._get_event(quote.event_id)
        line_items = [
            CheckoutLineItem(
                name=f"{quote.event_title} - {line.ticket_type_name}",
                unit_amount=to_minor_units(line.unit_price),
                quantity=line.quantity,
            )
            for line in quote.lines
        ]
        purchased = [
            {"ticket_type_id": line.ticket_type_id, "quantity": line.quantity}
            for line in quote.lines
        ]
        return self._create_session(event, line_items, purchased, customer_email=customer_email)

    def _get_event(self, event_id: str) -> Event:
        event = self.events.get_by_id(event_id)
        if not event:
            raise NotFound(f"Event not found: {event_id}")
        return event

    def _ready_account(self, event: Event) -> str:
        organizer = event.organizer
        if not organizer.payment_account_id:
            raise PaymentAccountNotReady(
                "Event organizer has not connected a payment account"
            )
        if organizer.verification_status != VerificationStatus.VERIFIED:
            raise PaymentAccountNotReady(
                "Event organizer's payment account is not verified"
            )
        return organizer.payment_account_id

    def _create_session(
        self,
        event: Event,
        line_items: list[CheckoutLineItem],
        purchased: list[dict],
        customer_email: str | None,
        booking_id: str | None = None,
    ) -> CheckoutHandoff:
        destination = self._ready_account(event)
        total_minor = sum(item.unit_amount * item.quantity for item in line_items)

        metadata = {
            "event_id": event.id,
            "tickets": json.dumps(purchased, separators=(",", ":")),
            "total_amount": str(total_minor),
        }
        intent_metadata = {"event_id": event.id}
        success_url = f"{PUBLIC_BASE_URL}/checkout/{event.id}?success=true&session_id={{CHECKOUT_SESSION_ID}}"
        if booking_id:
            metadata["booking_id"] = booking_id
            intent_metadata["booking_id"] = booking_id
            success_url += f"&booking_id={booking_id}"

        session = self.gateway.create_checkout_session(
            line_items=line_items,
            platform_fee_amount=platform_fee(total_minor),
            destination_account=destination,
            metadata=metadata,
            payment_intent_metadata=intent_metadata,
            success_url=success_url,
            cancel_url=f"{PUBLIC_BASE_URL}/events/{event.id}",
            customer_email=customer_email,
        )
        logger.info(
            "Payment handoff for event %s booking %s: session %s, total %s minor units",
            event.id,
            booking_id,
            session.session_id,
            total_minor,
        )
        return CheckoutHandoff(checkout_url=session.url, session_id=session.session_id)
