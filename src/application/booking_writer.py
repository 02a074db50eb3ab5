import logging

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.domain.exceptions import BookingCreationFailed
from src.domain.quote import CustomerContact, PriceQuote
from src.infrastructure.db.models import Booking
from src.infrastructure.repositories.booking_repository import BookingRepository


logger = logging.getLogger(__name__)


class BookingWriter:
    """
    Stores a pending booking and its items under one SAVEPOINT, so a failed
    item insert leaves no booking row behind. Inventory is not touched here.
    """

    def __init__(self, db: Session):
        self.db = db
        self.booking_repository = BookingRepository(db)

    def write(
        self,
        quote: PriceQuote,
        customer: CustomerContact,
        user_id: str | None = None,
    ) -> Booking:
        try:
            with self.db.begin_nested():
                booking = self.booking_repository.create_booking(
                    event_id=quote.event_id,
                    total_price=quote.total_price,
                    customer_name=customer.name,
                    customer_email=customer.email,
                    customer_phone=customer.phone,
                    user_id=user_id,
                )
                self.db.flush()

                for line in quote.lines:
                    self.booking_repository.add_item(
                        booking,
                        ticket_type_id=line.ticket_type_id,
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                    )
                self.db.flush()
        except SQLAlchemyError as exc:
            logger.exception("Booking creation failed for event %s", quote.event_id)
            raise BookingCreationFailed("Failed to create booking items") from exc

        logger.info(
            "Booking %s created for event %s with %s item(s), total %s",
            booking.id,
            booking.event_id,
            len(quote.lines),
            booking.total_price,
        )
        return booking
