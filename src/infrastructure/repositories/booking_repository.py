# src/infrastructure/repositories/booking_repository.py

from decimal import Decimal

from sqlalchemy.orm import Session
from sqlalchemy import select

from src.infrastructure.db.models import Booking, BookingItem
from src.domain.state_machine import BookingStatus


class BookingRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(
        self,
        booking_id: str,
        for_update: bool = False,
    ) -> Booking | None:

        stmt = select(Booking).where(Booking.id == booking_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_payment_session_id(
        self,
        payment_session_id: str,
    ) -> Booking | None:

        stmt = select(Booking).where(
            Booking.payment_session_id == payment_session_id
        )
        return self.db.execute(stmt).scalars().first()

    def get_by_payment_intent_id(
        self,
        payment_intent_id: str,
    ) -> Booking | None:

        stmt = select(Booking).where(
            Booking.payment_intent_id == payment_intent_id
        )
        return self.db.execute(stmt).scalars().first()

    def create_booking(
        self,
        event_id: str,
        total_price: Decimal,
        customer_name: str,
        customer_email: str,
        customer_phone: str | None = None,
        user_id: str | None = None,
    ) -> Booking:

        booking = Booking(
            user_id=user_id,
            event_id=event_id,
            total_price=total_price,
            customer_name=customer_name,
            customer_email=customer_email,
            customer_phone=customer_phone,
            status=BookingStatus.PENDING,
        )

        self.db.add(booking)
        return booking

    def add_item(
        self,
        booking: Booking,
        ticket_type_id: str,
        quantity: int,
        unit_price: Decimal,
    ) -> BookingItem:

        item = BookingItem(
            ticket_type_id=ticket_type_id,
            quantity=quantity,
            unit_price=unit_price,
            total_price=unit_price * quantity,
        )
        booking.items.append(item)
        return item

    def update_status(
        self,
        booking: Booking,
        new_status: BookingStatus,
    ) -> None:

        booking.status = new_status
