# src/infrastructure/repositories/ticket_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from src.infrastructure.db.models import Ticket


class TicketRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_code(self, ticket_code: str) -> Ticket | None:
        stmt = select(Ticket).where(Ticket.ticket_code == ticket_code)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_booking(self, booking_id: str) -> list[Ticket]:
        stmt = (
            select(Ticket)
            .where(Ticket.booking_id == booking_id)
            .order_by(Ticket.created_at)
        )
        return list(self.db.execute(stmt).scalars().all())

    def add(self, ticket: Ticket) -> Ticket:
        self.db.add(ticket)
        return ticket
