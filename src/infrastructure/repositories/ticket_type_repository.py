# src/infrastructure/repositories/ticket_type_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select, update, func

from src.infrastructure.db.models import TicketType
from src.domain.exceptions import NotFound


class TicketTypeRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, ticket_type_id: str) -> TicketType | None:
        stmt = select(TicketType).where(TicketType.id == ticket_type_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_for_event(
        self,
        event_id: str,
        ticket_type_id: str,
    ) -> TicketType | None:
        stmt = (
            select(TicketType)
            .where(TicketType.id == ticket_type_id)
            .where(TicketType.event_id == event_id)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_event(self, event_id: str) -> list[TicketType]:
        stmt = (
            select(TicketType)
            .where(TicketType.event_id == event_id)
            .order_by(TicketType.price, TicketType.name)
        )
        return list(self.db.execute(stmt).scalars().all())

    def increment_sold(
        self,
        ticket_type_id: str,
        quantity: int,
    ) -> TicketType:
        """
        UPDATE ticket_types SET quantity_sold = quantity_sold + :quantity
        Single statement, so concurrent finalizations never lose an update.
        It does not check quantity_available.
        """

        stmt = (
            update(TicketType)
            .where(TicketType.id == ticket_type_id)
            .values(
                quantity_sold=TicketType.quantity_sold + quantity,
                updated_at=func.now(),
            )
            .execution_options(synchronize_session=False)
        )
        result = self.db.execute(stmt)

        if result.rowcount == 0:
            raise NotFound(f"Ticket type not found: {ticket_type_id}")

        ticket_type = self.get_by_id(ticket_type_id)
        self.db.refresh(ticket_type)
        return ticket_type
