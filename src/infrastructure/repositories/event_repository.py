# src/infrastructure/repositories/event_repository.py

from sqlalchemy.orm import Session
from sqlalchemy import select

from src.infrastructure.db.models import Event, Organizer


class EventRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_id(self, event_id: str) -> Event | None:
        stmt = select(Event).where(Event.id == event_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_organizer_by_payment_account(
        self,
        payment_account_id: str,
    ) -> Organizer | None:
        stmt = select(Organizer).where(
            Organizer.payment_account_id == payment_account_id
        )
        return self.db.execute(stmt).scalars().first()
