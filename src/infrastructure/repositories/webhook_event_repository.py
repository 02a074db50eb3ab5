# src/infrastructure/repositories/webhook_event_repository.py

import hashlib

from sqlalchemy.orm import Session
from sqlalchemy import select

from src.infrastructure.db.models import ProcessedWebhookEvent


class WebhookEventRepository:
    """Ledger of payment notifications that were already handled."""

    def __init__(self, db: Session, provider: str = "STRIPE"):
        self.db = db
        self.provider = provider

    def get(self, notification_id: str) -> ProcessedWebhookEvent | None:
        stmt = (
            select(ProcessedWebhookEvent)
            .where(ProcessedWebhookEvent.provider == self.provider)
            .where(ProcessedWebhookEvent.notification_id == notification_id)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def record(
        self,
        notification_id: str,
        kind: str,
        raw_body: bytes,
    ) -> ProcessedWebhookEvent:
        entry = ProcessedWebhookEvent(
            provider=self.provider,
            notification_id=notification_id,
            kind=kind,
            payload_hash=hashlib.sha256(raw_body).hexdigest(),
            status="PROCESSING",
        )
        self.db.add(entry)
        return entry
