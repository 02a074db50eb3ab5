# src/infrastructure/payments/payloads.py

import json
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from src.domain.exceptions import MalformedNotification


class _Payload(BaseModel):
    model_config = ConfigDict(extra="ignore")


class NotificationData(_Payload):
    payload: dict[str, Any] = Field(alias="object")


class NotificationEnvelope(_Payload):
    id: str
    type: str
    data: NotificationData


class PurchasedLine(_Payload):
    ticket_type_id: str
    quantity: int = Field(gt=0)


class SessionMetadata(_Payload):
    event_id: str | None = None
    booking_id: str | None = None
    tickets: list[PurchasedLine] = Field(default_factory=list)

    @field_validator("tickets", mode="before")
    @classmethod
    def _decode_tickets(cls, value):
        # Stripe metadata values are strings; the line list travels as JSON.
        if isinstance(value, str):
            return json.loads(value)
        return value


class CustomerDetails(_Payload):
    email: str | None = None
    name: str | None = None
    phone: str | None = None


class CheckoutSessionPayload(_Payload):
    id: str
    payment_intent: str | None = None
    amount_total: int | None = None
    customer_email: str | None = None
    customer_details: CustomerDetails | None = None
    metadata: SessionMetadata = Field(default_factory=SessionMetadata)


class PaymentIntentPayload(_Payload):
    id: str
    metadata: dict[str, str] = Field(default_factory=dict)


class AccountRequirements(_Payload):
    currently_due: list[str] = Field(default_factory=list)


class AccountPayload(_Payload):
    id: str
    charges_enabled: bool = False
    payouts_enabled: bool = False
    requirements: AccountRequirements | None = None


def parse_envelope(raw_body: bytes) -> NotificationEnvelope:
    try:
        return NotificationEnvelope.model_validate_json(raw_body)
    except ValidationError as exc:
        raise MalformedNotification(f"Malformed notification: {exc.error_count()} error(s)") from exc


def parse_object(model: type[_Payload], payload: dict[str, Any]):
    try:
        return model.model_validate(payload)
    except (ValidationError, ValueError) as exc:
        raise MalformedNotification(f"Malformed {model.__name__}") from exc
