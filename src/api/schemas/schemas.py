from decimal import Decimal

from pydantic import BaseModel, Field


class BookingItemRequest(BaseModel):
    ticket_type_id: str
    quantity: int = Field(gt=0)


class BookingCreateRequest(BaseModel):
    event_id: str
    items: list[BookingItemRequest] = Field(min_length=1)
    customer_name: str = Field(min_length=1)
    customer_email: str = Field(min_length=3)
    customer_phone: str | None = None


class CheckoutSessionRequest(BaseModel):
    event_id: str
    tickets: list[BookingItemRequest] = Field(min_length=1)
    customer_email: str | None = None


class BookingItemResponse(BaseModel):
    ticket_type_id: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class TicketResponse(BaseModel):
    id: str
    booking_id: str
    ticket_type_id: str
    ticket_code: str
    qr_code: str
    status: str
    scanned_at: str | None = None


class BookingResponse(BaseModel):
    id: str
    event_id: str
    user_id: str | None = None
    status: str
    total_price: Decimal
    customer_name: str
    customer_email: str
    customer_phone: str | None = None
    payment_session_id: str | None = None
    payment_intent_id: str | None = None
    items: list[BookingItemResponse]
    tickets: list[TicketResponse]


class BookingCreateResponse(BaseModel):
    booking: BookingResponse
    checkout_url: str


class CheckoutSessionResponse(BaseModel):
    checkout_url: str
    session_id: str


class WebhookAckResponse(BaseModel):
    received: bool
    outcome: str


class TicketTypeAvailabilityResponse(BaseModel):
    ticket_type_id: str
    name: str
    price: Decimal
    quantity_available: int
    quantity_sold: int
    remaining: int
    max_per_order: int | None = None
    is_active: bool


class EventAvailabilityResponse(BaseModel):
    event_id: str
    title: str
    status: str
    starts_at: str
    ticket_types: list[TicketTypeAvailabilityResponse]


class OutboxEventResponse(BaseModel):
    id: str
    aggregate_type: str
    aggregate_id: str
    event_type: str
    status: str
    attempts: int
    payload: str
    created_at: str
