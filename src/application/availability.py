from datetime import datetime, timezone
import logging
from typing import Iterable

from sqlalchemy.orm import Session

from src.domain.exceptions import (
    EventNotBookable,
    InsufficientInventory,
    NotFound,
    OrderLimitExceeded,
    TicketTypeNotOnSale,
)
from src.domain.quote import PriceQuote, QuotedLine, RequestedLine
from src.domain.statuses import EventStatus
from src.infrastructure.repositories.event_repository import EventRepository
from src.infrastructure.repositories.ticket_type_repository import TicketTypeRepository


logger = logging.getLogger(__name__)


def as_utc(value: datetime) -> datetime:
    # SQLite hands back naive datetimes for timezone-aware columns.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def merge_lines(requested: Iterable[RequestedLine]) -> list[RequestedLine]:
    """Collapse repeated ticket types into one line, keeping request order."""
    totals: dict[str, int] = {}
    for line in requested:
        totals[line.ticket_type_id] = totals.get(line.ticket_type_id, 0) + line.quantity
    return [RequestedLine(ticket_type_id, quantity) for ticket_type_id, quantity in totals.items()]


class AvailabilityValidator:
    """
    Point-in-time availability and pricing check.

    Nothing is reserved: two callers can both pass against the same
    remaining stock, and the later inventory increment does not re-check it.
    """

    def __init__(self, db: Session):
        self.events = EventRepository(db)
        self.ticket_types = TicketTypeRepository(db)

    def validate(
        self,
        event_id: str,
        requested: Iterable[RequestedLine],
        now: datetime | None = None,
    ) -> PriceQuote:
        now = now or datetime.now(timezone.utc)

        event = self.events.get_by_id(event_id)
        if not event:
            raise NotFound(f"Event not found: {event_id}")
        if event.status != EventStatus.PUBLISHED:
            raise EventNotBookable("Event is not available for booking")
        if as_utc(event.starts_at) <= now:
            raise EventNotBookable("Cannot book past events")

        lines = []
        for line in merge_lines(requested):
            ticket_type = self.ticket_types.get_for_event(event.id, line.ticket_type_id)
            if not ticket_type or not ticket_type.is_active:
                raise NotFound(
                    f"Ticket type {line.ticket_type_id} not found or inactive"
                )

            if ticket_type.sale_starts_at and now < as_utc(ticket_type.sale_starts_at):
                raise TicketTypeNotOnSale(f"Sales for {ticket_type.name} have not started")
            if ticket_type.sale_ends_at and now > as_utc(ticket_type.sale_ends_at):
                raise TicketTypeNotOnSale(f"Sales for {ticket_type.name} have ended")

            remaining = ticket_type.quantity_available - ticket_type.quantity_sold
            if line.quantity > remaining:
                raise InsufficientInventory(
                    f"Only {max(remaining, 0)} tickets available for {ticket_type.name}"
                )

            if ticket_type.max_per_order is not None and line.quantity > ticket_type.max_per_order:
                raise OrderLimitExceeded(
                    f"Maximum {ticket_type.max_per_order} tickets allowed per order "
                    f"for {ticket_type.name}"
                )

            lines.append(
                QuotedLine(
                    ticket_type_id=ticket_type.id,
                    ticket_type_name=ticket_type.name,
                    quantity=line.quantity,
                    unit_price=ticket_type.price,
                )
            )

        quote = PriceQuote(event_id=event.id, event_title=event.title, lines=tuple(lines))
        logger.debug(
            "Quoted %s line(s) for event %s, total %s",
            len(quote.lines),
            event.id,
            quote.total_price,
        )
        return quote
