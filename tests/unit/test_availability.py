# tests/unit/test_availability.py

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from src.application.availability import AvailabilityValidator, merge_lines
from src.domain.exceptions import (
    EventNotBookable,
    InsufficientInventory,
    NotFound,
    OrderLimitExceeded,
    TicketTypeNotOnSale,
)
from src.domain.quote import RequestedLine
from src.domain.statuses import EventStatus


# ---------------------
# QUOTES
# ---------------------

def test_quote_prices_every_line(db_session, make_event, make_ticket_type):
    event = make_event()
    general = make_ticket_type(event, name="General Admission", price="35.00")
    vip = make_ticket_type(event, name="VIP", price="120.00")

    quote = AvailabilityValidator(db_session).validate(
        event.id,
        [RequestedLine(general.id, 2), RequestedLine(vip.id, 1)],
    )

    assert quote.event_id == event.id
    assert [line.ticket_type_name for line in quote.lines] == ["General Admission", "VIP"]
    assert quote.total_price == Decimal("190.00")


def test_repeated_ticket_type_is_merged(db_session, make_event, make_ticket_type):
    event = make_event()
    general = make_ticket_type(event, quantity_available=3)

    quote = AvailabilityValidator(db_session).validate(
        event.id,
        [RequestedLine(general.id, 1), RequestedLine(general.id, 2)],
    )

    assert len(quote.lines) == 1
    assert quote.lines[0].quantity == 3


def test_merge_lines_keeps_request_order():
    merged = merge_lines([
        RequestedLine("b", 1),
        RequestedLine("a", 2),
        RequestedLine("b", 4),
    ])

    assert merged == [RequestedLine("b", 5), RequestedLine("a", 2)]


def test_exact_remaining_stock_is_accepted(db_session, make_event, make_ticket_type):
    event = make_event()
    general = make_ticket_type(event, quantity_available=10, quantity_sold=8)

    quote = AvailabilityValidator(db_session).validate(event.id, [RequestedLine(general.id, 2)])

    assert quote.lines[0].quantity == 2


# ---------------------
# REJECTIONS
# ---------------------

def test_missing_event(db_session):
    with pytest.raises(NotFound):
        AvailabilityValidator(db_session).validate("no-such-event", [RequestedLine("x", 1)])


def test_unpublished_event(db_session, make_event, make_ticket_type):
    event = make_event(status=EventStatus.DRAFT)
    general = make_ticket_type(event)

    with pytest.raises(EventNotBookable):
        AvailabilityValidator(db_session).validate(event.id, [RequestedLine(general.id, 1)])


def test_event_already_started(db_session, make_event, make_ticket_type):
    event = make_event(starts_at=datetime.now(timezone.utc) - timedelta(hours=1))
    general = make_ticket_type(event)

    with pytest.raises(EventNotBookable):
        AvailabilityValidator(db_session).validate(event.id, [RequestedLine(general.id, 1)])


def test_ticket_type_from_another_event(db_session, make_event, make_ticket_type):
    event = make_event()
    other = make_event(title="Riverside Food Festival")
    foreign = make_ticket_type(other)

    with pytest.raises(NotFound):
        AvailabilityValidator(db_session).validate(event.id, [RequestedLine(foreign.id, 1)])


def test_inactive_ticket_type(db_session, make_event, make_ticket_type):
    event = make_event()
    retired = make_ticket_type(event, is_active=False)

    with pytest.raises(NotFound):
        AvailabilityValidator(db_session).validate(event.id, [RequestedLine(retired.id, 1)])


def test_sale_window_not_open(db_session, make_event, make_ticket_type):
    event = make_event()
    early = make_ticket_type(
        event,
        sale_starts_at=datetime.now(timezone.utc) + timedelta(days=1),
    )

    with pytest.raises(TicketTypeNotOnSale):
        AvailabilityValidator(db_session).validate(event.id, [RequestedLine(early.id, 1)])


def test_sale_window_closed(db_session, make_event, make_ticket_type):
    event = make_event()
    closed = make_ticket_type(
        event,
        sale_ends_at=datetime.now(timezone.utc) - timedelta(minutes=5),
    )

    with pytest.raises(EventNotBookable):
        AvailabilityValidator(db_session).validate(event.id, [RequestedLine(closed.id, 1)])


def test_insufficient_inventory(db_session, make_event, make_ticket_type):
    event = make_event()
    general = make_ticket_type(event, quantity_available=10, quantity_sold=9)

    with pytest.raises(InsufficientInventory) as exc_info:
        AvailabilityValidator(db_session).validate(event.id, [RequestedLine(general.id, 2)])

    assert "Only 1 tickets available" in str(exc_info.value)


def test_order_limit(db_session, make_event, make_ticket_type):
    event = make_event()
    vip = make_ticket_type(event, name="VIP", max_per_order=4)

    with pytest.raises(OrderLimitExceeded):
        AvailabilityValidator(db_session).validate(event.id, [RequestedLine(vip.id, 5)])


def test_first_failing_line_wins(db_session, make_event, make_ticket_type):
    event = make_event()
    general = make_ticket_type(event, quantity_available=1)
    vip = make_ticket_type(event, name="VIP", max_per_order=1)

    with pytest.raises(InsufficientInventory):
        AvailabilityValidator(db_session).validate(
            event.id,
            [RequestedLine(general.id, 2), RequestedLine(vip.id, 3)],
        )
