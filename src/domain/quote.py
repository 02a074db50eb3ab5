from dataclasses import dataclass
from decimal import Decimal


@dataclass(frozen=True)
class RequestedLine:
    ticket_type_id: str
    quantity: int


@dataclass(frozen=True)
class QuotedLine:
    ticket_type_id: str
    ticket_type_name: str
    quantity: int
    unit_price: Decimal

    @property
    def total_price(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class PriceQuote:
    """Validated, priced order. Built by the availability check, never stored."""

    event_id: str
    event_title: str
    lines: tuple[QuotedLine, ...]

    @property
    def total_price(self) -> Decimal:
        return sum((line.total_price for line in self.lines), Decimal("0"))


@dataclass(frozen=True)
class CustomerContact:
    name: str
    email: str
    phone: str | None = None
