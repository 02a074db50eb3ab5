import logging
import os
import secrets
import string
import time
from typing import Callable

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from src.domain.exceptions import TicketIssueFailed
from src.domain.statuses import TicketStatus
from src.infrastructure.db.models import Ticket
from src.infrastructure.repositories.ticket_repository import TicketRepository


logger = logging.getLogger(__name__)

PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000")
MAX_CODE_ATTEMPTS = 5

_CODE_ALPHABET = string.digits + string.ascii_uppercase
_CODE_SUFFIX_LENGTH = 10


def generate_ticket_code() -> str:
    """TKT-<epoch ms>-<10 random base36 chars>, roughly 51 bits of entropy."""
    suffix = "".join(secrets.choice(_CODE_ALPHABET) for _ in range(_CODE_SUFFIX_LENGTH))
    return f"TKT-{int(time.time() * 1000)}-{suffix}"


def verification_url(ticket_code: str, base_url: str | None = None) -> str:
    return f"{(base_url or PUBLIC_BASE_URL).rstrip('/')}/verify-ticket/{ticket_code}"


class TicketIssuer:

    def __init__(
        self,
        db: Session,
        code_factory: Callable[[], str] = generate_ticket_code,
        base_url: str | None = None,
    ):
        self.db = db
        self.code_factory = code_factory
        self.base_url = base_url
        self.ticket_repository = TicketRepository(db)

    def issue(
        self,
        booking_id: str,
        booking_item_id: str,
        ticket_type_id: str,
        count: int,
    ) -> list[Ticket]:
        tickets = [
            self._issue_one(booking_id, booking_item_id, ticket_type_id)
            for _ in range(count)
        ]
        logger.info(
            "Issued %s ticket(s) of type %s for booking %s",
            len(tickets),
            ticket_type_id,
            booking_id,
        )
        return tickets

    def _issue_one(
        self,
        booking_id: str,
        booking_item_id: str,
        ticket_type_id: str,
    ) -> Ticket:
        for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
            code = self.code_factory()
            ticket = Ticket(
                booking_id=booking_id,
                booking_item_id=booking_item_id,
                ticket_type_id=ticket_type_id,
                ticket_code=code,
                qr_code=verification_url(code, self.base_url),
                status=TicketStatus.ISSUED,
            )
            try:
                with self.db.begin_nested():
                    self.ticket_repository.add(ticket)
                    self.db.flush()
            except IntegrityError:
                logger.warning(
                    "Ticket code collision for booking %s (attempt %s/%s)",
                    booking_id,
                    attempt,
                    MAX_CODE_ATTEMPTS,
                )
                continue
            return ticket

        raise TicketIssueFailed(
            f"Could not generate a unique ticket code for booking {booking_id}"
        )
