from datetime import datetime, timedelta, timezone
from decimal import Decimal

from sqlalchemy import delete, select

from src.domain.statuses import EventStatus, VerificationStatus
from src.infrastructure.db.models import Event, Organizer, TicketType
from src.infrastructure.db.session import SessionLocal


DEMO_PAYMENT_ACCOUNT = "acct_demo_organizer"


def _dt(days_from_now: int, hour: int, minute: int) -> datetime:
    now = datetime.now(timezone.utc)
    target = now + timedelta(days=days_from_now)
    return target.replace(hour=hour, minute=minute, second=0, microsecond=0)


def seed_organizer(db) -> Organizer:
    organizer = db.execute(
        select(Organizer).where(Organizer.payment_account_id == DEMO_PAYMENT_ACCOUNT)
    ).scalar_one_or_none()
    if organizer:
        organizer.verification_status = VerificationStatus.VERIFIED
        return organizer

    organizer = Organizer(
        name="Harbor Lights Promotions",
        payment_account_id=DEMO_PAYMENT_ACCOUNT,
        verification_status=VerificationStatus.VERIFIED,
    )
    db.add(organizer)
    db.flush()
    return organizer


def seed_events(db, organizer: Organizer) -> None:
    event_defs = [
        {
            "title": "Harbor Lights Jazz Night",
            "starts_at": _dt(days_from_now=10, hour=19, minute=30),
            "ticket_types": [
                {"name": "General Admission", "price": "35.00", "quantity": 400, "max_per_order": 8},
                {"name": "VIP", "price": "120.00", "quantity": 60, "max_per_order": 4},
            ],
        },
        {
            "title": "Riverside Food Festival",
            "starts_at": _dt(days_from_now=21, hour=11, minute=0),
            "ticket_types": [
                {"name": "Day Pass", "price": "18.50", "quantity": 900, "max_per_order": None},
                {"name": "Tasting Pass", "price": "55.00", "quantity": 150, "max_per_order": 6},
            ],
        },
    ]

    for item in event_defs:
        existing = db.execute(
            select(Event).where(Event.title == item["title"])
        ).scalar_one_or_none()
        if existing:
            db.execute(delete(TicketType).where(TicketType.event_id == existing.id))
            event = existing
            event.starts_at = item["starts_at"]
            event.status = EventStatus.PUBLISHED
        else:
            event = Event(
                organizer_id=organizer.id,
                title=item["title"],
                status=EventStatus.PUBLISHED,
                starts_at=item["starts_at"],
            )
            db.add(event)
            db.flush()

        for ticket_type in item["ticket_types"]:
            db.add(
                TicketType(
                    event_id=event.id,
                    name=ticket_type["name"],
                    price=Decimal(ticket_type["price"]),
                    quantity_available=ticket_type["quantity"],
                    quantity_sold=0,
                    max_per_order=ticket_type["max_per_order"],
                    is_active=True,
                )
            )


def main() -> None:
    db = SessionLocal()
    try:
        organizer = seed_organizer(db)
        seed_events(db, organizer)
        db.commit()
        print("Seed complete: Harbor Lights Jazz Night and Riverside Food Festival added.")
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()


if __name__ == "__main__":
    main()
