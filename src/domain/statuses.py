from enum import Enum


class EventStatus(str, Enum):
    DRAFT = "draft"
    PUBLISHED = "published"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class TicketStatus(str, Enum):
    ISSUED = "issued"
    SCANNED = "scanned"
    CANCELLED = "cancelled"


class VerificationStatus(str, Enum):
    PENDING = "pending"
    VERIFIED = "verified"
    REJECTED = "rejected"


class NotificationKind(str, Enum):
    """
    Payment-processor notification kinds this service reacts to.
    Anything else maps to UNKNOWN and is acknowledged without side effects.
    """

    PAYMENT_SESSION_COMPLETED = "checkout.session.completed"
    PAYMENT_INTENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_INTENT_FAILED = "payment_intent.payment_failed"
    PROCESSOR_ACCOUNT_UPDATED = "account.updated"
    UNKNOWN = "unknown"

    @classmethod
    def from_type(cls, event_type: str) -> "NotificationKind":
        for kind in cls:
            if kind is not cls.UNKNOWN and kind.value == event_type:
                return kind
        return cls.UNKNOWN
