

class FulfillmentError(Exception):
    """
    Base exception for all domain-level errors
    inside the Ticket Fulfillment Engine.
    """


class InvalidStateTransitionError(FulfillmentError):
    """
    Raised when an illegal booking state transition is attempted.
    """

    def __init__(self, from_state: str, to_state: str):
        self.from_state = from_state
        self.to_state = to_state

        message = (
            f"Illegal state transition attempted: "
            f"{from_state} -> {to_state}"
        )
        super().__init__(message)


class NotFound(FulfillmentError):
    """Raised when an event, ticket type or booking does not exist."""


class EventNotBookable(FulfillmentError):
    """Raised when the event is not published or has already started."""


class TicketTypeNotOnSale(EventNotBookable):
    """Raised when a ticket type is requested outside its sale window."""


class InsufficientInventory(FulfillmentError):
    """Raised when fewer tickets remain than were requested."""


class OrderLimitExceeded(FulfillmentError):
    """Raised when a line exceeds the ticket type's max_per_order."""


class BookingCreationFailed(FulfillmentError):
    """Raised when the booking or one of its items could not be stored."""


class BookingNotPayable(FulfillmentError):
    """Raised when checkout is requested for a booking that is not pending."""


class PaymentAccountNotReady(FulfillmentError):
    """Raised when the organizer has no verified payment account."""


class PaymentSessionFailed(FulfillmentError):
    """Raised when the payment processor rejects a checkout session."""


class PaymentGatewayNotConfigured(FulfillmentError):
    """Raised when processor credentials are missing from the environment."""


class TicketIssueFailed(FulfillmentError):
    """Raised when no unique ticket code could be stored."""


class InvalidSignature(FulfillmentError):
    """Raised when a webhook signature or timestamp does not verify."""


class MalformedNotification(FulfillmentError):
    """Raised when a verified webhook body cannot be parsed."""


class PartialFulfillmentFailure(FulfillmentError):
    """
    Raised after finalization when some purchased lines could not be
    fulfilled. The booking is confirmed and the other lines are kept.
    """

    def __init__(self, booking_id: str, failed_ticket_type_ids: list[str]):
        self.booking_id = booking_id
        self.failed_ticket_type_ids = failed_ticket_type_ids

        message = (
            f"Booking {booking_id} confirmed with unfulfilled lines: "
            f"{', '.join(failed_ticket_type_ids)}"
        )
        super().__init__(message)
