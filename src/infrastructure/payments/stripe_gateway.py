# src/infrastructure/payments/stripe_gateway.py

from dataclasses import dataclass
import logging
import os

import stripe

from src.domain.exceptions import (
    InvalidSignature,
    PaymentGatewayNotConfigured,
    PaymentSessionFailed,
)


logger = logging.getLogger(__name__)

DEFAULT_WEBHOOK_TOLERANCE_SECONDS = 300


@dataclass(frozen=True)
class CheckoutLineItem:
    name: str
    unit_amount: int
    quantity: int
    description: str | None = None


@dataclass(frozen=True)
class CheckoutSession:
    session_id: str
    url: str


class StripeGateway:
    """
    Thin wrapper over the Stripe SDK: hosted checkout sessions with a
    platform fee routed away from the connected organizer account, and
    verification of signed webhook deliveries.
    """

    provider = "STRIPE"
    currency = "usd"

    def __init__(
        self,
        secret_key: str | None = None,
        webhook_secret: str | None = None,
        tolerance: int | None = None,
    ):
        self._configured_secret_key = secret_key
        self._configured_webhook_secret = webhook_secret
        self.tolerance = tolerance or int(
            os.getenv("STRIPE_WEBHOOK_TOLERANCE", str(DEFAULT_WEBHOOK_TOLERANCE_SECONDS))
        )

    def _secret_key(self) -> str:
        key = self._configured_secret_key or os.getenv("STRIPE_SECRET_KEY")
        if not key:
            raise PaymentGatewayNotConfigured(
                "Stripe key not configured. Set STRIPE_SECRET_KEY."
            )
        return key

    def _webhook_secret(self) -> str:
        secret = self._configured_webhook_secret or os.getenv("STRIPE_WEBHOOK_SECRET")
        if not secret:
            raise PaymentGatewayNotConfigured(
                "Stripe webhook secret not configured. Set STRIPE_WEBHOOK_SECRET."
            )
        return secret

    def create_checkout_session(
        self,
        *,
        line_items: list[CheckoutLineItem],
        platform_fee_amount: int,
        destination_account: str,
        metadata: dict[str, str],
        payment_intent_metadata: dict[str, str],
        success_url: str,
        cancel_url: str,
        customer_email: str | None = None,
    ) -> CheckoutSession:
        params = {
            "mode": "payment",
            "payment_method_types": ["card"],
            "line_items": [
                {
                    "price_data": {
                        "currency": self.currency,
                        "product_data": {
                            "name": item.name,
                            **({"description": item.description} if item.description else {}),
                        },
                        "unit_amount": item.unit_amount,
                    },
                    "quantity": item.quantity,
                }
                for item in line_items
            ],
            "payment_intent_data": {
                "application_fee_amount": platform_fee_amount,
                "transfer_data": {"destination": destination_account},
                "metadata": payment_intent_metadata,
            },
            "metadata": metadata,
            "success_url": success_url,
            "cancel_url": cancel_url,
        }
        if customer_email:
            params["customer_email"] = customer_email

        try:
            session = stripe.checkout.Session.create(api_key=self._secret_key(), **params)
        except stripe.StripeError as exc:
            logger.exception(
                "Stripe checkout session creation failed for event %s",
                metadata.get("event_id"),
            )
            raise PaymentSessionFailed(
                exc.user_message or "Failed to create checkout session"
            ) from exc

        logger.info(
            "Stripe checkout session created: %s for event: %s",
            session.id,
            metadata.get("event_id"),
        )
        return CheckoutSession(session_id=session.id, url=session.url)

    def verify_notification(
        self,
        raw_body: bytes,
        signature_header: str | None,
    ) -> None:
        """
        Checks the Stripe-Signature header (t=<timestamp>,v1=<hmac>) against
        the raw body. Deliveries older than the tolerance are rejected.
        """
        if not signature_header:
            raise InvalidSignature("Missing Stripe-Signature header")

        secret = self._webhook_secret()
        try:
            stripe.WebhookSignature.verify_header(
                raw_body.decode("utf-8"),
                signature_header,
                secret,
                tolerance=self.tolerance,
            )
        except (stripe.SignatureVerificationError, UnicodeDecodeError) as exc:
            logger.warning("Webhook signature verification failed: %s", exc)
            raise InvalidSignature("Invalid signature") from exc
