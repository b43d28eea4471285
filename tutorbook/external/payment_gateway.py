"""
Adaptador de la pasarela de pago.

El núcleo solo conoce `IntentHandle`, `WebhookEvent` y `PaymentGatewayError`;
cualquier implementación con los mismos métodos asíncronos puede sustituir a Stripe.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Dict

from tutorbook.external.stripe_config import stripe, stripe_config
from tutorbook.cores.exceptions import PaymentGatewayError, InvalidWebhook

logger = logging.getLogger(__name__)


@dataclass
class IntentHandle:
    intent_id: str
    client_secret: Optional[str]
    status: str


@dataclass
class WebhookEvent:
    type: str
    intent_id: Optional[str]
    metadata: Dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None


class StripePaymentGateway:
    """La librería de Stripe es síncrona; cada llamada se ejecuta en un hilo aparte."""

    def __init__(self, webhook_secret: str = None):
        self.webhook_secret = webhook_secret if webhook_secret is not None else stripe_config.webhook_secret

    async def create_intent(self, amount: int, currency: str, metadata: dict, idempotency_key: str) -> IntentHandle:
        try:
            intent = await asyncio.to_thread(
                stripe.PaymentIntent.create,
                amount=amount,
                currency=currency,
                metadata={k: str(v) for k, v in metadata.items()},
                automatic_payment_methods={"enabled": True},
                idempotency_key=idempotency_key,
            )
        except stripe.StripeError as e:
            logger.error(f"❌ Error de Stripe creando PaymentIntent: {str(e)}")
            raise PaymentGatewayError(f"Stripe error: {e.user_message or str(e)}")

        logger.info(f"✅ PaymentIntent creado en Stripe: {intent.id}")
        return IntentHandle(intent_id=intent.id, client_secret=intent.client_secret, status=intent.status)

    async def refund(self, intent_id: str, metadata: dict = None) -> str:
        try:
            refund = await asyncio.to_thread(
                stripe.Refund.create,
                payment_intent=intent_id,
                reason="requested_by_customer",
                metadata={k: str(v) for k, v in (metadata or {}).items()},
                idempotency_key=f"refund-{intent_id}",
            )
        except stripe.StripeError as e:
            logger.error(f"❌ Error de Stripe creando refund para {intent_id}: {str(e)}")
            raise PaymentGatewayError(f"Stripe refund error: {e.user_message or str(e)}")

        logger.info(f"✅ Refund creado en Stripe: {refund.id}")
        return refund.id

    def parse_webhook(self, payload: bytes, signature: str) -> WebhookEvent:
        if not self.webhook_secret:
            raise PaymentGatewayError("Stripe webhook secret is not configured")
        try:
            event = stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except ValueError:
            raise InvalidWebhook("Invalid webhook payload")
        except stripe.SignatureVerificationError:
            raise InvalidWebhook("Invalid webhook signature")

        obj = event["data"]["object"]
        error = None
        if obj.get("last_payment_error"):
            error = obj["last_payment_error"].get("message")
        return WebhookEvent(
            type=event["type"],
            intent_id=obj.get("id"),
            metadata=dict(obj.get("metadata") or {}),
            error=error,
        )
