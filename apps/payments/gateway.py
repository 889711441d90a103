"""Payment gateway port and the simulated adapter used in every environment.

Real providers plug in by implementing PaymentGateway; services only ever
see the port.
"""
import hashlib
import hmac
from abc import ABC, abstractmethod
from dataclasses import dataclass

from django.conf import settings


@dataclass(frozen=True)
class GatewaySession:
    """What the gateway hands back when a payment is started."""

    reference: str
    redirect_url: str


class PaymentGateway(ABC):

    @abstractmethod
    def create_payment(self, intent_id, order_id, amount, currency) -> GatewaySession:
        """Register a payment with the provider and return where to send the customer."""
        ...

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        """Verify that a webhook payload is authentically from the gateway."""
        ...


class SimulatedGateway(PaymentGateway):
    """
    No external calls. The hosted page lives at `base_url`; confirmations
    arrive through the webhook, signed with HMAC-SHA256 when a secret is set.
    """

    def __init__(self, base_url: str, webhook_secret: str | None = None):
        self.base_url = base_url.rstrip("/")
        self.webhook_secret = webhook_secret

    def create_payment(self, intent_id, order_id, amount, currency) -> GatewaySession:
        reference = f"PAY-{intent_id.hex[:16].upper()}"
        return GatewaySession(
            reference=reference,
            redirect_url=f"{self.base_url}/pay/{reference}?intent_id={intent_id}",
        )

    def sign(self, payload: bytes) -> str:
        return hmac.new(self.webhook_secret.encode("utf-8"), payload, hashlib.sha256).hexdigest()

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        if not self.webhook_secret:
            return True
        if not signature:
            return False
        return hmac.compare_digest(self.sign(payload), signature)


def get_gateway() -> PaymentGateway:
    return SimulatedGateway(
        base_url=settings.PAYMENT_GATEWAY_BASE_URL,
        webhook_secret=settings.PAYMENT_WEBHOOK_SECRET,
    )
