from django.db import models
from django.conf import settings
from apps.orders.models import Order
from apps.utils.models import TimestampedModel


class PaymentStatus(models.TextChoices):
    PENDING = "pending", "Pending"
    PAID = "paid", "Paid"
    FAILED = "failed", "Failed"


class PaymentIntent(TimestampedModel):
    """
    One attempt to collect an order's total through the gateway.
    `paid` and `failed` are terminal; a webhook for a terminal intent is a no-op.
    """
    order = models.ForeignKey(Order, on_delete=models.PROTECT, related_name="payment_intents")
    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name="payment_intents")

    amount = models.DecimalField(max_digits=12, decimal_places=2)
    currency = models.CharField(max_length=3, default="USD")
    status = models.CharField(max_length=20, choices=PaymentStatus.choices, default=PaymentStatus.PENDING, db_index=True)

    # Gateway specific IDs (e.g., 'PAY-3f9c...')
    gateway_ref = models.CharField(max_length=100, unique=True, db_index=True)
    redirect_url = models.URLField(max_length=500, blank=True)
    paid_at = models.DateTimeField(null=True, blank=True)

    # Set when money arrived for an order that was no longer pending
    needs_review = models.BooleanField(default=False, db_index=True)
    reconciliation_note = models.TextField(blank=True)

    class Meta:
        ordering = ["-created_at"]
        constraints = [
            models.UniqueConstraint(
                fields=["order"],
                condition=models.Q(status="pending"),
                name="one_pending_intent_per_order",
            ),
        ]

    def __str__(self):
        return f"Intent {self.gateway_ref} - {self.status}"

    @property
    def is_terminal(self):
        return self.status != PaymentStatus.PENDING
