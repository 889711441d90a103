from django.conf import settings
from django.db import models

from apps.utils.models import TimestampedModel

__all__ = ["Order", "OrderStatus", "STATUS_TIMESTAMP_FIELDS"]


class OrderStatus(models.TextChoices):
    PENDING = "pending", "Pending Payment"
    CONFIRMED = "confirmed", "Confirmed (Paid)"
    SHIPPED = "shipped", "Shipped"
    DELIVERED = "delivered", "Delivered"
    CANCELLED = "cancelled", "Cancelled"


# Status -> timestamp column stamped when the order enters that status
STATUS_TIMESTAMP_FIELDS = {
    OrderStatus.CONFIRMED: "confirmed_at",
    OrderStatus.SHIPPED: "shipped_at",
    OrderStatus.DELIVERED: "delivered_at",
    OrderStatus.CANCELLED: "cancelled_at",
}


class Order(TimestampedModel):
    """
    What was bought and at what price. Lines and total are fixed at checkout;
    only `status` and the status timestamps change afterwards.
    """
    Status = OrderStatus

    user = models.ForeignKey(settings.AUTH_USER_MODEL, on_delete=models.PROTECT, related_name='orders')

    total_price = models.DecimalField(max_digits=12, decimal_places=2)
    status = models.CharField(max_length=20, choices=OrderStatus.choices, default=OrderStatus.PENDING, db_index=True)

    confirmed_at = models.DateTimeField(null=True, blank=True)
    shipped_at = models.DateTimeField(null=True, blank=True)
    delivered_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["status", "created_at"], name="order_status_created_idx"),
        ]

    def __str__(self):
        return f"{self.id} [{self.status}]"
