from django.db import models
from .order import Order

__all__ = ["OrderItem"]


class OrderItem(models.Model):
    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name='items')
    # Display only; stock accounting uses the snapshot fields below
    product = models.ForeignKey("catalog.Product", on_delete=models.PROTECT, related_name='order_items')

    # Snapshot fields (Critical for audit)
    product_name_snapshot = models.CharField(max_length=255)
    unit_price = models.DecimalField(max_digits=10, decimal_places=2)

    quantity = models.PositiveIntegerField()
    subtotal = models.DecimalField(max_digits=12, decimal_places=2)

    class Meta:
        ordering = ["product_id"]
        constraints = [
            models.CheckConstraint(condition=models.Q(quantity__gte=1), name="order_item_quantity_positive"),
        ]

    def __str__(self):
        return f"{self.quantity}x {self.product_name_snapshot}"

    def save(self, *args, **kwargs):
        if not self._state.adding:
            raise ValueError("Order lines are immutable once created.")
        self.subtotal = self.unit_price * self.quantity
        super().save(*args, **kwargs)
