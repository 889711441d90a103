from django.db import models
from apps.catalog.models import Product
from apps.utils.models import TimestampedModel


class StockMovementLog(TimestampedModel):
    """
    Append-only trail of every stock change.
    """
    class MovementType(models.TextChoices):
        CHECKOUT = "CHECKOUT", "Checkout Deduction"
        RESTOCK = "RESTOCK", "Restock (Cancellation)"

    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name='stock_movements'
    )

    quantity_change = models.IntegerField(help_text="Delta value (+/-)")
    movement_type = models.CharField(max_length=20, choices=MovementType.choices)

    # Traceability
    reference = models.CharField(max_length=100, db_index=True, help_text="Order ID")
    balance_after = models.IntegerField(help_text="Stock right after this movement")

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.product_id} {self.quantity_change:+d} ({self.movement_type})"
