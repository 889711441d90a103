from django.conf import settings
from django.db import models

from apps.utils.models import TimestampedModel

__all__ = ["CartItem"]


class CartItem(TimestampedModel):
    """
    A pending, user-owned intent to buy `quantity` of a product.
    One row per (user, product); repeat adds merge into it.
    """

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        related_name="cart_items",
        on_delete=models.CASCADE,
    )
    product = models.ForeignKey(
        "catalog.Product",
        related_name="cart_items",
        on_delete=models.CASCADE,
    )
    quantity = models.PositiveIntegerField(default=1)

    class Meta:
        db_table = "cart_items"
        constraints = [
            models.UniqueConstraint(fields=["user", "product"], name="uniq_cart_item_per_user_product"),
            models.CheckConstraint(condition=models.Q(quantity__gte=1), name="cart_item_quantity_positive"),
        ]

    def __str__(self):
        return f"{self.user_id} -> {self.product_id} x {self.quantity}"

    @property
    def line_total(self):
        return self.product.price * self.quantity
