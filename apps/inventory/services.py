import logging

from django.db import DEFAULT_DB_ALIAS
from django.db.models import F
from django.utils import timezone

from apps.catalog.models import Product
from apps.utils.db import require_transaction
from apps.utils.exceptions import NotFound

from .models import StockMovementLog

logger = logging.getLogger(__name__)


class InventoryService:
    """
    The only code allowed to write Product.stock.

    Both primitives join the caller's transaction (checkout or status
    transition) and never commit on their own.
    """

    def __init__(self, using=DEFAULT_DB_ALIAS):
        self.using = using

    def try_decrement(self, product_id, quantity: int, reference: str = "") -> bool:
        """
        Conditional decrement: UPDATE ... SET stock = stock - q
        WHERE id = ? AND stock >= q. Returns False when no row matched.
        """
        self._check_quantity(quantity)
        require_transaction(self.using)

        updated = (
            Product.objects.using(self.using)
            .filter(pk=product_id, stock__gte=quantity)
            .update(stock=F("stock") - quantity, updated_at=timezone.now())
        )
        if updated != 1:
            logger.info("Conditional decrement missed for product %s (qty=%s)", product_id, quantity)
            return False

        self._log(product_id, -quantity, StockMovementLog.MovementType.CHECKOUT, reference)
        return True

    def increment(self, product_id, quantity: int, reference: str = "") -> None:
        """
        Unconditional increment, used only to restore stock of a cancelled order.
        """
        self._check_quantity(quantity)
        require_transaction(self.using)

        updated = (
            Product.objects.using(self.using)
            .filter(pk=product_id)
            .update(stock=F("stock") + quantity, updated_at=timezone.now())
        )
        if updated != 1:
            raise NotFound(f"Product {product_id} not found.", product_id=str(product_id))

        self._log(product_id, quantity, StockMovementLog.MovementType.RESTOCK, reference)

    @staticmethod
    def _check_quantity(quantity):
        if quantity <= 0:
            raise ValueError("Stock movements need a positive quantity.")

    def _log(self, product_id, delta, movement_type, reference):
        balance = (
            Product.objects.using(self.using)
            .filter(pk=product_id)
            .values_list("stock", flat=True)
            .get()
        )
        StockMovementLog.objects.using(self.using).create(
            product_id=product_id,
            quantity_change=delta,
            movement_type=movement_type,
            reference=str(reference),
            balance_after=balance,
        )
