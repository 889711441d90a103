import uuid
import logging
from decimal import Decimal

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import DEFAULT_DB_ALIAS
from django.utils import timezone

from apps.catalog.models import Product
from apps.catalog.selectors import get_product
from apps.inventory.services import InventoryService
from apps.utils.db import unit_of_work
from apps.utils.exceptions import (
    BusinessLogicException,
    EmptyCart,
    InsufficientStock,
    NotFound,
)
from .models import CartItem, Order, OrderItem, OrderStatus, OrderTimeline, STATUS_TIMESTAMP_FIELDS
from .state_machine import validate_transition

logger = logging.getLogger(__name__)


class CartService:
    """
    Per-user cart. The stock check here is advisory only; checkout
    re-validates against locked rows.
    """

    def __init__(self, using=DEFAULT_DB_ALIAS):
        self.using = using

    def list_lines(self, user):
        return (
            CartItem.objects.using(self.using)
            .filter(user=user)
            .select_related("product")
            .order_by("product_id")
        )

    @staticmethod
    def total(lines) -> Decimal:
        return sum((line.line_total for line in lines), Decimal("0.00"))

    def add_item(self, user, product_id, quantity: int):
        """
        Adds `quantity` of a product, merging into an existing line.
        Returns (item, created).
        """
        self._check_quantity(quantity)
        product = get_product(product_id, using=self.using, active_only=True)

        with unit_of_work(self.using, "cart.add_item"):
            item = (
                CartItem.objects.using(self.using)
                .select_for_update()
                .filter(user=user, product=product)
                .first()
            )
            new_quantity = quantity + (item.quantity if item else 0)
            self._check_available(product, new_quantity)

            if item:
                item.quantity = new_quantity
                item.save(using=self.using, update_fields=["quantity", "updated_at"])
                return item, False

            item = CartItem.objects.using(self.using).create(user=user, product=product, quantity=quantity)
            return item, True

    def update_quantity(self, user, item_id, quantity: int) -> CartItem:
        self._check_quantity(quantity)
        with unit_of_work(self.using, "cart.update_quantity"):
            item = self._get_owned_item(user, item_id, lock=True)
            self._check_available(item.product, quantity)
            item.quantity = quantity
            item.save(using=self.using, update_fields=["quantity", "updated_at"])
        return item

    def remove_item(self, user, item_id) -> None:
        item = self._get_owned_item(user, item_id)
        item.delete(using=self.using)

    def clear(self, user) -> int:
        deleted, _ = CartItem.objects.using(self.using).filter(user=user).delete()
        return deleted

    def _get_owned_item(self, user, item_id, lock=False) -> CartItem:
        qs = CartItem.objects.using(self.using).select_related("product")
        if lock:
            qs = qs.select_for_update()
        try:
            return qs.get(pk=item_id, user=user)
        except (CartItem.DoesNotExist, ValidationError, ValueError):
            raise NotFound("Cart item not found.", item_id=str(item_id))

    @staticmethod
    def _check_quantity(quantity):
        if quantity < 1:
            raise BusinessLogicException("Quantity must be at least 1.", code="invalid_quantity")
        if quantity > settings.MAX_CART_LINE_QUANTITY:
            raise BusinessLogicException(
                f"Quantity cannot exceed {settings.MAX_CART_LINE_QUANTITY}.",
                code="invalid_quantity",
            )

    @staticmethod
    def _check_available(product, quantity):
        if not product.is_active:
            raise InsufficientStock(
                product.pk, requested=quantity, available=0,
                message=f"{product.name} is no longer available.",
            )
        if quantity > product.stock:
            raise InsufficientStock(
                product.pk, requested=quantity, available=product.stock,
                message=f"Only {product.stock} units of {product.name} available.",
            )


class CheckoutService:
    """
    Converts a user's cart into a pending order in one unit of work:
    stock decrements, order + lines, cart deletion and the first timeline
    entry commit together or not at all.
    """

    def __init__(self, inventory=None, using=DEFAULT_DB_ALIAS):
        self.using = using
        self.inventory = inventory or InventoryService(using=using)

    def checkout(self, user) -> Order:
        if not CartItem.objects.using(self.using).filter(user=user).exists():
            raise EmptyCart()

        order_id = uuid.uuid4()

        with unit_of_work(self.using, "checkout"):
            lines = list(
                CartItem.objects.using(self.using)
                .select_for_update()
                .filter(user=user)
                .order_by("product_id")
            )
            # Cart emptied by a concurrent checkout of the same user
            if not lines:
                raise EmptyCart()

            products = self._lock_products([line.product_id for line in lines])
            self._validate(lines, products)

            total = Decimal("0.00")
            order_items = []
            for line in lines:
                product = products[line.product_id]
                if not self.inventory.try_decrement(product.pk, line.quantity, reference=order_id):
                    raise InsufficientStock(product.pk, requested=line.quantity)

                subtotal = product.price * line.quantity
                total += subtotal
                order_items.append(
                    OrderItem(
                        order_id=order_id,
                        product=product,
                        product_name_snapshot=product.name,
                        unit_price=product.price,
                        quantity=line.quantity,
                        subtotal=subtotal,
                    )
                )

            order = Order.objects.using(self.using).create(
                id=order_id,
                user=user,
                total_price=total,
                status=OrderStatus.PENDING,
            )
            OrderItem.objects.using(self.using).bulk_create(order_items)
            CartItem.objects.using(self.using).filter(user=user).delete()
            OrderTimeline.objects.using(self.using).create(
                order=order,
                status=OrderStatus.PENDING,
                note="Order placed, waiting for payment.",
                created_by=user,
            )

        logger.info(
            "Order %s placed by %s (%d lines, total %s)",
            order.id, user.pk, len(order_items), total,
            extra={"order_id": str(order.id), "user_id": str(user.pk), "operation": "checkout"},
        )
        return order

    def _lock_products(self, product_ids):
        # Ascending id order so concurrent checkouts never deadlock
        rows = (
            Product.objects.using(self.using)
            .select_for_update()
            .filter(pk__in=product_ids)
            .order_by("pk")
        )
        return {p.pk: p for p in rows}

    @staticmethod
    def _validate(lines, products):
        for line in lines:
            product = products.get(line.product_id)
            if product is None or not product.is_active:
                raise InsufficientStock(
                    line.product_id, requested=line.quantity, available=0,
                    message=f"Product {line.product_id} is no longer available.",
                )
            if line.quantity > product.stock:
                raise InsufficientStock(
                    product.pk, requested=line.quantity, available=product.stock,
                    message=f"Insufficient stock for {product.name}.",
                )


class OrderStatusService:
    """
    The only writer of Order.status. Cancelling restores every line's
    quantity inside the same unit of work as the status change.
    """

    def __init__(self, inventory=None, using=DEFAULT_DB_ALIAS):
        self.using = using
        self.inventory = inventory or InventoryService(using=using)

    def transition(self, order_id, requested, actor=None, note="") -> Order:
        with unit_of_work(self.using, "order.transition"):
            order = self._lock_order(order_id)
            current = order.status
            validate_transition(current, requested)

            if requested == OrderStatus.CANCELLED:
                self._restore_stock(order)

            order.status = requested
            update_fields = ["status", "updated_at"]
            stamp = STATUS_TIMESTAMP_FIELDS.get(requested)
            if stamp:
                setattr(order, stamp, timezone.now())
                update_fields.append(stamp)
            order.save(using=self.using, update_fields=update_fields)

            OrderTimeline.objects.using(self.using).create(
                order=order,
                from_status=current,
                status=requested,
                note=note,
                created_by=actor,
            )

        logger.info(
            "Order %s: %s -> %s", order.id, current, requested,
            extra={"order_id": str(order.id), "operation": "order.transition"},
        )
        return order

    def _lock_order(self, order_id) -> Order:
        try:
            return Order.objects.using(self.using).select_for_update().get(pk=order_id)
        except (Order.DoesNotExist, ValidationError, ValueError):
            raise NotFound(f"Order {order_id} not found.", order_id=str(order_id))

    def _restore_stock(self, order):
        reference = f"CANCEL-{order.pk}"
        for item in order.items.using(self.using).order_by("product_id"):
            self.inventory.increment(item.product_id, item.quantity, reference=reference)
