# apps/orders/tests_order_flow.py
from datetime import timedelta
from decimal import Decimal

from django.core.cache import cache
from django.db import DatabaseError
from django.test import TestCase
from django.contrib.auth import get_user_model
from django.urls import reverse
from django.utils import timezone

from rest_framework.test import APITestCase, APIClient
from rest_framework import status

from apps.accounts.models import Role
from apps.catalog.models import Product
from apps.inventory.models import StockMovementLog
from apps.inventory.services import InventoryService
from apps.orders.models import CartItem, Order, OrderItem, OrderStatus, OrderTimeline
from apps.orders.selectors import order_stats
from apps.orders.services import CheckoutService, OrderStatusService
from apps.orders.tasks import expire_unpaid_orders
from apps.utils.exceptions import EmptyCart, InsufficientStock, InvalidTransition, NotFound, TransactionFailure


User = get_user_model()


class FlakyInventory(InventoryService):
    """Lets the first `ok_calls` decrements through, then simulates a lock timeout."""

    def __init__(self, ok_calls=1):
        super().__init__()
        self.ok_calls = ok_calls

    def try_decrement(self, product_id, quantity, reference=""):
        if self.ok_calls <= 0:
            raise DatabaseError("lock wait timeout exceeded")
        self.ok_calls -= 1
        return super().try_decrement(product_id, quantity, reference)


class LosingRaceInventory(InventoryService):
    """Conditional decrement matches no row, as if another checkout took the stock first."""

    def try_decrement(self, product_id, quantity, reference=""):
        return False


class OrderFlowTestBase(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="buyer@example.com", password="testpass123")
        self.admin = User.objects.create_user(email="admin@example.com", password="testpass123", role=Role.ADMIN)
        self.product_a = Product.objects.create(name="Product A", price=Decimal("10.00"), stock=5)
        self.product_b = Product.objects.create(name="Product B", price=Decimal("3.25"), stock=10)

    def add_to_cart(self, user, product, quantity):
        return CartItem.objects.create(user=user, product=product, quantity=quantity)

    def stock(self, product):
        product.refresh_from_db()
        return product.stock


class CheckoutServiceTests(OrderFlowTestBase):

    def test_checkout_creates_order_and_decrements_stock(self):
        self.add_to_cart(self.user, self.product_a, 2)
        self.add_to_cart(self.user, self.product_b, 4)

        order = CheckoutService().checkout(self.user)

        self.assertEqual(order.status, OrderStatus.PENDING)
        self.assertEqual(order.total_price, Decimal("33.00"))
        self.assertEqual(order.items.count(), 2)
        self.assertEqual(self.stock(self.product_a), 3)
        self.assertEqual(self.stock(self.product_b), 6)
        self.assertFalse(CartItem.objects.filter(user=self.user).exists())

        timeline = list(order.timeline.values_list("status", flat=True))
        self.assertEqual(timeline, [OrderStatus.PENDING])

        movements = StockMovementLog.objects.filter(reference=str(order.id))
        self.assertEqual(movements.count(), 2)
        self.assertEqual(
            movements.get(product=self.product_a).balance_after, 3
        )

    def test_total_is_sum_of_line_subtotals(self):
        self.add_to_cart(self.user, self.product_a, 3)
        self.add_to_cart(self.user, self.product_b, 1)

        order = CheckoutService().checkout(self.user)

        subtotals = sum(item.subtotal for item in order.items.all())
        self.assertEqual(order.total_price, subtotals)
        for item in order.items.all():
            self.assertEqual(item.subtotal, item.unit_price * item.quantity)

    def test_empty_cart_is_rejected(self):
        with self.assertRaises(EmptyCart):
            CheckoutService().checkout(self.user)
        self.assertFalse(Order.objects.exists())

    def test_insufficient_stock_rolls_back_everything(self):
        self.add_to_cart(self.user, self.product_b, 2)
        self.add_to_cart(self.user, self.product_a, 6)

        with self.assertRaises(InsufficientStock) as ctx:
            CheckoutService().checkout(self.user)

        self.assertEqual(ctx.exception.product_id, self.product_a.id)
        self.assertEqual(self.stock(self.product_a), 5)
        self.assertEqual(self.stock(self.product_b), 10)
        self.assertFalse(Order.objects.exists())
        self.assertEqual(CartItem.objects.filter(user=self.user).count(), 2)

    def test_inactive_product_blocks_checkout(self):
        self.add_to_cart(self.user, self.product_a, 1)
        self.product_a.is_active = False
        self.product_a.save()

        with self.assertRaises(InsufficientStock):
            CheckoutService().checkout(self.user)
        self.assertFalse(Order.objects.exists())

    def test_lost_decrement_race_is_insufficient_stock(self):
        self.add_to_cart(self.user, self.product_a, 1)

        with self.assertRaises(InsufficientStock):
            CheckoutService(inventory=LosingRaceInventory()).checkout(self.user)

        self.assertFalse(Order.objects.exists())
        self.assertTrue(CartItem.objects.filter(user=self.user).exists())

    def test_database_failure_mid_checkout_leaves_no_trace(self):
        self.add_to_cart(self.user, self.product_a, 2)
        self.add_to_cart(self.user, self.product_b, 2)

        with self.assertRaises(TransactionFailure) as ctx:
            CheckoutService(inventory=FlakyInventory(ok_calls=1)).checkout(self.user)

        self.assertTrue(ctx.exception.retryable)
        self.assertEqual(self.stock(self.product_a), 5)
        self.assertEqual(self.stock(self.product_b), 10)
        self.assertFalse(Order.objects.exists())
        self.assertFalse(StockMovementLog.objects.exists())
        self.assertEqual(CartItem.objects.filter(user=self.user).count(), 2)

    def test_order_keeps_price_paid_after_catalog_change(self):
        self.add_to_cart(self.user, self.product_a, 2)
        order = CheckoutService().checkout(self.user)

        self.product_a.price = Decimal("99.99")
        self.product_a.name = "Renamed"
        self.product_a.save()

        order.refresh_from_db()
        line = order.items.get()
        self.assertEqual(line.unit_price, Decimal("10.00"))
        self.assertEqual(line.product_name_snapshot, "Product A")
        self.assertEqual(order.total_price, Decimal("20.00"))

    def test_order_lines_are_immutable(self):
        self.add_to_cart(self.user, self.product_a, 1)
        order = CheckoutService().checkout(self.user)
        line = order.items.get()
        line.quantity = 5
        with self.assertRaises(ValueError):
            line.save()


class OrderStatusServiceTests(OrderFlowTestBase):

    def setUp(self):
        super().setUp()
        self.add_to_cart(self.user, self.product_a, 2)
        self.add_to_cart(self.user, self.product_b, 3)
        self.order = CheckoutService().checkout(self.user)
        self.service = OrderStatusService()

    def test_happy_path_stamps_each_step(self):
        for target in (OrderStatus.CONFIRMED, OrderStatus.SHIPPED, OrderStatus.DELIVERED):
            order = self.service.transition(self.order.id, target, actor=self.admin)
            self.assertEqual(order.status, target)

        order = Order.objects.get(pk=self.order.pk)
        self.assertIsNotNone(order.confirmed_at)
        self.assertIsNotNone(order.shipped_at)
        self.assertIsNotNone(order.delivered_at)
        self.assertIsNone(order.cancelled_at)

        path = list(order.timeline.values_list("status", flat=True))
        self.assertEqual(path, ["pending", "confirmed", "shipped", "delivered"])
        # Delivery does not touch stock
        self.assertEqual(self.stock(self.product_a), 3)

    def test_cancel_pending_restores_stock_exactly(self):
        self.service.transition(self.order.id, OrderStatus.CANCELLED, actor=self.admin, note="Customer request")

        self.assertEqual(self.stock(self.product_a), 5)
        self.assertEqual(self.stock(self.product_b), 10)

        restocks = StockMovementLog.objects.filter(
            movement_type=StockMovementLog.MovementType.RESTOCK,
            reference=f"CANCEL-{self.order.id}",
        )
        self.assertEqual(restocks.count(), 2)

        entry = OrderTimeline.objects.filter(order=self.order).last()
        self.assertEqual(entry.from_status, "pending")
        self.assertEqual(entry.created_by, self.admin)
        self.assertEqual(entry.note, "Customer request")

    def test_cancel_confirmed_restores_stock(self):
        self.service.transition(self.order.id, OrderStatus.CONFIRMED)
        self.service.transition(self.order.id, OrderStatus.CANCELLED)
        self.assertEqual(self.stock(self.product_a), 5)

    def test_cancelling_twice_does_not_double_restore(self):
        self.service.transition(self.order.id, OrderStatus.CANCELLED)
        with self.assertRaises(InvalidTransition):
            self.service.transition(self.order.id, OrderStatus.CANCELLED)
        self.assertEqual(self.stock(self.product_a), 5)

    def test_shipped_order_cannot_be_cancelled(self):
        self.service.transition(self.order.id, OrderStatus.CONFIRMED)
        self.service.transition(self.order.id, OrderStatus.SHIPPED)

        with self.assertRaises(InvalidTransition):
            self.service.transition(self.order.id, OrderStatus.CANCELLED)

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.SHIPPED)
        self.assertEqual(self.stock(self.product_a), 3)
        self.assertEqual(self.stock(self.product_b), 7)

    def test_unknown_target_leaves_order_unchanged(self):
        with self.assertRaises(InvalidTransition):
            self.service.transition(self.order.id, "refunded")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.PENDING)
        self.assertEqual(self.order.timeline.count(), 1)

    def test_missing_order(self):
        with self.assertRaises(NotFound):
            self.service.transition("00000000-0000-0000-0000-000000000000", OrderStatus.CONFIRMED)
        with self.assertRaises(NotFound):
            self.service.transition("not-a-uuid", OrderStatus.CONFIRMED)

    def test_failed_restock_rolls_back_status(self):
        class BrokenInventory(InventoryService):
            def increment(self, product_id, quantity, reference=""):
                raise DatabaseError("connection lost")

        with self.assertRaises(TransactionFailure):
            OrderStatusService(inventory=BrokenInventory()).transition(self.order.id, OrderStatus.CANCELLED)

        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.PENDING)
        self.assertEqual(self.stock(self.product_a), 3)


class StockConservationTests(OrderFlowTestBase):

    def test_initial_stock_equals_available_plus_open_order_quantities(self):
        other = User.objects.create_user(email="second@example.com", password="testpass123")
        status_service = OrderStatusService()

        self.add_to_cart(self.user, self.product_a, 2)
        first = CheckoutService().checkout(self.user)
        self.add_to_cart(other, self.product_a, 3)
        CheckoutService().checkout(other)
        status_service.transition(first.id, OrderStatus.CANCELLED)

        committed = sum(
            OrderItem.objects.filter(product=self.product_a)
            .exclude(order__status=OrderStatus.CANCELLED)
            .values_list("quantity", flat=True)
        )
        self.assertEqual(self.stock(self.product_a) + committed, 5)


class ConcreteScenarioTests(OrderFlowTestBase):

    def test_sell_out_cancel_and_resell(self):
        second = User.objects.create_user(email="second@example.com", password="testpass123")
        checkout = CheckoutService()

        self.add_to_cart(self.user, self.product_a, 5)
        first_order = checkout.checkout(self.user)
        self.assertEqual(first_order.total_price, Decimal("50.00"))
        self.assertEqual(self.stock(self.product_a), 0)

        self.add_to_cart(second, self.product_a, 1)
        with self.assertRaises(InsufficientStock):
            checkout.checkout(second)

        OrderStatusService().transition(first_order.id, OrderStatus.CANCELLED, actor=self.admin)
        self.assertEqual(self.stock(self.product_a), 5)

        retry = checkout.checkout(second)
        self.assertEqual(retry.status, OrderStatus.PENDING)
        self.assertEqual(self.stock(self.product_a), 4)

    def test_shipped_cancel_request_is_rejected(self):
        self.add_to_cart(self.user, self.product_a, 1)
        order = CheckoutService().checkout(self.user)
        service = OrderStatusService()
        service.transition(order.id, OrderStatus.CONFIRMED)
        service.transition(order.id, OrderStatus.SHIPPED)

        with self.assertRaises(InvalidTransition):
            service.transition(order.id, OrderStatus.CANCELLED)
        self.assertEqual(self.stock(self.product_a), 4)


class OrderStatsTests(OrderFlowTestBase):

    def test_counts_and_revenue_exclude_cancelled(self):
        service = OrderStatusService()
        self.add_to_cart(self.user, self.product_a, 1)
        keep = CheckoutService().checkout(self.user)
        self.add_to_cart(self.user, self.product_b, 2)
        drop = CheckoutService().checkout(self.user)
        service.transition(keep.id, OrderStatus.CONFIRMED)
        service.transition(drop.id, OrderStatus.CANCELLED)

        stats = order_stats()
        self.assertEqual(stats["total_orders"], 2)
        self.assertEqual(stats["by_status"]["confirmed"], 1)
        self.assertEqual(stats["by_status"]["cancelled"], 1)
        self.assertEqual(stats["by_status"]["shipped"], 0)
        self.assertEqual(stats["revenue"], Decimal("10.00"))

    def test_date_range_is_inclusive(self):
        self.add_to_cart(self.user, self.product_a, 1)
        order = CheckoutService().checkout(self.user)
        old = timezone.now() - timedelta(days=10)
        Order.objects.filter(pk=order.pk).update(created_at=old)

        today = timezone.localdate()
        self.assertEqual(order_stats(date_from=today)["total_orders"], 0)
        self.assertEqual(order_stats(date_to=timezone.localtime(old).date())["total_orders"], 1)


class ExpireUnpaidOrdersTaskTests(OrderFlowTestBase):

    def test_stale_pending_orders_are_cancelled_and_restocked(self):
        self.add_to_cart(self.user, self.product_a, 2)
        stale = CheckoutService().checkout(self.user)
        Order.objects.filter(pk=stale.pk).update(created_at=timezone.now() - timedelta(hours=2))

        self.add_to_cart(self.user, self.product_a, 1)
        fresh = CheckoutService().checkout(self.user)

        self.assertEqual(expire_unpaid_orders(), 1)

        stale.refresh_from_db()
        fresh.refresh_from_db()
        self.assertEqual(stale.status, OrderStatus.CANCELLED)
        self.assertEqual(fresh.status, OrderStatus.PENDING)
        self.assertEqual(self.stock(self.product_a), 4)

    def test_confirmed_orders_are_left_alone(self):
        self.add_to_cart(self.user, self.product_a, 1)
        order = CheckoutService().checkout(self.user)
        OrderStatusService().transition(order.id, OrderStatus.CONFIRMED)
        Order.objects.filter(pk=order.pk).update(created_at=timezone.now() - timedelta(hours=2))

        self.assertEqual(expire_unpaid_orders(), 0)


class OrderAPITests(APITestCase):
    def setUp(self):
        cache.clear()
        self.client = APIClient()
        self.user = User.objects.create_user(email="buyer@example.com", password="testpass123")
        self.other = User.objects.create_user(email="other@example.com", password="testpass123")
        self.admin = User.objects.create_user(email="admin@example.com", password="testpass123", role=Role.ADMIN)
        self.product = Product.objects.create(name="Product A", price=Decimal("10.00"), stock=5)
        self.client.force_authenticate(user=self.user)

    def checkout(self, **headers):
        return self.client.post(reverse("checkout"), format="json", **headers)

    def test_checkout_endpoint(self):
        CartItem.objects.create(user=self.user, product=self.product, quantity=2)

        response = self.checkout()

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["total"], "20.00")
        self.assertEqual(response.data["order"]["status"], "pending")
        self.assertEqual(len(response.data["order"]["items"]), 1)

    def test_checkout_empty_cart(self):
        response = self.checkout()
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "empty_cart")

    def test_checkout_insufficient_stock(self):
        CartItem.objects.create(user=self.user, product=self.product, quantity=5)
        Product.objects.filter(pk=self.product.pk).update(stock=4)

        response = self.checkout()
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["product_id"], str(self.product.id))

    def test_duplicate_idempotency_key_is_rejected(self):
        CartItem.objects.create(user=self.user, product=self.product, quantity=1)

        first = self.checkout(HTTP_X_IDEMPOTENCY_KEY="abc-123")
        self.assertEqual(first.status_code, status.HTTP_201_CREATED)

        CartItem.objects.create(user=self.user, product=self.product, quantity=1)
        second = self.checkout(HTTP_X_IDEMPOTENCY_KEY="abc-123")
        self.assertEqual(second.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(Order.objects.count(), 1)

    def test_failed_checkout_releases_idempotency_key(self):
        first = self.checkout(HTTP_X_IDEMPOTENCY_KEY="retry-me")
        self.assertEqual(first.status_code, status.HTTP_400_BAD_REQUEST)

        CartItem.objects.create(user=self.user, product=self.product, quantity=1)
        second = self.checkout(HTTP_X_IDEMPOTENCY_KEY="retry-me")
        self.assertEqual(second.status_code, status.HTTP_201_CREATED)

    def test_customer_sees_only_own_orders(self):
        CartItem.objects.create(user=self.user, product=self.product, quantity=1)
        mine = CheckoutService().checkout(self.user)
        CartItem.objects.create(user=self.other, product=self.product, quantity=1)
        theirs = CheckoutService().checkout(self.other)

        response = self.client.get(reverse("orders-list"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        ids = [row["id"] for row in response.data["results"]]
        self.assertEqual(ids, [str(mine.id)])

        response = self.client.get(reverse("orders-detail", args=[theirs.id]))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_admin_endpoints_require_admin_role(self):
        response = self.client.get(reverse("admin-orders-list"))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)
        response = self.client.get(reverse("admin-orders-stats"))
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_status_flow_and_stats(self):
        CartItem.objects.create(user=self.user, product=self.product, quantity=5)
        order = CheckoutService().checkout(self.user)
        self.client.force_authenticate(user=self.admin)
        url = reverse("admin-orders-update-status", args=[order.id])

        response = self.client.post(url, {"status": "shipped"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "invalid_transition")
        self.assertEqual(response.data["current"], "pending")

        response = self.client.post(url, {"status": "cancelled", "note": "Out of time"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], "cancelled")
        self.assertEqual(response.data["allowed_transitions"], [])
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 5)

        response = self.client.get(reverse("admin-orders-list"), {"status": "cancelled"})
        self.assertEqual(response.data["count"], 1)

        response = self.client.get(reverse("admin-orders-stats"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["by_status"]["cancelled"], 1)
        self.assertEqual(response.data["revenue"], "0.00")

    def test_stats_rejects_inverted_range(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.get(
            reverse("admin-orders-stats"),
            {"date_from": "2025-02-01", "date_to": "2025-01-01"},
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_long_unknown_status_is_an_invalid_transition(self):
        CartItem.objects.create(user=self.user, product=self.product, quantity=1)
        order = CheckoutService().checkout(self.user)
        self.client.force_authenticate(user=self.admin)
        url = reverse("admin-orders-update-status", args=[order.id])

        response = self.client.post(url, {"status": "awaiting-manual-fraud-review"}, format="json")

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data["code"], "invalid_transition")
        self.assertEqual(response.data["requested"], "awaiting-manual-fraud-review")

    def test_status_update_on_missing_order(self):
        self.client.force_authenticate(user=self.admin)
        url = reverse("admin-orders-update-status", args=["00000000-0000-0000-0000-000000000000"])
        response = self.client.post(url, {"status": "confirmed"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
