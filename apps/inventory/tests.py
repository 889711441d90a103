from decimal import Decimal
import concurrent.futures
import unittest

from django.db import DatabaseError, connection, transaction
from django.test import TestCase, TransactionTestCase
from django.contrib.auth import get_user_model

from apps.catalog.models import Product
from apps.inventory.models import StockMovementLog
from apps.inventory.services import InventoryService
from apps.orders.models import CartItem, Order
from apps.orders.services import CheckoutService
from apps.utils.exceptions import InsufficientStock, NotFound, TransactionFailure

User = get_user_model()


class InventoryPrimitiveTests(TestCase):
    def setUp(self):
        self.product = Product.objects.create(name="Prod1", price=Decimal("1.00"), stock=3)
        self.service = InventoryService()

    def test_decrement_within_stock(self):
        with transaction.atomic():
            self.assertTrue(self.service.try_decrement(self.product.id, 3, reference="ORD-1"))

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 0)

        log = StockMovementLog.objects.get()
        self.assertEqual(log.quantity_change, -3)
        self.assertEqual(log.balance_after, 0)
        self.assertEqual(log.movement_type, StockMovementLog.MovementType.CHECKOUT)

    def test_decrement_beyond_stock_matches_no_row(self):
        with transaction.atomic():
            self.assertFalse(self.service.try_decrement(self.product.id, 4))

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 3)
        self.assertFalse(StockMovementLog.objects.exists())

    def test_decrement_unknown_product(self):
        with transaction.atomic():
            self.assertFalse(
                self.service.try_decrement("00000000-0000-0000-0000-000000000000", 1)
            )

    def test_increment(self):
        with transaction.atomic():
            self.service.increment(self.product.id, 2, reference="CANCEL-1")

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 5)
        self.assertEqual(StockMovementLog.objects.get().balance_after, 5)

    def test_increment_unknown_product(self):
        with transaction.atomic():
            with self.assertRaises(NotFound):
                self.service.increment("00000000-0000-0000-0000-000000000000", 1)

    def test_quantity_must_be_positive(self):
        with transaction.atomic():
            with self.assertRaises(ValueError):
                self.service.try_decrement(self.product.id, 0)
            with self.assertRaises(ValueError):
                self.service.increment(self.product.id, -1)


class TransactionRequirementTests(TransactionTestCase):
    # Autocommit mode: no test-wide atomic block around the primitives

    def setUp(self):
        self.product = Product.objects.create(name="Prod1", price=Decimal("1.00"), stock=3)

    def test_primitives_refuse_to_run_outside_a_transaction(self):
        service = InventoryService()
        with self.assertRaises(transaction.TransactionManagementError):
            service.try_decrement(self.product.id, 1)
        with self.assertRaises(transaction.TransactionManagementError):
            service.increment(self.product.id, 1)

        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 3)


@unittest.skipUnless(connection.vendor == "postgresql", "row locks need PostgreSQL")
class ConcurrencyTests(TransactionTestCase):
    # Use TransactionTestCase to allow real DB transactions for concurrency testing

    def setUp(self):
        # Only 1 item in stock
        self.product = Product.objects.create(name="Prod1", price=Decimal("100.00"), stock=1)

        self.user1 = User.objects.create_user(email="one@example.com")
        self.user2 = User.objects.create_user(email="two@example.com")
        CartItem.objects.create(user=self.user1, product=self.product, quantity=1)
        CartItem.objects.create(user=self.user2, product=self.product, quantity=1)

    def test_concurrent_ordering(self):
        """Verify that two users cannot buy the last item simultaneously"""
        def place_order(user_id):
            user = User.objects.get(id=user_id)
            try:
                CheckoutService().checkout(user)
                return "SUCCESS"
            except InsufficientStock:
                return "FAILED"
            finally:
                connection.close()

        with concurrent.futures.ThreadPoolExecutor(max_workers=2) as executor:
            futures = [
                executor.submit(place_order, self.user1.id),
                executor.submit(place_order, self.user2.id),
            ]
            results = sorted(f.result() for f in futures)

        self.assertEqual(results, ["FAILED", "SUCCESS"])
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 0)
        self.assertEqual(Order.objects.count(), 1)


class StockConservationTests(TransactionTestCase):
    # Runs on every backend. SQLite serialises writers and may reject some
    # attempts with a lock error; those count as retries, never as sales.
    buyers = 6
    initial_stock = 3

    def setUp(self):
        self.product = Product.objects.create(
            name="Limited", price=Decimal("5.00"), stock=self.initial_stock
        )
        self.user_ids = []
        for n in range(self.buyers):
            user = User.objects.create_user(email=f"buyer{n}@example.com")
            CartItem.objects.create(user=user, product=self.product, quantity=1)
            self.user_ids.append(user.id)

    def place_order(self, user_id):
        try:
            CheckoutService().checkout(User.objects.get(id=user_id))
            return "SUCCESS"
        except InsufficientStock:
            return "FAILED"
        except (TransactionFailure, DatabaseError):
            return "RETRY"
        finally:
            connection.close()

    def test_many_buyers_never_oversell(self):
        with concurrent.futures.ThreadPoolExecutor(max_workers=self.buyers) as executor:
            results = list(executor.map(self.place_order, self.user_ids))

        sold = results.count("SUCCESS")
        self.product.refresh_from_db()

        self.assertLessEqual(sold, self.initial_stock)
        self.assertGreaterEqual(self.product.stock, 0)
        self.assertEqual(self.product.stock, self.initial_stock - sold)
        self.assertEqual(Order.objects.count(), sold)
        self.assertEqual(
            StockMovementLog.objects.filter(product=self.product).count(), sold
        )
        if connection.vendor == "postgresql":
            self.assertEqual(sold, self.initial_stock)
            self.assertEqual(results.count("FAILED"), self.buyers - self.initial_stock)
