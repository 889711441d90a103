# apps/orders/tests.py
from decimal import Decimal
import itertools
from unittest import mock

from django.test import TestCase, override_settings
from django.contrib.auth import get_user_model
from django.urls import reverse

from rest_framework.test import APITestCase, APIClient
from rest_framework import status

from apps.catalog.models import Product
from apps.orders.models import CartItem, OrderStatus
from apps.orders.services import CartService
from apps.orders.state_machine import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    allowed_next,
    can_transition,
    validate_transition,
)
from apps.utils.exceptions import BusinessLogicException, InsufficientStock, InvalidTransition, NotFound


User = get_user_model()


class StateMachineTests(TestCase):
    EXPECTED = {
        ("pending", "confirmed"),
        ("pending", "cancelled"),
        ("confirmed", "shipped"),
        ("confirmed", "cancelled"),
        ("shipped", "delivered"),
    }

    def test_every_pair_matches_the_table(self):
        for current, requested in itertools.product(OrderStatus.values, repeat=2):
            with self.subTest(current=current, requested=requested):
                expected = (current, requested) in self.EXPECTED
                self.assertEqual(can_transition(current, requested), expected)
                if expected:
                    validate_transition(current, requested)
                else:
                    with self.assertRaises(InvalidTransition):
                        validate_transition(current, requested)

    def test_same_state_is_rejected(self):
        for s in OrderStatus.values:
            with self.subTest(status=s):
                self.assertFalse(can_transition(s, s))

    def test_unknown_states_are_rejected(self):
        self.assertFalse(can_transition("pending", "refunded"))
        self.assertFalse(can_transition("teleported", "pending"))
        self.assertEqual(allowed_next("teleported"), frozenset())

        with self.assertRaises(InvalidTransition) as ctx:
            validate_transition("shipped", "bogus")
        self.assertEqual(ctx.exception.current, "shipped")
        self.assertEqual(ctx.exception.requested, "bogus")

    def test_terminal_statuses(self):
        self.assertEqual(TERMINAL_STATUSES, {OrderStatus.DELIVERED, OrderStatus.CANCELLED})

    def test_table_covers_all_statuses(self):
        self.assertEqual(set(ALLOWED_TRANSITIONS), set(OrderStatus.values))

    def test_skipping_steps_is_rejected(self):
        self.assertFalse(can_transition("pending", "shipped"))
        self.assertFalse(can_transition("pending", "delivered"))
        self.assertFalse(can_transition("confirmed", "delivered"))


class CartServiceTests(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="cart@example.com", password="testpass123")
        self.other = User.objects.create_user(email="other@example.com", password="testpass123")
        self.product = Product.objects.create(name="Widget", price=Decimal("10.00"), stock=5)
        self.service = CartService()

    def test_add_creates_then_merges(self):
        item, created = self.service.add_item(self.user, self.product.id, 2)
        self.assertTrue(created)

        item, created = self.service.add_item(self.user, self.product.id, 3)
        self.assertFalse(created)
        self.assertEqual(item.quantity, 5)
        self.assertEqual(CartItem.objects.filter(user=self.user).count(), 1)

    def test_merge_beyond_stock_is_rejected(self):
        self.service.add_item(self.user, self.product.id, 4)

        with self.assertRaises(InsufficientStock) as ctx:
            self.service.add_item(self.user, self.product.id, 2)

        self.assertEqual(ctx.exception.details["available"], 5)
        self.assertEqual(CartItem.objects.get(user=self.user).quantity, 4)

    def test_add_does_not_touch_stock(self):
        self.service.add_item(self.user, self.product.id, 5)
        self.product.refresh_from_db()
        self.assertEqual(self.product.stock, 5)

    def test_add_inactive_product_is_not_found(self):
        self.product.is_active = False
        self.product.save()
        with self.assertRaises(NotFound):
            self.service.add_item(self.user, self.product.id, 1)

    def test_add_rejects_non_positive_quantity(self):
        with self.assertRaises(BusinessLogicException):
            self.service.add_item(self.user, self.product.id, 0)

    @override_settings(MAX_CART_LINE_QUANTITY=3)
    def test_add_rejects_quantity_over_cap(self):
        with self.assertRaises(BusinessLogicException):
            self.service.add_item(self.user, self.product.id, 4)

    def test_update_and_remove_are_owner_scoped(self):
        item, _ = self.service.add_item(self.user, self.product.id, 1)

        with self.assertRaises(NotFound):
            self.service.update_quantity(self.other, item.id, 2)
        with self.assertRaises(NotFound):
            self.service.remove_item(self.other, item.id)

        self.service.update_quantity(self.user, item.id, 3)
        item.refresh_from_db()
        self.assertEqual(item.quantity, 3)

    def test_remove_deletes_on_the_service_database(self):
        item, _ = self.service.add_item(self.user, self.product.id, 1)
        service = CartService(using="default")

        with mock.patch.object(CartItem, "delete", autospec=True) as delete:
            service.remove_item(self.user, item.id)

        delete.assert_called_once_with(item, using="default")

        service.remove_item(self.user, item.id)
        self.assertFalse(CartItem.objects.filter(pk=item.pk).exists())

    def test_update_beyond_stock_is_rejected(self):
        item, _ = self.service.add_item(self.user, self.product.id, 1)
        with self.assertRaises(InsufficientStock):
            self.service.update_quantity(self.user, item.id, 6)

    def test_total_and_clear(self):
        gadget = Product.objects.create(name="Gadget", price=Decimal("2.50"), stock=10)
        self.service.add_item(self.user, self.product.id, 2)
        self.service.add_item(self.user, gadget.id, 4)

        lines = list(self.service.list_lines(self.user))
        self.assertEqual(CartService.total(lines), Decimal("30.00"))

        self.assertEqual(self.service.clear(self.user), 2)
        self.assertFalse(self.service.list_lines(self.user).exists())


class CartAPITests(APITestCase):
    def setUp(self):
        self.client = APIClient()
        self.user = User.objects.create_user(email="api@example.com", password="testpass123")
        self.other = User.objects.create_user(email="intruder@example.com", password="testpass123")
        self.product = Product.objects.create(name="Widget", price=Decimal("10.00"), stock=5)
        self.client.force_authenticate(user=self.user)

    def test_requires_authentication(self):
        self.client.force_authenticate(user=None)
        response = self.client.get(reverse("cart-list"))
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_add_view_and_total(self):
        url = reverse("cart-add")
        response = self.client.post(url, {"product_id": str(self.product.id), "quantity": 2}, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

        response = self.client.post(url, {"product_id": str(self.product.id), "quantity": 1}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)

        response = self.client.get(reverse("cart-list"))
        self.assertEqual(response.data["total"], "30.00")
        self.assertEqual(response.data["items"][0]["quantity"], 3)

    def test_add_over_stock_returns_conflict(self):
        response = self.client.post(
            reverse("cart-add"),
            {"product_id": str(self.product.id), "quantity": 6},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "insufficient_stock")
        self.assertEqual(response.data["available"], 5)

    def test_add_rejects_zero_quantity(self):
        response = self.client.post(
            reverse("cart-add"),
            {"product_id": str(self.product.id), "quantity": 0},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_cannot_edit_someone_elses_line(self):
        item = CartItem.objects.create(user=self.other, product=self.product, quantity=1)

        response = self.client.patch(reverse("cart-detail", args=[item.id]), {"quantity": 2}, format="json")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

        response = self.client.delete(reverse("cart-detail", args=[item.id]))
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertTrue(CartItem.objects.filter(pk=item.pk).exists())

    def test_update_remove_and_clear(self):
        item = CartItem.objects.create(user=self.user, product=self.product, quantity=1)

        response = self.client.patch(reverse("cart-detail", args=[item.id]), {"quantity": 4}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["items"][0]["quantity"], 4)

        response = self.client.delete(reverse("cart-detail", args=[item.id]))
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)

        CartItem.objects.create(user=self.user, product=self.product, quantity=1)
        response = self.client.delete(reverse("cart-clear"))
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(CartItem.objects.filter(user=self.user).exists())
