# apps/catalog/tests.py
from decimal import Decimal

from django.db import IntegrityError, transaction
from django.test import TestCase
from django.urls import reverse
from django.contrib.auth import get_user_model

from rest_framework.test import APITestCase, APIClient
from rest_framework import status

from apps.accounts.models import Role
from apps.orders.models import CartItem
from apps.orders.services import CheckoutService
from apps.utils.exceptions import NotFound
from .models import Product
from .serializers import ProductSerializer
from .selectors import get_current_price, get_current_stock, get_product

User = get_user_model()


class ProductModelTests(TestCase):
    def test_slug_auto_generated_and_unique(self):
        p1 = Product.objects.create(name="Milk", price=Decimal("1.00"))
        p2 = Product.objects.create(name="Milk", price=Decimal("1.20"))

        self.assertNotEqual(p1.slug, p2.slug)
        self.assertTrue(p1.slug.startswith("milk"))
        self.assertTrue(p2.slug.startswith("milk"))

    def test_stock_cannot_go_negative(self):
        product = Product.objects.create(name="Bread", price=Decimal("2.00"), stock=1)
        with self.assertRaises(IntegrityError):
            with transaction.atomic():
                Product.objects.filter(pk=product.pk).update(stock=-1)


class SelectorTests(TestCase):
    def setUp(self):
        self.product = Product.objects.create(name="Tea", price=Decimal("4.50"), stock=7)

    def test_current_stock_and_price(self):
        self.assertEqual(get_current_stock(self.product.id), 7)
        self.assertEqual(get_current_price(self.product.id), Decimal("4.50"))

    def test_missing_or_malformed_id(self):
        with self.assertRaises(NotFound):
            get_product("00000000-0000-0000-0000-000000000000")
        with self.assertRaises(NotFound):
            get_product("not-a-uuid")

    def test_active_only(self):
        self.product.is_active = False
        self.product.save()
        self.assertEqual(get_product(self.product.id), self.product)
        with self.assertRaises(NotFound):
            get_product(self.product.id, active_only=True)


class ProductViewSetTests(APITestCase):
    def setUp(self):
        self.client = APIClient()
        self.admin = User.objects.create_user(email="admin@example.com", password="testpass", role=Role.ADMIN)
        self.customer = User.objects.create_user(email="customer@example.com", password="testpass")
        self.active = Product.objects.create(name="Coffee", category="drinks", price=Decimal("8.00"), stock=3)
        self.hidden = Product.objects.create(name="Old Coffee", price=Decimal("5.00"), is_active=False)
        self.list_url = reverse("products-list")

    def test_public_list_shows_active_only(self):
        response = self.client.get(self.list_url)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        slugs = [p["slug"] for p in response.data["results"]]
        self.assertEqual(slugs, [self.active.slug])

    def test_search_and_category_filter(self):
        Product.objects.create(name="Green Tea", category="drinks", price=Decimal("3.00"))
        response = self.client.get(self.list_url, {"search": "coffee"})
        self.assertEqual(response.data["count"], 1)
        response = self.client.get(self.list_url, {"category": "drinks"})
        self.assertEqual(response.data["count"], 2)

    def test_customer_cannot_create(self):
        self.client.force_authenticate(user=self.customer)
        response = self.client.post(self.list_url, {"name": "X", "price": "1.00", "stock": 1})
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_creates_with_initial_stock(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.post(self.list_url, {"name": "Cocoa", "price": "6.00", "stock": 12}, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(Product.objects.get(slug=response.data["slug"]).stock, 12)

    def test_stock_is_not_editable_after_creation(self):
        self.client.force_authenticate(user=self.admin)
        url = reverse("products-detail", args=[self.active.slug])

        response = self.client.patch(url, {"stock": 99}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

        response = self.client.patch(url, {"price": "9.50"}, format="json")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.active.refresh_from_db()
        self.assertEqual(self.active.price, Decimal("9.50"))
        self.assertEqual(self.active.stock, 3)

    def test_delete_deactivates(self):
        self.client.force_authenticate(user=self.admin)
        response = self.client.delete(reverse("products-detail", args=[self.active.slug]))
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.active.refresh_from_db()
        self.assertFalse(self.active.is_active)


class StaleProductEditTests(TestCase):
    """Catalog edits made from an instance read before a checkout keep the newer stock."""

    def setUp(self):
        self.buyer = User.objects.create_user(email="buyer@example.com", password="testpass")
        self.product = Product.objects.create(name="Product A", price=Decimal("10.00"), stock=5)
        self.stale = Product.objects.get(pk=self.product.pk)
        CartItem.objects.create(user=self.buyer, product=self.product, quantity=5)

    def checkout(self):
        CheckoutService().checkout(self.buyer)
        self.assertEqual(get_current_stock(self.product.pk), 0)

    def test_serializer_partial_update_keeps_stock(self):
        self.checkout()

        serializer = ProductSerializer(self.stale, data={"price": "12.00"}, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()

        self.assertEqual(get_current_stock(self.product.pk), 0)
        self.assertEqual(get_current_price(self.product.pk), Decimal("12.00"))
        self.assertEqual(serializer.data["stock"], 0)

    def test_full_update_with_stale_stock_keeps_stock(self):
        self.checkout()

        payload = {"name": "Product A", "price": "11.00", "stock": 5, "is_active": True}
        serializer = ProductSerializer(self.stale, data=payload)
        serializer.is_valid(raise_exception=True)
        serializer.save()

        self.assertEqual(get_current_stock(self.product.pk), 0)

    def test_plain_save_never_writes_stock(self):
        self.checkout()

        self.stale.name = "Renamed"
        self.stale.save()
        self.assertEqual(self.stale.stock, 0)

        self.stale.stock = 50
        self.stale.save()
        self.assertEqual(get_current_stock(self.product.pk), 0)
        self.assertEqual(Product.objects.get(pk=self.product.pk).name, "Renamed")
