from django.test import TestCase
from django.urls import reverse
from rest_framework.test import APIClient
from rest_framework import status

from apps.accounts.models import Role, User


class UserManagerTests(TestCase):

    def test_create_user_defaults_to_customer(self):
        user = User.objects.create_user(email="Jane@Example.COM", password="pw-12345")
        self.assertEqual(user.email, "Jane@example.com")
        self.assertEqual(user.role, Role.CUSTOMER)
        self.assertFalse(user.is_admin)
        self.assertTrue(user.check_password("pw-12345"))

    def test_create_user_requires_email(self):
        with self.assertRaises(ValueError):
            User.objects.create_user(email="")

    def test_user_without_password_cannot_log_in(self):
        user = User.objects.create_user(email="nopass@example.com")
        self.assertFalse(user.has_usable_password())

    def test_superuser_is_admin(self):
        user = User.objects.create_superuser(email="root@example.com", password="pw-12345")
        self.assertTrue(user.is_staff)
        self.assertTrue(user.is_superuser)
        self.assertTrue(user.is_admin)


class TokenAuthTests(TestCase):

    def setUp(self):
        self.client = APIClient()
        User.objects.create_user(email="login@example.com", password="pw-12345")

    def test_obtain_and_use_token(self):
        response = self.client.post(
            reverse("token-obtain"),
            {"email": "login@example.com", "password": "pw-12345"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn("access", response.data)
        self.assertIn("refresh", response.data)

        self.client.credentials(HTTP_AUTHORIZATION=f"Bearer {response.data['access']}")
        response = self.client.get(reverse("cart-list"))
        self.assertEqual(response.status_code, status.HTTP_200_OK)

    def test_wrong_password(self):
        response = self.client.post(
            reverse("token-obtain"),
            {"email": "login@example.com", "password": "nope"},
            format="json",
        )
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
