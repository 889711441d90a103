from decimal import Decimal
import hashlib
import hmac
import json
import uuid

from django.test import TestCase, override_settings
from django.urls import reverse
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework import status

from apps.catalog.models import Product
from apps.orders.models import CartItem, OrderStatus
from apps.orders.services import CheckoutService, OrderStatusService
from apps.payments.gateway import SimulatedGateway
from apps.payments.models import PaymentIntent, PaymentStatus
from apps.payments.services import PaymentService, ReconciliationOutcome
from apps.utils.exceptions import BusinessLogicException, NotFound

User = get_user_model()


class PaymentTestBase(TestCase):
    def setUp(self):
        self.user = User.objects.create_user(email="payer@example.com", password="testpass123")
        self.product = Product.objects.create(name="Product A", price=Decimal("10.00"), stock=5)
        CartItem.objects.create(user=self.user, product=self.product, quantity=2)
        self.order = CheckoutService().checkout(self.user)
        self.gateway = SimulatedGateway(base_url="https://pay.example.test")
        self.service = PaymentService(gateway=self.gateway)


class PaymentIntentServiceTests(PaymentTestBase):

    def test_create_intent_for_pending_order(self):
        intent, created = self.service.create_intent(self.user, self.order.id)

        self.assertTrue(created)
        self.assertEqual(intent.amount, Decimal("20.00"))
        self.assertEqual(intent.status, PaymentStatus.PENDING)
        self.assertTrue(intent.gateway_ref.startswith("PAY-"))
        self.assertTrue(intent.redirect_url.startswith("https://pay.example.test/pay/"))

    def test_second_request_returns_existing_pending_intent(self):
        first, _ = self.service.create_intent(self.user, self.order.id)
        second, created = self.service.create_intent(self.user, self.order.id)

        self.assertFalse(created)
        self.assertEqual(first.pk, second.pk)
        self.assertEqual(PaymentIntent.objects.count(), 1)

    def test_new_intent_allowed_after_failure(self):
        first, _ = self.service.create_intent(self.user, self.order.id)
        self.service.on_payment_failed(first.id)

        second, created = self.service.create_intent(self.user, self.order.id)
        self.assertTrue(created)
        self.assertNotEqual(first.pk, second.pk)

    def test_only_owner_can_pay(self):
        stranger = User.objects.create_user(email="stranger@example.com")
        with self.assertRaises(NotFound):
            self.service.create_intent(stranger, self.order.id)

    def test_order_must_be_pending(self):
        OrderStatusService().transition(self.order.id, OrderStatus.CANCELLED)
        with self.assertRaises(BusinessLogicException) as ctx:
            self.service.create_intent(self.user, self.order.id)
        self.assertEqual(ctx.exception.code, "order_not_payable")


class ReconciliationTests(PaymentTestBase):

    def setUp(self):
        super().setUp()
        self.intent, _ = self.service.create_intent(self.user, self.order.id)

    def test_confirmation_marks_paid_and_confirms_order(self):
        outcome = self.service.on_payment_confirmed(self.intent.id)

        self.assertEqual(outcome, ReconciliationOutcome.CONFIRMED)
        self.intent.refresh_from_db()
        self.order.refresh_from_db()
        self.assertEqual(self.intent.status, PaymentStatus.PAID)
        self.assertIsNotNone(self.intent.paid_at)
        self.assertEqual(self.order.status, OrderStatus.CONFIRMED)
        self.assertIsNotNone(self.order.confirmed_at)

    def test_repeated_confirmation_is_a_no_op(self):
        self.service.on_payment_confirmed(self.intent.id)
        timeline_before = self.order.timeline.count()

        outcome = self.service.on_payment_confirmed(self.intent.id)

        self.assertEqual(outcome, ReconciliationOutcome.ALREADY_TERMINAL)
        self.assertEqual(self.order.timeline.count(), timeline_before)

    def test_confirmation_after_failure_is_a_no_op(self):
        self.assertEqual(self.service.on_payment_failed(self.intent.id), ReconciliationOutcome.FAILED)

        outcome = self.service.on_payment_confirmed(self.intent.id)

        self.assertEqual(outcome, ReconciliationOutcome.ALREADY_TERMINAL)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.PENDING)

    def test_failure_keeps_order_pending(self):
        self.service.on_payment_failed(self.intent.id)
        self.intent.refresh_from_db()
        self.order.refresh_from_db()
        self.assertEqual(self.intent.status, PaymentStatus.FAILED)
        self.assertEqual(self.order.status, OrderStatus.PENDING)

    def test_payment_for_cancelled_order_is_flagged_not_forced(self):
        OrderStatusService().transition(self.order.id, OrderStatus.CANCELLED)

        with self.assertLogs("apps.payments.services", level="ERROR"):
            outcome = self.service.on_payment_confirmed(self.intent.id)

        self.assertEqual(outcome, ReconciliationOutcome.INCONSISTENT)
        self.intent.refresh_from_db()
        self.order.refresh_from_db()
        self.assertEqual(self.intent.status, PaymentStatus.PAID)
        self.assertTrue(self.intent.needs_review)
        self.assertIn("cancelled", self.intent.reconciliation_note)
        self.assertEqual(self.order.status, OrderStatus.CANCELLED)

    def test_unknown_intent(self):
        with self.assertRaises(NotFound):
            self.service.on_payment_confirmed(uuid.uuid4())
        with self.assertRaises(NotFound):
            self.service.on_payment_failed("garbage")


class GatewayTests(TestCase):

    def test_signature_round_trip(self):
        gateway = SimulatedGateway(base_url="https://pay.example.test/", webhook_secret="s3cret")
        body = b'{"intent_id": "abc"}'

        self.assertTrue(gateway.verify_webhook_signature(body, gateway.sign(body)))
        self.assertFalse(gateway.verify_webhook_signature(body, "deadbeef"))
        self.assertFalse(gateway.verify_webhook_signature(body, ""))

    def test_no_secret_accepts_unsigned(self):
        gateway = SimulatedGateway(base_url="https://pay.example.test")
        self.assertTrue(gateway.verify_webhook_signature(b"{}", ""))


class PaymentAPITests(PaymentTestBase):

    def setUp(self):
        super().setUp()
        self.client = APIClient()

    def test_create_intent_endpoint(self):
        self.client.force_authenticate(user=self.user)
        url = reverse("payment-intent-create")

        response = self.client.post(url, {"order_id": str(self.order.id)}, format="json")
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data["amount"], "20.00")
        self.assertIn("redirect_url", response.data)

        again = self.client.post(url, {"order_id": str(self.order.id)}, format="json")
        self.assertEqual(again.status_code, status.HTTP_200_OK)
        self.assertEqual(again.data["id"], response.data["id"])

    def test_webhook_confirms_order(self):
        intent, _ = self.service.create_intent(self.user, self.order.id)

        response = self.client.post(
            reverse("payment-webhook"), {"intent_id": str(intent.id)}, format="json"
        )

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], "confirmed")
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.CONFIRMED)

        replay = self.client.post(
            reverse("payment-webhook"), {"intent_id": str(intent.id)}, format="json"
        )
        self.assertEqual(replay.status_code, status.HTTP_200_OK)
        self.assertEqual(replay.data["status"], "already_processed")

    def test_webhook_accepts_intent_id_in_query(self):
        intent, _ = self.service.create_intent(self.user, self.order.id)
        url = f"{reverse('payment-webhook')}?intent_id={intent.id}&event=payment.failed"

        response = self.client.post(url, {}, format="json")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], "failed")

    def test_webhook_unknown_intent(self):
        response = self.client.post(
            reverse("payment-webhook"), {"intent_id": str(uuid.uuid4())}, format="json"
        )
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_webhook_missing_intent_id(self):
        response = self.client.post(reverse("payment-webhook"), {}, format="json")
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    @override_settings(PAYMENT_WEBHOOK_SECRET="test_secret")
    def test_webhook_signature_required_when_secret_set(self):
        intent, _ = self.service.create_intent(self.user, self.order.id)
        payload_str = json.dumps({"intent_id": str(intent.id)})

        response = self.client.post(
            reverse("payment-webhook"), data=payload_str, content_type="application/json",
        )
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        signature = hmac.new(b"test_secret", payload_str.encode("utf-8"), hashlib.sha256).hexdigest()
        response = self.client.post(
            reverse("payment-webhook"),
            data=payload_str,
            content_type="application/json",
            HTTP_X_PAYMENT_SIGNATURE=signature,
        )
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.order.refresh_from_db()
        self.assertEqual(self.order.status, OrderStatus.CONFIRMED)

    def test_webhook_non_object_body_is_a_validation_error(self):
        response = self.client.post(
            reverse("payment-webhook"), data="[1, 2]", content_type="application/json",
        )
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn("intent_id", response.data)

    def test_webhook_non_object_body_uses_query_string(self):
        intent, _ = self.service.create_intent(self.user, self.order.id)
        url = f"{reverse('payment-webhook')}?intent_id={intent.id}"

        response = self.client.post(url, data='"paid"', content_type="application/json")

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data["status"], "confirmed")
