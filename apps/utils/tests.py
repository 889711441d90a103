# apps/utils/tests.py
import json
import logging

from django.db import DatabaseError, connection, transaction
from django.test import TestCase, TransactionTestCase
from django.urls import reverse
from rest_framework import status
from rest_framework.exceptions import ValidationError

from .db import require_transaction, unit_of_work
from .exceptions import (
    EmptyCart,
    InsufficientStock,
    InvalidTransition,
    NotFound,
    TransactionFailure,
    custom_exception_handler,
)
from .logging import JSONFormatter


class ExceptionHandlerTests(TestCase):

    def test_business_errors_carry_code_and_details(self):
        response = custom_exception_handler(InsufficientStock("p-1", requested=3, available=1), {})
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data["code"], "insufficient_stock")
        self.assertEqual(response.data["product_id"], "p-1")
        self.assertEqual(response.data["requested"], 3)
        self.assertEqual(response.data["available"], 1)

    def test_none_details_are_dropped(self):
        response = custom_exception_handler(InsufficientStock("p-1"), {})
        self.assertNotIn("available", response.data)

    def test_status_codes(self):
        self.assertEqual(custom_exception_handler(EmptyCart(), {}).status_code, 400)
        self.assertEqual(custom_exception_handler(InvalidTransition("shipped", "cancelled"), {}).status_code, 400)
        self.assertEqual(custom_exception_handler(NotFound("gone"), {}).status_code, 404)

    def test_transaction_failure_is_retryable_503(self):
        response = custom_exception_handler(TransactionFailure("checkout", DatabaseError("boom")), {})
        self.assertEqual(response.status_code, status.HTTP_503_SERVICE_UNAVAILABLE)
        self.assertTrue(response.data["retryable"])

    def test_drf_errors_pass_through(self):
        response = custom_exception_handler(ValidationError({"quantity": ["bad"]}), {})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_unhandled_errors_become_500(self):
        with self.assertLogs("apps.utils.exceptions", level="ERROR"):
            response = custom_exception_handler(RuntimeError("kaboom"), {})
        self.assertEqual(response.status_code, status.HTTP_500_INTERNAL_SERVER_ERROR)


class UnitOfWorkTests(TestCase):

    def test_database_error_becomes_transaction_failure(self):
        with self.assertRaises(TransactionFailure) as ctx:
            with unit_of_work(operation="demo"):
                raise DatabaseError("deadlock detected")
        self.assertEqual(ctx.exception.operation, "demo")
        self.assertIsInstance(ctx.exception.cause, DatabaseError)

    def test_business_errors_pass_through(self):
        with self.assertRaises(EmptyCart):
            with unit_of_work():
                raise EmptyCart()

    def test_require_transaction_inside_atomic(self):
        with transaction.atomic():
            require_transaction()


class AutocommitTests(TransactionTestCase):

    def test_require_transaction_outside_atomic(self):
        self.assertFalse(connection.in_atomic_block)
        with self.assertRaises(transaction.TransactionManagementError):
            require_transaction()


class JSONFormatterTests(TestCase):

    def _record(self, msg, args=(), **extra):
        record = logging.LogRecord("apps.test", logging.INFO, __file__, 1, msg, args, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_context_fields_are_lifted(self):
        out = json.loads(JSONFormatter().format(self._record("placed", order_id="o-1", operation="checkout")))
        self.assertEqual(out["msg"], "placed")
        self.assertEqual(out["order_id"], "o-1")
        self.assertEqual(out["operation"], "checkout")
        self.assertNotIn("intent_id", out)

    def test_sensitive_values_are_redacted(self):
        record = self._record({"email": "a@b.c", "password": "hunter2"})
        out = json.loads(JSONFormatter().format(record))
        self.assertIn("REDACTED", out["msg"])
        self.assertNotIn("hunter2", out["msg"])


class HealthCheckTests(TestCase):

    def test_health(self):
        response = self.client.get(reverse("health-check"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["components"], {"db": "ok", "cache": "ok"})
