import enum
import logging
import uuid

from django.conf import settings
from django.core.exceptions import ValidationError
from django.db import DEFAULT_DB_ALIAS, IntegrityError
from django.utils import timezone

from apps.orders.models import OrderStatus
from apps.orders.selectors import get_order
from apps.orders.services import OrderStatusService
from apps.utils.db import unit_of_work
from apps.utils.exceptions import BusinessLogicException, InvalidTransition, NotFound, TransactionFailure
from .gateway import get_gateway
from .models import PaymentIntent, PaymentStatus

logger = logging.getLogger(__name__)


class ReconciliationOutcome(str, enum.Enum):
    CONFIRMED = "confirmed"
    FAILED = "failed"
    ALREADY_TERMINAL = "already_processed"
    INCONSISTENT = "needs_review"


class PaymentService:
    """
    Payment lifecycle: start an intent, then reconcile gateway callbacks
    against it. Webhooks may arrive more than once; a terminal intent is
    never processed twice.
    """

    def __init__(self, gateway=None, status_service=None, using=DEFAULT_DB_ALIAS):
        self.using = using
        self.gateway = gateway or get_gateway()
        self.status_service = status_service or OrderStatusService(using=using)

    def create_intent(self, user, order_id):
        """
        Returns (intent, created). An order has at most one pending intent;
        asking again hands back the existing one.
        """
        order = get_order(order_id, user=user, using=self.using)
        if order.status != OrderStatus.PENDING:
            raise BusinessLogicException(
                f"Order is not awaiting payment (status: {order.status}).",
                code="order_not_payable",
                status=order.status,
            )

        existing = self._pending_intent(order)
        if existing:
            return existing, False

        intent_id = uuid.uuid4()
        session = self.gateway.create_payment(
            intent_id=intent_id,
            order_id=order.pk,
            amount=order.total_price,
            currency=settings.PAYMENT_CURRENCY,
        )

        try:
            with unit_of_work(self.using, "payment.create_intent"):
                intent = PaymentIntent.objects.using(self.using).create(
                    id=intent_id,
                    order=order,
                    user=user,
                    amount=order.total_price,
                    currency=settings.PAYMENT_CURRENCY,
                    gateway_ref=session.reference,
                    redirect_url=session.redirect_url,
                )
        except TransactionFailure as exc:
            # Lost the race against a parallel request for the same order
            if isinstance(exc.cause, IntegrityError):
                existing = self._pending_intent(order)
                if existing:
                    return existing, False
            raise

        logger.info(
            "Payment intent %s created for order %s (%s %s)",
            intent.pk, order.pk, intent.amount, intent.currency,
            extra={"intent_id": str(intent.pk), "order_id": str(order.pk)},
        )
        return intent, True

    def on_payment_confirmed(self, intent_id) -> ReconciliationOutcome:
        with unit_of_work(self.using, "payment.confirm"):
            intent = self._lock_intent(intent_id)
            if intent.is_terminal:
                logger.info("Intent %s already %s, ignoring confirmation", intent.pk, intent.status)
                return ReconciliationOutcome.ALREADY_TERMINAL

            intent.status = PaymentStatus.PAID
            intent.paid_at = timezone.now()
            try:
                self.status_service.transition(
                    intent.order_id,
                    OrderStatus.CONFIRMED,
                    note=f"Payment {intent.gateway_ref} captured.",
                )
                outcome = ReconciliationOutcome.CONFIRMED
            except InvalidTransition as exc:
                # Money arrived for an order that moved on; flag it, never force it
                intent.needs_review = True
                intent.reconciliation_note = (
                    f"Payment captured while order was '{exc.current}'."
                )
                logger.error(
                    "Payment %s captured for order %s in status %s; flagged for review",
                    intent.gateway_ref, intent.order_id, exc.current,
                    extra={"intent_id": str(intent.pk), "order_id": str(intent.order_id)},
                )
                outcome = ReconciliationOutcome.INCONSISTENT

            intent.save(using=self.using)

        logger.info(
            "Payment %s reconciled: %s", intent.gateway_ref, outcome.value,
            extra={"intent_id": str(intent.pk), "order_id": str(intent.order_id)},
        )
        return outcome

    def on_payment_failed(self, intent_id) -> ReconciliationOutcome:
        """Marks a pending intent failed. The order stays pending."""
        with unit_of_work(self.using, "payment.fail"):
            intent = self._lock_intent(intent_id)
            if intent.is_terminal:
                return ReconciliationOutcome.ALREADY_TERMINAL

            intent.status = PaymentStatus.FAILED
            intent.save(using=self.using, update_fields=["status", "updated_at"])

        logger.info(
            "Payment %s failed for order %s", intent.gateway_ref, intent.order_id,
            extra={"intent_id": str(intent.pk), "order_id": str(intent.order_id)},
        )
        return ReconciliationOutcome.FAILED

    def _pending_intent(self, order):
        return (
            PaymentIntent.objects.using(self.using)
            .filter(order=order, status=PaymentStatus.PENDING)
            .first()
        )

    def _lock_intent(self, intent_id) -> PaymentIntent:
        try:
            return PaymentIntent.objects.using(self.using).select_for_update().get(pk=intent_id)
        except (PaymentIntent.DoesNotExist, ValidationError, ValueError):
            raise NotFound(f"Payment intent {intent_id} not found.", intent_id=str(intent_id))
