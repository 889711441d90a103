from celery import shared_task
from django.conf import settings
from django.utils import timezone
from datetime import timedelta
import logging

from apps.utils.exceptions import InvalidTransition, TransactionFailure
from .models import Order, OrderStatus
from .services import OrderStatusService

logger = logging.getLogger(__name__)


@shared_task
def expire_unpaid_orders():
    """
    Runs every 5 minutes.
    Cancels orders left pending past ORDER_PAYMENT_TIMEOUT_MINUTES, which
    returns their stock. Orders with a captured payment are skipped.
    """
    cutoff = timezone.now() - timedelta(minutes=settings.ORDER_PAYMENT_TIMEOUT_MINUTES)

    stale_ids = list(
        Order.objects.filter(status=OrderStatus.PENDING, created_at__lt=cutoff)
        .exclude(payment_intents__status="paid")
        .values_list("id", flat=True)
    )

    service = OrderStatusService()
    count = 0
    for order_id in stale_ids:
        try:
            service.transition(order_id, OrderStatus.CANCELLED, note="Payment window expired.")
            count += 1
        except InvalidTransition:
            # Paid or cancelled between the query and the lock
            logger.info("Order %s left pending before expiry, skipping", order_id)
        except TransactionFailure as e:
            logger.warning("Could not expire order %s, will retry next run: %s", order_id, e)

    if count:
        logger.info("Expired %d unpaid orders", count)
    return count
