from decimal import Decimal

from django.core.exceptions import ValidationError
from django.db import DEFAULT_DB_ALIAS
from django.db.models import Count, Sum

from apps.utils.exceptions import NotFound
from .models import Order, OrderStatus


def orders_for_user(user, using=DEFAULT_DB_ALIAS):
    return (
        Order.objects.using(using)
        .filter(user=user)
        .prefetch_related("items", "timeline")
        .order_by("-created_at")
    )


def all_orders(using=DEFAULT_DB_ALIAS):
    return (
        Order.objects.using(using)
        .select_related("user")
        .prefetch_related("items", "timeline")
        .order_by("-created_at")
    )


def get_order(order_id, user=None, using=DEFAULT_DB_ALIAS) -> Order:
    """Fetch one order; when `user` is given the order must belong to them."""
    qs = all_orders(using)
    if user is not None:
        qs = qs.filter(user=user)
    try:
        return qs.get(pk=order_id)
    except (Order.DoesNotExist, ValidationError, ValueError):
        raise NotFound(f"Order {order_id} not found.", order_id=str(order_id))


def order_stats(date_from=None, date_to=None, using=DEFAULT_DB_ALIAS) -> dict:
    """
    Order counts per status plus revenue over an optional creation-date
    range (both ends inclusive). Cancelled orders do not count as revenue.
    """
    qs = Order.objects.using(using).all()
    if date_from:
        qs = qs.filter(created_at__date__gte=date_from)
    if date_to:
        qs = qs.filter(created_at__date__lte=date_to)

    counts = {status: 0 for status in OrderStatus.values}
    for row in qs.values("status").annotate(n=Count("id")).order_by():
        counts[row["status"]] = row["n"]

    revenue = (
        qs.exclude(status=OrderStatus.CANCELLED)
        .aggregate(total=Sum("total_price"))["total"]
    )

    return {
        "total_orders": sum(counts.values()),
        "by_status": counts,
        "revenue": revenue or Decimal("0.00"),
        "date_from": date_from,
        "date_to": date_to,
    }
