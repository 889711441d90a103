from django.core.exceptions import ValidationError
from django.db import DEFAULT_DB_ALIAS

from apps.utils.exceptions import NotFound
from .models import Product


def get_product(product_id, using=DEFAULT_DB_ALIAS, active_only=False) -> Product:
    qs = Product.objects.using(using)
    if active_only:
        qs = qs.filter(is_active=True)
    try:
        return qs.get(pk=product_id)
    except (Product.DoesNotExist, ValidationError, ValueError):
        raise NotFound(f"Product {product_id} not found.", product_id=str(product_id))


def get_current_stock(product_id, using=DEFAULT_DB_ALIAS) -> int:
    return get_product(product_id, using=using).stock


def get_current_price(product_id, using=DEFAULT_DB_ALIAS):
    return get_product(product_id, using=using).price
