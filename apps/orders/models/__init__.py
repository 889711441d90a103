"""
Top-level models import shim for the Orders app, so that

    from apps.orders.models import Order

works while the actual models live in separate modules.
"""

from .order import *          # Order, OrderStatus, STATUS_TIMESTAMP_FIELDS
from .item import *           # OrderItem
from .timeline import *       # OrderTimeline
from .cart import *           # CartItem
