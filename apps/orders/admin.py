from django.contrib import admin

from .models import CartItem, Order, OrderItem, OrderTimeline


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    readonly_fields = ('product', 'product_name_snapshot', 'unit_price', 'quantity', 'subtotal')

    def has_add_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


class OrderTimelineInline(admin.TabularInline):
    model = OrderTimeline
    extra = 0
    readonly_fields = ('timestamp', 'from_status', 'status', 'note', 'created_by')

    def has_add_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    """
    Read-only in the admin: status changes must go through the
    status endpoint so stock is restored on cancellation.
    """
    list_display = ('id', 'user', 'status', 'total_price', 'created_at')
    list_filter = ('status', 'created_at')
    search_fields = ('id', 'user__email')
    date_hierarchy = 'created_at'
    inlines = [OrderItemInline, OrderTimelineInline]

    readonly_fields = (
        'id', 'user', 'status', 'total_price',
        'created_at', 'updated_at',
        'confirmed_at', 'shipped_at', 'delivered_at', 'cancelled_at',
    )

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(CartItem)
class CartItemAdmin(admin.ModelAdmin):
    list_display = ('user', 'product', 'quantity', 'updated_at')
    search_fields = ('user__email', 'product__name')
    raw_id_fields = ('user', 'product')
