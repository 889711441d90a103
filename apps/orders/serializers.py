from rest_framework import serializers

from .models import CartItem, Order, OrderItem, OrderTimeline
from .state_machine import allowed_next


class CartProductSerializer(serializers.Serializer):
    id = serializers.UUIDField()
    name = serializers.CharField()
    slug = serializers.SlugField()
    price = serializers.DecimalField(max_digits=10, decimal_places=2)
    stock = serializers.IntegerField()
    is_active = serializers.BooleanField()


class CartItemSerializer(serializers.ModelSerializer):
    product = CartProductSerializer(read_only=True)
    line_total = serializers.DecimalField(max_digits=12, decimal_places=2, read_only=True)

    class Meta:
        model = CartItem
        fields = ["id", "product", "quantity", "line_total", "created_at", "updated_at"]


class AddCartItemSerializer(serializers.Serializer):
    product_id = serializers.UUIDField()
    quantity = serializers.IntegerField(min_value=1, default=1)


class UpdateCartItemSerializer(serializers.Serializer):
    quantity = serializers.IntegerField(min_value=1)


class OrderItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderItem
        fields = ["product_id", "product_name_snapshot", "quantity", "unit_price", "subtotal"]


class OrderTimelineSerializer(serializers.ModelSerializer):
    class Meta:
        model = OrderTimeline
        fields = ["from_status", "status", "note", "created_by", "timestamp"]


class OrderSerializer(serializers.ModelSerializer):
    items = OrderItemSerializer(many=True, read_only=True)
    timeline = OrderTimelineSerializer(many=True, read_only=True)
    status_display = serializers.CharField(source="get_status_display", read_only=True)
    allowed_transitions = serializers.SerializerMethodField()

    class Meta:
        model = Order
        fields = [
            "id", "user", "status", "status_display", "total_price",
            "items", "timeline", "allowed_transitions",
            "created_at", "updated_at",
            "confirmed_at", "shipped_at", "delivered_at", "cancelled_at",
        ]
        read_only_fields = fields

    def get_allowed_transitions(self, obj):
        return sorted(allowed_next(obj.status))


class OrderStatusUpdateSerializer(serializers.Serializer):
    # Unknown values surface as InvalidTransition from the state machine
    status = serializers.CharField()
    note = serializers.CharField(required=False, allow_blank=True, default="")


class DateRangeSerializer(serializers.Serializer):
    date_from = serializers.DateField(required=False)
    date_to = serializers.DateField(required=False)

    def validate(self, attrs):
        start, end = attrs.get("date_from"), attrs.get("date_to")
        if start and end and start > end:
            raise serializers.ValidationError("date_from must not be after date_to.")
        return attrs
