from rest_framework import serializers

from .models import PaymentIntent


class CreatePaymentIntentSerializer(serializers.Serializer):
    order_id = serializers.UUIDField()


class PaymentIntentSerializer(serializers.ModelSerializer):
    class Meta:
        model = PaymentIntent
        fields = [
            "id", "order", "amount", "currency", "status",
            "gateway_ref", "redirect_url", "paid_at", "created_at",
        ]
        read_only_fields = fields


class WebhookEventSerializer(serializers.Serializer):
    EVENT_CAPTURED = "payment.captured"
    EVENT_FAILED = "payment.failed"

    intent_id = serializers.CharField(max_length=64)
    event = serializers.ChoiceField(
        choices=[EVENT_CAPTURED, EVENT_FAILED],
        default=EVENT_CAPTURED,
    )
