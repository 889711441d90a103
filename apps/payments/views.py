import logging

from drf_spectacular.utils import extend_schema
from rest_framework import status
from rest_framework.permissions import AllowAny, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from .gateway import get_gateway
from .serializers import CreatePaymentIntentSerializer, PaymentIntentSerializer, WebhookEventSerializer
from .services import PaymentService

logger = logging.getLogger(__name__)


class CreatePaymentIntentView(APIView):
    permission_classes = [IsAuthenticated]

    @extend_schema(request=CreatePaymentIntentSerializer, responses={201: PaymentIntentSerializer})
    def post(self, request):
        serializer = CreatePaymentIntentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        intent, created = PaymentService().create_intent(
            request.user, serializer.validated_data["order_id"]
        )
        return Response(
            PaymentIntentSerializer(intent).data,
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )


class PaymentWebhookView(APIView):
    """
    Gateway callback. `intent_id` comes from the JSON body or the query
    string; `event` defaults to payment.captured.
    Signature is checked only when PAYMENT_WEBHOOK_SECRET is configured.
    """
    permission_classes = [AllowAny]  # Allow public access for webhook
    authentication_classes = []

    @extend_schema(request=WebhookEventSerializer)
    def post(self, request, *args, **kwargs):
        # Must use raw request body bytes for verification
        gateway = get_gateway()
        signature = request.headers.get("X-Payment-Signature", "")
        if not gateway.verify_webhook_signature(request.body, signature):
            logger.critical("Payment webhook: invalid signature rejected")
            return Response(
                {"error": "Invalid signature", "code": "invalid_signature"},
                status=status.HTTP_403_FORBIDDEN,
            )

        # A JSON body that is not an object carries no fields; fall back to the query string
        body = request.data if isinstance(request.data, dict) else {}
        data = {
            key: body.get(key) or request.query_params.get(key)
            for key in ("intent_id", "event")
        }
        serializer = WebhookEventSerializer(data={k: v for k, v in data.items() if v})
        serializer.is_valid(raise_exception=True)

        service = PaymentService(gateway=gateway)
        intent_id = serializer.validated_data["intent_id"]
        if serializer.validated_data["event"] == WebhookEventSerializer.EVENT_FAILED:
            outcome = service.on_payment_failed(intent_id)
        else:
            outcome = service.on_payment_confirmed(intent_id)

        return Response({"status": outcome.value, "intent_id": intent_id})
