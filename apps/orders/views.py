
from django.conf import settings
from django.core.cache import cache
from drf_spectacular.utils import extend_schema
from rest_framework import status, viewsets
from rest_framework.decorators import action
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView
from django_filters.rest_framework import DjangoFilterBackend

from apps.accounts.permissions import IsAdminRole
from .filters import OrderFilter
from .selectors import all_orders, get_order, order_stats, orders_for_user
from .serializers import (
    AddCartItemSerializer,
    CartItemSerializer,
    DateRangeSerializer,
    OrderSerializer,
    OrderStatusUpdateSerializer,
    UpdateCartItemSerializer,
)
from .services import CartService, CheckoutService, OrderStatusService


class CartViewSet(viewsets.ViewSet):
    """
    GET    /cart/           -> lines + total
    POST   /cart/add/       -> add or merge a product
    PATCH  /cart/{id}/      -> set quantity
    DELETE /cart/{id}/      -> remove line
    DELETE /cart/clear/     -> empty the cart
    """
    permission_classes = [IsAuthenticated]

    def get_service(self):
        return CartService()

    def _cart_payload(self, user):
        service = self.get_service()
        lines = list(service.list_lines(user))
        return {
            "items": CartItemSerializer(lines, many=True).data,
            "total": str(service.total(lines)),
        }

    def list(self, request):
        return Response(self._cart_payload(request.user))

    @extend_schema(request=AddCartItemSerializer)
    @action(detail=False, methods=["post"])
    def add(self, request):
        serializer = AddCartItemSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        _, created = self.get_service().add_item(
            request.user,
            serializer.validated_data["product_id"],
            serializer.validated_data["quantity"],
        )
        return Response(
            self._cart_payload(request.user),
            status=status.HTTP_201_CREATED if created else status.HTTP_200_OK,
        )

    @extend_schema(request=UpdateCartItemSerializer)
    def partial_update(self, request, pk=None):
        serializer = UpdateCartItemSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        self.get_service().update_quantity(request.user, pk, serializer.validated_data["quantity"])
        return Response(self._cart_payload(request.user))

    def destroy(self, request, pk=None):
        self.get_service().remove_item(request.user, pk)
        return Response(status=status.HTTP_204_NO_CONTENT)

    @action(detail=False, methods=["delete"])
    def clear(self, request):
        self.get_service().clear(request.user)
        return Response(status=status.HTTP_204_NO_CONTENT)

class CheckoutView(APIView):
    """
    POST /checkout/

    Optional `X-Idempotency-Key` header: a repeated key from the same user
    within CHECKOUT_IDEMPOTENCY_TTL seconds gets 409 instead of a second order.
    """
    permission_classes = [IsAuthenticated]

    def get_service(self):
        return CheckoutService()

    @extend_schema(request=None, responses={201: OrderSerializer})
    def post(self, request):
        idempotency_key = request.headers.get("X-Idempotency-Key")
        cache_key = None
        if idempotency_key:
            cache_key = f"checkout_idempotency_{request.user.pk}_{idempotency_key}"
            # add() is atomic: only the first request with this key gets through
            if not cache.add(cache_key, "processing", timeout=settings.CHECKOUT_IDEMPOTENCY_TTL):
                return Response(
                    {"error": "Duplicate request detected", "code": "duplicate_request"},
                    status=status.HTTP_409_CONFLICT,
                )

        try:
            order = self.get_service().checkout(request.user)
        except Exception:
            # Failed attempts release the key so the client can retry
            if cache_key:
                cache.delete(cache_key)
            raise

        order = get_order(order.pk)
        return Response(
            {
                "order_id": str(order.pk),
                "total": str(order.total_price),
                "order": OrderSerializer(order).data,
            },
            status=status.HTTP_201_CREATED,
        )

class OrderViewSet(viewsets.ReadOnlyModelViewSet):
    """The caller's own orders."""
    serializer_class = OrderSerializer
    permission_classes = [IsAuthenticated]
    filter_backends = [DjangoFilterBackend]
    filterset_class = OrderFilter

    def get_queryset(self):
        return orders_for_user(self.request.user)

class AdminOrderViewSet(viewsets.ReadOnlyModelViewSet):
    """
    Back-office order management: list/filter every order, move orders
    through the status state machine, and revenue statistics.
    """
    serializer_class = OrderSerializer
    permission_classes = [IsAdminRole]
    filter_backends = [DjangoFilterBackend]
    filterset_class = OrderFilter

    def get_queryset(self):
        return all_orders()

    def get_status_service(self):
        return OrderStatusService()

    @extend_schema(request=OrderStatusUpdateSerializer, responses={200: OrderSerializer})
    @action(detail=True, methods=["post", "patch"], url_path="status")
    def update_status(self, request, pk=None):
        serializer = OrderStatusUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        self.get_status_service().transition(
            pk,
            serializer.validated_data["status"],
            actor=request.user,
            note=serializer.validated_data["note"],
        )
        return Response(OrderSerializer(get_order(pk)).data)

    @extend_schema(parameters=[DateRangeSerializer])
    @action(detail=False, methods=["get"])
    def stats(self, request):
        params = DateRangeSerializer(data=request.query_params)
        params.is_valid(raise_exception=True)
        stats = order_stats(**params.validated_data)
        stats["revenue"] = str(stats["revenue"])
        return Response(stats)
