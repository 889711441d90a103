from rest_framework import viewsets, filters
from django_filters.rest_framework import DjangoFilterBackend

from apps.accounts.permissions import IsAdminOrReadOnly
from .models import Product
from .serializers import ProductSerializer


class ProductViewSet(viewsets.ModelViewSet):
    """
    Public product list/detail (active only). Admins can create, edit and
    deactivate products.
    """
    serializer_class = ProductSerializer
    permission_classes = [IsAdminOrReadOnly]
    lookup_field = "slug"
    filter_backends = [DjangoFilterBackend, filters.SearchFilter]
    filterset_fields = ["category"]
    search_fields = ["name", "description"]

    def get_queryset(self):
        qs = Product.objects.all()
        user = self.request.user
        if not (user.is_authenticated and user.is_admin):
            qs = qs.filter(is_active=True)
        return qs

    def perform_destroy(self, instance):
        # Soft delete: order lines keep pointing at the product.
        instance.is_active = False
        instance.save(update_fields=["is_active", "updated_at"])
