# apps/catalog/serializers.py
from rest_framework import serializers
from .models import Product


class ProductSerializer(serializers.ModelSerializer):
    class Meta:
        model = Product
        fields = [
            "id",
            "name",
            "slug",
            "description",
            "category",
            "image_url",
            "price",
            "stock",
            "is_active",
            "created_at",
            "updated_at",
        ]
        read_only_fields = ["id", "slug", "created_at", "updated_at"]

    def validate_stock(self, value):
        # Initial stock only; afterwards stock moves through inventory operations.
        if self.instance is not None and value != self.instance.stock:
            raise serializers.ValidationError("Stock cannot be edited directly.")
        return value
