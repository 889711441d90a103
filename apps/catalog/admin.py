# apps/catalog/admin.py
from django.contrib import admin
from .models import Product


@admin.register(Product)
class ProductAdmin(admin.ModelAdmin):
    list_display = ("name", "slug", "category", "price", "stock", "is_active")
    search_fields = ("name", "slug")
    list_filter = ("category", "is_active")
    list_editable = ("price", "is_active")
    readonly_fields = ("stock", "created_at", "updated_at")
    prepopulated_fields = {"slug": ("name",)}
