from django.contrib import admin
from .models import StockMovementLog


@admin.register(StockMovementLog)
class StockMovementLogAdmin(admin.ModelAdmin):
    list_display = ("product", "movement_type", "quantity_change", "balance_after", "reference", "created_at")
    list_filter = ("movement_type",)
    search_fields = ("reference", "product__name")
    readonly_fields = [f.name for f in StockMovementLog._meta.fields]

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
