from django.contrib import admin

from .models import PaymentIntent


@admin.register(PaymentIntent)
class PaymentIntentAdmin(admin.ModelAdmin):
    list_display = ('gateway_ref', 'order', 'amount', 'currency', 'status', 'needs_review', 'created_at')
    list_filter = ('status', 'needs_review', 'created_at')
    search_fields = ('gateway_ref', 'order__id', 'user__email')
    readonly_fields = (
        'id', 'order', 'user', 'amount', 'currency', 'status', 'gateway_ref',
        'redirect_url', 'paid_at', 'created_at', 'updated_at',
    )
    # Reviewers may annotate flagged intents
    fields = readonly_fields + ('needs_review', 'reconciliation_note')

    def has_add_permission(self, request):
        return False
