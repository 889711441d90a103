from django.urls import path
from .views import CreatePaymentIntentView, PaymentWebhookView

urlpatterns = [
    path('intents/', CreatePaymentIntentView.as_view(), name='payment-intent-create'),
    path('webhook/', PaymentWebhookView.as_view(), name='payment-webhook'),
]
