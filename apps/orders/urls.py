from django.urls import path, include
from rest_framework.routers import SimpleRouter

from .views import AdminOrderViewSet, CartViewSet, CheckoutView, OrderViewSet

router = SimpleRouter()
router.register(r'cart', CartViewSet, basename='cart')
router.register(r'admin', AdminOrderViewSet, basename='admin-orders')
router.register(r'', OrderViewSet, basename='orders')

urlpatterns = [
    path('checkout/', CheckoutView.as_view(), name='checkout'),
    path('', include(router.urls)),
]
