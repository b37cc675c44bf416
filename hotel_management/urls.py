from django.urls import path
from rest_framework.routers import DefaultRouter
from hotel_management.views import (
    BookingViewSet,
    DashboardStatsView,
    HotelSettingsView,
    PaymentViewSet,
    RefundViewSet,
    ReviewViewSet,
    RoomViewSet,
    UserViewSet,
)

router = DefaultRouter()
router.register(r'rooms', RoomViewSet)
router.register(r'bookings', BookingViewSet)
router.register(r'payments', PaymentViewSet)
router.register(r'refunds', RefundViewSet)
router.register(r'reviews', ReviewViewSet)
router.register(r'users', UserViewSet)

urlpatterns = [
    path('settings/', HotelSettingsView.as_view(), name='hotel-settings'),
    path('dashboard/stats/', DashboardStatsView.as_view(), name='dashboard-stats'),
] + router.urls
