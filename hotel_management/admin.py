from django.contrib import admin
from django.contrib.auth.admin import UserAdmin

from .models import Booking, HotelSettings, Payment, Refund, Review, Room, User


@admin.register(User)
class HotelUserAdmin(UserAdmin):
    list_display = ("username", "email", "role", "is_active")
    list_filter = ("role", "is_active")
    fieldsets = UserAdmin.fieldsets + (("Hotel", {"fields": ("role", "phone")}),)


@admin.register(Room)
class RoomAdmin(admin.ModelAdmin):
    list_display = ("number", "room_type", "capacity", "price_cents", "status")
    list_filter = ("status", "room_type")
    # Status follows the booking lifecycle; use the maintenance endpoints to change it.
    readonly_fields = ("status",)


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ("id", "room", "guest", "check_in", "check_out", "status", "total_cents")
    list_filter = ("status",)
    search_fields = ("guest__username", "guest__email", "room__number")
    readonly_fields = ("status", "total_cents", "created_at", "updated_at")


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ("id", "booking", "amount_cents", "method", "status", "created_at")
    list_filter = ("status", "method")


@admin.register(Refund)
class RefundAdmin(admin.ModelAdmin):
    list_display = ("id", "booking", "amount_cents", "method", "status", "created_at")
    list_filter = ("status", "method")


@admin.register(Review)
class ReviewAdmin(admin.ModelAdmin):
    list_display = ("id", "room", "author", "rating", "status", "helpful_count")
    list_filter = ("status", "rating")


admin.site.register(HotelSettings)
