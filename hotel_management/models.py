import datetime

from django.contrib.auth.models import AbstractUser
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models


class User(AbstractUser):
    class Role(models.TextChoices):
        ADMIN = "ADMIN"
        MANAGER = "MANAGER"
        STAFF = "STAFF"
        CONCIERGE = "CONCIERGE"
        GUEST = "GUEST"
    role = models.CharField(max_length=10, choices=Role.choices, default=Role.GUEST)
    phone = models.CharField(max_length=50, blank=True)


class Room(models.Model):
    class Status(models.TextChoices):
        AVAILABLE = "AVAILABLE"
        OCCUPIED = "OCCUPIED"
        RESERVED = "RESERVED"
        MAINTENANCE = "MAINTENANCE"
    number = models.CharField(max_length=20, unique=True)
    room_type = models.CharField(max_length=50, blank=True)
    price_cents = models.PositiveIntegerField(validators=[MinValueValidator(0)])
    capacity = models.PositiveIntegerField(default=1)
    description = models.TextField(blank=True)
    status = models.CharField(max_length=12, choices=Status.choices, default=Status.AVAILABLE)

    def __str__(self):
        return f"Room {self.number}"


class Booking(models.Model):
    class Status(models.TextChoices):
        PENDING = "PENDING"
        CONFIRMED = "CONFIRMED"
        CHECKED_IN = "CHECKED_IN"
        CANCELLED = "CANCELLED"
        COMPLETED = "COMPLETED"

    # Bookings in these states hold their dates against new requests.
    ACTIVE_STATUSES = (Status.PENDING, Status.CONFIRMED, Status.CHECKED_IN)

    room = models.ForeignKey(Room, on_delete=models.CASCADE, related_name="bookings")
    guest = models.ForeignKey(User, on_delete=models.CASCADE, related_name="bookings")
    check_in = models.DateField()
    check_out = models.DateField()  # exclusive
    guest_count = models.PositiveIntegerField(default=1)
    total_cents = models.PositiveIntegerField()
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PENDING)
    notes = models.TextField(blank=True)
    actual_check_out = models.DateField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=models.Q(check_out__gt=models.F("check_in")),
                name="booking_check_out_after_check_in",
            ),
        ]
        indexes = [
            models.Index(fields=["room", "check_in", "check_out"], name="booking_room_dates_idx"),
        ]

    def __str__(self):
        return f"Booking {self.pk} for room {self.room_id}"

    @property
    def nights(self):
        return (self.check_out - self.check_in).days

    @property
    def is_active(self):
        return self.status in self.ACTIVE_STATUSES


class Payment(models.Model):
    class Status(models.TextChoices):
        PENDING = "PENDING"
        COMPLETED = "COMPLETED"
        FAILED = "FAILED"

    class Method(models.TextChoices):
        CARD = "CARD"
        CASH = "CASH"
        BANK_TRANSFER = "BANK_TRANSFER"
    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name="payments")
    amount_cents = models.PositiveIntegerField()
    method = models.CharField(max_length=20, choices=Method.choices, default=Method.CARD)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PENDING)
    transaction_id = models.CharField(max_length=100, blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)


class Refund(models.Model):
    class Status(models.TextChoices):
        PENDING = "PENDING"
        COMPLETED = "COMPLETED"

    class Method(models.TextChoices):
        CARD = "CARD"
        CASH = "CASH"
        BANK_TRANSFER = "BANK_TRANSFER"
        CREDIT_TO_ACCOUNT = "CREDIT_TO_ACCOUNT"
    booking = models.ForeignKey(Booking, on_delete=models.CASCADE, related_name="refunds")
    payment = models.ForeignKey(
        Payment, on_delete=models.SET_NULL, null=True, blank=True, related_name="refunds"
    )
    amount_cents = models.PositiveIntegerField()
    method = models.CharField(max_length=20, choices=Method.choices, default=Method.CARD)
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PENDING)
    transaction_id = models.CharField(max_length=100, blank=True)
    notes = models.TextField(blank=True)
    processed_at = models.DateTimeField(null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)


class Review(models.Model):
    class Status(models.TextChoices):
        PENDING = "PENDING"
        APPROVED = "APPROVED"
        REJECTED = "REJECTED"
    room = models.ForeignKey(Room, on_delete=models.CASCADE, related_name="reviews")
    author = models.ForeignKey(User, on_delete=models.CASCADE, related_name="reviews")
    rating = models.PositiveSmallIntegerField(
        validators=[MinValueValidator(1), MaxValueValidator(5)]
    )
    comment = models.TextField()
    status = models.CharField(max_length=10, choices=Status.choices, default=Status.PENDING)
    helpful_count = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["room", "author"], name="one_review_per_room_and_author"),
        ]


class HotelSettings(models.Model):
    """Hotel-wide configuration, stored as a single row.

    Use ``HotelSettings.load()`` to fetch it; the row is created with the
    defaults below on first access.
    """

    hotel_name = models.CharField(max_length=150, default="Hotel")
    address = models.CharField(max_length=255, blank=True)
    phone = models.CharField(max_length=50, blank=True)
    email = models.EmailField(blank=True)
    currency = models.CharField(max_length=3, default="USD")
    check_in_time = models.TimeField(default=datetime.time(15, 0))
    check_out_time = models.TimeField(default=datetime.time(11, 0))
    max_advance_booking_days = models.PositiveIntegerField(default=365)
    min_advance_booking_days = models.PositiveIntegerField(default=1)
    allow_same_day_booking = models.BooleanField(default=True)
    require_deposit = models.BooleanField(default=True)
    deposit_percentage = models.PositiveSmallIntegerField(
        default=20, validators=[MaxValueValidator(100)]
    )
    email_notifications = models.BooleanField(default=True)
    maintenance_mode = models.BooleanField(default=False)
    maintenance_message = models.CharField(
        max_length=255, default="System is under maintenance. Please try again later."
    )
    updated_at = models.DateTimeField(auto_now=True)

    SINGLETON_PK = 1

    @classmethod
    def load(cls):
        obj, _ = cls.objects.get_or_create(pk=cls.SINGLETON_PK)
        return obj

    def save(self, *args, **kwargs):
        self.pk = self.SINGLETON_PK
        super().save(*args, **kwargs)

    @property
    def min_lead_days(self):
        return 0 if self.allow_same_day_booking else self.min_advance_booking_days

    def amount_to_confirm(self, total_cents):
        """Completed payments a booking needs before it is confirmed."""
        if not self.require_deposit:
            return total_cents
        # Round the deposit up to the next cent.
        return -(-total_cents * self.deposit_percentage // 100)
