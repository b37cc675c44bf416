from django.db.models import Count, Sum
from django.utils import timezone

from .models import Booking, Payment, Refund, Room
from .policy import ADMIN, CONCIERGE, GUEST, MANAGER, STAFF, role_of


def _counts_by_status(queryset, choices):
    counts = {value: 0 for value in choices.values}
    for row in queryset.values('status').annotate(count=Count('pk')):
        counts[row['status']] = row['count']
    return counts


def management_stats():
    rooms = _counts_by_status(Room.objects.all(), Room.Status)
    bookings = _counts_by_status(Booking.objects.all(), Booking.Status)
    total_rooms = sum(rooms.values())
    in_service = total_rooms - rooms[Room.Status.MAINTENANCE]
    occupancy = rooms[Room.Status.OCCUPIED] / in_service if in_service else 0.0

    collected = Payment.objects.filter(status=Payment.Status.COMPLETED).aggregate(
        total=Sum('amount_cents'))['total'] or 0
    refunded = Refund.objects.filter(status=Refund.Status.COMPLETED).aggregate(
        total=Sum('amount_cents'))['total'] or 0
    return {
        'rooms': rooms,
        'bookings': bookings,
        'total_rooms': total_rooms,
        'occupancy_rate': round(occupancy, 4),
        'revenue_cents': collected - refunded,
        'pending_refunds': Refund.objects.filter(status=Refund.Status.PENDING).count(),
    }


def front_desk_stats(today):
    return {
        'date': today.isoformat(),
        'arrivals': Booking.objects.filter(
            check_in=today, status=Booking.Status.CONFIRMED).count(),
        'departures': Booking.objects.filter(
            check_out=today, status=Booking.Status.CHECKED_IN).count(),
        'in_house': Booking.objects.filter(status=Booking.Status.CHECKED_IN).count(),
        'rooms_available': Room.objects.filter(status=Room.Status.AVAILABLE).count(),
        'rooms_in_maintenance': Room.objects.filter(status=Room.Status.MAINTENANCE).count(),
    }


def guest_stats(user, today):
    bookings = Booking.objects.filter(guest=user)
    spent = Payment.objects.filter(
        booking__guest=user, status=Payment.Status.COMPLETED
    ).aggregate(total=Sum('amount_cents'))['total'] or 0
    return {
        'upcoming': bookings.filter(
            status__in=[Booking.Status.PENDING, Booking.Status.CONFIRMED],
            check_in__gte=today,
        ).count(),
        'current': bookings.filter(status=Booking.Status.CHECKED_IN).count(),
        'past': bookings.filter(status=Booking.Status.COMPLETED).count(),
        'cancelled': bookings.filter(status=Booking.Status.CANCELLED).count(),
        'total_spent_cents': spent,
    }


def dashboard_stats(user, today=None):
    """Figures for the caller's dashboard, shaped by their role."""
    today = today or timezone.localdate()
    role = role_of(user)
    if role in (ADMIN, MANAGER):
        stats = management_stats()
    elif role in (STAFF, CONCIERGE):
        stats = front_desk_stats(today)
    elif role == GUEST:
        stats = guest_stats(user, today)
    else:
        stats = {}
    return {'role': role, **stats}
