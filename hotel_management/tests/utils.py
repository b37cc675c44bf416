from datetime import date

from hotel_management.models import Booking, Room, User


def make_user(username, role=User.Role.GUEST, **extra):
    return User.objects.create_user(
        username=username,
        email=f'{username}@example.com',
        password='Secret-pass-123',
        role=role,
        **extra
    )


def make_room(number, price_cents=10000, capacity=2, **extra):
    return Room.objects.create(
        number=number,
        room_type=extra.pop('room_type', 'Standard'),
        price_cents=price_cents,
        capacity=capacity,
        **extra
    )


def make_booking(room, guest, check_in, check_out, status=Booking.Status.CONFIRMED, **extra):
    return Booking.objects.create(
        room=room,
        guest=guest,
        check_in=check_in,
        check_out=check_out,
        total_cents=room.price_cents * (check_out - check_in).days,
        status=status,
        **extra
    )


def d(value):
    return date.fromisoformat(value)
