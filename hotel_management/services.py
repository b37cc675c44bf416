"""Booking conflict resolution and the state machines around it.

All writes go through here. Every operation that reads the booking set of a
room and then writes to it locks the room row first (``select_for_update``)
inside one transaction, so two overlapping requests for the same room are
serialized and at most one of them is admitted.

Room status is derived from the booking lifecycle:

    AVAILABLE -> RESERVED     booking created
    AVAILABLE/RESERVED -> OCCUPIED   guest checked in
    OCCUPIED/RESERVED -> ...  booking cancelled or completed: recomputed
                              from the remaining active bookings
    any -> MAINTENANCE        explicit, and back only explicitly
"""
import logging
import uuid
from contextlib import contextmanager

from django.db import DatabaseError, OperationalError, transaction
from django.db.models import Avg, Count, Exists, F, OuterRef, Sum
from django.utils import timezone

from .exceptions import (
    ConcurrencyConflict,
    HotelError,
    InvalidInterval,
    InvalidTransition,
    NotFound,
    PaymentError,
    ReviewError,
    StoreError,
    Unavailable,
)
from .models import Booking, Payment, Refund, Review, Room, User

logger = logging.getLogger(__name__)

BOOKING_TRANSITIONS = {
    Booking.Status.PENDING: {Booking.Status.CONFIRMED, Booking.Status.CANCELLED},
    Booking.Status.CONFIRMED: {Booking.Status.CHECKED_IN, Booking.Status.CANCELLED},
    Booking.Status.CHECKED_IN: {Booking.Status.COMPLETED},
    Booking.Status.COMPLETED: set(),
    Booking.Status.CANCELLED: set(),
}

REFUND_TRANSACTION_PREFIXES = {
    Refund.Method.CARD: ("card_refund", "Refund issued to card"),
    Refund.Method.CASH: ("cash_refund", "Cash refund issued to guest"),
    Refund.Method.BANK_TRANSFER: ("bank_transfer", "Bank transfer refund initiated"),
    Refund.Method.CREDIT_TO_ACCOUNT: ("credit", "Credit applied to guest account"),
}

REVIEW_COMMENT_MIN_LENGTH = 10
REVIEW_COMMENT_MAX_LENGTH = 1000


# serialization_failure, deadlock_detected, lock_not_available
LOCK_FAILURE_SQLSTATES = {'40001', '40P01', '55P03'}
# MySQL lock wait timeout and deadlock
LOCK_FAILURE_ERRNOS = {1205, 1213}
LOCK_FAILURE_MESSAGES = ('database is locked', 'database table is locked')


def is_lock_failure(exc):
    """Whether an OperationalError means we lost a race for a lock.

    Anything else (lost connection, server shutdown, ...) is a storage failure.
    """
    cause = exc.__cause__
    sqlstate = getattr(cause, 'pgcode', None) or getattr(cause, 'sqlstate', None)
    if sqlstate in LOCK_FAILURE_SQLSTATES:
        return True
    if exc.args and exc.args[0] in LOCK_FAILURE_ERRNOS:
        return True
    message = str(exc).lower()
    return any(text in message for text in LOCK_FAILURE_MESSAGES)


@contextmanager
def _atomic(operation):
    """Run a block in a transaction, translating database failures."""
    try:
        with transaction.atomic():
            yield
    except OperationalError as exc:
        if not is_lock_failure(exc):
            logger.exception("%s lost the database", operation)
            raise StoreError() from exc
        logger.warning("%s hit a concurrent update: %s", operation, exc)
        raise ConcurrencyConflict() from exc
    except DatabaseError as exc:
        logger.exception("%s failed in the database", operation)
        raise StoreError() from exc


# Overlap and availability

def overlaps(a_start, a_end, b_start, b_end):
    """Half-open interval overlap: ``[a_start, a_end)`` meets ``[b_start, b_end)``.

    Touching intervals (one ends the day the other starts) do not overlap,
    which is what lets a room turn over on the same day.
    """
    return a_start < b_end and a_end > b_start


def validate_interval(check_in, check_out):
    if check_in is None or check_out is None or check_out <= check_in:
        raise InvalidInterval("Check-out date must be after check-in date")


def check_booking_window(config, check_in, today=None):
    """Apply the hotel's advance-booking rules to a requested check-in."""
    today = today or timezone.localdate()
    lead_days = (check_in - today).days
    if lead_days < 0:
        raise InvalidInterval("Check-in date cannot be in the past")
    if lead_days < config.min_lead_days:
        raise InvalidInterval(
            f"Bookings must be made at least {config.min_lead_days} day(s) in advance"
        )
    if lead_days > config.max_advance_booking_days:
        raise InvalidInterval(
            f"Bookings can be made at most {config.max_advance_booking_days} days in advance"
        )


def find_conflicts(room, check_in, check_out, exclude=None):
    """Active bookings of ``room`` overlapping ``[check_in, check_out)``."""
    conflicts = Booking.objects.filter(
        room=room,
        status__in=Booking.ACTIVE_STATUSES,
        check_in__lt=check_out,
        check_out__gt=check_in,
    )
    if exclude is not None:
        conflicts = conflicts.exclude(pk=exclude.pk)
    return conflicts


def is_room_available(room, check_in, check_out):
    validate_interval(check_in, check_out)
    if room.status == Room.Status.MAINTENANCE:
        return False
    return not find_conflicts(room, check_in, check_out).exists()


def available_rooms(check_in, check_out, max_price_cents=None, capacity=None):
    validate_interval(check_in, check_out)
    overlap = Exists(
        Booking.objects.filter(
            room=OuterRef('pk'),
            status__in=Booking.ACTIVE_STATUSES,
            check_in__lt=check_out,
            check_out__gt=check_in,
        )
    )
    rooms = (
        Room.objects.exclude(status=Room.Status.MAINTENANCE)
        .annotate(has_overlap=overlap)
        .filter(has_overlap=False)
    )
    if max_price_cents is not None:
        rooms = rooms.filter(price_cents__lte=max_price_cents)
    if capacity is not None:
        rooms = rooms.filter(capacity__gte=capacity)
    return rooms.order_by('number')


# Locking helpers, only valid inside a transaction

def _lock_room(room_id):
    try:
        return Room.objects.select_for_update().get(pk=room_id)
    except Room.DoesNotExist:
        raise NotFound("Room not found")


def _lock_booking_and_room(booking_id):
    room_id = Booking.objects.filter(pk=booking_id).values_list('room_id', flat=True).first()
    if room_id is None:
        raise NotFound("Booking not found")
    room = _lock_room(room_id)
    booking = Booking.objects.select_for_update().get(pk=booking_id)
    return booking, room


def _settle_room_status(room, today, release=False):
    """Derive the room status from its remaining active bookings.

    MAINTENANCE is only left through ``release``.
    """
    if room.status == Room.Status.MAINTENANCE and not release:
        return room
    active = Booking.objects.filter(room=room, status__in=Booking.ACTIVE_STATUSES)
    if active.filter(status=Booking.Status.CHECKED_IN).exists():
        room.status = Room.Status.OCCUPIED
    elif active.filter(check_in__lte=today, check_out__gt=today).exists():
        room.status = Room.Status.RESERVED
    else:
        room.status = Room.Status.AVAILABLE
    room.save(update_fields=['status'])
    return room


def _append_note(notes, line):
    return f"{notes}\n{line}" if notes else line


# Booking creation

def try_create_booking(room_id, check_in, check_out, guest_id, *, guest_count=None,
                       config=None, today=None):
    """Admit a new booking for ``room_id`` if its dates are free.

    Raises InvalidInterval, NotFound, Unavailable, ConcurrencyConflict or
    StoreError; on any of them nothing has been written. ``config`` is a
    ``HotelSettings`` record whose advance-booking window is applied when
    given.
    """
    validate_interval(check_in, check_out)
    if config is not None:
        check_booking_window(config, check_in, today)

    with _atomic("Booking creation"):
        room = _lock_room(room_id)
        if room.status == Room.Status.MAINTENANCE:
            raise Unavailable(f"Room {room.number} is under maintenance")

        guest = User.objects.filter(pk=guest_id).first()
        if guest is None:
            raise NotFound("Guest not found")

        if guest_count is not None and guest_count > room.capacity:
            raise Unavailable(f"Room capacity is {room.capacity} guests")

        if find_conflicts(room, check_in, check_out).exists():
            logger.info("Room %s unavailable for %s to %s", room.number, check_in, check_out)
            raise Unavailable()

        nights = (check_out - check_in).days
        booking = Booking.objects.create(
            room=room,
            guest=guest,
            check_in=check_in,
            check_out=check_out,
            guest_count=guest_count or 1,
            total_cents=room.price_cents * nights,
            status=Booking.Status.PENDING,
        )

        if room.status == Room.Status.AVAILABLE:
            room.status = Room.Status.RESERVED
            room.save(update_fields=['status'])

    logger.info(
        "Booking %s created for room %s (%s to %s, %s cents)",
        booking.pk, room.number, check_in, check_out, booking.total_cents,
    )
    return booking


def reschedule_booking(booking_id, room_id=None, check_in=None, check_out=None, today=None):
    """Move a PENDING or CONFIRMED booking to other dates and/or another room."""
    today = today or timezone.localdate()
    with _atomic("Booking reschedule"):
        current_room_id = (
            Booking.objects.filter(pk=booking_id).values_list('room_id', flat=True).first()
        )
        if current_room_id is None:
            raise NotFound("Booking not found")
        target_room_id = room_id if room_id is not None else current_room_id

        # Lock both rooms in a stable order.
        locked = {}
        for pk in sorted({current_room_id, target_room_id}):
            locked[pk] = _lock_room(pk)
        booking = Booking.objects.select_for_update().get(pk=booking_id)

        if booking.status not in (Booking.Status.PENDING, Booking.Status.CONFIRMED):
            raise InvalidTransition(f"Cannot change a {booking.status.lower()} booking")

        new_check_in = check_in or booking.check_in
        new_check_out = check_out or booking.check_out
        validate_interval(new_check_in, new_check_out)

        target_room = locked[target_room_id]
        if target_room.status == Room.Status.MAINTENANCE:
            raise Unavailable(f"Room {target_room.number} is under maintenance")
        if booking.guest_count > target_room.capacity:
            raise Unavailable(f"Room capacity is {target_room.capacity} guests")
        if find_conflicts(target_room, new_check_in, new_check_out, exclude=booking).exists():
            raise Unavailable()

        booking.room = target_room
        booking.check_in = new_check_in
        booking.check_out = new_check_out
        booking.total_cents = target_room.price_cents * (new_check_out - new_check_in).days
        booking.save()

        if target_room_id != current_room_id:
            _settle_room_status(locked[current_room_id], today)
            if target_room.status == Room.Status.AVAILABLE:
                target_room.status = Room.Status.RESERVED
                target_room.save(update_fields=['status'])

    logger.info("Booking %s moved to room %s (%s to %s)",
                booking.pk, target_room.number, new_check_in, new_check_out)
    return booking


# Booking lifecycle

def assert_transition(current, target):
    try:
        current = Booking.Status(current)
        target = Booking.Status(target)
    except ValueError:
        raise InvalidTransition(f"Unknown booking status transition {current} -> {target}")
    if target not in BOOKING_TRANSITIONS[current]:
        raise InvalidTransition(f"Invalid status transition from {current.value} to {target.value}")


def confirm_booking(booking_id):
    with _atomic("Booking confirmation"):
        booking, _ = _lock_booking_and_room(booking_id)
        assert_transition(booking.status, Booking.Status.CONFIRMED)
        booking.status = Booking.Status.CONFIRMED
        booking.save(update_fields=['status', 'updated_at'])
    logger.info("Booking %s confirmed", booking.pk)
    return booking


def check_in_booking(booking_id, today=None, notes=""):
    today = today or timezone.localdate()
    with _atomic("Check-in"):
        booking, room = _lock_booking_and_room(booking_id)
        assert_transition(booking.status, Booking.Status.CHECKED_IN)
        if booking.check_in > today:
            raise InvalidTransition("Cannot check in before the scheduled check-in date")
        if booking.check_out <= today:
            raise InvalidTransition("Cannot check in after the booked check-out date")
        if room.status == Room.Status.MAINTENANCE:
            raise Unavailable(f"Room {room.number} is under maintenance")
        paid = paid_cents(booking)
        if paid < booking.total_cents:
            raise PaymentError(
                f"Payment incomplete. Required: {booking.total_cents} cents, Paid: {paid} cents"
            )

        booking.status = Booking.Status.CHECKED_IN
        booking.notes = _append_note(booking.notes, f"Check-in: {notes}" if notes else "Guest checked in")
        booking.save(update_fields=['status', 'notes', 'updated_at'])

        room.status = Room.Status.OCCUPIED
        room.save(update_fields=['status'])
    logger.info("Guest checked in for booking %s, room %s", booking.pk, room.number)
    return booking


def check_out_booking(booking_id, actual_check_out=None, today=None):
    """Complete a stay. An early ``actual_check_out`` refunds the unused nights."""
    today = today or timezone.localdate()
    with _atomic("Check-out"):
        booking, room = _lock_booking_and_room(booking_id)
        assert_transition(booking.status, Booking.Status.COMPLETED)

        if actual_check_out is not None:
            if actual_check_out < booking.check_in:
                raise InvalidInterval("Check-out date cannot be before check-in date")
            if actual_check_out > booking.check_out:
                raise InvalidInterval("Check-out date cannot be after the booked check-out date")
            unused_nights = (booking.check_out - actual_check_out).days
            if unused_nights > 0:
                amount = min(
                    refundable_cents(booking),
                    booking.total_cents * unused_nights // booking.nights,
                )
                _open_refund(booking, amount, f"Early check-out: {unused_nights} unused night(s)")

        booking.actual_check_out = actual_check_out or min(today, booking.check_out)
        booking.status = Booking.Status.COMPLETED
        booking.save(update_fields=['status', 'actual_check_out', 'updated_at'])
        _settle_room_status(room, today)
    logger.info("Booking %s checked out, room %s now %s", booking.pk, room.number, room.status)
    return booking


def cancel_booking(booking_id, reason="", today=None):
    """Cancel a booking and open a refund for whatever was already paid."""
    today = today or timezone.localdate()
    with _atomic("Cancellation"):
        booking, room = _lock_booking_and_room(booking_id)
        assert_transition(booking.status, Booking.Status.CANCELLED)
        booking.status = Booking.Status.CANCELLED
        booking.notes = _append_note(booking.notes, f"Cancelled: {reason}" if reason else "Cancelled")
        booking.save(update_fields=['status', 'notes', 'updated_at'])
        _open_refund(booking, refundable_cents(booking), "Booking cancelled")
        _settle_room_status(room, today)
    logger.info("Booking %s cancelled, room %s now %s", booking.pk, room.number, room.status)
    return booking


def auto_checkout(today=None):
    """Complete every checked-in stay whose check-out date has passed."""
    today = today or timezone.localdate()
    overdue = Booking.objects.filter(
        status=Booking.Status.CHECKED_IN, check_out__lt=today
    ).values_list('pk', 'check_out')
    completed = []
    for booking_id, check_out in overdue:
        try:
            completed.append(check_out_booking(booking_id, actual_check_out=check_out, today=today))
        except HotelError as exc:
            logger.warning("Auto-checkout skipped booking %s: %s", booking_id, exc.message)
    logger.info("Auto-checkout completed %d booking(s)", len(completed))
    return completed


# Room maintenance

def set_room_maintenance(room_id):
    with _atomic("Room maintenance"):
        room = _lock_room(room_id)
        room.status = Room.Status.MAINTENANCE
        room.save(update_fields=['status'])
    logger.info("Room %s put under maintenance", room.number)
    return room


def release_room_from_maintenance(room_id, today=None):
    today = today or timezone.localdate()
    with _atomic("Room release"):
        room = _lock_room(room_id)
        if room.status != Room.Status.MAINTENANCE:
            raise InvalidTransition(f"Room {room.number} is not under maintenance")
        _settle_room_status(room, today, release=True)
    logger.info("Room %s released from maintenance as %s", room.number, room.status)
    return room


# Payments and refunds

def paid_cents(booking):
    total = booking.payments.filter(status=Payment.Status.COMPLETED).aggregate(
        total=Sum('amount_cents'))['total']
    return total or 0


def refunded_cents(booking):
    total = booking.refunds.aggregate(total=Sum('amount_cents'))['total']
    return total or 0


def refundable_cents(booking):
    return paid_cents(booking) - refunded_cents(booking)


def _open_refund(booking, amount_cents, notes):
    if amount_cents <= 0:
        return None
    payment = (
        booking.payments.filter(status=Payment.Status.COMPLETED).order_by('-created_at').first()
    )
    refund = Refund.objects.create(
        booking=booking,
        payment=payment,
        amount_cents=amount_cents,
        method=payment.method if payment else Refund.Method.CARD,
        status=Refund.Status.PENDING,
        transaction_id=f"refund_{uuid.uuid4().hex[:12]}",
        notes=notes,
    )
    logger.info("Refund %s of %s cents opened for booking %s", refund.pk, amount_cents, booking.pk)
    return refund


def record_payment(booking_id, amount_cents, method=Payment.Method.CARD):
    with _atomic("Payment"):
        booking = Booking.objects.select_for_update().filter(pk=booking_id).first()
        if booking is None:
            raise NotFound("Booking not found")
        if booking.status in (Booking.Status.CANCELLED, Booking.Status.COMPLETED):
            raise PaymentError(f"Cannot take payment for a {booking.status.lower()} booking")
        if amount_cents <= 0:
            raise PaymentError("Payment amount must be greater than 0")

        committed = booking.payments.exclude(status=Payment.Status.FAILED).aggregate(
            total=Sum('amount_cents'))['total'] or 0
        balance = booking.total_cents - committed
        if amount_cents > balance:
            raise PaymentError(f"Payment amount exceeds the outstanding balance of {balance} cents")

        payment = Payment.objects.create(
            booking=booking,
            amount_cents=amount_cents,
            method=method,
            status=Payment.Status.PENDING,
        )
    logger.info("Payment %s of %s cents recorded for booking %s", payment.pk, amount_cents, booking.pk)
    return payment


def process_payment(payment_id, success=True, transaction_id=None, config=None):
    """Settle a pending payment; a successful one may confirm a pending booking.

    Without ``config`` any completed payment confirms the booking. With a
    ``HotelSettings`` record the booking is confirmed once completed payments
    reach ``config.amount_to_confirm``: the deposit, or the full total when no
    deposit is required.
    """
    with _atomic("Payment processing"):
        booking_id = (
            Payment.objects.filter(pk=payment_id).values_list('booking_id', flat=True).first()
        )
        if booking_id is None:
            raise NotFound("Payment not found")
        booking, _ = _lock_booking_and_room(booking_id)
        payment = Payment.objects.select_for_update().get(pk=payment_id)
        if payment.status != Payment.Status.PENDING:
            raise PaymentError(f"Payment is already {payment.status.lower()}")
        if success and booking.status in (Booking.Status.CANCELLED, Booking.Status.COMPLETED):
            raise PaymentError(f"Cannot take payment for a {booking.status.lower()} booking")

        if success:
            payment.status = Payment.Status.COMPLETED
            payment.transaction_id = transaction_id or f"txn_{uuid.uuid4().hex[:16]}"
            payment.processed_at = timezone.now()
        else:
            payment.status = Payment.Status.FAILED
        payment.save()

        payment.booking = booking
        if success and booking.status == Booking.Status.PENDING:
            required = config.amount_to_confirm(booking.total_cents) if config is not None else 0
            if paid_cents(booking) >= required:
                payment.booking = confirm_booking(booking.pk)
    logger.info("Payment %s %s", payment.pk, payment.status.lower())
    return payment


def request_refund(booking_id, amount_cents, method=Refund.Method.CARD, payment_id=None, notes=""):
    with _atomic("Refund request"):
        booking = Booking.objects.select_for_update().filter(pk=booking_id).first()
        if booking is None:
            raise NotFound("Booking not found")
        payment = None
        if payment_id is not None:
            payment = booking.payments.filter(pk=payment_id).first()
            if payment is None:
                raise NotFound("Payment not found for this booking")
            if payment.status != Payment.Status.COMPLETED:
                raise PaymentError("Only completed payments can be refunded")

        if amount_cents <= 0:
            raise PaymentError("Refund amount must be greater than 0")
        available = refundable_cents(booking)
        if amount_cents > available:
            raise PaymentError(f"Refund amount exceeds available amount of {available} cents")

        refund = Refund.objects.create(
            booking=booking,
            payment=payment,
            amount_cents=amount_cents,
            method=method,
            status=Refund.Status.PENDING,
            transaction_id=f"refund_{uuid.uuid4().hex[:12]}",
            notes=notes,
        )
    logger.info("Refund %s of %s cents requested for booking %s", refund.pk, amount_cents, booking.pk)
    return refund


def process_refund(refund_id, method=None, notes=""):
    with _atomic("Refund processing"):
        refund = Refund.objects.select_for_update().filter(pk=refund_id).first()
        if refund is None:
            raise NotFound("Refund not found")
        if refund.status == Refund.Status.COMPLETED:
            raise PaymentError("Refund is already completed")

        refund.method = method or refund.method
        prefix, default_note = REFUND_TRANSACTION_PREFIXES[Refund.Method(refund.method)]
        refund.transaction_id = f"{prefix}_{uuid.uuid4().hex[:12]}"
        refund.notes = notes or default_note
        refund.status = Refund.Status.COMPLETED
        refund.processed_at = timezone.now()
        refund.save()
    logger.info("Refund %s completed via %s", refund.pk, refund.method)
    return refund


# Reviews

def create_review(room_id, author, rating, comment):
    if not 1 <= rating <= 5:
        raise ReviewError("Rating must be between 1 and 5")
    if not REVIEW_COMMENT_MIN_LENGTH <= len(comment) <= REVIEW_COMMENT_MAX_LENGTH:
        raise ReviewError(
            f"Comment must be between {REVIEW_COMMENT_MIN_LENGTH} and "
            f"{REVIEW_COMMENT_MAX_LENGTH} characters"
        )
    with _atomic("Review"):
        room = Room.objects.filter(pk=room_id).first()
        if room is None:
            raise NotFound("Room not found")
        if Review.objects.filter(room=room, author=author).exists():
            raise ReviewError("You have already reviewed this room")
        stayed = Booking.objects.filter(
            room=room, guest=author, status=Booking.Status.COMPLETED
        ).exists()
        if not stayed:
            raise ReviewError("You can only review rooms you have stayed in")
        review = Review.objects.create(
            room=room, author=author, rating=rating, comment=comment,
            status=Review.Status.PENDING,
        )
    return review


def moderate_review(review_id, approve):
    with _atomic("Review moderation"):
        review = Review.objects.select_for_update().filter(pk=review_id).first()
        if review is None:
            raise NotFound("Review not found")
        if review.status != Review.Status.PENDING:
            raise ReviewError("Review has already been moderated")
        review.status = Review.Status.APPROVED if approve else Review.Status.REJECTED
        review.save(update_fields=['status'])
    logger.info("Review %s %s", review.pk, review.status.lower())
    return review


def mark_review_helpful(review_id, user):
    review = Review.objects.filter(pk=review_id).first()
    if review is None:
        raise NotFound("Review not found")
    if review.author_id == user.pk:
        raise ReviewError("You cannot mark your own review as helpful")
    Review.objects.filter(pk=review.pk).update(helpful_count=F('helpful_count') + 1)
    review.refresh_from_db()
    return review


def review_stats(room_id=None):
    reviews = Review.objects.filter(status=Review.Status.APPROVED)
    if room_id is not None:
        reviews = reviews.filter(room_id=room_id)
    summary = reviews.aggregate(count=Count('pk'), average=Avg('rating'))
    distribution = {rating: 0 for rating in range(1, 6)}
    for row in reviews.values('rating').annotate(count=Count('pk')):
        distribution[row['rating']] = row['count']
    average = summary['average']
    return {
        'count': summary['count'],
        'average_rating': round(average, 2) if average is not None else None,
        'distribution': distribution,
    }
