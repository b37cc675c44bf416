import logging
from datetime import datetime

from django.http import JsonResponse
from django.db.models import Q
from rest_framework import mixins, status, viewsets
from rest_framework.decorators import action
from rest_framework.response import Response
from rest_framework.views import APIView

from . import services
from .dashboard import dashboard_stats
from .exceptions import ConcurrencyConflict, InvalidTransition, NotFound, Unavailable
from .models import Booking, HotelSettings, Payment, Refund, Review, Room, User
from .policy import MANAGEMENT, role_of, sees_everything
from .serializers import (
    BookingCreateSerializer,
    BookingSerializer,
    BookingUpdateSerializer,
    CancelSerializer,
    CheckInSerializer,
    CheckOutSerializer,
    HotelSettingsSerializer,
    PaymentCreateSerializer,
    PaymentProcessSerializer,
    PaymentSerializer,
    RefundCreateSerializer,
    RefundProcessSerializer,
    RefundSerializer,
    ReviewCreateSerializer,
    ReviewModerationSerializer,
    ReviewSerializer,
    RoomSerializer,
    UserSerializer,
)

logger = logging.getLogger(__name__)


def welcome(request):
    return JsonResponse({"message": "Welcome to the Hotel Management System"})

def health_check(request):
    return JsonResponse({"status": "ok"})

def parse_date(value):
    return datetime.strptime(value, '%Y-%m-%d').date()

class RoomViewSet(viewsets.ModelViewSet):
    queryset = Room.objects.all()
    serializer_class = RoomSerializer
    policy_resource = 'room'

    def list(self, request):
        """Search available rooms with filters"""
        check_in_str = request.query_params.get('check_in')
        check_out_str = request.query_params.get('check_out')
        max_price = request.query_params.get('max_price')
        capacity = request.query_params.get('capacity')

        if check_in_str and check_out_str:
            try:
                check_in = parse_date(check_in_str)
                check_out = parse_date(check_out_str)
            except ValueError:
                return Response({'error': 'Invalid date format. Use YYYY-MM-DD'},
                                status=status.HTTP_400_BAD_REQUEST)
            try:
                max_price_cents = int(max_price) * 100 if max_price else None
            except ValueError:
                return Response({'error': 'Invalid max_price. Use whole dollars'},
                                status=status.HTTP_400_BAD_REQUEST)
            try:
                capacity = int(capacity) if capacity else None
            except ValueError:
                return Response({'error': 'Invalid capacity. Use a whole number of guests'},
                                status=status.HTTP_400_BAD_REQUEST)
            rooms = services.available_rooms(
                check_in, check_out, max_price_cents=max_price_cents, capacity=capacity)
        else:
            # Return all rooms if no dates specified
            rooms = Room.objects.all().order_by('number')
            room_status = request.query_params.get('status')
            if room_status:
                rooms = rooms.filter(status=room_status)

        serializer = self.get_serializer(rooms, many=True)
        return Response(serializer.data)

    def perform_destroy(self, instance):
        if instance.bookings.filter(status__in=Booking.ACTIVE_STATUSES).exists():
            raise Unavailable(f"Room {instance.number} has active bookings")
        instance.delete()

    @action(detail=True, methods=['post'])
    def maintenance(self, request, pk=None):
        """Take a room out of service"""
        room = services.set_room_maintenance(self.get_object().pk)
        return Response(self.get_serializer(room).data)

    @action(detail=True, methods=['post'])
    def release(self, request, pk=None):
        """Put a room back into service after maintenance"""
        room = services.release_room_from_maintenance(self.get_object().pk)
        return Response(self.get_serializer(room).data)

class BookingViewSet(viewsets.ModelViewSet):
    queryset = Booking.objects.all()
    serializer_class = BookingSerializer
    policy_resource = 'booking'

    def get_queryset(self):
        bookings = Booking.objects.select_related('room', 'guest').order_by('-created_at')
        if not sees_everything(self.request.user):
            bookings = bookings.filter(guest=self.request.user)

        params = self.request.query_params
        if params.get('status') and params['status'] != 'all':
            bookings = bookings.filter(status=params['status'])
        if params.get('room'):
            bookings = bookings.filter(room_id=params['room'])
        if params.get('guest'):
            bookings = bookings.filter(guest_id=params['guest'])
        return bookings

    def create(self, request, *args, **kwargs):
        """Admit a booking if the room is free for the requested dates"""
        serializer = BookingCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        config = HotelSettings.load()
        if config.maintenance_mode:
            raise Unavailable(config.maintenance_message)

        guest_id = request.user.pk
        if sees_everything(request.user) and data.get('guest_id') is not None:
            guest_id = data['guest_id']

        options = dict(guest_count=data.get('guest_count'), config=config)
        try:
            booking = services.try_create_booking(
                data['room_id'], data['check_in'], data['check_out'], guest_id, **options)
        except ConcurrencyConflict:
            logger.info("Retrying booking of room %s after a concurrent update", data['room_id'])
            booking = services.try_create_booking(
                data['room_id'], data['check_in'], data['check_out'], guest_id, **options)

        return Response(self.get_serializer(booking).data, status=status.HTTP_201_CREATED)

    def update(self, request, pk=None, **kwargs):
        """Move a booking to other dates or another room"""
        booking = self.get_object()
        serializer = BookingUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = services.reschedule_booking(booking.pk, **serializer.validated_data)
        return Response(self.get_serializer(booking).data)

    def partial_update(self, request, pk=None, **kwargs):
        """Handle partial updates (PATCH requests)"""
        return self.update(request, pk, **kwargs)

    def perform_destroy(self, instance):
        if instance.is_active:
            raise InvalidTransition("Cancel the booking before deleting it")
        instance.delete()

    @action(detail=False, methods=['get'])
    def mine(self, request):
        """Get current user's bookings"""
        bookings = Booking.objects.filter(guest=request.user).order_by('-created_at')
        serializer = self.get_serializer(bookings, many=True)
        return Response(serializer.data)

    @action(detail=True, methods=['post'])
    def confirm(self, request, pk=None):
        booking = services.confirm_booking(self.get_object().pk)
        return Response(self.get_serializer(booking).data)

    @action(detail=True, methods=['post'])
    def check_in(self, request, pk=None):
        serializer = CheckInSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = services.check_in_booking(self.get_object().pk, notes=serializer.validated_data['notes'])
        return Response({'booking': self.get_serializer(booking).data,
                         'message': 'Check-in successful'})

    @action(detail=True, methods=['post'])
    def check_out(self, request, pk=None):
        serializer = CheckOutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = services.check_out_booking(
            self.get_object().pk,
            actual_check_out=serializer.validated_data.get('actual_check_out'),
        )
        return Response({'booking': self.get_serializer(booking).data,
                         'refunds': RefundSerializer(booking.refunds.all(), many=True).data,
                         'message': 'Check-out successful'})

    @action(detail=True, methods=['post'])
    def cancel(self, request, pk=None):
        serializer = CancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        booking = services.cancel_booking(self.get_object().pk, reason=serializer.validated_data['reason'])
        return Response(self.get_serializer(booking).data)

class PaymentViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    queryset = Payment.objects.all()
    serializer_class = PaymentSerializer
    policy_resource = 'payment'

    def get_queryset(self):
        payments = Payment.objects.select_related('booking').order_by('-created_at')
        if not sees_everything(self.request.user):
            payments = payments.filter(booking__guest=self.request.user)
        params = self.request.query_params
        if params.get('status'):
            payments = payments.filter(status=params['status'])
        if params.get('booking'):
            payments = payments.filter(booking_id=params['booking'])
        return payments

    def create(self, request):
        serializer = PaymentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        if not sees_everything(request.user) and not Booking.objects.filter(
                pk=data['booking_id'], guest=request.user).exists():
            raise NotFound("Booking not found")
        payment = services.record_payment(data['booking_id'], data['amount_cents'], data['method'])
        return Response(self.get_serializer(payment).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def process(self, request, pk=None):
        """Record the outcome of a payment with the provider"""
        serializer = PaymentProcessSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        payment = services.process_payment(
            self.get_object().pk,
            success=serializer.validated_data['success'],
            transaction_id=serializer.validated_data.get('transaction_id') or None,
            config=HotelSettings.load(),
        )
        return Response({
            'payment_status': payment.status,
            'booking_id': payment.booking_id,
            'booking_status': payment.booking.status,
            'amount': payment.amount_cents / 100.0
        })

class RefundViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, viewsets.GenericViewSet):
    queryset = Refund.objects.all()
    serializer_class = RefundSerializer
    policy_resource = 'refund'

    def get_queryset(self):
        refunds = Refund.objects.select_related('booking', 'payment').order_by('-created_at')
        params = self.request.query_params
        if params.get('status'):
            refunds = refunds.filter(status=params['status'])
        if params.get('booking'):
            refunds = refunds.filter(booking_id=params['booking'])
        return refunds

    def create(self, request):
        serializer = RefundCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        refund = services.request_refund(
            data['booking_id'], data['amount_cents'], method=data['method'],
            payment_id=data.get('payment_id'), notes=data['notes'],
        )
        return Response(self.get_serializer(refund).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def process(self, request, pk=None):
        serializer = RefundProcessSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        refund = services.process_refund(
            self.get_object().pk,
            method=serializer.validated_data.get('method'),
            notes=serializer.validated_data['notes'],
        )
        return Response(self.get_serializer(refund).data)

class ReviewViewSet(mixins.ListModelMixin, mixins.RetrieveModelMixin, mixins.DestroyModelMixin,
                    viewsets.GenericViewSet):
    queryset = Review.objects.all()
    serializer_class = ReviewSerializer
    policy_resource = 'review'

    def get_queryset(self):
        reviews = Review.objects.select_related('author', 'room').order_by('-created_at')
        user = self.request.user
        if role_of(user) not in MANAGEMENT:
            # Unmoderated reviews are only visible to their author.
            visible = Q(status=Review.Status.APPROVED)
            if user.is_authenticated:
                visible |= Q(author=user)
            reviews = reviews.filter(visible)

        params = self.request.query_params
        if params.get('room'):
            reviews = reviews.filter(room_id=params['room'])
        if params.get('rating'):
            reviews = reviews.filter(rating=params['rating'])
        if params.get('status') and params['status'] != 'all':
            reviews = reviews.filter(status=params['status'])
        return reviews

    def create(self, request):
        serializer = ReviewCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        review = services.create_review(data['room_id'], request.user, data['rating'], data['comment'])
        return Response(self.get_serializer(review).data, status=status.HTTP_201_CREATED)

    @action(detail=True, methods=['post'])
    def moderate(self, request, pk=None):
        serializer = ReviewModerationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        review = services.moderate_review(self.get_object().pk, serializer.validated_data['approve'])
        return Response(self.get_serializer(review).data)

    @action(detail=True, methods=['post'])
    def helpful(self, request, pk=None):
        review = services.mark_review_helpful(self.get_object().pk, request.user)
        return Response(self.get_serializer(review).data)

    @action(detail=False, methods=['get'])
    def stats(self, request):
        """Rating summary of approved reviews, optionally for one room"""
        room = request.query_params.get('room')
        return Response(services.review_stats(int(room) if room and room.isdigit() else None))

class UserViewSet(viewsets.ModelViewSet):
    queryset = User.objects.all().order_by('username')
    serializer_class = UserSerializer
    policy_resource = 'user'

    @action(detail=False, methods=['get'])
    def me(self, request):
        return Response(self.get_serializer(request.user).data)

class HotelSettingsView(APIView):
    policy_resource = 'settings'

    def get(self, request):
        return Response(HotelSettingsSerializer(HotelSettings.load()).data)

    def put(self, request):
        serializer = HotelSettingsSerializer(HotelSettings.load(), data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        serializer.save()
        logger.info("Hotel settings updated by %s", request.user)
        return Response({'message': 'Settings updated successfully', 'settings': serializer.data})

    def patch(self, request):
        return self.put(request)

class DashboardStatsView(APIView):
    policy_resource = 'dashboard'
    policy_action = 'stats'

    def get(self, request):
        return Response(dashboard_stats(request.user))
