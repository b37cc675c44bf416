from rest_framework import serializers
from .models import Booking, HotelSettings, Payment, Refund, Review, Room, User
from . import services


class UserSerializer(serializers.ModelSerializer):
    role = serializers.ChoiceField(choices=User.Role.choices, required=False)
    password = serializers.CharField(write_only=True, required=False, min_length=8)

    class Meta:
        model = User
        fields = ['id', 'username', 'email', 'first_name', 'last_name', 'role', 'phone',
                  'is_active', 'password']

    def create(self, validated_data):
        password = validated_data.pop('password', None)
        user = User(**validated_data)
        if password:
            user.set_password(password)
        else:
            user.set_unusable_password()
        user.save()
        return user

    def update(self, instance, validated_data):
        password = validated_data.pop('password', None)
        for attr, value in validated_data.items():
            setattr(instance, attr, value)
        if password:
            instance.set_password(password)
        instance.save()
        return instance


class GuestSummarySerializer(serializers.ModelSerializer):

    class Meta:
        model = User
        fields = ['id', 'username', 'email', 'first_name', 'last_name']


class RoomSerializer(serializers.ModelSerializer):
    status = serializers.ChoiceField(choices=Room.Status.choices, read_only=True)

    class Meta:
        model = Room
        fields = '__all__'

    def to_representation(self, instance):
        data = super().to_representation(instance)
        data['price_dollar'] = instance.price_cents / 100.0
        return data


class BookingSerializer(serializers.ModelSerializer):
    room = RoomSerializer(read_only=True)
    guest = GuestSummarySerializer(read_only=True)
    status = serializers.ChoiceField(choices=Booking.Status.choices, read_only=True)

    class Meta:
        model = Booking
        fields = '__all__'
        read_only_fields = ['check_in', 'check_out', 'guest_count', 'total_cents', 'notes',
                            'actual_check_out', 'created_at', 'updated_at']

    def to_representation(self, instance):
        data = super().to_representation(instance)
        data['nights'] = instance.nights
        data['total_dollar'] = instance.total_cents / 100.0
        data['paid_cents'] = services.paid_cents(instance)
        return data


class BookingCreateSerializer(serializers.Serializer):
    room_id = serializers.IntegerField()
    check_in = serializers.DateField()
    check_out = serializers.DateField()
    # Front-desk roles book on behalf of a guest; guests always book for themselves.
    guest_id = serializers.IntegerField(required=False)
    guest_count = serializers.IntegerField(required=False, min_value=1)


class BookingUpdateSerializer(serializers.Serializer):
    room_id = serializers.IntegerField(required=False)
    check_in = serializers.DateField(required=False)
    check_out = serializers.DateField(required=False)

    def validate(self, data):
        if not data:
            raise serializers.ValidationError("Provide room_id, check_in or check_out")
        return data


class CheckInSerializer(serializers.Serializer):
    notes = serializers.CharField(allow_blank=True, required=False, default="")


class CheckOutSerializer(serializers.Serializer):
    actual_check_out = serializers.DateField(required=False)


class CancelSerializer(serializers.Serializer):
    reason = serializers.CharField(allow_blank=True, required=False, default="")


class PaymentSerializer(serializers.ModelSerializer):
    method = serializers.ChoiceField(choices=Payment.Method.choices)
    status = serializers.ChoiceField(choices=Payment.Status.choices, read_only=True)

    class Meta:
        model = Payment
        fields = '__all__'

    def to_representation(self, instance):
        data = super().to_representation(instance)
        data['amount_dollar'] = instance.amount_cents / 100.0
        return data


class PaymentCreateSerializer(serializers.Serializer):
    booking_id = serializers.IntegerField()
    amount_cents = serializers.IntegerField()
    method = serializers.ChoiceField(choices=Payment.Method.choices, default=Payment.Method.CARD)


class PaymentProcessSerializer(serializers.Serializer):
    success = serializers.BooleanField(default=True)
    transaction_id = serializers.CharField(required=False, allow_blank=True, max_length=100)


class RefundSerializer(serializers.ModelSerializer):
    method = serializers.ChoiceField(choices=Refund.Method.choices)
    status = serializers.ChoiceField(choices=Refund.Status.choices, read_only=True)

    class Meta:
        model = Refund
        fields = '__all__'

    def to_representation(self, instance):
        data = super().to_representation(instance)
        data['amount_dollar'] = instance.amount_cents / 100.0
        return data


class RefundCreateSerializer(serializers.Serializer):
    booking_id = serializers.IntegerField()
    amount_cents = serializers.IntegerField()
    method = serializers.ChoiceField(choices=Refund.Method.choices, default=Refund.Method.CARD)
    payment_id = serializers.IntegerField(required=False)
    notes = serializers.CharField(allow_blank=True, required=False, default="")


class RefundProcessSerializer(serializers.Serializer):
    method = serializers.ChoiceField(choices=Refund.Method.choices, required=False)
    notes = serializers.CharField(allow_blank=True, required=False, default="")


class ReviewSerializer(serializers.ModelSerializer):
    author = GuestSummarySerializer(read_only=True)
    status = serializers.ChoiceField(choices=Review.Status.choices, read_only=True)

    class Meta:
        model = Review
        fields = '__all__'
        read_only_fields = ['room', 'rating', 'comment', 'helpful_count', 'created_at']


class ReviewCreateSerializer(serializers.Serializer):
    room_id = serializers.IntegerField()
    rating = serializers.IntegerField()
    comment = serializers.CharField()


class ReviewModerationSerializer(serializers.Serializer):
    approve = serializers.BooleanField()


class HotelSettingsSerializer(serializers.ModelSerializer):

    class Meta:
        model = HotelSettings
        exclude = ['id']
        read_only_fields = ['updated_at']
