from datetime import timedelta

from django.utils import timezone
from rest_framework import status
from rest_framework.test import APITestCase

from hotel_management.models import Booking, HotelSettings, Payment, Refund, Room, User

from .utils import make_booking, make_room, make_user


class BookingApiTestCase(APITestCase):
    """Booking creation and conflict responses over HTTP"""

    def setUp(self):
        self.room = make_room("201", price_cents=15000, capacity=2)
        self.guest = make_user("guest")
        self.staff = make_user("staff", role=User.Role.STAFF)
        self.check_in = timezone.localdate() + timedelta(days=1)
        self.check_out = timezone.localdate() + timedelta(days=3)
        self.client.force_authenticate(self.guest)

    def book(self, **overrides):
        data = {
            'room_id': self.room.id,
            'check_in': self.check_in.isoformat(),
            'check_out': self.check_out.isoformat(),
        }
        data.update(overrides)
        return self.client.post('/api/bookings/', data, format='json')

    def test_create_booking(self):
        response = self.book()

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], Booking.Status.PENDING)
        self.assertEqual(response.data['total_cents'], 30000)
        self.assertEqual(response.data['nights'], 2)
        self.assertEqual(response.data['guest']['id'], self.guest.id)
        self.assertEqual(response.data['room']['status'], Room.Status.RESERVED)

    def test_conflicting_booking_is_rejected(self):
        self.assertEqual(self.book().status_code, status.HTTP_201_CREATED)

        response = self.book(check_in=(self.check_in + timedelta(days=1)).isoformat(),
                             check_out=(self.check_out + timedelta(days=1)).isoformat())

        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data, {
            'error': 'Room unavailable for requested dates', 'code': 'unavailable'})
        self.assertEqual(Booking.objects.count(), 1)

    def test_back_to_back_booking_is_accepted(self):
        self.book()
        response = self.book(check_in=self.check_out.isoformat(),
                             check_out=(self.check_out + timedelta(days=2)).isoformat())
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_inverted_dates(self):
        response = self.book(check_in=self.check_out.isoformat(), check_out=self.check_in.isoformat())

        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'invalid_interval')
        self.assertFalse(Booking.objects.exists())

    def test_unknown_room(self):
        response = self.book(room_id=999)
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['code'], 'not_found')

    def test_malformed_request(self):
        response = self.book(check_in='tomorrow')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('check_in', response.data)

    def test_guest_cannot_book_for_someone_else(self):
        other = make_user("other")
        response = self.book(guest_id=other.id)
        self.assertEqual(response.data['guest']['id'], self.guest.id)

    def test_front_desk_books_for_guest(self):
        self.client.force_authenticate(self.staff)
        response = self.book(guest_id=self.guest.id)
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['guest']['id'], self.guest.id)

    def test_maintenance_mode_blocks_bookings(self):
        config = HotelSettings.load()
        config.maintenance_mode = True
        config.save()

        response = self.book()
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], config.maintenance_message)

    def test_anonymous_cannot_book(self):
        self.client.force_authenticate(None)
        response = self.book()
        self.assertIn(response.status_code,
                      (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))

    def test_guest_sees_only_own_bookings(self):
        mine = make_booking(self.room, self.guest, self.check_in, self.check_out)
        theirs = make_booking(make_room("202"), make_user("other"), self.check_in, self.check_out)

        response = self.client.get('/api/bookings/')
        self.assertEqual([b['id'] for b in response.data], [mine.id])

        response = self.client.get(f'/api/bookings/{theirs.id}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

        response = self.client.get('/api/bookings/mine/')
        self.assertEqual([b['id'] for b in response.data], [mine.id])

    def test_staff_sees_all_bookings(self):
        make_booking(self.room, self.guest, self.check_in, self.check_out)
        make_booking(make_room("202"), make_user("other"), self.check_in, self.check_out)
        self.client.force_authenticate(self.staff)

        response = self.client.get('/api/bookings/')
        self.assertEqual(len(response.data), 2)

    def test_reschedule_booking(self):
        manager = make_user("manager", role=User.Role.MANAGER)
        booking = make_booking(self.room, self.guest, self.check_in, self.check_out,
                               status=Booking.Status.PENDING)
        suite = make_room("301", price_cents=20000)
        self.client.force_authenticate(manager)

        response = self.client.patch(f'/api/bookings/{booking.id}/', {'room_id': suite.id},
                                     format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['room']['id'], suite.id)
        self.assertEqual(response.data['total_cents'], 40000)

    def test_active_booking_cannot_be_deleted(self):
        admin = make_user("admin", role=User.Role.ADMIN)
        booking = make_booking(self.room, self.guest, self.check_in, self.check_out)
        self.client.force_authenticate(admin)

        response = self.client.delete(f'/api/bookings/{booking.id}/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'invalid_transition')


class FrontDeskApiTestCase(APITestCase):
    """Check-in, check-out and cancellation endpoints"""

    def setUp(self):
        self.room = make_room("101", price_cents=10000)
        self.guest = make_user("guest")
        self.staff = make_user("staff", role=User.Role.STAFF)
        self.today = timezone.localdate()
        self.booking = make_booking(self.room, self.guest, self.today, self.today + timedelta(days=2))

    def test_guest_cannot_check_in(self):
        self.client.force_authenticate(self.guest)
        response = self.client.post(f'/api/bookings/{self.booking.id}/check_in/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_check_in_and_out(self):
        self.client.force_authenticate(self.staff)
        Payment.objects.create(
            booking=self.booking, amount_cents=self.booking.total_cents,
            method=Payment.Method.CARD, status=Payment.Status.COMPLETED,
        )

        response = self.client.post(f'/api/bookings/{self.booking.id}/check_in/',
                                    {'notes': 'Early arrival'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['booking']['status'], Booking.Status.CHECKED_IN)
        self.room.refresh_from_db()
        self.assertEqual(self.room.status, Room.Status.OCCUPIED)

        response = self.client.post(f'/api/bookings/{self.booking.id}/check_out/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['booking']['status'], Booking.Status.COMPLETED)
        self.assertEqual(response.data['refunds'], [])
        self.room.refresh_from_db()
        self.assertEqual(self.room.status, Room.Status.AVAILABLE)

    def test_check_in_requires_full_payment(self):
        self.client.force_authenticate(self.staff)
        response = self.client.post(f'/api/bookings/{self.booking.id}/check_in/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'payment_error')
        self.assertIn('Payment incomplete', response.data['error'])
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.Status.CONFIRMED)

    def test_check_out_before_check_in_is_invalid_transition(self):
        self.client.force_authenticate(self.staff)
        response = self.client.post(f'/api/bookings/{self.booking.id}/check_out/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'invalid_transition')

    def test_guest_cancels_own_booking(self):
        self.client.force_authenticate(self.guest)
        response = self.client.post(f'/api/bookings/{self.booking.id}/cancel/',
                                    {'reason': 'Flight cancelled'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], Booking.Status.CANCELLED)

        response = self.client.post(f'/api/bookings/{self.booking.id}/confirm/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(self.staff)
        response = self.client.post(f'/api/bookings/{self.booking.id}/confirm/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'invalid_transition')


class PaymentApiTestCase(APITestCase):
    """Payment processing and booking status changes"""

    def setUp(self):
        self.room = make_room("401", room_type="Presidential", price_cents=50000, capacity=6)
        self.guest = make_user("guest")
        self.staff = make_user("staff", role=User.Role.STAFF)
        self.booking = make_booking(
            self.room, self.guest,
            timezone.localdate() + timedelta(days=1), timezone.localdate() + timedelta(days=3),
            status=Booking.Status.PENDING,
        )
        self.payment = Payment.objects.create(booking=self.booking, amount_cents=100000)

    def test_guest_pays_own_booking(self):
        self.client.force_authenticate(self.guest)
        self.payment.delete()
        response = self.client.post('/api/payments/', {
            'booking_id': self.booking.id, 'amount_cents': 100000, 'method': 'CASH',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['status'], Payment.Status.PENDING)

    def test_guest_cannot_pay_other_booking(self):
        self.client.force_authenticate(make_user("other"))
        response = self.client.post('/api/payments/', {
            'booking_id': self.booking.id, 'amount_cents': 100,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_overpayment_rejected(self):
        self.client.force_authenticate(self.guest)
        response = self.client.post('/api/payments/', {
            'booking_id': self.booking.id, 'amount_cents': 100,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['code'], 'payment_error')

    def test_successful_payment_confirms_booking(self):
        self.client.force_authenticate(self.staff)
        response = self.client.post(f'/api/payments/{self.payment.id}/process/', {
            'success': True,
            'transaction_id': 'payment_12345'
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['booking_status'], Booking.Status.CONFIRMED)

        self.booking.refresh_from_db()
        self.payment.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.Status.CONFIRMED)
        self.assertEqual(self.payment.status, Payment.Status.COMPLETED)
        self.assertEqual(self.payment.transaction_id, 'payment_12345')

    def test_failed_payment_keeps_booking_pending(self):
        self.client.force_authenticate(self.staff)
        response = self.client.post(f'/api/payments/{self.payment.id}/process/', {
            'success': False
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.booking.refresh_from_db()
        self.payment.refresh_from_db()
        self.assertEqual(self.booking.status, Booking.Status.PENDING)
        self.assertEqual(self.payment.status, Payment.Status.FAILED)

    def test_refund_flow(self):
        self.payment.status = Payment.Status.COMPLETED
        self.payment.save()
        manager = make_user("manager", role=User.Role.MANAGER)
        self.client.force_authenticate(self.staff)

        response = self.client.post('/api/refunds/', {
            'booking_id': self.booking.id, 'amount_cents': 25000, 'payment_id': self.payment.id,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        refund_id = response.data['id']

        response = self.client.post(f'/api/refunds/{refund_id}/process/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

        self.client.force_authenticate(manager)
        response = self.client.post(f'/api/refunds/{refund_id}/process/', {'method': 'CASH'},
                                    format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], Refund.Status.COMPLETED)


class RoomApiTestCase(APITestCase):

    def setUp(self):
        self.manager = make_user("manager", role=User.Role.MANAGER)
        self.room = make_room("101", price_cents=8000, capacity=2)
        self.suite = make_room("301", price_cents=18000, capacity=4)
        self.check_in = timezone.localdate() + timedelta(days=1)
        make_booking(self.room, make_user("guest"), self.check_in, self.check_in + timedelta(days=2))

    def test_anonymous_room_list(self):
        response = self.client.get('/api/rooms/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([r['number'] for r in response.data], ["101", "301"])
        self.assertEqual(response.data[0]['price_dollar'], 80.0)

    def test_availability_search(self):
        response = self.client.get('/api/rooms/', {
            'check_in': self.check_in.isoformat(),
            'check_out': (self.check_in + timedelta(days=1)).isoformat(),
        })
        self.assertEqual([r['number'] for r in response.data], ["301"])

        response = self.client.get('/api/rooms/', {
            'check_in': (self.check_in + timedelta(days=2)).isoformat(),
            'check_out': (self.check_in + timedelta(days=3)).isoformat(),
            'max_price': '100',
        })
        self.assertEqual([r['number'] for r in response.data], ["101"])

    def test_availability_search_bad_date(self):
        response = self.client.get('/api/rooms/', {'check_in': '2024-13-01', 'check_out': '2024-12-02'})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('date', response.data['error'])

    def test_availability_search_bad_numbers(self):
        dates = {
            'check_in': self.check_in.isoformat(),
            'check_out': (self.check_in + timedelta(days=1)).isoformat(),
        }
        for param, value in (('max_price', 'abc'), ('capacity', 'x')):
            with self.subTest(param=param):
                response = self.client.get('/api/rooms/', {**dates, param: value})
                self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
                self.assertIn(param, response.data['error'])
                self.assertNotIn('date', response.data['error'])

    def test_guest_cannot_create_room(self):
        self.client.force_authenticate(make_user("visitor"))
        response = self.client.post('/api/rooms/', {'number': '999', 'price_cents': 100},
                                    format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_maintenance_and_release(self):
        self.client.force_authenticate(self.manager)

        response = self.client.post(f'/api/rooms/{self.suite.id}/maintenance/')
        self.assertEqual(response.data['status'], Room.Status.MAINTENANCE)

        response = self.client.get('/api/rooms/', {
            'check_in': self.check_in.isoformat(),
            'check_out': (self.check_in + timedelta(days=1)).isoformat(),
        })
        self.assertEqual(response.data, [])

        response = self.client.post(f'/api/rooms/{self.suite.id}/release/')
        self.assertEqual(response.data['status'], Room.Status.AVAILABLE)

        response = self.client.post(f'/api/rooms/{self.suite.id}/release/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_room_with_active_bookings_cannot_be_deleted(self):
        self.client.force_authenticate(self.manager)
        response = self.client.delete(f'/api/rooms/{self.room.id}/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        response = self.client.delete(f'/api/rooms/{self.suite.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)


class SettingsAndDashboardApiTestCase(APITestCase):

    def setUp(self):
        self.admin = make_user("admin", role=User.Role.ADMIN)
        self.manager = make_user("manager", role=User.Role.MANAGER)
        self.guest = make_user("guest")

    def test_manager_reads_but_cannot_change_settings(self):
        self.client.force_authenticate(self.manager)
        response = self.client.get('/api/settings/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['max_advance_booking_days'], 365)

        response = self.client.put('/api/settings/', {'hotel_name': 'Grand'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_admin_updates_settings(self):
        self.client.force_authenticate(self.admin)
        response = self.client.patch('/api/settings/', {
            'hotel_name': 'Grand', 'max_advance_booking_days': 90,
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['settings']['hotel_name'], 'Grand')
        self.assertEqual(HotelSettings.load().max_advance_booking_days, 90)

    def test_dashboard_by_role(self):
        self.client.force_authenticate(self.manager)
        response = self.client.get('/api/dashboard/stats/')
        self.assertEqual(response.data['role'], User.Role.MANAGER)
        self.assertIn('occupancy_rate', response.data)

        self.client.force_authenticate(self.guest)
        response = self.client.get('/api/dashboard/stats/')
        self.assertEqual(response.data['role'], User.Role.GUEST)
        self.assertEqual(response.data['upcoming'], 0)

        self.client.force_authenticate(None)
        response = self.client.get('/api/dashboard/stats/')
        self.assertIn(response.status_code,
                      (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN))

    def test_me(self):
        self.client.force_authenticate(self.guest)
        response = self.client.get('/api/users/me/')
        self.assertEqual(response.data['username'], 'guest')
        self.assertNotIn('password', response.data)

        response = self.client.get('/api/users/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)

    def test_health_and_welcome(self):
        self.assertEqual(self.client.get('/health').json(), {'status': 'ok'})
        self.assertIn('message', self.client.get('/').json())
