from django.core.management.base import BaseCommand
from hotel_management.models import HotelSettings, Room, User


class Command(BaseCommand):
    help = 'Populate database with sample hotel data'

    def add_arguments(self, parser):
        parser.add_argument(
            '--password',
            default='change-me-123',
            help='Password given to the sample users',
        )

    def handle(self, *args, **options):
        rooms_data = [
            {
                'number': '101',
                'room_type': 'Standard Room',
                'price_cents': 8000,
                'capacity': 2,
                'description': 'Standard room with city view'
            },
            {
                'number': '102',
                'room_type': 'Standard Room',
                'price_cents': 8500,
                'capacity': 2,
                'description': 'Standard room with balcony'
            },
            {
                'number': '201',
                'room_type': 'Deluxe Room',
                'price_cents': 12000,
                'capacity': 3,
                'description': 'Deluxe room facing the garden'
            },
            {
                'number': '202',
                'room_type': 'Deluxe Room',
                'price_cents': 13000,
                'capacity': 3,
                'description': 'Deluxe room with kitchenette'
            },
            {
                'number': '301',
                'room_type': 'Family Suite',
                'price_cents': 18000,
                'capacity': 4,
                'description': 'Two-bedroom family suite'
            },
            {
                'number': '401',
                'room_type': 'Executive Suite',
                'price_cents': 30000,
                'capacity': 4,
                'description': 'Corner suite with lounge access'
            },
        ]

        for room_data in rooms_data:
            room, created = Room.objects.get_or_create(
                number=room_data['number'],
                defaults=room_data
            )

            if created:
                self.stdout.write(f'Created room: {room.number} - {room.room_type}')
            else:
                self.stdout.write(f'Room {room.number} already exists')

        for role in User.Role:
            username = role.value.lower()
            user, created = User.objects.get_or_create(
                username=username,
                defaults={'email': f'{username}@example.com', 'role': role},
            )
            if created:
                user.set_password(options['password'])
                if role == User.Role.ADMIN:
                    user.is_staff = True
                    user.is_superuser = True
                user.save()
                self.stdout.write(f'Created {role.label.lower()} user: {username}')
            else:
                self.stdout.write(f'User {username} already exists')

        HotelSettings.load()

        self.stdout.write(
            self.style.SUCCESS('Successfully populated database with sample data')
        )
