from datetime import datetime

from django.core.management.base import BaseCommand, CommandError
from hotel_management import services


class Command(BaseCommand):
    help = 'Complete checked-in bookings whose check-out date has passed'

    def add_arguments(self, parser):
        parser.add_argument(
            '--date',
            help='Run as if today were this date (YYYY-MM-DD)',
        )

    def handle(self, *args, **options):
        today = None
        if options['date']:
            try:
                today = datetime.strptime(options['date'], '%Y-%m-%d').date()
            except ValueError:
                raise CommandError('Invalid date format. Use YYYY-MM-DD')

        completed = services.auto_checkout(today=today)
        for booking in completed:
            self.stdout.write(f'Checked out booking {booking.pk} (room {booking.room.number})')

        self.stdout.write(
            self.style.SUCCESS(f'Auto-checkout completed {len(completed)} booking(s)')
        )
