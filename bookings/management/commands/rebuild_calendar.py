from django.core.management.base import BaseCommand

from bookings.calendar import rebuild_calendar


class Command(BaseCommand):
    help = 'Discard booking-backed calendar entries and regenerate them from bookings'

    def add_arguments(self, parser):
        parser.add_argument('--chef', dest='chef_id', help='Only rebuild this chef\'s calendar')

    def handle(self, *args, **options):
        chef_id = options.get('chef_id')
        count = rebuild_calendar(chef_id=chef_id)
        scope = f'chef "{chef_id}"' if chef_id else 'all chefs'
        self.stdout.write(f'Rebuilt {count} calendar entries for {scope}.')
