import logging
import zoneinfo

from django.conf import settings
from django.db import transaction
from django.utils import timezone

from .models import Booking, BookingStatus, CalendarEvent


logger = logging.getLogger(__name__)

CALENDAR_STATUS = {
    BookingStatus.CONFIRMED.value: CalendarEvent.STATUS_CONFIRMED,
    BookingStatus.COMPLETED.value: CalendarEvent.STATUS_COMPLETED,
    BookingStatus.CANCELLED_BY_CUSTOMER.value: CalendarEvent.STATUS_CANCELLED,
    BookingStatus.CANCELLED_BY_CHEF.value: CalendarEvent.STATUS_CANCELLED,
}


def event_day(event_date):
    """The event's calendar day in the marketplace's local time."""
    return timezone.localtime(event_date, zoneinfo.ZoneInfo(settings.MARKETPLACE_TIME_ZONE)).date()


def project_booking(booking):
    """Upsert the chef's schedule entry for ``booking``, keyed by the booking id."""
    status = CALENDAR_STATUS.get(str(booking.status))
    if status is None:
        return None
    event, _ = CalendarEvent.objects.update_or_create(
        id=booking.id,
        defaults={
            'booking': booking,
            'chef_id': booking.chef_id,
            'date': event_day(booking.event_date),
            'title': booking.event_title,
            'customer_name': booking.customer_name,
            'pax': booking.pax,
            'menu_name': booking.menu_title,
            'price_per_head_cents': booking.price_per_head_cents,
            'location': booking.location,
            'notes': booking.request.notes if booking.request_id else '',
            'status': status,
        },
    )
    return event


def rebuild_calendar(chef_id=None):
    """Drop booking-backed projections and regenerate them. Returns the number rebuilt."""
    bookings = Booking.objects.select_related('request')
    projections = CalendarEvent.objects.filter(booking__isnull=False)
    if chef_id:
        bookings = bookings.filter(chef_id=chef_id)
        projections = projections.filter(chef_id=chef_id)

    rebuilt = 0
    with transaction.atomic():
        projections.delete()
        for booking in bookings.iterator():
            if project_booking(booking) is not None:
                rebuilt += 1
    logger.info("Rebuilt calendar projections", extra={'chef_id': chef_id, 'count': rebuilt})
    return rebuilt
