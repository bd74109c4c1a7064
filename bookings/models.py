import uuid

from django.conf import settings
from django.db import models


class BookingStatus(models.TextChoices):
    PENDING_PAYMENT = 'pending_payment', 'Pending Payment'
    CONFIRMED = 'confirmed', 'Confirmed'
    COMPLETED = 'completed', 'Completed'
    CANCELLED_BY_CUSTOMER = 'cancelled_by_customer', 'Cancelled by Customer'
    CANCELLED_BY_CHEF = 'cancelled_by_chef', 'Cancelled by Chef'
    PAYMENT_FAILED = 'payment_failed', 'Payment Failed'


def default_currency():
    return settings.DEFAULT_CURRENCY


class CustomerRequest(models.Model):
    STATUS_NEW = 'new'
    STATUS_PROPOSED = 'proposed'
    STATUS_BOOKED = 'booked'
    STATUS_EXPIRED = 'expired'
    STATUS_CHOICES = [
        (STATUS_NEW, 'New'),
        (STATUS_PROPOSED, 'Proposed'),
        (STATUS_BOOKED, 'Booked'),
        (STATUS_EXPIRED, 'Expired'),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    customer_id = models.CharField(max_length=128, db_index=True)
    customer_name = models.CharField(max_length=255, blank=True)
    event_type = models.CharField(max_length=255)
    budget_cents = models.PositiveIntegerField(default=0)
    cuisine_preference = models.CharField(max_length=255, blank=True)
    pax = models.PositiveIntegerField()
    event_date = models.DateTimeField()
    location = models.CharField(max_length=255, blank=True)
    notes = models.TextField(blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_NEW, db_index=True)
    active_proposal = models.ForeignKey(
        'Proposal', null=True, blank=True, on_delete=models.SET_NULL, related_name='+'
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'bookings_customer_request'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.customer_name or self.customer_id} - {self.event_type} - {self.status}"


class Proposal(models.Model):
    """A chef's offer against a customer request. Written by the proposal flow."""

    request = models.ForeignKey(CustomerRequest, on_delete=models.CASCADE, related_name='proposals')
    chef_id = models.CharField(max_length=128, db_index=True)
    chef_name = models.CharField(max_length=255)
    menu_title = models.CharField(max_length=255)
    price_per_head_cents = models.PositiveIntegerField()
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.chef_name} - {self.menu_title}"


class Booking(models.Model):
    SCHEMA_VERSION = 1

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    schema_version = models.PositiveSmallIntegerField(default=SCHEMA_VERSION)
    customer_id = models.CharField(max_length=128, db_index=True)
    customer_name = models.CharField(max_length=255, blank=True)
    chef_id = models.CharField(max_length=128, db_index=True)
    chef_name = models.CharField(max_length=255)
    event_title = models.CharField(max_length=255)
    menu_title = models.CharField(max_length=255, blank=True)
    event_date = models.DateTimeField()
    location = models.CharField(max_length=255, blank=True)
    pax = models.PositiveIntegerField()
    price_per_head_cents = models.PositiveIntegerField()
    total_price_cents = models.PositiveIntegerField()
    currency = models.CharField(max_length=3, default=default_currency)
    status = models.CharField(
        max_length=32, choices=BookingStatus.choices, default=BookingStatus.CONFIRMED, db_index=True
    )
    request = models.ForeignKey(CustomerRequest, on_delete=models.PROTECT, related_name='bookings')
    payment_intent_id = models.CharField(max_length=255, unique=True)
    qr_code_scanned_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    failed_verification_attempts = models.PositiveIntegerField(default=0)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'bookings_booking'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.customer_name} - {self.event_title} - {self.status}"

    def is_party(self, actor_id):
        return actor_id in (self.customer_id, self.chef_id)


class LedgerEntry(models.Model):
    DISPOSITION_NOT_APPLICABLE = 'not_applicable'
    DISPOSITION_UNRESOLVED = 'unresolved'
    DISPOSITION_SETTLED = 'settled'
    DISPOSITION_CHOICES = [
        (DISPOSITION_NOT_APPLICABLE, 'Not Applicable'),
        (DISPOSITION_UNRESOLVED, 'Unresolved'),
        (DISPOSITION_SETTLED, 'Settled'),
    ]

    booking = models.OneToOneField(Booking, on_delete=models.PROTECT, related_name='ledger_entry')
    currency = models.CharField(max_length=3, default=default_currency)
    immediate_chef_cents = models.PositiveIntegerField()
    immediate_platform_cents = models.PositiveIntegerField()
    held_escrow_cents = models.PositiveIntegerField()
    released_at = models.DateTimeField(null=True, blank=True)

    refund_cents = models.PositiveIntegerField(null=True, blank=True)
    chef_compensation_cents = models.PositiveIntegerField(null=True, blank=True)
    platform_compensation_cents = models.PositiveIntegerField(null=True, blank=True)
    held_for_disposition_cents = models.PositiveIntegerField(default=0)
    cancelled_at = models.DateTimeField(null=True, blank=True)
    penalty_review_required = models.BooleanField(default=False)
    disposition_status = models.CharField(
        max_length=20, choices=DISPOSITION_CHOICES, default=DISPOSITION_NOT_APPLICABLE, db_index=True
    )
    disposition_note = models.TextField(blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'bookings_ledger_entry'
        ordering = ['-created_at']
        verbose_name_plural = 'ledger entries'

    def __str__(self):
        return f"Ledger for {self.booking_id}"

    @property
    def is_released(self):
        return self.released_at is not None


class CalendarEvent(models.Model):
    STATUS_CONFIRMED = 'confirmed'
    STATUS_COMPLETED = 'completed'
    STATUS_CANCELLED = 'cancelled'
    STATUS_CHOICES = [
        (STATUS_CONFIRMED, 'Confirmed'),
        (STATUS_COMPLETED, 'Completed'),
        (STATUS_CANCELLED, 'Cancelled'),
    ]

    # Same id as the booking it mirrors
    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    booking = models.OneToOneField(
        Booking, null=True, blank=True, on_delete=models.CASCADE, related_name='calendar_event'
    )
    chef_id = models.CharField(max_length=128, db_index=True)
    date = models.DateField()
    title = models.CharField(max_length=255)
    customer_name = models.CharField(max_length=255, blank=True)
    pax = models.PositiveIntegerField()
    menu_name = models.CharField(max_length=255, blank=True)
    price_per_head_cents = models.PositiveIntegerField()
    location = models.CharField(max_length=255, blank=True)
    notes = models.TextField(blank=True)
    status = models.CharField(max_length=20, choices=STATUS_CHOICES, default=STATUS_CONFIRMED)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'bookings_calendar_event'
        ordering = ['date']

    def __str__(self):
        return f"{self.date} - {self.title} - {self.status}"
