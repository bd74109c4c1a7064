import uuid

from django.db import models

from bookings.models import BookingStatus, default_currency


class PaymentAttempt(models.Model):
    """
    A customer's payment for a request, from intent creation until Stripe
    reports the outcome. It is the booking while still in ``pending_payment``.
    """

    STATUS_CHOICES = [
        (BookingStatus.PENDING_PAYMENT.value, BookingStatus.PENDING_PAYMENT.label),
        (BookingStatus.CONFIRMED.value, BookingStatus.CONFIRMED.label),
        (BookingStatus.PAYMENT_FAILED.value, BookingStatus.PAYMENT_FAILED.label),
    ]

    id = models.UUIDField(primary_key=True, default=uuid.uuid4, editable=False)
    request = models.ForeignKey(
        'bookings.CustomerRequest', on_delete=models.PROTECT, related_name='payment_attempts'
    )
    customer_id = models.CharField(max_length=128, db_index=True)
    amount_cents = models.PositiveIntegerField()
    currency = models.CharField(max_length=3, default=default_currency)
    stripe_payment_intent_id = models.CharField(max_length=255, unique=True, null=True, blank=True)
    idempotency_key = models.CharField(max_length=255, unique=True)
    status = models.CharField(
        max_length=32, choices=STATUS_CHOICES, default=BookingStatus.PENDING_PAYMENT.value, db_index=True
    )
    booking = models.ForeignKey(
        'bookings.Booking', null=True, blank=True, on_delete=models.PROTECT, related_name='payment_attempts'
    )
    processed_events = models.JSONField(default=list, blank=True)
    metadata = models.JSONField(default=dict, blank=True)
    # Captured by Stripe but not bookable; needs an operator refund or rebooking
    needs_reconciliation = models.BooleanField(default=False, db_index=True)
    failure_reason = models.TextField(blank=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        db_table = 'payments_payment_attempt'
        ordering = ['-created_at']

    def __str__(self):
        return f"{self.request_id} - {self.amount_cents} - {self.status}"

    def mark_event_processed(self, event_id):
        """Record a Stripe event id. Returns False if it was already recorded."""
        if event_id in self.processed_events:
            return False
        self.processed_events = self.processed_events + [event_id]
        self.save(update_fields=['processed_events', 'updated_at'])
        return True
