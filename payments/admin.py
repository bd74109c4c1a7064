from django.contrib import admin
from .models import PaymentAttempt


@admin.register(PaymentAttempt)
class PaymentAttemptAdmin(admin.ModelAdmin):
    list_display = [
        'id', 'request', 'customer_id', 'amount_display', 'status', 'needs_reconciliation', 'booking', 'created_at',
    ]
    list_filter = ['status', 'needs_reconciliation', 'currency', 'created_at']
    search_fields = ['customer_id', 'stripe_payment_intent_id', 'idempotency_key', 'request__id']
    readonly_fields = [
        'created_at', 'updated_at', 'stripe_payment_intent_id', 'idempotency_key', 'processed_events', 'status',
    ]
    raw_id_fields = ['request', 'booking']

    fieldsets = (
        ('Request', {
            'fields': ('request', 'customer_id', 'idempotency_key')
        }),
        ('Payment Details', {
            'fields': ('amount_cents', 'currency', 'status', 'needs_reconciliation', 'failure_reason')
        }),
        ('Stripe Information', {
            'fields': ('stripe_payment_intent_id',)
        }),
        ('Outcome', {
            'fields': ('booking',)
        }),
        ('Metadata', {
            'fields': ('metadata', 'processed_events')
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at')
        }),
    )

    def amount_display(self, obj):
        return f"{obj.currency} {obj.amount_cents/100:.2f}"
    amount_display.short_description = 'Amount'
