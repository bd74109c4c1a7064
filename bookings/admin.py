from django.conf import settings
from django.contrib import admin
from django.db import transaction
from .models import Booking, CalendarEvent, CustomerRequest, LedgerEntry, Proposal
from . import ledger


def format_cents(cents, currency):
    if cents is None:
        return '-'
    return f"{currency} {cents/100:.2f}"


@admin.register(CustomerRequest)
class CustomerRequestAdmin(admin.ModelAdmin):
    list_display = ['id', 'customer_name', 'event_type', 'pax', 'event_date', 'status', 'created_at']
    list_filter = ['status', 'event_date', 'created_at']
    search_fields = ['id', 'customer_id', 'customer_name', 'event_type']
    readonly_fields = ['created_at', 'updated_at']
    raw_id_fields = ['active_proposal']


@admin.register(Proposal)
class ProposalAdmin(admin.ModelAdmin):
    list_display = ['id', 'request', 'chef_name', 'menu_title', 'price_display', 'created_at']
    search_fields = ['chef_id', 'chef_name', 'menu_title']
    raw_id_fields = ['request']

    def price_display(self, obj):
        return format_cents(obj.price_per_head_cents, settings.DEFAULT_CURRENCY)
    price_display.short_description = 'Price per head'


@admin.register(Booking)
class BookingAdmin(admin.ModelAdmin):
    list_display = ['id', 'customer_name', 'chef_name', 'event_date', 'status', 'total_display', 'created_at']
    list_filter = ['status', 'event_date', 'created_at']
    search_fields = ['id', 'customer_id', 'customer_name', 'chef_id', 'chef_name', 'payment_intent_id']
    raw_id_fields = ['request']
    # Status and money only change through the lifecycle operations
    readonly_fields = [
        'id', 'schema_version', 'status', 'total_price_cents', 'price_per_head_cents', 'pax',
        'payment_intent_id', 'qr_code_scanned_at', 'cancelled_at', 'failed_verification_attempts',
        'created_at', 'updated_at',
    ]

    def total_display(self, obj):
        return format_cents(obj.total_price_cents, obj.currency)
    total_display.short_description = 'Total'

    def has_delete_permission(self, request, obj=None):
        return False


@admin.register(LedgerEntry)
class LedgerEntryAdmin(admin.ModelAdmin):
    list_display = [
        'booking', 'chef_display', 'platform_display', 'held_display', 'released_at',
        'refund_display', 'disposition_status', 'penalty_review_required',
    ]
    list_filter = ['disposition_status', 'penalty_review_required', 'created_at']
    search_fields = ['booking__id', 'booking__chef_name', 'booking__customer_name']
    raw_id_fields = ['booking']
    readonly_fields = [
        'currency', 'immediate_chef_cents', 'immediate_platform_cents', 'held_escrow_cents', 'released_at',
        'refund_cents', 'chef_compensation_cents', 'platform_compensation_cents',
        'held_for_disposition_cents', 'cancelled_at', 'penalty_review_required', 'disposition_status',
        'created_at', 'updated_at',
    ]
    actions = ['settle_held_funds']

    fieldsets = (
        ('Booking', {
            'fields': ('booking', 'currency')
        }),
        ('Confirmation Split', {
            'fields': ('immediate_chef_cents', 'immediate_platform_cents', 'held_escrow_cents', 'released_at')
        }),
        ('Cancellation', {
            'fields': (
                'refund_cents', 'chef_compensation_cents', 'platform_compensation_cents',
                'held_for_disposition_cents', 'cancelled_at', 'penalty_review_required',
            )
        }),
        ('Disposition', {
            'fields': ('disposition_status', 'disposition_note')
        }),
        ('Timestamps', {
            'fields': ('created_at', 'updated_at')
        }),
    )

    def chef_display(self, obj):
        return format_cents(obj.immediate_chef_cents, obj.currency)
    chef_display.short_description = 'Chef (immediate)'

    def platform_display(self, obj):
        return format_cents(obj.immediate_platform_cents, obj.currency)
    platform_display.short_description = 'Platform (immediate)'

    def held_display(self, obj):
        return format_cents(obj.held_escrow_cents, obj.currency)
    held_display.short_description = 'Held'

    def refund_display(self, obj):
        return format_cents(obj.refund_cents, obj.currency)
    refund_display.short_description = 'Refund'

    @admin.action(description='Mark held funds as settled')
    def settle_held_funds(self, request, queryset):
        with transaction.atomic():
            entries = queryset.select_for_update()
            settled = sum(1 for entry in entries if ledger.settle_disposition(entry, note=f'Settled by {request.user}'))
        self.message_user(request, f'{settled} ledger entries settled.')


@admin.register(CalendarEvent)
class CalendarEventAdmin(admin.ModelAdmin):
    list_display = ['date', 'title', 'chef_id', 'customer_name', 'pax', 'status']
    list_filter = ['status', 'date']
    search_fields = ['chef_id', 'title', 'customer_name']
    readonly_fields = ['created_at', 'updated_at']
    raw_id_fields = ['booking']
