"""
Fund ledger for confirmed bookings.

At confirmation the total is split three ways: 46% released to the chef,
4% to the platform, and the remaining 50% held in escrow until the event is
verified complete. The ledger records intended movements only; transfers
themselves go through the payment processor.
"""

import logging
from dataclasses import dataclass
from decimal import Decimal

from django.db import transaction

from .models import LedgerEntry
from .policy import percent_of


logger = logging.getLogger(__name__)

IMMEDIATE_CHEF_SHARE = Decimal('0.46')
IMMEDIATE_PLATFORM_SHARE = Decimal('0.04')


@dataclass(frozen=True)
class InitialSplit:
    immediate_chef: int
    immediate_platform: int
    held_escrow: int


def compute_initial_split(total_price_cents):
    if total_price_cents < 0:
        raise ValueError('total_price_cents must be >= 0')
    chef = percent_of(total_price_cents, IMMEDIATE_CHEF_SHARE)
    platform = percent_of(total_price_cents, IMMEDIATE_PLATFORM_SHARE)
    # Rounding residue lands in escrow so the parts always sum to the total
    return InitialSplit(
        immediate_chef=chef,
        immediate_platform=platform,
        held_escrow=total_price_cents - chef - platform,
    )


def record_initial_split(booking):
    split = compute_initial_split(booking.total_price_cents)
    entry = LedgerEntry.objects.create(
        booking=booking,
        currency=booking.currency,
        immediate_chef_cents=split.immediate_chef,
        immediate_platform_cents=split.immediate_platform,
        held_escrow_cents=split.held_escrow,
    )
    logger.info(
        "Recorded initial split",
        extra={
            'booking_id': str(booking.id),
            'immediate_chef_cents': split.immediate_chef,
            'immediate_platform_cents': split.immediate_platform,
            'held_escrow_cents': split.held_escrow,
        },
    )
    return entry


def release_escrow(booking, now):
    """Mark the held escrow as released. Returns False if it was already released."""
    released = LedgerEntry.objects.filter(
        booking=booking, released_at__isnull=True
    ).update(released_at=now, updated_at=now)
    if released:
        logger.info("Released held escrow", extra={'booking_id': str(booking.id)})
    return bool(released)


def record_cancellation(booking, outcome, now):
    entry = LedgerEntry.objects.select_for_update().get(booking=booking)
    entry.refund_cents = outcome.refund_to_customer
    entry.chef_compensation_cents = outcome.chef_compensation
    entry.platform_compensation_cents = outcome.platform_compensation
    entry.held_for_disposition_cents = outcome.held_for_disposition
    entry.penalty_review_required = outcome.penalty_review_required
    entry.cancelled_at = now
    if outcome.held_for_disposition > 0:
        entry.disposition_status = LedgerEntry.DISPOSITION_UNRESOLVED
    entry.save()

    if entry.disposition_status == LedgerEntry.DISPOSITION_UNRESOLVED:
        logger.warning(
            "Held funds awaiting operator disposition",
            extra={'booking_id': str(booking.id), 'held_cents': outcome.held_for_disposition},
        )
    if outcome.penalty_review_required:
        logger.warning("Chef cancellation flagged for review", extra={'booking_id': str(booking.id)})
    return entry


def settle_disposition(entry, note=''):
    """Operator sign-off on held-for-disposition funds."""
    with transaction.atomic():
        locked = LedgerEntry.objects.select_for_update().get(pk=entry.pk)
        if locked.disposition_status != LedgerEntry.DISPOSITION_UNRESOLVED:
            return False
        locked.disposition_status = LedgerEntry.DISPOSITION_SETTLED
        locked.disposition_note = note
        locked.save(update_fields=['disposition_status', 'disposition_note', 'updated_at'])
    entry.disposition_status = locked.disposition_status
    entry.disposition_note = locked.disposition_note
    logger.info("Held funds settled", extra={'booking_id': str(entry.booking_id)})
    return True
