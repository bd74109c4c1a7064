"""
Cancellation policy.

Pure functions: no database access, no clock. All amounts are integer cents
and every percentage is taken from the full booking total.

    chef cancels                      -> 100% refund, penalty review flagged
    customer cancels > 20 days out    -> 50% refund, 50% held for disposition
    customer cancels <= 20 days out   -> 20% refund, 15% chef, 15% platform,
                                         50% held for disposition
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_EVEN

from django.db import models


LATE_CANCELLATION_THRESHOLD_DAYS = 20

EARLY_CUSTOMER_REFUND = Decimal('0.50')
LATE_CUSTOMER_REFUND = Decimal('0.20')
LATE_CHEF_COMPENSATION = Decimal('0.15')
LATE_PLATFORM_COMPENSATION = Decimal('0.15')


class Initiator(models.TextChoices):
    CUSTOMER = 'customer', 'Customer'
    CHEF = 'chef', 'Chef'


@dataclass(frozen=True)
class CancellationOutcome:
    refund_to_customer: int
    chef_compensation: int
    platform_compensation: int
    held_for_disposition: int
    penalty_review_required: bool
    rule: str

    @property
    def total(self):
        return (
            self.refund_to_customer
            + self.chef_compensation
            + self.platform_compensation
            + self.held_for_disposition
        )


def percent_of(amount_cents, fraction):
    """Half-even rounding to whole cents."""
    return int((Decimal(amount_cents) * fraction).quantize(Decimal('1'), rounding=ROUND_HALF_EVEN))


def days_until_event(event_date, now):
    """Whole days from ``now`` to the event, floored. Negative once the event has passed."""
    return (event_date - now).days


def evaluate_cancellation(initiator, days_until, total_price_cents):
    if total_price_cents < 0:
        raise ValueError('total_price_cents must be >= 0')

    if initiator == Initiator.CHEF:
        return CancellationOutcome(
            refund_to_customer=total_price_cents,
            chef_compensation=0,
            platform_compensation=0,
            held_for_disposition=0,
            penalty_review_required=True,
            rule='chef_cancellation',
        )

    if initiator != Initiator.CUSTOMER:
        raise ValueError(f"Unknown cancellation initiator: {initiator!r}")

    if days_until > LATE_CANCELLATION_THRESHOLD_DAYS:
        refund = percent_of(total_price_cents, EARLY_CUSTOMER_REFUND)
        return CancellationOutcome(
            refund_to_customer=refund,
            chef_compensation=0,
            platform_compensation=0,
            held_for_disposition=total_price_cents - refund,
            penalty_review_required=False,
            rule='customer_early_cancellation',
        )

    # Past events get no grace period and fall through to the late rule
    refund = percent_of(total_price_cents, LATE_CUSTOMER_REFUND)
    chef = percent_of(total_price_cents, LATE_CHEF_COMPENSATION)
    platform = percent_of(total_price_cents, LATE_PLATFORM_COMPENSATION)
    return CancellationOutcome(
        refund_to_customer=refund,
        chef_compensation=chef,
        platform_compensation=platform,
        held_for_disposition=total_price_cents - refund - chef - platform,
        penalty_review_required=False,
        rule='customer_late_cancellation',
    )
