"""
Booking lifecycle operations.

Every operation that moves money runs inside one ``transaction.atomic()``
block together with its ledger, request and calendar writes. Status changes
are applied with ``UPDATE ... WHERE status = <expected>`` on a row locked
with ``select_for_update()``, so of two racing completion/cancellation
attempts only one can win.
"""

import logging
import uuid

import requests
from django.conf import settings
from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from . import calendar, ledger, verification
from .actors import ROLE_ADMIN, ROLE_CHEF, ROLE_CUSTOMER
from .exceptions import (
    ActorNotPermitted,
    BookingNotFound,
    IdentifierMismatch,
    InvalidTransition,
    PolicyViolation,
    RequestNotBookable,
)
from .models import Booking, BookingStatus, CustomerRequest
from .policy import Initiator, days_until_event, evaluate_cancellation
from .state_machine import assert_transition


logger = logging.getLogger(__name__)

CANCELLED_STATUS = {
    Initiator.CUSTOMER.value: BookingStatus.CANCELLED_BY_CUSTOMER,
    Initiator.CHEF.value: BookingStatus.CANCELLED_BY_CHEF,
}


def find_booking_for_intent(payment_intent_id):
    return Booking.objects.filter(payment_intent_id=payment_intent_id).first()


def confirm_payment(request_id, payment_intent_id, customer_id=None):
    """
    Turn a paid customer request into a confirmed booking.

    Safe to call any number of times for the same ``payment_intent_id``: the
    first call creates the booking, every later call (including a concurrent
    one that loses the race on the unique constraint) returns that booking.
    """
    if not payment_intent_id:
        raise RequestNotBookable('payment_intent_id is required')

    existing = find_booking_for_intent(payment_intent_id)
    if existing is not None:
        logger.info(
            "Duplicate payment notification resolved to existing booking",
            extra={'booking_id': str(existing.id), 'payment_intent_id': payment_intent_id},
        )
        return existing

    try:
        with transaction.atomic():
            booking, created = _create_confirmed_booking(request_id, payment_intent_id, customer_id)
    except IntegrityError:
        existing = find_booking_for_intent(payment_intent_id)
        if existing is None:
            raise
        logger.info(
            "Concurrent confirmation lost the race, returning winner",
            extra={'booking_id': str(existing.id), 'payment_intent_id': payment_intent_id},
        )
        return existing

    if created:
        logger.info(
            "Booking confirmed",
            extra={
                'booking_id': str(booking.id),
                'request_id': str(request_id),
                'payment_intent_id': payment_intent_id,
                'total_price_cents': booking.total_price_cents,
            },
        )
        trigger_status_callback(booking, 'confirmed')
    return booking


def _create_confirmed_booking(request_id, payment_intent_id, customer_id):
    try:
        request_uuid = uuid.UUID(str(request_id))
    except ValueError:
        raise RequestNotBookable(f"Customer request {request_id} not found") from None

    customer_request = CustomerRequest.objects.select_for_update().filter(id=request_uuid).first()
    if customer_request is None:
        raise RequestNotBookable(f"Customer request {request_id} not found")

    # Re-check under the request lock: a concurrent delivery may have committed meanwhile
    existing = find_booking_for_intent(payment_intent_id)
    if existing is not None:
        return existing, False

    if customer_id and customer_request.customer_id != customer_id:
        raise RequestNotBookable('Payment customer does not match the customer request')
    if customer_request.status in (CustomerRequest.STATUS_BOOKED, CustomerRequest.STATUS_EXPIRED):
        raise RequestNotBookable(f"Customer request is already {customer_request.status}")
    proposal = customer_request.active_proposal
    if proposal is None:
        raise RequestNotBookable('Customer request has no active proposal')

    assert_transition(BookingStatus.PENDING_PAYMENT, BookingStatus.CONFIRMED)
    booking = Booking.objects.create(
        customer_id=customer_request.customer_id,
        customer_name=customer_request.customer_name,
        chef_id=proposal.chef_id,
        chef_name=proposal.chef_name,
        event_title=proposal.menu_title or customer_request.event_type,
        menu_title=proposal.menu_title,
        event_date=customer_request.event_date,
        location=customer_request.location,
        pax=customer_request.pax,
        price_per_head_cents=proposal.price_per_head_cents,
        total_price_cents=proposal.price_per_head_cents * customer_request.pax,
        status=BookingStatus.CONFIRMED,
        request=customer_request,
        payment_intent_id=payment_intent_id,
    )
    ledger.record_initial_split(booking)

    customer_request.status = CustomerRequest.STATUS_BOOKED
    customer_request.save(update_fields=['status', 'updated_at'])

    calendar.project_booking(booking)
    return booking, True


def record_completion(booking_id, presented_identifier, actor=None, now=None):
    now = now or timezone.now()
    mismatch = False

    with transaction.atomic():
        booking = _lock_booking(booking_id)
        if actor is not None:
            _ensure_actor(booking, actor, ROLE_CHEF)
        if booking.status != BookingStatus.CONFIRMED or booking.qr_code_scanned_at is not None:
            raise InvalidTransition(f"Booking is {booking.status} and cannot be completed")
        verification.ensure_attempts_remaining(booking)

        if verification.verify(booking, presented_identifier):
            assert_transition(booking.status, BookingStatus.COMPLETED)
            _compare_and_swap(booking, BookingStatus.COMPLETED, now, qr_code_scanned_at=now)
            ledger.release_escrow(booking, now)
            booking.refresh_from_db()
            calendar.project_booking(booking)
        else:
            Booking.objects.filter(pk=booking.pk).update(
                failed_verification_attempts=F('failed_verification_attempts') + 1
            )
            mismatch = True

    # Raised after the block so the attempt counter is committed
    if mismatch:
        logger.warning("Completion identifier mismatch", extra={'booking_id': str(booking.id)})
        raise IdentifierMismatch()

    logger.info("Booking completed", extra={'booking_id': str(booking.id)})
    trigger_status_callback(booking, 'completed')
    return booking


def cancel(booking_id, initiator, now=None, actor=None):
    initiator = Initiator(initiator)
    now = now or timezone.now()

    with transaction.atomic():
        booking = _lock_booking(booking_id)
        if actor is not None:
            _ensure_actor(booking, actor, initiator.value)
        if booking.status != BookingStatus.CONFIRMED:
            raise PolicyViolation(f"Booking is {booking.status} and cannot be cancelled")

        days = days_until_event(booking.event_date, now)
        outcome = evaluate_cancellation(initiator, days, booking.total_price_cents)
        new_status = CANCELLED_STATUS[initiator.value]
        assert_transition(booking.status, new_status)
        _compare_and_swap(booking, new_status, now, cancelled_at=now)
        ledger.record_cancellation(booking, outcome, now)
        booking.refresh_from_db()
        calendar.project_booking(booking)

    logger.info(
        "Booking cancelled",
        extra={
            'booking_id': str(booking.id),
            'initiator': initiator.value,
            'days_until_event': days,
            'rule': outcome.rule,
            'refund_cents': outcome.refund_to_customer,
        },
    )
    trigger_status_callback(booking, 'cancelled')
    return booking, outcome


def get_booking_for_actor(booking_id, actor):
    booking = _find_booking(Booking.objects.all(), booking_id)
    if actor.role != ROLE_ADMIN and not booking.is_party(actor.actor_id):
        raise ActorNotPermitted('Not a party to this booking')
    return booking


def trigger_status_callback(booking, event):
    url = settings.BOOKING_STATUS_CALLBACK_URL
    if not url:
        return
    payload = {
        'booking_id': str(booking.id),
        'status': str(booking.status),
        'event': event,
    }
    transaction.on_commit(lambda: _post_status_callback(url, payload))


def _post_status_callback(url, payload):
    try:
        requests.post(url, json=payload, timeout=5)
    except requests.RequestException as e:
        logger.warning(
            "Booking status callback failed",
            extra={'booking_id': payload['booking_id'], 'error': str(e)},
        )


def _find_booking(queryset, booking_id):
    try:
        booking_uuid = uuid.UUID(str(booking_id))
    except ValueError:
        raise BookingNotFound('Booking not found') from None
    booking = queryset.filter(pk=booking_uuid).first()
    if booking is None:
        raise BookingNotFound('Booking not found')
    return booking


def _lock_booking(booking_id):
    return _find_booking(Booking.objects.select_for_update(), booking_id)


def _ensure_actor(booking, actor, role):
    if actor.role == ROLE_ADMIN:
        return
    party_id = {ROLE_CUSTOMER: booking.customer_id, ROLE_CHEF: booking.chef_id}.get(role)
    if actor.role != role or actor.actor_id != party_id:
        raise ActorNotPermitted(f"Only the booking's {role} may do this")


def _compare_and_swap(booking, new_status, now, **fields):
    updated = Booking.objects.filter(pk=booking.pk, status=booking.status).update(
        status=new_status, updated_at=now, **fields
    )
    if updated != 1:
        raise InvalidTransition(f"Booking {booking.pk} changed state concurrently")
