import json
import logging
import uuid
import stripe
from django.conf import settings
from django.db import transaction
from django.http import JsonResponse, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods
from bookings import services
from bookings.actors import ROLE_CUSTOMER, actor_from_request
from bookings.exceptions import MissingMetadata, RequestNotBookable
from bookings.models import BookingStatus, CustomerRequest
from bookings.state_machine import assert_transition, can_transition
from .models import PaymentAttempt


stripe.api_key = settings.STRIPE_SECRET_KEY

logger = logging.getLogger(__name__)

PAYMENT_SUCCEEDED = 'payment_succeeded'
PAYMENT_FAILED = 'payment_failed'

NOTIFICATION_TYPES = {
    'payment_intent.succeeded': PAYMENT_SUCCEEDED,
    'payment_intent.payment_failed': PAYMENT_FAILED,
}


@csrf_exempt
@require_http_methods(["POST"])
def create_payment_intent(request):
    if not settings.PAYMENTS_ENABLED:
        return JsonResponse({
            'error': 'Payments are not enabled for this instance'
        }, status=400)

    actor = actor_from_request(request)
    if actor is None:
        return JsonResponse({'error': 'Missing actor context'}, status=401)
    if actor.role != ROLE_CUSTOMER:
        return JsonResponse({'error': 'Only customers can pay for a request'}, status=403)

    try:
        data = json.loads(request.body)
    except json.JSONDecodeError:
        return JsonResponse({'error': 'Invalid JSON'}, status=400)

    request_id = data.get('request_id')
    idempotency_key = data.get('idempotency_key')

    if not request_id:
        return JsonResponse({'error': 'Missing required field: request_id'}, status=400)

    if idempotency_key:
        existing_attempt = PaymentAttempt.objects.filter(idempotency_key=idempotency_key).first()
        if existing_attempt:
            if existing_attempt.customer_id != actor.actor_id:
                return JsonResponse({'error': 'Payment attempt not found'}, status=404)
            return _attempt_response(existing_attempt)

    try:
        customer_request = CustomerRequest.objects.filter(id=uuid.UUID(str(request_id))).first()
    except ValueError:
        customer_request = None
    if customer_request is None:
        return JsonResponse({'error': 'Customer request not found'}, status=404)
    if customer_request.customer_id != actor.actor_id:
        return JsonResponse({'error': 'Customer request not found'}, status=404)

    proposal = customer_request.active_proposal
    if proposal is None or customer_request.status not in (CustomerRequest.STATUS_NEW, CustomerRequest.STATUS_PROPOSED):
        return JsonResponse({'error': 'Customer request has no proposal awaiting payment'}, status=409)

    amount_cents = proposal.price_per_head_cents * customer_request.pax
    if amount_cents < settings.MIN_CHARGE_CENTS:
        return JsonResponse({'error': f'Amount must be >= {settings.MIN_CHARGE_CENTS} cents'}, status=400)

    with transaction.atomic():
        attempt = PaymentAttempt.objects.create(
            request=customer_request,
            customer_id=customer_request.customer_id,
            amount_cents=amount_cents,
            currency=settings.DEFAULT_CURRENCY,
            idempotency_key=idempotency_key or f"request-{customer_request.id}-{uuid.uuid4()}",
            metadata={'proposal_id': proposal.id, 'chef_id': proposal.chef_id},
        )

        try:
            payment_intent = stripe.PaymentIntent.create(
                amount=amount_cents,
                currency=attempt.currency.lower(),
                automatic_payment_methods={'enabled': True},
                # Stripe echoes these back on the webhook; confirmation depends on them
                metadata={
                    'requestId': str(customer_request.id),
                    'customerId': customer_request.customer_id,
                    'paymentAttemptId': str(attempt.id),
                },
                idempotency_key=attempt.idempotency_key,
            )
        except stripe.StripeError as e:
            attempt.status = BookingStatus.PAYMENT_FAILED.value
            attempt.failure_reason = str(e)
            attempt.save(update_fields=['status', 'failure_reason', 'updated_at'])
            logger.warning(
                "Stripe rejected payment intent creation",
                extra={'request_id': str(customer_request.id), 'error': str(e)},
            )
            return JsonResponse({'error': 'Payment could not be started, please try again'}, status=400)

        attempt.stripe_payment_intent_id = payment_intent.id
        attempt.save(update_fields=['stripe_payment_intent_id', 'updated_at'])

    logger.info(
        "Payment intent created",
        extra={'request_id': str(customer_request.id), 'payment_intent_id': payment_intent.id},
    )
    return JsonResponse({
        'client_secret': payment_intent.client_secret,
        'payment_attempt_id': str(attempt.id),
        'amount_cents': attempt.amount_cents,
        'currency': attempt.currency,
        'status': attempt.status,
    })


def _attempt_response(attempt):
    client_secret = None
    if attempt.stripe_payment_intent_id and attempt.status == BookingStatus.PENDING_PAYMENT.value:
        client_secret = stripe.PaymentIntent.retrieve(attempt.stripe_payment_intent_id).client_secret
    return JsonResponse({
        'client_secret': client_secret,
        'payment_attempt_id': str(attempt.id),
        'amount_cents': attempt.amount_cents,
        'currency': attempt.currency,
        'status': attempt.status,
    })


@csrf_exempt
@require_http_methods(["POST"])
def stripe_webhook(request):
    payload = request.body
    sig_header = request.META.get('HTTP_STRIPE_SIGNATURE')

    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("STRIPE_WEBHOOK_SECRET is not configured")
        return JsonResponse({'error': 'Webhook secret not configured'}, status=500)

    # Nothing about the payload is read before it is authenticated
    if not sig_header:
        return HttpResponse(status=400)
    try:
        event = stripe.Webhook.construct_event(
            payload, sig_header, settings.STRIPE_WEBHOOK_SECRET
        )
    except ValueError:
        return HttpResponse(status=400)
    except stripe.SignatureVerificationError:
        logger.warning("Rejected webhook with invalid signature")
        return HttpResponse(status=400)

    event_id = event['id']
    event_type = event['type']
    notification = NOTIFICATION_TYPES.get(event_type)

    if notification == PAYMENT_SUCCEEDED:
        payment_intent = event['data']['object']
        try:
            handle_payment_succeeded(payment_intent, event_id)
        except (MissingMetadata, RequestNotBookable) as e:
            # Redelivery cannot fix these; an operator has to reconcile the payment
            logger.critical(
                "Payment succeeded but cannot be settled automatically",
                extra={'event_id': event_id, 'payment_intent_id': payment_intent.get('id'), 'error': str(e)},
            )
            flag_for_reconciliation(payment_intent, event_id, str(e))
        except Exception:
            logger.exception(
                "Failed to settle successful payment",
                extra={'event_id': event_id, 'payment_intent_id': payment_intent.get('id')},
            )
            return JsonResponse({'error': 'Processing failed'}, status=500)

    elif notification == PAYMENT_FAILED:
        payment_intent = event['data']['object']
        try:
            handle_payment_failed(payment_intent, event_id)
        except Exception:
            logger.exception(
                "Failed to record payment failure",
                extra={'event_id': event_id, 'payment_intent_id': payment_intent.get('id')},
            )

    else:
        logger.info("Ignoring unhandled webhook event", extra={'event_id': event_id, 'event_type': event_type})

    return JsonResponse({'received': True})


def handle_payment_succeeded(payment_intent, event_id):
    payment_intent_id = payment_intent.get('id')
    metadata = payment_intent.get('metadata') or {}
    request_id = metadata.get('requestId')
    customer_id = metadata.get('customerId')

    if not payment_intent_id or not request_id or not customer_id:
        raise MissingMetadata(
            f"Payment {payment_intent_id} succeeded without requestId/customerId metadata"
        )

    with transaction.atomic():
        booking = services.confirm_payment(request_id, payment_intent_id, customer_id=customer_id)

        attempt = PaymentAttempt.objects.filter(
            stripe_payment_intent_id=payment_intent_id
        ).select_for_update().first()

        if attempt is not None:
            attempt.mark_event_processed(event_id)
            if attempt.status == BookingStatus.PAYMENT_FAILED.value:
                # A retried card on the same intent can succeed after a failure; captured money wins
                logger.warning(
                    "Payment succeeded after an earlier failure",
                    extra={'payment_intent_id': payment_intent_id},
                )
            if attempt.status != BookingStatus.CONFIRMED.value:
                assert_transition(attempt.status, BookingStatus.CONFIRMED, on_capture=True)
                attempt.status = BookingStatus.CONFIRMED.value
                attempt.booking = booking
                attempt.needs_reconciliation = False
                attempt.save(update_fields=['status', 'booking', 'needs_reconciliation', 'updated_at'])

    return booking


def handle_payment_failed(payment_intent, event_id):
    payment_intent_id = payment_intent.get('id')
    last_error = payment_intent.get('last_payment_error') or {}

    with transaction.atomic():
        attempt = PaymentAttempt.objects.filter(
            stripe_payment_intent_id=payment_intent_id
        ).select_for_update().first()

        if not attempt:
            logger.info("Payment failure for unknown intent", extra={'payment_intent_id': payment_intent_id})
            return None

        if not attempt.mark_event_processed(event_id):
            return attempt

        if not can_transition(attempt.status, BookingStatus.PAYMENT_FAILED):
            return attempt

        attempt.status = BookingStatus.PAYMENT_FAILED.value
        attempt.failure_reason = last_error.get('message', '')
        attempt.save(update_fields=['status', 'failure_reason', 'updated_at'])

    logger.info("Payment failed", extra={'payment_intent_id': payment_intent_id, 'event_id': event_id})
    return attempt


def flag_for_reconciliation(payment_intent, event_id, reason):
    """Mark a captured payment that could not be booked so operators can refund or rebook it."""
    payment_intent_id = payment_intent.get('id')
    if not payment_intent_id:
        return None

    with transaction.atomic():
        attempt = PaymentAttempt.objects.filter(
            stripe_payment_intent_id=payment_intent_id
        ).select_for_update().first()

        if not attempt:
            return None

        attempt.mark_event_processed(event_id)
        attempt.needs_reconciliation = True
        attempt.failure_reason = reason
        attempt.save(update_fields=['needs_reconciliation', 'failure_reason', 'updated_at'])

    return attempt
