import json
import logging
from django.db import DatabaseError
from django.http import JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_http_methods
from .actors import ROLE_ADMIN, ROLE_CHEF, actor_from_request
from .exceptions import BookingEngineError
from .models import CalendarEvent
from . import services


logger = logging.getLogger(__name__)

CANCEL_INITIATORS = ('customer', 'chef')


def _error(message, status):
    return JsonResponse({'error': message}, status=status)


def _engine_error(e):
    return _error(str(e), e.status_code)


def _unavailable():
    return JsonResponse({'error': 'Temporarily unavailable, please retry', 'retryable': True}, status=503)


def _booking_payload(booking, actor):
    data = {
        'booking_id': str(booking.id),
        'customer_name': booking.customer_name,
        'chef_name': booking.chef_name,
        'event_title': booking.event_title,
        'menu_title': booking.menu_title,
        'event_date': booking.event_date.isoformat(),
        'location': booking.location,
        'pax': booking.pax,
        'price_per_head_cents': booking.price_per_head_cents,
        'total_price_cents': booking.total_price_cents,
        'currency': booking.currency,
        'status': booking.status,
        'status_display': booking.get_status_display(),
        'qr_code_scanned_at': booking.qr_code_scanned_at.isoformat() if booking.qr_code_scanned_at else None,
    }
    entry = getattr(booking, 'ledger_entry', None)
    if entry is not None:
        # Each party sees only its own figure
        if actor.role in (ROLE_CHEF, ROLE_ADMIN):
            data['chef_compensation_cents'] = entry.chef_compensation_cents
        if actor.role != ROLE_CHEF:
            data['refund_amount_cents'] = entry.refund_cents
    return data


def _read_json(request):
    try:
        return json.loads(request.body or b'{}')
    except json.JSONDecodeError:
        return None


@require_http_methods(["GET"])
def get_booking(request, booking_id):
    actor = actor_from_request(request)
    if actor is None:
        return _error('Missing actor context', 401)

    try:
        booking = services.get_booking_for_actor(booking_id, actor)
    except BookingEngineError as e:
        return _engine_error(e)
    return JsonResponse(_booking_payload(booking, actor))


@csrf_exempt
@require_http_methods(["POST"])
def record_completion(request, booking_id):
    actor = actor_from_request(request)
    if actor is None:
        return _error('Missing actor context', 401)

    data = _read_json(request)
    if data is None:
        return _error('Invalid JSON', 400)

    presented_identifier = data.get('presented_identifier')
    if not presented_identifier:
        return _error('Missing required field: presented_identifier', 400)

    try:
        booking = services.record_completion(booking_id, presented_identifier, actor=actor)
    except BookingEngineError as e:
        return _engine_error(e)
    except DatabaseError:
        logger.exception("Database error while completing booking", extra={'booking_id': str(booking_id)})
        return _unavailable()

    return JsonResponse({'booking_id': str(booking.id), 'status': booking.status})


@csrf_exempt
@require_http_methods(["POST"])
def cancel_booking(request, booking_id):
    actor = actor_from_request(request)
    if actor is None:
        return _error('Missing actor context', 401)

    data = _read_json(request)
    if data is None:
        return _error('Invalid JSON', 400)

    # Admins cancel on behalf of a named party; everyone else cancels as themselves
    initiator = data.get('initiator') if actor.role == ROLE_ADMIN else actor.role
    if initiator not in CANCEL_INITIATORS:
        return _error('initiator must be one of: customer, chef', 400)

    try:
        booking, outcome = services.cancel(booking_id, initiator, actor=actor)
    except BookingEngineError as e:
        return _engine_error(e)
    except DatabaseError:
        logger.exception("Database error while cancelling booking", extra={'booking_id': str(booking_id)})
        return _unavailable()

    response = {
        'booking_id': str(booking.id),
        'status': booking.status,
        'status_display': booking.get_status_display(),
    }
    if actor.role == ROLE_CHEF:
        response['chef_compensation_cents'] = outcome.chef_compensation
    else:
        response['refund_amount_cents'] = outcome.refund_to_customer
    return JsonResponse(response)


@require_http_methods(["GET"])
def chef_calendar(request, chef_id):
    actor = actor_from_request(request)
    if actor is None:
        return _error('Missing actor context', 401)
    if actor.role != ROLE_ADMIN and not (actor.role == ROLE_CHEF and actor.actor_id == chef_id):
        return _error('Not permitted to view this calendar', 403)

    events = CalendarEvent.objects.filter(chef_id=chef_id)
    return JsonResponse({
        'chef_id': chef_id,
        'events': [
            {
                'id': str(event.id),
                'date': event.date.isoformat(),
                'title': event.title,
                'customer_name': event.customer_name,
                'pax': event.pax,
                'menu_name': event.menu_name,
                'price_per_head_cents': event.price_per_head_cents,
                'location': event.location,
                'notes': event.notes,
                'status': event.status,
            }
            for event in events
        ],
    })
