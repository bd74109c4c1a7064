from django.db import DatabaseError
from django.test import TestCase, Client
from unittest.mock import patch, MagicMock
import hashlib
import hmac
import json
import time
import stripe
from bookings.models import Booking, BookingStatus, CustomerRequest
from bookings.tests import make_proposed_request
from .models import PaymentAttempt


WEBHOOK_SECRET = 'whsec_fake_secret_for_testing'


def payment_intent_event(event_type, payment_intent_id='pi_test123', metadata=None, event_id='evt_test123',
                         **extra):
    payment_intent = {'id': payment_intent_id, 'object': 'payment_intent', 'metadata': metadata or {}}
    payment_intent.update(extra)
    return {
        'id': event_id,
        'object': 'event',
        'type': event_type,
        'data': {'object': payment_intent},
    }


def parse_payload(payload, sig_header, secret):
    return json.loads(payload)


def signed_header(payload, secret=WEBHOOK_SECRET):
    timestamp = int(time.time())
    signature = hmac.new(
        secret.encode('utf-8'), f"{timestamp}.{payload}".encode('utf-8'), hashlib.sha256
    ).hexdigest()
    return f"t={timestamp},v1={signature}"


class WebhookSignatureTest(TestCase):
    def setUp(self):
        self.client = Client()

    def test_webhook_rejects_missing_signature(self):
        payload = json.dumps({'type': 'payment_intent.succeeded'})
        response = self.client.post(
            '/api/payments/webhook/stripe/',
            data=payload,
            content_type='application/json'
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.content, b'')

    @patch('payments.views.stripe.Webhook.construct_event')
    def test_webhook_rejects_invalid_signature(self, mock_construct_event):
        mock_construct_event.side_effect = stripe.SignatureVerificationError(
            'Invalid signature', 'sig_header'
        )

        payload = json.dumps({'type': 'payment_intent.succeeded'})
        response = self.client.post(
            '/api/payments/webhook/stripe/',
            data=payload,
            content_type='application/json',
            HTTP_STRIPE_SIGNATURE='invalid_signature'
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.content, b'')

    def test_webhook_rejects_wrong_secret(self):
        customer_request = make_proposed_request()
        payload = json.dumps(payment_intent_event(
            'payment_intent.succeeded',
            metadata={'requestId': str(customer_request.id), 'customerId': 'cust_1'},
        ))
        response = self.client.post(
            '/api/payments/webhook/stripe/',
            data=payload,
            content_type='application/json',
            HTTP_STRIPE_SIGNATURE=signed_header(payload, secret='whsec_someone_else'),
        )
        self.assertEqual(response.status_code, 400)
        self.assertFalse(Booking.objects.exists())

    def test_webhook_accepts_genuine_signature(self):
        customer_request = make_proposed_request()
        payload = json.dumps(payment_intent_event(
            'payment_intent.succeeded',
            metadata={'requestId': str(customer_request.id), 'customerId': 'cust_1'},
        ))
        response = self.client.post(
            '/api/payments/webhook/stripe/',
            data=payload,
            content_type='application/json',
            HTTP_STRIPE_SIGNATURE=signed_header(payload),
        )
        self.assertEqual(response.status_code, 200)
        self.assertTrue(Booking.objects.filter(payment_intent_id='pi_test123').exists())


@patch('payments.views.stripe.Webhook.construct_event', MagicMock(side_effect=parse_payload))
class PaymentSucceededWebhookTest(TestCase):
    def setUp(self):
        self.client = Client()
        self.customer_request = make_proposed_request(pax=10, price_per_head_cents=10000)
        self.attempt = PaymentAttempt.objects.create(
            request=self.customer_request,
            customer_id='cust_1',
            amount_cents=100000,
            stripe_payment_intent_id='pi_test123',
            idempotency_key='request-key-1',
        )
        self.metadata = {'requestId': str(self.customer_request.id), 'customerId': 'cust_1'}

    def _deliver(self, event):
        return self.client.post(
            '/api/payments/webhook/stripe/',
            data=json.dumps(event),
            content_type='application/json',
            HTTP_STRIPE_SIGNATURE='t=1,v1=mocked',
        )

    def test_success_confirms_booking(self):
        response = self._deliver(payment_intent_event('payment_intent.succeeded', metadata=self.metadata))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {'received': True})

        booking = Booking.objects.get(payment_intent_id='pi_test123')
        self.assertEqual(booking.status, BookingStatus.CONFIRMED)
        self.assertEqual(booking.ledger_entry.held_escrow_cents, 50000)

        self.attempt.refresh_from_db()
        self.assertEqual(self.attempt.status, BookingStatus.CONFIRMED)
        self.assertEqual(self.attempt.booking, booking)
        self.assertIn('evt_test123', self.attempt.processed_events)

    def test_duplicate_deliveries_create_one_booking(self):
        event = payment_intent_event('payment_intent.succeeded', metadata=self.metadata)
        self._deliver(event)
        self._deliver(event)
        retried = payment_intent_event('payment_intent.succeeded', metadata=self.metadata, event_id='evt_retry')
        response = self._deliver(retried)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(Booking.objects.filter(payment_intent_id='pi_test123').count(), 1)
        self.attempt.refresh_from_db()
        self.assertEqual(self.attempt.processed_events, ['evt_test123', 'evt_retry'])

    def test_missing_metadata_is_acknowledged_and_logged(self):
        with self.assertLogs('payments.views', level='CRITICAL') as logs:
            response = self._deliver(payment_intent_event(
                'payment_intent.succeeded', metadata={'customerId': 'cust_1'}
            ))
        self.assertEqual(response.status_code, 200)
        self.assertFalse(Booking.objects.exists())
        self.assertIn('cannot be settled automatically', logs.output[0])

        self.attempt.refresh_from_db()
        self.assertTrue(self.attempt.needs_reconciliation)
        self.assertEqual(self.attempt.processed_events, ['evt_test123'])

    def test_unbookable_request_is_acknowledged(self):
        self.customer_request.active_proposal = None
        self.customer_request.save()

        with self.assertLogs('payments.views', level='CRITICAL'):
            response = self._deliver(payment_intent_event('payment_intent.succeeded', metadata=self.metadata))
        self.assertEqual(response.status_code, 200)
        self.assertFalse(Booking.objects.exists())

        self.attempt.refresh_from_db()
        self.assertTrue(self.attempt.needs_reconciliation)
        self.assertIn('proposal', self.attempt.failure_reason.lower())
        self.assertEqual(self.attempt.processed_events, ['evt_test123'])
        self.assertEqual(self.attempt.status, BookingStatus.PENDING_PAYMENT)

    def test_second_capture_for_booked_request_is_flagged(self):
        self._deliver(payment_intent_event('payment_intent.succeeded', metadata=self.metadata))
        second = PaymentAttempt.objects.create(
            request=self.customer_request,
            customer_id='cust_1',
            amount_cents=100000,
            stripe_payment_intent_id='pi_second',
            idempotency_key='request-key-2',
        )

        with self.assertLogs('payments.views', level='CRITICAL'):
            response = self._deliver(payment_intent_event(
                'payment_intent.succeeded', payment_intent_id='pi_second', event_id='evt_second',
                metadata=self.metadata,
            ))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(Booking.objects.count(), 1)

        second.refresh_from_db()
        self.assertTrue(second.needs_reconciliation)
        self.assertNotEqual(second.failure_reason, '')
        self.assertEqual(second.processed_events, ['evt_second'])
        self.assertEqual(
            list(PaymentAttempt.objects.filter(needs_reconciliation=True).values_list('id', flat=True)),
            [second.id],
        )

    @patch('payments.views.services.confirm_payment')
    def test_persistence_failure_asks_for_redelivery(self, mock_confirm):
        mock_confirm.side_effect = DatabaseError('connection lost')

        with self.assertLogs('payments.views', level='ERROR'):
            response = self._deliver(payment_intent_event('payment_intent.succeeded', metadata=self.metadata))
        self.assertEqual(response.status_code, 500)

        self.attempt.refresh_from_db()
        self.assertEqual(self.attempt.status, BookingStatus.PENDING_PAYMENT)

    def test_success_after_failure_still_books(self):
        self._deliver(payment_intent_event(
            'payment_intent.payment_failed', event_id='evt_failed',
            last_payment_error={'message': 'Your card was declined.'},
        ))
        self.attempt.refresh_from_db()
        self.assertEqual(self.attempt.status, BookingStatus.PAYMENT_FAILED)

        self._deliver(payment_intent_event('payment_intent.succeeded', metadata=self.metadata))
        self.attempt.refresh_from_db()
        self.assertEqual(self.attempt.status, BookingStatus.CONFIRMED)
        self.assertTrue(Booking.objects.filter(payment_intent_id='pi_test123').exists())

    def test_unknown_event_type_is_ignored(self):
        response = self._deliver(payment_intent_event('charge.dispute.created'))
        self.assertEqual(response.status_code, 200)
        self.assertFalse(Booking.objects.exists())


@patch('payments.views.stripe.Webhook.construct_event', MagicMock(side_effect=parse_payload))
class PaymentFailedWebhookTest(TestCase):
    def setUp(self):
        self.client = Client()
        self.customer_request = make_proposed_request()
        self.attempt = PaymentAttempt.objects.create(
            request=self.customer_request,
            customer_id='cust_1',
            amount_cents=80000,
            stripe_payment_intent_id='pi_failed',
            idempotency_key='request-key-2',
        )

    def _deliver(self, event):
        return self.client.post(
            '/api/payments/webhook/stripe/',
            data=json.dumps(event),
            content_type='application/json',
            HTTP_STRIPE_SIGNATURE='t=1,v1=mocked',
        )

    def test_failure_marks_attempt(self):
        response = self._deliver(payment_intent_event(
            'payment_intent.payment_failed', payment_intent_id='pi_failed',
            last_payment_error={'message': 'Your card was declined.'},
        ))
        self.assertEqual(response.status_code, 200)

        self.attempt.refresh_from_db()
        self.assertEqual(self.attempt.status, BookingStatus.PAYMENT_FAILED)
        self.assertEqual(self.attempt.failure_reason, 'Your card was declined.')
        self.assertFalse(Booking.objects.exists())
        self.customer_request.refresh_from_db()
        self.assertEqual(self.customer_request.status, CustomerRequest.STATUS_PROPOSED)

    def test_failure_for_unknown_intent_is_acknowledged(self):
        response = self._deliver(payment_intent_event('payment_intent.payment_failed', payment_intent_id='pi_nope'))
        self.assertEqual(response.status_code, 200)

    def test_failure_does_not_touch_confirmed_attempt(self):
        self.attempt.status = BookingStatus.CONFIRMED.value
        self.attempt.save()

        self._deliver(payment_intent_event('payment_intent.payment_failed', payment_intent_id='pi_failed'))
        self.attempt.refresh_from_db()
        self.assertEqual(self.attempt.status, BookingStatus.CONFIRMED)


class PaymentAttemptEventTest(TestCase):
    def test_event_idempotency(self):
        attempt = PaymentAttempt.objects.create(
            request=make_proposed_request(),
            customer_id='cust_1',
            amount_cents=1000,
            idempotency_key='test-key-456',
        )
        event_id = 'evt_test123'

        result1 = attempt.mark_event_processed(event_id)
        self.assertTrue(result1)
        self.assertIn(event_id, attempt.processed_events)

        result2 = attempt.mark_event_processed(event_id)
        self.assertFalse(result2)


class CreatePaymentIntentTest(TestCase):
    def setUp(self):
        self.client = Client()
        self.customer_request = make_proposed_request(pax=12, price_per_head_cents=9500)

    def _post(self, payload, actor_id='cust_1', role='customer'):
        return self.client.post(
            '/api/payments/intent/',
            data=json.dumps(payload),
            content_type='application/json',
            HTTP_X_ACTOR_ID=actor_id,
            HTTP_X_ACTOR_ROLE=role,
        )

    @patch('payments.views.stripe.PaymentIntent.create')
    def test_intent_carries_request_metadata(self, mock_create):
        mock_create.return_value = MagicMock(id='pi_new123', client_secret='pi_new123_secret_abc')

        response = self._post({'request_id': str(self.customer_request.id)})

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['client_secret'], 'pi_new123_secret_abc')
        self.assertEqual(data['amount_cents'], 114000)

        kwargs = mock_create.call_args.kwargs
        self.assertEqual(kwargs['amount'], 114000)
        self.assertEqual(kwargs['currency'], 'aud')
        self.assertEqual(kwargs['metadata']['requestId'], str(self.customer_request.id))
        self.assertEqual(kwargs['metadata']['customerId'], 'cust_1')

        attempt = PaymentAttempt.objects.get(id=data['payment_attempt_id'])
        self.assertEqual(attempt.stripe_payment_intent_id, 'pi_new123')
        self.assertEqual(attempt.status, BookingStatus.PENDING_PAYMENT)

    @patch('payments.views.stripe.PaymentIntent.retrieve')
    @patch('payments.views.stripe.PaymentIntent.create')
    def test_idempotency_key_prevents_duplicate_intents(self, mock_create, mock_retrieve):
        mock_create.return_value = MagicMock(id='pi_once', client_secret='pi_once_secret')
        mock_retrieve.return_value = MagicMock(id='pi_once', client_secret='pi_once_secret')
        payload = {'request_id': str(self.customer_request.id), 'idempotency_key': 'checkout-abc'}

        data1 = self._post(payload).json()
        data2 = self._post(payload).json()

        self.assertEqual(data1['payment_attempt_id'], data2['payment_attempt_id'])
        self.assertEqual(data2['client_secret'], 'pi_once_secret')
        self.assertEqual(mock_create.call_count, 1)
        self.assertEqual(PaymentAttempt.objects.count(), 1)

    def test_only_the_requesting_customer_can_pay(self):
        response = self._post({'request_id': str(self.customer_request.id)}, actor_id='cust_2')
        self.assertEqual(response.status_code, 404)

        response = self._post({'request_id': str(self.customer_request.id)}, actor_id='chef_1', role='chef')
        self.assertEqual(response.status_code, 403)

    def test_amount_below_minimum_rejected(self):
        cheap_request = make_proposed_request(pax=1, price_per_head_cents=49)
        response = self._post({'request_id': str(cheap_request.id)})
        self.assertEqual(response.status_code, 400)
        self.assertFalse(PaymentAttempt.objects.exists())

    def test_request_without_proposal_conflicts(self):
        self.customer_request.active_proposal = None
        self.customer_request.save()
        response = self._post({'request_id': str(self.customer_request.id)})
        self.assertEqual(response.status_code, 409)

    def test_missing_request_id(self):
        response = self._post({})
        self.assertEqual(response.status_code, 400)
        self.assertIn('request_id', response.json()['error'])

    @patch('payments.views.stripe.PaymentIntent.create')
    def test_stripe_error_marks_attempt_failed(self, mock_create):
        mock_create.side_effect = stripe.StripeError('Card network unavailable')

        response = self._post({'request_id': str(self.customer_request.id)})

        self.assertEqual(response.status_code, 400)
        attempt = PaymentAttempt.objects.get()
        self.assertEqual(attempt.status, BookingStatus.PAYMENT_FAILED)
        self.assertIn('Card network unavailable', attempt.failure_reason)
