from datetime import datetime, timedelta, timezone as dt_timezone
from io import StringIO
from django.core.management import call_command
from django.test import SimpleTestCase, TestCase, Client, override_settings
from django.utils import timezone
from unittest.mock import patch
import json
from .actors import Actor
from .exceptions import (
    ActorNotPermitted,
    IdentifierMismatch,
    InvalidTransition,
    PolicyViolation,
    RequestNotBookable,
    VerificationLocked,
)
from .ledger import compute_initial_split, release_escrow, settle_disposition
from .models import Booking, BookingStatus, CalendarEvent, CustomerRequest, LedgerEntry, Proposal
from .policy import Initiator, days_until_event, evaluate_cancellation
from .state_machine import assert_transition, can_transition, is_terminal
from .verification import verify
from . import services


def make_proposed_request(customer_id='cust_1', chef_id='chef_1', pax=10, price_per_head_cents=8000,
                          event_date=None):
    event_date = event_date or timezone.now() + timedelta(days=30)
    customer_request = CustomerRequest.objects.create(
        customer_id=customer_id,
        customer_name='Alice Customer',
        event_type='Birthday Dinner',
        budget_cents=100000,
        cuisine_preference='Italian',
        pax=pax,
        event_date=event_date,
        location='Sydney',
        notes='One vegetarian guest',
        status=CustomerRequest.STATUS_PROPOSED,
    )
    proposal = Proposal.objects.create(
        request=customer_request,
        chef_id=chef_id,
        chef_name='Bob Chef',
        menu_title='Tuscan Feast',
        price_per_head_cents=price_per_head_cents,
    )
    customer_request.active_proposal = proposal
    customer_request.save(update_fields=['active_proposal'])
    return customer_request


CUSTOMER = Actor(actor_id='cust_1', role='customer')
CHEF = Actor(actor_id='chef_1', role='chef')
ADMIN = Actor(actor_id='ops_1', role='admin')


class PolicyEvaluatorTest(SimpleTestCase):
    def test_customer_cancels_more_than_twenty_days_out(self):
        outcome = evaluate_cancellation(Initiator.CUSTOMER, 25, 80000)
        self.assertEqual(outcome.refund_to_customer, 40000)
        self.assertEqual(outcome.chef_compensation, 0)
        self.assertEqual(outcome.platform_compensation, 0)
        self.assertEqual(outcome.held_for_disposition, 40000)
        self.assertFalse(outcome.penalty_review_required)

    def test_customer_cancels_within_twenty_days(self):
        outcome = evaluate_cancellation(Initiator.CUSTOMER, 10, 80000)
        self.assertEqual(outcome.refund_to_customer, 16000)
        self.assertEqual(outcome.chef_compensation, 12000)
        self.assertEqual(outcome.platform_compensation, 12000)
        self.assertEqual(outcome.held_for_disposition, 40000)

    def test_exactly_twenty_days_is_late(self):
        outcome = evaluate_cancellation(Initiator.CUSTOMER, 20, 80000)
        self.assertEqual(outcome.rule, 'customer_late_cancellation')
        outcome = evaluate_cancellation(Initiator.CUSTOMER, 21, 80000)
        self.assertEqual(outcome.rule, 'customer_early_cancellation')

    def test_past_event_gets_late_rule(self):
        outcome = evaluate_cancellation(Initiator.CUSTOMER, -3, 80000)
        self.assertEqual(outcome.refund_to_customer, 16000)

    def test_chef_cancellation_refunds_everything(self):
        for days in (-5, 0, 10, 100):
            outcome = evaluate_cancellation(Initiator.CHEF, days, 80000)
            self.assertEqual(outcome.refund_to_customer, 80000)
            self.assertEqual(outcome.chef_compensation, 0)
            self.assertEqual(outcome.platform_compensation, 0)
            self.assertTrue(outcome.penalty_review_required)

    def test_outcomes_never_exceed_total(self):
        for total in list(range(0, 500)) + [79999, 80001, 123457]:
            for initiator, days in ((Initiator.CHEF, 5), (Initiator.CUSTOMER, 30), (Initiator.CUSTOMER, 3)):
                outcome = evaluate_cancellation(initiator, days, total)
                paid_out = outcome.refund_to_customer + outcome.chef_compensation + outcome.platform_compensation
                self.assertLessEqual(paid_out, total)
                self.assertEqual(outcome.total, total)
                self.assertGreaterEqual(outcome.held_for_disposition, 0)

    def test_unknown_initiator_rejected(self):
        with self.assertRaises(ValueError):
            evaluate_cancellation('admin', 10, 80000)

    def test_days_until_event_floors(self):
        now = timezone.now()
        self.assertEqual(days_until_event(now + timedelta(days=10, hours=-1), now), 9)
        self.assertEqual(days_until_event(now + timedelta(days=10), now), 10)
        self.assertEqual(days_until_event(now - timedelta(hours=1), now), -1)


class InitialSplitTest(SimpleTestCase):
    def test_thousand_dollar_booking(self):
        split = compute_initial_split(100000)
        self.assertEqual(split.immediate_chef, 46000)
        self.assertEqual(split.immediate_platform, 4000)
        self.assertEqual(split.held_escrow, 50000)

    def test_half_cents_round_to_even(self):
        # 46% of 75 cents is 34.5
        self.assertEqual(compute_initial_split(75).immediate_chef, 34)
        # 46% of 25 cents is 11.5
        self.assertEqual(compute_initial_split(25).immediate_chef, 12)

    def test_split_always_sums_to_total(self):
        for total in list(range(0, 2000)) + [99999, 100001, 7654321]:
            split = compute_initial_split(total)
            self.assertEqual(split.immediate_chef + split.immediate_platform + split.held_escrow, total)
            self.assertGreaterEqual(split.held_escrow, 0)

    def test_negative_total_rejected(self):
        with self.assertRaises(ValueError):
            compute_initial_split(-1)


class StateMachineTest(SimpleTestCase):
    def test_happy_path_transitions(self):
        self.assertTrue(can_transition(BookingStatus.PENDING_PAYMENT, BookingStatus.CONFIRMED))
        self.assertTrue(can_transition('confirmed', 'completed'))
        self.assertTrue(can_transition(BookingStatus.CONFIRMED, BookingStatus.CANCELLED_BY_CHEF))
        self.assertTrue(can_transition(BookingStatus.PENDING_PAYMENT, BookingStatus.PAYMENT_FAILED))

    def test_terminal_states_accept_nothing(self):
        terminal = [
            BookingStatus.COMPLETED,
            BookingStatus.CANCELLED_BY_CUSTOMER,
            BookingStatus.CANCELLED_BY_CHEF,
            BookingStatus.PAYMENT_FAILED,
        ]
        for status in terminal:
            self.assertTrue(is_terminal(status))
            for target in BookingStatus.values:
                with self.assertRaises(InvalidTransition):
                    assert_transition(status, target)
        self.assertFalse(is_terminal(BookingStatus.CONFIRMED))
        self.assertFalse(is_terminal(BookingStatus.PENDING_PAYMENT))

    def test_cannot_skip_payment(self):
        with self.assertRaises(InvalidTransition):
            assert_transition(BookingStatus.PENDING_PAYMENT, BookingStatus.COMPLETED)

    def test_capture_can_confirm_a_failed_payment(self):
        self.assertFalse(can_transition(BookingStatus.PAYMENT_FAILED, BookingStatus.CONFIRMED))
        self.assertTrue(can_transition(BookingStatus.PAYMENT_FAILED, BookingStatus.CONFIRMED, on_capture=True))
        assert_transition(BookingStatus.PAYMENT_FAILED, BookingStatus.CONFIRMED, on_capture=True)
        with self.assertRaises(InvalidTransition):
            assert_transition(BookingStatus.COMPLETED, BookingStatus.CONFIRMED, on_capture=True)


class CompletionVerifierTest(SimpleTestCase):
    def setUp(self):
        self.booking = Booking(pax=1, price_per_head_cents=1, total_price_cents=1)

    def test_exact_match(self):
        self.assertTrue(verify(self.booking, str(self.booking.id)))

    def test_single_character_difference(self):
        booking_id = str(self.booking.id)
        altered = booking_id[:-1] + ('0' if booking_id[-1] != '0' else '1')
        self.assertFalse(verify(self.booking, altered))

    def test_case_sensitive_and_untrimmed(self):
        self.assertFalse(verify(self.booking, str(self.booking.id).upper()))
        self.assertFalse(verify(self.booking, f" {self.booking.id}"))

    def test_empty_or_non_string(self):
        self.assertFalse(verify(self.booking, ''))
        self.assertFalse(verify(self.booking, None))
        self.assertFalse(verify(self.booking, self.booking.id))
        self.assertFalse(verify(self.booking, 'wrong-id-ü'))


class ConfirmPaymentTest(TestCase):
    def setUp(self):
        self.customer_request = make_proposed_request(pax=10, price_per_head_cents=10000)

    def test_confirm_creates_booking_ledger_and_calendar(self):
        booking = services.confirm_payment(self.customer_request.id, 'pi_test123', customer_id='cust_1')

        self.assertEqual(booking.status, BookingStatus.CONFIRMED)
        self.assertEqual(booking.total_price_cents, 100000)
        self.assertEqual(booking.chef_id, 'chef_1')
        self.assertEqual(booking.event_title, 'Tuscan Feast')
        self.assertIsNone(booking.qr_code_scanned_at)

        entry = LedgerEntry.objects.get(booking=booking)
        self.assertEqual(entry.immediate_chef_cents, 46000)
        self.assertEqual(entry.immediate_platform_cents, 4000)
        self.assertEqual(entry.held_escrow_cents, 50000)
        self.assertIsNone(entry.released_at)

        self.customer_request.refresh_from_db()
        self.assertEqual(self.customer_request.status, CustomerRequest.STATUS_BOOKED)

        event = CalendarEvent.objects.get(id=booking.id)
        self.assertEqual(event.chef_id, 'chef_1')
        self.assertEqual(event.status, CalendarEvent.STATUS_CONFIRMED)
        self.assertEqual(event.pax, 10)
        self.assertEqual(event.notes, 'One vegetarian guest')

    def test_calendar_uses_local_event_day(self):
        # 08:00 in Sydney is still the previous day in UTC
        morning = datetime(2030, 3, 14, 21, 0, tzinfo=dt_timezone.utc)
        customer_request = make_proposed_request(customer_id='cust_9', event_date=morning)
        booking = services.confirm_payment(customer_request.id, 'pi_morning')

        event = CalendarEvent.objects.get(id=booking.id)
        self.assertEqual(event.date.isoformat(), '2030-03-15')

    def test_repeated_confirmation_is_idempotent(self):
        first = services.confirm_payment(self.customer_request.id, 'pi_test123')
        for _ in range(3):
            again = services.confirm_payment(self.customer_request.id, 'pi_test123')
            self.assertEqual(again.id, first.id)
        self.assertEqual(Booking.objects.filter(payment_intent_id='pi_test123').count(), 1)
        self.assertEqual(LedgerEntry.objects.count(), 1)
        self.assertEqual(CalendarEvent.objects.count(), 1)

    def test_concurrent_loser_returns_winner(self):
        winner = services.confirm_payment(self.customer_request.id, 'pi_race')
        # The loser read the request before the winner committed
        CustomerRequest.objects.filter(id=self.customer_request.id).update(status=CustomerRequest.STATUS_PROPOSED)

        with patch('bookings.services.find_booking_for_intent', side_effect=[None, None, winner]):
            loser = services.confirm_payment(self.customer_request.id, 'pi_race')

        self.assertEqual(loser.id, winner.id)
        self.assertEqual(Booking.objects.count(), 1)
        self.assertEqual(LedgerEntry.objects.count(), 1)

    def test_request_without_proposal_is_rejected(self):
        self.customer_request.active_proposal = None
        self.customer_request.save()

        with self.assertRaises(RequestNotBookable):
            services.confirm_payment(self.customer_request.id, 'pi_test123')
        self.assertFalse(Booking.objects.exists())
        self.assertFalse(LedgerEntry.objects.exists())

    def test_unknown_request_is_rejected(self):
        with self.assertRaises(RequestNotBookable):
            services.confirm_payment('00000000-0000-0000-0000-000000000000', 'pi_test123')
        with self.assertRaises(RequestNotBookable):
            services.confirm_payment('not-a-uuid', 'pi_test123')

    def test_customer_mismatch_is_rejected(self):
        with self.assertRaises(RequestNotBookable):
            services.confirm_payment(self.customer_request.id, 'pi_test123', customer_id='someone_else')
        self.customer_request.refresh_from_db()
        self.assertEqual(self.customer_request.status, CustomerRequest.STATUS_PROPOSED)

    def test_second_payment_for_booked_request_is_rejected(self):
        services.confirm_payment(self.customer_request.id, 'pi_first')
        with self.assertRaises(RequestNotBookable):
            services.confirm_payment(self.customer_request.id, 'pi_second')
        self.assertEqual(Booking.objects.count(), 1)

    @override_settings(BOOKING_STATUS_CALLBACK_URL='https://hooks.example.com/bookings')
    @patch('bookings.services.requests.post')
    def test_status_callback_posted_after_commit(self, mock_post):
        with self.captureOnCommitCallbacks(execute=True):
            booking = services.confirm_payment(self.customer_request.id, 'pi_test123')

        mock_post.assert_called_once_with(
            'https://hooks.example.com/bookings',
            json={'booking_id': str(booking.id), 'status': 'confirmed', 'event': 'confirmed'},
            timeout=5,
        )


class RecordCompletionTest(TestCase):
    def setUp(self):
        customer_request = make_proposed_request()
        self.booking = services.confirm_payment(customer_request.id, 'pi_complete')

    def test_matching_identifier_completes_and_releases_escrow(self):
        booking = services.record_completion(self.booking.id, str(self.booking.id), actor=CHEF)

        self.assertEqual(booking.status, BookingStatus.COMPLETED)
        self.assertIsNotNone(booking.qr_code_scanned_at)
        entry = LedgerEntry.objects.get(booking=booking)
        self.assertIsNotNone(entry.released_at)
        self.assertEqual(CalendarEvent.objects.get(id=booking.id).status, CalendarEvent.STATUS_COMPLETED)

    def test_wrong_identifier_changes_nothing(self):
        with self.assertRaises(IdentifierMismatch) as ctx:
            services.record_completion(self.booking.id, 'wrong-id', actor=CHEF)
        self.assertNotIn(str(self.booking.id), str(ctx.exception))

        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, BookingStatus.CONFIRMED)
        self.assertIsNone(self.booking.qr_code_scanned_at)
        self.assertEqual(self.booking.failed_verification_attempts, 1)
        self.assertIsNone(LedgerEntry.objects.get(booking=self.booking).released_at)

    def test_completion_only_once(self):
        services.record_completion(self.booking.id, str(self.booking.id))
        with self.assertRaises(InvalidTransition):
            services.record_completion(self.booking.id, str(self.booking.id))

    def test_release_escrow_is_idempotent(self):
        now = timezone.now()
        self.assertTrue(release_escrow(self.booking, now))
        self.assertFalse(release_escrow(self.booking, now + timedelta(minutes=5)))
        self.assertEqual(LedgerEntry.objects.get(booking=self.booking).released_at, now)

    def test_only_the_booked_chef_can_complete(self):
        with self.assertRaises(ActorNotPermitted):
            services.record_completion(self.booking.id, str(self.booking.id), actor=Actor('chef_2', 'chef'))
        with self.assertRaises(ActorNotPermitted):
            services.record_completion(self.booking.id, str(self.booking.id), actor=CUSTOMER)
        booking = services.record_completion(self.booking.id, str(self.booking.id), actor=ADMIN)
        self.assertEqual(booking.status, BookingStatus.COMPLETED)

    @override_settings(COMPLETION_MAX_FAILED_ATTEMPTS=2)
    def test_lockout_after_repeated_mismatches(self):
        for _ in range(2):
            with self.assertRaises(IdentifierMismatch):
                services.record_completion(self.booking.id, 'guess', actor=CHEF)
        with self.assertRaises(VerificationLocked):
            services.record_completion(self.booking.id, str(self.booking.id), actor=CHEF)
        self.booking.refresh_from_db()
        self.assertEqual(self.booking.status, BookingStatus.CONFIRMED)


class CancelBookingTest(TestCase):
    def setUp(self):
        self.now = timezone.now()

    def _confirmed_booking(self, days_out, intent='pi_cancel'):
        customer_request = make_proposed_request(
            pax=10, price_per_head_cents=8000, event_date=self.now + timedelta(days=days_out, hours=1)
        )
        return services.confirm_payment(customer_request.id, intent)

    def test_customer_cancels_early(self):
        booking = self._confirmed_booking(25)
        booking, outcome = services.cancel(booking.id, 'customer', now=self.now, actor=CUSTOMER)

        self.assertEqual(booking.status, BookingStatus.CANCELLED_BY_CUSTOMER)
        self.assertIsNotNone(booking.cancelled_at)
        self.assertEqual(outcome.refund_to_customer, 40000)
        entry = LedgerEntry.objects.get(booking=booking)
        self.assertEqual(entry.refund_cents, 40000)
        self.assertEqual(entry.chef_compensation_cents, 0)
        self.assertEqual(entry.held_for_disposition_cents, 40000)
        self.assertEqual(entry.disposition_status, LedgerEntry.DISPOSITION_UNRESOLVED)
        self.assertEqual(CalendarEvent.objects.get(id=booking.id).status, CalendarEvent.STATUS_CANCELLED)

    def test_customer_cancels_late(self):
        booking = self._confirmed_booking(10)
        booking, outcome = services.cancel(booking.id, Initiator.CUSTOMER, now=self.now)

        entry = LedgerEntry.objects.get(booking=booking)
        self.assertEqual(entry.refund_cents, 16000)
        self.assertEqual(entry.chef_compensation_cents, 12000)
        self.assertEqual(entry.platform_compensation_cents, 12000)
        self.assertEqual(entry.held_for_disposition_cents, 40000)

    def test_chef_cancels(self):
        booking = self._confirmed_booking(3)
        booking, outcome = services.cancel(booking.id, 'chef', now=self.now, actor=CHEF)

        self.assertEqual(booking.status, BookingStatus.CANCELLED_BY_CHEF)
        entry = LedgerEntry.objects.get(booking=booking)
        self.assertEqual(entry.refund_cents, 80000)
        self.assertTrue(entry.penalty_review_required)
        self.assertEqual(entry.disposition_status, LedgerEntry.DISPOSITION_NOT_APPLICABLE)

    def test_completed_booking_cannot_be_cancelled(self):
        booking = self._confirmed_booking(10)
        services.record_completion(booking.id, str(booking.id))
        with self.assertRaises(PolicyViolation):
            services.cancel(booking.id, 'customer', now=self.now)
        self.assertIsNone(LedgerEntry.objects.get(booking=booking).refund_cents)

    def test_cancelled_booking_is_terminal(self):
        booking = self._confirmed_booking(10)
        services.cancel(booking.id, 'customer', now=self.now)
        with self.assertRaises(PolicyViolation):
            services.cancel(booking.id, 'chef', now=self.now)
        with self.assertRaises(InvalidTransition):
            services.record_completion(booking.id, str(booking.id))
        booking.refresh_from_db()
        self.assertEqual(booking.status, BookingStatus.CANCELLED_BY_CUSTOMER)

    def test_customer_cannot_cancel_as_chef(self):
        booking = self._confirmed_booking(10)
        with self.assertRaises(ActorNotPermitted):
            services.cancel(booking.id, 'chef', now=self.now, actor=CUSTOMER)
        with self.assertRaises(ActorNotPermitted):
            services.cancel(booking.id, 'customer', now=self.now, actor=Actor('cust_2', 'customer'))

    def test_operator_settles_held_funds(self):
        booking = self._confirmed_booking(25)
        services.cancel(booking.id, 'customer', now=self.now)
        entry = LedgerEntry.objects.get(booking=booking)

        self.assertTrue(settle_disposition(entry, note='Paid to platform'))
        self.assertFalse(settle_disposition(entry))
        entry.refresh_from_db()
        self.assertEqual(entry.disposition_status, LedgerEntry.DISPOSITION_SETTLED)

    def test_stale_settlement_does_not_overwrite_note(self):
        booking = self._confirmed_booking(25)
        services.cancel(booking.id, 'customer', now=self.now)
        first = LedgerEntry.objects.get(booking=booking)
        second = LedgerEntry.objects.get(booking=booking)

        self.assertTrue(settle_disposition(first, note='Refunded to customer'))
        self.assertFalse(settle_disposition(second, note='Paid to platform'))
        first.refresh_from_db()
        self.assertEqual(first.disposition_note, 'Refunded to customer')


class BookingApiTest(TestCase):
    def setUp(self):
        self.client = Client()
        customer_request = make_proposed_request(event_date=timezone.now() + timedelta(days=10, hours=1))
        self.booking = services.confirm_payment(customer_request.id, 'pi_api')

    def _post(self, path, payload, actor):
        return self.client.post(
            path,
            data=json.dumps(payload),
            content_type='application/json',
            HTTP_X_ACTOR_ID=actor.actor_id,
            HTTP_X_ACTOR_ROLE=actor.role,
        )

    def test_complete_endpoint(self):
        response = self._post(
            f'/api/bookings/{self.booking.id}/complete/',
            {'presented_identifier': str(self.booking.id)},
            CHEF,
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['status'], 'completed')

    def test_complete_endpoint_hides_correct_identifier(self):
        response = self._post(
            f'/api/bookings/{self.booking.id}/complete/',
            {'presented_identifier': 'wrong-id'},
            CHEF,
        )
        self.assertEqual(response.status_code, 400)
        self.assertNotIn(str(self.booking.id), response.content.decode())

    def test_cancel_endpoint_returns_customer_refund(self):
        response = self._post(f'/api/bookings/{self.booking.id}/cancel/', {}, CUSTOMER)
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertEqual(data['status'], 'cancelled_by_customer')
        self.assertEqual(data['refund_amount_cents'], 16000)
        self.assertNotIn('chef_compensation_cents', data)

    def test_cancel_twice_conflicts(self):
        self._post(f'/api/bookings/{self.booking.id}/cancel/', {}, CUSTOMER)
        response = self._post(f'/api/bookings/{self.booking.id}/cancel/', {}, CHEF)
        self.assertEqual(response.status_code, 409)

    def test_missing_actor_context(self):
        response = self.client.post(
            f'/api/bookings/{self.booking.id}/cancel/',
            data=json.dumps({}),
            content_type='application/json',
        )
        self.assertEqual(response.status_code, 401)

    def test_get_booking_for_parties_only(self):
        response = self.client.get(
            f'/api/bookings/{self.booking.id}/', HTTP_X_ACTOR_ID='cust_1', HTTP_X_ACTOR_ROLE='customer'
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()['total_price_cents'], 80000)

        response = self.client.get(
            f'/api/bookings/{self.booking.id}/', HTTP_X_ACTOR_ID='cust_9', HTTP_X_ACTOR_ROLE='customer'
        )
        self.assertEqual(response.status_code, 403)

    def test_chef_calendar(self):
        response = self.client.get('/api/bookings/calendar/chef_1/', HTTP_X_ACTOR_ID='chef_1', HTTP_X_ACTOR_ROLE='chef')
        self.assertEqual(response.status_code, 200)
        events = response.json()['events']
        self.assertEqual(len(events), 1)
        self.assertEqual(events[0]['id'], str(self.booking.id))

        response = self.client.get('/api/bookings/calendar/chef_1/', HTTP_X_ACTOR_ID='chef_2', HTTP_X_ACTOR_ROLE='chef')
        self.assertEqual(response.status_code, 403)

    def test_unknown_booking(self):
        response = self._post(
            '/api/bookings/00000000-0000-0000-0000-000000000000/complete/',
            {'presented_identifier': 'x'},
            CHEF,
        )
        self.assertEqual(response.status_code, 404)


class RebuildCalendarTest(TestCase):
    def test_rebuild_restores_projection(self):
        customer_request = make_proposed_request()
        booking = services.confirm_payment(customer_request.id, 'pi_rebuild')
        services.cancel(booking.id, 'chef')
        CalendarEvent.objects.all().delete()

        out = StringIO()
        call_command('rebuild_calendar', stdout=out)

        event = CalendarEvent.objects.get(id=booking.id)
        self.assertEqual(event.status, CalendarEvent.STATUS_CANCELLED)
        self.assertIn('Rebuilt 1 calendar entries', out.getvalue())

    def test_rebuild_single_chef(self):
        services.confirm_payment(make_proposed_request(chef_id='chef_1').id, 'pi_one')
        services.confirm_payment(make_proposed_request(chef_id='chef_2').id, 'pi_two')
        CalendarEvent.objects.all().delete()

        call_command('rebuild_calendar', '--chef', 'chef_2', stdout=StringIO())
        self.assertEqual(list(CalendarEvent.objects.values_list('chef_id', flat=True)), ['chef_2'])
