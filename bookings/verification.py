"""
On-site completion check.

The customer's device renders the booking id as a QR code; the chef either
scans it or types it in. Both paths end up in ``verify``.
"""

import hmac

from django.conf import settings

from .exceptions import VerificationLocked


def verify(booking, presented_identifier):
    if not presented_identifier or not isinstance(presented_identifier, str):
        return False
    expected = str(booking.id).encode('utf-8')
    presented = presented_identifier.encode('utf-8')
    # compare_digest does not short-circuit on the first differing byte
    return hmac.compare_digest(expected, presented)


def ensure_attempts_remaining(booking):
    limit = settings.COMPLETION_MAX_FAILED_ATTEMPTS
    if limit and booking.failed_verification_attempts >= limit:
        raise VerificationLocked('Too many failed completion attempts for this booking')
