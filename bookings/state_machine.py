from .exceptions import InvalidTransition
from .models import BookingStatus


# Keyed by plain values so rows loaded from the database compare equal
ALLOWED = {
    BookingStatus.PENDING_PAYMENT.value: {BookingStatus.CONFIRMED.value, BookingStatus.PAYMENT_FAILED.value},
    BookingStatus.CONFIRMED.value: {
        BookingStatus.COMPLETED.value,
        BookingStatus.CANCELLED_BY_CUSTOMER.value,
        BookingStatus.CANCELLED_BY_CHEF.value,
    },
    BookingStatus.COMPLETED.value: set(),
    BookingStatus.CANCELLED_BY_CUSTOMER.value: set(),
    BookingStatus.CANCELLED_BY_CHEF.value: set(),
    BookingStatus.PAYMENT_FAILED.value: set(),
}

TERMINAL = frozenset(status for status, targets in ALLOWED.items() if not targets)

# Stripe can capture a retried intent after reporting a decline on it
ALLOWED_ON_CAPTURE = {
    BookingStatus.PAYMENT_FAILED.value: {BookingStatus.CONFIRMED.value},
}


def can_transition(current, new, on_capture=False):
    if str(new) in ALLOWED.get(str(current), set()):
        return True
    return on_capture and str(new) in ALLOWED_ON_CAPTURE.get(str(current), set())


def assert_transition(current, new, on_capture=False):
    if not can_transition(current, new, on_capture=on_capture):
        raise InvalidTransition(f"Illegal booking transition: {current} -> {new}")


def is_terminal(status):
    return str(status) in TERMINAL
