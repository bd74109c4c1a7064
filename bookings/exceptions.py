class BookingEngineError(Exception):
    """Base class for rejected booking operations. Never retried automatically."""

    status_code = 400


class InvalidTransition(BookingEngineError):
    status_code = 409


class PolicyViolation(BookingEngineError):
    status_code = 409


class IdentifierMismatch(BookingEngineError):
    status_code = 400

    def __init__(self, message='Presented code does not match this booking'):
        super().__init__(message)


class VerificationLocked(BookingEngineError):
    status_code = 423


class MissingMetadata(BookingEngineError):
    pass


class RequestNotBookable(BookingEngineError):
    status_code = 409


class ActorNotPermitted(BookingEngineError):
    status_code = 403


class BookingNotFound(BookingEngineError):
    status_code = 404
