class MessagingError(Exception):
    """Base class for errors raised by the messaging core."""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(MessagingError):
    status_code = 400


class EmptyPayload(ValidationError):
    pass


class ConfirmationRequired(ValidationError):
    status_code = 409


class Unauthenticated(MessagingError):
    status_code = 401


class Forbidden(MessagingError):
    status_code = 403


class NotFound(MessagingError):
    status_code = 404


class PayloadTooLarge(MessagingError):
    status_code = 413


class UnsupportedContentType(MessagingError):
    status_code = 415


class TransientStoreError(MessagingError):
    """
    Failure talking to the backing store or object storage.

    Carries the operation name and target id so callers can decide
    between retrying the whole operation and giving up.
    """

    status_code = 503

    def __init__(self, operation: str, target: str = None, cause: Exception = None):
        message = f"{operation} failed"
        if target is not None:
            message += f" for {target}"
        if cause is not None:
            message += f": {cause}"
        super().__init__(message)
        self.operation = operation
        self.target = target
        self.cause = cause
