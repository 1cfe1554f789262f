"""
Error taxonomy for the realtime layer.

Every failure is handled at the boundary of the operation that detected it:
socket handlers turn these into `message-error` frames, HTTP routes into
status codes. A recipient with no live connection is not an error and has
no exception type.
"""


class EventValidationError(Exception):
    """An inbound event is malformed or missing required fields."""

    retryable = False


class PersistenceFailure(Exception):
    """
    A durable write did not complete.

    retryable is False only for structural problems (integrity or
    duplicate-key violations) that would fail again unchanged.
    """

    def __init__(self, message: str, retryable: bool = True):
        super().__init__(message)
        self.retryable = retryable


class NotFoundError(Exception):
    """The referenced record does not exist or belongs to another user."""
