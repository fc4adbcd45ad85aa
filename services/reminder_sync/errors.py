"""Error taxonomy for the reminder sync agent."""

from typing import Optional


class ReminderSyncError(Exception):
    """Base class for all reminder sync failures."""


class CredentialUnavailable(ReminderSyncError):
    """No session credential could be read within the maximum wait."""


class RetryableError(ReminderSyncError):
    """A single transport attempt failed in a way worth retrying."""


class TransportExhausted(ReminderSyncError):
    """Every transport attempt failed."""

    def __init__(self, last_error: Optional[Exception], attempts: int):
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(f"Request failed after {attempts} attempts: {last_error}")


class ProtocolError(ReminderSyncError):
    """The remote API answered with something we cannot parse."""


class UnexpectedResponseShape(ProtocolError):
    """The response parsed but did not match the expected contract."""


class ValidationError(ReminderSyncError):
    """The triggering field does not hold an acceptable due date."""

    INVALID_FORMAT = "invalid format"
    IN_THE_PAST = "in the past"

    def __init__(self, value: str, reason: str):
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid service due date '{value}': {reason}")
