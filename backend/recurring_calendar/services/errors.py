"""
Error types raised by the recurrence engine.
"""

from enum import Enum


class ValidationErrorKind(str, Enum):
    INVALID_INTERVAL = 'INVALID_INTERVAL'
    MISSING_WEEKDAYS = 'MISSING_WEEKDAYS'
    AMBIGUOUS_TERMINATION = 'AMBIGUOUS_TERMINATION'
    NON_POSITIVE_COUNT = 'NON_POSITIVE_COUNT'
    UNTIL_BEFORE_ANCHOR = 'UNTIL_BEFORE_ANCHOR'
    UNKNOWN_PATTERN = 'UNKNOWN_PATTERN'
    UNKNOWN_WEEKDAY = 'UNKNOWN_WEEKDAY'


class RecurrenceError(Exception):
    """Base class for recoverable recurrence engine errors"""


class RuleValidationError(RecurrenceError):
    """A recurrence rule was rejected at authoring time"""

    def __init__(self, kind: ValidationErrorKind, message: str):
        super().__init__(message)
        self.kind = kind
        self.message = message

    def as_dict(self):
        return {'kind': self.kind.value, 'message': self.message}


class GenerationBoundsExceeded(RecurrenceError):
    """Raised instead of enumerating more occurrences than the configured limit"""

    def __init__(self, limit: int):
        super().__init__(
            f"Occurrence generation exceeded the limit of {limit} occurrences; "
            "request a smaller window"
        )
        self.limit = limit


class OverrideIndexStale(UserWarning):
    """An override was written against a different version of the series rule"""
