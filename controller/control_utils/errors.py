"""
Copyright 2025 AUMOVIO. All rights reserved.
"""


class TrackingError(Exception):
    """Base class of every error raised by the path-tracking controller."""


class InputMalformedError(TrackingError, ValueError):
    """Caller supplied data that cannot be used (non-numeric, non-finite, wrong shape)."""


class MalformedRecordError(InputMalformedError):
    """A roadmap record could not be parsed into a waypoint."""

    def __init__(self, line_number: int, record: str, reason: str):
        self.line_number = line_number
        self.record = record
        self.reason = reason
        super().__init__(f"malformed roadmap record at line {line_number} ({record!r}): {reason}")


class FormulationError(TrackingError, RuntimeError):
    """
    The NLP callback contract was violated.

    Structure, bounds and values must agree across every callback of a problem
    instance. Once they do not, the solver behaviour is undefined, so this error
    is never recovered locally.
    """


class CoefficientLengthError(FormulationError, InputMalformedError):
    """The reference polynomial does not have the length the formulation was built for."""

    def __init__(self, expected: int, received: int):
        self.expected = expected
        self.received = received
        super().__init__(f"expected {expected} reference coefficients, received {received}")


class EndOfPathError(TrackingError):
    """No valid local window of the reference path is left ahead of the vehicle."""
