"""
Exceptions and warnings raised by calipermatch.

Configuration errors are raised before any matching work starts. Data errors
abort the whole run; no partial matched set is ever returned.
"""

from typing import Any, Optional, Sequence


class MatchingError(Exception):
    """Base class for all calipermatch errors."""
    pass


class MissingKeyError(MatchingError, KeyError):
    """Raised when a subject has no value for a configured exact-match covariate."""

    def __init__(self, subject_id: Any, key: str):
        self.subject_id = subject_id
        self.key = key
        super().__init__(f"Subject {subject_id!r} has no value for exact-match key '{key}'")

    def __str__(self) -> str:
        # KeyError quotes its argument otherwise
        return self.args[0]


class InvalidCaliperError(MatchingError, ValueError):
    """Raised when a caliper width is non-positive or non-finite."""
    pass


class InvalidPropensityError(MatchingError, ValueError):
    """Raised when a propensity score is non-finite or outside (0, 1)."""

    def __init__(self, message: str, subject_id: Optional[Any] = None):
        self.subject_id = subject_id
        super().__init__(message)


class UnknownLevelError(MatchingError, ValueError):
    """Raised when a categorical value is not one of the declared levels."""

    def __init__(self, column: str, values: Sequence[Any], levels: Sequence[Any]):
        self.column = column
        self.values = list(values)
        self.levels = list(levels)
        super().__init__(
            f"Column '{column}' contains undeclared levels {self.values}; "
            f"declared levels are {self.levels}"
        )


class MatchingAborted(MatchingError):
    """Raised when a run is cancelled between strata or sweep units."""
    pass


class EmptyStratumWarning(UserWarning):
    """A stratum has no treated or no control subjects and yields no pairs."""
    pass
