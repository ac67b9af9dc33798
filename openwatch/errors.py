"""Error types shared by the monitor, the stores and the API.

"No data" is never an error: predictors and queries return ``None`` or an
empty collection instead.
"""


class StatusFetchError(Exception):
    """The status source could not be polled or its payload was unusable."""


class PersistenceError(RuntimeError):
    """A store was used before initialization or its database is unavailable."""


class ParameterValidationError(ValueError):
    """A prediction parameter update was rejected before being persisted."""


class EventValidationError(ValueError):
    """A transition event had a malformed date or time."""
