"""OpenWatch — open/closed resource monitor with weekday predictions."""

__version__ = "0.3.0"
