"""Shared constants for hub modules.

Event names are defined here to prevent implicit coupling between the
monitor, the API and websocket clients that publish or consume them.
"""

# Hub event types used by publish / subscribe
EVENT_TRANSITION = "transition"
EVENT_PARAMETERS_UPDATED = "parameters_updated"

# Module ids
MODULE_MONITOR = "monitor"

# Analytics API defaults
DEFAULT_LOG_DAYS = 30
MAX_QUERY_DAYS = 3650
