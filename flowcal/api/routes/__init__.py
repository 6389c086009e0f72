"""Route modules for the flowcal server."""

from .calendar_routes import register_calendar_routes
from .subscription_routes import register_subscription_routes

__all__ = [
    "register_calendar_routes",
    "register_subscription_routes",
]
