# backend/coachdesk/routes/v1/__init__.py
"""
API v1 Routes

Versioned API endpoints under /api/v1.
"""

from . import admin_availability, admin_bookings, booking, stripe_webhooks

__all__ = [
    "admin_availability",
    "admin_bookings",
    "booking",
    "stripe_webhooks",
]
