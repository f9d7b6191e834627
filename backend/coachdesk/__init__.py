"""Coaching booking core: slot listing, reservations and payment reconciliation."""
