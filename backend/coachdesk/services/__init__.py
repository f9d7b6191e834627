"""Business logic services for the booking core."""
