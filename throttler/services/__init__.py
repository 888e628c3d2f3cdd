"""Services for the throttler."""
