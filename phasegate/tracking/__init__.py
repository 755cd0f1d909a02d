"""Activity tracking."""
