"""Brand visibility report service."""
