"""Persistence boundary of the report pipeline."""
