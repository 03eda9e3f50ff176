"""Batch pipeline that turns a questionnaire into a brand visibility report."""
