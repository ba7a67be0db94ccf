"""Merge, orchestration, progress and summary services."""
