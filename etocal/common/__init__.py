"""Shared error types."""
