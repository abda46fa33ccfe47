"""Shared error types and HTTP error envelope."""
