"""Closed payload variants and shared enums."""
