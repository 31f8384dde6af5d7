"""Append-only activity ledger."""
