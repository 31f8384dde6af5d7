"""Inactivity decay of sub-scores."""
