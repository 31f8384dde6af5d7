"""E-E-A-T sub-scores, Member Authority and peer reviews."""
