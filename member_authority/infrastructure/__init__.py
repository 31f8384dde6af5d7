"""Infrastructure modules for the engine.

Provides database models and sessions, per-user locking with conflict
retry, and the periodic maintenance scheduler.
"""
