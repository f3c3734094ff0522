"""Support thread lifecycle."""

from .lifecycle import NotRelatedError, ThreadLifecycle, ordinal

__all__ = ["NotRelatedError", "ThreadLifecycle", "ordinal"]
