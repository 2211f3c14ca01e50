"""Session lifecycle."""

from meterbill.session.manager import (
    DEFAULT_MAX_AGE,
    DEFAULT_NOTICE_DURATION,
    SessionManager,
)

__all__ = [
    "DEFAULT_MAX_AGE",
    "DEFAULT_NOTICE_DURATION",
    "SessionManager",
]
