"""Errors raised by the session membership service.

Each error carries a message that is safe to show to the user as-is.
"""

from typing import Optional


class MultiLinkError(Exception):
    """Base class for membership errors."""

    def __init__(self, message: str, session_id: Optional[str] = None):
        self.message = message
        self.session_id = session_id
        super().__init__(message)


class SessionNotFound(MultiLinkError):
    def __init__(self, session_id: Optional[str] = None):
        super().__init__("That session doesn't exist (or has already ended).", session_id)


class SessionEnded(MultiLinkError):
    def __init__(self, session_id: Optional[str] = None):
        super().__init__("That session has already ended.", session_id)


class SessionFull(MultiLinkError):
    def __init__(self, session_id: Optional[str] = None, capacity: int = 0):
        self.capacity = capacity
        super().__init__(f"This session is full ({capacity} people max).", session_id)


class NotSessionHost(MultiLinkError):
    def __init__(self, session_id: Optional[str] = None):
        super().__init__("Only the session host can do that.", session_id)


class NotParticipant(MultiLinkError):
    def __init__(self, session_id: Optional[str] = None):
        super().__init__("You're not part of that session.", session_id)


class CapacityLimitExceeded(MultiLinkError):
    def __init__(self, requested: int, limit: int):
        self.requested = requested
        self.limit = limit
        super().__init__(f"A session can hold at most {limit} people (asked for {requested}).")


class InvalidSessionSettings(MultiLinkError):
    pass
