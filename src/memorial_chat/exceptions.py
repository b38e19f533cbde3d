"""
Exception hierarchy.

Only failures the user has to act on are raised: a send that could not be
delivered, a send the protocol refused, a tribute that fails validation, and a
backend read that failed outright. Malformed turns, unresolved citation sources
and out-of-range line numbers are absorbed where they occur and never reach
this module.
"""

from enum import StrEnum


class MemorialChatError(Exception):
    """Base class for all errors raised by memorial_chat."""


class BackendError(MemorialChatError):
    """A read or write against the hosted backend failed."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class DeliveryError(MemorialChatError):
    """The answering function could not be reached or refused the question."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class TributeValidationError(MemorialChatError):
    pass


class SendRejection(StrEnum):
    EMPTY = "empty"
    NO_PROCESSED_SOURCE = "no_processed_source"
    ALREADY_SENDING = "already_sending"
    PENDING_ECHO = "pending_echo"


class SendRejectedError(MemorialChatError):
    """A submit was refused before anything was sent."""

    def __init__(self, reason: SendRejection):
        super().__init__(f"Message not sent: {reason}")
        self.reason = reason
