# chatwal_client/exceptions.py
from __future__ import annotations


class ChatWalError(Exception):
    """Base class for every error raised by the SDK."""

class NotFound(ChatWalError):
    pass

class Conflict(ChatWalError):
    """409, e.g. a batch run is already in progress."""

class BadRequest(ChatWalError):
    pass

class ServerError(ChatWalError):
    """5xx. A 500 on submit means the message was NOT made durable."""

class TransportError(ChatWalError):
    pass
