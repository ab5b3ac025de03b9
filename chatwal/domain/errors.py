from __future__ import annotations

class NotFoundError(Exception):
    def __init__(self, what: str = "Resource"):
        super().__init__(what)
        self.what = what

class ConflictError(Exception):
    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

class BadRequestError(Exception):
    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

class PersistenceError(Exception):
    """A log file could not be appended or replaced. Durability was NOT achieved."""
    def __init__(self, detail: str, path: str | None = None):
        super().__init__(detail)
        self.detail = detail
        self.path = path

class CommitError(Exception):
    """The primary store rejected or failed a write."""
    def __init__(self, detail: str, message_id: str | None = None):
        super().__init__(detail)
        self.detail = detail
        self.message_id = message_id

class BatchInProgressError(ConflictError):
    def __init__(self):
        super().__init__("Batch processing already in progress")
