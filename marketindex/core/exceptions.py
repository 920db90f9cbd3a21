"""
Domain errors raised by the lifecycle services.

Routers never translate these by hand; main.py registers one exception
handler per class and maps it to an HTTP status.
"""
from typing import Dict, List, Optional


class LifecycleError(Exception):
    """Base class for every error the lifecycle core raises"""
    status_code = 400

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail or self.__class__.__name__


class NotFound(LifecycleError):
    """Referenced entity is absent (already consumed, expired or deleted)"""
    status_code = 404


class AlreadyExists(LifecycleError):
    """Duplicate relationship or username"""
    status_code = 409


class InvalidOperation(LifecycleError):
    """Caller logic error: self-friending, wrong party, bad addressing..."""
    status_code = 400


class InvalidState(InvalidOperation):
    """Transition attempted from a state that does not allow it (answered request, expired broadcast)"""


class InvalidSymbolTag(LifecycleError):
    status_code = 422


class StorageError(Exception):
    """Blob store infrastructure failure. Retryable."""


class PartialFailure(LifecycleError):
    """A multi-step cleanup job did not complete all of its steps"""
    status_code = 503

    def __init__(self, user_id: str, failed_steps: List[str], errors: Optional[Dict[str, str]] = None):
        self.user_id = user_id
        self.failed_steps = list(failed_steps)
        self.errors = dict(errors or {})
        super().__init__(
            f"Cleanup for user {user_id} failed at: {', '.join(self.failed_steps)}"
        )
