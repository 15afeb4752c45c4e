"""
Custom Exceptions for the LeadMap Application.

Services raise these; API routes translate them into HTTP responses.
"""
from typing import Optional


class ConcurrentModificationError(Exception):
    """
    Raised when an optimistic locking conflict is detected.

    A scraping session row carries a version counter. Writers read a snapshot,
    compute the new state, then update WHERE version = <snapshot version>.
    Zero affected rows means somebody else wrote in between.

    Recovery:
        Reload the fresh row and re-run the transition. The session service
        does this automatically a bounded number of times.
    """
    def __init__(self, entity_type: str, entity_id: str, message: Optional[str] = None):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.message = message or f"{entity_type} {entity_id} was modified by another process."
        super().__init__(self.message)


class EntityNotFoundError(Exception):
    """
    Raised when a requested entity does not exist (or is not owned by the caller).
    """
    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.message = f"{entity_type} {entity_id} not found."
        super().__init__(self.message)


class InvalidCallbackError(Exception):
    """Raised when a worker callback payload is malformed."""
    def __init__(self, message: str, details: Optional[str] = None):
        self.message = message
        self.details = details
        super().__init__(message)


class WorkerDispatchError(Exception):
    """Raised when the scraping worker could not be reached or refused the job."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)
