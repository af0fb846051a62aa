"""
Usage engine error taxonomy.

Raised by the ledger, the accumulation engine and the schedule evaluator;
translated to HTTP responses in server.py.
"""

from typing import List, Dict, Optional


class UsageEngineError(Exception):
    status_code = 500
    retryable = False

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {"detail": self.message, "retryable": self.retryable}


class ConflictError(UsageEngineError):
    """Component already active elsewhere, or a concurrent writer won"""
    status_code = 409
    retryable = True


class NotFoundError(UsageEngineError):
    status_code = 404
    retryable = True


class InvalidStateError(UsageEngineError):
    """Operation not legal in the current lifecycle state"""
    status_code = 409


class ValidationError(UsageEngineError):
    """Bad input; lists every offending field"""
    status_code = 422

    def __init__(self, message: str, errors: Optional[List[Dict[str, str]]] = None):
        super().__init__(message)
        self.errors = errors or []

    def to_dict(self) -> dict:
        result = super().to_dict()
        result["errors"] = self.errors
        return result
