from typing import Optional


class ExpenseBackendError(Exception):
    """Base error carrying the HTTP status it maps to at the API boundary."""

    status_code: int = 500

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code


class BadRequest(ExpenseBackendError):
    status_code = 400


class NotFound(ExpenseBackendError):
    status_code = 404


class StoreError(ExpenseBackendError):
    status_code = 500


class ConfigError(Exception):
    """Raised at startup when required configuration is missing."""
