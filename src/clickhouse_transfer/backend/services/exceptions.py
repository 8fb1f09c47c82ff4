"""Error types raised by the transfer services."""

from typing import Optional


class TransferError(Exception):
    """Base exception for transfer errors."""
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class StoreConnectionError(TransferError):
    """The store is unreachable or rejected the credentials."""
    pass


class ValidationError(TransferError):
    """Missing parameters, incomplete join clause or no column selected."""
    pass


class ParseError(TransferError):
    """Malformed delimited content."""
    pass


class SchemaError(TransferError):
    """A selected column is absent from the source."""
    pass


class QueryError(TransferError):
    """The store rejected a statement. The store's message is kept verbatim."""
    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Optional[dict] = None
    ):
        super().__init__(message, details)
        self.status_code = status_code
