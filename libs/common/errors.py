"""Exceptions raised by the outbound clients and domain helpers."""

from typing import Any, Optional


class UpstreamError(Exception):
    """A third-party API answered with an error (or not at all).

    ``status_code`` is the upstream status when there was one.
    """

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        details: Any = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)


class InvoiceError(Exception):
    """Receipt generation could not complete; ``status_code`` is the HTTP answer."""

    def __init__(self, message: str, status_code: int = 500, details: Any = None):
        self.message = message
        self.status_code = status_code
        self.details = details
        super().__init__(message)
