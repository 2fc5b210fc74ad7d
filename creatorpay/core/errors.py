"""Error taxonomy shared by the checkout, reconciliation and payout services.

Services raise these; routers turn them into HTTP responses using
``http_status``.
"""
from __future__ import annotations

from typing import Optional

from fastapi import HTTPException


class LedgerError(Exception):
    http_status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_http(self) -> HTTPException:
        return HTTPException(self.http_status, self.message)


class AuthenticationError(LedgerError):
    http_status = 401


class ValidationError(LedgerError):
    http_status = 400


class NotFoundError(LedgerError):
    http_status = 404


class ConflictError(LedgerError):
    http_status = 409


class GatewayError(LedgerError):
    """The payment gateway call failed or answered with a non-success status."""

    http_status = 502

    def __init__(self, message: str, *, status_code: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status_code = status_code
        self.body = body
