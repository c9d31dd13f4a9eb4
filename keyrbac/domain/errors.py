from __future__ import annotations


class ReconcileError(Exception):
    pass


class ValidationError(ReconcileError):
    pass


class NotFoundError(ReconcileError):
    pass


class AuthorizationDeniedError(ReconcileError):
    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class InternalError(ReconcileError):
    pass
