from __future__ import annotations


class AppError(Exception):
    """Base application error."""

    def __init__(self, detail: str = "") -> None:
        self.detail = detail
        super().__init__(detail)


class NotFoundError(AppError):
    pass


class ForbiddenError(AppError):
    pass


class PermissionDeniedError(ForbiddenError):
    """Direct-message gate refusal; ``reason`` drives the client prompt."""

    def __init__(self, reason: str, detail: str = "") -> None:
        self.reason = reason
        super().__init__(detail or f"Direct message not allowed: {reason}")


class ConflictError(AppError):
    pass


class ValidationError(AppError):
    pass


class TransientIOError(AppError):
    """Network or query failure that a read path may retry."""


class CallError(AppError):
    pass


class CallStateError(CallError):
    pass


class MediaUnavailableError(CallError):
    pass


class NegotiationFailedError(CallError):
    pass
