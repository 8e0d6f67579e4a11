from __future__ import annotations


class MarkshelfError(Exception):
    """Base class for every error surfaced to the presentation layer."""

    def __init__(self, message: str = ""):
        super().__init__(message)
        self.message = message or self.__class__.__name__


class ValidationError(MarkshelfError):
    pass


class StoreError(MarkshelfError):
    def __init__(self, message: str = "", status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class PermissionDenied(StoreError):
    pass


class FetchError(MarkshelfError):
    pass


class AdvisoryDegradation(MarkshelfError):
    pass
