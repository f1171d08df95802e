"""
Circulation error taxonomy.

Everything derives from ``LibraryError`` (itself a ``ValueError``) so callers
that only care about "a business rule said no" can keep catching ValueError.
``status_code`` is what the JSON controllers answer with.
"""


class LibraryError(ValueError):
    status_code = 400

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(LibraryError):
    status_code = 400


class NotFoundError(LibraryError):
    status_code = 404


class ForbiddenError(LibraryError):
    status_code = 403


class ConflictError(LibraryError):
    """Transition attempted from a stale state. Nothing was written."""
    status_code = 409


class InvariantViolation(LibraryError):
    """A write would oversell a book or duplicate an active request. The transaction is rolled back."""
    status_code = 409


class RenewalRejected(ValidationError):
    def __init__(self, message: str, book_id: int | None = None, book_title: str | None = None):
        super().__init__(message)
        self.book_id = book_id
        self.book_title = book_title
