from __future__ import annotations


class CycleLogError(Exception):
    """Base class for every error the core raises.

    ``kind`` is a stable identifier the presentation layer can switch on;
    ``http_status`` is what the API answers with.
    """

    kind = "error"
    http_status = 400

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind


class InvalidTransition(CycleLogError):
    kind = "invalid_transition"
    http_status = 409


class InvalidInput(CycleLogError):
    kind = "invalid_input"
    http_status = 422


class NotFound(CycleLogError):
    kind = "not_found"
    http_status = 404


class InvalidCategory(NotFound):
    kind = "invalid_category"


class DuplicateCategory(CycleLogError):
    kind = "duplicate_category"
    http_status = 409


class CategoryInUse(CycleLogError):
    kind = "category_in_use"
    http_status = 409


class CategoryRequired(CycleLogError):
    kind = "category_required"
    http_status = 409


class StorageUnavailable(CycleLogError):
    """The database could not complete an operation atomically.

    Usually needs the user to look at the database path or permissions.
    """

    kind = "storage_unavailable"
    http_status = 503
