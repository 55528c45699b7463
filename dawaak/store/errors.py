"""Record store error taxonomy; each error carries the HTTP status it maps to."""


class StoreError(Exception):
    status_code = 500

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class NotFound(StoreError):
    status_code = 404


class ValidationError(StoreError):
    status_code = 400


class Conflict(StoreError):
    status_code = 409


class PersistenceError(StoreError):
    status_code = 500


class UnsupportedOperation(StoreError):
    # Unknown table: answered like an unknown resource.
    status_code = 404
