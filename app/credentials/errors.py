"""Credential lifecycle error taxonomy.

Every error the lifecycle service raises derives from CredentialError and
carries the HTTP status the request layer maps it to. The request layer
installs one exception handler for the base class (see app/main.py), so
routes never translate these by hand.

    ValidationError         400  missing / malformed input (client-caused)
    InvalidCredentialError  401  presented key absent or inactive
    NotFoundError           404  operation needs a credential that does not exist
    ConflictError           500  uniqueness violation on insert (internal)
    StorageError            500  durability-layer failure (internal)
"""

from __future__ import annotations


class CredentialError(Exception):
    """Base class for all classified lifecycle errors."""

    code: str = "credential_error"
    status_code: int = 500
    default_message: str = "Credential operation failed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(CredentialError):
    """Raised when a required input is missing or malformed.

    HTTP mapping: 400 Bad Request
    """

    code = "validation_error"
    status_code = 400
    default_message = "Required field missing"


class InvalidCredentialError(CredentialError):
    """Raised when a presented key is unknown or no longer active.

    HTTP mapping: 401 Unauthorized
    """

    code = "invalid_credential"
    status_code = 401
    default_message = "Invalid or inactive API key"


class NotFoundError(CredentialError):
    """Raised when rotate/revoke references a key that does not exist.

    HTTP mapping: 404 Not Found
    """

    code = "not_found"
    status_code = 404
    default_message = "API key not found"


class ConflictError(CredentialError):
    """Raised by a store when an id or key hash is already taken (live or retired).

    Should never reach a normal caller; logged and mapped to 500.
    """

    code = "conflict"
    status_code = 500
    default_message = "Credential identifier conflict"


class StorageError(CredentialError):
    """Raised when the durability layer fails.

    HTTP mapping: 500 Internal Server Error
    """

    code = "storage_error"
    status_code = 500
    default_message = "Credential storage failure"
