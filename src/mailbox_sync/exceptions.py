"""Custom exceptions for Mailbox Sync.

Every error carries a machine-checkable ``kind`` so that the session layer
can report it to clients without inspecting exception classes.
"""

from enum import Enum


class ErrorKind(str, Enum):
    """Error kinds reported to clients."""

    CREDENTIAL_MISSING = "CredentialMissing"
    REMOTE_FETCH_FAILED = "RemoteFetchFailed"
    VALIDATION_FAILED = "ValidationFailed"
    NOT_FOUND = "NotFound"
    ENRICHMENT_FAILED = "EnrichmentFailed"
    CONFIGURATION = "Configuration"
    STORE = "Store"


class MailboxSyncError(Exception):
    """Base exception for all Mailbox Sync errors."""

    kind: ErrorKind = ErrorKind.REMOTE_FETCH_FAILED


class CredentialMissingError(MailboxSyncError):
    """No usable credential exists for an owner and mailbox."""

    kind = ErrorKind.CREDENTIAL_MISSING


class RemoteFetchError(MailboxSyncError):
    """A call to the remote mailbox provider failed or timed out."""

    kind = ErrorKind.REMOTE_FETCH_FAILED


class ValidationError(MailboxSyncError):
    """Exception raised for data validation errors."""

    kind = ErrorKind.VALIDATION_FAILED


class NotFoundError(MailboxSyncError):
    """A referenced message, owner or account does not exist in the store."""

    kind = ErrorKind.NOT_FOUND


class EnrichmentError(MailboxSyncError):
    """The enrichment collaborator failed or timed out."""

    kind = ErrorKind.ENRICHMENT_FAILED


class CategoriesMissingError(EnrichmentError):
    """The account has no categories, so enrichment cannot classify."""


class ConfigurationError(MailboxSyncError):
    """Exception raised for configuration related errors."""

    kind = ErrorKind.CONFIGURATION


class StoreError(MailboxSyncError):
    """The local store rejected a read or write."""

    kind = ErrorKind.STORE
