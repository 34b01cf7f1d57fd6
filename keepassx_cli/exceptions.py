"""
Custom exceptions for keepassx-cli - Fetch KeePass secrets from scripts

Every exception carries the exit code the command line maps it to.
"""

from typing import Optional

from .constants import (
    EXIT_ABORTED,
    EXIT_BACKEND,
    EXIT_BACKEND_UNAVAILABLE,
    EXIT_CREDENTIALS,
    EXIT_DATABASE_NOT_FOUND,
    EXIT_INTERNAL,
    EXIT_MISSING_ATTACHMENT_ARGS,
    EXIT_MISSING_COMMAND,
    EXIT_MISSING_DATABASE,
    EXIT_NOT_FOUND,
    EXIT_PROFILE,
    EXIT_UNKNOWN_COMMAND,
    EXIT_USAGE,
)


class KeepassxCliError(Exception):
    """Base exception for keepassx-cli errors."""

    exit_code = EXIT_INTERNAL

    def __init__(self, message: str, original_exception: Optional[Exception] = None):
        """
        Initialize keepassx-cli error.

        Args:
            message: Error message
            original_exception: Original exception that caused this error
        """
        self.message = message
        self.original_exception = original_exception
        super().__init__(self.message)


class UsageError(KeepassxCliError):
    """Bad flags or arguments."""

    exit_code = EXIT_USAGE


class MissingCommandError(UsageError):
    """Raised when no command is given."""

    exit_code = EXIT_MISSING_COMMAND


class UnknownCommandError(UsageError):
    """Raised when the command name has no handler."""

    exit_code = EXIT_UNKNOWN_COMMAND


class MissingAttachmentArgumentsError(UsageError):
    """Raised when extract is not given both an entry and a file name."""

    exit_code = EXIT_MISSING_ATTACHMENT_ARGS


class ValidationError(UsageError):
    """Input validation errors."""
    pass


class ProfileNameValidationError(ValidationError):
    """Raised when a profile name cannot be used as a file name."""
    pass


class ConfigError(KeepassxCliError):
    """Configuration-related errors."""

    exit_code = EXIT_PROFILE


class MissingDatabaseError(ConfigError):
    """Raised when no database path is configured."""

    exit_code = EXIT_MISSING_DATABASE


class DatabaseNotFoundError(ConfigError):
    """Raised when the configured database file does not exist."""

    exit_code = EXIT_DATABASE_NOT_FOUND


class ProfileError(ConfigError):
    """Profile file errors."""
    pass


class ProfileNotFoundError(ProfileError):
    """Raised when a profile file does not exist."""
    pass


class ProfileAlreadyExistsError(ProfileError):
    """Raised when creating a profile whose file is already present."""
    pass


class IncompleteProfileError(ProfileError):
    """Raised when a profile file has no database path."""
    pass


class OperationAbortedError(KeepassxCliError):
    """Raised when the user declines or cancels an operation."""

    exit_code = EXIT_ABORTED


class CredentialError(KeepassxCliError):
    """Credential errors: no password obtainable or wrong password."""

    exit_code = EXIT_CREDENTIALS


class NoPasswordSourceError(CredentialError):
    """Raised when every password source is exhausted."""
    pass


class InvalidCredentialsError(CredentialError):
    """Raised when keepassxc-cli rejects the password."""
    pass


class BackendUnavailableError(KeepassxCliError):
    """Raised when keepassxc-cli cannot be located."""

    exit_code = EXIT_BACKEND_UNAVAILABLE


class BackendError(KeepassxCliError):
    """Raised when keepassxc-cli fails for an unclassified reason."""

    exit_code = EXIT_BACKEND


class NotFoundError(KeepassxCliError):
    """Entry or attachment absent."""

    exit_code = EXIT_NOT_FOUND


class EntryNotFoundError(NotFoundError):
    """Raised when the entry key matches nothing in the database."""
    pass


class AttachmentNotFoundError(NotFoundError):
    """Raised when the entry has no attachment of the requested name."""
    pass
