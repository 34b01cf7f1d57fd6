"""
Input validation for keepassx-cli - Fetch KeePass secrets from scripts
"""

import os
import logging
from pathlib import Path
from typing import Optional

from .constants import ERROR_DATABASE_NOT_FOUND, ERROR_MISSING_DATABASE, PROFILE_DELIMITER
from .exceptions import (
    DatabaseNotFoundError,
    MissingDatabaseError,
    ProfileNameValidationError,
    ValidationError,
)

logger = logging.getLogger(__name__)

# Constants for validation limits
MAX_PROFILE_NAME_LENGTH = 64
MIN_ASCII_VALUE = 33
MAX_ASCII_VALUE = 126

# Constants for error messages
ERROR_PROFILE_NAME_INVALID_CHARS = "Profile name contains invalid characters"
ERROR_PROFILE_NAME_RESERVED = (
    f"Profile name must not start with '.' or '-' or contain '{PROFILE_DELIMITER}'"
)
ERROR_PROFILE_WORLD_READABLE = (
    "Profile file holds a clear-text password and is readable by others. "
    "Please restrict permissions to owner only."
)
ERROR_CANNOT_ACCESS_PROFILE = "Cannot access profile file: {error}"


class BaseValidator:
    """Base class for validators with common validation logic."""

    @staticmethod
    def validate_non_empty_string(value: Optional[str], field_name: str) -> str:
        """Validate that a value is a non-empty string."""
        if not value or not isinstance(value, str):
            raise ValidationError(f"{field_name} must be a non-empty string")
        return value

    @staticmethod
    def validate_string_length(value: str, max_length: int, field_name: str) -> str:
        """Validate that a string does not exceed maximum length."""
        if len(value) > max_length:
            raise ValidationError(
                f"{field_name} too long (max {max_length} characters)"
            )
        return value


class ProfileNameValidator(BaseValidator):
    """Validates profile names used to build profile file names."""

    @staticmethod
    def validate_profile_name(name: Optional[str]) -> str:
        """
        Validate a profile name.

        Args:
            name: Profile name to validate

        Returns:
            The unchanged name

        Raises:
            ProfileNameValidationError: If the name cannot be used as a profile
        """
        try:
            validated = BaseValidator.validate_non_empty_string(name, "Profile name")
            validated = BaseValidator.validate_string_length(
                validated, MAX_PROFILE_NAME_LENGTH, "Profile name"
            )
        except ValidationError as e:
            raise ProfileNameValidationError(str(e))

        if any(
            ord(char) < MIN_ASCII_VALUE or ord(char) > MAX_ASCII_VALUE
            for char in validated
        ) or any(sep in validated for sep in ("/", "\\", os.sep)):
            raise ProfileNameValidationError(
                f"{ERROR_PROFILE_NAME_INVALID_CHARS}: {validated!r}"
            )

        if validated.startswith((".", "-")) or PROFILE_DELIMITER in validated:
            raise ProfileNameValidationError(ERROR_PROFILE_NAME_RESERVED)

        return validated


class PathValidator(BaseValidator):
    """Validates the database path before any password is requested."""

    @staticmethod
    def validate_database_path(path: Optional[str]) -> Path:
        """
        Validate that a database path was configured and exists.

        Args:
            path: Database path, ``~`` is expanded

        Returns:
            Expanded Path object

        Raises:
            MissingDatabaseError: If no path was configured
            DatabaseNotFoundError: If the path is not an existing file
        """
        if not path:
            raise MissingDatabaseError(ERROR_MISSING_DATABASE)

        expanded_path = Path(path).expanduser()
        if not expanded_path.is_file():
            raise DatabaseNotFoundError(ERROR_DATABASE_NOT_FOUND.format(path=expanded_path))

        return expanded_path


class SecurityValidator:
    """Validates security aspects of profile files."""

    @staticmethod
    def check_profile_permissions(profile_path: Path, has_password: bool) -> None:
        """
        Warn when a profile holding a clear-text password is readable by others.

        Only POSIX mode bits are inspected; on other systems this is a no-op.
        """
        if not has_password or os.name != "posix":
            return

        try:
            mode = profile_path.stat().st_mode
        except OSError as e:
            logger.error("%s %s", ERROR_CANNOT_ACCESS_PROFILE.format(error=e), profile_path)
            return

        if mode & 0o044:
            logger.warning("%s %s", ERROR_PROFILE_WORLD_READABLE, profile_path)
