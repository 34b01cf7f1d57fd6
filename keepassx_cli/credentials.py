"""
Credential resolution for keepassx-cli.

Works out which profile, database, entry key and unlock password apply to an
invocation. The database is checked before any password source is consulted
so that nobody is prompted for a database that cannot be opened.

Password sources, first match wins:

1. ``--pass`` / ``KEEPASSX_CLI__PASS`` or the ``KC_PASS`` of the profile
2. the system keyring entry named after the profile (when enabled)
3. an interactive prompt (unless prompting is disabled)
"""

import getpass
import logging
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import keyring
from keyring.errors import KeyringError, PasswordDeleteError

from .config import Settings
from .constants import (
    ERROR_COULD_NOT_READ_PASSWORD,
    ERROR_MISSING_ATTACHMENT_ARGS,
    ERROR_MISSING_KEY,
    ERROR_NO_PASSWORD_SOURCE,
    ERROR_PROFILE_NOT_FOUND,
    KEY_SEPARATOR_RE,
    KEYRING_SERVICE,
    PROFILE_DELIMITER,
)
from .exceptions import (
    CredentialError,
    MissingAttachmentArgumentsError,
    NoPasswordSourceError,
    ProfileNotFoundError,
    UsageError,
)
from .profiles import Profile, ProfileStore
from .validation import PathValidator

logger = logging.getLogger(__name__)


def prompt_input(prompt: str) -> str:
    """Prompt user for input (safe for tests)."""
    try:
        return input(prompt)
    except EOFError:
        return ""


def prompt_secret(prompt: str) -> str:
    """
    Read a secret without echo.

    Uses getpass on a terminal; when stdin is piped one line is read from it
    so scripts can feed the password.

    Raises:
        EOFError: If stdin is exhausted
    """
    if sys.stdin is not None and not sys.stdin.isatty():
        line = sys.stdin.readline()
        if not line:
            raise EOFError(prompt)
        return line.rstrip("\r\n")
    return getpass.getpass(prompt)


def confirm(prompt: str) -> bool:
    """Ask a [y/N] question; anything but y/yes (including EOF) is a no."""
    return prompt_input(prompt).strip().lower() in ("y", "yes")


def normalize_key(key: str) -> str:
    """Collapse ``A / B / C`` into ``A/B/C``."""
    return KEY_SEPARATOR_RE.sub("/", key.strip())


# --- Keyring access ---


def get_keyring_password(profile_name: str) -> Optional[str]:
    """Look up a profile password in the keyring; errors are logged and yield None."""
    try:
        return keyring.get_password(KEYRING_SERVICE, profile_name)
    except KeyringError as e:
        logger.warning("Keyring lookup for profile '%s' failed: %s", profile_name, e)
        return None


def set_keyring_password(profile_name: str, password: str) -> None:
    """Store a profile password in the keyring."""
    try:
        keyring.set_password(KEYRING_SERVICE, profile_name, password)
    except KeyringError as e:
        raise CredentialError(
            f"Could not store password for profile '{profile_name}' in keyring", e
        )
    logger.info("Stored password for profile '%s' in keyring", profile_name)


def clear_keyring_password(profile_name: str) -> None:
    """Delete a profile password from the keyring, if there is one."""
    try:
        keyring.delete_password(KEYRING_SERVICE, profile_name)
    except PasswordDeleteError:
        logger.debug("No keyring entry for profile '%s'", profile_name)
        return
    except KeyringError as e:
        raise CredentialError(
            f"Could not clear password for profile '{profile_name}' in keyring", e
        )
    logger.info("Cleared keyring password for profile '%s'", profile_name)


@dataclass(frozen=True)
class ResolvedSession:
    """Everything one command needs to drive keepassxc-cli."""

    profile_name: Optional[str]
    db_path: str
    password: str = field(repr=False)
    key_query: str
    no_prompt: bool


class CredentialResolver:
    """Resolve profile, database, key and password for a single invocation."""

    def __init__(self, settings: Settings, store: Optional[ProfileStore] = None):
        self.settings = settings
        self.store = store or ProfileStore(settings.conf_dir)

    # --- Query parsing ---

    def split_profile(self, tokens: Sequence[str]) -> Tuple[Optional[str], List[str]]:
        """
        Split ``[PROFILE] REST...`` request tokens.

        The first token is taken as the profile when it names an existing
        profile, or when it has the form ``PROFILE__rest`` and the prefix names
        one. An explicit ``--profile`` flag disables this detection.
        """
        rest = list(tokens)
        if not rest or self.settings.profile_from_flag:
            return None, rest

        first = rest[0]
        if self.store.exists(first):
            return first, rest[1:]

        prefix, delimiter, remainder = first.partition(PROFILE_DELIMITER)
        if delimiter and prefix and self.store.exists(prefix):
            return prefix, ([remainder] if remainder else []) + rest[1:]

        return None, rest

    def parse_query(
        self, tokens: Sequence[str], use_default_key: bool = True
    ) -> Tuple[Optional[str], str]:
        """
        Return (profile name, normalized key) for ``[PROFILE] KEY...``.

        ``KEEPASSX_CLI__KEY`` fills in a missing key only with ``use_default_key``;
        an explicit ``--key`` always wins.
        """
        profile_name, rest = self.split_profile(tokens)
        if self.settings.key_from_flag:
            key = self.settings.key or ""
        elif rest:
            key = " ".join(rest)
        elif use_default_key:
            key = self.settings.key or ""
        else:
            key = ""
        return profile_name, normalize_key(key)

    def parse_attachment_query(
        self, tokens: Sequence[str]
    ) -> Tuple[Optional[str], str, str]:
        """
        Return (profile name, normalized key, attachment name) for
        ``[PROFILE] KEY... FILE``.

        Raises:
            MissingAttachmentArgumentsError: If KEY or FILE is missing
        """
        profile_name, rest = self.split_profile(tokens)
        needed = 1 if self.settings.key_from_flag else 2
        if len(rest) < needed:
            raise MissingAttachmentArgumentsError(ERROR_MISSING_ATTACHMENT_ARGS)

        attachment = rest[-1]
        if self.settings.key_from_flag:
            key = self.settings.key or ""
        else:
            key = " ".join(rest[:-1])
        return profile_name, normalize_key(key), attachment

    # --- Resolution ---

    def load_profile(self, query_profile: Optional[str] = None) -> Optional[Profile]:
        """
        Load the profile selected by flag, query token or environment.

        Raises:
            ProfileNotFoundError: If the selected profile does not exist
        """
        if self.settings.profile_from_flag:
            name = self.settings.profile
        else:
            name = query_profile or self.settings.profile
        if not name:
            return None
        if not self.store.exists(name):
            raise ProfileNotFoundError(ERROR_PROFILE_NOT_FOUND.format(name=name))
        return self.store.load(name)

    def resolve_database(self, profile: Optional[Profile]) -> Path:
        """
        Return the database path: --db / environment first, then the profile.

        Raises:
            MissingDatabaseError: If no path is configured
            DatabaseNotFoundError: If the path does not exist
        """
        db_path = self.settings.db or (profile.db_path if profile else None)
        return PathValidator.validate_database_path(db_path)

    def resolve_password(self, profile: Optional[Profile], db_path: Path) -> str:
        """
        Return the unlock password from the first source that has one.

        Raises:
            CredentialError: If the prompt was cancelled
            NoPasswordSourceError: If nothing yields a password and prompting is off
        """
        if self.settings.password:
            logger.debug("Using password from --pass or environment")
            return self.settings.password

        if profile and profile.password:
            logger.debug("Using password stored in profile '%s'", profile.name)
            return profile.password

        if self.settings.keyring and profile:
            password = get_keyring_password(profile.name)
            if password:
                logger.debug("Using keyring password for profile '%s'", profile.name)
                return password
            logger.info("No keyring password for profile '%s'", profile.name)

        if not self.settings.prompt:
            raise NoPasswordSourceError(ERROR_NO_PASSWORD_SOURCE)

        try:
            return prompt_secret(f"Enter password to unlock {db_path.name}: ")
        except (EOFError, KeyboardInterrupt) as e:
            raise CredentialError(ERROR_COULD_NOT_READ_PASSWORD, e)

    def resolve(
        self, tokens: Sequence[str] = (), *, require_key: bool = True
    ) -> ResolvedSession:
        """
        Build the session for ``[PROFILE] KEY...`` request tokens.

        Raises:
            UsageError: If ``require_key`` is set and no key was given
        """
        profile_name, key = self.parse_query(tokens, use_default_key=require_key)
        if require_key and not key:
            raise UsageError(ERROR_MISSING_KEY)
        return self.session_for(profile_name, key)

    def session_for(self, query_profile: Optional[str], key: str) -> ResolvedSession:
        """Resolve profile, database and password for an already parsed key."""
        profile = self.load_profile(query_profile)
        db_path = self.resolve_database(profile)
        password = self.resolve_password(profile, db_path)
        return ResolvedSession(
            profile_name=profile.name if profile else None,
            db_path=str(db_path),
            password=password,
            key_query=key,
            no_prompt=not self.settings.prompt,
        )
