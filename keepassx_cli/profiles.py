"""
Profile store: named (database path, password) pairs kept as small
shell-style files ``conf.<name>.env`` in the configuration directory.
"""

import logging
import os
import shlex
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, Iterator, Optional

from .constants import (
    ERROR_PROFILE_EXISTS,
    ERROR_PROFILE_INCOMPLETE,
    ERROR_PROFILE_NOT_FOUND,
    PROFILE_DB_KEY,
    PROFILE_KEYRING_COMMENT,
    PROFILE_PASS_KEY,
    PROFILE_PREFIX,
    PROFILE_SUFFIX,
    PROG_NAME,
)
from .exceptions import (
    IncompleteProfileError,
    OperationAbortedError,
    ProfileAlreadyExistsError,
    ProfileError,
    ProfileNotFoundError,
    ValidationError,
)
from .validation import ProfileNameValidator, SecurityValidator

logger = logging.getLogger(__name__)


class PasswordSource(str, Enum):
    """Where a profile keeps its password."""

    CLEAR_TEXT = "clear_text"
    KEYRING = "keyring"
    UNSET = "unset"


@dataclass(frozen=True)
class Profile:
    """A loaded profile file."""

    name: str
    db_path: str
    password: Optional[str] = field(default=None, repr=False)
    source: PasswordSource = PasswordSource.UNSET
    path: Optional[Path] = None


def _timestamp() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def _password_comment(comment: str) -> str:
    return f"# {PROFILE_PASS_KEY} {comment}"


def _is_password_line(line: str) -> bool:
    stripped = line.strip()
    if stripped.startswith("export "):
        stripped = stripped[len("export "):].lstrip()
    return stripped.startswith(f"{PROFILE_PASS_KEY}=") or stripped.startswith(
        f"# {PROFILE_PASS_KEY} "
    )


def parse_assignments(text: str, source: str = "<profile>") -> Dict[str, str]:
    """
    Parse shell-style ``KEY=value`` lines.

    Blank lines and ``#`` comments are skipped, an optional ``export`` prefix
    is accepted and values are unquoted with shell rules.

    Raises:
        ProfileError: If a line is not a single assignment
    """
    values: Dict[str, str] = {}
    for lineno, line in enumerate(text.splitlines(), start=1):
        stripped = line.strip()
        if not stripped or stripped.startswith("#"):
            continue
        try:
            tokens = shlex.split(stripped, comments=True)
        except ValueError as e:
            raise ProfileError(f"Malformed line {lineno} in {source}: {e}", e)
        if tokens and tokens[0] == "export":
            tokens = tokens[1:]
        if len(tokens) != 1 or "=" not in tokens[0]:
            raise ProfileError(f"Malformed line {lineno} in {source}: {stripped}")
        key, _, value = tokens[0].partition("=")
        values[key] = value
    return values


class ProfileStore:
    """Class to manage profile files in a configuration directory."""

    def __init__(self, conf_dir: Path):
        """Initialize with the configuration directory (created on first write)."""
        self.conf_dir = Path(conf_dir)

    def path_for(self, name: str) -> Path:
        """Return the file path for a profile name."""
        validated = ProfileNameValidator.validate_profile_name(name)
        return self.conf_dir / f"{PROFILE_PREFIX}{validated}{PROFILE_SUFFIX}"

    def list(self) -> Iterator[str]:
        """Yield profile names in sorted order; the directory is rescanned on every call."""
        if not self.conf_dir.is_dir():
            return
        names = (
            entry.name[len(PROFILE_PREFIX):-len(PROFILE_SUFFIX)]
            for entry in self.conf_dir.iterdir()
            if entry.name.startswith(PROFILE_PREFIX)
            and entry.name.endswith(PROFILE_SUFFIX)
            and len(entry.name) > len(PROFILE_PREFIX) + len(PROFILE_SUFFIX)
            and entry.is_file()
        )
        for name in sorted(names):
            if self.exists(name):
                yield name
            else:
                logger.debug("Skipping profile file with invalid name '%s'", name)

    def exists(self, name: str) -> bool:
        """Return True if the profile file exists."""
        try:
            return self.path_for(name).is_file()
        except ValidationError:
            return False

    def read_text(self, name: str) -> str:
        """Return the raw profile file contents."""
        path = self.path_for(name)
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError as e:
            raise ProfileNotFoundError(ERROR_PROFILE_NOT_FOUND.format(name=name), e)
        except OSError as e:
            raise ProfileError(f"Failed to read profile '{name}'", e)

    def load(self, name: str) -> Profile:
        """
        Load a profile.

        Raises:
            ProfileNotFoundError: If the file does not exist
            IncompleteProfileError: If the file has no database path
        """
        path = self.path_for(name)
        text = self.read_text(name)
        values = parse_assignments(text, str(path))

        db_path = values.get(PROFILE_DB_KEY, "")
        if not db_path:
            raise IncompleteProfileError(
                ERROR_PROFILE_INCOMPLETE.format(name=name, key=PROFILE_DB_KEY)
            )

        password = values.get(PROFILE_PASS_KEY) or None
        if password:
            source = PasswordSource.CLEAR_TEXT
        elif _password_comment(PROFILE_KEYRING_COMMENT) in text.splitlines():
            source = PasswordSource.KEYRING
        else:
            source = PasswordSource.UNSET

        SecurityValidator.check_profile_permissions(path, password is not None)
        logger.debug("Loaded profile '%s' from %s (password: %s)", name, path, source.value)
        return Profile(
            name=name, db_path=db_path, password=password, source=source, path=path
        )

    def create(
        self,
        name: str,
        db_path: str,
        password: Optional[str] = None,
        comment: Optional[str] = None,
        *,
        replace: bool = False,
    ) -> Path:
        """
        Write a new profile file holding the database path.

        When ``password`` is given the ``KC_PASS`` assignment is written in the
        same step. With ``replace`` an existing profile is swapped for the new
        file atomically, so it survives any failure before the swap.

        Raises:
            ProfileAlreadyExistsError: If the profile exists and ``replace`` is unset
        """
        path = self.path_for(name)
        self.conf_dir.mkdir(mode=0o700, parents=True, exist_ok=True)

        lines = [
            f"# {PROG_NAME} profile: {name}",
            f"# created: {_timestamp()}",
            f"{PROFILE_DB_KEY}={shlex.quote(db_path)}",
        ]
        if password is not None:
            lines.append(_password_comment(comment or f"updated {_timestamp()}"))
            lines.append(f"{PROFILE_PASS_KEY}={shlex.quote(password)}")
        content = "\n".join(lines) + "\n"

        if replace:
            self._replace_file(name, path, content)
        else:
            try:
                fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
            except FileExistsError as e:
                raise ProfileAlreadyExistsError(ERROR_PROFILE_EXISTS.format(name=name), e)
            except OSError as e:
                raise ProfileError(f"Failed to create profile '{name}'", e)

            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)

        logger.info("Created profile '%s' at %s", name, path)
        return path

    def _replace_file(self, name: str, path: Path, content: str) -> None:
        fd, tmp_name = tempfile.mkstemp(prefix=".", suffix=".tmp", dir=self.conf_dir)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_name, path)
        except OSError as e:
            Path(tmp_name).unlink(missing_ok=True)
            raise ProfileError(f"Failed to write profile '{name}'", e)

    def update_password(
        self, name: str, password: str, comment: Optional[str] = None
    ) -> None:
        """
        Replace the password assignment of a profile.

        Any previous ``KC_PASS`` line (and its comment) is dropped and a fresh
        one appended. An empty password means "always prompt".
        """
        path = self.path_for(name)
        text = self.read_text(name)
        lines = [line for line in text.splitlines() if not _is_password_line(line)]

        lines.append(_password_comment(comment or f"updated {_timestamp()}"))
        lines.append(f"{PROFILE_PASS_KEY}={shlex.quote(password)}")

        try:
            with open(path, "w", encoding="utf-8") as f:
                f.write("\n".join(lines) + "\n")
        except OSError as e:
            raise ProfileError(f"Failed to write profile '{name}'", e)

        logger.info(
            "Updated password of profile '%s' (%s)",
            name,
            "set" if password else "always prompt",
        )

    def remove(
        self,
        name: str,
        *,
        force: bool = False,
        confirm: Optional[Callable[[str], bool]] = None,
    ) -> None:
        """
        Delete a profile file.

        Without ``force`` the ``confirm`` callable must return True, otherwise
        the removal is declined.

        Raises:
            ProfileNotFoundError: If the profile does not exist
            OperationAbortedError: If confirmation was not given
        """
        path = self.path_for(name)
        if not path.is_file():
            raise ProfileNotFoundError(ERROR_PROFILE_NOT_FOUND.format(name=name))

        if not force and (confirm is None or not confirm(name)):
            raise OperationAbortedError(f"Removal of profile '{name}' cancelled")

        try:
            path.unlink()
        except OSError as e:
            raise ProfileError(f"Failed to remove profile '{name}'", e)
        logger.info("Removed profile '%s'", name)


def redact_profile_text(text: str, mask: str) -> str:
    """Return profile file text with non-empty password values replaced by ``mask``."""
    lines = []
    for line in text.splitlines():
        key, sep, value = line.strip().partition("=")
        is_password = key in (PROFILE_PASS_KEY, f"export {PROFILE_PASS_KEY}")
        if sep and is_password and value not in ("", "''", '""'):
            line = f"{key}={mask}"
        lines.append(line)
    return "\n".join(lines)
