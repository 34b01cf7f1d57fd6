import logging
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence

from keepassx_cli.constants import (
    BACKEND_ATTACHMENT_NOT_FOUND,
    BACKEND_ENTRY_NOT_FOUND,
    BACKEND_EXECUTABLE,
    BACKEND_GROUP_NOT_FOUND,
    BACKEND_INVALID_CREDENTIALS,
    BANNER_PREFIX,
    ERROR_ATTACHMENT_NOT_FOUND,
    ERROR_BACKEND_FAILED,
    ERROR_BACKEND_UNAVAILABLE,
    ERROR_ENTRY_NOT_FOUND,
    ERROR_INVALID_CREDENTIALS,
    FLATPAK_APP_ID,
    FLATPAK_EXECUTABLE,
)
from keepassx_cli.credentials import ResolvedSession
from keepassx_cli.exceptions import (
    AttachmentNotFoundError,
    BackendError,
    BackendUnavailableError,
    EntryNotFoundError,
    InvalidCredentialsError,
)

logger = logging.getLogger(__name__)


def find_backend(
    which: Callable[[str], Optional[str]] = shutil.which,
    runner: Callable[..., subprocess.CompletedProcess] = subprocess.run,
) -> List[str]:
    """
    Locate keepassxc-cli and return the argv prefix that runs it.

    A directly installed executable is preferred; otherwise the KeePassXC
    flatpak is used when flatpak reports it installed.

    Raises:
        BackendUnavailableError: If neither is available
    """
    executable = which(BACKEND_EXECUTABLE)
    if executable:
        return [executable]

    flatpak = which(FLATPAK_EXECUTABLE)
    if flatpak:
        try:
            probe = runner(
                [flatpak, "info", FLATPAK_APP_ID],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                check=False,
            )
        except OSError as e:
            raise BackendUnavailableError(ERROR_BACKEND_UNAVAILABLE, e)
        if probe.returncode == 0:
            logger.debug("Using %s from flatpak %s", BACKEND_EXECUTABLE, FLATPAK_APP_ID)
            return [flatpak, "run", f"--command={BACKEND_EXECUTABLE}", FLATPAK_APP_ID]

    raise BackendUnavailableError(ERROR_BACKEND_UNAVAILABLE)


def strip_banner(text: str, db_path: Optional[str] = None) -> str:
    """
    Remove the password prompt keepassxc-cli prints before unlocking.

    When the prompt shares a line with real output only the prompt part is
    removed.
    """
    marker = f"{BANNER_PREFIX} {db_path}:" if db_path else None
    kept = []
    for line in text.splitlines(keepends=True):
        if marker and line.startswith(marker):
            rest = line[len(marker):].lstrip(" ")
        elif line.startswith(BANNER_PREFIX):
            _, _, rest = line.partition(": ")
        else:
            kept.append(line)
            continue
        if rest.strip():
            kept.append(rest)
    return "".join(kept)


@dataclass(frozen=True)
class BackendResult:
    """Captured output of one keepassxc-cli run."""

    returncode: int
    stdout: bytes
    stderr: str
    db_path: Optional[str] = None

    @property
    def text(self) -> str:
        """Standard output as text with the prompt banner stripped."""
        return strip_banner(self.stdout.decode("utf-8", errors="replace"), self.db_path)

    @property
    def data(self) -> bytes:
        """Standard output as bytes with a leading prompt banner stripped."""
        if self.db_path:
            marker = f"{BANNER_PREFIX} {self.db_path}: ".encode()
            if self.stdout.startswith(marker):
                return self.stdout[len(marker):]
        return self.stdout

    @property
    def diagnostics(self) -> str:
        """Error output with the prompt banner stripped."""
        return strip_banner(self.stderr, self.db_path).strip()


def classify_failure(
    result: BackendResult,
    verb: str,
    key: Optional[str] = None,
    attachment: Optional[str] = None,
) -> None:
    """
    Turn keepassxc-cli output into an exception.

    keepassxc-cli has no structured error output, so failures are recognised
    by their message text. Standard output is only inspected when the process
    failed since it carries entry data.

    Raises:
        InvalidCredentialsError: The password was rejected
        AttachmentNotFoundError: The entry has no such attachment
        EntryNotFoundError: The entry or group does not exist
        BackendError: Any other non-zero exit
    """
    if result.returncode == 0:
        haystack = result.stderr
    else:
        haystack = result.stderr + "\n" + result.text
    lowered = haystack.lower()

    if BACKEND_INVALID_CREDENTIALS in lowered:
        raise InvalidCredentialsError(ERROR_INVALID_CREDENTIALS.format(path=result.db_path))
    if any(text in lowered for text in BACKEND_ATTACHMENT_NOT_FOUND):
        raise AttachmentNotFoundError(
            ERROR_ATTACHMENT_NOT_FOUND.format(name=attachment, key=key)
        )
    if BACKEND_ENTRY_NOT_FOUND in lowered or BACKEND_GROUP_NOT_FOUND in lowered:
        raise EntryNotFoundError(ERROR_ENTRY_NOT_FOUND.format(key=key))
    if result.returncode != 0:
        message = ERROR_BACKEND_FAILED.format(verb=verb, status=result.returncode)
        details = result.diagnostics or result.text.strip()
        if details:
            message = f"{message}: {details}"
        raise BackendError(message)


class KeePassXCCli:
    """
    Driver for the keepassxc-cli executable.

    Each operation spawns one keepassxc-cli process, writes the unlock
    password to its standard input when it asks for it and waits for it to
    finish. The password is never placed on the command line.
    """

    def __init__(
        self,
        db_path: str,
        password: str,
        command: Optional[Sequence[str]] = None,
        runner: Optional[Callable[..., subprocess.CompletedProcess]] = None,
    ):
        """
        Initialize the driver.

        Args:
            db_path: Path to the KeePass database file
            password: Unlock password
            command: argv prefix running keepassxc-cli (located when omitted)
            runner: subprocess.run replacement for testing (dependency injection)
        """
        self.db_path = db_path
        self.password = password
        self._command = list(command) if command else None
        self._runner = runner or subprocess.run

    @classmethod
    def from_session(cls, session: ResolvedSession, **kwargs) -> "KeePassXCCli":
        """Create a driver for a resolved session."""
        return cls(session.db_path, session.password, **kwargs)

    @property
    def command(self) -> List[str]:
        """argv prefix for keepassxc-cli, located on first use."""
        if self._command is None:
            self._command = find_backend()
        return self._command

    def run(
        self, verb: str, *args: str, options: Sequence[str] = ()
    ) -> BackendResult:
        """
        Run ``keepassxc-cli VERB OPTIONS DB ARGS`` and capture its output.

        Raises:
            BackendUnavailableError: If the executable cannot be started
            BackendError: If the process cannot be run for another reason
        """
        argv = [*self.command, verb, *options, self.db_path, *args]
        logger.debug("Running %s", shlex.join(argv))
        try:
            proc = self._runner(
                argv,
                input=(self.password + "\n").encode("utf-8"),
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                check=False,
            )
        except FileNotFoundError as e:
            raise BackendUnavailableError(ERROR_BACKEND_UNAVAILABLE, e)
        except OSError as e:
            raise BackendError(f"Failed to run {BACKEND_EXECUTABLE}: {e}", e)

        stderr = proc.stderr or b""
        result = BackendResult(
            returncode=proc.returncode,
            stdout=proc.stdout or b"",
            stderr=stderr.decode("utf-8", errors="replace"),
            db_path=self.db_path,
        )
        logger.debug("%s %s exited with status %d", BACKEND_EXECUTABLE, verb, result.returncode)
        return result

    def execute(
        self,
        verb: str,
        *args: str,
        options: Sequence[str] = (),
        key: Optional[str] = None,
        attachment: Optional[str] = None,
    ) -> BackendResult:
        """Run a verb and raise the classified error if it failed."""
        result = self.run(verb, *args, options=options)
        classify_failure(result, verb, key=key, attachment=attachment)
        return result

    def get_password(self, key: str) -> str:
        """Return the Password attribute of an entry."""
        result = self.execute("show", key, options=("-s", "-a", "Password"), key=key)
        return result.text.rstrip("\r\n")

    def show_entry(self, key: str) -> str:
        """Return the full entry as printed by keepassxc-cli show."""
        return self.execute("show", key, key=key).text

    def list_entries(self, group: Optional[str] = None, flatten: bool = False) -> List[str]:
        """Return the recursive entry listing, optionally of one group only."""
        options = ["-R"]
        if flatten:
            options.append("-f")
        args = [group] if group else []
        result = self.execute("ls", *args, options=options, key=group)
        return result.text.splitlines()

    def export_attachment(self, key: str, attachment: str) -> bytes:
        """Return the bytes of a named attachment."""
        result = self.execute(
            "attachment-export",
            key,
            attachment,
            options=("--stdout",),
            key=key,
            attachment=attachment,
        )
        return result.data
