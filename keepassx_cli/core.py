#!/usr/bin/env python3
# core.py - Fetch secrets from a KeePass database through keepassxc-cli

import argparse
import logging
import os
import shlex
import subprocess
import sys
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from .config import Settings
from .constants import (
    ENV_CONF,
    ENV_PASS,
    ENV_PROFILE,
    ERROR_MISSING_COMMAND,
    ERROR_PROFILE_EXISTS,
    ERROR_PROFILE_NOT_FOUND,
    ERROR_PROFILE_REQUIRED,
    ERROR_UNKNOWN_COMMAND,
    PASSWORD_MASK,
    PROFILE_KEYRING_COMMENT,
    PROG_NAME,
)
from .credentials import (
    CredentialResolver,
    clear_keyring_password,
    confirm,
    prompt_input,
    prompt_secret,
    set_keyring_password,
)
from .exceptions import (
    BackendUnavailableError,
    ConfigError,
    KeepassxCliError,
    MissingCommandError,
    OperationAbortedError,
    ProfileAlreadyExistsError,
    ProfileError,
    ProfileNotFoundError,
    UnknownCommandError,
    UsageError,
)
from .keepass import KeePassXCCli, find_backend
from .profiles import ProfileStore, redact_profile_text

logger = logging.getLogger(__name__)

Handler = Callable[[Settings, List[str]], None]

ALWAYS_PROMPT_COMMENT = "empty: always prompt"


def _create_argument_parser() -> argparse.ArgumentParser:
    """Create and configure the argument parser."""
    from . import __version__

    parser = argparse.ArgumentParser(
        prog=PROG_NAME,
        description="Fetch secrets from a KeePass database non-interactively",
        epilog=(
            "Commands: get, show, dump, tree, extract, shell, info, help, "
            "profile {ls,add,password,rm,show,edit}. "
            "Example: kp get work 'Cloud / AWS / root'"
        ),
    )

    parser.add_argument(
        "--profile",
        metavar="NAME",
        help=f"Profile to use (default: ${ENV_PROFILE})",
    )
    parser.add_argument(
        "--key",
        metavar="KEY",
        help="Entry key, instead of taking it from the arguments",
    )
    parser.add_argument(
        "--db",
        metavar="PATH",
        help="KeePass database file, overriding the profile",
    )
    parser.add_argument(
        "--pass",
        dest="password",
        metavar="PASSWORD",
        help="Database password (visible in process listings, prefer profiles)",
    )
    parser.add_argument(
        "--conf",
        metavar="DIR",
        help=f"Profile directory (default: ${ENV_CONF} or ~/.config/{PROG_NAME})",
    )
    parser.add_argument(
        "--keyring",
        metavar="{true,false}",
        help="Look up and store profile passwords in the system keyring",
    )
    parser.add_argument(
        "--prompt",
        action=argparse.BooleanOptionalAction,
        default=None,
        help="Allow or forbid interactive password prompts",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Do not ask for confirmation, replace existing profiles",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase logging verbosity (repeat or use --verbose=LEVEL)",
    )
    parser.add_argument(
        "--verbosity",
        metavar="LEVEL",
        type=int,
        default=0,
        help=argparse.SUPPRESS,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
        help="Show program's version number and exit",
    )

    parser.add_argument("command", nargs="?", metavar="COMMAND", help="Command to run")
    parser.add_argument("arguments", nargs="*", metavar="ARGS", help="Command arguments")

    return parser


def _normalize_argv(argv: Sequence[str]) -> List[str]:
    """Rewrite ``--verbose=LEVEL`` so argparse can keep ``--verbose`` a counter."""
    normalized: List[str] = []
    for index, token in enumerate(argv):
        if token == "--":
            normalized.extend(argv[index:])
            break
        if token.startswith("--verbose="):
            normalized.extend(["--verbosity", token.split("=", 1)[1]])
        else:
            normalized.append(token)
    return normalized


def _configure_logging(verbose: int) -> None:
    """Configure logging level based on verbosity."""
    if verbose >= 2:
        logging.basicConfig(level=logging.DEBUG)
    elif verbose == 1:
        logging.basicConfig(level=logging.INFO)
    else:
        logging.basicConfig(level=logging.WARNING)


def _handle_error(error: KeepassxCliError) -> None:
    """Handle errors with appropriate messaging. Let the CLI decide exit codes."""
    error_type = type(error).__name__
    logger.error("%s Error: %s", error_type, error)
    if error.original_exception:
        logger.debug("  Original error: %s", error.original_exception)
    # Re-raise to let the CLI layer map to exit codes
    raise error


def _emit(lines: Sequence[str]) -> None:
    if lines:
        print("\n".join(lines))


def dispatch(
    table: Dict[str, Handler], name: str, settings: Settings, arguments: List[str]
) -> None:
    """Run the handler registered under ``name``."""
    handler = table.get(name)
    if handler is None:
        raise UnknownCommandError(ERROR_UNKNOWN_COMMAND.format(command=name))
    logger.debug("Dispatching '%s' with %d argument(s)", name, len(arguments))
    handler(settings, arguments)


# --- Entry commands ---


def _cmd_get(settings: Settings, arguments: List[str]) -> None:
    """Print the password of an entry: get [PROFILE] KEY."""
    session = CredentialResolver(settings).resolve(arguments)
    print(KeePassXCCli.from_session(session).get_password(session.key_query))


def _cmd_show(settings: Settings, arguments: List[str]) -> None:
    """Print a whole entry: show [PROFILE] KEY."""
    session = CredentialResolver(settings).resolve(arguments)
    output = KeePassXCCli.from_session(session).show_entry(session.key_query)
    sys.stdout.write(output)


def _cmd_dump(settings: Settings, arguments: List[str]) -> None:
    """List every entry, optionally filtered: dump [PROFILE] [PATTERN]."""
    session = CredentialResolver(settings).resolve(arguments, require_key=False)
    lines = KeePassXCCli.from_session(session).list_entries(flatten=True)
    pattern = session.key_query.lower()
    if pattern:
        lines = [line for line in lines if pattern in line.lower()]
    _emit(lines)


def _cmd_tree(settings: Settings, arguments: List[str]) -> None:
    """List entries as a tree: tree [PROFILE] [GROUP]."""
    session = CredentialResolver(settings).resolve(arguments, require_key=False)
    backend = KeePassXCCli.from_session(session)
    lines = backend.list_entries(group=session.key_query or None)
    _emit([line for line in lines if line.strip()])


def _cmd_extract(settings: Settings, arguments: List[str]) -> None:
    """Write an attachment to stdout: extract [PROFILE] KEY FILE."""
    resolver = CredentialResolver(settings)
    profile_name, key, attachment = resolver.parse_attachment_query(arguments)
    session = resolver.session_for(profile_name, key)
    data = KeePassXCCli.from_session(session).export_attachment(key, attachment)
    sys.stdout.buffer.write(data)
    sys.stdout.buffer.flush()


def _cmd_shell(settings: Settings, arguments: List[str]) -> None:
    """
    Print shell assignments pinning a profile for the calling shell.

    Example: eval "$(kp shell work)"
    """
    name = arguments[0] if arguments else settings.profile
    if not name:
        raise ProfileError(ERROR_PROFILE_REQUIRED)
    store = ProfileStore(settings.conf_dir)
    if not store.exists(name):
        raise ProfileNotFoundError(ERROR_PROFILE_NOT_FOUND.format(name=name))
    store.load(name)

    print(f"export {ENV_PROFILE}={shlex.quote(name)}")
    print(f"export {ENV_CONF}={shlex.quote(str(settings.conf_dir))}")


def _cmd_info(settings: Settings, arguments: List[str]) -> None:
    """Print the resolved configuration without revealing the password."""
    resolver = CredentialResolver(settings)
    profile_name, key = resolver.parse_query(arguments)

    profile = None
    profile_state = "(none)"
    try:
        profile = resolver.load_profile(profile_name)
    except ProfileError as e:
        profile_state = f"({e})"
    if profile:
        profile_state = profile.name

    db_path = settings.db or (profile.db_path if profile else None)
    if settings.password or (profile and profile.password):
        password_state = PASSWORD_MASK
    elif settings.keyring and profile:
        password_state = "(keyring)"
    elif settings.prompt:
        password_state = "(prompt)"
    else:
        password_state = "(unset)"

    try:
        backend = shlex.join(find_backend())
    except BackendUnavailableError:
        backend = "not found"

    rows = [
        ("profile", profile_state),
        ("conf", str(settings.conf_dir)),
        ("database", db_path or "(unset)"),
        ("password", password_state),
        ("key", key or "(unset)"),
        ("keyring", str(settings.keyring).lower()),
        ("prompt", str(settings.prompt).lower()),
        ("force", str(settings.force).lower()),
        ("verbose", str(settings.verbose)),
        ("backend", backend),
    ]
    _emit([f"{label + ':':<10} {value}" for label, value in rows])


def _cmd_help(settings: Settings, arguments: List[str]) -> None:
    _create_argument_parser().print_help()


# --- Profile commands ---


def _profile_name(settings: Settings, arguments: List[str]) -> str:
    name = arguments[0] if arguments else settings.profile
    if not name:
        raise UsageError(ERROR_PROFILE_REQUIRED)
    return name


def _password_entry(
    settings: Settings, name: str, password: str
) -> Tuple[str, Optional[str]]:
    """Return the (KC_PASS value, comment) to write, storing keyring passwords first."""
    if settings.keyring and password:
        set_keyring_password(name, password)
        return "", PROFILE_KEYRING_COMMENT
    if settings.keyring:
        clear_keyring_password(name)
        return "", ALWAYS_PROMPT_COMMENT
    return password, None if password else ALWAYS_PROMPT_COMMENT


def _store_password(
    settings: Settings, store: ProfileStore, name: str, password: str
) -> None:
    """Save a profile password in the keyring or the profile file."""
    value, comment = _password_entry(settings, name, password)
    store.update_password(name, value, comment=comment)


def _read_new_password(settings: Settings, name: str) -> str:
    if settings.password_from_flag:
        return settings.password or ""
    if settings.password:
        logger.info("Ignoring %s for the password of profile '%s'", ENV_PASS, name)
    try:
        return prompt_secret(f"Password for profile '{name}' (empty to always prompt): ")
    except (EOFError, KeyboardInterrupt) as e:
        raise OperationAbortedError(f"No password given for profile '{name}'", e)


def _cmd_profile_ls(settings: Settings, arguments: List[str]) -> None:
    for name in ProfileStore(settings.conf_dir).list():
        print(name)


def _cmd_profile_add(settings: Settings, arguments: List[str]) -> None:
    """
    Create a profile: profile add NAME [DB].

    Behavior:
    - DB is prompted for when omitted; an empty answer aborts.
    - The password is prompted for (empty means always prompt) unless --pass is given.
    - An existing profile is replaced only with --force, and stays untouched
      until the new file is written.
    """
    if not arguments:
        raise UsageError("profile add requires a profile NAME")
    name = arguments[0]
    store = ProfileStore(settings.conf_dir)

    replace = store.exists(name)
    if replace and not settings.force:
        raise ProfileAlreadyExistsError(ERROR_PROFILE_EXISTS.format(name=name))

    db_path = " ".join(arguments[1:]).strip()
    if not db_path:
        db_path = prompt_input("Path to KeePass database: ").strip()
    if not db_path:
        raise OperationAbortedError("No database path given, profile not created")
    if not os.path.isfile(os.path.expanduser(db_path)):
        logger.warning("Database %s does not exist (yet)", db_path)

    password = _read_new_password(settings, name)
    value, comment = _password_entry(settings, name, password)
    store.create(name, db_path, value, comment, replace=replace)

    print(f"Profile '{name}' {'replaced' if replace else 'created'}")


def _cmd_profile_password(settings: Settings, arguments: List[str]) -> None:
    """Change the stored password of a profile: profile password NAME."""
    name = _profile_name(settings, arguments)
    store = ProfileStore(settings.conf_dir)
    store.load(name)
    password = _read_new_password(settings, name)
    _store_password(settings, store, name, password)


def _cmd_profile_rm(settings: Settings, arguments: List[str]) -> None:
    name = _profile_name(settings, arguments)
    ProfileStore(settings.conf_dir).remove(
        name,
        force=settings.force,
        confirm=lambda n: confirm(f"Remove profile '{n}'? [y/N]: "),
    )
    if settings.keyring:
        clear_keyring_password(name)
    print(f"Profile '{name}' removed")


def _cmd_profile_show(settings: Settings, arguments: List[str]) -> None:
    name = _profile_name(settings, arguments)
    store = ProfileStore(settings.conf_dir)
    profile = store.load(name)
    print(f"# {profile.path}")
    print(redact_profile_text(store.read_text(name), PASSWORD_MASK))


def _cmd_profile_edit(settings: Settings, arguments: List[str]) -> None:
    """Open a profile in $VISUAL / $EDITOR and check it afterwards."""
    name = _profile_name(settings, arguments)
    store = ProfileStore(settings.conf_dir)
    path = store.path_for(name)
    if not path.is_file():
        raise ProfileNotFoundError(ERROR_PROFILE_NOT_FOUND.format(name=name))

    editor = os.environ.get("VISUAL") or os.environ.get("EDITOR") or "vi"
    try:
        status = subprocess.call([*shlex.split(editor), str(path)])
    except OSError as e:
        raise ConfigError(f"Failed to start editor '{editor}'", e)
    if status != 0:
        raise ConfigError(f"Editor '{editor}' exited with status {status}")
    store.load(name)


PROFILE_COMMANDS: Dict[str, Handler] = {
    "ls": _cmd_profile_ls,
    "add": _cmd_profile_add,
    "password": _cmd_profile_password,
    "rm": _cmd_profile_rm,
    "show": _cmd_profile_show,
    "edit": _cmd_profile_edit,
}


def _cmd_profile(settings: Settings, arguments: List[str]) -> None:
    """Manage profiles: profile {ls,add,password,rm,show,edit} ..."""
    if not arguments:
        raise MissingCommandError(
            f"{ERROR_MISSING_COMMAND}: profile {{{','.join(PROFILE_COMMANDS)}}}"
        )
    dispatch(PROFILE_COMMANDS, arguments[0], settings, arguments[1:])


COMMANDS: Dict[str, Handler] = {
    "get": _cmd_get,
    "show": _cmd_show,
    "dump": _cmd_dump,
    "tree": _cmd_tree,
    "extract": _cmd_extract,
    "shell": _cmd_shell,
    "info": _cmd_info,
    "help": _cmd_help,
    "profile": _cmd_profile,
}


def main(argv: Optional[Sequence[str]] = None) -> None:
    """Parse the command line and run the requested command."""
    parser = _create_argument_parser()
    args = parser.parse_intermixed_args(
        _normalize_argv(sys.argv[1:] if argv is None else argv)
    )
    args.verbose = max(args.verbose or 0, args.verbosity or 0)

    # Configure logging level based on verbosity flags
    _configure_logging(args.verbose)

    try:
        settings = Settings.from_args(args)
        if not settings.command:
            parser.print_help(sys.stderr)
            raise MissingCommandError(ERROR_MISSING_COMMAND)
        dispatch(COMMANDS, settings.command, settings, list(settings.arguments))
    except KeepassxCliError as e:
        _handle_error(e)


if __name__ == "__main__":
    main()
