"""
Runtime settings for keepassx-cli.

``Settings`` is built once from the parsed command line and the process
environment, then passed unchanged to the resolver and the command handlers.
"""

import argparse
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping, Optional

from .constants import (
    CONF_DIRNAME,
    ENV_CONF,
    ENV_DB,
    ENV_KEY,
    ENV_KEYRING,
    ENV_NO_PROMPT,
    ENV_PASS,
    ENV_PROFILE,
    FALSE_VALUES,
    TRUE_VALUES,
)
from .exceptions import ValidationError


def parse_bool(value: Optional[str], name: str = "value") -> bool:
    """Parse a true/false style string (true/false, yes/no, on/off, 1/0)."""
    normalized = (value or "").strip().lower()
    if normalized in TRUE_VALUES:
        return True
    if normalized in FALSE_VALUES:
        return False
    raise ValidationError(f"Invalid boolean for {name}: {value!r}")


def default_conf_dir(environ: Mapping[str, str]) -> Path:
    """Return $XDG_CONFIG_HOME/keepassx-cli, or ~/.config/keepassx-cli."""
    base = environ.get("XDG_CONFIG_HOME") or os.path.join("~", ".config")
    return Path(base).expanduser() / CONF_DIRNAME


@dataclass(frozen=True)
class Settings:
    """Options for one invocation, flags layered over environment defaults."""

    conf_dir: Path
    command: Optional[str] = None
    arguments: tuple[str, ...] = ()
    profile: Optional[str] = None
    profile_from_flag: bool = False
    key: Optional[str] = None
    key_from_flag: bool = False
    db: Optional[str] = None
    password: Optional[str] = field(default=None, repr=False)
    password_from_flag: bool = False
    keyring: bool = False
    prompt: bool = True
    force: bool = False
    verbose: int = 0

    @classmethod
    def from_args(
        cls, args: argparse.Namespace, environ: Optional[Mapping[str, str]] = None
    ) -> "Settings":
        """
        Build settings from parsed arguments and environment variables.

        Args:
            args: Namespace produced by the argument parser; unset flags are None
            environ: Environment mapping (defaults to os.environ)

        Raises:
            ValidationError: If a boolean environment variable cannot be parsed
        """
        env = os.environ if environ is None else environ

        conf = getattr(args, "conf", None) or env.get(ENV_CONF)
        conf_dir = Path(conf).expanduser() if conf else default_conf_dir(env)

        flag_profile = getattr(args, "profile", None)
        flag_key = getattr(args, "key", None)

        keyring_flag = getattr(args, "keyring", None)
        if keyring_flag is not None:
            use_keyring = parse_bool(keyring_flag, "--keyring")
        else:
            use_keyring = parse_bool(env.get(ENV_KEYRING), ENV_KEYRING)

        prompt_flag = getattr(args, "prompt", None)
        if prompt_flag is not None:
            prompt = bool(prompt_flag)
        else:
            prompt = not parse_bool(env.get(ENV_NO_PROMPT), ENV_NO_PROMPT)

        command = getattr(args, "command", None)
        return cls(
            conf_dir=conf_dir,
            command=command,
            arguments=tuple(getattr(args, "arguments", None) or ()),
            profile=flag_profile or env.get(ENV_PROFILE) or None,
            profile_from_flag=bool(flag_profile),
            key=flag_key or env.get(ENV_KEY) or None,
            key_from_flag=bool(flag_key),
            db=getattr(args, "db", None) or env.get(ENV_DB) or None,
            password=_first_set(getattr(args, "password", None), env.get(ENV_PASS)),
            password_from_flag=bool(getattr(args, "password", None)),
            keyring=use_keyring,
            prompt=prompt,
            force=bool(getattr(args, "force", False)),
            verbose=int(getattr(args, "verbose", 0) or 0),
        )


def _first_set(*values: Optional[str]) -> Optional[str]:
    """Return the first value that is not None or empty."""
    for value in values:
        if value:
            return value
    return None
