"""
keepassx-cli - Fetch KeePass secrets from shell scripts

A command line wrapper around keepassxc-cli that resolves the database and
its unlock password from flags, environment variables, named profiles, the
system keyring or a prompt, and feeds the password to keepassxc-cli so that
scripts and automation pipelines can read secrets non-interactively.
"""

__version__ = "0.1.0"

from .core import main

__all__ = ["main"]
