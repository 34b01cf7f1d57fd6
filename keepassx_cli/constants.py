#!/usr/bin/env python3
"""
Shared constants used across keepassx_cli modules.

This module contains environment variable names, exit codes, profile file
naming and the strings exchanged with keepassxc-cli, kept here to avoid
circular imports between modules.
"""

import re

PROG_NAME = "keepassx-cli"

# Environment variables read as defaults for the global flags
ENV_PREFIX = "KEEPASSX_CLI__"
ENV_PROFILE = f"{ENV_PREFIX}PROFILE"
ENV_KEY = f"{ENV_PREFIX}KEY"
ENV_DB = f"{ENV_PREFIX}DB"
ENV_PASS = f"{ENV_PREFIX}PASS"
ENV_CONF = f"{ENV_PREFIX}CONF"
ENV_KEYRING = f"{ENV_PREFIX}KEYRING"
ENV_NO_PROMPT = f"{ENV_PREFIX}NO_PROMPT"

# Exit codes
EXIT_OK = 0
EXIT_INTERNAL = 1
EXIT_USAGE = 2
EXIT_MISSING_COMMAND = 3
EXIT_UNKNOWN_COMMAND = 4
EXIT_MISSING_DATABASE = 5
EXIT_DATABASE_NOT_FOUND = 6
EXIT_CREDENTIALS = 7
EXIT_BACKEND = 8
EXIT_NOT_FOUND = 9
EXIT_MISSING_ATTACHMENT_ARGS = 10
EXIT_BACKEND_UNAVAILABLE = 11
EXIT_PROFILE = 12
EXIT_ABORTED = 13

# Profile files: <conf dir>/conf.<name>.env holding KC_DB / KC_PASS assignments
CONF_DIRNAME = "keepassx-cli"
PROFILE_PREFIX = "conf."
PROFILE_SUFFIX = ".env"
PROFILE_DB_KEY = "KC_DB"
PROFILE_PASS_KEY = "KC_PASS"
PROFILE_KEYRING_COMMENT = "stored in keyring"
PROFILE_DELIMITER = "__"

# Keyring service under which profile passwords are stored
KEYRING_SERVICE = PROG_NAME

PASSWORD_MASK = "********"

TRUE_VALUES = {"1", "true", "yes", "on"}
FALSE_VALUES = {"0", "false", "no", "off", ""}

# keepassxc-cli discovery
BACKEND_EXECUTABLE = "keepassxc-cli"
FLATPAK_EXECUTABLE = "flatpak"
FLATPAK_APP_ID = "org.keepassxc.KeePassXC"

# Text emitted by keepassxc-cli
BANNER_PREFIX = "Enter password to unlock"
BACKEND_INVALID_CREDENTIALS = "invalid credentials"
BACKEND_ENTRY_NOT_FOUND = "could not find entry"
BACKEND_ATTACHMENT_NOT_FOUND = (
    "could not find attachment",
    "no attachment named",
)
BACKEND_GROUP_NOT_FOUND = "cannot find group"

# " / " separators in keys collapse to "/"
KEY_SEPARATOR_RE = re.compile(r" +/ +")

# Constants for error messages
ERROR_MISSING_COMMAND = "No command given"
ERROR_UNKNOWN_COMMAND = "Unknown command '{command}'"
ERROR_MISSING_DATABASE = (
    "No database configured: use --db, "
    f"{ENV_DB} or a profile with {PROFILE_DB_KEY}"
)
ERROR_DATABASE_NOT_FOUND = "Database file not found: {path}"
ERROR_NO_PASSWORD_SOURCE = "No password source available and prompting is disabled"
ERROR_COULD_NOT_READ_PASSWORD = "Could not read password"
ERROR_INVALID_CREDENTIALS = "Invalid credentials for database {path}"
ERROR_ENTRY_NOT_FOUND = "Could not find entry '{key}'"
ERROR_ATTACHMENT_NOT_FOUND = "Attachment '{name}' not found on entry '{key}'"
ERROR_BACKEND_FAILED = "keepassxc-cli {verb} failed with exit status {status}"
ERROR_BACKEND_UNAVAILABLE = (
    f"{BACKEND_EXECUTABLE} not found: install KeePassXC or the "
    f"{FLATPAK_APP_ID} flatpak"
)
ERROR_MISSING_KEY = "No entry key given"
ERROR_MISSING_ATTACHMENT_ARGS = "extract requires an entry KEY and an attachment FILE"
ERROR_PROFILE_NOT_FOUND = "Profile '{name}' not found"
ERROR_PROFILE_EXISTS = "Profile '{name}' already exists"
ERROR_PROFILE_INCOMPLETE = "Profile '{name}' has no {key} setting"
ERROR_PROFILE_REQUIRED = "A profile name is required"
