#!/usr/bin/env python3
"""
Main entry point for keepassx-cli - Fetch KeePass secrets from shell scripts
"""

# Verbosity flags are parsed/configured inside core._create_argument_parser()/main.
# This CLI wrapper is responsible for exit codes.
import logging
import sys

from .constants import EXIT_ABORTED, EXIT_INTERNAL
from .core import main as keepassx_main
from .exceptions import KeepassxCliError


def main() -> None:
    """Main entry point for keepassx-cli."""
    try:
        keepassx_main()
    except KeepassxCliError as e:
        # Known failure modes: each class carries its documented exit code
        sys.exit(e.exit_code)
    except KeyboardInterrupt:
        sys.exit(EXIT_ABORTED)
    except Exception:
        logging.getLogger(__name__).exception("Unexpected error")
        sys.exit(EXIT_INTERNAL)


if __name__ == "__main__":
    main()
