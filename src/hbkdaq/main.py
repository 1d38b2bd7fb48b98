"""Main entry point for the hbkdaq command-line tool."""

import sys

from hbkdaq.diagnostics.cli import main as cli_main


def main() -> int:
    """Run the hbkdaq CLI."""
    return cli_main()


if __name__ == "__main__":
    sys.exit(main())
