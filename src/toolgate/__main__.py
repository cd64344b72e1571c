"""toolgate entry point.

Subcommands:
  serve           Start the authorization server + tool gateway.
  hash-password   Print a password hash for the directory seed file.
"""

import argparse
import getpass
import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

from toolgate.config import get_settings
from toolgate.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _version() -> str:
    try:
        return get_version("toolgate")
    except PackageNotFoundError:
        from toolgate import __version__

        return __version__


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="toolgate",
        description="toolgate - OAuth 2.1 authorization server and tenant-scoped tool gateway",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  toolgate serve                     Start on 127.0.0.1:8888
  toolgate serve --host 0.0.0.0      Listen on all interfaces
  toolgate serve --dev               Auto-reload on source changes
  toolgate hash-password             Hash a password for TOOLGATE_DIRECTORY_FILE
""",
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {_version()}")
    parser.add_argument(
        "command",
        nargs="?",
        default="serve",
        choices=["serve", "hash-password"],
        help="Subcommand (default: serve)",
    )
    parser.add_argument(
        "--host", type=str, default=None, help="Host to bind (default: TOOLGATE_WEB_HOST)"
    )
    parser.add_argument(
        "--port", "-p", type=int, default=None, help="Port to bind (default: TOOLGATE_WEB_PORT)"
    )
    parser.add_argument(
        "--dev", action="store_true", help="Development mode with auto-reload"
    )
    args = parser.parse_args()

    settings = get_settings()
    setup_logging(level="DEBUG" if args.dev else settings.log_level)

    if args.command == "hash-password":
        from toolgate.directory import hash_password

        password = getpass.getpass("Password: ")
        if password != getpass.getpass("Repeat: "):
            raise SystemExit("Passwords do not match")
        print(hash_password(password))
        return

    from toolgate.api.serve import run_api_server

    try:
        run_api_server(
            host=args.host or settings.web_host,
            port=args.port or settings.web_port,
            dev=args.dev,
        )
    except KeyboardInterrupt:
        logger.info("toolgate stopped.")


if __name__ == "__main__":
    main()
