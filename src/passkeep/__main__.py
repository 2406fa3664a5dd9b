# Main entry point - passkeep command line
#
# Commands operate through one StateManager built here and passed to each
# handler; the daemon subcommands only need the settings.

import argparse
import logging
import sys

from . import __version__, commands
from .core.audit_log import configure_logging, init_audit_logger
from .core.config import Settings
from .core.exceptions import ConfigError
from .state.manager import StateManager


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="passkeep",
        description="passkeep - local encrypted password store with a session daemon",
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log debug output to stderr")
    parser.add_argument("--version", action="version", version=f"passkeep {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("unlock", help="Unlock the vault (creates it if missing)")
    p.add_argument("password", nargs="?", help="Master password (prompted if omitted)")

    sub.add_parser("lock", help="Lock the vault here and in the daemon")

    p = sub.add_parser("status", help="Show lock and daemon status")
    p.add_argument("--json", action="store_true", help="Print machine-readable details")

    p = sub.add_parser("add", help="Add an entry")
    p.add_argument("name")
    p.add_argument("password")
    p.add_argument("--id", help="Entry id (default: random)")
    p.add_argument("--url")
    p.add_argument("--notes")

    sub.add_parser("list", help="List entry names")

    p = sub.add_parser("remove", help="Remove entries by name")
    p.add_argument("name")

    sub.add_parser("import-plaintext", help="Encrypt a legacy plaintext vault file")

    p = sub.add_parser("daemon", help="Manage the session daemon")
    p.add_argument("action", choices=["run", "start", "stop", "status"])

    return parser


DAEMON_ACTIONS = {
    "run": commands.cmd_daemon_run,
    "start": commands.cmd_daemon_start,
    "stop": commands.cmd_daemon_stop,
    "status": commands.cmd_daemon_status,
}

MANAGER_COMMANDS = {
    "unlock": commands.cmd_unlock,
    "lock": commands.cmd_lock,
    "status": commands.cmd_status,
    "add": commands.cmd_add,
    "list": commands.cmd_list,
    "remove": commands.cmd_remove,
    "import-plaintext": commands.cmd_import_plaintext,
}


def main(argv=None) -> int:
    """Main entry point for passkeep."""
    args = build_parser().parse_args(argv)

    try:
        settings = Settings.from_env()
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return commands.EXIT_ERROR

    settings.ensure_dirs()
    init_audit_logger(settings.log_dir)

    if args.command == "daemon":
        return DAEMON_ACTIONS[args.action](args, settings)

    configure_logging(logging.DEBUG if args.verbose else logging.WARNING)
    manager = StateManager(settings)
    return MANAGER_COMMANDS[args.command](args, manager)


if __name__ == "__main__":
    sys.exit(main())
