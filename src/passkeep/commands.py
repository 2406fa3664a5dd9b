"""CLI command handlers.

Each handler takes the parsed arguments and the process's ``StateManager``
and returns an exit code. User-facing output goes to stdout; errors to
stderr.
"""

import getpass
import json
import logging
import sys
import uuid
from typing import Callable, Optional

from .core.audit_log import EventSeverity, EventType, configure_logging, get_audit_logger
from .core.config import Settings
from .core.exceptions import (
    DaemonStartupError,
    DecryptionError,
    IPCError,
    PasskeepError,
)
from .daemon.client import DaemonClient, SocketTransport
from .daemon.discovery import ProbeState
from .daemon.process import debug_info, remove_pid_file, spawn_daemon, write_pid_file
from .daemon.service import DaemonService
from .state.manager import StateManager
from .vault.models import Entry, EntryMetadata, validate_entry
from .vault.vault_file import import_plaintext_vault, load_vault, vault_exists

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1

PasswordPrompt = Callable[[str], str]


def _error(message: str) -> int:
    print(f"Error: {message}", file=sys.stderr)
    return EXIT_ERROR


def _prompt_master(manager: StateManager, ask: PasswordPrompt = getpass.getpass) -> Callable[[], str]:
    """Build the prompt used when no session can be resumed."""

    def _prompt() -> str:
        if vault_exists(manager.vault_path):
            return ask("Enter master password: ")
        print(f"No vault found at {manager.vault_path}; creating a new one.")
        password = ask("New master password: ")
        if ask("Confirm master password: ") != password:
            raise PasskeepError("passwords do not match")
        return password

    return _prompt


# ── Session commands ─────────────────────────────────────────────────


def cmd_unlock(args, manager: StateManager, ask: PasswordPrompt = getpass.getpass) -> int:
    password: Optional[str] = getattr(args, "password", None)
    try:
        if password is None:
            state = manager.ensure_unlocked(_prompt_master(manager, ask))
            print(f"Vault unlocked ({len(state.entries)} entries)")
            return EXIT_OK
        if not vault_exists(manager.vault_path):
            return _error(f"no vault at {manager.vault_path}; run 'passkeep unlock' to create one")
        entries, key, salt = load_vault(manager.vault_path, password)
        manager.unlock(entries, key, salt, password=password)
    except DecryptionError as e:
        get_audit_logger().log_vault_event(
            EventType.VAULT_UNLOCK_FAILED,
            "Wrong password or corrupt vault",
            severity=EventSeverity.INVESTIGATE,
        )
        return _error(str(e))
    except PasskeepError as e:
        return _error(str(e))
    print(f"Vault unlocked ({len(entries)} entries)")
    return EXIT_OK


def cmd_lock(args, manager: StateManager) -> int:
    manager.lock()
    print("Vault locked")
    return EXIT_OK


def cmd_status(args, manager: StateManager) -> int:
    unlocked = manager.is_unlocked()
    info = debug_info(manager.settings)
    info["unlocked"] = unlocked
    info["daemon_reachable"] = manager.discovery.last_state is ProbeState.REACHABLE
    if getattr(args, "json", False):
        print(json.dumps(info, indent=2))
    else:
        print(f"Vault:  {'unlocked' if unlocked else 'locked'}")
        print(f"Daemon: {'running' if info['daemon_reachable'] else 'not running'}")
    return EXIT_OK


# ── Entry commands ───────────────────────────────────────────────────


def cmd_add(args, manager: StateManager, ask: PasswordPrompt = getpass.getpass) -> int:
    try:
        state = manager.ensure_unlocked(_prompt_master(manager, ask))
    except PasskeepError as e:
        return _error(str(e))

    entry = Entry(
        id=args.id or uuid.uuid4().hex[:8],
        name=args.name,
        password=args.password,
        metadata=EntryMetadata(url=args.url, notes=args.notes),
    )
    problems = validate_entry(entry)
    if problems:
        return _error("; ".join(problems))
    if any(e.id == entry.id for e in state.entries):
        return _error(f"an entry with id {entry.id!r} already exists")

    try:
        manager.save_entries(state.entries + [entry])
    except PasskeepError as e:
        return _error(str(e))
    get_audit_logger().log_vault_event(
        EventType.ENTRY_ADDED, "Entry added", details={"id": entry.id}
    )
    print(f"Added {entry.name} ({entry.id})")
    return EXIT_OK


def cmd_list(args, manager: StateManager, ask: PasswordPrompt = getpass.getpass) -> int:
    try:
        state = manager.ensure_unlocked(_prompt_master(manager, ask))
    except PasskeepError as e:
        return _error(str(e))
    if not state.entries:
        print("No entries")
    for entry in state.entries:
        print(f"{entry.id}\t{entry.name}")
    return EXIT_OK


def cmd_remove(args, manager: StateManager, ask: PasswordPrompt = getpass.getpass) -> int:
    try:
        state = manager.ensure_unlocked(_prompt_master(manager, ask))
    except PasskeepError as e:
        return _error(str(e))
    remaining = [e for e in state.entries if e.name != args.name]
    if len(remaining) == len(state.entries):
        return _error(f"no entry named {args.name!r}")
    try:
        manager.save_entries(remaining)
    except PasskeepError as e:
        return _error(str(e))
    get_audit_logger().log_vault_event(
        EventType.ENTRY_REMOVED,
        "Entry removed",
        details={"removed": len(state.entries) - len(remaining)},
    )
    print(f"Removed {args.name}")
    return EXIT_OK


def cmd_import_plaintext(args, manager: StateManager, ask: PasswordPrompt = getpass.getpass) -> int:
    password = ask("New master password: ")
    if ask("Confirm master password: ") != password:
        return _error("passwords do not match")
    try:
        entries, key, salt = import_plaintext_vault(manager.vault_path, password)
    except PasskeepError as e:
        return _error(str(e))
    manager.unlock(entries, key, salt, password=password)
    print(f"Encrypted {len(entries)} entries in {manager.vault_path}")
    return EXIT_OK


# ── Daemon commands ──────────────────────────────────────────────────


def cmd_daemon_run(args, settings: Settings) -> int:
    """Run the daemon in the foreground until Exit or a signal."""
    settings.ensure_dirs()
    configure_logging(logging.INFO, log_file=settings.daemon_log_path)
    service = DaemonService(settings)
    try:
        service.start()
    except DaemonStartupError as e:
        logger.error("Daemon startup failed: %s", e)
        return _error(str(e))
    write_pid_file(settings.pid_path)
    try:
        service.run_until_stopped()
    finally:
        remove_pid_file(settings.pid_path)
    return EXIT_OK


def cmd_daemon_start(args, settings: Settings) -> int:
    client = DaemonClient(SocketTransport(settings.socket_path), default_timeout=settings.daemon_timeout)
    if client.ping():
        print("Daemon already running")
        return EXIT_OK
    try:
        pid = spawn_daemon(settings)
    except DaemonStartupError as e:
        return _error(str(e))
    print(f"Daemon started (pid {pid})")
    return EXIT_OK


def cmd_daemon_stop(args, settings: Settings) -> int:
    client = DaemonClient(SocketTransport(settings.socket_path), default_timeout=settings.unlock_timeout)
    try:
        client.exit()
    except IPCError as e:
        return _error(f"daemon not running ({e})")
    print("Daemon stopping")
    return EXIT_OK


def cmd_daemon_status(args, settings: Settings) -> int:
    print(json.dumps(debug_info(settings), indent=2))
    return EXIT_OK
