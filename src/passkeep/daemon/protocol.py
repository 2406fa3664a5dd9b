"""Daemon IPC protocol: message types and newline-delimited JSON framing.

One request and one response per connection. Each message is a single line
of UTF-8 JSON, externally tagged:

    requests:  {"Unlock": {"password": "..."}}  "Lock"  "GetState"  "Exit"
    responses: "Success"
               {"StateInfo": {"unlocked": true, "encryption_key": "<b64>", "salt": "<b64>"}}
               {"Error": "message"}
"""

import json
import socket
from dataclasses import dataclass
from typing import Optional, Union

from ..core.exceptions import ProtocolError
from ..vault.encryption import EncryptionService

MAX_MESSAGE_SIZE = 64 * 1024
RECV_CHUNK = 4096


# ── Requests ─────────────────────────────────────────────────────────


@dataclass
class UnlockCommand:
    password: str

    def __repr__(self) -> str:
        return "UnlockCommand(password=***)"


@dataclass
class LockCommand:
    pass


@dataclass
class GetStateCommand:
    pass


@dataclass
class ExitCommand:
    pass


Command = Union[UnlockCommand, LockCommand, GetStateCommand, ExitCommand]

_UNIT_COMMANDS = {
    "Lock": LockCommand,
    "GetState": GetStateCommand,
    "Exit": ExitCommand,
}


# ── Responses ────────────────────────────────────────────────────────


@dataclass
class SuccessResponse:
    pass


@dataclass
class StateInfoResponse:
    unlocked: bool
    encryption_key: Optional[bytes] = None
    salt: Optional[bytes] = None

    def __repr__(self) -> str:
        return f"StateInfoResponse(unlocked={self.unlocked}, has_key={self.encryption_key is not None})"


@dataclass
class ErrorResponse:
    message: str


Response = Union[SuccessResponse, StateInfoResponse, ErrorResponse]


# ── Encoding ─────────────────────────────────────────────────────────


def _dumps(payload) -> bytes:
    return json.dumps(payload, separators=(",", ":")).encode("utf-8")


def _loads(raw: bytes):
    try:
        return json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ProtocolError(f"Invalid message JSON: {e}") from e


def encode_command(command: Command) -> bytes:
    if isinstance(command, UnlockCommand):
        return _dumps({"Unlock": {"password": command.password}})
    for tag, cls in _UNIT_COMMANDS.items():
        if isinstance(command, cls):
            return _dumps(tag)
    raise ProtocolError(f"Unknown command type: {type(command).__name__}")


def decode_command(raw: bytes) -> Command:
    data = _loads(raw)
    if isinstance(data, str):
        cls = _UNIT_COMMANDS.get(data)
        if cls is None:
            raise ProtocolError(f"Unknown command: {data}")
        return cls()
    if isinstance(data, dict) and len(data) == 1 and "Unlock" in data:
        body = data["Unlock"]
        if not isinstance(body, dict) or not isinstance(body.get("password"), str):
            raise ProtocolError("Unlock requires a string password")
        return UnlockCommand(password=body["password"])
    raise ProtocolError("Unrecognized command shape")


def encode_response(response: Response) -> bytes:
    if isinstance(response, SuccessResponse):
        return _dumps("Success")
    if isinstance(response, StateInfoResponse):
        return _dumps({"StateInfo": {
            "unlocked": response.unlocked,
            "encryption_key": (
                EncryptionService.encode_for_storage(response.encryption_key)
                if response.encryption_key is not None else None
            ),
            "salt": (
                EncryptionService.encode_for_storage(response.salt)
                if response.salt is not None else None
            ),
        }})
    if isinstance(response, ErrorResponse):
        return _dumps({"Error": response.message})
    raise ProtocolError(f"Unknown response type: {type(response).__name__}")


def decode_response(raw: bytes) -> Response:
    data = _loads(raw)
    if data == "Success":
        return SuccessResponse()
    if isinstance(data, dict) and len(data) == 1:
        if "Error" in data and isinstance(data["Error"], str):
            return ErrorResponse(message=data["Error"])
        if "StateInfo" in data and isinstance(data["StateInfo"], dict):
            info = data["StateInfo"]
            if not isinstance(info.get("unlocked"), bool):
                raise ProtocolError("StateInfo requires a boolean 'unlocked'")
            try:
                key = info.get("encryption_key")
                salt = info.get("salt")
                return StateInfoResponse(
                    unlocked=info["unlocked"],
                    encryption_key=EncryptionService.decode_from_storage(key) if key else None,
                    salt=EncryptionService.decode_from_storage(salt) if salt else None,
                )
            except (ValueError, AttributeError) as e:
                raise ProtocolError(f"Invalid StateInfo encoding: {e}") from e
    raise ProtocolError("Unrecognized response shape")


# ── Framing ──────────────────────────────────────────────────────────


def write_message(sock: socket.socket, payload: bytes) -> None:
    """Send one framed message."""
    if b"\n" in payload:
        raise ProtocolError("Message payload must not contain a newline")
    sock.sendall(payload + b"\n")


def read_message(sock: socket.socket) -> bytes:
    """Read one newline-terminated message (newline stripped).

    A peer that closes without a newline still yields what it sent, so long
    as it sent something.

    Raises:
        ProtocolError: Empty stream or message over MAX_MESSAGE_SIZE
    """
    buf = bytearray()
    while True:
        chunk = sock.recv(RECV_CHUNK)
        if not chunk:
            break
        newline = chunk.find(b"\n")
        if newline != -1:
            buf.extend(chunk[:newline])
            break
        buf.extend(chunk)
        if len(buf) > MAX_MESSAGE_SIZE:
            raise ProtocolError("Message exceeds maximum size")
    if len(buf) > MAX_MESSAGE_SIZE:
        raise ProtocolError("Message exceeds maximum size")
    if not buf:
        raise ProtocolError("Connection closed before a message was received")
    return bytes(buf)
