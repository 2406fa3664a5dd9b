"""Client side of the daemon IPC channel.

``SocketTransport`` does one request/response exchange per connection over
the daemon's Unix socket. ``DaemonClient`` turns responses into return
values and exceptions. ``bounded_call`` caps how long any call may block
the caller.
"""

import logging
import queue
import socket
import threading
from pathlib import Path
from typing import Callable, Optional, TypeVar, Union

from ..core.exceptions import DaemonTimeoutError, IPCError, ProtocolError
from .protocol import (
    Command,
    ErrorResponse,
    ExitCommand,
    GetStateCommand,
    LockCommand,
    Response,
    StateInfoResponse,
    SuccessResponse,
    UnlockCommand,
    decode_response,
    encode_command,
    read_message,
    write_message,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_REQUEST_TIMEOUT = 5.0  # seconds


def bounded_call(fn: Callable[[], T], timeout: float) -> T:
    """
    Run ``fn`` on a worker thread and wait at most ``timeout`` seconds.

    The worker is a daemon thread, so an abandoned call never keeps the
    process alive. Exceptions raised by ``fn`` are re-raised here.

    Raises:
        DaemonTimeoutError: If ``fn`` has not returned in time
    """
    results: "queue.Queue" = queue.Queue(maxsize=1)

    def _worker():
        try:
            results.put((True, fn()))
        except BaseException as e:
            results.put((False, e))

    threading.Thread(target=_worker, name="daemon-call", daemon=True).start()
    try:
        ok, value = results.get(timeout=timeout)
    except queue.Empty:
        raise DaemonTimeoutError(f"daemon did not answer within {timeout * 1000:.0f}ms")
    if not ok:
        raise value
    return value


class Transport:
    """Interface the client and discovery code talk through."""

    def socket_exists(self) -> bool:
        raise NotImplementedError

    def request(self, command: Command, timeout: float) -> Response:
        raise NotImplementedError

    def remove_stale(self) -> None:
        raise NotImplementedError


class SocketTransport(Transport):
    """Unix domain socket transport."""

    def __init__(self, socket_path: Union[str, Path]):
        self.socket_path = Path(socket_path)

    def socket_exists(self) -> bool:
        return self.socket_path.exists()

    def request(self, command: Command, timeout: float = DEFAULT_REQUEST_TIMEOUT) -> Response:
        """
        Send one command and read the reply.

        Raises:
            IPCError: No listener, connection failure or bad reply
        """
        if not hasattr(socket, "AF_UNIX"):
            raise IPCError("Unix domain sockets are not available on this platform")

        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(timeout)
        try:
            try:
                sock.connect(str(self.socket_path))
            except FileNotFoundError as e:
                raise IPCError(f"daemon socket {self.socket_path} does not exist") from e
            except ConnectionRefusedError as e:
                # Socket file with nobody listening behind it
                self.remove_stale()
                raise IPCError(f"stale daemon socket {self.socket_path} removed") from e
            write_message(sock, encode_command(command))
            return decode_response(read_message(sock))
        except socket.timeout as e:
            raise DaemonTimeoutError(f"daemon timed out after {timeout}s") from e
        except ProtocolError:
            raise
        except OSError as e:
            raise IPCError(f"daemon connection failed: {e}") from e
        finally:
            sock.close()

    def remove_stale(self) -> None:
        try:
            self.socket_path.unlink()
            logger.info("Removed stale daemon socket %s", self.socket_path)
        except FileNotFoundError:
            pass


class DaemonClient:
    """Typed wrapper over a transport.

    Every method accepts ``timeout``; the whole exchange, connect included,
    is bounded by it.
    """

    def __init__(self, transport: Transport, default_timeout: float = DEFAULT_REQUEST_TIMEOUT):
        self.transport = transport
        self.default_timeout = default_timeout

    def _call(self, command: Command, timeout: Optional[float]) -> Response:
        timeout = self.default_timeout if timeout is None else timeout
        response = bounded_call(lambda: self.transport.request(command, timeout), timeout)
        if isinstance(response, ErrorResponse):
            raise IPCError(response.message)
        return response

    def _expect_success(self, command: Command, timeout: Optional[float]) -> None:
        response = self._call(command, timeout)
        if not isinstance(response, SuccessResponse):
            raise ProtocolError(f"expected Success, got {type(response).__name__}")

    def get_state(self, timeout: Optional[float] = None) -> StateInfoResponse:
        response = self._call(GetStateCommand(), timeout)
        if not isinstance(response, StateInfoResponse):
            raise ProtocolError(f"expected StateInfo, got {type(response).__name__}")
        return response

    def unlock(self, password: str, timeout: Optional[float] = None) -> None:
        self._expect_success(UnlockCommand(password=password), timeout)

    def lock(self, timeout: Optional[float] = None) -> None:
        self._expect_success(LockCommand(), timeout)

    def exit(self, timeout: Optional[float] = None) -> None:
        self._expect_success(ExitCommand(), timeout)

    def ping(self, timeout: Optional[float] = None) -> bool:
        """True if a daemon answered GetState in time."""
        try:
            self.get_state(timeout)
        except IPCError:
            return False
        return True
