"""Tests for the daemon client, bounded calls and discovery state machine."""

import socket
import threading
import time

import pytest

from passkeep.core.exceptions import DaemonTimeoutError, IPCError, ProtocolError
from passkeep.daemon.client import DaemonClient, SocketTransport, Transport, bounded_call
from passkeep.daemon.discovery import DaemonDiscovery, ProbeState
from passkeep.daemon.protocol import (
    ErrorResponse,
    GetStateCommand,
    StateInfoResponse,
    SuccessResponse,
)


class ScriptedTransport(Transport):
    """Transport whose behavior is set per test."""

    def __init__(self, exists=True, response=None, error=None, delay=0.0):
        self.exists = exists
        self.response = response if response is not None else StateInfoResponse(False)
        self.error = error
        self.delay = delay
        self.requests = []
        self.removed = False

    def socket_exists(self):
        return self.exists

    def request(self, command, timeout):
        self.requests.append(command)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.response

    def remove_stale(self):
        self.removed = True
        self.exists = False


class TestBoundedCall:

    def test_returns_value(self):
        assert bounded_call(lambda: 42, timeout=1.0) == 42

    def test_reraises_worker_exception(self):
        def boom():
            raise ValueError("bad")

        with pytest.raises(ValueError, match="bad"):
            bounded_call(boom, timeout=1.0)

    def test_times_out(self):
        release = threading.Event()
        started = time.monotonic()
        with pytest.raises(DaemonTimeoutError):
            bounded_call(lambda: release.wait(5), timeout=0.1)
        assert time.monotonic() - started < 1.0
        release.set()


class TestDaemonClient:

    def test_get_state(self):
        client = DaemonClient(ScriptedTransport(response=StateInfoResponse(True, b"k" * 32, b"s" * 16)))
        info = client.get_state()
        assert info.unlocked

    def test_error_response_raises(self):
        client = DaemonClient(ScriptedTransport(response=ErrorResponse("invalid password or corrupt file")))
        with pytest.raises(IPCError, match="invalid password"):
            client.unlock("nope")

    def test_unexpected_response_type(self):
        client = DaemonClient(ScriptedTransport(response=SuccessResponse()))
        with pytest.raises(ProtocolError):
            client.get_state()

    def test_lock_expects_success(self):
        client = DaemonClient(ScriptedTransport(response=SuccessResponse()))
        client.lock()

    def test_ping(self):
        assert DaemonClient(ScriptedTransport()).ping(timeout=0.5)
        assert not DaemonClient(ScriptedTransport(error=IPCError("down"))).ping(timeout=0.5)
        assert not DaemonClient(ScriptedTransport(delay=1.0)).ping(timeout=0.05)


class TestDiscovery:
    """UNKNOWN -> PROBING_FILE -> PROBING_CONNECT -> REACHABLE / UNREACHABLE."""

    def test_no_socket_file_skips_connect(self):
        transport = ScriptedTransport(exists=False)
        disc = DaemonDiscovery(transport, timeout=0.1)
        assert disc.probe() is ProbeState.UNREACHABLE
        assert disc.transitions == [
            ProbeState.UNKNOWN, ProbeState.PROBING_FILE, ProbeState.UNREACHABLE,
        ]
        assert transport.requests == []

    def test_reachable(self):
        transport = ScriptedTransport(response=StateInfoResponse(True, b"k" * 32, b"s" * 16))
        disc = DaemonDiscovery(transport, timeout=0.1)
        assert disc.probe() is ProbeState.REACHABLE
        assert disc.transitions == [
            ProbeState.UNKNOWN, ProbeState.PROBING_FILE,
            ProbeState.PROBING_CONNECT, ProbeState.REACHABLE,
        ]
        assert disc.last_info.unlocked
        assert transport.requests == [GetStateCommand()]

    def test_connect_failure(self):
        disc = DaemonDiscovery(ScriptedTransport(error=IPCError("refused")), timeout=0.1)
        assert disc.probe() is ProbeState.UNREACHABLE
        assert disc.transitions[-2:] == [ProbeState.PROBING_CONNECT, ProbeState.UNREACHABLE]
        assert disc.last_info is None

    def test_timeout_bounded(self):
        disc = DaemonDiscovery(ScriptedTransport(delay=2.0), timeout=0.1)
        started = time.monotonic()
        assert disc.probe() is ProbeState.UNREACHABLE
        assert time.monotonic() - started < 1.0

    def test_probe_resets_each_time(self):
        transport = ScriptedTransport()
        disc = DaemonDiscovery(transport, timeout=0.1)
        assert disc.is_reachable()
        transport.exists = False
        assert not disc.is_reachable()
        assert len(disc.transitions) == 3


@pytest.mark.skipif(not hasattr(socket, "AF_UNIX"), reason="needs AF_UNIX")
class TestSocketTransport:

    def test_missing_socket(self, runtime_dir):
        transport = SocketTransport(runtime_dir / "none.sock")
        assert not transport.socket_exists()
        with pytest.raises(IPCError):
            transport.request(GetStateCommand(), timeout=0.5)

    def test_stale_socket_removed(self, runtime_dir):
        path = runtime_dir / "stale.sock"
        s = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        s.bind(str(path))
        s.close()
        transport = SocketTransport(path)
        with pytest.raises(IPCError, match="stale"):
            transport.request(GetStateCommand(), timeout=0.5)
        assert not path.exists()

    def test_unresponsive_listener_times_out(self, runtime_dir):
        path = runtime_dir / "slow.sock"
        server = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        server.bind(str(path))
        server.listen(1)
        try:
            with pytest.raises(DaemonTimeoutError):
                SocketTransport(path).request(GetStateCommand(), timeout=0.1)
        finally:
            server.close()
