"""Tests for the session monitor and the platform probes."""

import subprocess
import threading
import time
from unittest.mock import MagicMock, patch

import pytest

from passkeep.session import monitor as monitor_mod
from passkeep.session.monitor import SessionMonitor, SessionStatus


def _scripted_probe(*statuses):
    """Probe returning the given statuses in order, then repeating the last."""
    queue = list(statuses)

    def probe():
        if len(queue) > 1:
            return queue.pop(0)
        return queue[0]

    return probe


class TestTransitions:
    """Callback fires only on ACTIVE <-> INACTIVE changes."""

    def test_no_callback_for_initial_status(self):
        callback = MagicMock()
        mon = SessionMonitor(callback, interval=60, probe=_scripted_probe(SessionStatus.ACTIVE))
        mon.start()
        mon.stop()
        callback.assert_not_called()
        assert mon.last_status is SessionStatus.ACTIVE

    def test_callback_on_change_only(self):
        callback = MagicMock()
        probe = _scripted_probe(
            SessionStatus.ACTIVE,    # start
            SessionStatus.ACTIVE,
            SessionStatus.INACTIVE,
            SessionStatus.INACTIVE,
            SessionStatus.ACTIVE,
        )
        mon = SessionMonitor(callback, probe=probe)
        mon.last_status = probe()
        results = [mon.poll_once() for _ in range(4)]
        assert results == [None, SessionStatus.INACTIVE, None, SessionStatus.ACTIVE]
        assert [c.args[0] for c in callback.call_args_list] == [
            SessionStatus.INACTIVE, SessionStatus.ACTIVE,
        ]

    def test_unknown_is_ignored(self):
        callback = MagicMock()
        probe = _scripted_probe(
            SessionStatus.ACTIVE, SessionStatus.UNKNOWN, SessionStatus.ACTIVE
        )
        mon = SessionMonitor(callback, probe=probe)
        mon.last_status = probe()
        mon.poll_once()
        mon.poll_once()
        callback.assert_not_called()
        assert mon.last_status is SessionStatus.ACTIVE

    def test_first_definite_reading_is_not_a_transition(self):
        callback = MagicMock()
        mon = SessionMonitor(callback, probe=_scripted_probe(SessionStatus.INACTIVE))
        assert mon.last_status is SessionStatus.UNKNOWN
        assert mon.poll_once() is None
        callback.assert_not_called()
        assert mon.last_status is SessionStatus.INACTIVE

    def test_probe_exception_treated_as_unknown(self):
        callback = MagicMock()

        def probe():
            raise RuntimeError("boom")

        mon = SessionMonitor(callback, probe=probe)
        mon.last_status = SessionStatus.ACTIVE
        assert mon.poll_once() is None
        assert mon.last_status is SessionStatus.ACTIVE

    def test_callback_exception_does_not_escape(self):
        callback = MagicMock(side_effect=RuntimeError("callback failed"))
        mon = SessionMonitor(callback, probe=_scripted_probe(SessionStatus.INACTIVE))
        mon.last_status = SessionStatus.ACTIVE
        assert mon.poll_once() is SessionStatus.INACTIVE
        callback.assert_called_once()


class TestBackgroundThread:

    def test_thread_reports_transition(self):
        seen = threading.Event()
        statuses = []

        def callback(status):
            statuses.append(status)
            seen.set()

        mon = SessionMonitor(
            callback,
            interval=0.01,
            probe=_scripted_probe(SessionStatus.ACTIVE, SessionStatus.INACTIVE),
        )
        mon.start()
        try:
            assert seen.wait(2.0)
        finally:
            mon.stop()
        assert statuses == [SessionStatus.INACTIVE]
        assert not mon.is_running

    def test_stop_is_prompt(self):
        mon = SessionMonitor(MagicMock(), interval=30, probe=_scripted_probe(SessionStatus.ACTIVE))
        mon.start()
        started = time.monotonic()
        mon.stop()
        assert time.monotonic() - started < 2.0


class TestLinuxProbe:

    def _completed(self, stdout, returncode=0):
        return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr="")

    @pytest.mark.parametrize("output,expected", [
        ("State=active\n", SessionStatus.ACTIVE),
        ("State=online\n", SessionStatus.INACTIVE),
        ("State=lingering\n", SessionStatus.INACTIVE),
        ("State=weird\n", SessionStatus.UNKNOWN),
    ])
    def test_loginctl_states(self, output, expected):
        with patch.object(monitor_mod.subprocess, "run", return_value=self._completed(output)), \
                patch.object(monitor_mod.os, "getuid", return_value=1000, create=True):
            assert monitor_mod._linux_status() is expected

    def test_falls_back_to_psutil(self):
        with patch.object(monitor_mod.subprocess, "run", side_effect=FileNotFoundError("loginctl")), \
                patch.object(monitor_mod.os, "getuid", return_value=1000, create=True), \
                patch.object(monitor_mod.psutil, "users", return_value=[]):
            assert monitor_mod._linux_status() is SessionStatus.INACTIVE

    def test_psutil_with_users_is_unknown(self):
        with patch.object(monitor_mod.subprocess, "run", side_effect=FileNotFoundError("loginctl")), \
                patch.object(monitor_mod.os, "getuid", return_value=1000, create=True), \
                patch.object(monitor_mod.psutil, "users", return_value=[MagicMock()]):
            assert monitor_mod._linux_status() is SessionStatus.UNKNOWN


class TestOtherProbes:

    def test_macos_locked(self):
        plist = "<key>CGSSessionScreenIsLocked</key>\n<true/>"
        with patch.object(monitor_mod, "_run", return_value=plist):
            assert monitor_mod._macos_status() is SessionStatus.INACTIVE

    def test_macos_unlocked(self):
        with patch.object(monitor_mod, "_run", return_value="<dict></dict>"):
            assert monitor_mod._macos_status() is SessionStatus.ACTIVE

    def test_windows_active(self):
        with patch.object(monitor_mod, "_run", return_value=" console  user  1  Active"):
            assert monitor_mod._windows_status() is SessionStatus.ACTIVE

    def test_probe_failure_is_unknown(self):
        with patch.object(monitor_mod, "_run", return_value=None):
            assert monitor_mod._windows_status() is SessionStatus.UNKNOWN
            assert monitor_mod._macos_status() is SessionStatus.UNKNOWN
