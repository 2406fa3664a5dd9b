"""
Log throttling for repeated failures.

The daemon's accept loop retries forever after a socket error. Without
throttling, a persistent failure writes the same line once per backoff
interval for as long as the daemon runs. This module keeps:
1. Deduplication of repeated messages per source
2. Exponential backoff for sources that keep repeating
3. A count of what was suppressed, reported on the next allowed message
"""

import hashlib
import re
import threading
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple


@dataclass
class ThrottleState:
    """Track throttling state for a specific message/source combination."""
    last_logged: float
    suppressed_count: int
    backoff_multiplier: float = 1.0


class LogThrottler:
    """
    Rate limit and deduplicate log messages.

    Messages with severity "critical" or "error" are never throttled.
    """

    _VARIABLE_PARTS = (re.compile(r"\d+"), re.compile(r"[a-f0-9]{8,}"))

    def __init__(
        self,
        min_interval_seconds: float = 60.0,  # Min time between identical messages
        max_backoff_multiplier: float = 10.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.min_interval = min_interval_seconds
        self.max_backoff = max_backoff_multiplier
        self._clock = clock
        self._lock = threading.Lock()
        self.throttle_states: Dict[str, ThrottleState] = {}
        self.total_suppressed = 0

    def _get_message_hash(self, message: str) -> str:
        """Hash of the message with numbers and hex runs normalized away."""
        normalized = message.lower()
        for pattern in self._VARIABLE_PARTS:
            normalized = pattern.sub("X", normalized)
        return hashlib.md5(normalized.encode()).hexdigest()[:8]

    def should_log(
        self,
        source: str,
        message: str,
        severity: str = "info",
    ) -> Tuple[bool, Optional[str]]:
        """
        Check if a message should be logged or throttled.

        Returns:
            Tuple of (should_log, suppressed_note). The note is set when
            earlier copies of this message were suppressed.
        """
        if severity.lower() in ("critical", "error"):
            return True, None

        now = self._clock()
        key = f"{source}:{self._get_message_hash(message)}"

        with self._lock:
            state = self.throttle_states.get(key)
            if state is None:
                self.throttle_states[key] = ThrottleState(last_logged=now, suppressed_count=0)
                return True, None

            required_interval = self.min_interval * state.backoff_multiplier
            if now - state.last_logged < required_interval:
                state.suppressed_count += 1
                self.total_suppressed += 1
                # Increase backoff for persistent spam
                if state.suppressed_count % 10 == 0:
                    state.backoff_multiplier = min(
                        state.backoff_multiplier * 1.5, self.max_backoff
                    )
                return False, None

            note = None
            if state.suppressed_count > 0:
                note = f"[Previously suppressed {state.suppressed_count} similar messages from {source}]"
            state.last_logged = now
            state.suppressed_count = 0
            if state.backoff_multiplier > 1.0:
                state.backoff_multiplier = max(1.0, state.backoff_multiplier * 0.9)
            return True, note

    def reset_source(self, source: str) -> None:
        """Forget throttling state for one source."""
        with self._lock:
            for key in [k for k in self.throttle_states if k.startswith(f"{source}:")]:
                del self.throttle_states[key]
