"""
Throttle and backoff gates for resource channels.

Both gates are small in-memory state machines keyed by ResourceKind.
Callers pass the current time in, so they can be driven by any clock.
Neither survives a restart: a fresh process starts optimistic.
"""

import threading
from dataclasses import dataclass
from typing import Dict, Optional

from .resources import ResourceKind


class ThrottleGate:
    """Enforces a minimum spacing between attempts, regardless of outcome."""

    def __init__(self):
        self._lock = threading.Lock()
        self._last_attempt: Dict[ResourceKind, float] = {}

    def try_acquire(self, kind: ResourceKind, now: float, min_interval: float) -> bool:
        """
        Take an attempt slot for `kind` if `min_interval` has passed since
        the last one. Records `now` as the new baseline only on success.

        Returns:
            True if the attempt may proceed
        """
        with self._lock:
            last = self._last_attempt.get(kind)
            if last is not None and now - last < min_interval:
                return False
            self._last_attempt[kind] = now
            return True

    def record(self, kind: ResourceKind, now: float) -> None:
        """Unconditionally record an attempt (used by forced syncs)."""
        with self._lock:
            self._last_attempt[kind] = now

    def is_due(self, kind: ResourceKind, now: float, min_interval: float) -> bool:
        """Check whether try_acquire would succeed, without recording anything."""
        with self._lock:
            last = self._last_attempt.get(kind)
            return last is None or now - last >= min_interval

    def last_attempt(self, kind: ResourceKind) -> Optional[float]:
        with self._lock:
            return self._last_attempt.get(kind)

    def reset(self, kind: Optional[ResourceKind] = None) -> None:
        """Forget attempt history for one kind, or for all of them."""
        with self._lock:
            if kind is None:
                self._last_attempt.clear()
            else:
                self._last_attempt.pop(kind, None)


@dataclass
class BackoffState:
    active: bool = False
    resume_at: float = 0.0


class BackoffGate:
    """
    Suppresses attempts for a fixed cooldown after a failure.

    An armed gate stays armed after resume_at passes until someone clears
    it; is_blocked() only compares against the clock.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._states: Dict[ResourceKind, BackoffState] = {}

    def is_blocked(self, kind: ResourceKind, now: float) -> bool:
        """True while an armed gate's resume_at is still in the future."""
        with self._lock:
            state = self._states.get(kind)
            return bool(state and state.active and state.resume_at > now)

    def is_armed(self, kind: ResourceKind) -> bool:
        with self._lock:
            state = self._states.get(kind)
            return bool(state and state.active)

    def arm(self, kind: ResourceKind, now: float, cooldown: float) -> float:
        """
        Block `kind` until now + cooldown.

        Returns:
            The resume_at timestamp
        """
        resume_at = now + cooldown
        with self._lock:
            self._states[kind] = BackoffState(active=True, resume_at=resume_at)
        return resume_at

    def clear(self, kind: ResourceKind) -> None:
        with self._lock:
            self._states.pop(kind, None)

    def resume_at(self, kind: ResourceKind) -> Optional[float]:
        """resume_at of an armed gate, or None when inactive."""
        with self._lock:
            state = self._states.get(kind)
            if state and state.active:
                return state.resume_at
            return None
