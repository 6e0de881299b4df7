"""
auth/ids.py -- Snowflake-style 63-bit id generator for session rows.

Layout (most significant first):
  41 bits  milliseconds since EPOCH_MS
  10 bits  node id (Settings.node_id)
  12 bits  per-millisecond sequence

Ids from one generator are strictly increasing. Generators on different nodes
never collide as long as their node ids differ. No database counter is
involved, so concurrent requests never coordinate through the store to get an
id. The lock below guards only this generator's own (last_ms, sequence) pair
and is never held across I/O.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable

# 2020-01-01T00:00:00Z. Gives ~69 years of headroom in 41 bits.
EPOCH_MS = 1577836800000

_NODE_BITS = 10
_SEQUENCE_BITS = 12
_MAX_NODE = (1 << _NODE_BITS) - 1
_MAX_SEQUENCE = (1 << _SEQUENCE_BITS) - 1


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class SnowflakeGenerator:
    """Thread-safe generator of unique, roughly time-ordered integer ids.

    Usage:
        gen = SnowflakeGenerator(node_id=3)
        session_id = gen.generate()
    """

    def __init__(self, node_id: int = 0, clock: Callable[[], int] = _now_ms) -> None:
        if not 0 <= node_id <= _MAX_NODE:
            raise ValueError(f"node_id must be between 0 and {_MAX_NODE}")
        self.node_id = node_id
        self._clock = clock
        self._lock = threading.Lock()
        self._last_ms = -1
        self._sequence = 0

    def generate(self) -> int:
        with self._lock:
            now = self._clock()
            # A wall clock that steps backwards must not repeat ids: keep
            # issuing from the last millisecond we saw.
            if now < self._last_ms:
                now = self._last_ms

            if now == self._last_ms:
                self._sequence = (self._sequence + 1) & _MAX_SEQUENCE
                if self._sequence == 0:
                    # Sequence exhausted for this millisecond.
                    now = self._wait_next_ms(self._last_ms)
            else:
                self._sequence = 0

            self._last_ms = now
            return ((now - EPOCH_MS) << (_NODE_BITS + _SEQUENCE_BITS)) | (self.node_id << _SEQUENCE_BITS) | self._sequence

    def _wait_next_ms(self, last_ms: int) -> int:
        now = self._clock()
        while now <= last_ms:
            time.sleep(0.0001)
            now = self._clock()
        return now


def parse_id(snowflake: int) -> tuple[int, int, int]:
    """Split an id into (unix_ms, node_id, sequence). Useful for debugging."""
    ms = (snowflake >> (_NODE_BITS + _SEQUENCE_BITS)) + EPOCH_MS
    node = (snowflake >> _SEQUENCE_BITS) & _MAX_NODE
    return ms, node, snowflake & _MAX_SEQUENCE
