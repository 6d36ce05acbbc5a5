"""In-process counters and gauges.

Series are keyed by name plus a label set, so several ledgers (one per
chain_id) can share a process without overwriting each other's gauges.
"""

from __future__ import annotations

import threading
import time
from typing import Dict, Mapping, Optional, Tuple

Labels = Tuple[Tuple[str, str], ...]
SeriesKey = Tuple[str, Labels]

_lock = threading.Lock()
_counters: Dict[SeriesKey, int] = {}
_gauges: Dict[SeriesKey, int] = {}
_started_ms = int(time.time() * 1000)


def _key(name: str, labels: Optional[Mapping[str, str]]) -> Optional[SeriesKey]:
    n = str(name or "").strip()
    if not n:
        return None
    return n, tuple(sorted((str(k), str(v)) for k, v in (labels or {}).items()))


def inc_counter(name: str, value: int = 1, *, labels: Optional[Mapping[str, str]] = None) -> None:
    k = _key(name, labels)
    if k is None:
        return
    with _lock:
        _counters[k] = _counters.get(k, 0) + int(value)


def set_gauge(name: str, value: int, *, labels: Optional[Mapping[str, str]] = None) -> None:
    k = _key(name, labels)
    if k is None:
        return
    with _lock:
        _gauges[k] = int(value)


def get_counter(name: str, *, labels: Optional[Mapping[str, str]] = None) -> int:
    k = _key(name, labels)
    with _lock:
        return _counters.get(k, 0) if k is not None else 0


def get_gauge(name: str, *, labels: Optional[Mapping[str, str]] = None) -> Optional[int]:
    k = _key(name, labels)
    with _lock:
        return _gauges.get(k) if k is not None else None


def reset() -> None:
    """Drop all series (tests)."""
    with _lock:
        _counters.clear()
        _gauges.clear()


def _series(pre: str, key: SeriesKey) -> str:
    name, labels = key
    if not labels:
        return f"{pre}{name}"
    body = ",".join(f'{k}="{v}"' for k, v in labels)
    return f"{pre}{name}{{{body}}}"


def format_prometheus(prefix: str = "bookledger_") -> str:
    """Prometheus exposition text: integer counters/gauges only."""
    pre = str(prefix or "").strip() or "bookledger_"
    with _lock:
        counters = dict(_counters)
        gauges = dict(_gauges)

    lines = [f"{pre}uptime_ms {int(time.time() * 1000) - _started_ms}"]
    lines += [f"{_series(pre, k)} {counters[k]}" for k in sorted(counters)]
    lines += [f"{_series(pre, k)} {gauges[k]}" for k in sorted(gauges)]
    return "\n".join(lines) + "\n"
