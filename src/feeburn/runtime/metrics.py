from __future__ import annotations

import os
import threading
import time
from typing import Dict


_lock = threading.Lock()
_counters: Dict[str, int] = {}
_started_ms = int(time.time() * 1000)


def metrics_enabled() -> bool:
    v = (os.environ.get("FEEBURN_METRICS_ENABLED") or "").strip().lower()
    if not v:
        return False
    return v in {"1", "true", "yes", "y", "on"}


def inc_counter(name: str, value: int = 1) -> None:
    if not metrics_enabled():
        return
    n = str(name or "").strip()
    if not n:
        return
    try:
        v = int(value)
    except Exception:
        v = 1
    with _lock:
        _counters[n] = int(_counters.get(n, 0)) + int(v)


def reset() -> None:
    with _lock:
        _counters.clear()


def snapshot() -> dict:
    with _lock:
        return {
            "ts_ms": int(time.time() * 1000),
            "started_ms": int(_started_ms),
            "uptime_ms": int(time.time() * 1000) - int(_started_ms),
            "counters": dict(_counters),
        }


def format_prometheus(prefix: str = "feeburn_") -> str:
    """Best-effort Prometheus exposition text (integer counters only)."""
    pre = str(prefix or "").strip() or "feeburn_"
    snap = snapshot()
    lines: list[str] = [f"{pre}uptime_ms {int(snap.get('uptime_ms') or 0)}"]

    c = snap.get("counters") if isinstance(snap.get("counters"), dict) else {}
    for k in sorted(c.keys()):
        lines.append(f"{pre}{k} {int(c[k])}")

    return "\n".join(lines) + "\n"
