"""In-process counters and duration sums, rendered in Prometheus text format."""
import threading
import time
from collections import defaultdict
from contextlib import contextmanager


_lock = threading.Lock()
_counters = defaultdict(int)
_durations = defaultdict(float)


def labelled(name: str, **labels) -> str:
    if not labels:
        return name
    body = ",".join(f'{k}="{v}"' for k, v in sorted(labels.items()))
    return f"{name}{{{body}}}"


def inc(name: str, value: int = 1, **labels) -> None:
    key = labelled(name, **labels)
    with _lock:
        _counters[key] += value


def observe(name: str, value: float, **labels) -> None:
    key = labelled(name, **labels)
    with _lock:
        _durations[key] += value


@contextmanager
def timed(name: str, **labels):
    start = time.perf_counter()
    try:
        yield
    finally:
        observe(name, time.perf_counter() - start, **labels)


def snapshot() -> tuple[dict, dict]:
    with _lock:
        return dict(_counters), dict(_durations)


def reset() -> None:
    with _lock:
        _counters.clear()
        _durations.clear()


def _split_labels(name: str) -> tuple[str, str]:
    base, sep, rest = name.partition("{")
    return base, sep + rest


def render_text() -> str:
    counters, durations = snapshot()
    lines = []
    typed = set()
    for name, value in sorted(counters.items()):
        base, _ = _split_labels(name)
        if base not in typed:
            lines.append(f"# TYPE {base} counter")
            typed.add(base)
        lines.append(f"{name} {value}")
    for name, value in sorted(durations.items()):
        base, labels = _split_labels(name)
        lines.append(f"{base}_sum{labels} {value:.6f}")
    return "\n".join(lines) + "\n"
