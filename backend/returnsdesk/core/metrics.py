from collections import Counter
from threading import Lock
from typing import Dict, Counter as CounterType

_metrics: CounterType[str] = Counter()
_lock = Lock()


def _inc(key: str) -> None:
    with _lock:
        _metrics[key] += 1


def record_login_success() -> None:
    _inc("logins")


def record_login_failure() -> None:
    _inc("login_failures")


def record_return_submitted() -> None:
    _inc("returns_submitted")


def record_return_transition(to_status: str) -> None:
    _inc(f"returns_{to_status}")


def record_return_cancelled() -> None:
    _inc("returns_cancelled")


def record_settlement_dispatch_failure() -> None:
    _inc("refund_settlement_failures")


def snapshot() -> Dict[str, int]:
    with _lock:
        return dict(_metrics)


def reset() -> None:
    with _lock:
        _metrics.clear()
