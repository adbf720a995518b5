from collections import Counter
from threading import Lock
from typing import Dict, Counter as CounterType

_metrics: CounterType[str] = Counter()
_lock = Lock()


def _inc(key: str, amount: int = 1) -> None:
    with _lock:
        _metrics[key] += amount


def record_deletion_initiated() -> None:
    _inc("deletions_initiated")


def record_account_restored() -> None:
    _inc("accounts_restored")


def record_oauth_unlinked() -> None:
    _inc("oauth_unlinked")


def record_notification_failure() -> None:
    _inc("notification_failures")


def record_sweep(*, succeeded: int, failed: int, skipped: int) -> None:
    _inc("sweep_runs")
    _inc("sweep_accounts_deleted", succeeded)
    _inc("sweep_accounts_failed", failed)
    _inc("sweep_accounts_skipped", skipped)


def snapshot() -> Dict[str, int]:
    with _lock:
        return dict(_metrics)


def reset() -> None:
    with _lock:
        _metrics.clear()
