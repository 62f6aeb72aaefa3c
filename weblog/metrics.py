# FILE: weblog/metrics.py
from __future__ import annotations

import threading
from typing import Optional

from prometheus_client import REGISTRY, CollectorRegistry, Counter


class _Metrics:
    def __init__(self, registry: CollectorRegistry):
        self.logged = Counter(
            "weblog_requests_logged_total",
            "Request events emitted",
            ["level"],
            registry=registry,
        )
        self.failures = Counter(
            "weblog_logging_failures_total",
            "Failures inside the request logging path",
            ["stage"],
            registry=registry,
        )


_metrics: Optional[_Metrics] = None
_g = threading.Lock()


def get_metrics(registry: Optional[CollectorRegistry] = None) -> _Metrics:
    """
    Process-wide counters, registered once.

    Several middleware instances (one per app, or per test) share them, so
    the registry never sees a duplicate name.
    """
    global _metrics
    if _metrics is None:
        with _g:
            if _metrics is None:
                _metrics = _Metrics(registry or REGISTRY)
    return _metrics
