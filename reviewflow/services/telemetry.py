from __future__ import annotations

import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Any, Deque


@dataclass(frozen=True)
class ExternalCallSample:
    ts: float
    integration: str
    latency_ms: float
    success: bool


@dataclass(frozen=True)
class RequestSample:
    ts: float
    path: str
    status_code: int
    latency_ms: float


_external_samples: Deque[ExternalCallSample] = deque(maxlen=10000)
_request_samples: Deque[RequestSample] = deque(maxlen=10000)
_counters: dict[str, int] = defaultdict(int)


def record_request(*, path: str, status_code: int, latency_ms: float) -> None:
    _request_samples.append(
        RequestSample(ts=time.time(), path=path, status_code=status_code, latency_ms=latency_ms)
    )


def record_external_call(*, integration: str, latency_ms: float, success: bool) -> None:
    _external_samples.append(
        ExternalCallSample(
            ts=time.time(),
            integration=integration,
            latency_ms=latency_ms,
            success=success,
        )
    )


def increment_counter(name: str, value: int = 1) -> None:
    _counters[name] += value


def get_counter(name: str) -> int:
    return _counters.get(name, 0)


def external_call_summary(window_s: int = 3600) -> dict[str, dict[str, Any]]:
    # Per-integration call volume, error rate and mean latency over the window.
    cutoff = time.time() - window_s
    summary: dict[str, dict[str, Any]] = {}
    for sample in _external_samples:
        if sample.ts < cutoff:
            continue
        entry = summary.setdefault(
            sample.integration, {"calls": 0, "failures": 0, "latency_ms_total": 0.0}
        )
        entry["calls"] += 1
        entry["latency_ms_total"] += sample.latency_ms
        if not sample.success:
            entry["failures"] += 1
    for entry in summary.values():
        calls = entry["calls"]
        entry["error_rate"] = entry["failures"] / calls if calls else 0.0
        entry["latency_ms_avg"] = entry.pop("latency_ms_total") / calls if calls else 0.0
    return summary


def request_summary(window_s: int = 3600) -> dict[str, dict[str, Any]]:
    cutoff = time.time() - window_s
    summary: dict[str, dict[str, Any]] = {}
    for sample in _request_samples:
        if sample.ts < cutoff:
            continue
        entry = summary.setdefault(sample.path, {"requests": 0, "errors": 0})
        entry["requests"] += 1
        if sample.status_code >= 500:
            entry["errors"] += 1
    return summary


def snapshot() -> dict[str, Any]:
    return {
        "counters": dict(_counters),
        "external_calls": external_call_summary(),
        "requests": request_summary(),
    }


def reset_telemetry() -> None:
    # Tests only.
    _external_samples.clear()
    _request_samples.clear()
    _counters.clear()
