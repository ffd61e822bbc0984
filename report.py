"""Final run report: text summary, JSON summary and pass/fail thresholds."""

from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

from metrics_aggregator import MetricsSnapshot
from response_validator import OutcomeKind


@dataclass(frozen=True)
class Thresholds:
    min_success_rate: float = 0.95
    max_p95_ms: float = 2000.0
    max_failed_rate: float = 0.05

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "Thresholds":
        return cls(**{key: float(value) for key, value in raw.items()})


@dataclass(frozen=True)
class ThresholdVerdict:
    name: str
    limit: str
    observed: float
    passed: bool


def evaluate_thresholds(snapshot: MetricsSnapshot, thresholds: Thresholds) -> List[ThresholdVerdict]:
    return [
        ThresholdVerdict(
            "order_creation_success",
            f"rate>{thresholds.min_success_rate}",
            snapshot.success_rate,
            snapshot.success_rate > thresholds.min_success_rate,
        ),
        ThresholdVerdict(
            "order_creation_duration",
            f"p(95)<{thresholds.max_p95_ms}",
            snapshot.latency.p95,
            snapshot.latency.p95 < thresholds.max_p95_ms,
        ),
        ThresholdVerdict(
            "http_req_failed",
            f"rate<{thresholds.max_failed_rate}",
            snapshot.failed_request_rate,
            snapshot.failed_request_rate < thresholds.max_failed_rate,
        ),
    ]


def render_text(
    snapshot: MetricsSnapshot,
    verdicts: Optional[Sequence[ThresholdVerdict]] = None,
    indent: str = " ",
) -> str:
    lat = snapshot.latency
    lines = [
        "",
        "====== Load Test Summary ======",
        "",
        f"Test Duration: {snapshot.elapsed_seconds:.1f}s",
        "",
        "HTTP Requests:",
        f"  Total: {snapshot.total}",
        f"  Rate: {snapshot.throughput:.2f}/s",
        "",
        "Order Creation:",
        f"  Success Rate: {snapshot.success_rate * 100:.2f}%",
        f"  Avg Duration: {lat.mean:.2f}ms",
        f"  P95 Duration: {lat.p95:.2f}ms",
        f"  Max Duration: {lat.max:.2f}ms",
        "",
        "Errors:",
        f"  Validation Errors: {snapshot.count(OutcomeKind.VALIDATION_FAILURE)}",
        f"  Duplicate Conflicts: {snapshot.count(OutcomeKind.DUPLICATE_CONFLICT)}",
        f"  Transport Failures: {snapshot.count(OutcomeKind.TRANSPORT_FAILURE)}",
        f"  Duplicate SKU Errors: {snapshot.skipped_skus}",
    ]
    if snapshot.failed_checks:
        lines.append("")
        lines.append("Failed Checks:")
        for name, count in sorted(snapshot.failed_checks.items(), key=lambda kv: (-kv[1], kv[0])):
            lines.append(f"  {name}: {count}")
    if verdicts:
        lines.append("")
        lines.append("Thresholds:")
        for verdict in verdicts:
            mark = "PASS" if verdict.passed else "FAIL"
            lines.append(f"  [{mark}] {verdict.name} {verdict.limit} (observed {verdict.observed:.4f})")
    lines.append("")
    lines.append("================================")
    return "\n".join(indent + line if line else line for line in lines) + "\n"


def render_json(
    snapshot: MetricsSnapshot, verdicts: Optional[Sequence[ThresholdVerdict]] = None
) -> Dict[str, Any]:
    return {
        "total": snapshot.total,
        "elapsed_seconds": snapshot.elapsed_seconds,
        "throughput": snapshot.throughput,
        "success_rate": snapshot.success_rate,
        "failed_request_rate": snapshot.failed_request_rate,
        "latency_ms": asdict(snapshot.latency),
        "outcomes": {kind.value: snapshot.count(kind) for kind in OutcomeKind},
        "status_codes": dict(snapshot.by_status),
        "failed_checks": dict(snapshot.failed_checks),
        "duplicate_sku_skips": snapshot.skipped_skus,
        "thresholds": [asdict(verdict) for verdict in verdicts or ()],
    }


def write_json_summary(
    path: Union[str, Path],
    snapshot: MetricsSnapshot,
    verdicts: Optional[Sequence[ThresholdVerdict]] = None,
) -> Path:
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    target.write_text(json.dumps(render_json(snapshot, verdicts), indent=2, sort_keys=True))
    return target
