"""Order load generator core module.

This module drives constant-rate order creation traffic against a fulfillment
API. Every tick synthesizes a fresh order, POSTs it with a new idempotency key,
validates the response against the API contract and records the outcome. A
summary report and pass/fail thresholds are produced when the run ends.
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import os
import random
import re
import signal
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Sequence, Union

import aiohttp
import yaml

from arrival_scheduler import ArrivalScheduler, SchedulerResult, Tick
from catalog import SetupError, distinct_skus, load_catalog, read_data_file
from metrics_aggregator import MetricsAggregator, MetricsSnapshot
from orders import OrderRequest, Product
from payload_synth import PayloadSynthesizer, new_idempotency_key
from report import Thresholds, evaluate_thresholds, render_text, write_json_summary
from response_validator import HttpResult, Outcome, OutcomeKind, ResponseValidator

__version__ = "0.1.0"

LOGGER = logging.getLogger("order_load")

ORDERS_PATH = "/fulfillment_orders"
BODY_LOG_LIMIT = 500
SUCCESS_LOG_EVERY = 50

# Environment variables recognised on top of the config file
ENV_OVERRIDES = {
    "BASE_URL": "target",
    "PRODUCT_CATALOG_PATH": "catalog_path",
    "TEST_DURATION": "duration",
    "TARGET_RATE": "rate",
}

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$")
_DURATION_UNITS = {"ms": 0.001, "s": 1.0, "m": 60.0, "h": 3600.0}


def parse_duration(value: Union[str, float, int]) -> float:
    """Return seconds for ``300``, ``"300"``, ``"30s"``, ``"5m"`` or ``"1h"``."""

    if isinstance(value, (int, float)):
        return float(value)
    match = _DURATION_RE.match(value)
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return float(amount) * _DURATION_UNITS[unit or "s"]


@dataclass
class LoadTestConfig:
    """Configuration holder for the order load generator."""

    target: str
    catalog_path: str
    rate: float = 2.0
    duration: Union[float, str] = 300.0
    min_workers: int = 5
    max_workers: int = 20
    timeout_seconds: float = 10.0
    pause_seconds: float = 0.1
    headers: Dict[str, str] = field(default_factory=dict)
    seed: Optional[int] = None
    summary_path: Optional[str] = None
    thresholds: Dict[str, float] = field(default_factory=dict)

    def __post_init__(self) -> None:
        self.rate = float(self.rate)
        self.duration = parse_duration(self.duration)
        self.min_workers = int(self.min_workers)
        self.max_workers = int(self.max_workers)

        if self.rate <= 0:
            raise ValueError("rate must be a positive number")
        if self.duration <= 0:
            raise ValueError("duration must be a positive number")
        if not 1 <= self.min_workers <= self.max_workers:
            raise ValueError("workers must satisfy 1 <= min_workers <= max_workers")
        if self.timeout_seconds <= 0:
            raise ValueError("timeout_seconds must be a positive number")
        if self.pause_seconds < 0:
            raise ValueError("pause_seconds cannot be negative")
        for name, value in self.headers.items():
            if not isinstance(name, str) or not isinstance(value, str):
                raise ValueError(f"Header {name!r} must map a string name to a string value")

        try:
            self.threshold_limits = Thresholds.from_dict(self.thresholds)
        except TypeError as exc:
            raise ValueError(f"Unknown threshold in {sorted(self.thresholds)}") from exc

        # Expand the target into a full base URL if only host:port provided
        if self.target.startswith("http://") or self.target.startswith("https://"):
            base = self.target
        else:
            base = f"http://{self.target}"
        self.base_url = base.rstrip("/")

        merged_headers = {
            "User-Agent": f"order-load/{__version__}",
            "Content-Type": "application/json",
        }
        merged_headers.update(self.headers)
        self.headers = merged_headers

    @classmethod
    def from_dict(cls, raw: Dict[str, Any]) -> "LoadTestConfig":
        """Build a config object from a plain dict."""

        return cls(**raw)

    @property
    def orders_url(self) -> str:
        return f"{self.base_url}{ORDERS_PATH}"


def apply_env_overrides(raw: Dict[str, Any], environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
    """Return a copy of ``raw`` with any recognised environment variables applied."""

    env = os.environ if environ is None else environ
    merged = dict(raw)
    for variable, key in ENV_OVERRIDES.items():
        value = env.get(variable)
        if value:
            merged[key] = value
    return merged


class OrderLoadGenerator:
    """Runs the synthesize, send, validate and record cycle on every scheduler tick."""

    def __init__(
        self,
        config: LoadTestConfig,
        catalog: Sequence[Product],
        *,
        synthesizer: Optional[PayloadSynthesizer] = None,
        validator: Optional[ResponseValidator] = None,
    ) -> None:
        if not catalog:
            raise SetupError("Product catalog is empty")
        self.config = config
        self.catalog = tuple(catalog)
        self.synthesizer = synthesizer or PayloadSynthesizer()
        self.validator = validator or ResponseValidator()
        self.rng = random.Random(config.seed)
        self.metrics: Optional[MetricsAggregator] = None
        self.scheduler = ArrivalScheduler(
            config.rate,
            config.duration,
            config.min_workers,
            config.max_workers,
            pause=config.pause_seconds,
        )
        self.scheduler_result: Optional[SchedulerResult] = None
        self._session: Optional[aiohttp.ClientSession] = None

    async def run(self, session: Optional[aiohttp.ClientSession] = None) -> MetricsSnapshot:
        """Run until the configured duration elapses or a signal stops it."""

        if session is not None:
            self._session = session
            return await self._run()

        timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
        async with aiohttp.ClientSession(timeout=timeout) as owned:
            self._session = owned
            return await self._run()

    async def _run(self) -> MetricsSnapshot:
        loop = asyncio.get_running_loop()
        installed = _install_signal_handlers(loop, self.stop)

        LOGGER.info(
            "Starting order load at %.2f rps for %.0fs against %s (workers %d-%d, %d distinct skus)",
            self.config.rate,
            self.config.duration,
            self.config.base_url,
            self.config.min_workers,
            self.config.max_workers,
            distinct_skus(self.catalog),
        )

        self.metrics = MetricsAggregator(seed=self.config.seed)
        try:
            self.scheduler_result = await self.scheduler.run(self._one_cycle)
        finally:
            _remove_signal_handlers(loop, installed)

        snapshot = self.metrics.snapshot()
        self.log_summary(snapshot, self.scheduler_result)
        return snapshot

    def stop(self) -> None:
        self.scheduler.stop()

    async def _one_cycle(self, tick: Tick) -> None:
        """Perform a single order creation attempt."""

        assert self._session is not None and self.metrics is not None, "Session must be initialized before running"

        request = self.synthesizer.synthesize(self.catalog, self.rng)
        if request.skipped_skus:
            self.metrics.record_skipped_skus(request.skipped_skus)
            LOGGER.warning(
                "Duplicate SKU skipped in %s: %d of %d candidates dropped",
                request.seller_order_id,
                request.skipped_skus,
                request.requested_item_count,
            )

        payload = request.to_payload()
        if tick.index == 0:
            LOGGER.debug("Sample order payload: %s", json.dumps(payload)[:BODY_LOG_LIMIT])

        idempotency_key = new_idempotency_key()
        response = await self._send_order(payload, idempotency_key)
        outcome = self.validator.validate(request, response)
        self.metrics.record(outcome)

        if outcome.ok:
            if tick.index % SUCCESS_LOG_EVERY == 0:
                LOGGER.info(
                    "Order created: %s with %d items (%.0fms)",
                    request.display_order_id,
                    len(request.items),
                    outcome.latency_ms,
                )
        else:
            _log_failure(request, idempotency_key, outcome, response)

    async def _send_order(self, payload: Dict[str, Any], idempotency_key: str) -> HttpResult:
        """POST the order and return status, body and latency (no exception escapes)."""

        assert self._session is not None
        headers = dict(self.config.headers)
        headers["Idempotency-Key"] = idempotency_key

        started = time.perf_counter()
        try:
            async with self._session.post(self.config.orders_url, json=payload, headers=headers) as response:
                body = await response.text(errors="replace")
                return HttpResult(response.status, body, _elapsed_ms(started))
        except asyncio.TimeoutError:
            return HttpResult(None, "", _elapsed_ms(started), "timeout")
        except aiohttp.ClientError as exc:
            return HttpResult(None, "", _elapsed_ms(started), exc.__class__.__name__)
        except Exception as exc:
            LOGGER.exception("Unexpected error while creating order")
            return HttpResult(None, "", _elapsed_ms(started), exc.__class__.__name__)

    def log_summary(self, snapshot: MetricsSnapshot, result: Optional[SchedulerResult] = None) -> None:
        """Emit a one-line summary of the finished run."""

        parts = [
            f"total={snapshot.total}",
            f"success={snapshot.successes}",
            f"success_rate={snapshot.success_rate:.2%}",
            f"p95={snapshot.latency.p95:.0f}ms",
        ]
        failures = ", ".join(
            f"{kind.value}:{snapshot.count(kind)}"
            for kind in OutcomeKind
            if kind is not OutcomeKind.SUCCESS and snapshot.count(kind)
        )
        if failures:
            parts.append(f"failures=[{failures}]")
        if result is not None:
            parts.append(f"ticks={result.dispatched}/{result.planned}")
            if result.delayed:
                parts.append(f"delayed={result.delayed}")
            parts.append(f"peak_workers={result.peak_workers}")
        LOGGER.info("FINAL %.1fs %s", snapshot.elapsed_seconds, " | ".join(parts))


def _elapsed_ms(started: float) -> float:
    return (time.perf_counter() - started) * 1000.0


def _log_failure(request: OrderRequest, idempotency_key: str, outcome: Outcome, response: HttpResult) -> None:
    body = response.body[:BODY_LOG_LIMIT]
    if outcome.kind is OutcomeKind.VALIDATION_FAILURE:
        LOGGER.warning(
            "Validation error: order=%s key=%s body=%s", request.seller_order_id, idempotency_key, body
        )
    elif outcome.kind is OutcomeKind.DUPLICATE_CONFLICT:
        LOGGER.warning(
            "Duplicate order detected: order=%s key=%s body=%s", request.seller_order_id, idempotency_key, body
        )
    else:
        LOGGER.warning(
            "Order creation failed: status=%s detail=%s checks=%s order=%s key=%s body=%s",
            outcome.status,
            outcome.detail,
            ",".join(outcome.failed_checks) or "-",
            request.seller_order_id,
            idempotency_key,
            body,
        )


def _install_signal_handlers(loop: asyncio.AbstractEventLoop, stop: Callable[[], None]) -> list:
    """Install SIGINT/SIGTERM handlers to stop the generator gracefully."""

    installed = []
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop)
        except (NotImplementedError, RuntimeError, ValueError):  # pragma: no cover - Windows / non-main thread
            LOGGER.debug("Signal handlers not supported on this platform")
            break
        installed.append(sig)
    return installed


def _remove_signal_handlers(loop: asyncio.AbstractEventLoop, installed: Iterable[signal.Signals]) -> None:
    for sig in installed:
        loop.remove_signal_handler(sig)


def load_config_file(path: Path) -> Dict[str, Any]:
    """Load a configuration file in YAML or JSON format."""

    return dict(read_data_file(path) or {})


def setup_logging(level: str = "INFO") -> None:
    """Configure basic logging output."""

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    )


def run_with_config(config: LoadTestConfig, catalog: Sequence[Product]) -> MetricsSnapshot:
    """Helper to run the generator with asyncio.run."""

    async def _runner() -> MetricsSnapshot:
        generator = OrderLoadGenerator(config, catalog)
        return await generator.run()

    return asyncio.run(_runner())


def build_argparser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Constant-rate order creation load generator")
    parser.add_argument("--config", type=Path, default=None, help="Path to YAML/JSON config file")
    parser.add_argument("--target", "-t", default=None, help="Base URL or host:port of the fulfillment API")
    parser.add_argument("--catalog", dest="catalog_path", default=None, help="Path to the products JSON/YAML file")
    parser.add_argument("--rate", type=float, default=None, help="Orders per second")
    parser.add_argument("--duration", default=None, help="Test duration, e.g. 300, 30s, 5m")
    parser.add_argument("--min-workers", type=int, default=None, help="Workers started up front")
    parser.add_argument("--max-workers", type=int, default=None, help="Upper bound on concurrent workers")
    parser.add_argument("--seed", type=int, default=None, help="Seed for reproducible payloads")
    parser.add_argument("--summary-json", dest="summary_path", default=None, help="Write a JSON summary here")
    parser.add_argument("--log-level", type=str, default="INFO", help="Logging level (DEBUG, INFO, ...)")
    return parser


def main(argv: Optional[Iterable[str]] = None) -> None:
    """CLI entry point for the order load generator."""

    args = build_argparser().parse_args(list(argv) if argv is not None else None)
    setup_logging(args.log_level)

    try:
        raw = load_config_file(args.config) if args.config else {}
        raw = apply_env_overrides(raw)
        for key in ("target", "catalog_path", "rate", "duration", "min_workers", "max_workers", "seed", "summary_path"):
            value = getattr(args, key)
            if value is not None:
                raw[key] = value
        config = LoadTestConfig.from_dict(raw)
        catalog = load_catalog(config.catalog_path)
    except (SetupError, ValueError, TypeError, OSError, yaml.YAMLError) as exc:
        LOGGER.error("Setup failed, not starting the run: %s", exc)
        raise SystemExit(2) from exc

    snapshot = run_with_config(config, catalog)
    verdicts = evaluate_thresholds(snapshot, config.threshold_limits)
    sys.stdout.write(render_text(snapshot, verdicts))
    if config.summary_path:
        written = write_json_summary(config.summary_path, snapshot, verdicts)
        LOGGER.info("JSON summary written to %s", written)

    raise SystemExit(0 if all(verdict.passed for verdict in verdicts) else 1)


if __name__ == "__main__":  # pragma: no cover - CLI usage
    main()
