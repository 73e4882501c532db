"""Prometheus-style metrics for the monitor, reporter and submitter."""

from __future__ import annotations

import bisect
import logging
import math
import platform
import re
import threading
import time
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

_log = logging.getLogger("vigilante.metrics")

_NAME_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
_LABEL_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")

DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)

_Sample = Tuple[str, Dict[str, str], float]


def _format_value(value: float) -> str:
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == int(value) and abs(value) < 1e15:
        return str(int(value))
    return repr(float(value))


def _escape_label(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def _render(name: str, labels: Dict[str, str], value: float) -> str:
    if labels:
        pairs = ",".join(f'{k}="{_escape_label(v)}"' for k, v in labels.items())
        return f"{name}{{{pairs}}} {_format_value(value)}"
    return f"{name} {_format_value(value)}"


class Counter:
    """A value that only goes up."""

    kind = "counter"

    def __init__(self, name: str, help: str = "") -> None:
        self.name = name
        self.help = help
        self._value = 0.0
        self._lock = threading.Lock()

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    def inc(self) -> None:
        self.add(1.0)

    def add(self, amount: float) -> None:
        if amount < 0:
            raise ValueError("counter cannot decrease in value")
        with self._lock:
            self._value += amount

    def _samples(self, labels: Optional[Dict[str, str]] = None) -> List[_Sample]:
        return [(self.name, dict(labels or {}), self.value)]


class Gauge:
    """A value that can go up and down."""

    kind = "gauge"

    def __init__(self, name: str, help: str = "") -> None:
        self.name = name
        self.help = help
        self._value = 0.0
        self._lock = threading.Lock()

    @property
    def value(self) -> float:
        with self._lock:
            return self._value

    def set(self, value: float) -> None:
        with self._lock:
            self._value = float(value)

    def inc(self) -> None:
        self.add(1.0)

    def add(self, amount: float) -> None:
        with self._lock:
            self._value += amount

    def set_to_current_time(self) -> None:
        self.set(time.time())

    def _samples(self, labels: Optional[Dict[str, str]] = None) -> List[_Sample]:
        return [(self.name, dict(labels or {}), self.value)]


class Histogram:
    """Counts observations in cumulative buckets."""

    kind = "histogram"

    def __init__(self, name: str, help: str = "", buckets: Sequence[float] = DEFAULT_BUCKETS) -> None:
        bounds = [float(b) for b in buckets if not math.isinf(b)]
        if any(b >= a for a, b in zip(bounds[1:], bounds)):
            raise ValueError("histogram buckets must be in strictly increasing order")
        self.name = name
        self.help = help
        self.buckets: Tuple[float, ...] = tuple(bounds)
        self._counts = [0] * (len(bounds) + 1)
        self._sum = 0.0
        self._lock = threading.Lock()

    def observe(self, value: float) -> None:
        index = bisect.bisect_left(self.buckets, value)
        with self._lock:
            self._counts[index] += 1
            self._sum += value

    @property
    def count(self) -> int:
        with self._lock:
            return sum(self._counts)

    @property
    def sum(self) -> float:
        with self._lock:
            return self._sum

    @property
    def cumulative_counts(self) -> List[Tuple[float, int]]:
        """Pairs of upper bound and count of observations at or below it."""
        with self._lock:
            counts = list(self._counts)
        result = []
        running = 0
        for bound, count in zip(self.buckets + (math.inf,), counts):
            running += count
            result.append((bound, running))
        return result

    def _samples(self, labels: Optional[Dict[str, str]] = None) -> List[_Sample]:
        base = dict(labels or {})
        samples: List[_Sample] = [
            (f"{self.name}_bucket", {**base, "le": _format_value(bound)}, float(total))
            for bound, total in self.cumulative_counts
        ]
        samples.append((f"{self.name}_sum", dict(base), self.sum))
        samples.append((f"{self.name}_count", dict(base), float(self.count)))
        return samples


class _Vec:
    kind = ""

    def __init__(self, name: str, help: str, labels: Sequence[str]) -> None:
        for label in labels:
            if not _LABEL_RE.match(label) or label.startswith("__"):
                raise ValueError(f"invalid label name {label!r}")
        if len(set(labels)) != len(labels):
            raise ValueError("duplicate label names")
        self.name = name
        self.help = help
        self.label_names: Tuple[str, ...] = tuple(labels)
        self._children: Dict[Tuple[str, ...], object] = {}
        self._lock = threading.Lock()

    def _make_child(self):
        raise NotImplementedError

    def _child(self, values: Tuple[str, ...]):
        if len(values) != len(self.label_names):
            raise ValueError(
                f"inconsistent label cardinality: expected {len(self.label_names)} label values "
                f"but got {len(values)}"
            )
        key = tuple(str(v) for v in values)
        with self._lock:
            child = self._children.get(key)
            if child is None:
                child = self._make_child()
                self._children[key] = child
            return child

    def _samples(self) -> Iterator[_Sample]:
        with self._lock:
            items = sorted(self._children.items())
        for key, child in items:
            labels = dict(sorted(zip(self.label_names, key)))
            yield from child._samples(labels)


class GaugeVec(_Vec):
    """A family of gauges told apart by label values."""

    kind = "gauge"

    def _make_child(self) -> Gauge:
        return Gauge(self.name, self.help)

    def with_label_values(self, *args: str) -> Gauge:
        return self._child(args)


class HistogramVec(_Vec):
    """A family of histograms told apart by label values."""

    kind = "histogram"

    def __init__(self, name: str, help: str, labels: Sequence[str], buckets: Sequence[float] = DEFAULT_BUCKETS) -> None:
        if "le" in labels:
            raise ValueError('"le" is not allowed as a histogram label')
        super().__init__(name, help, labels)
        Histogram(name, help, buckets)  # validates the buckets up front
        self.buckets = tuple(buckets)

    def _make_child(self) -> Histogram:
        return Histogram(self.name, self.help, self.buckets)

    def with_label_values(self, *args: str) -> Histogram:
        return self._child(args)


class Registry:
    """Holds metric families and renders them in the text exposition format."""

    def __init__(self) -> None:
        self._collectors: Dict[str, object] = {}
        self._lock = threading.Lock()

    @staticmethod
    def _full_name(name: str, namespace: str) -> str:
        full = f"{namespace}_{name}" if namespace else name
        if not _NAME_RE.match(full):
            raise ValueError(f"invalid metric name {full!r}")
        return full

    def _register(self, collector):
        with self._lock:
            if collector.name in self._collectors:
                raise ValueError(f"duplicate metrics collector registration attempted: {collector.name}")
            self._collectors[collector.name] = collector
        return collector

    def counter(self, name: str, help: str = "", namespace: str = "") -> Counter:
        return self._register(Counter(self._full_name(name, namespace), help))

    def gauge(self, name: str, help: str = "", namespace: str = "") -> Gauge:
        return self._register(Gauge(self._full_name(name, namespace), help))

    def gauge_vec(self, name: str, help: str, labels: Sequence[str], namespace: str = "") -> GaugeVec:
        return self._register(GaugeVec(self._full_name(name, namespace), help, labels))

    def histogram_vec(
        self,
        name: str,
        help: str,
        labels: Sequence[str],
        buckets: Sequence[float] = DEFAULT_BUCKETS,
        namespace: str = "",
    ) -> HistogramVec:
        return self._register(HistogramVec(self._full_name(name, namespace), help, labels, buckets))

    def expose(self) -> str:
        """Render every metric family that has samples, sorted by name."""
        with self._lock:
            collectors = sorted(self._collectors.values(), key=lambda c: c.name)
        lines: List[str] = []
        for collector in collectors:
            samples = list(collector._samples())
            if not samples:
                continue
            lines.append(f"# HELP {collector.name} {_escape_help(collector.help)}")
            lines.append(f"# TYPE {collector.name} {collector.kind}")
            lines.extend(_render(n, l, v) for n, l, v in samples)
        return "\n".join(lines) + "\n" if lines else ""


def _start_ticker(tick, name: str, interval: float = 1.0) -> threading.Thread:
    def loop() -> None:
        while True:
            time.sleep(interval)
            tick()

    thread = threading.Thread(target=loop, name=name, daemon=True)
    thread.start()
    return thread


class MonitorMetrics:
    """Counters kept by the monitor."""

    def __init__(self) -> None:
        self.registry = Registry()
        r = self.registry
        self.valid_epochs_counter = r.counter("vigilante_monitor_valid_epochs", "The total number of valid epochs")
        self.invalid_epochs_counter = r.counter(
            "vigilante_monitor_invalid_epochs", "The total number of invalid epochs"
        )
        self.valid_btc_headers_counter = r.counter(
            "vigilante_monitor_valid_btc_headers", "The total number of valid BTC headers"
        )
        self.invalid_btc_headers_counter = r.counter(
            "vigilante_monitor_invalid_btc_headers", "The total number of invalid BTC headers"
        )
        self.liveness_attacks_counter = r.counter(
            "vigilante_monitor_liveness_attacks", "The total number of detected liveness attacks"
        )


class ReporterMetrics:
    """Counters and gauges kept by the reporter."""

    def __init__(self) -> None:
        self.registry = Registry()
        r = self.registry
        self.successful_headers_counter = r.counter(
            "vigilante_reporter_reported_headers", "The total number of BTC headers reported to Babylon"
        )
        self.successful_checkpoints_counter = r.counter(
            "vigilante_reporter_reported_checkpoints", "The total number of BTC checkpoints reported to Babylon"
        )
        self.failed_headers_counter = r.counter(
            "vigilante_reporter_failed_headers", "The total number of failed BTC headers to Babylon"
        )
        self.failed_checkpoints_counter = r.counter(
            "vigilante_reporter_failed_checkpoints", "The total number of failed BTC checkpoints to Babylon"
        )
        self.seconds_since_last_header_gauge = r.gauge(
            "vigilante_reporter_since_last_header_seconds",
            "Seconds since the last successful reported BTC header to Babylon",
        )
        self.seconds_since_last_checkpoint_gauge = r.gauge(
            "vigilante_reporter_since_last_checkpoint_seconds",
            "Seconds since the last successful reported BTC checkpoint to Babylon",
        )
        self.new_reported_header_gauge_vec = r.gauge_vec(
            "vigilante_reporter_new_btc_header", "The metric of a new BTC header reported to Babylon", ["id"]
        )
        self.new_reported_checkpoint_gauge_vec = r.gauge_vec(
            "vigilante_reporter_new_btc_checkpoint",
            "The metric of a new BTC checkpoint reported to Babylon",
            ["epoch", "height", "tx1id", "tx2id"],
        )

    def tick(self) -> None:
        """Advance the seconds-since gauges by one second."""
        self.seconds_since_last_header_gauge.inc()
        self.seconds_since_last_checkpoint_gauge.inc()

    def record_metrics(self) -> threading.Thread:
        """Tick the time gauges once a second in a background thread."""
        return _start_ticker(self.tick, "reporter-metrics")


class RelayerMetrics:
    """Gauges and counters of the checkpoint relayer."""

    def __init__(self, registry: Registry) -> None:
        r = registry
        self.resend_interval_seconds_gauge = r.gauge(
            "vigilante_submitter_resend_interval", "The intervals the submitter resends a checkpoint in seconds"
        )
        self.available_btc_balance = r.gauge(
            "vigilante_submitter_available_balance", "The available balance in wallet in Satoshis"
        )
        self.invalid_checkpoint_counter = r.counter(
            "vigilante_submitter_invalid_checkpoints",
            "The number of invalid checkpoints (invalid epoch number or status)",
        )
        self.resent_checkpoints_counter = r.counter(
            "vigilante_submitter_resent_checkpoints", "The number of resent checkpoints"
        )
        self.failed_resent_checkpoints_counter = r.counter(
            "vigilante_submitter_failed_resent_checkpoints", "The number of failed resent checkpoints"
        )
        self.new_submitted_checkpoint_segment_gauge_vec = r.gauge_vec(
            "vigilante_submitter_new_checkpoint_segment",
            "The metric of a new Babylon checkpoint segment submitted to BTC",
            ["epoch", "idx", "txid", "fee"],
        )


class SubmitterMetrics:
    """Counters and gauges kept by the submitter, including the relayer's."""

    def __init__(self) -> None:
        self.registry = Registry()
        r = self.registry
        self.successful_checkpoints_counter = r.counter(
            "vigilante_submitter_submitted_checkpoints", "The total number of raw checkpoints submitted to BTC"
        )
        self.failed_checkpoints_counter = r.counter(
            "vigilante_submitter_failed_checkpoints", "The total number of failed checkpoints to BTC"
        )
        self.seconds_since_last_checkpoint_gauge = r.gauge(
            "vigilante_submitter_since_last_checkpoint_seconds",
            "Seconds since the last successfully submitted checkpoint",
        )
        self.relayer = RelayerMetrics(r)

    def tick(self) -> None:
        """Advance the seconds-since gauge by one second."""
        self.seconds_since_last_checkpoint_gauge.inc()

    def record_metrics(self) -> threading.Thread:
        """Tick the time gauge once a second in a background thread."""
        return _start_ticker(self.tick, "submitter-metrics")


class _MetricsServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(self, address, registry: Registry) -> None:
        self.registry = registry
        super().__init__(address, _MetricsHandler)


class _MetricsHandler(BaseHTTPRequestHandler):
    timeout = 10

    def do_GET(self) -> None:
        if self.path.split("?", 1)[0] != "/metrics":
            self.send_error(404)
            return
        body = self.server.registry.expose().encode("utf-8")
        self.send_response(200)
        self.send_header("Content-Type", "text/plain; version=0.0.4; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def log_message(self, format: str, *args) -> None:
        _log.debug("metrics request: " + format, *args)


def start_metrics_server(addr: str, registry: Registry) -> ThreadingHTTPServer:
    """Serve ``registry`` at ``/metrics`` on ``addr`` ("host:port") in the background."""
    host, sep, port = addr.rpartition(":")
    if not sep:
        raise ValueError(f"invalid metrics address {addr!r}")
    registry.gauge_vec(
        "python_info", "Information about the Python runtime.", ["implementation", "version"]
    ).with_label_values(platform.python_implementation(), platform.python_version()).set(1)
    server = _MetricsServer((host, int(port)), registry)
    thread = threading.Thread(target=server.serve_forever, name="metrics-server", daemon=True)
    thread.start()
    _log.info("Successfully started Prometheus metrics server at %s", addr)
    return server