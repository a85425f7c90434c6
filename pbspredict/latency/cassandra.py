"""
Latency source that polls a live Cassandra node.

Cassandra publishes per-table read and write latency histograms as JMX
MBeans. This adapter reaches them through a Jolokia agent (JMX over HTTP)
and keeps the most recent histogram contents as the sample windows of an
:class:`EmpiricalLatencySource`. Connection state is owned by the adapter
instance; nothing here is shared between sources.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import numpy as np
import requests

from ..errors import InvalidArgumentError, MetricsConnectionError, PBSError, SourceExhaustedError
from .distributions import microseconds
from .source import EmpiricalLatencySource, Phase, _split_operation_latencies

logger = logging.getLogger(__name__)

MBEAN_FORMAT = "org.apache.cassandra.metrics:type={type},keyspace={keyspace},scope={scope},name={name}"
READ_METRIC = "ReadLatency"
WRITE_METRIC = "WriteLatency"

HISTOGRAM_FORMATS = ("samples", "buckets")


@dataclass
class JolokiaConfig:
    """Where and how to read Cassandra latency histograms.

    Attributes:
        host: Host running the Jolokia agent.
        port: Jolokia HTTP port.
        keyspace: Keyspace whose table metrics are read.
        table: Table (column family) whose metrics are read.
        metric_type: MBean ``type`` key; "ColumnFamily" on older releases,
            "Table" on newer ones.
        histogram_format: "samples" when the histogram's ``values``
            operation returns reservoir samples, "buckets" when it returns
            estimated-histogram bucket counts.
        response_phase: Which operation backs the S phase ("read" or "write").
        timeout_s: Per-request HTTP timeout in seconds.
        max_retries: Extra attempts (each after a reconnect) before a
            transport failure is reported.
    """

    host: str
    port: int = 8778
    keyspace: str = "Keyspace1"
    table: str = "Standard1"
    metric_type: str = "ColumnFamily"
    histogram_format: str = "samples"
    response_phase: str = "read"
    timeout_s: float = 10.0
    max_retries: int = 1

    def __post_init__(self) -> None:
        if not self.host:
            raise InvalidArgumentError("host must not be empty")
        if not 0 < self.port < 65536:
            raise InvalidArgumentError(f"port must be in 1..65535, got {self.port}")
        if self.histogram_format not in HISTOGRAM_FORMATS:
            raise InvalidArgumentError(
                f"histogram_format must be one of {HISTOGRAM_FORMATS}, got {self.histogram_format!r}"
            )
        if self.response_phase not in ("read", "write"):
            raise InvalidArgumentError(
                f"response_phase must be 'read' or 'write', got {self.response_phase!r}"
            )
        if self.timeout_s <= 0:
            raise InvalidArgumentError(f"timeout_s must be positive, got {self.timeout_s}")
        if self.max_retries < 0:
            raise InvalidArgumentError(f"max_retries must be >= 0, got {self.max_retries}")

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}/jolokia/"

    def mbean(self, name: str) -> str:
        return MBEAN_FORMAT.format(
            type=self.metric_type, keyspace=self.keyspace, scope=self.table, name=name
        )


def histogram_bucket_offsets(size: int) -> np.ndarray:
    """Upper bounds (µs) of Cassandra's estimated-histogram buckets.

    Starts at 1 and grows by a factor of 1.2, rounded, always by at
    least one.
    """
    offsets = np.empty(size, dtype=np.int64)
    last = 1
    for i in range(size):
        if i > 0:
            nxt = int(round(last * 1.2))
            last = nxt if nxt != last else nxt + 1
        offsets[i] = last
    return offsets


def expand_histogram_buckets(counts: list[int] | np.ndarray) -> np.ndarray:
    """Turn bucket counts into one sample (the bucket bound) per count."""
    counts = np.asarray(counts, dtype=np.int64)
    if counts.size == 0:
        return np.array([], dtype=float)
    if np.any(counts < 0):
        raise InvalidArgumentError("histogram bucket counts must be non-negative")
    return np.repeat(histogram_bucket_offsets(counts.size), counts).astype(float)


class CassandraLatencySource(EmpiricalLatencySource):
    """Empirical latency source refreshed from a Cassandra node's metrics.

    The constructor connects and performs a first refresh, so a source
    that exists always has non-empty sample windows.

    Args:
        config: Endpoint and metric selection.
        seed: Random seed for resampling.
        session: Optional pre-built HTTP session (mostly for tests).
    """

    def __init__(
        self,
        config: JolokiaConfig,
        seed: int | None = None,
        session: requests.Session | None = None,
    ):
        self.config = config
        self.session = session if session is not None else requests.Session()
        self.rng = np.random.default_rng(seed)
        self.windows = {}
        try:
            self.refresh()
        except PBSError:
            self.close()
            raise

    def reconnect(self) -> None:
        """Drop the current HTTP session and open a new one."""
        if self.session is not None:
            self.session.close()
        self.session = requests.Session()

    def close(self) -> None:
        if self.session is not None:
            self.session.close()
            self.session = None

    def refresh(self) -> None:
        """Re-read both histograms and rebuild the phase windows.

        Raises:
            SourceExhaustedError: If either histogram holds no samples.
            MetricsConnectionError: If the endpoint cannot be read.
        """
        if self.session is None:
            raise MetricsConnectionError("source is closed")

        read_us = self._fetch_histogram(READ_METRIC)
        write_us = self._fetch_histogram(WRITE_METRIC)
        if read_us.size == 0:
            raise SourceExhaustedError("no read latencies recorded!")
        if write_us.size == 0:
            raise SourceExhaustedError("no write latencies recorded!")

        self.set_windows(
            **_split_operation_latencies(
                microseconds(read_us), microseconds(write_us), self.config.response_phase
            )
        )
        logger.info(
            f"Refreshed latencies from {self.config.host}:{self.config.port} "
            f"({read_us.size} reads, {write_us.size} writes)"
        )

    def snapshot(self) -> EmpiricalLatencySource:
        """Freeze the current windows into a connection-free source."""
        return EmpiricalLatencySource(
            w=self.windows[Phase.W].copy(),
            a=self.windows[Phase.A].copy(),
            r=self.windows[Phase.R].copy(),
            s=self.windows[Phase.S].copy(),
        )

    def _fetch_histogram(self, name: str) -> np.ndarray:
        values = self._exec(self.config.mbean(name), "values")
        if self.config.histogram_format == "buckets":
            return expand_histogram_buckets(values)
        return np.asarray(values, dtype=float)

    def _exec(self, mbean: str, operation: str) -> Any:
        body = {"type": "exec", "mbean": mbean, "operation": operation, "arguments": []}
        attempts = self.config.max_retries + 1
        for attempt in range(1, attempts + 1):
            try:
                response = self.session.post(self.config.url, json=body, timeout=self.config.timeout_s)
                response.raise_for_status()
                payload = response.json()
                break
            except (requests.RequestException, ValueError) as e:
                if attempt == attempts:
                    raise MetricsConnectionError(
                        f"could not read {mbean} from {self.config.url}: {e}"
                    ) from e
                logger.warning(f"Attempt {attempt}/{attempts} to read {mbean} failed ({e}); reconnecting")
                self.reconnect()

        if payload.get("status") != 200:
            raise MetricsConnectionError(
                f"Jolokia error for {mbean}: {payload.get('error', 'unknown error')}"
            )
        value = payload.get("value")
        if value is None:
            return []
        return value
