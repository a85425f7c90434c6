"""
Probabilistically bounded staleness (PBS) prediction engine.

Predicts, for a quorum-replicated store with replication factor N, read
quorum R and write quorum W, how likely a read issued ``t`` ms after a
write commits is to return a version at most ``k`` versions stale, and
what read and write latencies to expect.

The prediction is a Monte Carlo simulation over measured latencies. Each
trial sends a write to all N replicas and a read to R of them, sampling
the four WARS phases (see :mod:`pbspredict.latency.source`) per replica.
The write commits once W acknowledgments arrive; the read then starts
``t`` ms later and returns the freshest of the first R responses.

Caveats: predictions are only as good as the latencies collected.
Read repair, anti-entropy, node failure and hinted handoff are not
modeled, and multi-version staleness is a conservative approximation.
"""

import logging
from dataclasses import dataclass, field

import numpy as np

from .errors import InvalidArgumentError
from .latency.distributions import Millis
from .latency.source import LatencySource
from .result import PredictionResult

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PredictionRequest:
    """A validated (N, R, W, t, k, percentile) prediction request.

    Attributes:
        n: Replication factor. Must be at least 1.
        r: Read quorum size, 0 <= r <= n.
        w: Write quorum size, 0 <= w <= n.
        time_since_write_ms: Delay between write commit and read start.
        versions_stale: Tolerated staleness in versions. Must be >= 1.
        percentile: Latency percentile to report, in [0, 1].
    """

    n: int
    r: int
    w: int
    time_since_write_ms: float = 0.0
    versions_stale: int = 1
    percentile: float = 0.99

    def __post_init__(self) -> None:
        if self.n < 1:
            raise InvalidArgumentError(f"n must be at least 1, got {self.n}")
        if self.r < 0:
            raise InvalidArgumentError(f"r must be non-negative, got {self.r}")
        if self.r > self.n:
            raise InvalidArgumentError(f"r must not exceed n, got r={self.r}, n={self.n}")
        if self.w < 0:
            raise InvalidArgumentError(f"w must be non-negative, got {self.w}")
        if self.w > self.n:
            raise InvalidArgumentError(f"w must not exceed n, got w={self.w}, n={self.n}")
        if self.versions_stale < 1:
            raise InvalidArgumentError(
                f"versions_stale must be at least 1, got {self.versions_stale}"
            )
        if not 0 <= self.percentile <= 1:
            raise InvalidArgumentError(
                f"percentile must be between 0 and 1 inclusive, got {self.percentile}"
            )


@dataclass(frozen=True)
class TrialOutcome:
    """What one simulated write-then-read produced."""

    write_latency: float
    read_latency: float
    consistent: bool


@dataclass
class TrialSamples:
    """Accumulated outcomes of many trials.

    Partial accumulators from independent workers are combined with
    ``merge``; nothing else is shared between them.
    """

    write_latencies: list[float] = field(default_factory=list)
    read_latencies: list[float] = field(default_factory=list)
    consistent_trials: int = 0

    @property
    def num_trials(self) -> int:
        return len(self.write_latencies)

    def record(self, outcome: TrialOutcome) -> None:
        self.write_latencies.append(outcome.write_latency)
        self.read_latencies.append(outcome.read_latency)
        if outcome.consistent:
            self.consistent_trials += 1

    def merge(self, other: "TrialSamples") -> None:
        self.write_latencies.extend(other.write_latencies)
        self.read_latencies.extend(other.read_latencies)
        self.consistent_trials += other.consistent_trials

    def one_version_consistency(self) -> float:
        if self.num_trials == 0:
            return 0.0
        return self.consistent_trials / self.num_trials


def simulate_trial(request: PredictionRequest, source: LatencySource) -> TrialOutcome:
    """Simulate one write followed, ``t`` ms after it commits, by a read.

    The read replica set is treated combinatorially: read slot ``i`` is
    matched with write replica ``i``.
    """
    # per-replica W samples and W+A round trips
    replica_apply = []
    replica_write_latencies = []
    for _ in range(request.n):
        w_latency = source.sample_w()
        a_latency = source.sample_a()
        replica_apply.append(w_latency)
        replica_write_latencies.append(w_latency + a_latency)

    # reads only go to R replicas
    replica_read_arrival = []
    replica_read_latencies = []
    for _ in range(request.r):
        r_latency = source.sample_r()
        s_latency = source.sample_s()
        replica_read_arrival.append(r_latency)
        replica_read_latencies.append(r_latency + s_latency)

    # the write commits when the w-th acknowledgment arrives
    write_latency = sorted(replica_write_latencies)[request.w - 1] if request.w > 0 else 0.0

    # sort a copy; the unsorted list still maps latency -> replica slot
    sorted_read_latencies = sorted(replica_read_latencies)
    read_latency = sorted_read_latencies[request.r - 1] if request.r > 0 else 0.0

    # Walk responses in arrival order. A replica returns the new version if
    # the read reaches it (commit + t + R) no earlier than the write did (W).
    consistent = False
    for response in sorted_read_latencies:
        replica = replica_read_latencies.index(response)
        if write_latency + request.time_since_write_ms + replica_read_arrival[replica] >= replica_apply[replica]:
            consistent = True
            break
        # consumed, so a duplicate latency resolves to the other replica
        replica_read_latencies[replica] = None

    return TrialOutcome(write_latency=write_latency, read_latency=read_latency, consistent=consistent)


def simulate_trials(
    request: PredictionRequest,
    source: LatencySource,
    num_trials: int,
) -> TrialSamples:
    """Run ``num_trials`` independent trials and accumulate their outcomes."""
    samples = TrialSamples()
    for _ in range(num_trials):
        samples.record(simulate_trial(request, source))
    return samples


def list_average(values: list[float]) -> float:
    """Arithmetic mean in full floating-point precision."""
    if not values:
        raise InvalidArgumentError("cannot average an empty list")
    return float(np.mean(np.asarray(values, dtype=float)))


def get_percentile(values: list[float], percentile: float) -> float:
    """Element at index floor(len * p) of the sorted values.

    At ``percentile == 1`` that index is one past the end; it is clamped to
    the last element, so the maximum is returned.
    """
    if not values:
        raise InvalidArgumentError("cannot take a percentile of an empty list")
    if not 0 <= percentile <= 1:
        raise InvalidArgumentError(f"percentile must be in [0, 1], got {percentile}")
    ordered = np.sort(np.asarray(values, dtype=float))
    index = min(int(ordered.size * percentile), ordered.size - 1)
    return float(ordered[index])


def multi_version_consistency(one_version_probability: float, versions_stale: int) -> float:
    """Probability of reading within ``versions_stale`` versions.

    Each intervening version is treated as an independent staleness event,
    so the read is too stale only if all ``k`` single-version checks fail.
    """
    return 1.0 - (1.0 - one_version_probability) ** versions_stale


def summarize(request: PredictionRequest, samples: TrialSamples) -> PredictionResult:
    """Aggregate accumulated trials into a :class:`PredictionResult`."""
    if samples.num_trials == 0:
        raise InvalidArgumentError("no trials to summarize")

    one_version = samples.one_version_consistency()
    return PredictionResult(
        n=request.n,
        r=request.r,
        w=request.w,
        time_since_write=Millis(request.time_since_write_ms),
        versions_stale=request.versions_stale,
        consistency_probability=multi_version_consistency(one_version, request.versions_stale),
        one_version_consistency_probability=one_version,
        average_read_latency=Millis(list_average(samples.read_latencies)),
        average_write_latency=Millis(list_average(samples.write_latencies)),
        percentile_read_latency_value=Millis(get_percentile(samples.read_latencies, request.percentile)),
        percentile_read_latency_percentile=request.percentile,
        percentile_write_latency_value=Millis(get_percentile(samples.write_latencies, request.percentile)),
        percentile_write_latency_percentile=request.percentile,
        num_trials=samples.num_trials,
    )


def predict(
    n: int,
    r: int,
    w: int,
    time_since_write_ms: float,
    versions_stale: int,
    percentile: float,
    num_trials: int,
    source: LatencySource,
) -> PredictionResult:
    """Predict staleness and latency for one (N, R, W) configuration.

    Args:
        n: Replication factor.
        r: Read quorum size.
        w: Write quorum size.
        time_since_write_ms: Delay between write commit and read start.
        versions_stale: Tolerated staleness in versions.
        percentile: Latency percentile to report, in [0, 1].
        num_trials: Number of Monte Carlo trials. Must be positive.
        source: Where per-phase latencies are drawn from.

    Returns:
        The aggregated prediction.

    Raises:
        InvalidArgumentError: If any argument is out of range. Raised
            before any latency is sampled.
    """
    request = PredictionRequest(
        n=n,
        r=r,
        w=w,
        time_since_write_ms=time_since_write_ms,
        versions_stale=versions_stale,
        percentile=percentile,
    )
    if num_trials <= 0:
        raise InvalidArgumentError(f"num_trials must be positive, got {num_trials}")

    logger.debug(
        f"Simulating N={n} R={r} W={w} t={time_since_write_ms}ms k={versions_stale} "
        f"over {num_trials} trials"
    )
    samples = simulate_trials(request, source, num_trials)
    return summarize(request, samples)
