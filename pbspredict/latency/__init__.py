"""
Latency sampling for the staleness simulator.

Provides millisecond time helpers, parametric distributions, and the
latency sources the simulator draws its per-phase samples from.
"""

from .distributions import (
    Millis,
    seconds,
    microseconds,
    Distribution,
    Exponential,
    Weibull,
    Normal,
    LogNormal,
    Uniform,
    Constant,
)
from .source import (
    Phase,
    LatencySource,
    DistributionLatencySource,
    EmpiricalLatencySource,
    ReplayLatencySource,
)
from .cassandra import (
    JolokiaConfig,
    CassandraLatencySource,
    expand_histogram_buckets,
    histogram_bucket_offsets,
)

__all__ = [
    # Time units
    "Millis",
    "seconds",
    "microseconds",
    # Distributions
    "Distribution",
    "Exponential",
    "Weibull",
    "Normal",
    "LogNormal",
    "Uniform",
    "Constant",
    # Sources
    "Phase",
    "LatencySource",
    "DistributionLatencySource",
    "EmpiricalLatencySource",
    "ReplayLatencySource",
    # Cassandra adapter
    "JolokiaConfig",
    "CassandraLatencySource",
    "expand_histogram_buckets",
    "histogram_bucket_offsets",
]
