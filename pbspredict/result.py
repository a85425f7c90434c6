"""
Prediction result value object.
"""

from dataclasses import asdict, dataclass

from .latency.distributions import Millis


@dataclass(frozen=True)
class PredictionResult:
    """Immutable outcome of one simulated (N, R, W) configuration.

    Attributes:
        n: Replication factor.
        r: Read quorum size.
        w: Write quorum size.
        time_since_write: Milliseconds between write commit and read start.
        versions_stale: Tolerated staleness in versions (k >= 1).
        consistency_probability: Probability that a read returns a version
            at most ``versions_stale`` versions old.
        one_version_consistency_probability: Fraction of trials in which
            the read saw the latest write.
        average_read_latency: Mean simulated read latency.
        average_write_latency: Mean simulated write latency.
        percentile_read_latency_value: Read latency at ``percentile``.
        percentile_read_latency_percentile: Percentile used for reads.
        percentile_write_latency_value: Write latency at ``percentile``.
        percentile_write_latency_percentile: Percentile used for writes.
        num_trials: Number of Monte Carlo trials behind these numbers.
    """

    n: int
    r: int
    w: int
    time_since_write: Millis
    versions_stale: int
    consistency_probability: float
    one_version_consistency_probability: float
    average_read_latency: Millis
    average_write_latency: Millis
    percentile_read_latency_value: Millis
    percentile_read_latency_percentile: float
    percentile_write_latency_value: Millis
    percentile_write_latency_percentile: float
    num_trials: int

    def summary(self) -> str:
        """Render the result the way the command-line driver prints it."""
        return "\n".join(
            [
                f"N={self.n}, R={self.r}, W={self.w}",
                f"Probability of consistent reads: {self.consistency_probability:f}",
                f"Average read latency: {self.average_read_latency:f}ms "
                f"({self.percentile_read_latency_percentile * 100:.3f}th %ile "
                f"{self.percentile_read_latency_value:.3f}ms)",
                f"Average write latency: {self.average_write_latency:f}ms "
                f"({self.percentile_write_latency_percentile * 100:.3f}th %ile "
                f"{self.percentile_write_latency_value:.3f}ms)",
            ]
        )

    def as_row(self) -> dict[str, float | int]:
        """Flat mapping of every field, for CSV export."""
        return asdict(self)

    def __repr__(self) -> str:
        return (
            f"PredictionResult(N={self.n}, R={self.r}, W={self.w}, "
            f"t={self.time_since_write}ms, k={self.versions_stale}, "
            f"p={self.consistency_probability:.4f})"
        )
