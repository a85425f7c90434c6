"""
Monte Carlo runner for PBS predictions.

Runs the per-trial simulation in parallel chunks and aggregates results,
and supports adaptive runs that keep adding trials until the confidence
interval on the target metrics is tight enough.

Also provides the two sweeps operators usually want: every sensible
(R, W) pair for a replication factor, and consistency as a function of
time since write.
"""

import logging
import math
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Iterable, Iterator

import numpy as np
from scipy import stats as scipy_stats

from .errors import InvalidArgumentError
from .latency.source import LatencySource
from .predictor import PredictionRequest, TrialSamples, simulate_trials, summarize
from .result import PredictionResult

logger = logging.getLogger(__name__)


class ConvergenceMetric(Enum):
    """Metrics that can be targeted for convergence."""

    CONSISTENCY_PROBABILITY = "consistency_probability"
    READ_LATENCY = "read_latency"
    WRITE_LATENCY = "write_latency"


@dataclass
class ConvergenceCriteria:
    """Criteria for adaptive Monte Carlo convergence.

    The runner keeps adding batches of trials until the confidence
    interval for every target metric is within the error tolerance, or
    until max_trials is reached.

    Supports two error modes (specify exactly one):
      - **relative_error**: CI half-width as a fraction of the mean.
      - **absolute_error**: CI half-width in metric units, e.g.
        absolute_error=0.001 on the consistency probability means
        "accurate to ±0.1 percentage points".

    The consistency probability is a proportion and uses a Wald interval;
    latencies use a Student-t interval on the mean.

    Attributes:
        confidence_level: Desired confidence level (e.g., 0.95 for 95% CI).
        relative_error: Maximum relative half-width of CI. Mutually
            exclusive with absolute_error.
        absolute_error: Maximum absolute half-width of CI. Mutually
            exclusive with relative_error.
        metrics: Metrics that must all converge before stopping.
        min_trials: Trials run before the first convergence check.
        max_trials: Safety cap on the number of trials.
        batch_size: Trials added between convergence checks.
    """

    confidence_level: float = 0.95
    relative_error: float | None = None
    absolute_error: float | None = None
    metrics: list[ConvergenceMetric] = field(
        default_factory=lambda: [ConvergenceMetric.CONSISTENCY_PROBABILITY]
    )
    min_trials: int = 1_000
    max_trials: int = 1_000_000
    batch_size: int = 1_000

    def __post_init__(self) -> None:
        if not 0 < self.confidence_level < 1:
            raise InvalidArgumentError(
                f"confidence_level must be in (0, 1), got {self.confidence_level}"
            )

        # Default to relative_error=0.01 if neither is specified
        if self.relative_error is None and self.absolute_error is None:
            self.relative_error = 0.01

        if self.relative_error is not None and self.absolute_error is not None:
            raise InvalidArgumentError(
                "Specify exactly one of relative_error or absolute_error, not both"
            )
        if self.relative_error is not None and self.relative_error <= 0:
            raise InvalidArgumentError(f"relative_error must be > 0, got {self.relative_error}")
        if self.absolute_error is not None and self.absolute_error <= 0:
            raise InvalidArgumentError(f"absolute_error must be > 0, got {self.absolute_error}")

        if self.min_trials < 2:
            raise InvalidArgumentError(
                f"min_trials must be >= 2 for variance estimation, got {self.min_trials}"
            )
        if self.max_trials < self.min_trials:
            raise InvalidArgumentError(
                f"max_trials ({self.max_trials}) must be >= min_trials ({self.min_trials})"
            )
        if self.batch_size < 1:
            raise InvalidArgumentError(f"batch_size must be >= 1, got {self.batch_size}")

    @property
    def uses_absolute_error(self) -> bool:
        return self.absolute_error is not None

    @property
    def error_threshold(self) -> float:
        if self.absolute_error is not None:
            return self.absolute_error
        assert self.relative_error is not None
        return self.relative_error


@dataclass
class MetricConvergenceStatus:
    """Convergence status for a single metric.

    Attributes:
        metric: Which metric this status is for.
        converged: Whether the metric has converged.
        current_mean: Current estimate. For the consistency probability
            this is the single-version (k=1) probability.
        ci_half_width: Current confidence interval half-width (absolute).
        relative_error: ci_half_width / mean.
        estimated_trials_needed: Estimated total trials for convergence.
        num_samples: Number of trials so far.
    """

    metric: ConvergenceMetric
    converged: bool = False
    current_mean: float = 0.0
    ci_half_width: float = float("inf")
    relative_error: float = float("inf")
    estimated_trials_needed: int = 0
    num_samples: int = 0


@dataclass
class ConvergenceResult:
    """Result of an adaptive run.

    Attributes:
        result: The aggregated prediction over all trials run.
        converged: Whether all target metrics converged.
        total_trials: Total number of trials executed.
        metric_statuses: Convergence status for each target metric.
    """

    result: PredictionResult
    converged: bool
    total_trials: int
    metric_statuses: list[MetricConvergenceStatus] = field(default_factory=list)

    def summary(self) -> str:
        lines = [
            self.result.summary(),
            "",
            f"Convergence: {'yes' if self.converged else 'NO'} ({self.total_trials} trials)",
        ]
        for status in self.metric_statuses:
            symbol = "+" if status.converged else "-"
            # convergence is tracked on the k=1 estimate
            if status.metric == ConvergenceMetric.CONSISTENCY_PROBABILITY:
                name = "one_version_consistency_probability"
            else:
                name = status.metric.value
            lines.append(
                f"  [{symbol}] {name}: "
                f"mean={status.current_mean:.6f}, "
                f"±{status.ci_half_width:.6f} (rel={status.relative_error:.4f}), "
                f"est_n={status.estimated_trials_needed}"
            )
        return "\n".join(lines)


@dataclass
class MonteCarloConfig:
    """Configuration for a Monte Carlo prediction.

    Attributes:
        num_trials: Number of trials to run.
        parallel_workers: Number of worker processes (1 = sequential).
        base_seed: Base seed; chunk ``i`` reseeds its source with
            ``base_seed + i``. None leaves the caller's source untouched
            when sequential and gives parallel chunks fresh entropy.
        chunk_size: Trials per parallel work unit.
    """

    num_trials: int
    parallel_workers: int = 1
    base_seed: int | None = None
    chunk_size: int = 5_000

    def __post_init__(self) -> None:
        if self.num_trials <= 0:
            raise InvalidArgumentError(f"num_trials must be positive, got {self.num_trials}")
        if self.parallel_workers < 1:
            raise InvalidArgumentError(
                f"parallel_workers must be >= 1, got {self.parallel_workers}"
            )
        if self.chunk_size < 1:
            raise InvalidArgumentError(f"chunk_size must be >= 1, got {self.chunk_size}")


def _run_chunk(
    request: PredictionRequest,
    source: LatencySource,
    num_trials: int,
    seed: int | None,
) -> TrialSamples:
    """Run one chunk of trials on a private copy of the source.

    Module-level so it can be pickled for multiprocessing.
    """
    source.reseed(seed)
    return simulate_trials(request, source, num_trials)


def _chunk_sizes(total: int, chunk_size: int) -> list[int]:
    full, rest = divmod(total, chunk_size)
    return [chunk_size] * full + ([rest] if rest else [])


class PredictionRunner:
    """Runs trials for a prediction request and aggregates the results.

    Supports parallel execution for faster results on multi-core systems.
    """

    def __init__(self, config: MonteCarloConfig):
        self.config = config

    def run(
        self,
        request: PredictionRequest,
        source: LatencySource,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> PredictionResult:
        """Run ``config.num_trials`` trials and summarize them.

        Args:
            request: Validated prediction request.
            source: Latency source. Parallel chunks use snapshots of it.
            progress_callback: Optional callback(completed, total).

        Returns:
            Aggregated PredictionResult.
        """
        samples = self._run_trials(request, source, self.config.num_trials, 0, progress_callback)
        return summarize(request, samples)

    def _run_trials(
        self,
        request: PredictionRequest,
        source: LatencySource,
        num_trials: int,
        start_chunk: int,
        progress_callback: Callable[[int, int], None] | None = None,
    ) -> TrialSamples:
        if self.config.parallel_workers > 1:
            return self._run_parallel(request, source, num_trials, start_chunk, progress_callback)
        return self._run_sequential(request, source, num_trials, start_chunk, progress_callback)

    def _seed_for(self, chunk_index: int) -> int | None:
        if self.config.base_seed is None:
            return None
        return self.config.base_seed + chunk_index

    def _run_sequential(
        self,
        request: PredictionRequest,
        source: LatencySource,
        num_trials: int,
        start_chunk: int,
        progress_callback: Callable[[int, int], None] | None,
    ) -> TrialSamples:
        """Run trials in-process on the caller's source."""
        if self.config.base_seed is not None:
            source.reseed(self._seed_for(start_chunk))

        samples = TrialSamples()
        for size in _chunk_sizes(num_trials, self.config.chunk_size):
            samples.merge(simulate_trials(request, source, size))
            if progress_callback:
                progress_callback(samples.num_trials, num_trials)
        return samples

    def _run_parallel(
        self,
        request: PredictionRequest,
        source: LatencySource,
        num_trials: int,
        start_chunk: int,
        progress_callback: Callable[[int, int], None] | None,
    ) -> TrialSamples:
        """Run chunks in worker processes and merge them in chunk order."""
        sizes = _chunk_sizes(num_trials, self.config.chunk_size)
        samples = TrialSamples()

        with ProcessPoolExecutor(max_workers=self.config.parallel_workers) as executor:
            futures = [
                executor.submit(
                    _run_chunk,
                    request,
                    source.snapshot(),
                    size,
                    self._seed_for(start_chunk + i),
                )
                for i, size in enumerate(sizes)
            ]
            for future in futures:
                samples.merge(future.result())
                if progress_callback:
                    progress_callback(samples.num_trials, num_trials)

        return samples

    def run_until_converged(
        self,
        request: PredictionRequest,
        source: LatencySource,
        convergence: ConvergenceCriteria,
        progress_callback: Callable[[int, int, bool], None] | None = None,
    ) -> ConvergenceResult:
        """Add trials in batches until the convergence criteria are met.

        ``config.num_trials`` is ignored; ``convergence`` decides how many
        trials run.

        Args:
            request: Validated prediction request.
            source: Latency source.
            convergence: Confidence level, error tolerance and target metrics.
            progress_callback: Optional callback(completed, estimated_total,
                converged).

        Returns:
            ConvergenceResult with the aggregated prediction and status.
        """
        samples = TrialSamples()
        chunk_index = 0
        batch = convergence.min_trials

        while True:
            samples.merge(self._run_trials(request, source, batch, chunk_index))
            chunk_index += math.ceil(batch / self.config.chunk_size)

            statuses = _check_convergence(samples, convergence)
            all_converged = all(s.converged for s in statuses)
            estimated_total = max(
                (s.estimated_trials_needed for s in statuses), default=samples.num_trials
            )
            logger.debug(
                f"{samples.num_trials} trials, converged={all_converged}, "
                f"estimated total {estimated_total}"
            )
            if progress_callback:
                progress_callback(samples.num_trials, estimated_total, all_converged)

            batch = min(convergence.batch_size, convergence.max_trials - samples.num_trials)
            if all_converged or batch <= 0:
                break

        if not all_converged:
            logger.warning(
                f"Prediction for N={request.n} R={request.r} W={request.w} did not converge "
                f"within {samples.num_trials} trials"
            )

        return ConvergenceResult(
            result=summarize(request, samples),
            converged=all_converged,
            total_trials=samples.num_trials,
            metric_statuses=statuses,
        )


def _check_convergence(
    samples: TrialSamples, criteria: ConvergenceCriteria
) -> list[MetricConvergenceStatus]:
    """Check convergence for all target metrics.

    For the consistency probability, uses a Wald interval with the normal
    approximation, falling back to the rule of three when every trial
    agreed. For latencies, uses the t-distribution.
    """
    statuses = []
    alpha = 1.0 - criteria.confidence_level
    z = scipy_stats.norm.ppf(1 - alpha / 2)
    use_absolute = criteria.uses_absolute_error
    threshold = criteria.error_threshold
    n = samples.num_trials

    for metric in criteria.metrics:
        if n < 2:
            statuses.append(MetricConvergenceStatus(metric=metric, num_samples=n))
            continue

        if metric == ConvergenceMetric.CONSISTENCY_PROBABILITY:
            p = samples.one_version_consistency()

            if p == 0.0 or p == 1.0:
                # No variance observed; upper bound on the miss rate is ~3/n
                rule_of_three_n = int(math.ceil(3.0 / threshold))
                statuses.append(
                    MetricConvergenceStatus(
                        metric=metric,
                        converged=n >= rule_of_three_n,
                        current_mean=p,
                        ci_half_width=3.0 / n,
                        relative_error=0.0 if p == 1.0 else float("inf"),
                        estimated_trials_needed=max(rule_of_three_n, n),
                        num_samples=n,
                    )
                )
                continue

            ci_half_width = z * math.sqrt(p * (1 - p) / n)
            rel_err = ci_half_width / p
            if use_absolute:
                converged = ci_half_width <= threshold
                target = threshold
            else:
                converged = rel_err <= threshold
                target = threshold * p
            estimated_n = int(math.ceil(z**2 * p * (1 - p) / target**2))

            statuses.append(
                MetricConvergenceStatus(
                    metric=metric,
                    converged=converged,
                    current_mean=p,
                    ci_half_width=ci_half_width,
                    relative_error=rel_err,
                    estimated_trials_needed=max(estimated_n, n),
                    num_samples=n,
                )
            )
        else:
            if metric == ConvergenceMetric.READ_LATENCY:
                values = np.asarray(samples.read_latencies, dtype=float)
            else:
                values = np.asarray(samples.write_latencies, dtype=float)

            sample_mean = float(np.mean(values))
            sample_std = float(np.std(values, ddof=1))
            t_crit = scipy_stats.t.ppf(1 - alpha / 2, df=n - 1)
            ci_half_width = t_crit * sample_std / math.sqrt(n)

            if sample_mean == 0.0:
                rel_err = float("inf") if sample_std > 0 else 0.0
            else:
                rel_err = ci_half_width / abs(sample_mean)

            if use_absolute:
                converged = ci_half_width <= threshold
                target = threshold
            else:
                converged = rel_err <= threshold
                target = threshold * abs(sample_mean)

            if target > 0:
                estimated_n = int(math.ceil((z * sample_std / target) ** 2))
            else:
                estimated_n = n if converged else criteria.max_trials

            statuses.append(
                MetricConvergenceStatus(
                    metric=metric,
                    converged=converged,
                    current_mean=sample_mean,
                    ci_half_width=ci_half_width,
                    relative_error=rel_err,
                    estimated_trials_needed=max(estimated_n, n),
                    num_samples=n,
                )
            )

    return statuses


def consistency_confidence_interval(
    result: PredictionResult, confidence_level: float = 0.95
) -> tuple[float, float]:
    """Wald confidence interval for the multi-version consistency probability.

    The interval is computed on the single-version estimate and mapped
    through ``1 - (1 - p)^k``, which is monotone in ``p``.
    """
    if not 0 < confidence_level < 1:
        raise InvalidArgumentError(
            f"confidence_level must be in (0, 1), got {confidence_level}"
        )
    p = result.one_version_consistency_probability
    n = result.num_trials
    z = scipy_stats.norm.ppf(1 - (1.0 - confidence_level) / 2)
    margin = z * math.sqrt(p * (1 - p) / n)
    low = max(0.0, p - margin)
    high = min(1.0, p + margin)
    k = result.versions_stale
    return (1.0 - (1.0 - low) ** k, 1.0 - (1.0 - high) ** k)


def quorum_configurations(n: int) -> Iterator[tuple[int, int]]:
    """Every (r, w) with 1 <= r, w <= n and r + w <= n + 1, r-major.

    Larger pairs always overlap in at least two replicas and are never
    stale, so there is nothing to predict for them.
    """
    if n < 1:
        raise InvalidArgumentError(f"n must be at least 1, got {n}")
    for r in range(1, n + 1):
        for w in range(1, n + 1):
            if r + w > n + 1:
                continue
            yield r, w


def sweep_quorums(
    n: int,
    source: LatencySource,
    config: MonteCarloConfig,
    time_since_write_ms: float = 0.0,
    versions_stale: int = 1,
    percentile: float = 0.99,
) -> list[PredictionResult]:
    """Predict every configuration from :func:`quorum_configurations`."""
    runner = PredictionRunner(config)
    results = []
    for r, w in quorum_configurations(n):
        request = PredictionRequest(
            n=n,
            r=r,
            w=w,
            time_since_write_ms=time_since_write_ms,
            versions_stale=versions_stale,
            percentile=percentile,
        )
        results.append(runner.run(request, source))
    return results


def staleness_curve(
    request: PredictionRequest,
    times_ms: Iterable[float],
    source: LatencySource,
    config: MonteCarloConfig,
) -> list[PredictionResult]:
    """Predict the same configuration at each elapsed time in ``times_ms``.

    With a base seed every point replays the same latency draws, so the
    curve is monotone non-decreasing in time.
    """
    runner = PredictionRunner(config)
    results = []
    for t in times_ms:
        point = PredictionRequest(
            n=request.n,
            r=request.r,
            w=request.w,
            time_since_write_ms=float(t),
            versions_stale=request.versions_stale,
            percentile=request.percentile,
        )
        results.append(runner.run(point, source))
    return results
