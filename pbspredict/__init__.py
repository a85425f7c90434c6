"""
Probabilistically bounded staleness (PBS) prediction for quorum-replicated
stores.

Given measured per-phase latencies, predicts how likely a read is to
return a recent enough version after a write, and what read and write
latencies to expect, for any replication factor N and quorum sizes R, W.
"""

from .errors import (
    PBSError,
    InvalidArgumentError,
    SourceExhaustedError,
    MetricsConnectionError,
)
from .result import PredictionResult
from .predictor import (
    PredictionRequest,
    TrialOutcome,
    TrialSamples,
    simulate_trial,
    simulate_trials,
    list_average,
    get_percentile,
    multi_version_consistency,
    summarize,
    predict,
)
from .monte_carlo import (
    ConvergenceMetric,
    ConvergenceCriteria,
    MetricConvergenceStatus,
    ConvergenceResult,
    MonteCarloConfig,
    PredictionRunner,
    consistency_confidence_interval,
    quorum_configurations,
    sweep_quorums,
    staleness_curve,
)

__all__ = [
    # Errors
    "PBSError",
    "InvalidArgumentError",
    "SourceExhaustedError",
    "MetricsConnectionError",
    # Result
    "PredictionResult",
    # Engine
    "PredictionRequest",
    "TrialOutcome",
    "TrialSamples",
    "simulate_trial",
    "simulate_trials",
    "list_average",
    "get_percentile",
    "multi_version_consistency",
    "summarize",
    "predict",
    # Runner
    "ConvergenceMetric",
    "ConvergenceCriteria",
    "MetricConvergenceStatus",
    "ConvergenceResult",
    "MonteCarloConfig",
    "PredictionRunner",
    "consistency_confidence_interval",
    "quorum_configurations",
    "sweep_quorums",
    "staleness_curve",
]
