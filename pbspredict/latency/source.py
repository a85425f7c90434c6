"""
Latency sources for the staleness simulator.

A latency source hands out independent latency samples, in milliseconds,
for the four phases of a replicated operation (the "WARS" model):

- W: coordinator sends a write until a replica applies it.
- A: replica acknowledges a write until the coordinator hears of it.
- R: coordinator sends a read until a replica executes it.
- S: replica sends its read response until the coordinator receives it.

The simulator only ever calls the four sampling methods. Lifecycle methods
(``refresh``, ``close``) are for the driver that owns the source.
"""

from __future__ import annotations

import copy
import csv
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import Iterable, Sequence

import numpy as np

from ..errors import InvalidArgumentError, SourceExhaustedError
from .distributions import Distribution


class Phase(Enum):
    """The four sampled phases of a quorum read/write."""

    W = "W"
    A = "A"
    R = "R"
    S = "S"


class LatencySource(ABC):
    """Capability that supplies per-phase latency samples.

    Each call returns one sample drawn independently of every other call.
    Subclasses that draw randomly should override ``reseed`` so that the
    parallel runner can give each worker its own stream.
    """

    @abstractmethod
    def sample_w(self) -> float:
        """Write propagation latency (coordinator -> replica apply)."""

    @abstractmethod
    def sample_a(self) -> float:
        """Write acknowledgment latency (replica -> coordinator)."""

    @abstractmethod
    def sample_r(self) -> float:
        """Read request latency (coordinator -> replica execute)."""

    @abstractmethod
    def sample_s(self) -> float:
        """Read response latency (replica -> coordinator)."""

    def sample(self, phase: Phase) -> float:
        """Draw one sample for the given phase."""
        if phase is Phase.W:
            return self.sample_w()
        if phase is Phase.A:
            return self.sample_a()
        if phase is Phase.R:
            return self.sample_r()
        return self.sample_s()

    def reseed(self, seed: int | None) -> None:
        """Reset the random stream. Deterministic sources ignore this."""

    def snapshot(self) -> LatencySource:
        """Return an independent copy that can be shipped to a worker process."""
        return copy.deepcopy(self)

    def refresh(self) -> None:
        """Reload samples from wherever they come from. No-op by default."""

    def close(self) -> None:
        """Release any held resources. No-op by default."""

    def __enter__(self) -> LatencySource:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class DistributionLatencySource(LatencySource):
    """Latency source backed by one parametric distribution per phase.

    Args:
        w: Distribution for the W phase.
        a: Distribution for the A phase.
        r: Distribution for the R phase.
        s: Distribution for the S phase.
        seed: Random seed for reproducibility.
    """

    def __init__(
        self,
        w: Distribution,
        a: Distribution,
        r: Distribution,
        s: Distribution,
        seed: int | None = None,
    ):
        self.distributions = {Phase.W: w, Phase.A: a, Phase.R: r, Phase.S: s}
        self.rng = np.random.default_rng(seed)

    @classmethod
    def uniform_phases(cls, dist: Distribution, seed: int | None = None) -> DistributionLatencySource:
        """Use the same distribution for every phase."""
        return cls(w=dist, a=dist, r=dist, s=dist, seed=seed)

    def sample_w(self) -> float:
        return float(self.distributions[Phase.W].sample(self.rng))

    def sample_a(self) -> float:
        return float(self.distributions[Phase.A].sample(self.rng))

    def sample_r(self) -> float:
        return float(self.distributions[Phase.R].sample(self.rng))

    def sample_s(self) -> float:
        return float(self.distributions[Phase.S].sample(self.rng))

    def reseed(self, seed: int | None) -> None:
        self.rng = np.random.default_rng(seed)

    def __repr__(self) -> str:
        dists = ", ".join(f"{p.value}={d!r}" for p, d in self.distributions.items())
        return f"DistributionLatencySource({dists})"


class EmpiricalLatencySource(LatencySource):
    """Latency source that resamples with replacement from fixed windows.

    Each phase owns a window of previously measured latencies (ms). A
    window must be non-empty; an empty one is a configuration error that
    is reported here, before any simulation is attempted.

    Args:
        w: Sample window for the W phase.
        a: Sample window for the A phase.
        r: Sample window for the R phase.
        s: Sample window for the S phase.
        seed: Random seed for reproducibility.
    """

    def __init__(
        self,
        w: Iterable[float],
        a: Iterable[float],
        r: Iterable[float],
        s: Iterable[float],
        seed: int | None = None,
    ):
        self.rng = np.random.default_rng(seed)
        self.windows: dict[Phase, np.ndarray] = {}
        self.set_windows(w=w, a=a, r=r, s=s)

    def set_windows(
        self,
        w: Iterable[float],
        a: Iterable[float],
        r: Iterable[float],
        s: Iterable[float],
    ) -> None:
        """Replace all four sample windows at once.

        Raises:
            SourceExhaustedError: If any window is empty.
            InvalidArgumentError: If any latency is negative, NaN or
                infinite.

        The previous windows are left untouched when either is raised.
        """
        windows = {
            Phase.W: np.asarray(list(w), dtype=float),
            Phase.A: np.asarray(list(a), dtype=float),
            Phase.R: np.asarray(list(r), dtype=float),
            Phase.S: np.asarray(list(s), dtype=float),
        }
        for phase, window in windows.items():
            if window.size == 0:
                raise SourceExhaustedError(f"no {phase.value} latencies recorded")
            _check_latencies(phase, window)
        self.windows = windows

    @classmethod
    def from_operation_latencies(
        cls,
        read_ms: Sequence[float],
        write_ms: Sequence[float],
        response_phase: str = "read",
        seed: int | None = None,
    ) -> EmpiricalLatencySource:
        """Derive phase windows from whole-operation latencies.

        Storage nodes usually only report end-to-end read and write
        latencies. Each is split evenly between its two one-way phases:
        W and A are half a write, R is half a read. ``response_phase``
        chooses whether S is half a read or half a write.
        """
        return cls(seed=seed, **_split_operation_latencies(read_ms, write_ms, response_phase))

    @classmethod
    def from_csv(cls, path: str | Path, seed: int | None = None) -> EmpiricalLatencySource:
        """Load windows from a CSV file with ``phase,latency_ms`` columns."""
        samples: dict[str, list[float]] = {p.value: [] for p in Phase}
        with open(path, newline="") as f:
            reader = csv.DictReader(f)
            for line_no, row in enumerate(reader, start=2):
                phase = (row.get("phase") or "").strip().upper()
                if phase not in samples:
                    raise InvalidArgumentError(
                        f"{path}:{line_no}: unknown phase {row.get('phase')!r}"
                    )
                try:
                    samples[phase].append(float(row["latency_ms"]))
                except (KeyError, TypeError, ValueError) as e:
                    raise InvalidArgumentError(
                        f"{path}:{line_no}: bad latency_ms {row.get('latency_ms')!r}"
                    ) from e
        return cls(w=samples["W"], a=samples["A"], r=samples["R"], s=samples["S"], seed=seed)

    def _draw(self, phase: Phase) -> float:
        window = self.windows[phase]
        return float(window[self.rng.integers(window.size)])

    def sample_w(self) -> float:
        return self._draw(Phase.W)

    def sample_a(self) -> float:
        return self._draw(Phase.A)

    def sample_r(self) -> float:
        return self._draw(Phase.R)

    def sample_s(self) -> float:
        return self._draw(Phase.S)

    def reseed(self, seed: int | None) -> None:
        self.rng = np.random.default_rng(seed)

    def window_sizes(self) -> dict[Phase, int]:
        return {phase: int(window.size) for phase, window in self.windows.items()}

    def __repr__(self) -> str:
        sizes = ", ".join(f"{p.value}={n}" for p, n in self.window_sizes().items())
        return f"{type(self).__name__}({sizes})"


class ReplayLatencySource(LatencySource):
    """Deterministic source that cycles through fixed per-phase sequences.

    Useful in tests: with literal sequences the simulator's order
    statistics and staleness decisions can be checked by hand.
    """

    def __init__(
        self,
        w: Sequence[float],
        a: Sequence[float],
        r: Sequence[float],
        s: Sequence[float],
    ):
        sequences = {Phase.W: w, Phase.A: a, Phase.R: r, Phase.S: s}
        for phase, values in sequences.items():
            if len(values) == 0:
                raise SourceExhaustedError(f"no {phase.value} latencies recorded")
            _check_latencies(phase, np.asarray(values, dtype=float))
        self.sequences = {phase: [float(v) for v in values] for phase, values in sequences.items()}
        self.positions = {phase: 0 for phase in Phase}

    def _next(self, phase: Phase) -> float:
        values = self.sequences[phase]
        value = values[self.positions[phase] % len(values)]
        self.positions[phase] += 1
        return value

    def sample_w(self) -> float:
        return self._next(Phase.W)

    def sample_a(self) -> float:
        return self._next(Phase.A)

    def sample_r(self) -> float:
        return self._next(Phase.R)

    def sample_s(self) -> float:
        return self._next(Phase.S)

    def rewind(self) -> None:
        """Start every sequence over from its first value."""
        self.positions = {phase: 0 for phase in Phase}


def _check_latencies(phase: Phase, values: np.ndarray) -> None:
    if not np.all(np.isfinite(values)):
        raise InvalidArgumentError(f"{phase.value} latencies must be finite")
    if np.any(values < 0):
        raise InvalidArgumentError(
            f"{phase.value} latencies must be non-negative, got min {values.min()}"
        )


def _split_operation_latencies(
    read_ms: Sequence[float],
    write_ms: Sequence[float],
    response_phase: str,
) -> dict[str, np.ndarray]:
    if response_phase not in ("read", "write"):
        raise InvalidArgumentError(
            f"response_phase must be 'read' or 'write', got {response_phase!r}"
        )
    reads = np.asarray(read_ms, dtype=float)
    writes = np.asarray(write_ms, dtype=float)
    if reads.size == 0:
        raise SourceExhaustedError("no read latencies recorded")
    if writes.size == 0:
        raise SourceExhaustedError("no write latencies recorded")

    half_read = reads / 2.0
    half_write = writes / 2.0
    return {
        "w": half_write,
        "a": half_write,
        "r": half_read,
        "s": half_read if response_phase == "read" else half_write,
    }
