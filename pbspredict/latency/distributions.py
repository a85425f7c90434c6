"""
Time units and parametric latency distributions.

All latencies use milliseconds as the canonical unit. Helper functions
convert from the units storage systems usually report in.
"""

import math
from abc import ABC, abstractmethod
from typing import NewType

import numpy as np

# Explicit time unit - all latencies are in milliseconds
Millis = NewType("Millis", float)


def seconds(s: float) -> Millis:
    """Convert seconds to milliseconds."""
    return Millis(s * 1000.0)


def microseconds(us: float) -> Millis:
    """Convert microseconds to milliseconds."""
    return Millis(us / 1000.0)


class Distribution(ABC):
    """Abstract base class for latency distributions."""

    @abstractmethod
    def sample(self, rng: np.random.Generator) -> float:
        """Sample a latency from the distribution.

        Args:
            rng: NumPy random number generator for reproducibility.

        Returns:
            A sampled latency in milliseconds.
        """
        pass

    @property
    @abstractmethod
    def mean(self) -> float:
        """Theoretical mean latency of the distribution."""
        pass


class Exponential(Distribution):
    """Exponential latency distribution parameterized by rate.

    The classic model for network delay in quorum staleness studies; a
    rate of 1/mean_ms gives the usual single-parameter fit.

    Args:
        rate: Inverse of the mean latency (1/ms). Must be positive.
    """

    def __init__(self, rate: float):
        if rate <= 0:
            raise ValueError(f"Rate must be positive, got {rate}")
        self.rate = rate

    @property
    def mean(self) -> float:
        return 1.0 / self.rate

    def sample(self, rng: np.random.Generator) -> float:
        # NumPy's exponential takes scale = 1/rate
        return rng.exponential(1.0 / self.rate)

    def __repr__(self) -> str:
        return f"Exponential(rate={self.rate})"


class Weibull(Distribution):
    """Weibull latency distribution.

    Args:
        shape: Shape parameter (k). Must be positive. k < 1 gives a heavy
               tail, k = 1 is exponential.
        scale: Scale parameter (λ) in milliseconds. Must be positive.
    """

    def __init__(self, shape: float, scale: float):
        if shape <= 0:
            raise ValueError(f"Shape must be positive, got {shape}")
        if scale <= 0:
            raise ValueError(f"Scale must be positive, got {scale}")
        self.shape = shape
        self.scale = scale

    @property
    def mean(self) -> float:
        return self.scale * math.gamma(1.0 + 1.0 / self.shape)

    def sample(self, rng: np.random.Generator) -> float:
        return self.scale * rng.weibull(self.shape)

    def __repr__(self) -> str:
        return f"Weibull(shape={self.shape}, scale={self.scale})"


class Normal(Distribution):
    """Normal latency distribution clamped from below.

    Args:
        mean: Mean latency in milliseconds.
        std: Standard deviation. Must be positive.
        min_val: Samples below this are clamped. Defaults to 0 so that no
            latency is ever negative.
    """

    def __init__(self, mean: float, std: float, min_val: float = 0.0):
        if std <= 0:
            raise ValueError(f"Standard deviation must be positive, got {std}")
        self._mean = mean
        self.std = std
        self.min_val = min_val

    @property
    def mean(self) -> float:
        return self._mean

    def sample(self, rng: np.random.Generator) -> float:
        value = rng.normal(self._mean, self.std)
        return max(self.min_val, value)

    def __repr__(self) -> str:
        return f"Normal(mean={self._mean}, std={self.std}, min_val={self.min_val})"


class LogNormal(Distribution):
    """Log-normal latency distribution.

    Parameterized by the mean and standard deviation of the underlying
    normal, i.e. ``exp(N(mu, sigma))``. Fits measured service times with a
    long right tail well.

    Args:
        mu: Mean of log-latency.
        sigma: Standard deviation of log-latency. Must be positive.
    """

    def __init__(self, mu: float, sigma: float):
        if sigma <= 0:
            raise ValueError(f"Sigma must be positive, got {sigma}")
        self.mu = mu
        self.sigma = sigma

    @classmethod
    def from_median(cls, median: float, sigma: float) -> "LogNormal":
        """Build a distribution whose median latency is ``median`` ms."""
        if median <= 0:
            raise ValueError(f"Median must be positive, got {median}")
        return cls(mu=math.log(median), sigma=sigma)

    @property
    def mean(self) -> float:
        return math.exp(self.mu + self.sigma**2 / 2.0)

    def sample(self, rng: np.random.Generator) -> float:
        return rng.lognormal(self.mu, self.sigma)

    def __repr__(self) -> str:
        return f"LogNormal(mu={self.mu}, sigma={self.sigma})"


class Uniform(Distribution):
    """Uniform latency distribution over [low, high).

    Args:
        low: Lower bound (inclusive).
        high: Upper bound (exclusive).
    """

    def __init__(self, low: float, high: float):
        if low >= high:
            raise ValueError(f"Low must be less than high, got low={low}, high={high}")
        self.low = low
        self.high = high

    @property
    def mean(self) -> float:
        return (self.low + self.high) / 2.0

    def sample(self, rng: np.random.Generator) -> float:
        return rng.uniform(self.low, self.high)

    def __repr__(self) -> str:
        return f"Uniform(low={self.low}, high={self.high})"


class Constant(Distribution):
    """Constant (deterministic) latency.

    Always returns the same value. Useful for tests with hand-computed
    expectations.

    Args:
        value: The latency to return, in milliseconds.
    """

    def __init__(self, value: float):
        self.value = value

    @property
    def mean(self) -> float:
        return self.value

    def sample(self, rng: np.random.Generator) -> float:
        return self.value

    def __repr__(self) -> str:
        return f"Constant(value={self.value})"
