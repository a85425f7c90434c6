"""
Tests for latency sampling.

Tests cover time units, parametric distributions, and the distribution,
empirical and replay latency sources.
"""

import copy
import pickle

import numpy as np
import pytest

from pbspredict.errors import InvalidArgumentError, SourceExhaustedError
from pbspredict.latency import (
    Constant,
    DistributionLatencySource,
    EmpiricalLatencySource,
    Exponential,
    LogNormal,
    Normal,
    Phase,
    ReplayLatencySource,
    Uniform,
    Weibull,
    microseconds,
    seconds,
)


# =============================================================================
# Time Unit Tests
# =============================================================================


class TestTimeUnits:
    def test_seconds_to_millis(self):
        assert seconds(1) == 1000.0
        assert seconds(0.25) == 250.0

    def test_microseconds_to_millis(self):
        assert microseconds(1000) == 1.0
        assert microseconds(1500) == 1.5
        assert microseconds(0) == 0.0


# =============================================================================
# Distribution Tests
# =============================================================================


class TestDistributions:
    def test_exponential_mean_latency(self):
        dist = Exponential(rate=0.5)
        rng = np.random.default_rng(1)

        samples = [dist.sample(rng) for _ in range(5000)]

        assert dist.mean == 2.0
        assert 1.8 < np.mean(samples) < 2.2
        assert all(s >= 0 for s in samples)

    def test_exponential_rejects_non_positive_rate(self):
        with pytest.raises(ValueError):
            Exponential(rate=0)
        with pytest.raises(ValueError):
            Exponential(rate=-2.0)

    def test_weibull(self):
        dist = Weibull(shape=1.5, scale=4.0)
        rng = np.random.default_rng(2)

        samples = [dist.sample(rng) for _ in range(2000)]

        assert all(s >= 0 for s in samples)
        assert abs(np.mean(samples) - dist.mean) < 0.3

    def test_weibull_invalid(self):
        with pytest.raises(ValueError):
            Weibull(shape=0, scale=1.0)
        with pytest.raises(ValueError):
            Weibull(shape=1.0, scale=-1.0)

    def test_normal_never_negative(self):
        dist = Normal(mean=1.0, std=3.0)
        rng = np.random.default_rng(3)

        samples = [dist.sample(rng) for _ in range(1000)]

        assert min(samples) >= 0.0
        # clamping pushes the observed mean above the nominal one
        assert np.mean(samples) > 1.0

    def test_normal_invalid_std(self):
        with pytest.raises(ValueError):
            Normal(mean=1.0, std=0)

    def test_lognormal_from_median(self):
        dist = LogNormal.from_median(median=10.0, sigma=0.5)
        rng = np.random.default_rng(4)

        samples = [dist.sample(rng) for _ in range(5000)]

        assert 9.0 < np.median(samples) < 11.0
        assert dist.mean > 10.0

    def test_lognormal_invalid(self):
        with pytest.raises(ValueError):
            LogNormal(mu=0.0, sigma=0.0)
        with pytest.raises(ValueError):
            LogNormal.from_median(median=0.0, sigma=1.0)

    def test_uniform(self):
        dist = Uniform(low=2.0, high=4.0)
        rng = np.random.default_rng(5)

        samples = [dist.sample(rng) for _ in range(1000)]

        assert all(2.0 <= s < 4.0 for s in samples)
        assert dist.mean == 3.0

    def test_uniform_invalid_bounds(self):
        with pytest.raises(ValueError):
            Uniform(low=4.0, high=4.0)

    def test_constant(self):
        dist = Constant(value=0.75)
        rng = np.random.default_rng(6)

        assert {dist.sample(rng) for _ in range(10)} == {0.75}
        assert dist.mean == 0.75


# =============================================================================
# Distribution Source Tests
# =============================================================================


class TestDistributionLatencySource:
    def test_phases_use_their_own_distribution(self):
        source = DistributionLatencySource(
            w=Constant(1.0), a=Constant(2.0), r=Constant(3.0), s=Constant(4.0)
        )

        assert source.sample_w() == 1.0
        assert source.sample_a() == 2.0
        assert source.sample_r() == 3.0
        assert source.sample_s() == 4.0
        assert source.sample(Phase.S) == 4.0
        assert source.sample(Phase.W) == 1.0

    def test_same_seed_same_stream(self):
        a = DistributionLatencySource.uniform_phases(Exponential(rate=1.0), seed=10)
        b = DistributionLatencySource.uniform_phases(Exponential(rate=1.0), seed=10)

        assert [a.sample_r() for _ in range(20)] == [b.sample_r() for _ in range(20)]

    def test_reseed_restarts_stream(self):
        source = DistributionLatencySource.uniform_phases(Exponential(rate=1.0), seed=10)
        first = [source.sample_w() for _ in range(5)]

        source.reseed(10)

        assert [source.sample_w() for _ in range(5)] == first

    def test_snapshot_is_independent(self):
        source = DistributionLatencySource.uniform_phases(Exponential(rate=1.0), seed=3)
        clone = source.snapshot()

        clone_draws = [clone.sample_a() for _ in range(5)]

        assert [source.sample_a() for _ in range(5)] == clone_draws

    def test_picklable(self):
        source = DistributionLatencySource.uniform_phases(Uniform(1.0, 2.0), seed=1)
        restored = pickle.loads(pickle.dumps(source))

        assert restored.sample_s() == source.sample_s()

    def test_context_manager(self):
        with DistributionLatencySource.uniform_phases(Constant(1.0)) as source:
            assert source.sample_w() == 1.0


# =============================================================================
# Empirical Source Tests
# =============================================================================


class TestEmpiricalLatencySource:
    def test_samples_come_from_windows(self):
        source = EmpiricalLatencySource(
            w=[1.0, 2.0], a=[3.0], r=[4.0, 5.0, 6.0], s=[7.0], seed=0
        )

        assert {source.sample_w() for _ in range(100)} <= {1.0, 2.0}
        assert {source.sample_r() for _ in range(100)} == {4.0, 5.0, 6.0}
        assert source.sample_a() == 3.0
        assert source.sample_s() == 7.0

    def test_window_sizes(self):
        source = EmpiricalLatencySource(w=[1, 2], a=[3], r=[4, 5, 6], s=[7])

        assert source.window_sizes() == {Phase.W: 2, Phase.A: 1, Phase.R: 3, Phase.S: 1}

    @pytest.mark.parametrize("empty", ["w", "a", "r", "s"])
    def test_empty_window_rejected(self, empty):
        windows = dict(w=[1.0], a=[1.0], r=[1.0], s=[1.0])
        windows[empty] = []

        with pytest.raises(SourceExhaustedError, match=empty.upper()):
            EmpiricalLatencySource(**windows)

    @pytest.mark.parametrize("bad", [float("nan"), float("inf"), -5.0])
    def test_bad_latency_rejected(self, bad):
        with pytest.raises(InvalidArgumentError, match="W latencies"):
            EmpiricalLatencySource(w=[1.0, bad], a=[1.0], r=[1.0], s=[1.0])

    def test_bad_set_windows_keeps_previous(self):
        source = EmpiricalLatencySource(w=[1.0], a=[2.0], r=[3.0], s=[4.0])

        with pytest.raises(InvalidArgumentError, match="non-negative"):
            source.set_windows(w=[1.0], a=[2.0], r=[3.0], s=[-0.5])

        assert source.sample_s() == 4.0

    def test_operation_latencies_must_be_finite(self):
        with pytest.raises(InvalidArgumentError):
            EmpiricalLatencySource.from_operation_latencies(read_ms=[float("nan")], write_ms=[1.0])

    def test_failed_set_windows_keeps_previous(self):
        source = EmpiricalLatencySource(w=[1.0], a=[2.0], r=[3.0], s=[4.0])

        with pytest.raises(SourceExhaustedError):
            source.set_windows(w=[9.0], a=[9.0], r=[], s=[9.0])

        assert source.sample_w() == 1.0
        assert source.sample_r() == 3.0

    def test_reseed_is_reproducible(self):
        source = EmpiricalLatencySource(w=range(100), a=range(100), r=range(100), s=range(100), seed=1)
        first = [source.sample_w() for _ in range(10)]

        source.reseed(1)

        assert [source.sample_w() for _ in range(10)] == first

    def test_from_operation_latencies_halves(self):
        source = EmpiricalLatencySource.from_operation_latencies(read_ms=[8.0], write_ms=[4.0])

        assert source.sample_w() == 2.0
        assert source.sample_a() == 2.0
        assert source.sample_r() == 4.0
        assert source.sample_s() == 4.0

    def test_from_operation_latencies_response_phase_write(self):
        source = EmpiricalLatencySource.from_operation_latencies(
            read_ms=[8.0], write_ms=[4.0], response_phase="write"
        )

        assert source.sample_r() == 4.0
        assert source.sample_s() == 2.0

    def test_from_operation_latencies_bad_response_phase(self):
        with pytest.raises(InvalidArgumentError, match="response_phase"):
            EmpiricalLatencySource.from_operation_latencies([1.0], [1.0], response_phase="ack")

    def test_from_operation_latencies_no_reads(self):
        with pytest.raises(SourceExhaustedError, match="no read latencies recorded"):
            EmpiricalLatencySource.from_operation_latencies(read_ms=[], write_ms=[1.0])

    def test_from_operation_latencies_no_writes(self):
        with pytest.raises(SourceExhaustedError, match="no write latencies recorded"):
            EmpiricalLatencySource.from_operation_latencies(read_ms=[1.0], write_ms=[])


class TestEmpiricalFromCsv:
    def test_loads_each_phase(self, tmp_path):
        path = tmp_path / "trace.csv"
        path.write_text("phase,latency_ms\nW,1.5\nA,2\nr,3\nS,4.25\nW,1.5\n")

        source = EmpiricalLatencySource.from_csv(path, seed=0)

        assert source.window_sizes() == {Phase.W: 2, Phase.A: 1, Phase.R: 1, Phase.S: 1}
        assert source.sample_w() == 1.5
        assert source.sample_r() == 3.0
        assert source.sample_s() == 4.25

    def test_unknown_phase(self, tmp_path):
        path = tmp_path / "trace.csv"
        path.write_text("phase,latency_ms\nW,1\nX,2\n")

        with pytest.raises(InvalidArgumentError, match="unknown phase"):
            EmpiricalLatencySource.from_csv(path)

    def test_bad_latency(self, tmp_path):
        path = tmp_path / "trace.csv"
        path.write_text("phase,latency_ms\nW,fast\n")

        with pytest.raises(InvalidArgumentError, match="bad latency_ms"):
            EmpiricalLatencySource.from_csv(path)

    @pytest.mark.parametrize("value", ["nan", "inf", "-5"])
    def test_non_latency_values_rejected(self, tmp_path, value):
        path = tmp_path / "trace.csv"
        path.write_text(f"phase,latency_ms\nW,1\nW,{value}\nA,1\nR,1\nS,1\n")

        with pytest.raises(InvalidArgumentError, match="W latencies"):
            EmpiricalLatencySource.from_csv(path)

    def test_missing_phase_rows(self, tmp_path):
        path = tmp_path / "trace.csv"
        path.write_text("phase,latency_ms\nW,1\nA,1\nR,1\n")

        with pytest.raises(SourceExhaustedError, match="no S latencies recorded"):
            EmpiricalLatencySource.from_csv(path)


# =============================================================================
# Replay Source Tests
# =============================================================================


class TestReplayLatencySource:
    def test_cycles_in_order(self):
        source = ReplayLatencySource(w=[1, 2, 3], a=[0], r=[5], s=[6])

        assert [source.sample_w() for _ in range(7)] == [1.0, 2.0, 3.0, 1.0, 2.0, 3.0, 1.0]

    def test_phases_advance_independently(self):
        source = ReplayLatencySource(w=[1, 2], a=[3, 4], r=[5], s=[6])

        assert source.sample_w() == 1.0
        assert source.sample_a() == 3.0
        assert source.sample_w() == 2.0
        assert source.sample_a() == 4.0

    def test_rewind(self):
        source = ReplayLatencySource(w=[1, 2], a=[3], r=[5], s=[6])
        source.sample_w()

        source.rewind()

        assert source.sample_w() == 1.0

    def test_negative_or_nan_rejected(self):
        with pytest.raises(InvalidArgumentError, match="R latencies"):
            ReplayLatencySource(w=[1], a=[1], r=[-1], s=[1])
        with pytest.raises(InvalidArgumentError, match="S latencies"):
            ReplayLatencySource(w=[1], a=[1], r=[1], s=[float("nan")])

    def test_empty_sequence_rejected(self):
        with pytest.raises(SourceExhaustedError):
            ReplayLatencySource(w=[1], a=[], r=[1], s=[1])

    def test_copies_keep_position(self):
        source = ReplayLatencySource(w=[1, 2, 3], a=[0], r=[0], s=[0])
        source.sample_w()

        clone = copy.deepcopy(source)
        restored = pickle.loads(pickle.dumps(source))

        assert clone.sample_w() == 2.0
        assert restored.sample_w() == 2.0
        assert source.sample_w() == 2.0
