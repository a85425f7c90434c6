"""
Command-line driver: predict staleness and latency for every (R, W) pair.

Example:
    pbs-predict --jolokia-host 10.0.0.5 -n 3 --time-ms 10
    pbs-predict --trace-file latencies.csv --plot curves.html
    pbs-predict --synthetic 5 --latency-plot latency.html
"""

import argparse
import csv
import logging
import sys

import numpy as np

from .errors import InvalidArgumentError, PBSError
from .graphing_utils import make_latency_cdf, make_staleness_figure
from .latency.cassandra import HISTOGRAM_FORMATS, CassandraLatencySource, JolokiaConfig
from .latency.distributions import Exponential
from .latency.source import DistributionLatencySource, EmpiricalLatencySource, LatencySource
from .monte_carlo import MonteCarloConfig, PredictionRunner, quorum_configurations, staleness_curve
from .predictor import PredictionRequest, simulate_trials

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="pbs-predict",
        description=(
            "Predict the probability of consistent reads and the read/write latency "
            "of a quorum-replicated store from measured latencies."
        ),
    )

    source = parser.add_argument_group("latency source (pick one)")
    exclusive = source.add_mutually_exclusive_group(required=True)
    exclusive.add_argument("--jolokia-host", help="Cassandra node running a Jolokia agent")
    exclusive.add_argument("--trace-file", help="CSV file with phase,latency_ms rows")
    exclusive.add_argument(
        "--synthetic",
        type=float,
        metavar="MEAN_MS",
        help="Exponential latencies with this mean for every phase",
    )
    source.add_argument("--jolokia-port", type=int, default=8778)
    source.add_argument("--keyspace", default="Keyspace1")
    source.add_argument("--table", default="Standard1")
    source.add_argument(
        "--metric-type",
        default="ColumnFamily",
        help="MBean type key ('Table' on newer Cassandra releases)",
    )
    source.add_argument("--histogram-format", choices=HISTOGRAM_FORMATS, default="samples")
    source.add_argument(
        "--response-phase",
        choices=["read", "write"],
        default="read",
        help="Which measured operation backs the read-response (S) phase",
    )

    parser.add_argument("-n", "--replication-factor", type=int, default=3)
    parser.add_argument("--time-ms", type=float, default=1.0, help="Time since write (ms)")
    parser.add_argument("-k", "--versions", type=int, default=1, help="Tolerated version staleness")
    parser.add_argument("--percentile", type=float, default=0.99, help="Latency percentile in [0, 1]")
    parser.add_argument("--trials", type=int, default=10_000, help="Monte Carlo trials per configuration")
    parser.add_argument("--seed", type=int, default=None, help="Optional RNG seed")
    parser.add_argument("--workers", type=int, default=1, help="Parallel worker processes")
    parser.add_argument("--csv", metavar="PATH", help="Also write results to this CSV file")
    parser.add_argument("--plot", metavar="PATH", help="Write consistency-vs-time curves to this HTML file")
    parser.add_argument("--plot-max-ms", type=float, default=100.0)
    parser.add_argument("--plot-points", type=int, default=21)
    parser.add_argument(
        "--latency-plot",
        metavar="PATH",
        help="Write read/write latency CDFs for every configuration to this HTML file",
    )
    parser.add_argument("-v", "--verbose", action="store_true")
    return parser


def make_source(args: argparse.Namespace) -> LatencySource:
    if args.jolokia_host:
        config = JolokiaConfig(
            host=args.jolokia_host,
            port=args.jolokia_port,
            keyspace=args.keyspace,
            table=args.table,
            metric_type=args.metric_type,
            histogram_format=args.histogram_format,
            response_phase=args.response_phase,
        )
        return CassandraLatencySource(config, seed=args.seed)
    if args.trace_file:
        return EmpiricalLatencySource.from_csv(args.trace_file, seed=args.seed)
    return DistributionLatencySource.uniform_phases(Exponential(rate=1.0 / args.synthetic), seed=args.seed)


def write_csv(path: str, results: list) -> None:
    with open(path, "w", newline="") as f:
        writer = csv.DictWriter(f, fieldnames=list(results[0].as_row()))
        writer.writeheader()
        writer.writerows(result.as_row() for result in results)


def check_args(args: argparse.Namespace) -> None:
    """Reject bad options before any latency source is built."""
    if args.synthetic is not None and args.synthetic <= 0:
        raise InvalidArgumentError(f"synthetic mean must be positive, got {args.synthetic}")
    if args.plot_points < 1:
        raise InvalidArgumentError(f"--plot-points must be at least 1, got {args.plot_points}")
    if args.plot_max_ms < 0:
        raise InvalidArgumentError(f"--plot-max-ms must be non-negative, got {args.plot_max_ms}")
    PredictionRequest(
        n=args.replication_factor,
        r=1,
        w=1,
        time_since_write_ms=args.time_ms,
        versions_stale=args.versions,
        percentile=args.percentile,
    )


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        check_args(args)
        mc_config = MonteCarloConfig(
            num_trials=args.trials,
            parallel_workers=args.workers,
            base_seed=args.seed,
        )
        n = args.replication_factor

        with make_source(args) as source:
            runner = PredictionRunner(mc_config)
            results = []
            curves = []
            latency_samples = {}
            for r, w in quorum_configurations(n):
                request = PredictionRequest(
                    n=n,
                    r=r,
                    w=w,
                    time_since_write_ms=args.time_ms,
                    versions_stale=args.versions,
                    percentile=args.percentile,
                )
                result = runner.run(request, source)
                results.append(result)

                if r == 1 and w == 1:
                    print(
                        f"{args.time_ms:g}ms after a given write, "
                        f"with maximum version staleness of k={args.versions}"
                    )
                print(result.summary())
                print()

                if args.plot:
                    times = np.linspace(0.0, args.plot_max_ms, args.plot_points)
                    curves.append(staleness_curve(request, times, source, mc_config))
                if args.latency_plot:
                    latency_samples[f"R={r} W={w}"] = simulate_trials(request, source, args.trials)

        if args.csv:
            write_csv(args.csv, results)
            logger.info(f"Wrote {len(results)} results to {args.csv}")
        if args.plot:
            make_staleness_figure(curves).write_html(args.plot)
            logger.info(f"Wrote staleness curves to {args.plot}")
        if args.latency_plot:
            make_latency_cdf(latency_samples, title=f"Simulated latency, N={n}").write_html(args.latency_plot)
            logger.info(f"Wrote latency CDFs to {args.latency_plot}")
    except (PBSError, OSError) as e:
        logger.error(f"Prediction failed: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
