"""
Graphing utilities for visualizing predictions.

Provides line plots of consistency over time since write (t-visibility
curves), latency/consistency trade-off scatter plots, and latency CDFs.
"""

import numpy as np
import plotly.graph_objects as go
from dataclasses import dataclass, astuple

from .predictor import TrialSamples
from .result import PredictionResult


@dataclass
class Line:
    x_values: list[float]
    y_values: list[float]
    name: str


@dataclass
class Graph:
    title: str
    x_axis_name: str
    y_axis_name: str
    lines: list[Line]


def make_fig(graph: Graph, log_y: bool = False) -> go.Figure:
    """Create a line plot figure.

    Args:
        graph: Graph specification with title, axes, and lines.
        log_y: Whether to use a logarithmic y axis.

    Returns:
        Plotly Figure object.
    """
    fig = go.Figure()

    for line in graph.lines:
        x_values, y_values, name = astuple(line)
        fig.add_trace(go.Scatter(x=x_values, y=y_values, mode="lines", name=name))

    fig.update_layout(
        title=graph.title,
        xaxis_title=graph.x_axis_name,
        yaxis_title=graph.y_axis_name,
        showlegend=True,
    )

    if log_y:
        fig.update_yaxes(type="log")

    return fig


def make_staleness_figure(
    curves: list[list[PredictionResult]],
    title: str = "Probability of consistent reads",
) -> go.Figure:
    """Plot consistency probability against time since write.

    Args:
        curves: One list of results per (R, W) configuration, each ordered
            by time since write (as returned by ``staleness_curve``).
        title: Plot title.

    Returns:
        Plotly Figure object with one line per non-empty curve.
    """
    lines = []
    for curve in curves:
        if not curve:
            continue
        first = curve[0]
        lines.append(
            Line(
                x_values=[p.time_since_write for p in curve],
                y_values=[p.consistency_probability for p in curve],
                name=f"N={first.n}, R={first.r}, W={first.w}",
            )
        )

    graph = Graph(
        title=title,
        x_axis_name="Time since write (ms)",
        y_axis_name="P(consistent read)",
        lines=lines,
    )
    fig = make_fig(graph)
    fig.update_yaxes(range=[0, 1.02])
    return fig


def make_tradeoff_scatter(
    results: list[PredictionResult],
    title: str = "Consistency vs. latency",
) -> go.Figure:
    """Scatter each configuration's consistency against its read+write latency.

    Args:
        results: Results to compare, typically from ``sweep_quorums``.
        title: Plot title.

    Returns:
        Plotly Figure object.
    """
    fig = go.Figure()
    if not results:
        fig.update_layout(title=f"{title} (no data)")
        return fig

    fig.add_trace(
        go.Scatter(
            x=[res.average_read_latency + res.average_write_latency for res in results],
            y=[res.consistency_probability for res in results],
            mode="markers+text",
            text=[f"R={res.r} W={res.w}" for res in results],
            textposition="top center",
        )
    )
    fig.update_layout(
        title=title,
        xaxis_title="Mean read + write latency (ms)",
        yaxis_title="P(consistent read)",
        showlegend=False,
    )
    return fig


def make_latency_cdf(
    samples: dict[str, TrialSamples],
    title: str = "Simulated latency",
) -> go.Figure:
    """Empirical CDFs of simulated read and write latency.

    Args:
        samples: Trial samples keyed by configuration label, e.g.
            "R=1 W=1". Each contributes a read and a write step curve.
        title: Plot title.

    Returns:
        Plotly Figure object.
    """
    fig = go.Figure()

    for label, trials in samples.items():
        for kind, latencies, dash in (
            ("read", trials.read_latencies, "solid"),
            ("write", trials.write_latencies, "dot"),
        ):
            if not latencies:
                continue
            values, counts = np.unique(np.asarray(latencies, dtype=float), return_counts=True)
            fig.add_trace(
                go.Scatter(
                    x=values,
                    y=np.cumsum(counts) / counts.sum(),
                    mode="lines",
                    line=dict(dash=dash, shape="hv"),
                    name=f"{label} {kind}",
                )
            )

    fig.update_layout(
        title=title,
        xaxis_title="Latency (ms)",
        yaxis_title="P(latency <= x)",
        showlegend=True,
    )
    fig.update_yaxes(range=[0, 1.02])
    return fig
