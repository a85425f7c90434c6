"""
Error taxonomy for the staleness predictor.

Configuration errors subclass ValueError so callers that only care about
bad arguments can catch the builtin.
"""


class PBSError(Exception):
    """Base class for all predictor errors."""


class InvalidArgumentError(PBSError, ValueError):
    """A prediction request or runner configuration is invalid.

    Raised before any latency is sampled.
    """


class SourceExhaustedError(PBSError):
    """A latency source has no samples for one of its phases."""


class MetricsConnectionError(PBSError):
    """The metrics endpoint could not be reached or returned an error."""
