__all__ = [
    "NetworkAnalysisError",
    "TopologyError",
    "DegenerateNetworkError",
]


class NetworkAnalysisError(Exception):
    pass


class TopologyError(NetworkAnalysisError):
    """Structural problem with the supplied network (raised before any numeric work)."""


class DegenerateNetworkError(NetworkAnalysisError):
    """Numerically degenerate input, e.g. zero total impedance to the fault."""
