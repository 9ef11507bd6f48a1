"""Network analysis module for SparkGrid.

Provides the network data model, per-unit system, impedance reduction,
Newton-Raphson AC load flow, BS EN 60909 style fault currents,
protection/arc-flash assessment and N-1 contingency scanning.
"""
