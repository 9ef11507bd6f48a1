"""SparkGrid — network fault and load-flow analysis engine.

Public entry points live in :mod:`sparkgrid.analysis`.
"""

__version__ = "0.1.0"
