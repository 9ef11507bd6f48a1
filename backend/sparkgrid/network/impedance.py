"""Impedance aggregation.

Two reductions are provided:

* :func:`aggregate` — series sum of a source, transformers and conductor runs
  along a single radial path (the classic BS EN 60909 hand calculation).
* :func:`thevenin_impedance` — driving-point impedance of a meshed network at
  a bus, or at a point part-way along a branch, from the inverse of the bus
  admittance matrix with source impedances connected at their buses.

Both return an :class:`AggregatedImpedance` in ohms and refuse to return a
zero impedance (which would give an unbounded fault current).
"""

from __future__ import annotations

import logging
import math
from collections.abc import Sequence
from dataclasses import dataclass

import numpy as np

from sparkgrid.network.exceptions import DegenerateNetworkError, TopologyError
from sparkgrid.network.limits import DEFAULT_FAULT_SETTINGS, FaultSettings
from sparkgrid.network.network_model import (
    Conductor,
    Network,
    Source,
    Transformer,
    tie_impedance,
    validate,
)
from sparkgrid.network.per_unit import (
    cable_z_ohm,
    ohm_to_pu,
    pu_to_ohm,
    split_by_x_over_r,
    transformer_z_ohm,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ImpedanceContribution:
    """Series contribution of one element, in ohms."""
    element_id: str
    kind: str  # "source", "transformer", "conductor" or "thevenin"
    resistance: float
    reactance: float


@dataclass(frozen=True)
class AggregatedImpedance:
    """Equivalent series impedance seen from the point of interest.

    ``supply_impedance`` is the part of the total that sits behind the supply
    terminals; it is used to work out the retained voltage during a fault.
    """
    resistance: float
    reactance: float
    contributions: tuple[ImpedanceContribution, ...] = ()
    supply_impedance: complex = 0j

    @property
    def magnitude(self) -> float:
        return math.hypot(self.resistance, self.reactance)

    @property
    def x_over_r(self) -> float:
        if self.resistance == 0.0:
            return math.inf if self.reactance > 0.0 else 0.0
        return self.reactance / self.resistance

    @property
    def as_complex(self) -> complex:
        return complex(self.resistance, self.reactance)


def _check_non_degenerate(total: AggregatedImpedance, settings: FaultSettings) -> AggregatedImpedance:
    if not math.isfinite(total.magnitude) or total.magnitude < settings.min_impedance_ohm:
        raise DegenerateNetworkError(
            f"Total impedance {total.magnitude:.3g} Ω is below the minimum of "
            f"{settings.min_impedance_ohm:.3g} Ω; fault current would be unbounded"
        )
    return total


def aggregate(
    source: Source,
    transformers: Sequence[Transformer] = (),
    conductors: Sequence[Conductor] = (),
    lengths_km: Sequence[float] | None = None,
    system_voltage: float | None = None,
    settings: FaultSettings = DEFAULT_FAULT_SETTINGS,
) -> AggregatedImpedance:
    """Sum the series impedance of a source → transformers → conductors path.

    Args:
        source: upstream Thevenin source (impedance in Ω, split by its X/R)
        transformers: nameplate data, referred to ``system_voltage``
        conductors: cable runs with per-km R/X
        lengths_km: optional lengths overriding each conductor's own length
        system_voltage: voltage for transformer referral (defaults to source)
        settings: fault constants (minimum impedance guard)

    Raises:
        TopologyError: negative impedance values or mismatched lengths
        DegenerateNetworkError: total impedance is zero
    """
    v = system_voltage if system_voltage is not None else source.voltage
    if lengths_km is not None and len(lengths_km) != len(conductors):
        raise TopologyError(
            f"{len(lengths_km)} lengths supplied for {len(conductors)} conductors"
        )

    if source.impedance < 0 or source.x_over_r < 0:
        raise TopologyError(f"Source '{source.id}' has negative impedance or X/R")

    contributions: list[ImpedanceContribution] = []
    z_src = split_by_x_over_r(source.impedance, source.x_over_r)
    contributions.append(ImpedanceContribution(source.id, "source", z_src.real, z_src.imag))

    for tx in transformers:
        if tx.impedance_pct < 0 or tx.x_over_r < 0:
            raise TopologyError(f"Transformer '{tx.id}' has negative impedance or X/R")
        if tx.rating_kva <= 0:
            raise TopologyError(f"Transformer '{tx.id}' rating must be positive")
        z_tx = transformer_z_ohm(tx.impedance_pct, tx.rating_kva, v, tx.x_over_r)
        contributions.append(ImpedanceContribution(tx.id, "transformer", z_tx.real, z_tx.imag))

    for k, cond in enumerate(conductors):
        length = lengths_km[k] if lengths_km is not None else cond.length_km
        if length < 0 or cond.r_ohm_per_km < 0 or cond.x_ohm_per_km < 0:
            raise TopologyError(f"Conductor '{cond.id}' has negative length, resistance or reactance")
        z_c = cable_z_ohm(cond.r_ohm_per_km, cond.x_ohm_per_km, length)
        contributions.append(ImpedanceContribution(cond.id, "conductor", z_c.real, z_c.imag))

    # fsum keeps the total independent of element order
    total = AggregatedImpedance(
        resistance=math.fsum(c.resistance for c in contributions),
        reactance=math.fsum(c.reactance for c in contributions),
        contributions=tuple(contributions),
        supply_impedance=z_src,
    )
    logger.debug(
        "Aggregated %d elements: R=%.5f Ω X=%.5f Ω",
        len(contributions), total.resistance, total.reactance,
    )
    return _check_non_degenerate(total, settings)


def thevenin_impedance(
    network: Network,
    bus: str | None = None,
    branch: str | None = None,
    position: float = 0.5,
    settings: FaultSettings = DEFAULT_FAULT_SETTINGS,
) -> AggregatedImpedance:
    """Thevenin impedance of a network at a bus or along a branch.

    For a location along a branch the element is split at ``position``
    (0 = from-bus end, 1 = to-bus end) into two series sections joined at a
    temporary fault node. Sources with a ``bus`` are connected as shunt
    admittances; charging susceptance is ignored.

    Raises:
        TopologyError: invalid network or unknown location
        DegenerateNetworkError: no connected source, singular matrix or zero impedance
    """
    index = validate(network)
    if (bus is None) == (branch is None):
        raise TopologyError("Fault location needs exactly one of bus or branch")

    sources = [s for s in network.sources if s.bus is not None]
    if not sources:
        raise DegenerateNetworkError("No source is connected to the network")

    n = index.n_bus
    elements = index.elements
    split = None
    if branch is not None:
        matches = [el for el in elements if el.id == branch]
        if not matches:
            raise TopologyError(f"Unknown branch '{branch}'")
        if not 0.0 <= position <= 1.0:
            raise TopologyError(f"Fault position {position} must lie between 0 and 1")
        split = matches[0]
        if position == 0.0:
            bus, split = split.from_bus, None
        elif position == 1.0:
            bus, split = split.to_bus, None

    size = n + 1 if split is not None else n
    y_bus = np.zeros((size, size), dtype=complex)
    y_bus[:n, :n] = index.build_y_bus()
    # Shunt charging does not take part in the fault calculation
    for el in elements:
        i = index.position[el.from_bus]
        j = index.position[el.to_bus]
        y_bus[i, i] -= 1j * el.b_pu / 2
        y_bus[j, j] -= 1j * el.b_pu / 2

    if split is not None:
        i = index.position[split.from_bus]
        j = index.position[split.to_bus]
        y = 1.0 / tie_impedance(split.z_pu)
        y_bus[i, i] -= y
        y_bus[j, j] -= y
        y_bus[i, j] += y
        y_bus[j, i] += y
        y_a = 1.0 / tie_impedance(split.z_pu * position)
        y_b = 1.0 / tie_impedance(split.z_pu * (1.0 - position))
        y_bus[i, i] += y_a
        y_bus[n, n] += y_a + y_b
        y_bus[j, j] += y_b
        y_bus[i, n] -= y_a
        y_bus[n, i] -= y_a
        y_bus[n, j] -= y_b
        y_bus[j, n] -= y_b
        k = n
        v_base = network.bus_nominal_voltage(network.buses[i])
    else:
        if bus not in index.position:
            raise TopologyError(f"Unknown bus '{bus}'")
        k = index.position[bus]
        v_base = network.bus_nominal_voltage(network.buses[k])

    for src in sources:
        s = index.position[src.bus]
        v_src_base = network.bus_nominal_voltage(network.buses[s])
        z_src = ohm_to_pu(split_by_x_over_r(src.impedance, src.x_over_r), v_src_base, network.base_kva)
        y_bus[s, s] += 1.0 / tie_impedance(z_src)

    # Column k of Z-bus = inv(Y-bus) · e_k
    e_k = np.zeros(size, dtype=complex)
    e_k[k] = 1.0
    try:
        z_col = np.linalg.solve(y_bus, e_k)
    except np.linalg.LinAlgError as exc:
        raise DegenerateNetworkError("Bus admittance matrix is singular") from exc

    z_th = pu_to_ohm(complex(z_col[k]), v_base, network.base_kva)
    # Voltage retained at the first source bus: 1 - Z_sk / Z_kk
    s0 = index.position[sources[0].bus]
    z_supply = pu_to_ohm(complex(z_col[s0]), v_base, network.base_kva)

    total = AggregatedImpedance(
        resistance=float(z_th.real),
        reactance=float(z_th.imag),
        contributions=(
            ImpedanceContribution(branch or bus, "thevenin", float(z_th.real), float(z_th.imag)),
        ),
        supply_impedance=z_supply,
    )
    logger.debug("Thevenin impedance at %s: %.5f%+.5fj Ω", branch or bus, z_th.real, z_th.imag)
    return _check_non_degenerate(total, settings)
