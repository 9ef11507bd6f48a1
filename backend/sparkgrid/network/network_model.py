"""Network topology model, structural validation and Y-bus construction.

Buses, branches, sources and transformers are frozen value objects that
reference each other by identifier only. A :class:`NetworkIndex` resolves
those identifiers once per analysis call; the bus admittance matrix follows
IEEE 399 conventions.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field, replace
from enum import Enum

import numpy as np

from sparkgrid.network.exceptions import TopologyError
from sparkgrid.network.per_unit import ohm_to_pu, transformer_z_pu


class BusType(str, Enum):
    SLACK = "slack"
    PV = "pv"
    PQ = "pq"


class ImpedanceUnit(str, Enum):
    OHM = "ohm"
    PU = "pu"


@dataclass(frozen=True)
class Bus:
    """Single bus definition.

    ``voltage`` is the magnitude setpoint in volts for slack and PV buses and
    defaults to the nominal voltage. PQ buses always start flat at 1.0 pu.
    """
    id: str
    bus_type: BusType = BusType.PQ
    voltage: float | None = None
    angle_deg: float = 0.0
    p_gen_kw: float = 0.0
    q_gen_kvar: float = 0.0
    p_load_kw: float = 0.0
    q_load_kvar: float = 0.0
    nominal_voltage: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "bus_type", BusType(self.bus_type))


@dataclass(frozen=True)
class Branch:
    """Series element (cable or line) between two buses."""
    id: str
    from_bus: str
    to_bus: str
    resistance: float
    reactance: float
    unit: ImpedanceUnit = ImpedanceUnit.OHM
    # Total line-charging susceptance, split equally between the two ends
    susceptance_pu: float = 0.0
    rating_mva: float | None = None
    rating_a: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "unit", ImpedanceUnit(self.unit))


@dataclass(frozen=True)
class Source:
    """Equivalent Thevenin source (grid infeed or generator)."""
    id: str
    voltage: float
    impedance: float
    x_over_r: float = 10.0
    bus: str | None = None


@dataclass(frozen=True)
class Conductor:
    """Cable run on a short-circuit path."""
    id: str
    length_km: float
    r_ohm_per_km: float
    x_ohm_per_km: float
    current_rating_a: float | None = None


@dataclass(frozen=True)
class Transformer:
    """Two-winding transformer.

    With both ``from_bus`` and ``to_bus`` set it is a series element of the
    network graph; otherwise it only contributes to a short-circuit path.
    """
    id: str
    rating_kva: float
    impedance_pct: float
    x_over_r: float = 10.0
    from_bus: str | None = None
    to_bus: str | None = None

    @property
    def in_graph(self) -> bool:
        return self.from_bus is not None and self.to_bus is not None


@dataclass(frozen=True)
class SeriesElement:
    """Branch or graph transformer resolved to the system per-unit base."""
    id: str
    kind: str  # "branch" or "transformer"
    from_bus: str
    to_bus: str
    z_pu: complex
    b_pu: float = 0.0
    rating_mva: float | None = None
    rating_a: float | None = None


@dataclass(frozen=True)
class Network:
    """Immutable network snapshot for one analysis call."""
    buses: tuple[Bus, ...]
    branches: tuple[Branch, ...] = ()
    sources: tuple[Source, ...] = ()
    transformers: tuple[Transformer, ...] = ()
    nominal_voltage: float = 400.0
    base_kva: float = 1000.0

    def __post_init__(self) -> None:
        for name in ("buses", "branches", "sources", "transformers"):
            object.__setattr__(self, name, tuple(getattr(self, name)))

    def bus_nominal_voltage(self, bus: Bus) -> float:
        return bus.nominal_voltage if bus.nominal_voltage is not None else self.nominal_voltage

    def series_elements(self) -> list[SeriesElement]:
        """All branches and graph transformers on the system per-unit base."""
        nominal = {b.id: self.bus_nominal_voltage(b) for b in self.buses}
        elements = []
        for br in self.branches:
            if br.unit == ImpedanceUnit.PU:
                z_pu = complex(br.resistance, br.reactance)
            else:
                # Cable or line: use the receiving-end voltage as base
                v_base = nominal.get(br.to_bus, self.nominal_voltage)
                z_pu = ohm_to_pu(complex(br.resistance, br.reactance), v_base, self.base_kva)
            elements.append(SeriesElement(
                id=br.id,
                kind="branch",
                from_bus=br.from_bus,
                to_bus=br.to_bus,
                z_pu=z_pu,
                b_pu=br.susceptance_pu,
                rating_mva=br.rating_mva,
                rating_a=br.rating_a,
            ))
        for tx in self.transformers:
            if not tx.in_graph:
                continue
            elements.append(SeriesElement(
                id=tx.id,
                kind="transformer",
                from_bus=tx.from_bus,
                to_bus=tx.to_bus,
                z_pu=transformer_z_pu(tx.impedance_pct, tx.rating_kva, self.base_kva, tx.x_over_r),
                rating_mva=tx.rating_kva / 1000.0,
            ))
        return elements

    def without_branch(self, element_id: str) -> Network:
        """Copy of the network with one branch or graph transformer removed."""
        return replace(
            self,
            branches=tuple(br for br in self.branches if br.id != element_id),
            transformers=tuple(tx for tx in self.transformers if tx.id != element_id),
        )


# Zero-impedance elements are modelled as a stiff bus-tie
TIE_IMPEDANCE_PU = 1e-6


def tie_impedance(z_pu: complex) -> complex:
    if abs(z_pu) < TIE_IMPEDANCE_PU:
        return complex(0.0, TIE_IMPEDANCE_PU)
    return z_pu


@dataclass
class NetworkIndex:
    """Read-only identifier index built once per analysis call."""
    network: Network
    position: dict[str, int] = field(init=False)
    elements: list[SeriesElement] = field(init=False)

    def __post_init__(self) -> None:
        self.position = {bus.id: i for i, bus in enumerate(self.network.buses)}
        self.elements = self.network.series_elements()

    @property
    def n_bus(self) -> int:
        return len(self.network.buses)

    @property
    def slack_bus(self) -> int:
        """Position of the slack bus."""
        for i, bus in enumerate(self.network.buses):
            if bus.bus_type == BusType.SLACK:
                return i
        raise TopologyError("No slack bus defined in network")

    @property
    def pv_buses(self) -> list[int]:
        return [i for i, b in enumerate(self.network.buses) if b.bus_type == BusType.PV]

    @property
    def pq_buses(self) -> list[int]:
        return [i for i, b in enumerate(self.network.buses) if b.bus_type == BusType.PQ]

    def adjacency(self) -> dict[int, set[int]]:
        adj: dict[int, set[int]] = {i: set() for i in range(self.n_bus)}
        for el in self.elements:
            i = self.position[el.from_bus]
            j = self.position[el.to_bus]
            adj[i].add(j)
            adj[j].add(i)
        return adj

    def reachable_from(self, start: int) -> set[int]:
        """Breadth-first search over the series elements."""
        adj = self.adjacency()
        visited = {start}
        queue = deque([start])
        while queue:
            current = queue.popleft()
            for neighbor in adj[current]:
                if neighbor not in visited:
                    visited.add(neighbor)
                    queue.append(neighbor)
        return visited

    def unreachable_buses(self) -> list[str]:
        visited = self.reachable_from(self.slack_bus)
        return [b.id for i, b in enumerate(self.network.buses) if i not in visited]

    def build_y_bus(self) -> np.ndarray:
        """Construct the bus admittance matrix Y-bus.

        For each series element with impedance z and total charging B:
        - Y_ii += y + jB/2
        - Y_jj += y + jB/2
        - Y_ij -= y
        - Y_ji -= y
        """
        n = self.n_bus
        y_bus = np.zeros((n, n), dtype=complex)

        for el in self.elements:
            i = self.position[el.from_bus]
            j = self.position[el.to_bus]
            y = 1.0 / tie_impedance(el.z_pu)
            y_bus[i, i] += y + 1j * el.b_pu / 2
            y_bus[j, j] += y + 1j * el.b_pu / 2
            y_bus[i, j] -= y
            y_bus[j, i] -= y

        return y_bus


def validate(network: Network) -> NetworkIndex:
    """Check structural integrity and return the identifier index.

    Raises TopologyError if the slack bus count is not exactly one, an
    element references an unknown bus, a bus is unreachable from the slack
    bus, or any impedance value is negative.
    """
    problems: list[str] = []

    seen: set[str] = set()
    for bus in network.buses:
        if bus.id in seen:
            problems.append(f"Duplicate bus id '{bus.id}'")
        seen.add(bus.id)

    slack_count = sum(1 for b in network.buses if b.bus_type == BusType.SLACK)
    if slack_count != 1:
        problems.append(f"Exactly one slack bus required, found {slack_count}")

    if network.nominal_voltage <= 0:
        problems.append("Nominal voltage must be positive")
    if network.base_kva <= 0:
        problems.append("Base kVA must be positive")
    for bus in network.buses:
        if bus.voltage is not None and bus.voltage <= 0:
            problems.append(f"Bus '{bus.id}' voltage must be positive")
        if bus.nominal_voltage is not None and bus.nominal_voltage <= 0:
            problems.append(f"Bus '{bus.id}' nominal voltage must be positive")

    for br in network.branches:
        for ref in (br.from_bus, br.to_bus):
            if ref not in seen:
                problems.append(f"Branch '{br.id}' references unknown bus '{ref}'")
        if br.from_bus == br.to_bus:
            problems.append(f"Branch '{br.id}' connects bus '{br.from_bus}' to itself")
        if br.resistance < 0 or br.reactance < 0:
            problems.append(f"Branch '{br.id}' has negative resistance or reactance")
        for rating in (br.rating_mva, br.rating_a):
            if rating is not None and rating <= 0:
                problems.append(f"Branch '{br.id}' rating must be positive")

    element_ids = [br.id for br in network.branches] + [tx.id for tx in network.transformers]
    duplicates = sorted({eid for eid in element_ids if element_ids.count(eid) > 1})
    if duplicates:
        problems.append(f"Duplicate branch/transformer ids: {', '.join(duplicates)}")

    for tx in network.transformers:
        if tx.impedance_pct < 0 or tx.x_over_r < 0:
            problems.append(f"Transformer '{tx.id}' has negative impedance or X/R")
        if tx.rating_kva <= 0:
            problems.append(f"Transformer '{tx.id}' rating must be positive")
        for ref in (tx.from_bus, tx.to_bus):
            if ref is not None and ref not in seen:
                problems.append(f"Transformer '{tx.id}' references unknown bus '{ref}'")

    for src in network.sources:
        if src.impedance < 0 or src.x_over_r < 0:
            problems.append(f"Source '{src.id}' has negative impedance or X/R")
        if src.voltage <= 0:
            problems.append(f"Source '{src.id}' voltage must be positive")
        if src.bus is not None and src.bus not in seen:
            problems.append(f"Source '{src.id}' references unknown bus '{src.bus}'")

    if problems:
        raise TopologyError("; ".join(problems))

    index = NetworkIndex(network)
    unreachable = index.unreachable_buses()
    if unreachable:
        raise TopologyError(
            f"Buses not reachable from the slack bus: {', '.join(unreachable)}"
        )
    return index


def is_connected(network: Network) -> bool:
    """True when every bus is reachable from the slack bus."""
    return not NetworkIndex(network).unreachable_buses()
