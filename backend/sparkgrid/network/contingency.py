"""N-1 Contingency Analysis.

For each branch and graph transformer in the network, removes it, re-runs
the load flow, and checks for voltage and thermal violations against the
compliance limits.

An outage that disconnects part of the network is recorded as a critical
islanding case rather than raised. The worst-case figures are reduced with
min/max and an identifier tie-break, so the result does not depend on the
order in which outages are evaluated (or on which worker finished first when
an executor is supplied).
"""

from __future__ import annotations

import functools
import logging
import math
from concurrent.futures import Executor
from dataclasses import dataclass, field

from sparkgrid.network.limits import UK_DEFAULT, ComplianceLimits
from sparkgrid.network.network_model import Network, NetworkIndex, SeriesElement, validate
from sparkgrid.network.power_flow import ConvergenceCriteria, PowerFlowResult, SolverState, solve

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VoltageViolationDetail:
    """A single bus voltage violation during a contingency."""
    bus_id: str
    voltage_pu: float
    limit_type: str   # "low" or "high"
    limit_value: float


@dataclass(frozen=True)
class ThermalViolationDetail:
    """A single branch thermal violation during a contingency."""
    branch_id: str
    loading_pct: float
    limit_pct: float


@dataclass(frozen=True)
class ContingencyCase:
    """Result for a single N-1 outage (one series element removed)."""
    element_id: str
    kind: str
    causes_islanding: bool
    state: SolverState | None
    iterations: int = 0
    islanded_buses: tuple[str, ...] = ()
    voltage_violations: tuple[VoltageViolationDetail, ...] = ()
    thermal_violations: tuple[ThermalViolationDetail, ...] = ()
    min_voltage_pu: float = 0.0
    min_voltage_bus: str = ""
    max_loading_pct: float = 0.0
    max_loading_branch: str = ""
    # Highest loading on branches that carry a rating, None when none do
    max_rated_loading_pct: float | None = None

    @property
    def converged(self) -> bool:
        return self.state == SolverState.CONVERGED

    @property
    def violation_count(self) -> int:
        return len(self.voltage_violations) + len(self.thermal_violations)

    @property
    def critical(self) -> bool:
        return self.causes_islanding or not self.converged or self.violation_count > 0

    def rank_key(self) -> tuple:
        """Severity order: islanding, non-convergence, violations, voltage, loading, id."""
        return (
            not self.causes_islanding,
            self.converged,
            -self.violation_count,
            self.min_voltage_pu,
            -self.max_loading_pct,
            self.element_id,
        )


@dataclass(frozen=True)
class ContingencyScanResult:
    """Complete N-1 contingency scan."""
    limits_name: str
    cases: tuple[ContingencyCase, ...]
    critical_outages: tuple[str, ...]
    loadability_margin_pct: float | None
    voltage_stability_margin_pct: float | None
    worst_voltage_pu: float | None
    worst_voltage_bus: str
    worst_loading_pct: float
    worst_loading_branch: str
    island_count: int = 0
    unsolved: tuple[str, ...] = field(default_factory=tuple)

    @property
    def n1_secure(self) -> bool:
        return not self.critical_outages

    def case(self, element_id: str) -> ContingencyCase:
        for c in self.cases:
            if c.element_id == element_id:
                return c
        raise KeyError(element_id)


def _rated_ids(index: NetworkIndex) -> set[str]:
    return {el.id for el in index.elements if el.rating_mva or el.rating_a}


def _summarize(
    element: SeriesElement,
    result: PowerFlowResult,
    rated: set[str],
    limits: ComplianceLimits,
) -> ContingencyCase:
    voltage_violations = []
    for b in result.buses:
        violation = limits.voltage.check(b.voltage_pu)
        if violation is not None:
            voltage_violations.append(VoltageViolationDetail(
                bus_id=b.bus_id,
                voltage_pu=b.voltage_pu,
                limit_type=violation,
                limit_value=limits.voltage.min_pu if violation == "low" else limits.voltage.max_pu,
            ))

    thermal_violations = [
        ThermalViolationDetail(br.branch_id, br.loading_pct, limits.thermal_limit_pct)
        for br in result.branches
        if br.loading_pct > limits.thermal_limit_pct
    ]

    lowest = min(result.buses, key=lambda b: (b.voltage_pu, b.bus_id))
    if result.branches:
        most_loaded = max(result.branches, key=lambda br: (br.loading_pct, br.branch_id))
        max_loading, max_branch = most_loaded.loading_pct, most_loaded.branch_id
    else:
        max_loading, max_branch = 0.0, ""
    rated_loadings = [br.loading_pct for br in result.branches if br.branch_id in rated]

    return ContingencyCase(
        element_id=element.id,
        kind=element.kind,
        causes_islanding=False,
        state=result.state,
        iterations=result.iterations,
        voltage_violations=tuple(voltage_violations),
        thermal_violations=tuple(thermal_violations),
        min_voltage_pu=lowest.voltage_pu,
        min_voltage_bus=lowest.bus_id,
        max_loading_pct=max_loading,
        max_loading_branch=max_branch,
        max_rated_loading_pct=max(rated_loadings) if rated_loadings else None,
    )


def evaluate_outage(
    network: Network,
    element: SeriesElement,
    criteria: ConvergenceCriteria,
    limits: ComplianceLimits = UK_DEFAULT,
) -> ContingencyCase:
    """Remove one series element, check connectivity and re-solve.

    Module-level so it can be shipped to a process pool.
    """
    reduced = network.without_branch(element.id)
    index = NetworkIndex(reduced)
    islanded = index.unreachable_buses()
    if islanded:
        logger.warning(
            "Outage of %s '%s' islands buses: %s",
            element.kind, element.id, ", ".join(islanded),
        )
        return ContingencyCase(
            element_id=element.id,
            kind=element.kind,
            causes_islanding=True,
            state=None,
            islanded_buses=tuple(islanded),
        )

    result = solve(reduced, criteria, limits, index=index)
    return _summarize(element, result, _rated_ids(index), limits)


def scan_contingencies(
    network: Network,
    criteria: ConvergenceCriteria | None = None,
    limits: ComplianceLimits = UK_DEFAULT,
    executor: Executor | None = None,
    base_result: PowerFlowResult | None = None,
) -> ContingencyScanResult:
    """Run N-1 contingency analysis on the network.

    For each branch and graph transformer:
    1. Remove the element from the network
    2. Check whether any bus becomes islanded from the slack bus
    3. Run the load flow on the reduced network
    4. Check voltage and thermal violations against the limits

    Args:
        network: base network snapshot
        criteria: convergence criteria for every solve
        limits: voltage band and thermal limit
        executor: optional executor; outages are mapped over it
        base_result: an already solved base case, solved here when omitted

    Raises:
        TopologyError: the base network itself is malformed
    """
    if criteria is None:
        criteria = ConvergenceCriteria()
    index = validate(network)
    if base_result is None:
        base_result = solve(network, criteria, limits, index=index)

    task = functools.partial(evaluate_outage, network, criteria=criteria, limits=limits)
    if executor is None:
        cases = [task(el) for el in index.elements]
    else:
        cases = list(executor.map(task, index.elements))
    cases.sort(key=lambda c: c.element_id)

    critical = sorted((c for c in cases if c.critical), key=ContingencyCase.rank_key)
    island_count = sum(1 for c in cases if c.causes_islanding)

    # Margins consider the base case and every converged, connected outage
    base_case = _summarize(
        SeriesElement("base", "base", "", "", 0j), base_result, _rated_ids(index), limits,
    )
    solved = [c for c in cases if c.converged]
    if base_result.converged:
        solved.append(base_case)

    worst_voltage_pu = None
    worst_voltage_bus = ""
    voltage_margin = None
    if solved:
        worst = min(solved, key=lambda c: (c.min_voltage_pu, c.min_voltage_bus, c.element_id))
        worst_voltage_pu = worst.min_voltage_pu
        worst_voltage_bus = worst.min_voltage_bus
        voltage_margin = (worst.min_voltage_pu - limits.voltage.min_pu) * 100.0

    worst_loading = 0.0
    worst_loading_branch = ""
    if solved:
        heaviest = max(solved, key=lambda c: (c.max_loading_pct, c.max_loading_branch))
        worst_loading = heaviest.max_loading_pct
        worst_loading_branch = heaviest.max_loading_branch

    rated_loadings = [c.max_rated_loading_pct for c in solved if c.max_rated_loading_pct is not None]
    loadability = None
    if rated_loadings and max(rated_loadings) > 0.0:
        loadability = (limits.thermal_limit_pct / max(rated_loadings) - 1.0) * 100.0
        if not math.isfinite(loadability):
            loadability = None

    unsolved = tuple(c.element_id for c in cases if not c.causes_islanding and not c.converged)
    logger.info(
        "Contingency scan: %d outages, %d critical, %d islanding",
        len(cases), len(critical), island_count,
    )

    return ContingencyScanResult(
        limits_name=limits.name,
        cases=tuple(cases),
        critical_outages=tuple(c.element_id for c in critical),
        loadability_margin_pct=loadability,
        voltage_stability_margin_pct=voltage_margin,
        worst_voltage_pu=worst_voltage_pu,
        worst_voltage_bus=worst_voltage_bus,
        worst_loading_pct=worst_loading,
        worst_loading_branch=worst_loading_branch,
        island_count=island_count,
        unsolved=unsolved,
    )
