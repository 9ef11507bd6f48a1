"""Newton-Raphson AC Power Flow Solver.

Implements full AC power flow following IEEE 399 methodology.
Supports slack, PV, and PQ bus types.

The solve runs as an explicit state machine::

    INITIALIZING -> ITERATING -> CONVERGED
                              -> MAX_ITERATIONS_EXCEEDED
                              -> DIVERGED  (singular Jacobian / non-finite mismatch)

Non-convergence is reported in the result, never raised, so the best
available estimate can still be inspected.

Typical convergence: 3-5 iterations for systems < 20 buses.
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from enum import Enum

import numpy as np

from sparkgrid.network.limits import UK_DEFAULT, ComplianceLimits
from sparkgrid.network.network_model import BusType, Network, NetworkIndex, tie_impedance, validate
from sparkgrid.network.per_unit import i_base, power_to_pu, pu_to_power

logger = logging.getLogger(__name__)


class SolverState(str, Enum):
    INITIALIZING = "initializing"
    ITERATING = "iterating"
    CONVERGED = "converged"
    MAX_ITERATIONS_EXCEEDED = "max_iterations_exceeded"
    DIVERGED = "diverged"


@dataclass(frozen=True)
class ConvergenceCriteria:
    """Per-unit mismatch tolerance and iteration bound for one solve."""
    tolerance: float = 1e-4
    max_iterations: int = 20

    def __post_init__(self) -> None:
        if self.tolerance <= 0:
            raise ValueError("Tolerance must be positive")
        if self.max_iterations < 0:
            raise ValueError("max_iterations cannot be negative")


@dataclass(frozen=True)
class PowerPair:
    p_kw: float
    q_kvar: float


@dataclass(frozen=True)
class BusResult:
    """Solved state of a single bus."""
    bus_id: str
    bus_type: BusType
    voltage_v: float
    voltage_pu: float
    angle_deg: float
    # Positive = below nominal
    deviation_pct: float
    compliant: bool
    p_injection_kw: float
    q_injection_kvar: float


@dataclass(frozen=True)
class BranchFlowResult:
    """Power flow through a single branch or graph transformer."""
    branch_id: str
    kind: str
    from_bus: str
    to_bus: str
    current_a: float
    from_p_kw: float
    from_q_kvar: float
    # Power arriving at the to-bus
    to_p_kw: float
    to_q_kvar: float
    loss_p_kw: float
    loss_q_kvar: float
    loading_pct: float  # % of thermal rating, 0 when unrated


@dataclass(frozen=True)
class VoltageExtreme:
    bus_id: str
    voltage_v: float
    voltage_pu: float


@dataclass(frozen=True)
class SystemSummary:
    total_generation: PowerPair
    total_load: PowerPair
    total_losses: PowerPair
    min_voltage: VoltageExtreme
    max_voltage: VoltageExtreme
    overloaded_branches: list[str] = field(default_factory=list)
    voltage_violations: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class PowerFlowResult:
    """Results of a power flow solution."""
    state: SolverState
    iterations: int
    max_mismatch_pu: float
    buses: list[BusResult]
    branches: list[BranchFlowResult]
    summary: SystemSummary

    @property
    def converged(self) -> bool:
        return self.state == SolverState.CONVERGED

    def bus(self, bus_id: str) -> BusResult:
        for b in self.buses:
            if b.bus_id == bus_id:
                return b
        raise KeyError(bus_id)

    def branch(self, branch_id: str) -> BranchFlowResult:
        for br in self.branches:
            if br.branch_id == branch_id:
                return br
        raise KeyError(branch_id)


def _calc_injections(y_bus: np.ndarray, V: np.ndarray, theta: np.ndarray) -> np.ndarray:
    """Complex power injection S_i = V_i · conj(Σ Y_ij V_j)."""
    v_complex = V * np.exp(1j * theta)
    return v_complex * np.conj(y_bus @ v_complex)


def solve(
    network: Network,
    criteria: ConvergenceCriteria | None = None,
    limits: ComplianceLimits = UK_DEFAULT,
    index: NetworkIndex | None = None,
) -> PowerFlowResult:
    """Solve AC power flow using Newton-Raphson method.

    Algorithm:
    1. Flat start: V=1.0 pu, θ=θ_slack for PQ buses; slack/PV at setpoint
    2. Compute P,Q mismatch at each non-slack bus
    3. Build Jacobian matrix J = [∂P/∂θ, ∂P/∂V; ∂Q/∂θ, ∂Q/∂V]
    4. Solve [Δθ, ΔV] = J⁻¹ × [ΔP, ΔQ]
    5. Repeat until max(|ΔP|,|ΔQ|) < tolerance or the iteration bound

    Args:
        network: validated (or to-be-validated) network snapshot
        criteria: tolerance in per-unit and maximum number of updates
        limits: voltage band and thermal limit for the summary
        index: pre-built index (skips validation when supplied)

    Raises:
        TopologyError: malformed network (before any numeric work)
    """
    if criteria is None:
        criteria = ConvergenceCriteria()
    if index is None:
        index = validate(network)

    state = SolverState.INITIALIZING
    n = index.n_bus
    y_bus = index.build_y_bus()
    G = y_bus.real
    B = y_bus.imag

    slack_idx = index.slack_bus
    slack = network.buses[slack_idx]

    V = np.ones(n)
    theta = np.full(n, math.radians(slack.angle_deg))

    # Slack and PV buses held at their setpoints
    for i, bus in enumerate(network.buses):
        if bus.bus_type in (BusType.SLACK, BusType.PV):
            nominal = network.bus_nominal_voltage(bus)
            V[i] = (bus.voltage if bus.voltage is not None else nominal) / nominal

    # Specified power injections (gen - load) in per-unit
    s_spec = np.array([
        power_to_pu(b.p_gen_kw - b.p_load_kw, b.q_gen_kvar - b.q_load_kvar, network.base_kva)
        for b in network.buses
    ], dtype=complex)
    p_spec = s_spec.real
    q_spec = s_spec.imag

    non_slack = sorted(set(range(n)) - {slack_idx})
    pq_set = sorted(index.pq_buses)
    n_p = len(non_slack)
    n_q = len(pq_set)
    n_vars = n_p + n_q

    iterations = 0
    max_mismatch = 0.0
    state = SolverState.ITERATING

    while state == SolverState.ITERATING:
        s_calc = _calc_injections(y_bus, V, theta)
        p_calc = s_calc.real
        q_calc = s_calc.imag

        # Mismatch vector [ΔP for non-slack; ΔQ for PQ]
        mismatch = np.concatenate([
            (p_spec - p_calc)[non_slack],
            (q_spec - q_calc)[pq_set],
        ])
        max_mismatch = float(np.max(np.abs(mismatch))) if n_vars else 0.0
        logger.debug("Iteration %d: max mismatch %.3e pu", iterations, max_mismatch)

        if not math.isfinite(max_mismatch):
            state = SolverState.DIVERGED
            break
        if max_mismatch < criteria.tolerance:
            state = SolverState.CONVERGED
            break
        if iterations >= criteria.max_iterations:
            state = SolverState.MAX_ITERATIONS_EXCEEDED
            break

        J = np.zeros((n_vars, n_vars))

        # J1: ∂P/∂θ (non-slack × non-slack)
        for ki, i in enumerate(non_slack):
            for kj, j in enumerate(non_slack):
                if i == j:
                    J[ki, kj] = -q_calc[i] - B[i, i] * V[i] ** 2
                else:
                    angle_diff = theta[i] - theta[j]
                    J[ki, kj] = V[i] * V[j] * (
                        G[i, j] * np.sin(angle_diff) - B[i, j] * np.cos(angle_diff)
                    )

        # J2: ∂P/∂V (non-slack × PQ)
        for ki, i in enumerate(non_slack):
            for kj, j in enumerate(pq_set):
                if i == j:
                    J[ki, n_p + kj] = p_calc[i] / V[i] + G[i, i] * V[i]
                else:
                    angle_diff = theta[i] - theta[j]
                    J[ki, n_p + kj] = V[i] * (
                        G[i, j] * np.cos(angle_diff) + B[i, j] * np.sin(angle_diff)
                    )

        # J3: ∂Q/∂θ (PQ × non-slack)
        for ki, i in enumerate(pq_set):
            for kj, j in enumerate(non_slack):
                if i == j:
                    J[n_p + ki, kj] = p_calc[i] - G[i, i] * V[i] ** 2
                else:
                    angle_diff = theta[i] - theta[j]
                    J[n_p + ki, kj] = -V[i] * V[j] * (
                        G[i, j] * np.cos(angle_diff) + B[i, j] * np.sin(angle_diff)
                    )

        # J4: ∂Q/∂V (PQ × PQ)
        for ki, i in enumerate(pq_set):
            for kj, j in enumerate(pq_set):
                if i == j:
                    J[n_p + ki, n_p + kj] = q_calc[i] / V[i] - B[i, i] * V[i]
                else:
                    angle_diff = theta[i] - theta[j]
                    J[n_p + ki, n_p + kj] = V[i] * (
                        G[i, j] * np.sin(angle_diff) - B[i, j] * np.cos(angle_diff)
                    )

        try:
            dx = np.linalg.solve(J, mismatch)
        except np.linalg.LinAlgError:
            state = SolverState.DIVERGED
            break

        theta[non_slack] += dx[:n_p]
        # Clamp voltage to reasonable bounds to help convergence
        V[pq_set] = np.clip(V[pq_set] + dx[n_p:], 0.5, 1.5)
        iterations += 1

    if state == SolverState.CONVERGED:
        logger.info("Load flow converged in %d iterations (mismatch %.2e pu)", iterations, max_mismatch)
    else:
        logger.warning(
            "Load flow %s after %d iterations (mismatch %.2e pu)",
            state.value, iterations, max_mismatch,
        )

    return _build_result(network, index, y_bus, V, theta, state, iterations, max_mismatch, limits)


def _build_result(
    network: Network,
    index: NetworkIndex,
    y_bus: np.ndarray,
    V: np.ndarray,
    theta: np.ndarray,
    state: SolverState,
    iterations: int,
    max_mismatch: float,
    limits: ComplianceLimits,
) -> PowerFlowResult:
    """Build PowerFlowResult including branch flow calculations."""
    base = network.base_kva
    V_complex = V * np.exp(1j * theta)
    s_inject = pu_to_power(_calc_injections(y_bus, V, theta), base)

    bus_results = []
    total_gen = 0j
    total_load = 0j
    for i, bus in enumerate(network.buses):
        nominal = network.bus_nominal_voltage(bus)
        v_pu = float(V[i])
        deviation = (1.0 - v_pu) * 100.0
        load = complex(bus.p_load_kw, bus.q_load_kvar)
        total_load += load
        total_gen += complex(s_inject[i]) + load
        bus_results.append(BusResult(
            bus_id=bus.id,
            bus_type=bus.bus_type,
            voltage_v=v_pu * nominal,
            voltage_pu=v_pu,
            angle_deg=math.degrees(theta[i]),
            deviation_pct=deviation,
            compliant=limits.voltage.check(v_pu) is None,
            p_injection_kw=float(s_inject[i].real),
            q_injection_kvar=float(s_inject[i].imag),
        ))

    branch_results = []
    total_losses = 0j
    for el in index.elements:
        i = index.position[el.from_bus]
        j = index.position[el.to_bus]
        y = 1.0 / tie_impedance(el.z_pu)
        y_sh = 1j * el.b_pu / 2

        # Pi-model end currents
        I_ij = y * (V_complex[i] - V_complex[j]) + y_sh * V_complex[i]
        I_ji = y * (V_complex[j] - V_complex[i]) + y_sh * V_complex[j]
        S_ij = pu_to_power(V_complex[i] * np.conj(I_ij), base)
        S_ji = pu_to_power(V_complex[j] * np.conj(I_ji), base)
        loss = S_ij + S_ji
        total_losses += loss

        i_pu = max(abs(I_ij), abs(I_ji))
        current_a = i_pu * i_base(network.bus_nominal_voltage(network.buses[j]), base)

        loading = 0.0
        if el.rating_mva:
            # √3 · V_base · |I| expressed in MVA
            loading = max(loading, i_pu * base / 1000.0 / el.rating_mva * 100.0)
        if el.rating_a:
            loading = max(loading, current_a / el.rating_a * 100.0)

        branch_results.append(BranchFlowResult(
            branch_id=el.id,
            kind=el.kind,
            from_bus=el.from_bus,
            to_bus=el.to_bus,
            current_a=float(current_a),
            from_p_kw=float(S_ij.real),
            from_q_kvar=float(S_ij.imag),
            to_p_kw=float(-S_ji.real),
            to_q_kvar=float(-S_ji.imag),
            loss_p_kw=float(loss.real),
            loss_q_kvar=float(loss.imag),
            loading_pct=float(loading),
        ))

    lowest = min(bus_results, key=lambda b: (b.voltage_pu, b.bus_id))
    highest = max(bus_results, key=lambda b: (b.voltage_pu, b.bus_id))
    summary = SystemSummary(
        total_generation=PowerPair(float(total_gen.real), float(total_gen.imag)),
        total_load=PowerPair(float(total_load.real), float(total_load.imag)),
        total_losses=PowerPair(float(total_losses.real), float(total_losses.imag)),
        min_voltage=VoltageExtreme(lowest.bus_id, lowest.voltage_v, lowest.voltage_pu),
        max_voltage=VoltageExtreme(highest.bus_id, highest.voltage_v, highest.voltage_pu),
        overloaded_branches=[
            br.branch_id for br in branch_results if br.loading_pct > limits.thermal_limit_pct
        ],
        voltage_violations=[b.bus_id for b in bus_results if not b.compliant],
    )

    return PowerFlowResult(
        state=state,
        iterations=iterations,
        max_mismatch_pu=max_mismatch,
        buses=bus_results,
        branches=branch_results,
        summary=summary,
    )
