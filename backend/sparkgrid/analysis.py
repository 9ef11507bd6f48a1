"""Analysis facade.

Entry points that take caller-supplied inputs, run the network engine and
package the results with recommendations and compliance flags:

* :func:`analyze_short_circuit` — radial source/transformer/conductor path
* :func:`analyze_network_fault` — fault anywhere on a meshed :class:`Network`
* :func:`analyze_load_flow` — Newton-Raphson load flow plus N-1 scan
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from concurrent.futures import Executor
from dataclasses import dataclass, field

from sparkgrid.network import advisor
from sparkgrid.network.contingency import ContingencyScanResult, scan_contingencies
from sparkgrid.network.exceptions import TopologyError
from sparkgrid.network.impedance import AggregatedImpedance, aggregate, thevenin_impedance
from sparkgrid.network.limits import DEFAULT_FAULT_SETTINGS, UK_DEFAULT, ComplianceLimits, FaultSettings
from sparkgrid.network.network_model import Branch, Bus, Conductor, Network, Source, Transformer, validate
from sparkgrid.network.power_flow import (
    BranchFlowResult,
    BusResult,
    ConvergenceCriteria,
    SolverState,
    SystemSummary,
    solve,
)
from sparkgrid.network.protection import (
    Coordination,
    EquipmentStress,
    ProtectionAnalysis,
    ProtectionSettings,
    SystemStability,
    VoltageProfile,
    analyze_protection,
    assess_stability,
    equipment_stress,
    voltage_profile,
)
from sparkgrid.network.short_circuit import (
    EarthingArrangement,
    FaultCurrents,
    FaultType,
    compute_fault_current,
    effective_impedance,
)

logger = logging.getLogger(__name__)

SHORT_CIRCUIT_REGULATION = (
    "BS EN 60909 & BS 7671 Chapter 43 - Short-circuit current calculation and protection"
)
LOAD_FLOW_REGULATION = "IEC 60909, IEEE C37.010 - Power System Analysis Standards"
FAULT_STANDARDS = ("IEEE C37.010", "IEEE 1584")


# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ShortCircuitInput:
    """Radial short-circuit study: source, optional transformers, conductor runs.

    ``protection`` defaults to a device with zero pickup and the configured
    default time delay.
    """
    system_voltage: float
    source: Source
    conductors: Sequence[Conductor]
    fault_type: FaultType = FaultType.THREE_PHASE
    transformers: Sequence[Transformer] = ()
    lengths_km: Sequence[float] | None = None
    protection: ProtectionSettings | None = None
    earthing: EarthingArrangement = EarthingArrangement.TN_C_S
    earth_electrode_resistance: float | None = None
    settings: FaultSettings = DEFAULT_FAULT_SETTINGS


@dataclass(frozen=True)
class FaultSpecification:
    """Fault on a network: at a bus, or at ``position`` (0-1) along a branch."""
    fault_type: FaultType = FaultType.THREE_PHASE
    bus: str | None = None
    branch: str | None = None
    position: float = 0.5
    earthing: EarthingArrangement = EarthingArrangement.TN_C_S
    earth_electrode_resistance: float | None = None
    protection: ProtectionSettings | None = None


@dataclass(frozen=True)
class LoadFlowInput:
    buses: Sequence[Bus]
    branches: Sequence[Branch] = ()
    transformers: Sequence[Transformer] = ()
    system_voltage: float = 400.0
    base_kva: float = 1000.0
    criteria: ConvergenceCriteria = field(default_factory=ConvergenceCriteria)
    limits: ComplianceLimits = UK_DEFAULT
    run_contingency: bool = True


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ComplianceAssessment:
    bs7671_compliant: bool
    standards: tuple[str, ...]
    arc_flash_compliant: bool


@dataclass(frozen=True)
class ShortCircuitResult:
    fault_currents: FaultCurrents
    impedance: AggregatedImpedance
    voltage_profile: VoltageProfile
    protection: ProtectionAnalysis
    equipment_stress: EquipmentStress
    system_stability: SystemStability
    compliance: ComplianceAssessment
    recommendations: list[str]
    advice: list[dict]
    regulation: str = SHORT_CIRCUIT_REGULATION


@dataclass(frozen=True)
class LoadFlowResult:
    state: SolverState
    iterations: int
    max_mismatch_pu: float
    buses: list[BusResult]
    branches: list[BranchFlowResult]
    summary: SystemSummary
    contingency: ContingencyScanResult | None
    recommendations: list[str]
    advice: list[dict]
    regulation: str = LOAD_FLOW_REGULATION

    @property
    def converged(self) -> bool:
        return self.state == SolverState.CONVERGED


# ---------------------------------------------------------------------------
# Short circuit
# ---------------------------------------------------------------------------

def _fault_pipeline(
    impedance: AggregatedImpedance,
    voltage: float,
    fault_type: FaultType,
    earthing: EarthingArrangement,
    earth_electrode_resistance: float | None,
    protection: ProtectionSettings | None,
    settings: FaultSettings,
    conductors: Sequence[Conductor] = (),
) -> ShortCircuitResult:
    if protection is None:
        protection = ProtectionSettings(pickup_current=0.0)

    currents = compute_fault_current(
        impedance, voltage, fault_type,
        earthing=earthing,
        earth_electrode_resistance=earth_electrode_resistance,
        settings=settings,
    )
    prot = analyze_protection(currents, protection, settings)
    stress = equipment_stress(currents, prot, settings)
    loop = effective_impedance(impedance, fault_type, earthing, earth_electrode_resistance, settings)
    profile = voltage_profile(voltage, loop, settings)
    stability = assess_stability(currents, profile, prot)

    advice = advisor.analyze_short_circuit(
        currents, prot, stress, stability, device=protection, conductors=conductors,
    )
    compliance = ComplianceAssessment(
        bs7671_compliant=prot.coordination != Coordination.INADEQUATE,
        standards=FAULT_STANDARDS,
        arc_flash_compliant=stress.arc_energy < advisor.ARC_FLASH_LIMIT,
    )
    logger.info(
        "%s fault: %.2f kA symmetrical, %.2f kA peak, arc energy %.2f cal/cm²",
        currents.fault_type.value,
        currents.initial_symmetrical_rms / 1000,
        currents.peak_asymmetrical / 1000,
        stress.arc_energy,
    )
    return ShortCircuitResult(
        fault_currents=currents,
        impedance=impedance,
        voltage_profile=profile,
        protection=prot,
        equipment_stress=stress,
        system_stability=stability,
        compliance=compliance,
        recommendations=advisor.flatten(advice),
        advice=advice,
    )


def analyze_short_circuit(inputs: ShortCircuitInput) -> ShortCircuitResult:
    """Short-circuit study of a radial supply path.

    Raises:
        TopologyError: non-positive voltage, no conductors or negative impedances
        DegenerateNetworkError: total impedance is zero
    """
    if inputs.system_voltage <= 0:
        raise TopologyError("System voltage must be positive")
    if inputs.source.voltage <= 0:
        raise TopologyError(f"Source '{inputs.source.id}' voltage must be positive")
    if not inputs.conductors:
        raise TopologyError("At least one conductor is required")

    impedance = aggregate(
        inputs.source,
        transformers=inputs.transformers,
        conductors=inputs.conductors,
        lengths_km=inputs.lengths_km,
        system_voltage=inputs.system_voltage,
        settings=inputs.settings,
    )
    return _fault_pipeline(
        impedance,
        inputs.system_voltage,
        FaultType(inputs.fault_type),
        EarthingArrangement(inputs.earthing),
        inputs.earth_electrode_resistance,
        inputs.protection,
        inputs.settings,
        conductors=inputs.conductors,
    )


def analyze_network_fault(
    network: Network,
    fault: FaultSpecification,
    settings: FaultSettings = DEFAULT_FAULT_SETTINGS,
) -> ShortCircuitResult:
    """Fault study at a bus or along a branch of a meshed network.

    The driving voltage is the nominal voltage of the faulted bus (the
    from-bus for a fault along a branch).

    Raises:
        TopologyError: invalid network or fault location
        DegenerateNetworkError: no source, singular matrix or zero impedance
    """
    impedance = thevenin_impedance(
        network, bus=fault.bus, branch=fault.branch, position=fault.position, settings=settings,
    )
    if fault.bus is not None:
        location = fault.bus
    else:
        element = next(el for el in network.series_elements() if el.id == fault.branch)
        location = element.to_bus if fault.position == 1.0 else element.from_bus
    bus = next(b for b in network.buses if b.id == location)

    return _fault_pipeline(
        impedance,
        network.bus_nominal_voltage(bus),
        FaultType(fault.fault_type),
        EarthingArrangement(fault.earthing),
        fault.earth_electrode_resistance,
        fault.protection,
        settings,
    )


# ---------------------------------------------------------------------------
# Load flow
# ---------------------------------------------------------------------------

def analyze_load_flow(inputs: LoadFlowInput, executor: Executor | None = None) -> LoadFlowResult:
    """Load flow with N-1 contingency scan.

    Args:
        inputs: buses, branches and solver settings
        executor: optional executor for the contingency scan

    Raises:
        TopologyError: fewer than two buses, slack count not one, or any
            other structural problem (before the solver starts)
    """
    if len(inputs.buses) < 2:
        raise TopologyError(f"Load flow needs at least 2 buses, got {len(inputs.buses)}")

    network = Network(
        buses=tuple(inputs.buses),
        branches=tuple(inputs.branches),
        transformers=tuple(inputs.transformers),
        nominal_voltage=inputs.system_voltage,
        base_kva=inputs.base_kva,
    )
    index = validate(network)
    result = solve(network, inputs.criteria, inputs.limits, index=index)

    contingency = None
    if inputs.run_contingency:
        contingency = scan_contingencies(
            network, inputs.criteria, inputs.limits, executor=executor, base_result=result,
        )

    advice = advisor.analyze_load_flow(result, contingency, inputs.limits)
    return LoadFlowResult(
        state=result.state,
        iterations=result.iterations,
        max_mismatch_pu=result.max_mismatch_pu,
        buses=result.buses,
        branches=result.branches,
        summary=result.summary,
        contingency=contingency,
        recommendations=advisor.flatten(advice),
        advice=advice,
    )
