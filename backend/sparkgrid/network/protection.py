"""Protection coordination, arc-flash and equipment stress assessment.

Translates fault currents into clearing time, incident energy (simplified
IEEE 1584), PPE category, I²t and peak-force stress, breaking-capacity
selection, the voltage profile during the fault and a coarse stability
classification.
"""

from __future__ import annotations

import bisect
import logging
import math
from dataclasses import dataclass
from enum import Enum

from sparkgrid.network.impedance import AggregatedImpedance
from sparkgrid.network.limits import DEFAULT_FAULT_SETTINGS, FaultSettings
from sparkgrid.network.short_circuit import FaultCurrents

logger = logging.getLogger(__name__)

# Standard rated short-circuit breaking capacities, kA
# (BS EN 60898 MCBs: 6, 10; BS EN 60947-2 MCCBs/ACBs above)
BREAKING_CAPACITY_STEPS_KA: tuple[float, ...] = (6.0, 10.0, 16.0, 25.0, 36.0, 50.0, 70.0, 100.0, 150.0)

# (upper bound cal/cm², category, rating cal/cm²)
PPE_BANDS: tuple[tuple[float, int, float], ...] = (
    (1.2, 1, 4.0),
    (8.0, 2, 8.0),
    (25.0, 3, 25.0),
)


class Coordination(str, Enum):
    ADEQUATE = "adequate"
    MARGINAL = "marginal"
    INADEQUATE = "inadequate"


class StabilityLevel(str, Enum):
    STABLE = "stable"
    MARGINAL = "marginal"
    CRITICAL = "critical"
    UNSTABLE = "unstable"


@dataclass(frozen=True)
class ProtectionSettings:
    """Settings of the nearest upstream protective device."""
    pickup_current: float
    time_delay: float | None = None


@dataclass(frozen=True)
class ProtectionAnalysis:
    operating_time: float
    clearing_time: float
    arc_energy: float  # cal/cm²
    coordination: Coordination


@dataclass(frozen=True)
class PPERequirement:
    category: int
    rating_cal_cm2: float
    remote_operation_advised: bool

    @property
    def label(self) -> str:
        text = f"Category {self.category} PPE ({self.rating_cal_cm2:g} cal/cm²)"
        if self.remote_operation_advised:
            text += " - Consider remote operation"
        return text


@dataclass(frozen=True)
class EquipmentStress:
    thermal_stress: float  # A²s
    mechanical_stress: float
    arc_flash_boundary_mm: float
    arc_energy: float
    ppe: PPERequirement
    required_breaking_capacity_ka: float | None


@dataclass(frozen=True)
class VoltageProfile:
    prefault_voltage: float
    fault_voltage: float
    voltage_depression_pct: float
    recovery_time: float


@dataclass(frozen=True)
class SystemStability:
    voltage_stability: StabilityLevel
    frequency_deviation_hz: float
    transient_stability: StabilityLevel


def operating_time(protection: ProtectionSettings, settings: FaultSettings = DEFAULT_FAULT_SETTINGS) -> float:
    if protection.time_delay is None:
        return settings.default_time_delay_s
    return protection.time_delay


def clearing_time(protection: ProtectionSettings, settings: FaultSettings = DEFAULT_FAULT_SETTINGS) -> float:
    """Protection operating time plus the breaker opening allowance."""
    return operating_time(protection, settings) + settings.breaker_opening_time_s


def arc_energy(
    interrupting_current: float,
    clearing_time_s: float,
    settings: FaultSettings = DEFAULT_FAULT_SETTINGS,
) -> float:
    """Incident energy in cal/cm² at the configured working distance.

    E = k1 × (I/1000)^0.677 × (t×1000)^0.54 / D^1.4
    """
    return (
        settings.arc_k1
        * (interrupting_current / 1000.0) ** settings.arc_current_exponent
        * (clearing_time_s * 1000.0) ** settings.arc_time_exponent
        / settings.working_distance_in ** settings.distance_exponent
    )


def classify_coordination(
    clearing_time_s: float,
    interrupting_current: float,
    pickup_current: float,
) -> Coordination:
    if clearing_time_s < 0.1 and interrupting_current > pickup_current * 10:
        return Coordination.ADEQUATE
    if clearing_time_s < 0.5:
        return Coordination.MARGINAL
    return Coordination.INADEQUATE


def ppe_category(energy_cal_cm2: float) -> PPERequirement:
    for upper, category, rating in PPE_BANDS:
        if energy_cal_cm2 < upper:
            return PPERequirement(category, rating, remote_operation_advised=False)
    return PPERequirement(4, 40.0, remote_operation_advised=True)


def required_breaking_capacity(current_a: float) -> float | None:
    """Smallest standard breaking capacity at or above the current, or None."""
    pos = bisect.bisect_left(BREAKING_CAPACITY_STEPS_KA, current_a / 1000.0)
    if pos == len(BREAKING_CAPACITY_STEPS_KA):
        return None
    return BREAKING_CAPACITY_STEPS_KA[pos]


def analyze_protection(
    currents: FaultCurrents,
    protection: ProtectionSettings,
    settings: FaultSettings = DEFAULT_FAULT_SETTINGS,
) -> ProtectionAnalysis:
    if protection.pickup_current < 0:
        raise ValueError("Protection pickup current cannot be negative")
    t_op = operating_time(protection, settings)
    if t_op < 0:
        raise ValueError("Protection time delay cannot be negative")
    t_clear = clearing_time(protection, settings)
    energy = arc_energy(currents.interrupting_rms, t_clear, settings)
    coordination = classify_coordination(t_clear, currents.interrupting_rms, protection.pickup_current)
    logger.debug(
        "Clearing time %.3f s, arc energy %.2f cal/cm², coordination %s",
        t_clear, energy, coordination.value,
    )
    return ProtectionAnalysis(
        operating_time=t_op,
        clearing_time=t_clear,
        arc_energy=energy,
        coordination=coordination,
    )


def equipment_stress(
    currents: FaultCurrents,
    protection: ProtectionAnalysis,
    settings: FaultSettings = DEFAULT_FAULT_SETTINGS,
) -> EquipmentStress:
    energy = protection.arc_energy
    return EquipmentStress(
        thermal_stress=currents.interrupting_rms ** 2 * protection.clearing_time,
        mechanical_stress=currents.peak_asymmetrical ** 2 * settings.mechanical_stress_factor,
        arc_flash_boundary_mm=settings.arc_flash_boundary_factor_mm * math.sqrt(energy),
        arc_energy=energy,
        ppe=ppe_category(energy),
        required_breaking_capacity_ka=required_breaking_capacity(currents.interrupting_rms),
    )


def voltage_profile(
    prefault_voltage: float,
    impedance: AggregatedImpedance,
    settings: FaultSettings = DEFAULT_FAULT_SETTINGS,
) -> VoltageProfile:
    """Voltage retained at the supply terminals during the fault.

    The source impedance and the network beyond the supply terminals form a
    voltage divider: V_retained = V × |Z_total - Z_supply| / |Z_total|.
    """
    z_total = impedance.as_complex
    retained = abs(z_total - impedance.supply_impedance) / abs(z_total)
    fault_voltage = max(0.0, prefault_voltage * min(retained, 1.0))
    return VoltageProfile(
        prefault_voltage=prefault_voltage,
        fault_voltage=fault_voltage,
        voltage_depression_pct=(prefault_voltage - fault_voltage) / prefault_voltage * 100.0,
        recovery_time=settings.fault_recovery_time_s,
    )


def assess_stability(
    currents: FaultCurrents,
    profile: VoltageProfile,
    protection: ProtectionAnalysis,
) -> SystemStability:
    depression = profile.voltage_depression_pct
    if depression < 50:
        voltage_stability = StabilityLevel.STABLE
    elif depression < 80:
        voltage_stability = StabilityLevel.MARGINAL
    else:
        voltage_stability = StabilityLevel.UNSTABLE

    if protection.clearing_time < 0.2:
        transient = StabilityLevel.STABLE
    elif protection.clearing_time < 0.5:
        transient = StabilityLevel.CRITICAL
    else:
        transient = StabilityLevel.UNSTABLE

    return SystemStability(
        voltage_stability=voltage_stability,
        frequency_deviation_hz=min(0.5, currents.initial_symmetrical_rms / 10000.0),
        transient_stability=transient,
    )
