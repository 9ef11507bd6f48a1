"""Fault current calculation (BS EN 60909 style, simplified).

From the aggregated impedance Z to the fault:
  three_phase:         I = V·√3 / |Z|
  phase_to_phase:      I = V / |Z|
  single_phase_earth:  I = (V/√3) / |Z_eff|, Z_eff = Z + R_electrode for TT

The asymmetrical peak applies the DC offset at the first-cycle time t:
  κ = √2 · √(1 + 2·e^(-2t/τ)),  τ = (X/R) / (2πf)
"""

from __future__ import annotations

import logging
import math
from dataclasses import dataclass, replace
from enum import Enum

from sparkgrid.network.exceptions import DegenerateNetworkError
from sparkgrid.network.impedance import AggregatedImpedance, ImpedanceContribution
from sparkgrid.network.limits import DEFAULT_FAULT_SETTINGS, FaultSettings

logger = logging.getLogger(__name__)


class FaultType(str, Enum):
    THREE_PHASE = "three_phase"
    PHASE_TO_PHASE = "phase_to_phase"
    SINGLE_PHASE_EARTH = "single_phase_earth"


class EarthingArrangement(str, Enum):
    TN_S = "TN-S"
    TN_C_S = "TN-C-S"
    TT = "TT"


@dataclass(frozen=True)
class FaultCurrents:
    """Fault currents in amps for one fault type and location."""
    fault_type: FaultType
    driving_voltage: float
    effective_impedance: float
    x_over_r: float
    initial_symmetrical_rms: float
    peak_asymmetrical: float
    momentary_rms: float
    interrupting_rms: float
    steady_state_rms: float

    @property
    def asymmetry_factor(self) -> float:
        return self.peak_asymmetrical / self.initial_symmetrical_rms


def asymmetry_factor(x_over_r: float, settings: FaultSettings = DEFAULT_FAULT_SETTINGS) -> float:
    """Peak factor κ from the X/R ratio; never below √2."""
    if x_over_r <= 0.0:
        return math.sqrt(2)
    tau = x_over_r / (2 * math.pi * settings.frequency_hz)
    return math.sqrt(2) * math.sqrt(1 + 2 * math.exp(-2 * settings.first_cycle_time_s / tau))


def effective_impedance(
    impedance: AggregatedImpedance,
    fault_type: FaultType | str,
    earthing: EarthingArrangement | str = EarthingArrangement.TN_C_S,
    earth_electrode_resistance: float | None = None,
    settings: FaultSettings = DEFAULT_FAULT_SETTINGS,
) -> AggregatedImpedance:
    """Impedance of the fault loop.

    Only an earth fault on a TT system differs from the network impedance:
    the electrode resistance is added in series with the return path.
    """
    if FaultType(fault_type) != FaultType.SINGLE_PHASE_EARTH:
        return impedance
    if EarthingArrangement(earthing) != EarthingArrangement.TT:
        return impedance

    r_e = earth_electrode_resistance
    if r_e is None:
        r_e = settings.default_electrode_resistance_ohm
    if r_e < 0:
        raise ValueError("Earth electrode resistance cannot be negative")
    return replace(
        impedance,
        resistance=impedance.resistance + r_e,
        contributions=impedance.contributions + (
            ImpedanceContribution("earth_electrode", "electrode", r_e, 0.0),
        ),
    )


def compute_fault_current(
    impedance: AggregatedImpedance,
    source_voltage: float,
    fault_type: FaultType | str,
    earthing: EarthingArrangement | str = EarthingArrangement.TN_C_S,
    earth_electrode_resistance: float | None = None,
    settings: FaultSettings = DEFAULT_FAULT_SETTINGS,
) -> FaultCurrents:
    """Compute symmetrical, asymmetrical and decayed fault currents.

    Args:
        impedance: aggregated series impedance to the fault (Ω)
        source_voltage: nominal line-to-line voltage (V)
        fault_type: three_phase, phase_to_phase or single_phase_earth
        earthing: earthing arrangement (only TT changes the result)
        earth_electrode_resistance: TT return-path resistance (Ω)
        settings: multipliers, first-cycle time and impedance guard

    Raises:
        DegenerateNetworkError: |Z| is zero or below the configured minimum
    """
    fault_type = FaultType(fault_type)
    earthing = EarthingArrangement(earthing)

    loop = effective_impedance(impedance, fault_type, earthing, earth_electrode_resistance, settings)
    r = loop.resistance
    x = loop.reactance
    if fault_type == FaultType.THREE_PHASE:
        voltage = source_voltage * math.sqrt(3)
    elif fault_type == FaultType.PHASE_TO_PHASE:
        voltage = source_voltage
    else:
        voltage = source_voltage / math.sqrt(3)

    z = math.hypot(r, x)
    if not math.isfinite(z) or z < settings.min_impedance_ohm:
        raise DegenerateNetworkError(
            f"Fault impedance {z:.3g} Ω is below the minimum of {settings.min_impedance_ohm:.3g} Ω"
        )

    x_over_r = x / r if r > 0 else math.inf
    i_sym = voltage / z
    kappa = asymmetry_factor(x_over_r, settings)

    currents = FaultCurrents(
        fault_type=fault_type,
        driving_voltage=voltage,
        effective_impedance=z,
        x_over_r=x_over_r,
        initial_symmetrical_rms=i_sym,
        peak_asymmetrical=i_sym * kappa,
        momentary_rms=i_sym * settings.momentary_multiplier,
        interrupting_rms=i_sym * settings.interrupting_multiplier,
        steady_state_rms=i_sym * settings.steady_state_multiplier,
    )
    logger.debug(
        "%s fault: |Z|=%.4f Ω, I_sym=%.1f A, κ=%.3f",
        fault_type.value, z, i_sym, kappa,
    )
    return currents
