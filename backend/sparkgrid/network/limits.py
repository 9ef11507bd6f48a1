"""Compliance limits and fault-analysis constants.

Configurable voltage and thermal limits used by the load-flow summary and the
contingency analyzer, plus the engineering constants used by the fault and
protection calculations.

The multipliers for momentary, interrupting and steady-state current are
fixed engineering approximations, not derived from first principles. Real
values depend on generator and motor contribution decay which is not
modelled here, so they are kept as settings.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any


@dataclass(frozen=True)
class VoltageLimits:
    """Voltage band in per-unit of nominal."""
    min_pu: float = 0.90
    max_pu: float = 1.10

    def check(self, v_pu: float) -> str | None:
        """Return violation type or None if within limits."""
        if v_pu < self.min_pu:
            return "low"
        if v_pu > self.max_pu:
            return "high"
        return None


@dataclass(frozen=True)
class ComplianceLimits:
    """Limits applied to load-flow and contingency results.

    Attributes:
        name: Human-readable profile name
        standard: Standard reference
        voltage: Statutory voltage band
        thermal_limit_pct: Maximum branch loading as % of thermal rating
    """
    name: str
    standard: str
    voltage: VoltageLimits = field(default_factory=VoltageLimits)
    thermal_limit_pct: float = 100.0

    def to_dict(self) -> dict[str, Any]:
        """Serialize profile to a JSON-compatible dict."""
        return {
            "name": self.name,
            "standard": self.standard,
            "voltage_limits": [self.voltage.min_pu, self.voltage.max_pu],
            "thermal_limit_pct": self.thermal_limit_pct,
        }


@dataclass(frozen=True)
class FaultSettings:
    """Constants for the fault current engine and protection assessor."""
    frequency_hz: float = 50.0
    # Time at which the asymmetrical peak is evaluated
    first_cycle_time_s: float = 0.01
    momentary_multiplier: float = 1.6
    interrupting_multiplier: float = 1.0
    steady_state_multiplier: float = 0.5
    min_impedance_ohm: float = 1e-6
    breaker_opening_time_s: float = 0.05
    default_time_delay_s: float = 0.1
    # Simplified IEEE 1584 incident energy
    arc_k1: float = 4.184
    arc_current_exponent: float = 0.677
    arc_time_exponent: float = 0.54
    working_distance_in: float = 18.0
    distance_exponent: float = 1.4
    arc_flash_boundary_factor_mm: float = 208.0
    mechanical_stress_factor: float = 1e-4
    fault_recovery_time_s: float = 0.1
    default_electrode_resistance_ohm: float = 20.0


UK_DEFAULT = ComplianceLimits(
    name="UK Default",
    standard="BS 7671 / ESQCR",
)

DEFAULT_FAULT_SETTINGS = FaultSettings()

PROFILES: dict[str, ComplianceLimits] = {
    "uk_default": UK_DEFAULT,
    "bs_en_50160": ComplianceLimits(
        name="BS EN 50160",
        standard="BS EN 50160",
        voltage=VoltageLimits(min_pu=0.90, max_pu=1.10),
        thermal_limit_pct=100.0,
    ),
    "distribution_planning": ComplianceLimits(
        name="Distribution Planning",
        standard="ENA ER P2",
        voltage=VoltageLimits(min_pu=0.94, max_pu=1.06),
        thermal_limit_pct=90.0,
    ),
}


def get_profile(key: str) -> ComplianceLimits:
    """Get a limits profile by key. Raises KeyError if not found."""
    if key not in PROFILES:
        raise KeyError(f"Unknown limits profile: '{key}'. Available: {list(PROFILES.keys())}")
    return PROFILES[key]


def list_profiles() -> list[dict[str, Any]]:
    """List all available profiles with summary info."""
    return [{"key": key, **profile.to_dict()} for key, profile in PROFILES.items()]


def build_custom_limits(config: dict[str, Any]) -> ComplianceLimits:
    """Build a limits profile from a config dict, starting from UK_DEFAULT.

    Config keys (all optional): name, standard, voltage_limits [min, max],
    thermal_limit_pct.

    Raises ValueError for an empty or inverted voltage band or a
    non-positive thermal limit.
    """
    voltage = UK_DEFAULT.voltage
    if "voltage_limits" in config:
        lo, hi = config["voltage_limits"]
        voltage = VoltageLimits(min_pu=float(lo), max_pu=float(hi))
        if not 0 < voltage.min_pu < voltage.max_pu:
            raise ValueError(f"Voltage limits must satisfy 0 < min < max, got [{lo}, {hi}]")

    thermal_limit_pct = float(config.get("thermal_limit_pct", UK_DEFAULT.thermal_limit_pct))
    if thermal_limit_pct <= 0:
        raise ValueError("Thermal limit must be positive")

    return replace(
        UK_DEFAULT,
        name=str(config.get("name", "Custom Profile")),
        standard=str(config.get("standard", "Custom")),
        voltage=voltage,
        thermal_limit_pct=thermal_limit_pct,
    )
