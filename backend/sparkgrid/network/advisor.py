"""Network advisor — turn analysis results into recommendations.

Pure Python module. Each recommendation is a dict with ``level``
("error", "warning" or "info"), ``code``, ``message`` and ``suggestion``
(may be None). :func:`flatten` renders them as plain text lines.
"""

from __future__ import annotations

from collections.abc import Sequence

from sparkgrid.network.contingency import ContingencyScanResult
from sparkgrid.network.limits import UK_DEFAULT, ComplianceLimits
from sparkgrid.network.network_model import Conductor
from sparkgrid.network.power_flow import PowerFlowResult, SolverState
from sparkgrid.network.protection import (
    Coordination,
    EquipmentStress,
    ProtectionAnalysis,
    ProtectionSettings,
    StabilityLevel,
    SystemStability,
)
from sparkgrid.network.short_circuit import FaultCurrents

# Incident energy above which PPE alone is not considered adequate, cal/cm²
ARC_FLASH_LIMIT = 8.0


def _rec(level: str, code: str, message: str, suggestion: str | None = None) -> dict:
    return {"level": level, "code": code, "message": message, "suggestion": suggestion}


def analyze_short_circuit(
    currents: FaultCurrents,
    protection: ProtectionAnalysis,
    stress: EquipmentStress,
    stability: SystemStability,
    device: ProtectionSettings | None = None,
    conductors: Sequence[Conductor] = (),
) -> list[dict]:
    """Recommendations for a fault study.

    When the protective device and the conductor runs are given, each rated
    conductor is checked against the device setting (BS 7671 433.1.1, In <= Iz).
    """
    recommendations: list[dict] = []

    if protection.coordination == Coordination.INADEQUATE:
        recommendations.append(_rec(
            "error", "PROTECTION_INADEQUATE",
            "Protection coordination requires improvement",
            "Consider faster protection or current limiting",
        ))

    if stress.arc_energy > ARC_FLASH_LIMIT:
        recommendations.append(_rec(
            "error", "ARC_FLASH_HIGH",
            "High arc flash energy - implement safety measures",
            "Consider arc flash reduction techniques",
        ))

    if stability.voltage_stability == StabilityLevel.UNSTABLE:
        recommendations.append(_rec(
            "warning", "VOLTAGE_STABILITY",
            "System voltage stability at risk during faults",
            "Consider voltage support or load shedding",
        ))

    if stress.required_breaking_capacity_ka is None:
        recommendations.append(_rec(
            "error", "BREAKING_CAPACITY",
            f"Interrupting current {currents.interrupting_rms / 1000:.1f} kA exceeds "
            "the largest standard breaking capacity",
            "Introduce current-limiting devices or split the busbar",
        ))

    if device is not None and device.pickup_current > 0:
        for cond in conductors:
            if cond.current_rating_a is not None and device.pickup_current > cond.current_rating_a:
                recommendations.append(_rec(
                    "warning", "CONDUCTOR_UNDERRATED",
                    f"Protective device setting {device.pickup_current:.0f} A exceeds "
                    f"conductor '{cond.id}' rating {cond.current_rating_a:.0f} A",
                    "Reduce the device rating or upsize the conductor so that In <= Iz",
                ))

    recommendations.append(_rec("info", "VERIFY_RATINGS", "Verify equipment ratings against calculated fault currents"))
    recommendations.append(_rec("info", "BREAKING_CAPACITY_CHECK", "Ensure protection devices have adequate breaking capacity"))
    recommendations.append(_rec("info", "MAINTENANCE", "Regular testing and maintenance of protection systems"))
    recommendations.append(_rec("info", "ARC_FLASH_LABELING", "Arc flash risk assessment and labeling required"))
    return recommendations


def analyze_load_flow(
    result: PowerFlowResult,
    contingencies: ContingencyScanResult | None = None,
    limits: ComplianceLimits = UK_DEFAULT,
) -> list[dict]:
    """Recommendations for a load-flow study and its N-1 scan."""
    recommendations: list[dict] = []

    if result.state == SolverState.DIVERGED:
        recommendations.append(_rec(
            "error", "PF_DIVERGED",
            "Load flow diverged",
            "Check network topology and component ratings. Ensure slack bus is properly defined.",
        ))
    elif result.state == SolverState.MAX_ITERATIONS_EXCEEDED:
        recommendations.append(_rec(
            "error", "PF_NOT_CONVERGED",
            f"Load flow did not converge within {result.iterations} iterations",
            "Increase the iteration limit or check for excessive loading",
        ))

    if result.converged:
        for bus in result.buses:
            violation = limits.voltage.check(bus.voltage_pu)
            if violation == "low":
                recommendations.append(_rec(
                    "error" if bus.voltage_pu < limits.voltage.min_pu - 0.05 else "warning",
                    "VOLTAGE_LOW",
                    f"Bus '{bus.bus_id}' voltage {bus.voltage_pu * 100:.1f}% "
                    f"(minimum {limits.voltage.min_pu * 100:.0f}%)",
                    "Upgrade feeder cable to reduce voltage drop, or add local reactive compensation",
                ))
            elif violation == "high":
                recommendations.append(_rec(
                    "warning", "VOLTAGE_HIGH",
                    f"Bus '{bus.bus_id}' voltage {bus.voltage_pu * 100:.1f}% "
                    f"(maximum {limits.voltage.max_pu * 100:.0f}%)",
                    "Check transformer tap setting or reduce local generation",
                ))

        for br in result.branches:
            if br.loading_pct > limits.thermal_limit_pct:
                recommendations.append(_rec(
                    "error", "THERMAL_OVERLOAD",
                    f"{br.kind.capitalize()} '{br.branch_id}' loaded to {br.loading_pct:.0f}% "
                    f"(limit {limits.thermal_limit_pct:.0f}%)",
                    "Upgrade the conductor or transformer, or redistribute load",
                ))

    if contingencies is not None and contingencies.critical_outages:
        islanding = [c.element_id for c in contingencies.cases if c.causes_islanding]
        if islanding:
            recommendations.append(_rec(
                "warning", "N1_ISLANDING",
                f"Loss of {', '.join(islanding)} disconnects part of the network",
                "Consider an alternative supply route or interconnector",
            ))
        others = [eid for eid in contingencies.critical_outages if eid not in islanding]
        if others:
            recommendations.append(_rec(
                "warning", "N1_VIOLATIONS",
                f"Outage of {', '.join(others)} causes limit violations or non-convergence",
                "Reinforce the network to restore N-1 security",
            ))

    recommendations.append(_rec("info", "STUDY_REGULARLY", "Regular load flow studies recommended for system optimization"))
    recommendations.append(_rec("info", "MONITOR_PEAK", "Monitor voltage profiles during peak load conditions"))
    recommendations.append(_rec("info", "VOLTAGE_REGULATION", "Consider voltage regulation equipment for system improvements"))
    recommendations.append(_rec("info", "VERIFY_PROTECTION", "Verify protection coordination with updated fault currents"))
    return recommendations


def flatten(recommendations: list[dict]) -> list[str]:
    """Message then suggestion of each recommendation, in order."""
    lines: list[str] = []
    for rec in recommendations:
        lines.append(rec["message"])
        if rec["suggestion"]:
            lines.append(rec["suggestion"])
    return lines
