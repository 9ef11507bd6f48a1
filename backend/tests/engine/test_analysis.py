"""Tests for sparkgrid.analysis — facade entry points and recommendations."""

from __future__ import annotations

import math

import pytest

from sparkgrid import analysis
from sparkgrid.analysis import (
    LOAD_FLOW_REGULATION,
    SHORT_CIRCUIT_REGULATION,
    FaultSpecification,
    LoadFlowInput,
    ShortCircuitInput,
    analyze_load_flow,
    analyze_network_fault,
    analyze_short_circuit,
)
from sparkgrid.network.exceptions import DegenerateNetworkError, TopologyError
from sparkgrid.network.network_model import Branch, Bus, BusType, Conductor, Network, Source
from sparkgrid.network.power_flow import ConvergenceCriteria, SolverState
from sparkgrid.network.protection import Coordination, ProtectionSettings, StabilityLevel


# ======================================================================
# Short circuit
# ======================================================================


class TestShortCircuit:
    def test_three_phase_feeder(self, grid_source, feeder_cable):
        """Aggregated 0.05 + j0.1 Ω at 400 V gives about 6.2 kA."""
        result = analyze_short_circuit(ShortCircuitInput(400.0, grid_source, [feeder_cable]))
        assert result.fault_currents.initial_symmetrical_rms == pytest.approx(6200.0, rel=0.05)
        assert result.impedance.magnitude == pytest.approx(math.hypot(0.05, 0.1))
        assert result.regulation == SHORT_CIRCUIT_REGULATION

    def test_default_protection(self, grid_source, feeder_cable):
        result = analyze_short_circuit(ShortCircuitInput(400.0, grid_source, [feeder_cable]))
        assert result.protection.clearing_time == pytest.approx(0.15)
        assert result.protection.coordination == Coordination.MARGINAL
        assert result.equipment_stress.ppe.category == 2
        assert result.equipment_stress.required_breaking_capacity_ka == 10.0

    def test_compliance(self, grid_source, feeder_cable):
        result = analyze_short_circuit(ShortCircuitInput(400.0, grid_source, [feeder_cable]))
        assert result.compliance.bs7671_compliant
        assert result.compliance.arc_flash_compliant
        assert result.compliance.standards == ("IEEE C37.010", "IEEE 1584")

    def test_slow_protection_not_compliant(self, grid_source, feeder_cable):
        inputs = ShortCircuitInput(
            400.0, grid_source, [feeder_cable],
            protection=ProtectionSettings(pickup_current=100.0, time_delay=2.0),
        )
        result = analyze_short_circuit(inputs)
        assert result.protection.coordination == Coordination.INADEQUATE
        assert not result.compliance.bs7671_compliant
        assert not result.compliance.arc_flash_compliant
        assert "Protection coordination requires improvement" in result.recommendations
        assert "High arc flash energy - implement safety measures" in result.recommendations

    def test_standard_recommendations_always_present(self, grid_source, feeder_cable):
        result = analyze_short_circuit(ShortCircuitInput(400.0, grid_source, [feeder_cable]))
        assert result.recommendations[-4:] == [
            "Verify equipment ratings against calculated fault currents",
            "Ensure protection devices have adequate breaking capacity",
            "Regular testing and maintenance of protection systems",
            "Arc flash risk assessment and labeling required",
        ]
        assert {r["level"] for r in result.advice} == {"info"}

    def test_fault_at_supply_terminals_unstable(self):
        source = Source("grid", 400.0, math.hypot(0.05, 0.1), x_over_r=2.0)
        inputs = ShortCircuitInput(400.0, source, [Conductor("C0", 0.0, 0.1, 0.1)])
        result = analyze_short_circuit(inputs)
        assert result.voltage_profile.voltage_depression_pct == pytest.approx(100.0)
        assert result.system_stability.voltage_stability == StabilityLevel.UNSTABLE
        assert "System voltage stability at risk during faults" in result.recommendations

    def test_single_phase_tt(self, grid_source, feeder_cable):
        inputs = ShortCircuitInput(
            400.0, grid_source, [feeder_cable],
            fault_type="single_phase_earth", earthing="TT", earth_electrode_resistance=50.0,
        )
        result = analyze_short_circuit(inputs)
        assert result.fault_currents.initial_symmetrical_rms == pytest.approx(230.94 / math.hypot(50.05, 0.1), rel=1e-4)

    def test_tt_voltage_profile_uses_fault_loop(self, feeder_cable):
        """Electrode resistance dominates the loop, so little voltage is lost at the supply."""
        source = Source("grid", 400.0, math.hypot(0.05, 0.1), x_over_r=2.0)
        inputs = ShortCircuitInput(
            400.0, source, [feeder_cable],
            fault_type="single_phase_earth", earthing="TT", earth_electrode_resistance=20.0,
        )
        result = analyze_short_circuit(inputs)
        retained = abs(complex(20.05, 0.1)) / abs(complex(20.1, 0.2))
        assert result.voltage_profile.voltage_depression_pct == pytest.approx((1 - retained) * 100, rel=1e-6)
        assert result.voltage_profile.voltage_depression_pct < 1.0
        assert result.impedance.resistance == pytest.approx(0.1)

    def test_underrated_conductor_flagged(self, grid_source):
        cable = Conductor("C1", 1.0, 0.05, 0.1, current_rating_a=32.0)
        inputs = ShortCircuitInput(
            400.0, grid_source, [cable], protection=ProtectionSettings(pickup_current=63.0),
        )
        result = analyze_short_circuit(inputs)
        rec = next(r for r in result.advice if r["code"] == "CONDUCTOR_UNDERRATED")
        assert "'C1'" in rec["message"]

    def test_zero_impedance_degenerate(self):
        inputs = ShortCircuitInput(400.0, Source("grid", 400.0, 0.0), [Conductor("C1", 1.0, 0.0, 0.0)])
        with pytest.raises(DegenerateNetworkError):
            analyze_short_circuit(inputs)

    def test_no_conductors(self, grid_source):
        with pytest.raises(TopologyError, match="conductor"):
            analyze_short_circuit(ShortCircuitInput(400.0, grid_source, []))

    def test_non_positive_voltage(self, grid_source, feeder_cable):
        with pytest.raises(TopologyError, match="voltage"):
            analyze_short_circuit(ShortCircuitInput(0.0, grid_source, [feeder_cable]))

    def test_negative_impedance(self, grid_source):
        with pytest.raises(TopologyError):
            analyze_short_circuit(ShortCircuitInput(400.0, grid_source, [Conductor("C1", 1.0, 0.1, -0.1)]))


# ======================================================================
# Network fault
# ======================================================================


def _meshed_network() -> Network:
    return Network(
        buses=(Bus("S", "slack"), Bus("A"), Bus("B")),
        branches=(
            Branch("L1", "S", "A", 0.05, 0.1),
            Branch("L2", "A", "B", 0.05, 0.1),
            Branch("L3", "S", "B", 0.1, 0.2),
        ),
        sources=(Source("grid", 400.0, 0.01, x_over_r=5.0, bus="S"),),
    )


class TestNetworkFault:
    def test_fault_at_bus(self, simple_network):
        result = analyze_network_fault(simple_network, FaultSpecification(bus="L"))
        assert result.fault_currents.initial_symmetrical_rms == pytest.approx(
            400.0 * math.sqrt(3) / math.hypot(0.1, 0.2), rel=1e-3,
        )

    def test_fault_along_branch_between_end_values(self):
        network = _meshed_network()
        at_s = analyze_network_fault(network, FaultSpecification(branch="L2", position=0.0))
        mid = analyze_network_fault(network, FaultSpecification(branch="L2", position=0.5))
        at_a = analyze_network_fault(network, FaultSpecification(bus="A"))
        assert at_s.fault_currents.initial_symmetrical_rms == pytest.approx(at_a.fault_currents.initial_symmetrical_rms)
        assert mid.impedance.magnitude > at_a.impedance.magnitude

    def test_protection_passed_through(self):
        fault = FaultSpecification(bus="B", protection=ProtectionSettings(100.0, time_delay=0.5))
        result = analyze_network_fault(_meshed_network(), fault)
        assert result.protection.clearing_time == pytest.approx(0.55)

    def test_partial_voltage_depression(self):
        result = analyze_network_fault(_meshed_network(), FaultSpecification(bus="B"))
        assert 0.0 < result.voltage_profile.voltage_depression_pct < 100.0

    def test_unknown_bus(self):
        with pytest.raises(TopologyError):
            analyze_network_fault(_meshed_network(), FaultSpecification(bus="Z"))


# ======================================================================
# Load flow
# ======================================================================


def _load_flow_input(**kwargs) -> LoadFlowInput:
    defaults = dict(
        buses=[
            Bus("S", BusType.SLACK, voltage=400.0),
            Bus("L", p_load_kw=50.0, q_load_kvar=0.2),
        ],
        branches=[Branch("L1", "S", "L", 0.1, 0.2)],
    )
    defaults.update(kwargs)
    return LoadFlowInput(**defaults)


class TestLoadFlow:
    def test_two_bus(self):
        result = analyze_load_flow(_load_flow_input())
        assert result.converged
        assert result.iterations <= 20
        assert 380.0 < result.buses[1].voltage_v < 400.0
        assert len(result.branches) == 1
        assert result.branches[0].current_a > 0
        assert result.summary.total_losses.p_kw >= 0
        assert result.regulation == LOAD_FLOW_REGULATION
        assert "IEC 60909" in result.regulation

    def test_recommendations(self):
        result = analyze_load_flow(_load_flow_input())
        assert "Regular load flow studies recommended for system optimization" in result.recommendations
        assert "Verify protection coordination with updated fault currents" in result.recommendations

    def test_single_branch_critical_outage(self):
        result = analyze_load_flow(_load_flow_input())
        assert result.contingency.critical_outages == ("L1",)
        assert any(r["code"] == "N1_ISLANDING" for r in result.advice)

    def test_contingency_optional(self):
        result = analyze_load_flow(_load_flow_input(run_contingency=False))
        assert result.contingency is None

    def test_two_slack_buses_rejected_before_solving(self, monkeypatch):
        def _fail(*args, **kwargs):
            raise AssertionError("solver must not run")

        monkeypatch.setattr(analysis, "solve", _fail)
        inputs = _load_flow_input(buses=[Bus("S", "slack", voltage=400.0), Bus("L", "slack")])
        with pytest.raises(TopologyError, match="slack"):
            analyze_load_flow(inputs)

    def test_single_bus_rejected(self):
        with pytest.raises(TopologyError, match="at least 2 buses"):
            analyze_load_flow(_load_flow_input(buses=[Bus("S", "slack")], branches=[]))

    def test_max_iterations_is_data(self):
        inputs = _load_flow_input(criteria=ConvergenceCriteria(tolerance=1e-10, max_iterations=1))
        result = analyze_load_flow(inputs)
        assert result.state == SolverState.MAX_ITERATIONS_EXCEEDED
        assert result.iterations == 1
        assert any(r["code"] == "PF_NOT_CONVERGED" for r in result.advice)

    def test_overload_recommended(self):
        inputs = _load_flow_input(branches=[Branch("L1", "S", "L", 0.1, 0.2, rating_a=50.0)])
        result = analyze_load_flow(inputs)
        assert result.summary.overloaded_branches == ["L1"]
        assert any(r["code"] == "THERMAL_OVERLOAD" for r in result.advice)
