"""Tests for sparkgrid.network.contingency — N-1 scan."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor

import pytest

from sparkgrid.network.exceptions import TopologyError
from sparkgrid.network.limits import UK_DEFAULT, build_custom_limits
from sparkgrid.network.network_model import Branch, Bus, Network
from sparkgrid.network.power_flow import ConvergenceCriteria, SolverState, solve
from sparkgrid.network.contingency import evaluate_outage, scan_contingencies

TIGHT = build_custom_limits({"name": "Tight", "voltage_limits": [0.97, 1.1]})


class TestRing:
    def test_ring_has_no_critical_outage(self, ring):
        """Five-branch ring: every single outage leaves the network connected."""
        scan = scan_contingencies(ring)
        assert len(scan.cases) == 5
        assert scan.critical_outages == ()
        assert scan.n1_secure
        assert scan.island_count == 0
        assert all(c.state == SolverState.CONVERGED for c in scan.cases)

    def test_cases_sorted_by_element(self, ring):
        scan = scan_contingencies(ring)
        assert [c.element_id for c in scan.cases] == ["R1", "R2", "R3", "R4", "R5"]

    def test_voltage_margin_uses_worst_case(self, ring):
        scan = scan_contingencies(ring)
        base = solve(ring).summary.min_voltage.voltage_pu
        worst = min([c.min_voltage_pu for c in scan.cases] + [base])
        assert scan.worst_voltage_pu == pytest.approx(worst)
        assert scan.voltage_stability_margin_pct == pytest.approx((worst - UK_DEFAULT.voltage.min_pu) * 100)

    def test_unrated_network_has_no_loadability_margin(self, ring):
        assert scan_contingencies(ring).loadability_margin_pct is None


class TestRadial:
    def test_single_branch_is_critical(self, simple_network):
        scan = scan_contingencies(simple_network)
        assert scan.critical_outages == ("L1",)
        case = scan.case("L1")
        assert case.causes_islanding
        assert case.islanded_buses == ("L",)
        assert case.state is None
        assert case.critical

    def test_islanding_logged(self, simple_network, caplog):
        with caplog.at_level("WARNING", logger="sparkgrid.network.contingency"):
            scan_contingencies(simple_network)
        assert "islands buses" in caplog.text

    def test_margins_from_base_case(self, make_two_bus):
        network = make_two_bus(rating_mva=0.1)
        base = solve(network)
        scan = scan_contingencies(network)
        loading = base.branch("L1").loading_pct
        assert scan.loadability_margin_pct == pytest.approx((100.0 / loading - 1.0) * 100.0)
        v = base.bus("L").voltage_pu
        assert scan.voltage_stability_margin_pct == pytest.approx((v - 0.9) * 100.0)

    def test_spur_outage_islands(self, make_ring):
        scan = scan_contingencies(make_ring(spur=True))
        assert scan.case("S5").causes_islanding
        assert scan.island_count == 1
        assert "S5" in scan.critical_outages


class TestRanking:
    def test_islanding_ranked_first(self, make_ring):
        scan = scan_contingencies(make_ring(complex(0.05, 0.05), spur=True), limits=TIGHT)
        assert len(scan.critical_outages) > 1
        first, *rest = [scan.case(eid) for eid in scan.critical_outages]
        assert first.causes_islanding
        assert not any(c.causes_islanding for c in rest)
        counts = [c.violation_count for c in rest if c.converged]
        assert counts == sorted(counts, reverse=True)

    def test_violations_recorded(self, make_ring):
        scan = scan_contingencies(make_ring(complex(0.05, 0.05), spur=True), limits=TIGHT)
        case = scan.case("R1")
        assert case.voltage_violations
        v = case.voltage_violations[0]
        assert v.limit_type == "low"
        assert v.limit_value == 0.97
        assert v.voltage_pu < 0.97

    def test_thermal_violation(self):
        net = Network(
            buses=(Bus("S", "slack"), Bus("A", p_load_kw=80.0)),
            branches=(
                Branch("P1", "S", "A", 0.02, 0.02, rating_a=80.0),
                Branch("P2", "S", "A", 0.02, 0.02, rating_a=80.0),
            ),
        )
        scan = scan_contingencies(net)
        assert scan.critical_outages == ("P1", "P2")
        remaining = scan.case("P1").thermal_violations
        assert [t.branch_id for t in remaining] == ["P2"]
        assert remaining[0].loading_pct > 100.0
        assert scan.loadability_margin_pct < 0


class TestDeterminism:
    def test_scan_order_independent(self, make_ring):
        forward = scan_contingencies(make_ring(complex(0.05, 0.05), spur=True), limits=TIGHT)
        backward = scan_contingencies(make_ring(complex(0.05, 0.05), spur=True, reverse=True), limits=TIGHT)
        assert forward.critical_outages == backward.critical_outages
        assert forward.worst_voltage_bus == backward.worst_voltage_bus
        assert forward.worst_voltage_pu == pytest.approx(backward.worst_voltage_pu)
        assert forward.voltage_stability_margin_pct == pytest.approx(backward.voltage_stability_margin_pct)

    def test_executor_matches_sequential(self, make_ring):
        network = make_ring(complex(0.05, 0.05), spur=True)
        sequential = scan_contingencies(network, limits=TIGHT)
        with ThreadPoolExecutor(max_workers=3) as pool:
            parallel = scan_contingencies(network, limits=TIGHT, executor=pool)
        assert parallel == sequential

    def test_evaluate_outage_directly(self, ring):
        element = ring.series_elements()[0]
        case = evaluate_outage(ring, element, ConvergenceCriteria())
        assert case.element_id == "R1"
        assert case.converged
        assert not case.causes_islanding


class TestErrors:
    def test_malformed_base_network(self):
        net = Network(buses=(Bus("A", "slack"), Bus("B", "slack")), branches=(Branch("L1", "A", "B", 0.1, 0.1),))
        with pytest.raises(TopologyError):
            scan_contingencies(net)

    def test_non_converged_outage_is_critical(self, make_ring):
        scan = scan_contingencies(
            make_ring(complex(0.05, 0.05)),
            criteria=ConvergenceCriteria(tolerance=1e-12, max_iterations=1),
        )
        assert set(scan.critical_outages) == {"R1", "R2", "R3", "R4", "R5"}
        assert set(scan.unsolved) == {"R1", "R2", "R3", "R4", "R5"}
        assert scan.voltage_stability_margin_pct is None
