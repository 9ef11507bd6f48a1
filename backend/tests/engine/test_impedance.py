"""Tests for sparkgrid.network.impedance — series aggregation and Thevenin reduction."""

from __future__ import annotations

import math

import pytest

from sparkgrid.network.exceptions import DegenerateNetworkError, TopologyError
from sparkgrid.network.impedance import aggregate, thevenin_impedance
from sparkgrid.network.network_model import Branch, Bus, Conductor, Network, Source, Transformer


# ======================================================================
# Radial aggregation
# ======================================================================


class TestAggregate:
    def test_single_conductor(self, grid_source, feeder_cable):
        z = aggregate(grid_source, conductors=[feeder_cable])
        assert z.resistance == pytest.approx(0.05)
        assert z.reactance == pytest.approx(0.1)
        assert z.magnitude == pytest.approx(math.hypot(0.05, 0.1))
        assert z.x_over_r == pytest.approx(2.0)

    def test_source_split_by_x_over_r(self):
        source = Source("grid", 400.0, math.hypot(0.05, 0.1), x_over_r=2.0)
        z = aggregate(source, conductors=[Conductor("C0", 0.0, 0.1, 0.1)])
        assert z.resistance == pytest.approx(0.05)
        assert z.reactance == pytest.approx(0.1)
        assert z.supply_impedance == pytest.approx(complex(0.05, 0.1))

    def test_transformer_referred_to_system_voltage(self, grid_source):
        tx = Transformer("T1", 500.0, 5.0, x_over_r=10.0)
        z = aggregate(grid_source, transformers=[tx], system_voltage=400.0)
        assert z.magnitude == pytest.approx(0.016)

    def test_contributions_recorded_in_order(self, grid_source, feeder_cable):
        tx = Transformer("T1", 500.0, 5.0)
        z = aggregate(grid_source, transformers=[tx], conductors=[feeder_cable])
        assert [c.element_id for c in z.contributions] == ["grid", "T1", "C1"]
        assert [c.kind for c in z.contributions] == ["source", "transformer", "conductor"]

    def test_order_independent(self, grid_source):
        """Permuting the series elements never changes the total."""
        cables = [
            Conductor("A", 0.137, 0.727, 0.083),
            Conductor("B", 0.021, 1.83, 0.089),
            Conductor("C", 0.3, 0.153, 0.072),
            Conductor("D", 1.0, 0.1, 0.1),
        ]
        transformers = [Transformer("T1", 500.0, 4.75, 8.0), Transformer("T2", 1000.0, 6.0, 12.0)]
        forward = aggregate(grid_source, transformers, cables)
        backward = aggregate(grid_source, transformers[::-1], cables[::-1])
        assert forward.resistance == backward.resistance
        assert forward.reactance == backward.reactance

    def test_lengths_override(self, grid_source, feeder_cable):
        z = aggregate(grid_source, conductors=[feeder_cable], lengths_km=[2.0])
        assert z.resistance == pytest.approx(0.1)

    def test_lengths_mismatch(self, grid_source, feeder_cable):
        with pytest.raises(TopologyError, match="lengths"):
            aggregate(grid_source, conductors=[feeder_cable], lengths_km=[1.0, 2.0])

    def test_zero_length_conductor_contributes_zero(self, grid_source, feeder_cable):
        z = aggregate(grid_source, conductors=[feeder_cable, Conductor("C2", 0.0, 0.5, 0.1)])
        assert z.resistance == pytest.approx(0.05)

    def test_zero_total_impedance_is_degenerate(self):
        source = Source("grid", 400.0, 0.0)
        with pytest.raises(DegenerateNetworkError):
            aggregate(source, conductors=[Conductor("C1", 1.0, 0.0, 0.0)])

    def test_negative_conductor_rejected(self, grid_source):
        with pytest.raises(TopologyError, match="negative"):
            aggregate(grid_source, conductors=[Conductor("C1", 1.0, -0.1, 0.1)])

    def test_negative_source_rejected(self, feeder_cable):
        with pytest.raises(TopologyError, match="Source"):
            aggregate(Source("grid", 400.0, -1.0), conductors=[feeder_cable])

    def test_pure_reactance_x_over_r_infinite(self, grid_source):
        z = aggregate(grid_source, conductors=[Conductor("C1", 1.0, 0.0, 0.1)])
        assert math.isinf(z.x_over_r)


# ======================================================================
# Thevenin reduction of a network
# ======================================================================


def _feeder(source_impedance: float = 0.0) -> Network:
    return Network(
        buses=(Bus("S", "slack"), Bus("B")),
        branches=(Branch("L1", "S", "B", 0.05, 0.1),),
        sources=(Source("grid", 400.0, source_impedance, x_over_r=2.0, bus="S"),),
    )


class TestThevenin:
    def test_bus_impedance_equals_series_path(self):
        z = thevenin_impedance(_feeder(), bus="B")
        assert z.resistance == pytest.approx(0.05, abs=1e-5)
        assert z.reactance == pytest.approx(0.1, abs=1e-5)

    def test_source_impedance_included(self):
        z = thevenin_impedance(_feeder(math.hypot(0.05, 0.1)), bus="B")
        assert z.resistance == pytest.approx(0.1, abs=1e-5)
        assert z.reactance == pytest.approx(0.2, abs=1e-5)

    def test_matches_radial_aggregate(self):
        source = Source("grid", 400.0, math.hypot(0.05, 0.1), x_over_r=2.0)
        radial = aggregate(source, conductors=[Conductor("L1", 1.0, 0.05, 0.1)])
        meshed = thevenin_impedance(_feeder(math.hypot(0.05, 0.1)), bus="B")
        assert meshed.magnitude == pytest.approx(radial.magnitude, rel=1e-4)

    def test_midpoint_of_branch(self):
        z = thevenin_impedance(_feeder(), branch="L1", position=0.5)
        assert z.resistance == pytest.approx(0.025, abs=1e-5)
        assert z.reactance == pytest.approx(0.05, abs=1e-5)

    def test_branch_end_positions_map_to_buses(self):
        at_end = thevenin_impedance(_feeder(0.1), branch="L1", position=1.0)
        at_bus = thevenin_impedance(_feeder(0.1), bus="B")
        assert at_end.magnitude == pytest.approx(at_bus.magnitude)

    def test_parallel_paths_reduce_impedance(self):
        single = _feeder()
        double = Network(
            buses=single.buses,
            branches=single.branches + (Branch("L2", "S", "B", 0.05, 0.1),),
            sources=single.sources,
        )
        z1 = thevenin_impedance(single, bus="B")
        z2 = thevenin_impedance(double, bus="B")
        assert z2.magnitude == pytest.approx(z1.magnitude / 2, rel=1e-4)

    def test_supply_impedance_for_retained_voltage(self):
        z = thevenin_impedance(_feeder(math.hypot(0.05, 0.1)), bus="B")
        assert abs(z.supply_impedance) == pytest.approx(math.hypot(0.05, 0.1), rel=1e-4)

    def test_no_source_is_degenerate(self):
        net = Network(buses=(Bus("S", "slack"), Bus("B")), branches=(Branch("L1", "S", "B", 0.05, 0.1),))
        with pytest.raises(DegenerateNetworkError, match="No source"):
            thevenin_impedance(net, bus="B")

    def test_fault_at_stiff_source_is_degenerate(self):
        with pytest.raises(DegenerateNetworkError):
            thevenin_impedance(_feeder(0.0), bus="S")

    def test_location_required(self):
        with pytest.raises(TopologyError, match="exactly one"):
            thevenin_impedance(_feeder())
        with pytest.raises(TopologyError, match="exactly one"):
            thevenin_impedance(_feeder(), bus="B", branch="L1")

    def test_unknown_location(self):
        with pytest.raises(TopologyError, match="Unknown bus"):
            thevenin_impedance(_feeder(), bus="Z")
        with pytest.raises(TopologyError, match="Unknown branch"):
            thevenin_impedance(_feeder(), branch="Z")

    def test_position_out_of_range(self):
        with pytest.raises(TopologyError, match="between 0 and 1"):
            thevenin_impedance(_feeder(), branch="L1", position=1.5)
