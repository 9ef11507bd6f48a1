"""Shared test fixtures for SparkGrid engine and API tests."""

from __future__ import annotations

import pytest

from sparkgrid.network.network_model import Branch, Bus, BusType, Conductor, Network, Source


# ======================================================================
# Network builders
# ======================================================================


def two_bus_network(
    p_load_kw: float = 50.0,
    q_load_kvar: float = 0.2,
    resistance: float = 0.1,
    reactance: float = 0.2,
    rating_mva: float | None = None,
    rating_a: float | None = None,
) -> Network:
    """400 V slack bus feeding one PQ load through a single cable."""
    return Network(
        buses=(
            Bus("S", BusType.SLACK, voltage=400.0),
            Bus("L", BusType.PQ, p_load_kw=p_load_kw, q_load_kvar=q_load_kvar),
        ),
        branches=(
            Branch("L1", "S", "L", resistance, reactance, rating_mva=rating_mva, rating_a=rating_a),
        ),
        sources=(Source("grid", 400.0, 0.0, bus="S"),),
        nominal_voltage=400.0,
    )


RING_LOADS_KW = {"b1": 10.0, "b2": 25.0, "b3": 15.0, "b4": 40.0}


def ring_network(z_ohm: complex = complex(0.01, 0.01), spur: bool = False, reverse: bool = False) -> Network:
    """Slack plus four load buses in a five-branch ring, optionally with a radial spur."""
    buses = [Bus("S", BusType.SLACK, voltage=400.0)]
    buses += [Bus(bus_id, p_load_kw=p) for bus_id, p in RING_LOADS_KW.items()]
    ring = ["S", "b1", "b2", "b3", "b4", "S"]
    branches = [
        Branch(f"R{k + 1}", ring[k], ring[k + 1], z_ohm.real, z_ohm.imag)
        for k in range(5)
    ]
    if spur:
        buses.append(Bus("b5", p_load_kw=10.0))
        branches.append(Branch("S5", "b2", "b5", z_ohm.real, z_ohm.imag))
    if reverse:
        branches.reverse()
    return Network(buses=tuple(buses), branches=tuple(branches), nominal_voltage=400.0)


# ======================================================================
# Fixtures
# ======================================================================


@pytest.fixture
def simple_network() -> Network:
    return two_bus_network()


@pytest.fixture
def ring() -> Network:
    return ring_network()


@pytest.fixture
def grid_source() -> Source:
    """400 V source with no internal impedance."""
    return Source("grid", 400.0, 0.0, x_over_r=2.0)


@pytest.fixture
def feeder_cable() -> Conductor:
    """1 km run giving 0.05 + j0.1 Ω."""
    return Conductor("C1", 1.0, 0.05, 0.1)


@pytest.fixture
def make_two_bus():
    """Factory for two-bus networks with custom load, impedance or rating."""
    return two_bus_network


@pytest.fixture
def make_ring():
    """Factory for ring networks (optional spur, reversed branch order)."""
    return ring_network
