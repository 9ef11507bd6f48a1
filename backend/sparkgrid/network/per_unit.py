"""Per-unit system conversions per IEEE 399 (Brown Book).

Base quantities:
  S_base (kVA) — system-wide, typically 1000 kVA
  V_base (V)   — line-to-line, per voltage zone
  Z_base = V_base² / S_base  (Ω)
  I_base = S_base / (√3 × V_base)  (A)
"""

from __future__ import annotations

import math


def z_base(v_base_v: float, s_base_kva: float) -> float:
    """Base impedance in ohms: Z_base = V²/S."""
    return (v_base_v ** 2) / (s_base_kva * 1000.0)


def i_base(v_base_v: float, s_base_kva: float) -> float:
    """Base current in amps: I_base = S / (√3·V)."""
    return s_base_kva * 1000.0 / (math.sqrt(3) * v_base_v)


def ohm_to_pu(z_ohm: complex, v_base_v: float, s_base_kva: float) -> complex:
    """Convert impedance from ohms to per-unit."""
    return z_ohm / z_base(v_base_v, s_base_kva)


def pu_to_ohm(z_pu: complex, v_base_v: float, s_base_kva: float) -> complex:
    """Convert impedance from per-unit to ohms."""
    return z_pu * z_base(v_base_v, s_base_kva)


def split_by_x_over_r(z_magnitude: float, x_over_r: float) -> complex:
    """Split an impedance magnitude into R + jX using its X/R ratio."""
    r = z_magnitude / math.sqrt(1.0 + x_over_r ** 2)
    return complex(r, r * x_over_r)


def transformer_z_ohm(
    impedance_pct: float,
    rating_kva: float,
    v_base_v: float,
    x_over_r: float = 10.0,
) -> complex:
    """Transformer nameplate impedance referred to ohms at ``v_base_v``.

    Z = (Z% / 100) × V² / S_rated
    """
    z = (impedance_pct / 100.0) * z_base(v_base_v, rating_kva)
    return split_by_x_over_r(z, x_over_r)


def transformer_z_pu(
    impedance_pct: float,
    rating_kva: float,
    s_base_kva: float,
    x_over_r: float = 10.0,
) -> complex:
    """Convert transformer nameplate impedance to system per-unit.

    Z_pu_sys = Z_pu_tx × (S_base / S_tx)
    """
    z_pu = (impedance_pct / 100.0) * (s_base_kva / rating_kva)
    return split_by_x_over_r(z_pu, x_over_r)


def cable_z_ohm(r_ohm_per_km: float, x_ohm_per_km: float, length_km: float) -> complex:
    """Series impedance of a cable run in ohms."""
    return complex(r_ohm_per_km * length_km, x_ohm_per_km * length_km)


def power_to_pu(p_kw: float, q_kvar: float, s_base_kva: float) -> complex:
    """Convert power (kW, kvar) to per-unit complex power S = P + jQ."""
    return complex(p_kw, q_kvar) / s_base_kva


def pu_to_power(s_pu: complex, s_base_kva: float) -> complex:
    """Convert per-unit complex power back to kW + j kvar."""
    return s_pu * s_base_kva
