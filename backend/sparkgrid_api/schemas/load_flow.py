from pydantic import BaseModel, Field, model_validator

from sparkgrid.network.network_model import BusType
from sparkgrid.network.power_flow import SolverState
from sparkgrid_api.schemas.common import FiniteFloat, Recommendation
from sparkgrid_api.schemas.network import BranchIn, BusIn, TransformerIn


class CustomLimitsIn(BaseModel):
    name: str = Field(default="Custom Profile", max_length=255)
    standard: str = Field(default="Custom", max_length=255)
    voltage_limits: tuple[float, float] = (0.90, 1.10)
    thermal_limit_pct: float = Field(default=100.0, gt=0)

    @model_validator(mode="after")
    def _ordered_band(self) -> "CustomLimitsIn":
        lo, hi = self.voltage_limits
        if not 0 < lo < hi:
            raise ValueError("voltage_limits must be [min, max] with 0 < min < max")
        return self


class LoadFlowRequest(BaseModel):
    buses: list[BusIn]
    branches: list[BranchIn] = Field(default_factory=list)
    transformers: list[TransformerIn] = Field(default_factory=list)
    system_voltage: float = 400.0
    base_kva: float = 1000.0
    tolerance: float | None = Field(default=None, gt=0)
    max_iterations: int | None = Field(default=None, ge=0)
    limits_profile: str | None = Field(
        default=None,
        description="Limits profile: uk_default, bs_en_50160, distribution_planning, or 'custom'",
    )
    custom_limits: CustomLimitsIn | None = Field(
        default=None,
        description="Custom limits config (used when limits_profile='custom')",
    )
    run_contingency: bool = True


class BusResultOut(BaseModel):
    bus_id: str
    bus_type: BusType
    voltage_v: FiniteFloat
    voltage_pu: FiniteFloat
    angle_deg: FiniteFloat
    deviation_pct: FiniteFloat
    compliant: bool
    p_injection_kw: FiniteFloat
    q_injection_kvar: FiniteFloat

    model_config = {"from_attributes": True}


class BranchFlowOut(BaseModel):
    branch_id: str
    kind: str
    from_bus: str
    to_bus: str
    current_a: FiniteFloat
    from_p_kw: FiniteFloat
    from_q_kvar: FiniteFloat
    to_p_kw: FiniteFloat
    to_q_kvar: FiniteFloat
    loss_p_kw: FiniteFloat
    loss_q_kvar: FiniteFloat
    loading_pct: FiniteFloat

    model_config = {"from_attributes": True}


class PowerPairOut(BaseModel):
    p_kw: FiniteFloat
    q_kvar: FiniteFloat

    model_config = {"from_attributes": True}


class VoltageExtremeOut(BaseModel):
    bus_id: str
    voltage_v: FiniteFloat
    voltage_pu: FiniteFloat

    model_config = {"from_attributes": True}


class SystemSummaryOut(BaseModel):
    total_generation: PowerPairOut
    total_load: PowerPairOut
    total_losses: PowerPairOut
    min_voltage: VoltageExtremeOut
    max_voltage: VoltageExtremeOut
    overloaded_branches: list[str]
    voltage_violations: list[str]

    model_config = {"from_attributes": True}


class VoltageViolationItem(BaseModel):
    bus_id: str
    voltage_pu: float
    limit_type: str
    limit_value: float

    model_config = {"from_attributes": True}


class ThermalViolationItem(BaseModel):
    branch_id: str
    loading_pct: float
    limit_pct: float

    model_config = {"from_attributes": True}


class ContingencyItem(BaseModel):
    element_id: str
    kind: str
    critical: bool
    state: SolverState | None
    causes_islanding: bool
    islanded_buses: list[str]
    iterations: int
    min_voltage_pu: FiniteFloat
    max_loading_pct: FiniteFloat
    voltage_violations: list[VoltageViolationItem]
    thermal_violations: list[ThermalViolationItem]

    model_config = {"from_attributes": True}


class ContingencyBlock(BaseModel):
    limits_name: str
    n1_secure: bool
    critical_outages: list[str]
    loadability_margin_pct: FiniteFloat
    voltage_stability_margin_pct: FiniteFloat
    worst_voltage_pu: FiniteFloat
    worst_voltage_bus: str
    worst_loading_pct: FiniteFloat
    worst_loading_branch: str
    island_count: int
    unsolved: list[str]
    cases: list[ContingencyItem]

    model_config = {"from_attributes": True}


class LoadFlowResponse(BaseModel):
    converged: bool
    state: SolverState
    iterations: int
    max_mismatch_pu: FiniteFloat
    buses: list[BusResultOut]
    branches: list[BranchFlowOut]
    summary: SystemSummaryOut
    contingency: ContingencyBlock | None
    recommendations: list[str]
    advice: list[Recommendation] = []
    regulation: str

    model_config = {"from_attributes": True}
