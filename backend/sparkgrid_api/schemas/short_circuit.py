from pydantic import BaseModel, Field

from sparkgrid.network.protection import Coordination, ProtectionSettings, StabilityLevel
from sparkgrid.network.short_circuit import FaultType
from sparkgrid_api.schemas.common import FiniteFloat, Recommendation
from sparkgrid_api.schemas.network import ConductorIn, NetworkIn, SourceIn, TransformerIn

FAULT_TYPE_PATTERN = "^(three_phase|phase_to_phase|single_phase_earth)$"
EARTHING_PATTERN = "^(TN-S|TN-C-S|TT)$"


class ProtectionIn(BaseModel):
    pickup_current: float = Field(default=0.0, ge=0)
    time_delay: float | None = Field(default=None, ge=0)

    def to_engine(self) -> ProtectionSettings:
        return ProtectionSettings(**self.model_dump())


class ShortCircuitRequest(BaseModel):
    system_voltage: float
    fault_type: str = Field(default="three_phase", pattern=FAULT_TYPE_PATTERN)
    source: SourceIn
    conductors: list[ConductorIn] = Field(default_factory=list)
    transformers: list[TransformerIn] = Field(default_factory=list)
    lengths_km: list[float] | None = None
    protection: ProtectionIn | None = None
    earthing: str = Field(default="TN-C-S", pattern=EARTHING_PATTERN)
    earth_electrode_resistance: float | None = Field(default=None, ge=0)


class FaultIn(BaseModel):
    fault_type: str = Field(default="three_phase", pattern=FAULT_TYPE_PATTERN)
    bus: str | None = None
    branch: str | None = None
    position: float = 0.5
    earthing: str = Field(default="TN-C-S", pattern=EARTHING_PATTERN)
    earth_electrode_resistance: float | None = Field(default=None, ge=0)
    protection: ProtectionIn | None = None


class NetworkFaultRequest(BaseModel):
    network: NetworkIn
    fault: FaultIn


class FaultCurrentsOut(BaseModel):
    fault_type: FaultType
    driving_voltage: float
    effective_impedance: float
    x_over_r: FiniteFloat
    initial_symmetrical_rms: float
    peak_asymmetrical: float
    asymmetry_factor: float
    momentary_rms: float
    interrupting_rms: float
    steady_state_rms: float

    model_config = {"from_attributes": True}


class ImpedanceContributionOut(BaseModel):
    element_id: str
    kind: str
    resistance: float
    reactance: float

    model_config = {"from_attributes": True}


class ImpedanceOut(BaseModel):
    resistance: float
    reactance: float
    magnitude: float
    x_over_r: FiniteFloat
    contributions: list[ImpedanceContributionOut]

    model_config = {"from_attributes": True}


class VoltageProfileOut(BaseModel):
    prefault_voltage: float
    fault_voltage: float
    voltage_depression_pct: float
    recovery_time: float

    model_config = {"from_attributes": True}


class ProtectionAnalysisOut(BaseModel):
    operating_time: float
    clearing_time: float
    arc_energy: float
    coordination: Coordination

    model_config = {"from_attributes": True}


class PPEOut(BaseModel):
    category: int
    rating_cal_cm2: float
    remote_operation_advised: bool
    label: str

    model_config = {"from_attributes": True}


class EquipmentStressOut(BaseModel):
    thermal_stress: float
    mechanical_stress: float
    arc_flash_boundary_mm: float
    arc_energy: float
    ppe: PPEOut
    required_breaking_capacity_ka: float | None

    model_config = {"from_attributes": True}


class SystemStabilityOut(BaseModel):
    voltage_stability: StabilityLevel
    frequency_deviation_hz: float
    transient_stability: StabilityLevel

    model_config = {"from_attributes": True}


class ComplianceOut(BaseModel):
    bs7671_compliant: bool
    standards: list[str]
    arc_flash_compliant: bool

    model_config = {"from_attributes": True}


class ShortCircuitResponse(BaseModel):
    fault_currents: FaultCurrentsOut
    impedance: ImpedanceOut
    voltage_profile: VoltageProfileOut
    protection: ProtectionAnalysisOut
    equipment_stress: EquipmentStressOut
    system_stability: SystemStabilityOut
    compliance: ComplianceOut
    recommendations: list[str]
    advice: list[Recommendation] = []
    regulation: str

    model_config = {"from_attributes": True}
