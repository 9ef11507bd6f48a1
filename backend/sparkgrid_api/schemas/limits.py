from pydantic import BaseModel


class LimitsProfileSummary(BaseModel):
    key: str
    name: str
    standard: str
    voltage_limits: list[float]
    thermal_limit_pct: float


class LimitsListResponse(BaseModel):
    profiles: list[LimitsProfileSummary]


class LimitsDetailResponse(BaseModel):
    name: str
    standard: str
    voltage_limits: list[float]
    thermal_limit_pct: float
