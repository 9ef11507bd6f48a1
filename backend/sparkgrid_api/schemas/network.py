from pydantic import BaseModel, Field

from sparkgrid.network.network_model import Branch, Bus, Conductor, Network, Source, Transformer


class BusIn(BaseModel):
    id: str = Field(max_length=255)
    bus_type: str = Field(default="pq", pattern="^(slack|pv|pq)$")
    voltage: float | None = None
    angle_deg: float = 0.0
    p_gen_kw: float = 0.0
    q_gen_kvar: float = 0.0
    p_load_kw: float = 0.0
    q_load_kvar: float = 0.0
    nominal_voltage: float | None = None

    def to_engine(self) -> Bus:
        return Bus(**self.model_dump())


class BranchIn(BaseModel):
    id: str = Field(max_length=255)
    from_bus: str
    to_bus: str
    resistance: float
    reactance: float
    unit: str = Field(default="ohm", pattern="^(ohm|pu)$")
    susceptance_pu: float = 0.0
    rating_mva: float | None = None
    rating_a: float | None = None

    def to_engine(self) -> Branch:
        return Branch(**self.model_dump())


class SourceIn(BaseModel):
    id: str = "grid"
    voltage: float
    impedance: float
    x_over_r: float = 10.0
    bus: str | None = None

    def to_engine(self) -> Source:
        return Source(**self.model_dump())


class TransformerIn(BaseModel):
    id: str = Field(max_length=255)
    rating_kva: float
    impedance_pct: float
    x_over_r: float = 10.0
    from_bus: str | None = None
    to_bus: str | None = None

    def to_engine(self) -> Transformer:
        return Transformer(**self.model_dump())


class ConductorIn(BaseModel):
    id: str = Field(max_length=255)
    length_km: float
    r_ohm_per_km: float
    x_ohm_per_km: float
    current_rating_a: float | None = None

    def to_engine(self) -> Conductor:
        return Conductor(**self.model_dump())


class NetworkIn(BaseModel):
    buses: list[BusIn]
    branches: list[BranchIn] = Field(default_factory=list)
    sources: list[SourceIn] = Field(default_factory=list)
    transformers: list[TransformerIn] = Field(default_factory=list)
    nominal_voltage: float = 400.0
    base_kva: float = 1000.0

    def to_engine(self) -> Network:
        return Network(
            buses=tuple(b.to_engine() for b in self.buses),
            branches=tuple(br.to_engine() for br in self.branches),
            sources=tuple(s.to_engine() for s in self.sources),
            transformers=tuple(tx.to_engine() for tx in self.transformers),
            nominal_voltage=self.nominal_voltage,
            base_kva=self.base_kva,
        )
