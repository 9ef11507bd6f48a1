"""Network analysis and compliance limits endpoints.

Provides:
- POST /short-circuit: Fault study along a radial supply path
- POST /network-fault: Fault study at a bus or along a branch of a network
- POST /load-flow: Newton-Raphson load flow with N-1 contingency scan
- GET /limits: List available compliance limits profiles
- GET /limits/{key}: Get a single limits profile

Engine errors (TopologyError, DegenerateNetworkError) are turned into 422
responses by the application's exception handlers.
"""

import logging

from fastapi import APIRouter, HTTPException, status

from sparkgrid.analysis import (
    FaultSpecification,
    LoadFlowInput,
    ShortCircuitInput,
    analyze_load_flow,
    analyze_network_fault,
    analyze_short_circuit,
)
from sparkgrid.network.limits import ComplianceLimits, build_custom_limits, get_profile, list_profiles
from sparkgrid.network.power_flow import ConvergenceCriteria
from sparkgrid_api.config import settings
from sparkgrid_api.core.logging import ContextThreadPoolExecutor
from sparkgrid_api.schemas.limits import LimitsDetailResponse, LimitsListResponse
from sparkgrid_api.schemas.load_flow import LoadFlowRequest, LoadFlowResponse
from sparkgrid_api.schemas.short_circuit import (
    NetworkFaultRequest,
    ShortCircuitRequest,
    ShortCircuitResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter()
limits_router = APIRouter()


def _resolve_limits(body: LoadFlowRequest) -> ComplianceLimits:
    if body.limits_profile == "custom" and body.custom_limits:
        try:
            return build_custom_limits(body.custom_limits.model_dump())
        except (TypeError, ValueError) as e:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Invalid custom limits: {e}",
            )
    try:
        return get_profile(body.limits_profile or settings.default_limits_profile)
    except KeyError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )


@router.post("/short-circuit", response_model=ShortCircuitResponse)
def run_short_circuit(body: ShortCircuitRequest):
    """Short-circuit study of a source, transformers and conductor runs."""
    inputs = ShortCircuitInput(
        system_voltage=body.system_voltage,
        source=body.source.to_engine(),
        conductors=tuple(c.to_engine() for c in body.conductors),
        fault_type=body.fault_type,
        transformers=tuple(tx.to_engine() for tx in body.transformers),
        lengths_km=tuple(body.lengths_km) if body.lengths_km is not None else None,
        protection=body.protection.to_engine() if body.protection else None,
        earthing=body.earthing,
        earth_electrode_resistance=body.earth_electrode_resistance,
    )
    result = analyze_short_circuit(inputs)
    return ShortCircuitResponse.model_validate(result)


@router.post("/network-fault", response_model=ShortCircuitResponse)
def run_network_fault(body: NetworkFaultRequest):
    """Fault study at a bus, or part-way along a branch, of a meshed network."""
    fault = body.fault
    specification = FaultSpecification(
        fault_type=fault.fault_type,
        bus=fault.bus,
        branch=fault.branch,
        position=fault.position,
        earthing=fault.earthing,
        earth_electrode_resistance=fault.earth_electrode_resistance,
        protection=fault.protection.to_engine() if fault.protection else None,
    )
    result = analyze_network_fault(body.network.to_engine(), specification)
    return ShortCircuitResponse.model_validate(result)


@router.post("/load-flow", response_model=LoadFlowResponse)
def run_load_flow(body: LoadFlowRequest):
    """Load flow with an N-1 contingency scan of every branch and transformer."""
    criteria = ConvergenceCriteria(
        tolerance=body.tolerance if body.tolerance is not None else settings.default_tolerance,
        max_iterations=(
            body.max_iterations if body.max_iterations is not None else settings.default_max_iterations
        ),
    )
    inputs = LoadFlowInput(
        buses=tuple(b.to_engine() for b in body.buses),
        branches=tuple(br.to_engine() for br in body.branches),
        transformers=tuple(tx.to_engine() for tx in body.transformers),
        system_voltage=body.system_voltage,
        base_kva=body.base_kva,
        criteria=criteria,
        limits=_resolve_limits(body),
        run_contingency=body.run_contingency,
    )

    if settings.contingency_workers > 1 and body.run_contingency:
        with ContextThreadPoolExecutor(max_workers=settings.contingency_workers) as pool:
            result = analyze_load_flow(inputs, executor=pool)
    else:
        result = analyze_load_flow(inputs)

    logger.info(
        "Load flow %s in %d iterations, %d critical outages",
        result.state.value,
        result.iterations,
        len(result.contingency.critical_outages) if result.contingency else 0,
        extra={
            "state": result.state.value,
            "iterations": result.iterations,
            "critical_outages": list(result.contingency.critical_outages) if result.contingency else [],
        },
    )
    return LoadFlowResponse.model_validate(result)


@limits_router.get("/limits", response_model=LimitsListResponse)
async def list_limits():
    """List all available compliance limits profiles."""
    return LimitsListResponse(profiles=list_profiles())


@limits_router.get("/limits/{key}", response_model=LimitsDetailResponse)
async def get_limits_detail(key: str):
    """Get a single compliance limits profile."""
    try:
        profile = get_profile(key)
    except KeyError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(e),
        )
    return LimitsDetailResponse(**profile.to_dict())
