from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from dispatch.core import DispatchCore
from dispatch.deps import get_actor, get_core
from dispatch.models import Actor

router = APIRouter(prefix="/admin", tags=["admin"])


class CreateRiderBody(BaseModel):
    name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    license_number: str | None = None
    vehicle_type: str | None = None
    vehicle_number: str | None = None


class AssignBody(BaseModel):
    rider_id: str = Field(..., min_length=1, description="Active rider to receive the order")


@router.post("/riders")
async def create_rider(
    body: CreateRiderBody,
    actor: Actor = Depends(get_actor),
    core: DispatchCore = Depends(get_core),
) -> JSONResponse:
    rider = await core.riders.create_rider(actor, **body.model_dump())
    return JSONResponse(
        status_code=201,
        content={"message": "Rider created successfully", "rider": rider.model_dump(mode="json")},
    )


@router.get("/riders")
async def list_riders(
    status: str | None = Query(default=None, pattern="^(active|inactive)$"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    actor: Actor = Depends(get_actor),
    core: DispatchCore = Depends(get_core),
) -> JSONResponse:
    active = None if status is None else status == "active"
    result = await core.riders.list_riders(actor, active=active, page=page, limit=limit)
    return JSONResponse(
        status_code=200,
        content={
            "riders": [s.model_dump(mode="json") for s in result.items],
            "pagination": {"current": result.page, "pages": result.pages, "total": result.total},
        },
    )


@router.patch("/riders/{rider_id}/toggle-status")
async def toggle_rider_status(
    rider_id: str,
    actor: Actor = Depends(get_actor),
    core: DispatchCore = Depends(get_core),
) -> JSONResponse:
    rider = await core.riders.toggle_active(actor, rider_id)
    return JSONResponse(
        status_code=200,
        content={
            "message": f"Rider {'activated' if rider.is_active else 'deactivated'} successfully",
            "rider": rider.model_dump(mode="json"),
        },
    )


@router.post("/orders/{order_id}/assign")
async def assign_order(
    order_id: str,
    body: AssignBody,
    actor: Actor = Depends(get_actor),
    core: DispatchCore = Depends(get_core),
) -> JSONResponse:
    """
    Bind a pending order to an active rider.
    409 if the rider already has an active order or the order is no longer pending.
    """
    order = await core.assignments.assign(order_id, body.rider_id, actor)
    return JSONResponse(
        status_code=200,
        content={"message": "Order assigned successfully", "order": order.model_dump(mode="json")},
    )
