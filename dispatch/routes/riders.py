from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from dispatch.core import DispatchCore
from dispatch.deps import get_actor, get_core
from dispatch.models import Actor, Coordinates

router = APIRouter(prefix="/rider", tags=["rider"])


class LocationBody(BaseModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    is_online: bool | None = Field(default=None, description="Defaults to online when omitted")


class FailBody(BaseModel):
    reason: str = Field(..., min_length=1)


@router.post("/location")
async def update_location(
    body: LocationBody,
    actor: Actor = Depends(get_actor),
    core: DispatchCore = Depends(get_core),
) -> JSONResponse:
    """Store the rider's position; watchers of its current order get a location-update event."""
    location = await core.locations.update_location(
        actor,
        Coordinates(latitude=body.latitude, longitude=body.longitude),
        body.is_online,
    )
    return JSONResponse(
        status_code=200,
        content={"message": "Location updated successfully", "location": location.model_dump(mode="json")},
    )


@router.post("/toggle-online")
async def toggle_online(
    actor: Actor = Depends(get_actor),
    core: DispatchCore = Depends(get_core),
) -> JSONResponse:
    is_online = await core.locations.toggle_online(actor)
    return JSONResponse(
        status_code=200,
        content={"message": f"Status updated to {'online' if is_online else 'offline'}", "is_online": is_online},
    )


@router.post("/orders/{order_id}/fail")
async def fail_order(
    order_id: str,
    body: FailBody,
    actor: Actor = Depends(get_actor),
    core: DispatchCore = Depends(get_core),
) -> JSONResponse:
    order = await core.orders.fail(order_id, actor, body.reason)
    return JSONResponse(
        status_code=200,
        content={"message": "Order marked as failed", "order": order.model_dump(mode="json")},
    )
