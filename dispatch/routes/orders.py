from datetime import date, datetime

from fastapi import APIRouter, Depends, Query
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from dispatch.core import DispatchCore
from dispatch.deps import get_actor, get_core
from dispatch.models import Actor, Coordinates, Customer, OrderStatus, Place, Product

router = APIRouter(prefix="/orders", tags=["orders"])


def _place(address: str, lat: float | None, lng: float | None) -> Place:
    coordinates = Coordinates(latitude=lat, longitude=lng) if lat is not None and lng is not None else None
    return Place(address=address, coordinates=coordinates)


class CreateOrderBody(BaseModel):
    pickup_address: str = Field(..., min_length=1)
    pickup_lat: float | None = None
    pickup_lng: float | None = None
    dropoff_address: str = Field(..., min_length=1)
    dropoff_lat: float | None = None
    dropoff_lng: float | None = None
    delivery_date: date
    delivery_time: str = Field(..., min_length=1, description="Delivery window, e.g. 14:00-16:00")
    customer_name: str = Field(..., min_length=1)
    customer_phone: str = Field(..., min_length=1)
    product_description: str = Field(..., min_length=1)
    product_weight: float = Field(..., ge=0, description="Weight in kg")
    product_images: list[str] = Field(default_factory=list, description="Already-uploaded image URLs")


class UpdateStatusBody(BaseModel):
    status: str = Field(..., description="Target order status")
    notes: str | None = None
    latitude: float | None = None
    longitude: float | None = None


class CancelBody(BaseModel):
    reason: str | None = None


@router.post("")
async def create_order(
    body: CreateOrderBody,
    actor: Actor = Depends(get_actor),
    core: DispatchCore = Depends(get_core),
) -> JSONResponse:
    order = await core.orders.create(
        actor,
        pickup=_place(body.pickup_address, body.pickup_lat, body.pickup_lng),
        dropoff=_place(body.dropoff_address, body.dropoff_lat, body.dropoff_lng),
        delivery_date=body.delivery_date,
        delivery_time=body.delivery_time,
        customer=Customer(name=body.customer_name, phone=body.customer_phone),
        product=Product(
            description=body.product_description,
            weight=body.product_weight,
            images=body.product_images,
        ),
    )
    return JSONResponse(
        status_code=201,
        content={"message": "Order created successfully", "order": order.model_dump(mode="json")},
    )


@router.get("")
async def list_orders(
    status: OrderStatus | None = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    date_from: datetime | None = Query(default=None, description="Earliest created_at, ISO 8601"),
    date_to: datetime | None = Query(default=None, description="Latest created_at, ISO 8601"),
    actor: Actor = Depends(get_actor),
    core: DispatchCore = Depends(get_core),
) -> JSONResponse:
    """Business: own orders. Rider: orders assigned to it. Admin: every order."""
    result = await core.orders.list(
        actor,
        status=status,
        page=page,
        limit=limit,
        date_from=date_from,
        date_to=date_to,
    )
    return JSONResponse(
        status_code=200,
        content={
            "orders": [o.model_dump(mode="json") for o in result.items],
            "pagination": {"current": result.page, "pages": result.pages, "total": result.total},
        },
    )


@router.get("/{order_id}")
async def get_order(
    order_id: str,
    actor: Actor = Depends(get_actor),
    core: DispatchCore = Depends(get_core),
) -> JSONResponse:
    order = await core.orders.get(order_id, actor)
    return JSONResponse(status_code=200, content={"order": order.model_dump(mode="json")})


@router.patch("/{order_id}/status")
async def update_status(
    order_id: str,
    body: UpdateStatusBody,
    actor: Actor = Depends(get_actor),
    core: DispatchCore = Depends(get_core),
) -> JSONResponse:
    location = None
    if body.latitude is not None and body.longitude is not None:
        location = Coordinates(latitude=body.latitude, longitude=body.longitude)
    order = await core.orders.transition(order_id, actor, body.status, body.notes, location)
    return JSONResponse(
        status_code=200,
        content={"message": "Order status updated successfully", "order": order.model_dump(mode="json")},
    )


@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: str,
    body: CancelBody | None = None,
    actor: Actor = Depends(get_actor),
    core: DispatchCore = Depends(get_core),
) -> JSONResponse:
    order = await core.orders.cancel(order_id, actor, body.reason if body else None)
    return JSONResponse(
        status_code=200,
        content={"message": "Order cancelled", "order": order.model_dump(mode="json")},
    )
