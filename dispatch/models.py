"""
Domain records: orders with their timeline, rider locations, riders and the calling actor.
"""
import uuid
from datetime import date, datetime, timezone
from enum import Enum

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class OrderStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    PICKED_UP = "picked_up"
    IN_TRANSIT = "in_transit"
    DELIVERED = "delivered"
    FAILED = "failed"
    CANCELLED = "cancelled"


class Role(str, Enum):
    BUSINESS = "business"
    RIDER = "rider"
    ADMIN = "admin"


class Actor(BaseModel):
    """Authenticated caller. Identity and role are trusted input from the auth layer."""

    id: str
    role: Role


class Coordinates(BaseModel):
    latitude: float
    longitude: float


class Place(BaseModel):
    address: str
    coordinates: Coordinates | None = None


class Customer(BaseModel):
    name: str
    phone: str


class Product(BaseModel):
    description: str
    weight: float = Field(..., ge=0)
    images: list[str] = Field(default_factory=list)


class TimelineEntry(BaseModel):
    status: OrderStatus
    timestamp: datetime
    notes: str | None = None
    location: Coordinates | None = None


class Order(BaseModel):
    id: str = Field(default_factory=new_id)
    business: str
    rider: str | None = None
    pickup_location: Place
    dropoff_location: Place
    delivery_date: date
    delivery_time: str
    customer: Customer
    product: Product
    status: OrderStatus = OrderStatus.PENDING
    timeline: list[TimelineEntry] = Field(default_factory=list)
    failure_reason: str | None = None
    actual_delivery_time: datetime | None = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 0

    def append_timeline(
        self,
        status: OrderStatus,
        notes: str | None = None,
        location: Coordinates | None = None,
    ) -> TimelineEntry:
        """Set the status and record it. Timestamps never go backwards, even if the clock does."""
        now = utcnow()
        if self.timeline and self.timeline[-1].timestamp > now:
            now = self.timeline[-1].timestamp
        entry = TimelineEntry(status=status, timestamp=now, notes=notes, location=location)
        self.timeline.append(entry)
        self.status = status
        self.updated_at = now
        return entry


class RiderLocation(BaseModel):
    rider: str
    location: Coordinates = Field(default_factory=lambda: Coordinates(latitude=0, longitude=0))
    is_online: bool = False
    current_order: str | None = None
    updated_at: datetime = Field(default_factory=utcnow)


class Rider(BaseModel):
    id: str = Field(default_factory=new_id)
    name: str
    phone: str
    license_number: str | None = None
    vehicle_type: str | None = None
    vehicle_number: str | None = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow)


class RiderSummary(BaseModel):
    rider: Rider
    is_online: bool
    current_location: Coordinates | None = None
    has_active_order: bool


class Page(BaseModel):
    items: list
    page: int
    pages: int
    total: int

    @classmethod
    def build(cls, items: list, total: int, page: int, limit: int) -> "Page":
        pages = (total + limit - 1) // limit if limit else 0
        return cls(items=items, page=page, pages=pages, total=total)
