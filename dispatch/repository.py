"""
Persistence port for orders, riders and rider locations, plus the in-memory backend.

Every write is conditional so that two processes racing on the same record cannot both win:
- order updates carry the version they were read at (stale version -> Conflict);
- an order may only be stored as active for a rider that has no other active order (-> Conflict).
The PostgreSQL backend lives in dispatch.db.
"""
import threading
from abc import ABC, abstractmethod
from datetime import datetime

from dispatch.errors import Conflict
from dispatch.models import Coordinates, Order, OrderStatus, Rider, RiderLocation, utcnow
from dispatch.order_state import is_active


class Repository(ABC):
    @abstractmethod
    async def insert_order(self, order: Order) -> Order: ...

    @abstractmethod
    async def get_order(self, order_id: str) -> Order | None: ...

    @abstractmethod
    async def update_order(self, order: Order, expected_version: int) -> Order:
        """Store order if its persisted version is still expected_version. Returns the stored copy."""

    @abstractmethod
    async def find_active_order(self, rider_id: str) -> Order | None: ...

    @abstractmethod
    async def list_orders(
        self,
        business_id: str | None = None,
        rider_id: str | None = None,
        status: OrderStatus | None = None,
        offset: int = 0,
        limit: int = 10,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
    ) -> tuple[list[Order], int]:
        """Newest first, created_at within [created_from, created_to] when given. Returns (page, total)."""

    @abstractmethod
    async def insert_rider(self, rider: Rider) -> Rider: ...

    @abstractmethod
    async def get_rider(self, rider_id: str) -> Rider | None: ...

    @abstractmethod
    async def set_rider_active(self, rider_id: str, is_active: bool) -> Rider | None: ...

    @abstractmethod
    async def list_riders(
        self,
        is_active: bool | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[Rider], int]: ...

    @abstractmethod
    async def get_location(self, rider_id: str) -> RiderLocation | None: ...

    @abstractmethod
    async def upsert_position(
        self,
        rider_id: str,
        location: Coordinates,
        is_online: bool,
    ) -> RiderLocation:
        """Write position and online flag, creating the record if needed. current_order is untouched."""

    @abstractmethod
    async def toggle_online(self, rider_id: str) -> RiderLocation | None: ...

    @abstractmethod
    async def set_current_order(self, rider_id: str, order_id: str | None) -> RiderLocation:
        """Write current_order only, creating an offline record at (0, 0) if needed."""

    @abstractmethod
    async def clear_current_order(self, rider_id: str, order_id: str) -> RiderLocation | None:
        """Unset current_order only while it still points at order_id. Returns the record, or None if untouched."""

    async def close(self) -> None:
        return None


class MemoryRepository(Repository):
    """
    Process-local backend. Records are copied on the way in and out so callers never share
    mutable state with the store; a threading lock makes each conditional write atomic.
    """

    def __init__(self):
        self._mutex = threading.Lock()
        self._orders: dict[str, Order] = {}
        self._riders: dict[str, Rider] = {}
        self._locations: dict[str, RiderLocation] = {}

    async def insert_order(self, order: Order) -> Order:
        with self._mutex:
            if order.id in self._orders:
                raise Conflict(f"Order {order.id} already exists")
            stored = order.model_copy(deep=True)
            self._orders[order.id] = stored
            return stored.model_copy(deep=True)

    async def get_order(self, order_id: str) -> Order | None:
        with self._mutex:
            order = self._orders.get(order_id)
            return order.model_copy(deep=True) if order else None

    async def update_order(self, order: Order, expected_version: int) -> Order:
        with self._mutex:
            current = self._orders.get(order.id)
            if current is None or current.version != expected_version:
                raise Conflict(f"Order {order.id} was modified concurrently")
            if order.rider and is_active(order.status):
                for other in self._orders.values():
                    if other.id != order.id and other.rider == order.rider and is_active(other.status):
                        raise Conflict("Rider already has an active order")
            stored = order.model_copy(deep=True, update={"version": expected_version + 1})
            self._orders[order.id] = stored
            return stored.model_copy(deep=True)

    async def find_active_order(self, rider_id: str) -> Order | None:
        with self._mutex:
            for order in self._orders.values():
                if order.rider == rider_id and is_active(order.status):
                    return order.model_copy(deep=True)
        return None

    async def list_orders(
        self,
        business_id: str | None = None,
        rider_id: str | None = None,
        status: OrderStatus | None = None,
        offset: int = 0,
        limit: int = 10,
        created_from: datetime | None = None,
        created_to: datetime | None = None,
    ) -> tuple[list[Order], int]:
        with self._mutex:
            matches = [
                o for o in self._orders.values()
                if (business_id is None or o.business == business_id)
                and (rider_id is None or o.rider == rider_id)
                and (status is None or o.status == status)
                and (created_from is None or o.created_at >= created_from)
                and (created_to is None or o.created_at <= created_to)
            ]
        matches.sort(key=lambda o: o.created_at, reverse=True)
        page = [o.model_copy(deep=True) for o in matches[offset:offset + limit]]
        return page, len(matches)

    async def insert_rider(self, rider: Rider) -> Rider:
        with self._mutex:
            if rider.id in self._riders:
                raise Conflict(f"Rider {rider.id} already exists")
            self._riders[rider.id] = rider.model_copy(deep=True)
            return rider.model_copy(deep=True)

    async def get_rider(self, rider_id: str) -> Rider | None:
        with self._mutex:
            rider = self._riders.get(rider_id)
            return rider.model_copy(deep=True) if rider else None

    async def set_rider_active(self, rider_id: str, is_active: bool) -> Rider | None:
        with self._mutex:
            rider = self._riders.get(rider_id)
            if rider is None:
                return None
            rider.is_active = is_active
            return rider.model_copy(deep=True)

    async def list_riders(
        self,
        is_active: bool | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[Rider], int]:
        with self._mutex:
            matches = [r for r in self._riders.values() if is_active is None or r.is_active == is_active]
        matches.sort(key=lambda r: r.created_at, reverse=True)
        return [r.model_copy(deep=True) for r in matches[offset:offset + limit]], len(matches)

    async def get_location(self, rider_id: str) -> RiderLocation | None:
        with self._mutex:
            location = self._locations.get(rider_id)
            return location.model_copy(deep=True) if location else None

    async def upsert_position(
        self,
        rider_id: str,
        location: Coordinates,
        is_online: bool,
    ) -> RiderLocation:
        with self._mutex:
            record = self._locations.get(rider_id)
            if record is None:
                record = self._locations[rider_id] = RiderLocation(rider=rider_id)
            record.location = location.model_copy()
            record.is_online = is_online
            record.updated_at = utcnow()
            return record.model_copy(deep=True)

    async def toggle_online(self, rider_id: str) -> RiderLocation | None:
        with self._mutex:
            record = self._locations.get(rider_id)
            if record is None:
                return None
            record.is_online = not record.is_online
            record.updated_at = utcnow()
            return record.model_copy(deep=True)

    async def set_current_order(self, rider_id: str, order_id: str | None) -> RiderLocation:
        with self._mutex:
            record = self._locations.get(rider_id)
            if record is None:
                record = self._locations[rider_id] = RiderLocation(rider=rider_id)
            record.current_order = order_id
            record.updated_at = utcnow()
            return record.model_copy(deep=True)

    async def clear_current_order(self, rider_id: str, order_id: str) -> RiderLocation | None:
        with self._mutex:
            record = self._locations.get(rider_id)
            if record is None or record.current_order != order_id:
                return None
            record.current_order = None
            record.updated_at = utcnow()
            return record.model_copy(deep=True)
