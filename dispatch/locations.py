import logging

from dispatch.errors import Forbidden, NotFound
from dispatch.locks import KeyedLocks, rider_key
from dispatch.metrics import rider_location_updates_total
from dispatch.models import Actor, Coordinates, RiderLocation, Role
from dispatch.notifier import EventNotifier
from dispatch.repository import Repository

logger = logging.getLogger(__name__)


def require_rider(actor: Actor) -> str:
    if actor.role != Role.RIDER:
        raise Forbidden("Only riders can perform this action")
    return actor.id


class LocationStore:
    """
    Per-rider position, online flag and current-order pointer.
    Position and online flag are written only by the rider itself; current_order is written by
    the assignment coordinator and the lifecycle engine through set_current_order and
    release_current_order, which callers must invoke while holding the rider's lock.
    """

    def __init__(self, repository: Repository, notifier: EventNotifier, locks: KeyedLocks):
        self._repository = repository
        self._notifier = notifier
        self._locks = locks

    async def get(self, rider_id: str) -> RiderLocation | None:
        return await self._repository.get_location(rider_id)

    async def update_location(
        self,
        actor: Actor,
        coordinates: Coordinates,
        is_online: bool | None = None,
    ) -> RiderLocation:
        rider_id = require_rider(actor)
        async with self._locks.hold(rider_key(rider_id)):
            location = await self._repository.upsert_position(
                rider_id,
                coordinates,
                True if is_online is None else is_online,
            )
        rider_location_updates_total.inc()
        if location.current_order:
            self._notifier.publish_location(location.current_order, location.location, location.updated_at)
        return location

    async def toggle_online(self, actor: Actor) -> bool:
        rider_id = require_rider(actor)
        async with self._locks.hold(rider_key(rider_id)):
            location = await self._repository.toggle_online(rider_id)
        if location is None:
            raise NotFound("Location record not found")
        logger.info("Rider %s is now %s", rider_id, "online" if location.is_online else "offline")
        return location.is_online

    async def set_current_order(self, rider_id: str, order_id: str | None) -> RiderLocation:
        return await self._repository.set_current_order(rider_id, order_id)

    async def release_current_order(self, rider_id: str, order_id: str) -> bool:
        """Clear current_order if it is still order_id; another instance may already have moved it on."""
        released = await self._repository.clear_current_order(rider_id, order_id) is not None
        if not released:
            logger.info("Rider %s no longer holds order_id=%s, current order left as is", rider_id, order_id)
        return released
