"""
Binds a pending order to an active rider. A rider holds at most one order in
assigned/picked_up/in_transit at any time.

The busy check and the write happen under the rider's and the order's locks; the repository's
conditional update repeats the check atomically, so a race lost to another process is still
reported as Conflict instead of overwriting.
"""
import logging

from dispatch.errors import Conflict, Forbidden, NotFound
from dispatch.locations import LocationStore
from dispatch.locks import KeyedLocks, order_key, rider_key
from dispatch.metrics import assignment_conflicts_total, assignments_total
from dispatch.models import Actor, Order, OrderStatus, Role
from dispatch.notifier import EventNotifier
from dispatch.repository import Repository

logger = logging.getLogger(__name__)


class AssignmentCoordinator:
    def __init__(
        self,
        repository: Repository,
        notifier: EventNotifier,
        locations: LocationStore,
        locks: KeyedLocks,
    ):
        self._repository = repository
        self._notifier = notifier
        self._locations = locations
        self._locks = locks

    async def assign(self, order_id: str, rider_id: str, actor: Actor) -> Order:
        if actor.role != Role.ADMIN:
            raise Forbidden("Only administrators can assign orders")
        try:
            return await self._assign(order_id, rider_id)
        except Conflict as e:
            assignment_conflicts_total.inc()
            logger.info("Assignment of order_id=%s to rider=%s rejected: %s", order_id, rider_id, e.message)
            raise

    async def _assign(self, order_id: str, rider_id: str) -> Order:
        async with self._locks.hold(order_key(order_id), rider_key(rider_id)):
            order = await self._repository.get_order(order_id)
            if order is None:
                raise NotFound("Order not found")
            rider = await self._repository.get_rider(rider_id)
            if rider is None or not rider.is_active:
                raise NotFound("Rider not found or inactive")
            if order.status != OrderStatus.PENDING:
                raise Conflict(f"Order is {order.status.value}, only pending orders can be assigned")
            if await self._repository.find_active_order(rider_id) is not None:
                raise Conflict("Rider already has an active order")

            expected_version = order.version
            order.rider = rider_id
            entry = order.append_timeline(OrderStatus.ASSIGNED, "Order assigned to rider")
            order = await self._repository.update_order(order, expected_version)
            await self._locations.set_current_order(rider_id, order.id)

        assignments_total.inc()
        logger.info("Assigned order_id=%s to rider=%s", order.id, rider_id)
        self._notifier.publish_status(order.id, OrderStatus.ASSIGNED, entry.timestamp)
        return order
