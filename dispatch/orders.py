"""
Order lifecycle engine: creates orders, applies status transitions and owns the timeline.

Every mutation runs under the order's lock (plus the rider's lock when current_order may change),
is persisted with a version check, and then publishes one status event.
"""
import logging
from datetime import date, datetime, timezone

from dispatch.errors import Forbidden, InvalidTransition, NotFound, ValidationFailed
from dispatch.locations import LocationStore, require_rider
from dispatch.locks import KeyedLocks, order_key, rider_key
from dispatch.metrics import order_transitions_total, orders_created_total, transitions_rejected_total
from dispatch.models import Actor, Coordinates, Customer, Order, OrderStatus, Page, Place, Product, Role
from dispatch.notifier import EventNotifier
from dispatch.order_state import RIDER_TARGETS, is_active, is_valid_transition
from dispatch.repository import Repository

logger = logging.getLogger(__name__)


def parse_status(value: str | OrderStatus) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise ValidationFailed(f"Unknown order status: {value!r}")


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def can_view(order: Order, actor: Actor) -> bool:
    if actor.role == Role.ADMIN:
        return True
    if actor.role == Role.BUSINESS:
        return order.business == actor.id
    return order.rider is not None and order.rider == actor.id


class OrderLifecycleEngine:
    def __init__(
        self,
        repository: Repository,
        notifier: EventNotifier,
        locations: LocationStore,
        locks: KeyedLocks,
        enforce_transitions: bool = True,
        max_page_size: int = 100,
    ):
        self._repository = repository
        self._notifier = notifier
        self._locations = locations
        self._locks = locks
        self._enforce_transitions = enforce_transitions
        self._max_page_size = max_page_size

    async def create(
        self,
        actor: Actor,
        pickup: Place,
        dropoff: Place,
        delivery_date: date,
        delivery_time: str,
        customer: Customer,
        product: Product,
    ) -> Order:
        if actor.role != Role.BUSINESS:
            raise Forbidden("Only businesses can create orders")
        for label, value in (
            ("pickup address", pickup.address),
            ("dropoff address", dropoff.address),
            ("delivery time", delivery_time),
            ("customer name", customer.name),
            ("customer phone", customer.phone),
            ("product description", product.description),
        ):
            if not value or not value.strip():
                raise ValidationFailed(f"Missing {label}")

        order = Order(
            business=actor.id,
            pickup_location=pickup,
            dropoff_location=dropoff,
            delivery_date=delivery_date,
            delivery_time=delivery_time,
            customer=customer,
            product=product,
        )
        order.append_timeline(OrderStatus.PENDING, "Order created")
        order = await self._repository.insert_order(order)
        orders_created_total.inc()
        logger.info("Created order_id=%s for business=%s", order.id, actor.id)
        return order

    async def transition(
        self,
        order_id: str,
        actor: Actor,
        new_status: str | OrderStatus,
        notes: str | None = None,
        location: Coordinates | None = None,
    ) -> Order:
        """
        Rider-driven status change. The order must be assigned to the acting rider, otherwise
        NotFound. Entering the active set points the rider's current order at this order; leaving it
        (delivered, failed) releases the pointer if it still refers to this order.
        """
        rider_id = require_rider(actor)
        return await self._advance(order_id, rider_id, parse_status(new_status), notes, location)

    async def fail(self, order_id: str, actor: Actor, reason: str) -> Order:
        rider_id = require_rider(actor)
        if not reason or not reason.strip():
            raise ValidationFailed("A failure reason is required")
        return await self._advance(
            order_id,
            rider_id,
            OrderStatus.FAILED,
            f"Delivery failed: {reason}",
            None,
            failure_reason=reason,
        )

    async def _advance(
        self,
        order_id: str,
        rider_id: str,
        status: OrderStatus,
        notes: str | None,
        location: Coordinates | None,
        failure_reason: str | None = None,
    ) -> Order:
        async with self._locks.hold(order_key(order_id), rider_key(rider_id)):
            order = await self._repository.get_order(order_id)
            if order is None or order.rider != rider_id:
                raise NotFound("Order not found")
            if status not in RIDER_TARGETS or (
                self._enforce_transitions and not is_valid_transition(order.status, status)
            ):
                transitions_rejected_total.labels(
                    current_state=order.status.value,
                    attempted_state=status.value,
                ).inc()
                logger.info("Rejected order_id=%s %s -> %s", order_id, order.status.value, status.value)
                raise InvalidTransition(order.status.value, status.value)

            expected_version = order.version
            entry = order.append_timeline(status, notes, location)
            if status == OrderStatus.DELIVERED:
                order.actual_delivery_time = entry.timestamp
            if failure_reason is not None:
                order.failure_reason = failure_reason
            order = await self._repository.update_order(order, expected_version)

            if is_active(status):
                await self._locations.set_current_order(rider_id, order.id)
            else:
                await self._locations.release_current_order(rider_id, order.id)

        order_transitions_total.labels(status=status.value).inc()
        logger.info("order_id=%s -> %s (rider=%s)", order_id, status.value, rider_id)
        self._notifier.publish_status(order.id, status, entry.timestamp, location, failure_reason)
        return order

    async def cancel(self, order_id: str, actor: Actor, reason: str | None = None) -> Order:
        """Business (own orders) or admin withdraws an order that is still pending."""
        if actor.role == Role.RIDER:
            raise Forbidden("Riders cannot cancel orders")
        async with self._locks.hold(order_key(order_id)):
            order = await self._repository.get_order(order_id)
            if order is None:
                raise NotFound("Order not found")
            if not can_view(order, actor):
                raise Forbidden("Access denied")
            if not is_valid_transition(order.status, OrderStatus.CANCELLED):
                raise InvalidTransition(order.status.value, OrderStatus.CANCELLED.value)
            expected_version = order.version
            entry = order.append_timeline(
                OrderStatus.CANCELLED,
                f"Order cancelled: {reason}" if reason else "Order cancelled",
            )
            order = await self._repository.update_order(order, expected_version)

        order_transitions_total.labels(status=OrderStatus.CANCELLED.value).inc()
        logger.info("order_id=%s cancelled by %s=%s", order_id, actor.role.value, actor.id)
        self._notifier.publish_status(order.id, OrderStatus.CANCELLED, entry.timestamp, reason=reason)
        return order

    async def get(self, order_id: str, actor: Actor) -> Order:
        order = await self._repository.get_order(order_id)
        if order is None:
            raise NotFound("Order not found")
        if not can_view(order, actor):
            raise Forbidden("Access denied")
        return order

    async def list(
        self,
        actor: Actor,
        status: str | OrderStatus | None = None,
        page: int = 1,
        limit: int = 10,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
    ) -> Page:
        """Orders visible to actor, newest first. date_from/date_to bound created_at (naive means UTC)."""
        if page < 1 or limit < 1:
            raise ValidationFailed("page and limit must be positive")
        date_from, date_to = _as_utc(date_from), _as_utc(date_to)
        if date_from and date_to and date_from > date_to:
            raise ValidationFailed("date_from must not be after date_to")
        limit = min(limit, self._max_page_size)
        status = parse_status(status) if status else None
        scope = {}
        if actor.role == Role.BUSINESS:
            scope["business_id"] = actor.id
        elif actor.role == Role.RIDER:
            scope["rider_id"] = actor.id
        orders, total = await self._repository.list_orders(
            status=status,
            offset=(page - 1) * limit,
            limit=limit,
            created_from=date_from,
            created_to=date_to,
            **scope,
        )
        return Page.build(orders, total, page, limit)
