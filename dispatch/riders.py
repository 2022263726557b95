import logging

from dispatch.errors import Forbidden, NotFound, ValidationFailed
from dispatch.models import Actor, Coordinates, Page, Rider, RiderSummary, Role
from dispatch.repository import Repository

logger = logging.getLogger(__name__)


def require_admin(actor: Actor) -> None:
    if actor.role != Role.ADMIN:
        raise Forbidden("Only administrators can manage riders")


class RiderDirectory:
    """Administrator-facing rider records. Deactivated riders cannot receive new orders."""

    def __init__(self, repository: Repository, max_page_size: int = 100):
        self._repository = repository
        self._max_page_size = max_page_size

    async def create_rider(
        self,
        actor: Actor,
        name: str,
        phone: str,
        license_number: str | None = None,
        vehicle_type: str | None = None,
        vehicle_number: str | None = None,
    ) -> Rider:
        require_admin(actor)
        if not name.strip() or not phone.strip():
            raise ValidationFailed("Rider name and phone are required")
        rider = await self._repository.insert_rider(Rider(
            name=name,
            phone=phone,
            license_number=license_number,
            vehicle_type=vehicle_type,
            vehicle_number=vehicle_number,
        ))
        await self._repository.upsert_position(rider.id, Coordinates(latitude=0, longitude=0), False)
        logger.info("Created rider=%s", rider.id)
        return rider

    async def toggle_active(self, actor: Actor, rider_id: str) -> Rider:
        require_admin(actor)
        rider = await self._repository.get_rider(rider_id)
        if rider is None:
            raise NotFound("Rider not found")
        rider = await self._repository.set_rider_active(rider_id, not rider.is_active)
        if rider is None:
            raise NotFound("Rider not found")
        logger.info("Rider %s %s", rider_id, "activated" if rider.is_active else "deactivated")
        return rider

    async def list_riders(
        self,
        actor: Actor,
        active: bool | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> Page:
        require_admin(actor)
        if page < 1 or limit < 1:
            raise ValidationFailed("page and limit must be positive")
        limit = min(limit, self._max_page_size)
        riders, total = await self._repository.list_riders(active, (page - 1) * limit, limit)
        summaries = []
        for rider in riders:
            location = await self._repository.get_location(rider.id)
            active_order = await self._repository.find_active_order(rider.id)
            summaries.append(RiderSummary(
                rider=rider,
                is_online=location.is_online if location else False,
                current_location=location.location if location else None,
                has_active_order=active_order is not None,
            ))
        return Page.build(summaries, total, page, limit)
