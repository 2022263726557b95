import asyncio

import pytest

from _helper import ADMIN, BUSINESS, add_rider, create_order, drain, make_core, rider_actor
from dispatch.errors import Forbidden, NotFound
from dispatch.models import Actor, Coordinates, Role
from dispatch.notifier import LOCATION_UPDATE

HERE = Coordinates(latitude=6.93, longitude=79.84)


def test_update_location_creates_record_without_current_order():
    core = make_core()
    rider = Actor(id="rider-new", role=Role.RIDER)

    async def scenario():
        location = await core.locations.update_location(rider, HERE)
        assert location.rider == "rider-new"
        assert location.location == HERE
        assert location.is_online is True
        assert location.current_order is None

        location = await core.locations.update_location(rider, HERE, is_online=False)
        assert location.is_online is False

    asyncio.run(scenario())


def test_update_location_without_current_order_publishes_nothing():
    core = make_core()

    async def scenario():
        rider = await add_rider(core)
        order = await create_order(core)
        subscription = await core.notifier.subscribe(order.id)
        await core.locations.update_location(rider_actor(rider), HERE)
        await core.notifier.flush()
        assert drain(subscription) == []

    asyncio.run(scenario())


def test_update_location_publishes_to_current_order_channel():
    core = make_core()

    async def scenario():
        rider = await add_rider(core)
        order = await create_order(core)
        await core.assignments.assign(order.id, rider.id, ADMIN)
        subscription = await core.notifier.subscribe(order.id)

        await core.locations.update_location(rider_actor(rider), HERE)
        await core.notifier.flush()

        events = drain(subscription)
        assert len(events) == 1
        assert events[0]["event"] == LOCATION_UPDATE
        assert events[0]["order_id"] == order.id
        assert events[0]["location"] == {"latitude": 6.93, "longitude": 79.84}

    asyncio.run(scenario())


def test_update_location_keeps_current_order():
    core = make_core()

    async def scenario():
        rider = await add_rider(core)
        order = await create_order(core)
        await core.assignments.assign(order.id, rider.id, ADMIN)
        location = await core.locations.update_location(rider_actor(rider), HERE)
        assert location.current_order == order.id

    asyncio.run(scenario())


def test_toggle_online_flips_flag():
    core = make_core()

    async def scenario():
        rider = await add_rider(core)
        # riders start offline
        assert await core.locations.toggle_online(rider_actor(rider)) is True
        assert await core.locations.toggle_online(rider_actor(rider)) is False

    asyncio.run(scenario())


def test_toggle_online_without_record_is_not_found():
    core = make_core()

    async def scenario():
        with pytest.raises(NotFound):
            await core.locations.toggle_online(Actor(id="ghost", role=Role.RIDER))

    asyncio.run(scenario())


def test_only_riders_update_their_location():
    core = make_core()

    async def scenario():
        with pytest.raises(Forbidden):
            await core.locations.update_location(BUSINESS, HERE)
        with pytest.raises(Forbidden):
            await core.locations.toggle_online(ADMIN)

    asyncio.run(scenario())


def test_release_only_clears_the_matching_order():
    core = make_core()

    async def scenario():
        rider = await add_rider(core)
        await core.locations.set_current_order(rider.id, "o2")
        assert await core.locations.release_current_order(rider.id, "o1") is False
        assert (await core.locations.get(rider.id)).current_order == "o2"

        assert await core.locations.release_current_order(rider.id, "o2") is True
        assert (await core.locations.get(rider.id)).current_order is None
        assert await core.locations.release_current_order("ghost", "o2") is False

    asyncio.run(scenario())
