"""
WebSocket tracking: streams one order's status-update and location-update events.
"""
import asyncio
import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from dispatch.core import DispatchCore
from dispatch.deps import get_actor, get_core
from dispatch.errors import DispatchError
from dispatch.models import Actor
from dispatch.notifier import EventNotifier, Subscription

logger = logging.getLogger(__name__)

router = APIRouter(tags=["tracking"])

# Application close codes: 4000 + the HTTP status the error maps to.
CLOSE_CODE_OFFSET = 4000


async def _unsubscribe_on_disconnect(websocket: WebSocket, notifier: EventNotifier, subscription: Subscription) -> None:
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    # Ends the event loop below even while it waits on a quiet channel.
    await notifier.unsubscribe(subscription)


@router.websocket("/ws/orders/{order_id}")
async def track_order(
    websocket: WebSocket,
    order_id: str,
    actor: Actor = Depends(get_actor),
    core: DispatchCore = Depends(get_core),
) -> None:
    await websocket.accept()
    try:
        await core.orders.get(order_id, actor)
    except DispatchError as e:
        await websocket.close(code=CLOSE_CODE_OFFSET + e.status_code, reason=e.message)
        return

    subscription = await core.notifier.subscribe(order_id)
    watcher = asyncio.create_task(_unsubscribe_on_disconnect(websocket, core.notifier, subscription))
    logger.info("%s=%s watching order_id=%s", actor.role.value, actor.id, order_id)
    try:
        await websocket.send_json({"event": "subscribed", "order_id": order_id})
        async for event in subscription:
            await websocket.send_json(event)
    except WebSocketDisconnect:
        pass
    finally:
        if subscription.closed:
            # the watcher saw the disconnect and is releasing the subscription
            await asyncio.gather(watcher, return_exceptions=True)
        else:
            watcher.cancel()
            await core.notifier.unsubscribe(subscription)
        logger.info("Stopped watching order_id=%s", order_id)
