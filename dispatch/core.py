"""
Wires the dispatch core. Backends: in-memory by default, PostgreSQL when
REPOSITORY_BACKEND=postgres and Redis pub/sub when NOTIFIER_BACKEND=redis.
"""
import logging
from dataclasses import dataclass

from dispatch.assignment import AssignmentCoordinator
from dispatch.config import Settings, settings as default_settings
from dispatch.locations import LocationStore
from dispatch.locks import KeyedLocks
from dispatch.notifier import EventNotifier, MemoryEventNotifier, RedisEventNotifier
from dispatch.orders import OrderLifecycleEngine
from dispatch.redis_client import close_redis, get_redis
from dispatch.repository import MemoryRepository, Repository
from dispatch.riders import RiderDirectory

logger = logging.getLogger(__name__)


@dataclass
class DispatchCore:
    repository: Repository
    notifier: EventNotifier
    locks: KeyedLocks
    locations: LocationStore
    orders: OrderLifecycleEngine
    assignments: AssignmentCoordinator
    riders: RiderDirectory

    @classmethod
    def build(
        cls,
        repository: Repository,
        notifier: EventNotifier,
        enforce_transitions: bool = True,
        lock_timeout: float = 5.0,
        max_page_size: int = 100,
    ) -> "DispatchCore":
        locks = KeyedLocks(timeout=lock_timeout)
        locations = LocationStore(repository, notifier, locks)
        return cls(
            repository=repository,
            notifier=notifier,
            locks=locks,
            locations=locations,
            orders=OrderLifecycleEngine(
                repository,
                notifier,
                locations,
                locks,
                enforce_transitions=enforce_transitions,
                max_page_size=max_page_size,
            ),
            assignments=AssignmentCoordinator(repository, notifier, locations, locks),
            riders=RiderDirectory(repository, max_page_size=max_page_size),
        )

    async def aclose(self) -> None:
        await self.notifier.aclose()
        await self.repository.close()


async def create_core(config: Settings | None = None) -> DispatchCore:
    config = config or default_settings
    if config.repository_backend == "postgres":
        from dispatch.db import create_repository
        repository: Repository = await create_repository()
    else:
        repository = MemoryRepository()

    if config.notifier_backend == "redis":
        notifier: EventNotifier = RedisEventNotifier(
            await get_redis(),
            channel_prefix=config.event_channel_prefix,
            shutdown_wait_sec=config.publish_shutdown_wait_sec,
        )
    else:
        notifier = MemoryEventNotifier(
            channel_prefix=config.event_channel_prefix,
            shutdown_wait_sec=config.publish_shutdown_wait_sec,
        )

    logger.info(
        "Dispatch core ready. Repository=%s Notifier=%s enforce_transitions=%s",
        config.repository_backend,
        config.notifier_backend,
        config.enforce_transitions,
    )
    return DispatchCore.build(
        repository,
        notifier,
        enforce_transitions=config.enforce_transitions,
        lock_timeout=config.lock_timeout_seconds,
        max_page_size=config.max_page_size,
    )


async def close_core(core: DispatchCore) -> None:
    await core.aclose()
    await close_redis()
    logger.info("Dispatch core stopped.")
