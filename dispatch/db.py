"""
Async Postgres backend: orders (document + indexed columns), riders, rider_locations.
Order writes run in a single transaction: lock the row, check the version, update.
A partial unique index on orders(rider_id) over the active statuses makes "one active order
per rider" hold across processes; a violation surfaces as Conflict.
"""

from datetime import datetime

import asyncpg
from asyncpg.exceptions import UniqueViolationError

from dispatch.config import settings
from dispatch.errors import Conflict
from dispatch.models import Coordinates, Order, OrderStatus, Rider, RiderLocation, utcnow
from dispatch.order_state import ACTIVE_STATUSES
from dispatch.repository import Repository

_pool: asyncpg.Pool | None = None

_ACTIVE_SQL = ", ".join(f"'{s.value}'" for s in sorted(ACTIVE_STATUSES, key=lambda s: s.value))


async def get_pool() -> asyncpg.Pool:
    global _pool
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=settings.db_pool_min_size,
            max_size=settings.db_pool_max_size,
            command_timeout=60,
        )
    return _pool


async def close_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def init_schema(pool: asyncpg.Pool) -> None:
    async with pool.acquire() as conn:
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS orders (
                id VARCHAR(64) PRIMARY KEY,
                business_id VARCHAR(64) NOT NULL,
                rider_id VARCHAR(64),
                status VARCHAR(20) NOT NULL,
                version INT NOT NULL DEFAULT 0,
                document JSONB NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute(f"""
            CREATE UNIQUE INDEX IF NOT EXISTS uq_orders_rider_active
            ON orders(rider_id) WHERE status IN ({_ACTIVE_SQL});
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_business_id ON orders(business_id);
        """)
        await conn.execute("""
            CREATE INDEX IF NOT EXISTS idx_orders_status ON orders(status);
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS riders (
                id VARCHAR(64) PRIMARY KEY,
                is_active BOOLEAN NOT NULL DEFAULT TRUE,
                document JSONB NOT NULL,
                created_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute("""
            CREATE TABLE IF NOT EXISTS rider_locations (
                rider_id VARCHAR(64) PRIMARY KEY,
                latitude DOUBLE PRECISION NOT NULL DEFAULT 0,
                longitude DOUBLE PRECISION NOT NULL DEFAULT 0,
                is_online BOOLEAN NOT NULL DEFAULT FALSE,
                current_order_id VARCHAR(64),
                updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
            );
        """)


def _location_from_row(row: asyncpg.Record) -> RiderLocation:
    return RiderLocation(
        rider=row["rider_id"],
        location=Coordinates(latitude=row["latitude"], longitude=row["longitude"]),
        is_online=row["is_online"],
        current_order=row["current_order_id"],
        updated_at=row["updated_at"],
    )


class PostgresRepository(Repository):
    def __init__(self, pool: asyncpg.Pool):
        self._pool = pool

    async def close(self) -> None:
        await close_pool()

    async def insert_order(self, order: Order) -> Order:
        async with self._pool.acquire() as conn:
            try:
                await conn.execute(
                    """
                    INSERT INTO orders (id, business_id, rider_id, status, version, document, created_at, updated_at)
                    VALUES ($1, $2, $3, $4, $5, $6::jsonb, $7, $8);
                    """,
                    order.id,
                    order.business,
                    order.rider,
                    order.status.value,
                    order.version,
                    order.model_dump_json(),
                    order.created_at,
                    order.updated_at,
                )
            except UniqueViolationError:
                raise Conflict(f"Order {order.id} already exists")
        return order

    async def get_order(self, order_id: str) -> Order | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT document FROM orders WHERE id = $1;", order_id)
        return Order.model_validate_json(row["document"]) if row else None

    async def update_order(self, order: Order, expected_version: int) -> Order:
        stored = order.model_copy(update={"version": expected_version + 1})
        async with self._pool.acquire() as conn:
            try:
                async with conn.transaction():
                    row = await conn.fetchrow(
                        "SELECT version FROM orders WHERE id = $1 FOR UPDATE;",
                        order.id,
                    )
                    if row is None or row["version"] != expected_version:
                        raise Conflict(f"Order {order.id} was modified concurrently")
                    await conn.execute(
                        """
                        UPDATE orders
                        SET rider_id = $1, status = $2, version = $3, document = $4::jsonb, updated_at = $5
                        WHERE id = $6;
                        """,
                        stored.rider,
                        stored.status.value,
                        stored.version,
                        stored.model_dump_json(),
                        stored.updated_at,
                        stored.id,
                    )
            except UniqueViolationError:
                raise Conflict("Rider already has an active order")
        return stored

    async def find_active_order(self, rider_id: str) -> Order | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                f"SELECT document FROM orders WHERE rider_id = $1 AND status IN ({_ACTIVE_SQL}) LIMIT 1;",
                rider_id,
            )
        return Order.model_validate_json(row["document"]) if row else None

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
        where = """
            WHERE ($1::text IS NULL OR business_id = $1)
              AND ($2::text IS NULL OR rider_id = $2)
              AND ($3::text IS NULL OR status = $3)
              AND ($4::timestamptz IS NULL OR created_at >= $4)
              AND ($5::timestamptz IS NULL OR created_at <= $5)
        """
        args = (business_id, rider_id, status.value if status else None, created_from, created_to)
        async with self._pool.acquire() as conn:
            total = await conn.fetchval(f"SELECT COUNT(*) FROM orders {where};", *args)
            rows = await conn.fetch(
                f"SELECT document FROM orders {where} ORDER BY created_at DESC LIMIT $6 OFFSET $7;",
                *args,
                limit,
                offset,
            )
        return [Order.model_validate_json(r["document"]) for r in rows], total

    async def insert_rider(self, rider: Rider) -> Rider:
        async with self._pool.acquire() as conn:
            try:
                await conn.execute(
                    """
                    INSERT INTO riders (id, is_active, document, created_at)
                    VALUES ($1, $2, $3::jsonb, $4);
                    """,
                    rider.id,
                    rider.is_active,
                    rider.model_dump_json(),
                    rider.created_at,
                )
            except UniqueViolationError:
                raise Conflict(f"Rider {rider.id} already exists")
        return rider

    async def get_rider(self, rider_id: str) -> Rider | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT document, is_active FROM riders WHERE id = $1;", rider_id)
        if row is None:
            return None
        return Rider.model_validate_json(row["document"]).model_copy(update={"is_active": row["is_active"]})

    async def set_rider_active(self, rider_id: str, is_active: bool) -> Rider | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE riders
                SET is_active = $1, document = jsonb_set(document, '{is_active}', to_jsonb($1::boolean))
                WHERE id = $2
                RETURNING document;
                """,
                is_active,
                rider_id,
            )
        return Rider.model_validate_json(row["document"]) if row else None

    async def list_riders(
        self,
        is_active: bool | None = None,
        offset: int = 0,
        limit: int = 10,
    ) -> tuple[list[Rider], int]:
        where = "WHERE ($1::boolean IS NULL OR is_active = $1)"
        async with self._pool.acquire() as conn:
            total = await conn.fetchval(f"SELECT COUNT(*) FROM riders {where};", is_active)
            rows = await conn.fetch(
                f"SELECT document FROM riders {where} ORDER BY created_at DESC LIMIT $2 OFFSET $3;",
                is_active,
                limit,
                offset,
            )
        return [Rider.model_validate_json(r["document"]) for r in rows], total

    async def get_location(self, rider_id: str) -> RiderLocation | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow("SELECT * FROM rider_locations WHERE rider_id = $1;", rider_id)
        return _location_from_row(row) if row else None

    async def upsert_position(
        self,
        rider_id: str,
        location: Coordinates,
        is_online: bool,
    ) -> RiderLocation:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO rider_locations (rider_id, latitude, longitude, is_online, updated_at)
                VALUES ($1, $2, $3, $4, $5)
                ON CONFLICT (rider_id) DO UPDATE
                SET latitude = EXCLUDED.latitude,
                    longitude = EXCLUDED.longitude,
                    is_online = EXCLUDED.is_online,
                    updated_at = EXCLUDED.updated_at
                RETURNING *;
                """,
                rider_id,
                location.latitude,
                location.longitude,
                is_online,
                utcnow(),
            )
        return _location_from_row(row)

    async def toggle_online(self, rider_id: str) -> RiderLocation | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE rider_locations SET is_online = NOT is_online, updated_at = $2
                WHERE rider_id = $1
                RETURNING *;
                """,
                rider_id,
                utcnow(),
            )
        return _location_from_row(row) if row else None

    async def set_current_order(self, rider_id: str, order_id: str | None) -> RiderLocation:
        now = utcnow()
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO rider_locations (rider_id, current_order_id, updated_at)
                VALUES ($1, $2, $3)
                ON CONFLICT (rider_id) DO UPDATE
                SET current_order_id = EXCLUDED.current_order_id, updated_at = EXCLUDED.updated_at
                RETURNING *;
                """,
                rider_id,
                order_id,
                now,
            )
        return _location_from_row(row)

    async def clear_current_order(self, rider_id: str, order_id: str) -> RiderLocation | None:
        async with self._pool.acquire() as conn:
            row = await conn.fetchrow(
                """
                UPDATE rider_locations SET current_order_id = NULL, updated_at = $3
                WHERE rider_id = $1 AND current_order_id = $2
                RETURNING *;
                """,
                rider_id,
                order_id,
                utcnow(),
            )
        return _location_from_row(row) if row else None


async def create_repository() -> PostgresRepository:
    pool = await get_pool()
    await init_schema(pool)
    return PostgresRepository(pool)
