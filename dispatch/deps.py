"""
Request-scoped dependencies: the process-wide core and the calling actor.
Identity comes from the auth layer in front of this service as X-User-Id / X-User-Role headers.
"""
from fastapi import Header
from starlette.requests import HTTPConnection

from dispatch.core import DispatchCore
from dispatch.models import Actor, Role


def get_core(conn: HTTPConnection) -> DispatchCore:
    return conn.app.state.core


def get_actor(
    x_user_id: str = Header(..., min_length=1),
    x_user_role: Role = Header(...),
) -> Actor:
    return Actor(id=x_user_id, role=x_user_role)
