import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse, Response

from dispatch.config import settings
from dispatch.core import close_core, create_core
from dispatch.errors import DispatchError
from dispatch.metrics import get_metrics_bytes, get_metrics_content_type
from dispatch.routes import admin, orders, riders, tracking

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.core = await create_core(settings)
    yield
    await close_core(app.state.core)


app = FastAPI(title="Delivery Dispatch", lifespan=lifespan)
app.include_router(orders.router)
app.include_router(riders.router)
app.include_router(admin.router)
app.include_router(tracking.router)


@app.exception_handler(DispatchError)
async def dispatch_error_handler(request: Request, exc: DispatchError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint: order lifecycle, assignment contention, event publication."""
    return Response(
        content=get_metrics_bytes(),
        media_type=get_metrics_content_type(),
    )
