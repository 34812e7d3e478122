# This file bootstraps the FastAPI app, wires up the logging and metrics
# middlewares and includes the routers for access checks, the block list,
# the event log and detector settings.

import os

from fastapi import FastAPI, Response
from fastapi.responses import JSONResponse
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

import zerospam.models  # noqa: F401  registers tables on Base.metadata
from zerospam.access.log_writer import reset_event_log_writer
from zerospam.core.db import Base, engine
from zerospam.core.errors import BlockValidationError
from zerospam.core.logging import APILoggingMiddleware
from zerospam.core.metrics import MetricsMiddleware
from zerospam.core.middleware import RequestContextMiddleware

from zerospam.api.access import router as access_router
from zerospam.api.blocked import router as blocked_router
from zerospam.api.log import router as log_router
from zerospam.api.settings import router as settings_router

# Create DB tables right away so the app doesn't hit missing schema
# issues later. Deployments that run Alembic set SKIP_MIGRATIONS=1.
if os.getenv("SKIP_MIGRATIONS") != "1":
    Base.metadata.create_all(bind=engine)

app = FastAPI(title="Zero Spam")


@app.exception_handler(BlockValidationError)
def handle_block_validation(_request, exc: BlockValidationError):
    response = JSONResponse(status_code=exc.status_code, content=exc.to_payload())
    response.headers["X-Error-Code"] = exc.error_code
    return response


@app.on_event("shutdown")
def _flush_event_log() -> None:
    reset_event_log_writer()


# Observability layers: structured request logs and Prometheus metrics.
app.add_middleware(APILoggingMiddleware)
app.add_middleware(MetricsMiddleware)

for router in (access_router, blocked_router, log_router, settings_router):
    app.include_router(router)

# Attach request context (request_id, client_ip) early.
app.add_middleware(RequestContextMiddleware)


@app.get("/metrics", include_in_schema=False)
def metrics() -> Response:
    return Response(generate_latest(), media_type=CONTENT_TYPE_LATEST)


@app.get("/ping")
def ping():
    return {"message": "pong"}
