# Access check endpoint: form handlers and page guards post a visitor
# event here and get back the merged allow/block decision.

import asyncio
import logging
from threading import Event

from fastapi import APIRouter, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from zerospam.access.engine import decide
from zerospam.detectors import VisitorEvent
from zerospam.schemas.access import AccessCheckRequest, DecisionRead

router = APIRouter(prefix="/access", tags=["access"])
logger = logging.getLogger(__name__)

DISCONNECT_POLL_SECONDS = 0.1


async def watch_disconnect(request: Request, cancel_event: Event) -> None:
    """Set `cancel_event` once the client goes away."""
    while not cancel_event.is_set():
        if await request.is_disconnected():
            logger.info("access.client_disconnected", extra={"client_ip": getattr(request.state, "client_ip", None)})
            cancel_event.set()
            return
        await asyncio.sleep(DISCONNECT_POLL_SECONDS)


# POST /access/check
#
# The visitor IP defaults to the caller's resolved client IP, so a site
# can check its own visitors by proxying their request. Pending detectors
# are abandoned if the caller disconnects mid-evaluation.
@router.post("/check", response_model=DecisionRead)
async def check_access(payload: AccessCheckRequest, request: Request):
    ip = payload.ip or getattr(request.state, "client_ip", None)
    try:
        kwargs = {"ip": ip, "metadata": payload.metadata}
        if payload.timestamp is not None:
            kwargs["timestamp"] = payload.timestamp
        event = VisitorEvent(**kwargs)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail="A valid visitor IP address is required",
        )

    cancel_event = Event()
    watcher = asyncio.create_task(watch_disconnect(request, cancel_event))
    try:
        decision = await run_in_threadpool(decide, event, cancel_event=cancel_event)
    finally:
        cancel_event.set()
        watcher.cancel()
    return decision.to_dict()
