"""Neynar webhook route."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from twincast.container import Container
from twincast.routes.agents import get_container

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("")
async def receive_webhook(
    request: Request,
    x_signature: Optional[str] = Header(default=None),
    container: Container = Depends(get_container),
):
    """Verify and enqueue a Neynar webhook delivery. The raw body is what gets signed."""
    raw_body = await request.body()
    response = await run_in_threadpool(container.ingress.handle, raw_body, x_signature)
    return JSONResponse(status_code=response.status_code, content=response.body)
