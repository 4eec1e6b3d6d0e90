"""Webhook receiving execution push events from the execution engine."""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Body, Depends, HTTPException, status
from pydantic import ValidationError

from execution_monitor.dependencies import get_session_manager, verify_token
from execution_monitor.models.api import EventAccepted
from execution_monitor.models.events import parse_event

if TYPE_CHECKING:
    from execution_monitor.services.session_manager import SessionManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/events", tags=["events"], dependencies=[Depends(verify_token)])


@router.post("", response_model=EventAccepted, status_code=status.HTTP_202_ACCEPTED)
async def receive_event(
    payload: dict[str, Any] = Body(...),
    manager: SessionManager = Depends(get_session_manager),
) -> EventAccepted:
    """
    Accept a started/progress/completed/failed event.

    The event is routed to every mounted view of its workspace/agent and
    applied in the background; events for unmounted views are dropped.
    """
    try:
        event = parse_event(payload)
    except ValidationError as e:
        logger.warning(
            "Rejected malformed execution event",
            extra={"event_type": payload.get("type"), "error_count": e.error_count()},
        )
        raise HTTPException(
            status_code=422,
            detail={"error": "InvalidEvent", "message": str(e)},
        ) from e

    dispatched = manager.dispatch(event)
    logger.debug(
        "Execution event received",
        extra={
            "event_type": event.type,
            "execution_id": event.execution_id,
            "dispatched": dispatched,
        },
    )
    return EventAccepted(dispatched=dispatched)
