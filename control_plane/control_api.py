"""
Control API for the voice bot.

This module exposes:
- Write API: join a room, leave a room, clear a room's history
- Read API: list sessions, get session status, query events

Every write command emits auditable events: control.command_received and
control.command_applied (result ok / error).
"""

from __future__ import annotations

import inspect
import time
from datetime import datetime
from typing import Any, Callable, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from logging_setup import get_logger, Component as LogComponent
from observability.events import Component as ObsComponent, EventEmitter, Severity
from observability.event_store import event_store
from voice_bot.bot import VoiceBot
from voice_bot.errors import JoinTimeoutError, SessionExistsError, SessionNotFoundError
from voice_bot.session import ChannelSession


router = APIRouter(prefix="/control", tags=["control"])
emitter = EventEmitter(ObsComponent.CONTROL_PLANE)
logger = get_logger(LogComponent.CONTROL_PLANE)

_voice_bot: Optional[VoiceBot] = None


def set_voice_bot(bot: Optional[VoiceBot]) -> None:
    global _voice_bot
    _voice_bot = bot


def get_voice_bot() -> VoiceBot:
    """Dependency: the running bot (overridden in tests)."""
    if _voice_bot is None:
        raise HTTPException(status_code=503, detail="bot_not_ready")
    return _voice_bot


class JoinRequest(BaseModel):
    room: str = Field(..., min_length=1, description="LiveKit room name")


class CommandResponse(BaseModel):
    status: str


class SessionStatus(BaseModel):
    session_id: str
    state: str
    created_at: str
    ended_at: Optional[str] = None
    end_reason: Optional[str] = None
    recording: bool
    recording_participant: Optional[str] = None
    turn_state: str
    history_length: int
    pending_playback: int


def _to_status(session: ChannelSession) -> SessionStatus:
    return SessionStatus(**session.status())


def _new_correlation_id() -> str:
    return f"cmd_{int(time.time() * 1000)}"


# Stable error surface: no internal traces leak to the caller
_ERROR_RESPONSES = {
    SessionExistsError: (409, "session_exists"),
    SessionNotFoundError: (404, "session_not_found"),
    JoinTimeoutError: (504, "join_timeout"),
}


async def _apply(command: str, room: str, action: Callable[[], Any]) -> Any:
    correlation_id = _new_correlation_id()
    emitter.emit(
        "control.command_received",
        session_id=room,
        severity=Severity.INFO,
        correlation_id=correlation_id,
        command=command,
    )

    try:
        result = action()
        if inspect.isawaitable(result):
            result = await result
    except Exception as e:
        status_code, detail = _ERROR_RESPONSES.get(type(e), (502, f"{command.split('.')[-1]}_failed"))
        if status_code == 502:
            logger.error(
                "Control command failed",
                session_id=room,
                command=command,
                error=str(e),
                error_type=type(e).__name__,
            )
        emitter.emit(
            "control.command_applied",
            session_id=room,
            severity=Severity.ERROR if status_code == 502 else Severity.WARN,
            correlation_id=correlation_id,
            command=command,
            result="error",
            error_class=type(e).__name__,
        )
        raise HTTPException(status_code=status_code, detail=detail)

    emitter.emit(
        "control.command_applied",
        session_id=room,
        severity=Severity.INFO,
        correlation_id=correlation_id,
        command=command,
        result="ok",
    )
    return result


# --- Write API ---


@router.post("/sessions", response_model=SessionStatus, status_code=201)
async def join_room(req: JoinRequest, bot: VoiceBot = Depends(get_voice_bot)) -> SessionStatus:
    """Join a room and start listening (409 if already active, 504 on join timeout)."""
    session = await _apply("session.join", req.room, lambda: bot.join(req.room))
    return _to_status(session)


@router.delete("/sessions/{room}", response_model=CommandResponse)
async def leave_room(room: str, bot: VoiceBot = Depends(get_voice_bot)) -> CommandResponse:
    """Leave a room; its conversation history is discarded."""
    await _apply("session.leave", room, lambda: bot.leave(room, reason="control_leave"))
    return CommandResponse(status="ok")


@router.post("/sessions/{room}/clear", response_model=CommandResponse)
async def clear_history(room: str, bot: VoiceBot = Depends(get_voice_bot)) -> CommandResponse:
    await _apply("session.clear_history", room, lambda: bot.clear_history(room))
    return CommandResponse(status="ok")


# --- Read API ---


@router.get("/sessions", response_model=List[SessionStatus])
async def list_sessions(bot: VoiceBot = Depends(get_voice_bot)) -> List[SessionStatus]:
    return [_to_status(s) for s in bot.list_sessions()]


@router.get("/sessions/{room}", response_model=SessionStatus)
async def get_session(room: str, bot: VoiceBot = Depends(get_voice_bot)) -> SessionStatus:
    """Recording state, turn state and history length of an active room."""
    try:
        session = bot.get_session(room)
    except SessionNotFoundError:
        raise HTTPException(status_code=404, detail="session_not_found")
    return _to_status(session)


def _parse_timestamp(name: str, value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        # "+" in a query string may arrive decoded as a space
        cleaned = value.replace(" ", "+").replace("Z", "+00:00")
        if "+" not in cleaned and "-" not in cleaned[-6:]:
            cleaned += "+00:00"
        return datetime.fromisoformat(cleaned)
    except (ValueError, AttributeError):
        raise HTTPException(status_code=400, detail=f"Invalid {name} timestamp: {value}")


@router.get("/sessions/{room}/events")
async def get_session_events(
    room: str,
    event_type: Optional[str] = Query(None, description="Filter by event_type, 'turn.*' matches a prefix"),
    component: Optional[str] = Query(None, description="Filter by component"),
    correlation_id: Optional[str] = Query(None, description="Filter by turn or command id"),
    since: Optional[str] = Query(None, description="ISO timestamp (inclusive)"),
    until: Optional[str] = Query(None, description="ISO timestamp (inclusive)"),
    limit: Optional[int] = Query(None, ge=1, le=1000, description="Max events to return"),
) -> dict:
    """
    Query events recorded for a room.

    Events outlive the session, so ended rooms can still be inspected.
    """
    events = event_store.query(
        session_id=room,
        event_type=event_type,
        component=component,
        correlation_id=correlation_id,
        since=_parse_timestamp("since", since),
        until=_parse_timestamp("until", until),
        limit=limit,
    )

    return {
        "session_id": room,
        "events": events,
        "count": len(events),
    }
