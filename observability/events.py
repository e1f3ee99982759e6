"""
Structured JSON event emission for the voice bot.

Every event is written as one JSON line to stdout and kept in the in-memory
event store so the control API can answer per-room timeline queries.
Transcript and reply text never appear in events, only their lengths.
"""

from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional

from .event_store import event_store


class Component(str, Enum):
    """Event sources."""

    CONTROL_PLANE = "control_plane"
    SESSION_REGISTRY = "session_registry"
    CAPTURE = "capture"
    TURN_CONTROLLER = "turn_controller"
    PLAYBACK = "playback"
    LIVEKIT_TRANSPORT = "livekit_transport"


class Severity(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"


DEFAULT_PII = {"contains_pii": False, "fields": [], "handling": "none"}


class EventEmitter:
    """Emits structured events for one component."""

    def __init__(self, component: Component):
        self.component = component

    def emit(
        self,
        event_type: str,
        session_id: str,
        severity: Severity = Severity.INFO,
        correlation_id: Optional[str] = None,
        pii: Optional[Dict[str, Any]] = None,
        **kwargs: Any,
    ) -> None:
        """
        Emit one event.

        Args:
            event_type: Stable dotted name, e.g. "turn.started"
            session_id: Room name of the channel session
            severity: Event severity
            correlation_id: Turn or command id; defaults to session_id
            pii: PII marker block
            **kwargs: Event-specific fields
        """
        event = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "session_id": session_id,
            "component": self.component.value,
            "event_type": event_type,
            "severity": severity.value,
            "correlation_id": correlation_id or session_id,
            "pii": pii or DEFAULT_PII,
        }
        event.update(kwargs)

        sys.stdout.write(json.dumps(event, ensure_ascii=False, default=str))
        sys.stdout.write("\n")
        sys.stdout.flush()

        event_store.store(event)

    def segment_captured(self, session_id: str, participant: str, duration_ms: int, size_bytes: int) -> None:
        self.emit(
            "segment.captured",
            session_id,
            participant=participant,
            duration_ms=duration_ms,
            size_bytes=size_bytes,
        )

    def segment_discarded(self, session_id: str, participant: str, duration_ms: int, reason: str) -> None:
        self.emit(
            "segment.discarded",
            session_id,
            severity=Severity.DEBUG,
            participant=participant,
            duration_ms=duration_ms,
            reason=reason,
        )

    def turn_event(
        self,
        event_type: str,
        session_id: str,
        turn_id: str,
        severity: Severity = Severity.INFO,
        **kwargs: Any,
    ) -> None:
        """Emit a turn.* event correlated by turn id."""
        self.emit(event_type, session_id, severity=severity, correlation_id=turn_id, **kwargs)

    def provider_error(
        self,
        session_id: str,
        turn_id: str,
        service: str,
        category: str,
        error_class: str,
    ) -> None:
        self.emit(
            "provider.error",
            session_id,
            severity=Severity.WARN,
            correlation_id=turn_id,
            service=service,
            category=category,
            error_class=error_class,
        )
