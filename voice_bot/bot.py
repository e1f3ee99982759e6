"""
Voice bot: joins LiveKit rooms on request and runs one channel session per room.
"""
from __future__ import annotations

import asyncio
from typing import Callable, Dict, List, Optional, Set

from livekit import rtc

from logging_setup import get_logger, Component as LogComponent

from .config import BotConfig, get_config
from .errors import JoinTimeoutError, SessionExistsError, SessionNotFoundError
from .livekit_transport import RoomConnection, build_join_token
from .personas import load_persona
from .services import build_services
from .session import ChannelSession, SessionRegistry

logger = get_logger(LogComponent.LIVEKIT_TRANSPORT)


class VoiceBot:
    def __init__(
        self,
        config: BotConfig,
        registry: SessionRegistry,
        *,
        room_factory: Callable[[], rtc.Room] = rtc.Room,
        connection_factory: Callable[..., RoomConnection] = RoomConnection,
    ):
        self.config = config
        self.registry = registry
        self._room_factory = room_factory
        self._connection_factory = connection_factory
        self._connections: Dict[str, RoomConnection] = {}
        self._joining: Set[str] = set()

    def is_joined(self, room_name: str) -> bool:
        return room_name in self._connections or room_name in self._joining

    async def join(self, room_name: str) -> ChannelSession:
        """
        Connect to a room and start listening.

        Raises:
            SessionExistsError: the bot is already in (or joining) this room
            JoinTimeoutError: the connection was not ready in time
        """
        if self.is_joined(room_name) or room_name in self.registry:
            raise SessionExistsError(room_name)

        self._joining.add(room_name)
        try:
            room = self._room_factory()
            token = build_join_token(self.config, room_name)
            try:
                await asyncio.wait_for(
                    room.connect(self.config.livekit_url, token),
                    timeout=self.config.join_timeout_seconds,
                )
            except asyncio.TimeoutError:
                logger.warning(
                    "Room connection not ready in time",
                    session_id=room_name,
                    timeout_seconds=self.config.join_timeout_seconds,
                )
                await self._disconnect_quietly(room, room_name)
                raise JoinTimeoutError(room_name)

            connection = self._connection_factory(
                room,
                room_name,
                self.registry,
                self.config,
                on_closed=self._connection_closed,
            )
            try:
                session = await connection.start()
            except Exception:
                await self._disconnect_quietly(room, room_name)
                raise
            self._connections[room_name] = connection
        finally:
            self._joining.discard(room_name)

        logger.info("Joined room", session_id=room_name)
        return session

    async def _disconnect_quietly(self, room: rtc.Room, room_name: str) -> None:
        try:
            await room.disconnect()
        except Exception as e:
            logger.warning(
                "Error disconnecting from room",
                session_id=room_name,
                error=str(e),
                error_type=type(e).__name__,
            )

    def _connection_closed(self, room_name: str) -> None:
        self._connections.pop(room_name, None)

    async def leave(self, room_name: str, reason: str = "left") -> None:
        connection = self._connections.get(room_name)
        if connection is None:
            raise SessionNotFoundError(room_name)
        await connection.close(reason)
        self._connections.pop(room_name, None)
        logger.info("Left room", session_id=room_name, reason=reason)

    def clear_history(self, room_name: str) -> None:
        self.registry.require(room_name).clear_history()
        logger.info("History cleared", session_id=room_name)

    def get_session(self, room_name: str) -> ChannelSession:
        return self.registry.require(room_name)

    def list_sessions(self) -> List[ChannelSession]:
        return self.registry.list()

    async def shutdown(self) -> None:
        for room_name in list(self._connections):
            await self.leave(room_name, reason="shutdown")
        self.registry.destroy_all("shutdown")
        await self.registry.services.aclose()


def create_voice_bot(config: Optional[BotConfig] = None) -> VoiceBot:
    """Build a bot from configuration: persona, AI services and session registry."""
    config = config or get_config()
    persona = load_persona(config.persona)
    registry = SessionRegistry(
        build_services(config),
        persona,
        bot_identity=config.bot_identity,
        min_segment_ms=config.min_segment_ms,
        max_segment_ms=config.max_segment_ms,
        history_max_entries=config.history_max_entries,
        service_timeout=config.service_timeout_seconds,
    )
    logger.info(
        "Voice bot configured",
        persona=persona.name,
        language=persona.language,
        tts_provider=config.tts_provider,
    )
    return VoiceBot(config, registry)
