import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from fastapi import WebSocket

from voicechat.services.orchestrator import VoiceOrchestrator
from voicechat.services.playback_queue import AudioClip

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class VoiceSession:
    """Tracks the state of a single voice client connection.

    Outbound messages are queued on ``outbox`` and written by a single sender
    task, so synchronous callbacks can publish in order without awaiting.
    """

    client_id: str
    websocket: WebSocket
    orchestrator: Optional[VoiceOrchestrator] = None
    outbox: "asyncio.Queue[Optional[dict[str, Any]]]" = field(
        default_factory=asyncio.Queue
    )
    started_at: datetime = field(default_factory=_utcnow)
    last_activity: datetime = field(default_factory=_utcnow)
    sender_task: Optional[asyncio.Task] = None
    closed: bool = False

    def update_activity(self):
        """Update the last activity timestamp."""
        self.last_activity = _utcnow()

    def publish(self, message: Dict[str, Any]) -> None:
        """Queue a JSON message for this client; dropped once the sender has exited."""
        if self.closed:
            logger.debug(f"Dropping {message.get('type')} for closed session {self.client_id}")
            return
        self.outbox.put_nowait(message)

    async def run_sender(self) -> None:
        """Write queued messages to the socket until None is queued."""
        while True:
            message = await self.outbox.get()
            if message is None:
                return
            try:
                await self.websocket.send_json(message)
            except Exception as e:
                logger.warning(f"Error sending {message.get('type')} to {self.client_id}: {e}")
                self.closed = True
                return


class WebSocketAudioPlayer:
    """Audio-playback collaborator that delegates playback to the client.

    The client answers each ``play_clip`` with ``clip_finished`` or
    ``clip_failed`` carrying the same ``clip_id``.
    """

    def __init__(self, session: VoiceSession):
        self._session = session

    def play(self, clip: AudioClip, *, muted: bool) -> None:
        self._session.publish(
            {
                "type": "play_clip",
                "clip_id": clip.clip_id,
                "url": clip.url,
                "text": clip.text,
                "muted": muted,
            }
        )

    def stop(self) -> None:
        self._session.publish({"type": "stop_audio"})

    def set_muted(self, muted: bool) -> None:
        self._session.publish({"type": "set_muted", "muted": muted})


class VoiceConnectionManager:
    """Manages active WebSocket connections and their sessions."""

    def __init__(self):
        self.active_connections: Dict[str, VoiceSession] = {}

    async def connect(self, websocket: WebSocket, client_id: str) -> VoiceSession:
        """Accept a new WebSocket connection and create a session."""
        await websocket.accept()
        previous = self.active_connections.get(client_id)
        if previous is not None:
            logger.info(f"Replacing existing session for {client_id}")
            await self.disconnect(client_id)
            try:
                await previous.websocket.close(code=4000, reason="Replaced by a new connection")
            except Exception as e:
                logger.debug(f"Replaced socket for {client_id} already closed: {e}")

        session = VoiceSession(client_id=client_id, websocket=websocket)
        session.sender_task = asyncio.create_task(session.run_sender())
        self.active_connections[client_id] = session
        logger.info(f"Client connected: {client_id}")
        return session

    async def disconnect(self, client_id: str) -> None:
        """Tear down a client session and its conversation."""
        session = self.active_connections.pop(client_id, None)
        if session is None:
            return

        if session.orchestrator is not None:
            await session.orchestrator.shutdown()

        session.outbox.put_nowait(None)
        session.closed = True
        if session.sender_task is not None:
            with suppress(asyncio.CancelledError):
                await session.sender_task
        logger.info(f"Client disconnected: {client_id}")

    def get_session(self, client_id: str) -> Optional[VoiceSession]:
        """Retrieve a session by client ID."""
        return self.active_connections.get(client_id)

    async def disconnect_all(self) -> None:
        for client_id in list(self.active_connections):
            await self.disconnect(client_id)


__all__ = ["VoiceConnectionManager", "VoiceSession", "WebSocketAudioPlayer"]
