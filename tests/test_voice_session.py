from __future__ import annotations

import asyncio
from typing import Any, Optional

import pytest

from voicechat.services.voice_session import VoiceConnectionManager, VoiceSession


class FakeWebSocket:
    def __init__(self, fail_sends: bool = False) -> None:
        self.fail_sends = fail_sends
        self.accepted = False
        self.close_code: Optional[int] = None
        self.sent: list[dict[str, Any]] = []

    async def accept(self) -> None:
        self.accepted = True

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        self.close_code = code

    async def send_json(self, data: dict[str, Any]) -> None:
        if self.fail_sends:
            raise RuntimeError("socket gone")
        self.sent.append(data)


@pytest.mark.asyncio
async def test_reconnect_closes_and_silences_previous_session() -> None:
    manager = VoiceConnectionManager()
    old_socket = FakeWebSocket()
    new_socket = FakeWebSocket()

    old = await manager.connect(old_socket, "kiosk")  # type: ignore[arg-type]
    new = await manager.connect(new_socket, "kiosk")  # type: ignore[arg-type]

    assert manager.get_session("kiosk") is new
    assert old_socket.close_code == 4000
    assert new_socket.close_code is None
    assert old.closed
    assert old.sender_task is not None and old.sender_task.done()

    old.publish({"type": "state", "state": "thinking"})
    assert old.outbox.empty()

    new.publish({"type": "state", "state": "idle"})
    await manager.disconnect_all()
    assert new_socket.sent == [{"type": "state", "state": "idle"}]


@pytest.mark.asyncio
async def test_failed_send_stops_queueing() -> None:
    session = VoiceSession(client_id="kiosk", websocket=FakeWebSocket(fail_sends=True))  # type: ignore[arg-type]
    session.sender_task = asyncio.create_task(session.run_sender())

    session.publish({"type": "state", "state": "thinking"})
    await asyncio.wait_for(session.sender_task, timeout=2)

    assert session.closed
    for _ in range(10):
        session.publish({"type": "queue", "pending": 1, "playing": True})
    assert session.outbox.empty()


@pytest.mark.asyncio
async def test_disconnect_flushes_queued_messages() -> None:
    manager = VoiceConnectionManager()
    socket = FakeWebSocket()
    session = await manager.connect(socket, "kiosk")  # type: ignore[arg-type]

    session.publish({"type": "stop_audio"})
    session.publish({"type": "set_muted", "muted": True})
    await manager.disconnect("kiosk")

    assert socket.sent == [{"type": "stop_audio"}, {"type": "set_muted", "muted": True}]
    assert manager.get_session("kiosk") is None
    assert session.closed
