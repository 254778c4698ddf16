from __future__ import annotations

import json
from typing import Any, Optional

import pytest
from fastapi import FastAPI, WebSocketDisconnect
from fastapi.testclient import TestClient

from voicechat.chat_client import ChatClientError
from voicechat.routers.voice import (
    FALLBACK_SENTENCES,
    get_chat_service,
    get_request_settings,
    get_tts_service,
    router,
)
from voicechat.services.tts_service import TTSError
from voicechat.services.voice_session import VoiceConnectionManager


class DummyChatService:
    def __init__(self, deltas: list[str], error: Optional[Exception] = None) -> None:
        self.deltas = deltas
        self.error = error
        self.prompts: list[str] = []

    async def generate_deltas(self, user_message: str):
        self.prompts.append(user_message)
        for delta in self.deltas:
            yield delta
        if self.error is not None:
            raise self.error


class DummyTTSService:
    def __init__(self, error: Optional[Exception] = None) -> None:
        self.error = error
        self.calls: list[tuple[str, Optional[str], Optional[str]]] = []

    async def synthesize(
        self, text: str, *, voice: Optional[str] = None, emotion: Optional[str] = None
    ) -> str:
        self.calls.append((text, voice, emotion))
        if self.error is not None:
            raise self.error
        return f"http://tts.test/media/{len(self.calls)}.wav"


def make_client(settings, chat=None, tts=None) -> TestClient:
    app = FastAPI()
    chat = chat or DummyChatService(["Hello there. ", "How are you?"])
    tts = tts or DummyTTSService()

    app.dependency_overrides[get_request_settings] = lambda: settings
    app.dependency_overrides[get_chat_service] = lambda: chat
    app.dependency_overrides[get_tts_service] = lambda: tts
    app.include_router(router)

    app.state.settings = settings
    app.state.voice_chat_service = chat
    app.state.tts_service = tts
    app.state.voice_manager = VoiceConnectionManager()

    app.test_tts = tts  # type: ignore[attr-defined]
    return TestClient(app)


def test_generate_text_returns_sentences(settings) -> None:
    client = make_client(settings)

    response = client.post("/api/generate-text", json={"prompt": "hi"})

    assert response.status_code == 200
    assert response.json() == {"sentences": ["Hello there.", "How are you?"]}


def test_generate_text_falls_back_when_chat_fails(settings) -> None:
    chat = DummyChatService([], error=ChatClientError(502, "down"))
    client = make_client(settings, chat=chat)

    response = client.post("/api/generate-text", json={"prompt": "hi"})

    assert response.status_code == 200
    assert response.json()["sentences"] == FALLBACK_SENTENCES


def test_generate_text_uses_fallback_reply_for_empty_answer(settings) -> None:
    client = make_client(settings, chat=DummyChatService([]))

    response = client.post("/api/generate-text", json={"prompt": "hi"})

    assert response.json()["sentences"] == [settings.fallback_reply]


def test_generate_text_requires_prompt(settings) -> None:
    client = make_client(settings)

    assert client.post("/api/generate-text", json={"prompt": "   "}).status_code == 422
    assert client.post("/api/generate-text", json={}).status_code == 422


def test_synthesize_returns_audio_url(settings) -> None:
    client = make_client(settings)

    response = client.post(
        "/api/synthesize", json={"text": "Hello.", "voice": "coral", "emotion": "happy"}
    )

    assert response.status_code == 200
    assert response.json() == {"audioUrl": "http://tts.test/media/1.wav"}
    assert client.app.test_tts.calls == [("Hello.", "coral", "happy")]  # type: ignore[attr-defined]


def test_synthesize_rejects_unknown_voice(settings) -> None:
    client = make_client(settings)

    response = client.post("/api/synthesize", json={"text": "Hello.", "voice": "robot"})

    assert response.status_code == 400


def test_synthesize_failure_returns_500(settings) -> None:
    client = make_client(settings, tts=DummyTTSService(error=TTSError(502, "no audio")))

    response = client.post("/api/synthesize", json={"text": "Hello."})

    assert response.status_code == 500
    assert response.json()["detail"] == "Failed to synthesize audio"


def test_voice_options(settings) -> None:
    client = make_client(settings)

    data = client.get("/api/voice/options").json()

    assert data["default_voice"] == settings.default_voice
    assert "coral" in data["voices"]


def test_voice_state_unknown_client(settings) -> None:
    client = make_client(settings)
    assert client.get("/api/voice/state/nobody").status_code == 404


@pytest.fixture
def sse_app_status():
    from sse_starlette.sse import AppStatus

    if hasattr(AppStatus, "should_exit_event"):
        AppStatus.should_exit_event = None
    yield


def _sse_events(body: str) -> list[tuple[str, str]]:
    events = []
    name = "message"
    for line in body.splitlines():
        if line.startswith("event:"):
            name = line[len("event:") :].strip()
        elif line.startswith("data:"):
            events.append((name, line[len("data:") :].strip()))
            name = "message"
    return events


def test_generate_text_stream_emits_sentences_then_done(settings, sse_app_status) -> None:
    client = make_client(settings)

    response = client.post("/api/generate-text/stream", json={"prompt": "hi"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    events = _sse_events(response.text)
    assert [name for name, _ in events] == ["sentence", "sentence", "done"]
    assert [json.loads(data)["text"] for _, data in events[:2]] == [
        "Hello there.",
        "How are you?",
    ]
    assert events[-1] == ("done", "[DONE]")


def test_generate_text_stream_reports_chat_failure(settings, sse_app_status) -> None:
    chat = DummyChatService(
        ["Partial answer. "], error=ChatClientError(502, "upstream down")
    )
    client = make_client(settings, chat=chat)

    response = client.post("/api/generate-text/stream", json={"prompt": "hi"})

    events = _sse_events(response.text)
    assert [name for name, _ in events] == ["sentence", "error", "done"]
    assert json.loads(events[0][1]) == {"text": "Partial answer."}
    assert json.loads(events[1][1]) == {"message": "upstream down"}


def _receive_until(ws, predicate) -> list[dict[str, Any]]:
    messages = []
    while True:
        message = ws.receive_json()
        messages.append(message)
        if predicate(message):
            return messages


def test_websocket_turn_plays_clips_and_returns_to_ready(settings) -> None:
    client = make_client(settings)

    with client.websocket_connect("/api/voice/connect?client_id=kiosk") as ws:
        assert ws.receive_json() == {"type": "state", "state": "idle", "label": "Ready"}
        assert ws.receive_json() == {
            "type": "session_parameters",
            "voice": settings.default_voice,
            "emotion": settings.default_emotion,
            "locked": False,
        }

        ws.send_json({"type": "heartbeat"})
        ws.send_json({"type": "send_text", "text": "hi"})

        played = []
        while len(played) < 2:
            messages = _receive_until(ws, lambda m: m["type"] == "play_clip")
            played.append(messages[-1])
            ws.send_json({"type": "clip_finished", "clip_id": messages[-1]["clip_id"]})

        _receive_until(ws, lambda m: m == {"type": "state", "state": "idle", "label": "Ready"})

        assert [clip["text"] for clip in played] == ["Hello there.", "How are you?"]
        assert played[0]["url"] == "http://tts.test/media/1.wav"
        assert played[0]["muted"] is False

        state = client.get("/api/voice/state/kiosk").json()
        assert state["state"] == "idle"
        assert state["locked"] is True

        ws.send_json({"type": "set_session_parameters", "voice": "coral"})
        rejected = _receive_until(ws, lambda m: m["type"] == "parameters_rejected")
        assert rejected[-1]["type"] == "parameters_rejected"


@pytest.mark.parametrize("payload", ["not json", "[1, 2]"])
def test_websocket_ignores_malformed_messages(settings, payload) -> None:
    client = make_client(settings)

    with client.websocket_connect("/api/voice/connect?client_id=kiosk") as ws:
        ws.receive_json()
        ws.receive_json()

        ws.send_text(payload)
        ws.send_json({"type": "new_conversation"})

        message = ws.receive_json()
        assert message["type"] == "session_parameters"


def test_voice_parameters_can_change_until_first_message(settings) -> None:
    with make_client(settings) as client:
        assert client.post(
            "/api/voice/parameters/kiosk", json={"voice": "coral"}
        ).status_code == 404

        with client.websocket_connect("/api/voice/connect?client_id=kiosk") as ws:
            ws.receive_json()
            ws.receive_json()

            response = client.post(
                "/api/voice/parameters/kiosk", json={"voice": "coral", "emotion": "calm"}
            )
            assert response.status_code == 200
            assert response.json() == {"voice": "coral", "emotion": "calm", "locked": False}
            assert ws.receive_json()["type"] == "session_parameters"

            bad = client.post("/api/voice/parameters/kiosk", json={"voice": "robot"})
            assert bad.status_code == 400

            ws.send_json({"type": "send_text", "text": "hi"})
            _receive_until(ws, lambda m: m["type"] == "user_message")

            locked = client.post("/api/voice/parameters/kiosk", json={"emotion": "sad"})
            assert locked.status_code == 409


def test_websocket_failed_clip_advances_to_next(settings) -> None:
    client = make_client(settings)

    with client.websocket_connect("/api/voice/connect?client_id=kiosk") as ws:
        ws.receive_json()
        ws.receive_json()

        ws.send_json({"type": "send_text", "text": "hi"})
        first = _receive_until(ws, lambda m: m["type"] == "play_clip")[-1]
        ws.send_json(
            {"type": "clip_failed", "clip_id": first["clip_id"], "error": "decode error"}
        )

        second = _receive_until(ws, lambda m: m["type"] == "play_clip")[-1]
        assert first["text"] == "Hello there."
        assert second["text"] == "How are you?"

        ws.send_json({"type": "clip_finished", "clip_id": second["clip_id"]})
        _receive_until(ws, lambda m: m == {"type": "state", "state": "idle", "label": "Ready"})


def test_websocket_mute_applies_to_clips(settings) -> None:
    client = make_client(settings)

    with client.websocket_connect("/api/voice/connect?client_id=kiosk") as ws:
        ws.receive_json()
        ws.receive_json()

        ws.send_json({"type": "set_muted", "muted": True})
        assert ws.receive_json() == {"type": "set_muted", "muted": True}

        ws.send_json({"type": "send_text", "text": "hi"})
        clip = _receive_until(ws, lambda m: m["type"] == "play_clip")[-1]
        assert clip["muted"] is True


def test_websocket_listening_and_transcripts(settings) -> None:
    chat = DummyChatService(["Sure thing."])
    client = make_client(settings, chat=chat)

    with client.websocket_connect("/api/voice/connect?client_id=kiosk") as ws:
        ws.receive_json()
        ws.receive_json()

        ws.send_json({"type": "listening_started"})
        assert ws.receive_json()["state"] == "listening"
        ws.send_json({"type": "listening_stopped"})
        assert ws.receive_json() == {"type": "state", "state": "idle", "label": "Ready"}

        ws.send_json({"type": "listening_started"})
        assert ws.receive_json()["state"] == "listening"

        ws.send_json({"type": "transcript", "text": "what is", "is_final": False})
        assert ws.receive_json() == {"type": "interim_transcript", "text": "what is"}

        ws.send_json({"type": "transcript", "text": "what is new", "is_final": True})
        assert ws.receive_json() == {"type": "user_message", "text": "what is new"}
        assert ws.receive_json()["state"] == "thinking"

        _receive_until(ws, lambda m: m["type"] == "play_clip")
        assert chat.prompts == ["what is new"]


def test_websocket_interrupt_stops_playback(settings) -> None:
    client = make_client(settings)

    with client.websocket_connect("/api/voice/connect?client_id=kiosk") as ws:
        ws.receive_json()
        ws.receive_json()

        ws.send_json({"type": "send_text", "text": "hi"})
        _receive_until(ws, lambda m: m["type"] == "play_clip")

        ws.send_json({"type": "interrupt"})
        _receive_until(ws, lambda m: m["type"] == "stop_audio")
        _receive_until(ws, lambda m: m == {"type": "state", "state": "idle", "label": "Ready"})

        ws.send_json({"type": "new_conversation"})
        after = _receive_until(ws, lambda m: m["type"] == "session_parameters")
        assert not [m for m in after if m["type"] == "play_clip"]
        assert after[-1]["locked"] is False


def test_reconnect_closes_replaced_socket(settings) -> None:
    chat = DummyChatService(["Hello there."])
    url = "/api/voice/connect?client_id=kiosk"

    with make_client(settings, chat=chat) as client:
        with client.websocket_connect(url) as old:
            old.receive_json()
            old.receive_json()

            with client.websocket_connect(url) as new:
                new.receive_json()
                new.receive_json()

                old.send_json({"type": "send_text", "text": "from old socket"})
                with pytest.raises(WebSocketDisconnect) as excinfo:
                    old.receive_json()
                assert excinfo.value.code == 4000

                new.send_json({"type": "send_text", "text": "from new socket"})
                clip = _receive_until(new, lambda m: m["type"] == "play_clip")[-1]

                assert clip["text"] == "Hello there."
                assert chat.prompts == ["from new socket"]
                assert client.get("/api/voice/state/kiosk").json()["locked"] is True
