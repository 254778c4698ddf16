"""Voice chat routes: WebSocket conversation plus one-shot HTTP helpers."""

from __future__ import annotations

import json
import logging
from contextlib import aclosing
from typing import Any, AsyncGenerator

from fastapi import APIRouter, Depends, HTTPException, Request, WebSocket, WebSocketDisconnect
from sse_starlette.sse import EventSourceResponse

from ..chat_client import ChatClient, ChatClientError
from ..config import Settings, get_settings
from ..schemas.voice import (
    GenerateTextRequest,
    GenerateTextResponse,
    SessionParametersUpdate,
    SynthesizeRequest,
    SynthesizeResponse,
    VoiceStateResponse,
)
from ..services.orchestrator import VoiceOrchestrator
from ..services.tts import TextSegmenter, stream_sentences
from ..services.tts_service import TTSError, TTSService
from ..services.voice_chat_service import VoiceChatService
from ..services.voice_session import (
    VoiceConnectionManager,
    VoiceSession,
    WebSocketAudioPlayer,
)

router = APIRouter(prefix="/api", tags=["voice"])
logger = logging.getLogger(__name__)

FALLBACK_SENTENCES = [
    "Hello! I'm here to help you.",
    "Let me assist with your question.",
    "Feel free to ask me anything!",
]


def get_request_settings(request: Request) -> Settings:
    return getattr(request.app.state, "settings", None) or get_settings()


def get_chat_service(
    request: Request, settings: Settings = Depends(get_request_settings)
) -> VoiceChatService:
    service = getattr(request.app.state, "voice_chat_service", None)
    if service is None:
        service = VoiceChatService(ChatClient(settings), settings)
    return service


def get_tts_service(
    request: Request, settings: Settings = Depends(get_request_settings)
) -> TTSService:
    service = getattr(request.app.state, "tts_service", None)
    if service is None:
        service = TTSService(settings)
    return service


def _segmenter_for(settings: Settings) -> TextSegmenter:
    return TextSegmenter(
        min_chars=settings.min_sentence_chars,
        max_chars=settings.max_buffer_chars,
        soft_limit=settings.soft_break_chars,
    )


async def _sentences_for(
    prompt: str, chat_service: VoiceChatService, settings: Settings
) -> AsyncGenerator[str, None]:
    sentences = stream_sentences(
        chat_service.generate_deltas(prompt),
        _segmenter_for(settings),
        inactivity_timeout=settings.inactivity_timeout,
        first_delta_timeout=settings.first_delta_timeout,
    )
    async with aclosing(sentences) as stream:
        async for sentence in stream:
            yield sentence


@router.post("/generate-text", response_model=GenerateTextResponse)
async def generate_text(
    payload: GenerateTextRequest,
    chat_service: VoiceChatService = Depends(get_chat_service),
    settings: Settings = Depends(get_request_settings),
) -> GenerateTextResponse:
    """Answer a prompt as a list of speakable sentences."""

    logger.info("Processing prompt: %s", payload.prompt[:80])
    try:
        sentences = [
            sentence
            async for sentence in _sentences_for(payload.prompt, chat_service, settings)
        ]
    except ChatClientError as exc:
        logger.error("Chat request failed, returning fallback sentences: %s", exc)
        return GenerateTextResponse(sentences=list(FALLBACK_SENTENCES))

    if not sentences:
        sentences = [settings.fallback_reply]
    return GenerateTextResponse(sentences=sentences)


@router.post("/generate-text/stream", response_model=None)
async def generate_text_stream(
    payload: GenerateTextRequest,
    chat_service: VoiceChatService = Depends(get_chat_service),
    settings: Settings = Depends(get_request_settings),
) -> EventSourceResponse:
    """Stream sentences as Server-Sent Events while the reply is generated."""

    async def event_publisher():
        try:
            async for sentence in _sentences_for(payload.prompt, chat_service, settings):
                yield {"event": "sentence", "data": json.dumps({"text": sentence})}
        except ChatClientError as exc:
            detail = exc.detail if isinstance(exc.detail, str) else json.dumps(exc.detail)
            yield {"event": "error", "data": json.dumps({"message": detail})}
        yield {"event": "done", "data": "[DONE]"}

    return EventSourceResponse(event_publisher())


@router.post("/synthesize", response_model=SynthesizeResponse)
async def synthesize(
    payload: SynthesizeRequest,
    tts_service: TTSService = Depends(get_tts_service),
    settings: Settings = Depends(get_request_settings),
) -> dict[str, str]:
    """Synthesize one sentence and return the playable audio URL."""

    if payload.voice is not None and payload.voice not in settings.available_voices:
        raise HTTPException(status_code=400, detail=f"Unknown voice: {payload.voice}")
    if payload.emotion is not None and payload.emotion not in settings.available_emotions:
        raise HTTPException(
            status_code=400, detail=f"Unknown emotion: {payload.emotion}"
        )

    try:
        audio_url = await tts_service.synthesize(
            payload.text, voice=payload.voice, emotion=payload.emotion
        )
    except TTSError as exc:
        logger.error("Error in synthesize: %s", exc)
        raise HTTPException(status_code=500, detail="Failed to synthesize audio") from exc

    return {"audioUrl": audio_url}


@router.get("/voice/options")
async def voice_options(settings: Settings = Depends(get_request_settings)) -> dict[str, Any]:
    return {
        "voices": settings.available_voices,
        "emotions": settings.available_emotions,
        "default_voice": settings.default_voice,
        "default_emotion": settings.default_emotion,
    }


def _connected_orchestrator(request: Request, client_id: str) -> VoiceOrchestrator:
    manager: VoiceConnectionManager | None = getattr(
        request.app.state, "voice_manager", None
    )
    session = manager.get_session(client_id) if manager else None
    if session is None or session.orchestrator is None:
        raise HTTPException(status_code=404, detail="Client not connected")
    return session.orchestrator


@router.get("/voice/state/{client_id}", response_model=VoiceStateResponse)
async def voice_state(client_id: str, request: Request) -> VoiceStateResponse:
    orchestrator = _connected_orchestrator(request, client_id)
    queue = orchestrator.playback_queue
    return VoiceStateResponse(
        client_id=client_id,
        state=orchestrator.state.value,
        label=orchestrator.state.label,
        voice=orchestrator.parameters.voice,
        emotion=orchestrator.parameters.emotion,
        locked=orchestrator.parameters.locked,
        pending_clips=len(queue.pending),
        playing=queue.active is not None,
        muted=queue.muted,
    )


@router.post("/voice/parameters/{client_id}")
async def update_voice_parameters(
    client_id: str, payload: SessionParametersUpdate, request: Request
) -> dict[str, object]:
    """Choose voice and emotion before the conversation's first message."""

    orchestrator = _connected_orchestrator(request, client_id)
    if orchestrator.parameters.locked:
        raise HTTPException(
            status_code=409,
            detail="Voice and emotion are locked until a new conversation starts",
        )
    if not orchestrator.set_session_parameters(
        voice=payload.voice, emotion=payload.emotion
    ):
        raise HTTPException(status_code=400, detail="Unknown voice or emotion")
    return orchestrator.parameters.asdict()


def _dispatch(session: VoiceSession, data: dict[str, Any]) -> None:
    """Route one client event to the conversation."""
    orchestrator = session.orchestrator
    assert orchestrator is not None
    event_type = data.get("type")

    if event_type == "heartbeat":
        pass

    elif event_type == "send_text":
        orchestrator.send_message(str(data.get("text") or ""))

    elif event_type == "listening_started":
        orchestrator.start_listening()

    elif event_type == "listening_stopped":
        orchestrator.stop_listening()

    elif event_type == "transcript":
        orchestrator.handle_transcript(
            str(data.get("text") or ""), bool(data.get("is_final"))
        )

    elif event_type == "interrupt":
        logger.info(f"Interrupt from {session.client_id}")
        orchestrator.interrupt()

    elif event_type == "clip_finished":
        orchestrator.on_clip_finished(str(data.get("clip_id") or ""))

    elif event_type == "clip_failed":
        orchestrator.on_clip_finished(
            str(data.get("clip_id") or ""), str(data.get("error") or "playback error")
        )

    elif event_type == "set_muted":
        orchestrator.set_muted(bool(data.get("muted")))

    elif event_type == "set_session_parameters":
        orchestrator.set_session_parameters(
            voice=data.get("voice"), emotion=data.get("emotion")
        )

    elif event_type == "new_conversation":
        orchestrator.new_conversation()

    else:
        logger.warning(f"Ignoring unknown event type from {session.client_id}: {event_type}")


async def handle_connection(
    websocket: WebSocket,
    client_id: str,
    manager: VoiceConnectionManager,
    chat_service: VoiceChatService,
    tts_service: TTSService,
    settings: Settings,
) -> None:
    """
    Main loop for handling a single client's WebSocket connection.

    The client plays clips, captures speech and renders state; this loop
    feeds its events into the client's VoiceOrchestrator.
    """
    session = await manager.connect(websocket, client_id)
    session.orchestrator = VoiceOrchestrator(
        chat_service,
        tts_service,
        WebSocketAudioPlayer(session),
        settings,
        on_event=session.publish,
    )
    orchestrator = session.orchestrator
    session.publish(
        {"type": "state", "state": orchestrator.state.value, "label": orchestrator.state.label}
    )
    session.publish({"type": "session_parameters", **orchestrator.parameters.asdict()})

    try:
        while manager.get_session(client_id) is session:
            raw = await websocket.receive_text()
            if manager.get_session(client_id) is not session:
                logger.info(f"Session for {client_id} was replaced, closing old connection loop")
                break
            session.update_activity()
            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning(f"Ignoring malformed message from {client_id}")
                continue
            if not isinstance(data, dict):
                logger.warning(f"Ignoring non-object message from {client_id}")
                continue
            _dispatch(session, data)

    except WebSocketDisconnect:
        logger.info(f"Client {client_id} disconnected")
    except Exception as e:
        if manager.get_session(client_id) is session:
            logger.error(f"Unexpected error for {client_id}: {e}", exc_info=True)
        else:
            logger.info(f"Replaced connection for {client_id} ended: {e}")
    finally:
        if manager.get_session(client_id) is session:
            await manager.disconnect(client_id)


@router.websocket("/voice/connect")
async def voice_connect(websocket: WebSocket):
    client_id = websocket.query_params.get("client_id", "default")

    app_state = websocket.app.state
    manager = getattr(app_state, "voice_manager", None)
    if manager is None:
        logger.error("Voice Manager not initialized")
        await websocket.close(code=1011, reason="Server not ready")
        return

    settings = getattr(app_state, "settings", None) or get_settings()
    await handle_connection(
        websocket,
        client_id,
        manager,
        app_state.voice_chat_service,
        app_state.tts_service,
        settings,
    )
