"""
Session, beat and generation endpoints.

- PUT  /sessions/{id}/document                      open or reload a scene document
- GET  /sessions/{id}/document                      current HTML plus beats
- POST /sessions/{id}/beats                         insert a beat node
- DELETE /sessions/{id}/beats/{beat}                remove a beat node
- POST /sessions/{id}/beats/{beat}/generate         start a generation
- POST /sessions/{id}/beats/{beat}/regenerate       replace the previous output
- POST /sessions/{id}/beats/{beat}/delete-after     cut the document after the beat
- POST /sessions/{id}/beats/{beat}/stop             stop a running generation
- GET  /sessions/{id}/beats/{beat}/events           SSE stream of generation events

Subscribe to ``events`` before calling ``generate`` to receive every chunk.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, HTTPException
from fastapi.responses import StreamingResponse

from storybeat.document import schema
from storybeat.errors import ConfigurationError
from storybeat.models.beat import Beat, BeatAction, BeatPromptEvent
from storybeat.models.requests import (
    BeatActionResponse,
    DocumentRequest,
    DocumentResponse,
    GenerateBeatRequest,
    GenerationStartedResponse,
    InsertBeatRequest,
)
from storybeat.protocol.events import PingEvent, emit
from storybeat.services.runtime import get_runtime
from storybeat.services.session import BeatEditorSession
from storybeat.views.beat_view import ViewContext

router = APIRouter()
logger = logging.getLogger(__name__)

PING_INTERVAL = 30.0


def _sse_headers() -> dict[str, str]:
    """Standard SSE response headers."""
    return {
        "Cache-Control": "no-cache",
        "Connection": "keep-alive",
        "X-Accel-Buffering": "no",
    }


def _session_or_404(session_id: str) -> BeatEditorSession:
    session = get_runtime().sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail={
            "error": "Session not found",
            "sessionId": session_id,
        })
    return session


def _beat_or_404(session: BeatEditorSession, beat_id: str) -> Beat:
    beat = session.get_beat(beat_id)
    if beat is None:
        raise HTTPException(status_code=404, detail={
            "error": "Beat not found",
            "beatId": beat_id,
        })
    return beat


def _document_response(session: BeatEditorSession) -> DocumentResponse:
    return DocumentResponse(
        session_id=session.session_id,
        html=session.to_html(),
        beats=[schema.beat_from_node(node) for _, node in schema.beat_nodes(session.editor.doc)],
    )


# =============================================================================
# Documents
# =============================================================================

@router.put("/sessions/{session_id}/document", response_model=DocumentResponse, response_model_by_alias=True)
async def put_document(session_id: str, body: DocumentRequest) -> DocumentResponse:
    """Open a session on a scene document, or reload an open one."""
    context = ViewContext(story_id=body.story_id, chapter_id=body.chapter_id, scene_id=body.scene_id)
    session = get_runtime().sessions.open(session_id, body.html, context)
    return _document_response(session)


@router.get("/sessions/{session_id}/document", response_model=DocumentResponse, response_model_by_alias=True)
async def get_document(session_id: str) -> DocumentResponse:
    return _document_response(_session_or_404(session_id))


# =============================================================================
# Beats
# =============================================================================

@router.post("/sessions/{session_id}/beats", response_model=Beat, response_model_by_alias=True)
async def insert_beat(session_id: str, body: InsertBeatRequest) -> Beat:
    session = _session_or_404(session_id)
    beat = Beat(prompt=body.prompt, beat_type=body.beat_type, word_count=body.word_count, model=body.model)
    if body.position is not None and body.position > session.editor.doc.content_size:
        raise HTTPException(status_code=400, detail={
            "error": "Position outside the document",
            "position": body.position,
            "contentSize": session.editor.doc.content_size,
        })
    return session.insert_beat(body.position, beat)


@router.delete(
    "/sessions/{session_id}/beats/{beat_id}",
    response_model=BeatActionResponse,
    response_model_by_alias=True,
)
async def delete_beat(session_id: str, beat_id: str) -> BeatActionResponse:
    """Remove a beat node; a running generation for it is stopped first."""
    session = _session_or_404(session_id)
    _beat_or_404(session, beat_id)
    return BeatActionResponse(beat_id=beat_id, ok=session.delete_beat(beat_id), html=session.to_html())


async def _start(session_id: str, beat_id: str, body: GenerateBeatRequest, action: BeatAction) -> GenerationStartedResponse:
    session = _session_or_404(session_id)
    beat = _beat_or_404(session, beat_id)
    event = BeatPromptEvent(
        beat_id=beat_id,
        action=action,
        prompt=body.prompt,
        word_count=body.word_count,
        model=body.model or beat.model or None,
        story_id=session.context.story_id,
        chapter_id=session.context.chapter_id,
        scene_id=session.context.scene_id,
        beat_type=body.beat_type or beat.beat_type,
        custom_context=body.custom_context,
    )
    try:
        record = await session.submit(event)
    except ConfigurationError as exc:
        logger.warning(f"Cannot generate beat {beat_id}: {exc.message}")
        raise HTTPException(status_code=422, detail={
            "error": exc.message,
            "code": exc.code,
            "beatId": beat_id,
        })
    if record is None:
        raise HTTPException(status_code=409, detail={
            "error": "Generation did not start",
            "beatId": beat_id,
        })
    return GenerationStartedResponse(
        beat_id=beat_id,
        request_id=record.request_id,
        status=record.status.value,
        stream_url=f"/api/v1/sessions/{session_id}/beats/{beat_id}/events",
    )


@router.post(
    "/sessions/{session_id}/beats/{beat_id}/generate",
    response_model=GenerationStartedResponse,
    response_model_by_alias=True,
)
async def generate_beat(session_id: str, beat_id: str, body: GenerateBeatRequest) -> GenerationStartedResponse:
    """Start generating prose for a beat; returns immediately."""
    return await _start(session_id, beat_id, body, BeatAction.GENERATE)


@router.post(
    "/sessions/{session_id}/beats/{beat_id}/regenerate",
    response_model=GenerationStartedResponse,
    response_model_by_alias=True,
)
async def regenerate_beat(session_id: str, beat_id: str, body: GenerateBeatRequest) -> GenerationStartedResponse:
    """Replace the beat's previous output with a fresh generation."""
    return await _start(session_id, beat_id, body, BeatAction.REGENERATE)


@router.post(
    "/sessions/{session_id}/beats/{beat_id}/delete-after",
    response_model=BeatActionResponse,
    response_model_by_alias=True,
)
async def delete_after_beat(session_id: str, beat_id: str) -> BeatActionResponse:
    session = _session_or_404(session_id)
    _beat_or_404(session, beat_id)
    await session.submit(BeatPromptEvent(beat_id=beat_id, action=BeatAction.DELETE_AFTER))
    return BeatActionResponse(beat_id=beat_id, ok=True, html=session.to_html())


@router.post(
    "/sessions/{session_id}/beats/{beat_id}/stop",
    response_model=BeatActionResponse,
    response_model_by_alias=True,
)
async def stop_beat(session_id: str, beat_id: str) -> BeatActionResponse:
    session = _session_or_404(session_id)
    return BeatActionResponse(beat_id=beat_id, ok=session.stop(beat_id))


# =============================================================================
# SSE
# =============================================================================

@router.get("/sessions/{session_id}/beats/{beat_id}/events")
async def stream_beat_events(session_id: str, beat_id: str) -> StreamingResponse:
    """
    Stream generation events for a beat via SSE.

    Ends after the completion event. Idle connections get a ping every
    30 seconds.
    """
    session = _session_or_404(session_id)
    _beat_or_404(session, beat_id)

    broadcaster = get_runtime().broadcaster
    queue = broadcaster.subscribe(beat_id)

    async def live_stream() -> AsyncIterator[str]:
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=PING_INTERVAL)
                except asyncio.TimeoutError:
                    yield emit(PingEvent())
                    continue

                if event is None:
                    break

                yield emit(event)

                if event.is_complete:
                    break
        finally:
            broadcaster.unsubscribe(beat_id, queue)

    return StreamingResponse(
        live_stream(),
        media_type="text/event-stream",
        headers=_sse_headers(),
    )
