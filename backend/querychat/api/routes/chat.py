"""
Chat endpoints: ask questions (blocking or streamed as SSE) and manage chat sessions.
"""
import json
import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import StreamingResponse

from querychat.api.deps import get_controller, get_history
from querychat.core.errors import STATUS_NOT_FOUND, SessionNotFoundError
from querychat.schemas.api import AskRequest
from querychat.services.chat_history_service import ChatHistoryStore
from querychat.services.query_session import QuerySessionController

router = APIRouter()
logger = logging.getLogger(__name__)


def _sse_line(obj: dict) -> bytes:
    """Single SSE event line as bytes so proxies/clients stream immediately."""
    return (f"data: {json.dumps(obj)}\n\n").encode("utf-8")


def _state(controller: QuerySessionController) -> dict:
    return {
        "session_id": controller.session_id,
        "messages": [m.model_dump(mode="json", exclude_none=True) for m in controller.messages],
        "notices": [m.model_dump(mode="json", exclude_none=True) for m in controller.notices],
        "phase": controller.phase.value,
        "status": controller.status,
        "limit_reached": controller.limit_reached,
        "is_connected": controller.is_connected,
        "current_sql": controller.current_sql,
        "current_results": controller.current_results.model_dump() if controller.current_results else None,
        "current_visualization": (
            controller.current_visualization.model_dump() if controller.current_visualization else None
        ),
    }


async def _stream_turn_sse(message: str, controller: QuerySessionController):
    """Yield SSE events: one per turn update ({phase, status, message, rejection}), then {"done": true, ...}."""
    try:
        async for update in controller.iter_turn(message):
            yield _sse_line(update.to_event())
    except Exception as e:
        logger.exception("Chat stream failed")
        yield _sse_line({"error": str(e)})
        return
    yield _sse_line({"done": True, "session_id": controller.session_id})


@router.post("")
async def ask(body: AskRequest, controller: QuerySessionController = Depends(get_controller)):
    """Ask a question and wait for the whole answer."""
    message = await controller.submit_question(body.message)
    return {
        "message": message.model_dump(mode="json", exclude_none=True) if message else None,
        **_state(controller),
    }


@router.post("/stream")
async def ask_stream(body: AskRequest, controller: QuerySessionController = Depends(get_controller)):
    """Stream the turn as SSE. Events: data: {"phase": ..., "message": {...}} then data: {"done": true, "session_id": "..."}."""
    return StreamingResponse(
        _stream_turn_sse(body.message, controller),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.get("/state")
async def get_state(controller: QuerySessionController = Depends(get_controller)):
    """Active session, its messages and the transient turn state."""
    controller.ensure_session()
    return _state(controller)


@router.get("/sessions")
async def list_sessions(history: ChatHistoryStore = Depends(get_history)):
    """All sessions, most recent first, without their messages."""
    return {
        "sessions": [
            {
                "id": s.id,
                "title": s.title,
                "created_at": s.created_at.isoformat(),
                "message_count": len(s.messages),
            }
            for s in history.get_all_sessions()
        ],
        "max_sessions": history.max_sessions,
        "max_messages_per_chat": history.max_messages_per_chat,
    }


@router.post("/sessions")
async def new_session(controller: QuerySessionController = Depends(get_controller)):
    """Start a new chat and make it active."""
    session = controller.new_chat()
    return session.model_dump(mode="json", exclude_none=True)


@router.get("/sessions/{session_id}")
async def get_session(session_id: str, history: ChatHistoryStore = Depends(get_history)):
    session = history.get_session(session_id)
    if session is None:
        raise HTTPException(status_code=STATUS_NOT_FOUND, detail="Session not found.")
    return session.model_dump(mode="json", exclude_none=True)


@router.post("/sessions/{session_id}/select")
async def select_session(session_id: str, controller: QuerySessionController = Depends(get_controller)):
    """Make a stored session active (cancels a running turn)."""
    try:
        controller.select_session(session_id)
    except SessionNotFoundError as e:
        raise HTTPException(status_code=STATUS_NOT_FOUND, detail="Session not found.") from e
    return _state(controller)


@router.delete("/sessions/all")
async def clear_all_sessions(
    history: ChatHistoryStore = Depends(get_history),
    controller: QuerySessionController = Depends(get_controller),
):
    """Delete all chat sessions and start a fresh one."""
    history.clear_all_sessions()
    controller.new_chat()
    return {"ok": True}


@router.delete("/sessions/{session_id}")
async def remove_session(session_id: str, controller: QuerySessionController = Depends(get_controller)):
    """Delete one chat session by id."""
    if not controller.delete_session(session_id):
        return {"error": "Session not found."}
    return {"ok": True}
