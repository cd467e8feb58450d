"""
Chat API Route

Thin delegation layer to the chat router.
Contains NO business logic, routing, or tracing code.
"""

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, StreamingResponse

from app.api.streaming import UI_STREAM_HEADERS, ui_message_stream
from app.dependencies import get_chat_router
from orchestration.router import ChatRouter
from orchestration.state import ChatFailure


router = APIRouter()

TRACE_HEADER = "X-Trace-Id"


@router.post("/chat")
async def chat(request: Request, chat_router: ChatRouter = Depends(get_chat_router)):
    """
    Answer a chat turn.

    Success: text/event-stream in the UI message stream format.
    Failure: JSON {"error": "..."} with a 4xx/5xx status.
    """
    reply = await chat_router.handle(await request.body())

    if isinstance(reply, ChatFailure):
        headers = {TRACE_HEADER: reply.trace_id} if reply.trace_id else None
        return JSONResponse(
            {"error": reply.message},
            status_code=reply.status_code,
            headers=headers,
        )

    return StreamingResponse(
        ui_message_stream(reply.stream, message_id=reply.trace_id),
        media_type="text/event-stream",
        headers={**UI_STREAM_HEADERS, TRACE_HEADER: reply.trace_id},
    )
