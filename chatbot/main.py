# Entry point for the FastAPI app
from fastapi import FastAPI, Request, HTTPException, Depends
from fastapi.responses import JSONResponse, StreamingResponse, Response
from pydantic import BaseModel
from typing import AsyncIterator, List, Optional
import json
import logging

from . import config, chunk_service, chat_service, chat_log_manager, conversation_log
from .errors import ChatbotError
from .models.chat_message import PartsMessage, TextMessage

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = FastAPI()


class ChunkCreateRequest(BaseModel):
    title: str = ""
    content: str = ""


class ChunkUpdateRequest(BaseModel):
    title: Optional[str] = None
    content: Optional[str] = None


class ChunkSplitRequest(BaseModel):
    text: str = ""


class ChatRequest(BaseModel):
    messages: List[TextMessage] = []
    chatLogId: Optional[str] = None


class StreamChatRequest(BaseModel):
    messages: List[PartsMessage] = []
    chatLogId: Optional[str] = None


def get_current_user_id(request: Request) -> Optional[str]:
    """Identity of the caller, or None for anonymous requests.

    The authentication middleware in front of this app stores the verified
    user id on ``request.state.user_id``.
    """
    return getattr(request.state, "user_id", None)


def get_chat_user_id(user_id: Optional[str] = Depends(get_current_user_id)) -> Optional[str]:
    """Identity for chat turns; registers the owner record on first sight."""
    if user_id:
        conversation_log.create_user(user_id)
    return user_id


def require_user_id(user_id: Optional[str] = Depends(get_current_user_id)) -> str:
    if not user_id:
        raise HTTPException(status_code=401, detail="Unauthorized")
    return user_id


def _error_body(error_type: str, message: str, exc: Exception = None) -> dict:
    error = {"type": error_type, "message": message}
    if config.DEBUG and exc is not None:
        error["detail"] = repr(exc)
    return {"success": False, "error": error}


@app.exception_handler(ChatbotError)
async def chatbot_error_handler(request: Request, exc: ChatbotError):
    if exc.status >= 500:
        logger.error(f"[ERROR] {request.method} {request.url.path} failed: {type(exc).__name__}: {exc.message}")
        return JSONResponse(
            status_code=exc.status,
            content=_error_body("InternalServerError", "Something went wrong", exc),
        )
    logger.info(f"[ERROR] {request.method} {request.url.path}: {type(exc).__name__}: {exc.message}")
    return JSONResponse(status_code=exc.status, content=_error_body(type(exc).__name__, exc.message))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception(f"[ERROR] Unexpected error on {request.method} {request.url.path}")
    return JSONResponse(status_code=500, content=_error_body("InternalServerError", "Something went wrong", exc))


@app.on_event("startup")
def startup():
    conversation_log.init_chat_log_db()
    logger.info(f"[STARTUP] Chat log database ready at {conversation_log.DB_PATH}")


@app.get("/health")
def health():
    return {"status": "ok"}


# ----------------------- Knowledge chunks -----------------------

@app.get("/chunks")
def list_chunks():
    return chunk_service.list_chunks()


@app.get("/chunks/{chunk_id}")
def get_chunk(chunk_id: str):
    return chunk_service.get_chunk(chunk_id)


@app.post("/chunks", status_code=201)
async def create_chunk(body: ChunkCreateRequest):
    chunk = await chunk_service.create_chunk(body.title, body.content)
    return {"id": chunk["id"], "title": chunk["title"], "content": chunk["content"]}


@app.post("/chunks/multiple", status_code=201)
async def create_multiple_chunks(body: ChunkSplitRequest):
    """Split a long text into chunk suggestions; nothing is stored."""
    return await chunk_service.split_text(body.text)


@app.put("/chunks/{chunk_id}")
async def update_chunk(chunk_id: str, body: ChunkUpdateRequest):
    return await chunk_service.update_chunk(chunk_id, title=body.title, content=body.content)


@app.delete("/chunks/{chunk_id}", status_code=204)
def delete_chunk(chunk_id: str):
    chunk_service.delete_chunk(chunk_id)
    return Response(status_code=204)


# ----------------------- Chat -----------------------

@app.post("/chat")
async def chat(body: ChatRequest, user_id: Optional[str] = Depends(get_chat_user_id)):
    return await chat_service.handle_chat(user_id, body.messages, body.chatLogId)


def _sse(event: dict) -> str:
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n"


async def _event_stream(first_event: dict, events: AsyncIterator[dict]) -> AsyncIterator[str]:
    """Serialize chat events as server-sent events.

    The first event was already produced by the endpoint so that errors
    before streaming still map to an HTTP status.
    """
    try:
        yield _sse(first_event)
        async for event in events:
            yield _sse(event)
    except ChatbotError as e:
        logger.error(f"[STREAM] Chat stream failed: {type(e).__name__}: {e.message}")
        yield _sse({"type": "error", "errorText": "Something went wrong"})
    finally:
        await events.aclose()
    yield "data: [DONE]\n\n"


@app.post("/chat/stream")
async def chat_stream(body: StreamChatRequest, user_id: Optional[str] = Depends(get_chat_user_id)):
    events = chat_service.stream_chat(user_id, body.messages, body.chatLogId)
    # Resolves the chat log before any bytes are sent
    first_event = await events.__anext__()
    return StreamingResponse(
        _event_stream(first_event, events),
        media_type="text/event-stream",
        headers={"x-vercel-ai-ui-message-stream": "v1", "Cache-Control": "no-cache"},
    )


# ----------------------- Chat logs -----------------------

@app.get("/chatlogs")
def list_chat_logs(user_id: str = Depends(require_user_id)):
    return chat_log_manager.list_chat_logs(user_id)


@app.get("/chatlogs/{chat_log_id}")
def get_chat_log(chat_log_id: str, user_id: str = Depends(require_user_id)):
    return chat_log_manager.get_chat_log(user_id, chat_log_id)


@app.delete("/chatlogs/{chat_log_id}")
def delete_chat_log(chat_log_id: str, user_id: str = Depends(require_user_id)):
    chat_log_manager.delete_chat_log(user_id, chat_log_id)
    return {"message": "Chat log deleted successfully"}
