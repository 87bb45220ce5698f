"""Chat entry points used by the HTTP layer.

``handle_chat`` answers a whole turn and persists it. ``stream_chat`` yields
UI stream events: the chat log id goes out first, then the answer text as
deltas, and the assistant message is persisted only after the last delta.
If the consumer stops iterating early, nothing more is generated or saved.
"""
import asyncio
import logging
import uuid
from contextlib import aclosing
from typing import Any, AsyncIterator, Dict, Optional, Sequence

from openai import AsyncOpenAI

from chatbot import chat_log_manager
from chatbot.chat_log_manager import ChatLogCursor
from chatbot.errors import InvalidRequest, LogNotFound, OwnerNotFound
from chatbot.models.chat_message import PartsMessage, TextMessage, assistant_message
from chatbot.openai_agent import get_chat_completion, stream_chat_completion

logger = logging.getLogger(__name__)


async def handle_chat(
    owner_id: Optional[str],
    messages: Sequence[TextMessage],
    chat_log_id: Optional[str] = None,
    client: Optional[AsyncOpenAI] = None,
) -> Dict[str, Any]:
    """Answer one bulk turn.

    Returns:
        ``{"messages": <assistant message>, "chatLogId": <id or None>}``
    """
    if not messages:
        raise InvalidRequest("Messages are required")

    answer = assistant_message(await get_chat_completion(messages, client=client))
    final_chat_log_id = await asyncio.to_thread(
        chat_log_manager.create_or_append, owner_id, chat_log_id, messages, answer
    )

    return {"messages": answer.to_record(), "chatLogId": final_chat_log_id}


async def stream_chat(
    owner_id: Optional[str],
    messages: Sequence[PartsMessage],
    chat_log_id: Optional[str] = None,
    client: Optional[AsyncOpenAI] = None,
) -> AsyncIterator[Dict[str, Any]]:
    """Answer one turn as a stream of UI events.

    Event order: ``data-chatLogId``, ``text-start``, ``text-delta``...,
    ``text-end``, then ``finish``. A failure to store the finished answer
    is reported as an ``error`` event before ``finish``; the streamed text
    itself is already with the client at that point.
    """
    if not messages:
        raise InvalidRequest("Messages are required")

    cursor = ChatLogCursor(owner_id=owner_id, chat_log_id=chat_log_id if owner_id else None)
    resolved_id = await asyncio.to_thread(chat_log_manager.resolve_log, cursor, messages)
    yield {"type": "data-chatLogId", "data": {"chatLogId": resolved_id}}

    text_id = uuid.uuid4().hex
    yield {"type": "text-start", "id": text_id}

    parts = []
    async with aclosing(stream_chat_completion(messages, client=client)) as deltas:
        async for delta in deltas:
            parts.append(delta)
            yield {"type": "text-delta", "id": text_id, "delta": delta}

    yield {"type": "text-end", "id": text_id}

    try:
        await asyncio.to_thread(chat_log_manager.append_assistant, cursor, "".join(parts))
    except (LogNotFound, OwnerNotFound) as e:
        logger.error(f"[CHAT_LOG] Could not store streamed answer for log {cursor.chat_log_id}: {e}")
        yield {"type": "error", "errorText": e.message}

    yield {"type": "finish"}

