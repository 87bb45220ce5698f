"""Chat log persistence protocol for both response modes.

Bulk turns write once, after the answer exists (``create_or_append``).
Streaming turns write twice: the log is resolved before the first token so
its id can be sent to the client straight away (``resolve_log``), and the
assistant message is appended only after the whole text has been streamed
(``append_assistant``). Anonymous callers never cause a write.
"""
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from chatbot import conversation_log
from chatbot.errors import LogNotFound, OwnerNotFound, Unauthorized
from chatbot.models.chat_message import ChatMessage, assistant_message

logger = logging.getLogger(__name__)


@dataclass
class ChatLogCursor:
    """Mutable cell carrying the current chat log id into a running stream."""
    owner_id: Optional[str]
    chat_log_id: Optional[str] = None


def _create_log(owner_id: str, messages: List[dict]) -> str:
    chat_log_id = conversation_log.create_chat_log(owner_id, messages)
    if not conversation_log.add_chat_log_reference(owner_id, chat_log_id):
        # The log row already exists; it stays without an owner reference
        logger.warning(f"[CHAT_LOG] Owner {owner_id} not found, log {chat_log_id} left unreferenced")
        raise OwnerNotFound("User not found when updating chat logs")
    logger.info(f"[CHAT_LOG] Created log {chat_log_id} for {owner_id} with {len(messages)} messages")
    return chat_log_id


def _append(chat_log_id: str, messages: List[dict]):
    if not conversation_log.append_messages(chat_log_id, messages):
        raise LogNotFound("Chat log not found")
    logger.info(f"[CHAT_LOG] Appended {len(messages)} messages to log {chat_log_id}")


def create_or_append(
    owner_id: Optional[str],
    chat_log_id: Optional[str],
    messages: Sequence[ChatMessage],
    answer: ChatMessage,
) -> Optional[str]:
    """Persist a finished bulk turn.

    A new log gets the whole incoming history plus the answer. An existing
    log already holds the earlier turns, so it only gets the newest incoming
    message and the answer.

    Returns:
        The log id, or None for anonymous callers.

    Raises:
        LogNotFound: If ``chat_log_id`` does not exist.
        OwnerNotFound: If the owner record does not exist.
    """
    if not owner_id:
        return None

    if chat_log_id:
        _append(chat_log_id, [messages[-1].to_record(), answer.to_record()])
        return chat_log_id

    return _create_log(owner_id, [m.to_record() for m in messages] + [answer.to_record()])


def resolve_log(cursor: ChatLogCursor, messages: Sequence[ChatMessage]) -> Optional[str]:
    """Create or extend the log before a stream starts and store its id on the cursor."""
    if not cursor.owner_id:
        return None

    if cursor.chat_log_id:
        _append(cursor.chat_log_id, [messages[-1].to_record()])
    else:
        cursor.chat_log_id = _create_log(cursor.owner_id, [m.to_record() for m in messages])
    return cursor.chat_log_id


def append_assistant(cursor: ChatLogCursor, text: str) -> None:
    """Append the fully streamed answer to the cursor's log."""
    if not cursor.owner_id or not cursor.chat_log_id:
        return
    _append(cursor.chat_log_id, [assistant_message(text).to_record()])


def list_chat_logs(owner_id: str) -> List[dict]:
    return conversation_log.find_chat_logs_by_owner(owner_id)


def get_chat_log(owner_id: str, chat_log_id: str) -> dict:
    chat_log = conversation_log.find_chat_log_by_id(chat_log_id)
    if chat_log is None:
        raise LogNotFound("Chat log not found")
    if chat_log["ownerId"] != owner_id:
        raise Unauthorized("Unauthorized")
    return chat_log


def delete_chat_log(owner_id: str, chat_log_id: str) -> None:
    """Delete a log owned by ``owner_id``; anyone else is refused."""
    get_chat_log(owner_id, chat_log_id)
    if not conversation_log.delete_chat_log_by_id(chat_log_id):
        raise LogNotFound("Chat log not found")
    logger.info(f"[CHAT_LOG] Deleted log {chat_log_id} for {owner_id}")
