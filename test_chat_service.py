#!/usr/bin/env python3
"""
Tests for the chat entry points: bulk turns and the streamed event sequence.
"""
import asyncio
import os
import tempfile
import threading
from unittest.mock import AsyncMock, patch

from chatbot import chat_log_manager, chat_service, conversation_log
from chatbot.errors import InvalidRequest, LogNotFound
from chatbot.models.chat_message import PartsMessage, TextMessage


def _fresh_db():
    conversation_log.DB_PATH = os.path.join(tempfile.mkdtemp(), "chat_logs.db")
    conversation_log.init_chat_log_db()
    conversation_log.create_user("alice")


def _parts(text):
    return [PartsMessage(role="user", parts=[{"type": "text", "text": text}])]


def _fake_stream(deltas, state=None):
    state = state if state is not None else {}

    async def stream(messages, client=None):
        state["produced"] = 0
        try:
            for delta in deltas:
                state["produced"] += 1
                yield delta
        finally:
            state["closed"] = True

    return stream


async def _collect(agen):
    return [event async for event in agen]


def test_handle_chat_persists_turn():
    _fresh_db()
    messages = [TextMessage(role="user", content="When is the office open?")]

    with patch.object(chat_service, "get_chat_completion", new=AsyncMock(return_value="9-5.")):
        result = asyncio.run(chat_service.handle_chat("alice", messages))

    assert result["messages"]["role"] == "assistant"
    assert result["messages"]["content"] == "9-5."
    stored = conversation_log.find_chat_log_by_id(result["chatLogId"])["messages"]
    assert [m["content"] for m in stored] == ["When is the office open?", "9-5."]
    assert stored[-1]["id"] == result["messages"]["id"]


def test_handle_chat_anonymous_returns_no_log():
    _fresh_db()
    messages = [TextMessage(role="user", content="Hi")]

    with patch.object(chat_service, "get_chat_completion", new=AsyncMock(return_value="Hello!")):
        result = asyncio.run(chat_service.handle_chat(None, messages, "ignored"))

    assert result["chatLogId"] is None


def test_handle_chat_requires_messages():
    try:
        asyncio.run(chat_service.handle_chat("alice", []))
        assert False, "Expected InvalidRequest"
    except InvalidRequest:
        pass


def test_stream_event_order_and_persistence():
    _fresh_db()

    with patch.object(chat_service, "stream_chat_completion", new=_fake_stream(["The office ", "is open 9-5."])):
        events = asyncio.run(_collect(chat_service.stream_chat("alice", _parts("When is the office open?"))))

    types = [e["type"] for e in events]
    assert types == ["data-chatLogId", "text-start", "text-delta", "text-delta", "text-end", "finish"]
    log_id = events[0]["data"]["chatLogId"]
    assert log_id
    assert len({e["id"] for e in events if e["type"].startswith("text-")}) == 1

    stored = conversation_log.find_chat_log_by_id(log_id)["messages"]
    assert [m["role"] for m in stored] == ["user", "assistant"]
    assert stored[-1]["content"] == "The office is open 9-5."


def test_stream_anonymous_sends_null_log_id():
    _fresh_db()

    with patch.object(chat_service, "stream_chat_completion", new=_fake_stream(["Hi!"])):
        events = asyncio.run(_collect(chat_service.stream_chat(None, _parts("Hi"), "some-id")))

    assert events[0] == {"type": "data-chatLogId", "data": {"chatLogId": None}}
    with conversation_log.get_conn() as conn:
        assert conn.execute("SELECT COUNT(*) FROM chat_logs").fetchone()[0] == 0


def test_stream_cancel_stops_generation_and_skips_assistant_append():
    _fresh_db()
    state = {}

    async def consume_first_delta():
        events = chat_service.stream_chat("alice", _parts("When is the office open?"))
        first = await events.__anext__()
        assert (await events.__anext__())["type"] == "text-start"
        assert (await events.__anext__())["type"] == "text-delta"
        await events.aclose()
        return first["data"]["chatLogId"]

    with patch.object(chat_service, "stream_chat_completion", new=_fake_stream(["The ", "office ", "is open."], state)):
        log_id = asyncio.run(consume_first_delta())

    assert state["closed"] is True
    assert state["produced"] == 1
    stored = conversation_log.find_chat_log_by_id(log_id)["messages"]
    assert [m["role"] for m in stored] == ["user"]


def test_stream_reports_failed_append_before_finish():
    _fresh_db()
    failing = patch.object(chat_log_manager, "append_assistant", side_effect=LogNotFound("Chat log not found"))

    with patch.object(chat_service, "stream_chat_completion", new=_fake_stream(["9-5."])), failing:
        events = asyncio.run(_collect(chat_service.stream_chat("alice", _parts("Office hours?"))))

    assert [e["type"] for e in events][-3:] == ["text-end", "error", "finish"]
    assert events[-2]["errorText"] == "Chat log not found"


def test_stream_unknown_log_fails_before_first_event():
    _fresh_db()

    async def first_event():
        return await chat_service.stream_chat("alice", _parts("Hi"), "missing").__anext__()

    with patch.object(chat_service, "stream_chat_completion", new=_fake_stream(["Hi"])):
        try:
            asyncio.run(first_event())
            assert False, "Expected LogNotFound"
        except LogNotFound:
            pass


def test_log_writes_run_off_the_event_loop_thread():
    _fresh_db()
    threads = []

    def recorder(real):
        def record(*args, **kwargs):
            threads.append(threading.get_ident())
            return real(*args, **kwargs)
        return record

    resolve = patch.object(chat_log_manager, "resolve_log", side_effect=recorder(chat_log_manager.resolve_log))
    append = patch.object(chat_log_manager, "append_assistant", side_effect=recorder(chat_log_manager.append_assistant))
    with patch.object(chat_service, "stream_chat_completion", new=_fake_stream(["9-5."])), resolve, append:
        asyncio.run(_collect(chat_service.stream_chat("alice", _parts("Office hours?"))))

    assert len(threads) == 2
    assert threading.get_ident() not in threads


if __name__ == "__main__":
    test_handle_chat_persists_turn()
    test_handle_chat_anonymous_returns_no_log()
    test_handle_chat_requires_messages()
    test_stream_event_order_and_persistence()
    test_stream_anonymous_sends_null_log_id()
    test_stream_cancel_stops_generation_and_skips_assistant_append()
    test_stream_reports_failed_append_before_finish()
    test_stream_unknown_log_fails_before_first_event()
    test_log_writes_run_off_the_event_loop_thread()
    print("✅ ALL CHAT SERVICE TESTS PASSED!")
