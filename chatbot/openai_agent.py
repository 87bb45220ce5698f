"""Generation orchestrator for the student-support assistant.

Drives the OpenAI Responses API with the persona prompt and the single
``expandAndSearch`` tool. The model decides whether to search; each round
of tool calls is one step, and a turn gets at most ``config.MAX_TOOL_STEPS``
steps. Once the budget is spent the model is asked once more with tools
disabled, so the answer is built from the last step's results and a
further tool call cannot happen.

Both modes share the loop: ``get_chat_completion`` returns the whole
answer, ``stream_chat_completion`` yields text deltas as they arrive.
"""
import json
import logging
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

from openai import AsyncOpenAI, OpenAIError

from chatbot import config
from chatbot.clients.openai_client import get_openai_client
from chatbot.errors import GenerationFailure, RetrievalFailure
from chatbot.models.chat_message import ChatMessage
from chatbot.prompts import CHATBOT_SYSTEM_PROMPT, FALLBACK_ANSWER, SEARCH_TOOL_NAME, TOOLS
from chatbot.rag.retriever import expand_and_search

logger = logging.getLogger(__name__)

# Messages of history handed to query expansion for disambiguation
CONTEXT_MESSAGES = 6


def _answer_text(output_items: List[Any]) -> str:
    """Join the output_text blocks of the message items in a response."""
    texts = [
        block.text
        for item in output_items or []
        if getattr(item, "type", None) == "message"
        for block in getattr(item, "content", None) or []
        if getattr(block, "type", None) == "output_text" and block.text
    ]
    return "\n".join(texts).strip()


def _iter_tool_calls(resp) -> List[Any]:
    """Collect all function calls from a Responses API response."""
    calls = []
    for item in (getattr(resp, "output", None) or []):
        if getattr(item, "type", None) == "function_call":
            calls.append(item)
    return calls


def _tool_args(raw_args: Any) -> dict:
    """Normalize tool arguments to a dict."""
    if isinstance(raw_args, dict):
        return raw_args
    if raw_args is None or raw_args == "":
        return {}
    try:
        args = json.loads(raw_args)
    except json.JSONDecodeError:
        logger.warning(f"[Tool] Non-JSON tool arguments: {raw_args!r}")
        return {}
    return args if isinstance(args, dict) else {}


def _coerce_output_str(result: Any) -> str:
    """Coerce a tool result to the string a function_call_output carries."""
    if isinstance(result, str):
        return result
    return json.dumps(result, ensure_ascii=False)


def _conversation_context(messages: Sequence[ChatMessage]) -> str:
    """Render the recent history as plain text for query expansion."""
    recent = messages[-CONTEXT_MESSAGES:]
    return "\n".join(f"{m.role}: {m.content}" for m in recent if m.content)


async def _run_tool_calls(
    tool_calls: List[Any],
    step: int,
    context: str,
    client: AsyncOpenAI,
) -> List[Dict[str, Any]]:
    """Execute one round of tool calls and build the function_call_output items.

    A failed search is reported to the model as an empty, flagged result so
    it answers without grounding instead of failing the turn.
    """
    tool_output_input = []
    for tc in tool_calls:
        fn_name = getattr(tc, "name", None)
        raw_args = getattr(tc, "arguments", None)
        call_id = getattr(tc, "call_id", None) or getattr(tc, "id", None)
        logger.info(f"[Tool] Step {step} - Requested: {fn_name} with call_id: {call_id} args={raw_args}")

        fn_args = _tool_args(raw_args)
        query = fn_args.get("query")
        if fn_name != SEARCH_TOOL_NAME:
            output = {"error": f"Function {fn_name} not found"}
        elif not isinstance(query, str) or not query.strip():
            output = {"error": "A non-empty 'query' argument is required", "results": []}
        else:
            try:
                output = await expand_and_search(query, context=context, client=client)
            except RetrievalFailure as e:
                logger.warning(f"[Tool] Search failed, answering without grounding: {e}")
                output = {"error": "No knowledge base results are available right now", "results": []}

        tool_output_input.append({
            "type": "function_call_output",
            "call_id": call_id,
            "output": _coerce_output_str(output),
        })
    return tool_output_input


def _response_kwargs(
    input_items: List[Dict[str, Any]],
    previous_response_id: Optional[str],
    tool_choice: str,
) -> Dict[str, Any]:
    kwargs = {
        "model": config.CHAT_MODEL,
        "instructions": CHATBOT_SYSTEM_PROMPT,
        "input": input_items,
        "tools": TOOLS,
        "tool_choice": tool_choice,
        "max_output_tokens": config.MAX_OUTPUT_TOKENS,
    }
    if previous_response_id:
        kwargs["previous_response_id"] = previous_response_id
    return kwargs


def _tool_choice_for(step: int) -> str:
    return "none" if step >= config.MAX_TOOL_STEPS else "auto"


async def get_chat_completion(
    messages: Sequence[ChatMessage],
    client: Optional[AsyncOpenAI] = None,
) -> str:
    """Produce one complete answer for the conversation.

    Args:
        messages: Full message history, oldest first.
        client: Optional pre-existing AsyncOpenAI client.

    Returns:
        The assistant's answer text.

    Raises:
        GenerationFailure: If a model call fails.
    """
    if client is None:
        client = get_openai_client()

    context = _conversation_context(messages)
    input_items = [m.to_model_input() for m in messages]
    previous_response_id = None
    step = 0

    while True:
        tool_choice = _tool_choice_for(step)
        try:
            response = await client.responses.create(
                **_response_kwargs(input_items, previous_response_id, tool_choice)
            )
        except OpenAIError as e:
            logger.error(f"[OpenAI] Chat completion failed at step {step}: {e}")
            raise GenerationFailure("Error generating chat completion") from e

        tool_calls = _iter_tool_calls(response)
        if not tool_calls:
            break
        if tool_choice == "none":
            logger.warning(f"[Tool] Ignoring {len(tool_calls)} tool calls after the step budget was spent")
            break

        step += 1
        input_items = await _run_tool_calls(tool_calls, step, context, client)
        previous_response_id = response.id

    answer = _answer_text(getattr(response, "output", None))
    if not answer:
        logger.warning(f"[OpenAI] Empty answer after {step} tool steps, using fallback answer")
        return FALLBACK_ANSWER

    logger.info(f"[OpenAI] Answer ready after {step} tool steps ({len(answer)} chars)")
    return answer


async def stream_chat_completion(
    messages: Sequence[ChatMessage],
    client: Optional[AsyncOpenAI] = None,
) -> AsyncIterator[str]:
    """Stream the answer for the conversation as text deltas.

    Tool rounds run between model calls; deltas from every call are
    forwarded as soon as they arrive. Closing the generator stops
    production at the next delta.

    Raises:
        GenerationFailure: If a model call or the event stream fails.
    """
    if client is None:
        client = get_openai_client()

    context = _conversation_context(messages)
    input_items = [m.to_model_input() for m in messages]
    previous_response_id = None
    step = 0
    produced_text = False

    while True:
        tool_choice = _tool_choice_for(step)
        tool_calls = []
        response_id = None
        try:
            stream = await client.responses.create(
                stream=True,
                **_response_kwargs(input_items, previous_response_id, tool_choice),
            )
            # Closing releases the upstream response when the consumer leaves early
            try:
                async for event in stream:
                    etype = getattr(event, "type", None)
                    if etype == "response.output_text.delta":
                        if event.delta:
                            produced_text = True
                            yield event.delta
                    elif etype == "response.output_item.done":
                        if getattr(event.item, "type", None) == "function_call":
                            tool_calls.append(event.item)
                    elif etype == "response.completed":
                        response_id = event.response.id
                    elif etype in ("response.failed", "error"):
                        logger.error(f"[OpenAI] Stream reported failure: {event}")
                        raise GenerationFailure("Error generating chat completion")
            finally:
                await stream.close()
        except OpenAIError as e:
            logger.error(f"[OpenAI] Streaming failed at step {step}: {e}")
            raise GenerationFailure("Error generating chat completion") from e

        if not tool_calls:
            break
        if tool_choice == "none":
            logger.warning(f"[Tool] Ignoring {len(tool_calls)} tool calls after the step budget was spent")
            break

        step += 1
        input_items = await _run_tool_calls(tool_calls, step, context, client)
        previous_response_id = response_id

    if not produced_text:
        logger.warning(f"[OpenAI] Empty streamed answer after {step} tool steps, using fallback answer")
        yield FALLBACK_ANSWER
    else:
        logger.info(f"[OpenAI] Stream finished after {step} tool steps")
