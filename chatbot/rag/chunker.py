"""
Chunker module for splitting long documents into knowledge chunks.

An LLM rewrites the document into self-contained propositions and groups
them into topic-coherent chunks under a character limit. The model returns
JSON ``{"chunks": [...]}``; anything else is a ChunkingFailure.

Chunks the model returns over the limit are re-packed at sentence
boundaries so callers can rely on ``len(chunk) <= max_chunk_size``.
"""

import json
import logging
import re
from typing import List, Optional

from openai import AsyncOpenAI, OpenAIError

from chatbot import config
from chatbot.clients.openai_client import get_openai_client
from chatbot.errors import ChunkingFailure, InvalidRequest

logger = logging.getLogger(__name__)

# Sentence ends (. ! ?) followed by whitespace, or a paragraph break
_SENTENCE_BOUNDARY = re.compile(r"(?<=[.!?])\s+|\n{2,}")


def build_chunking_prompt(max_chunk_size: int) -> str:
    """Build the system instructions for the chunking model."""
    return f"""First rewrite the text as clear, self-contained propositions:
every sentence must be understandable on its own, without pronoun references
(he, she, it, they, this); always use the explicit noun instead.
Then split the text into logical, semantically coherent chunks, each at most
{max_chunk_size} characters long.
Never cut a sentence or a paragraph in the middle.
Put only sentences about the same theme or topic in the same chunk.
When the topic changes, start a new chunk.
Make sure every chunk is an independent, understandable unit without
references to other chunks.
Make sure no important information is lost at chunk boundaries.
Keep the language of the original text.

Respond with a JSON object of the form {{"chunks": ["chunk 1", "chunk 2", ...]}}."""


async def create_chunks(
    text: str,
    max_chunk_size: int = None,
    client: Optional[AsyncOpenAI] = None,
) -> List[str]:
    """Split a long text into self-contained chunks using an LLM.

    Args:
        text: The document to split.
        max_chunk_size: Maximum characters per chunk. Defaults to
                        config.MAX_CHUNK_SIZE (350).
        client: Optional pre-existing AsyncOpenAI client.

    Returns:
        Ordered list of chunk strings, each at most max_chunk_size chars.

    Raises:
        InvalidRequest: If the text is empty.
        ChunkingFailure: If the model call fails or its output cannot be
            parsed into at least one chunk.
    """
    if not text or not text.strip():
        raise InvalidRequest("Input text is required")

    max_chunk_size = max_chunk_size or config.MAX_CHUNK_SIZE
    if client is None:
        client = get_openai_client()

    logger.info(f"[CHUNKER] Chunking {len(text):,} chars (max {max_chunk_size} per chunk)")
    try:
        response = await client.chat.completions.create(
            model=config.STRUCTURED_MODEL,
            messages=[
                {"role": "system", "content": build_chunking_prompt(max_chunk_size)},
                {"role": "user", "content": text},
            ],
            response_format={"type": "json_object"},
        )
    except OpenAIError as e:
        logger.error(f"[CHUNKER] Chunking request failed: {e}")
        raise ChunkingFailure("Failed to create chunks") from e

    raw_chunks = parse_chunks(response.choices[0].message.content)

    chunks = []
    for chunk in raw_chunks:
        if len(chunk) <= max_chunk_size:
            chunks.append(chunk)
        else:
            logger.warning(
                f"[CHUNKER] Model returned a {len(chunk)}-char chunk, "
                f"re-packing at sentence boundaries"
            )
            chunks.extend(repack_sentences(chunk, max_chunk_size))

    logger.info(f"[CHUNKER] Created {len(chunks)} chunks")
    return chunks


def parse_chunks(result_text: Optional[str]) -> List[str]:
    """Parse the model's JSON output into a list of non-empty chunk strings.

    Raises:
        ChunkingFailure: On invalid JSON, a missing/invalid ``chunks``
            list, or zero usable chunks.
    """
    try:
        parsed = json.loads(result_text or "")
    except json.JSONDecodeError as e:
        logger.error(f"[CHUNKER] Error parsing chunking response: {e}")
        raise ChunkingFailure("Failed to create chunks") from e

    chunks = parsed.get("chunks") if isinstance(parsed, dict) else None
    if not isinstance(chunks, list) or not all(isinstance(c, str) for c in chunks):
        logger.error(f"[CHUNKER] Unexpected chunking response shape: {result_text!r}")
        raise ChunkingFailure("Failed to create chunks")

    chunks = [c.strip() for c in chunks if c.strip()]
    if not chunks:
        raise ChunkingFailure("Chunking produced no chunks")
    return chunks


def repack_sentences(text: str, max_length: int) -> List[str]:
    """Greedily pack whole sentences into pieces of at most max_length chars.

    Raises:
        ChunkingFailure: If a single sentence is longer than max_length.
    """
    pieces = []
    current = ""
    for sentence in _SENTENCE_BOUNDARY.split(text):
        sentence = sentence.strip()
        if not sentence:
            continue
        if len(sentence) > max_length:
            raise ChunkingFailure(
                f"A sentence of {len(sentence)} chars exceeds the {max_length}-char chunk limit"
            )
        candidate = f"{current} {sentence}" if current else sentence
        if len(candidate) <= max_length:
            current = candidate
        else:
            pieces.append(current)
            current = sentence
    if current:
        pieces.append(current)
    return pieces
