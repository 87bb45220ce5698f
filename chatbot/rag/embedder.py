"""
Embedder module for generating OpenAI embeddings.

Uses text-embedding-3-small to embed knowledge chunks on ingestion and
query variants at retrieval time. Vectors come back in input order.
"""

import logging
from typing import List, Optional

from openai import AsyncOpenAI, OpenAIError

from chatbot import config
from chatbot.clients.openai_client import get_openai_client
from chatbot.errors import EmbeddingFailure

logger = logging.getLogger(__name__)


async def embed_many(
    texts: List[str],
    client: Optional[AsyncOpenAI] = None,
) -> List[List[float]]:
    """Generate embeddings for a list of texts in a single API call.

    Args:
        texts: List of text strings to embed.
        client: Optional pre-existing AsyncOpenAI client.

    Returns:
        List of embedding vectors, one per input text, in input order.

    Raises:
        EmbeddingFailure: If the API call errors or returns an
            empty or incomplete result.
    """
    if not texts:
        raise EmbeddingFailure("No texts to embed")

    if client is None:
        client = get_openai_client()

    try:
        response = await client.embeddings.create(
            model=config.EMBEDDING_MODEL,
            input=texts,
            dimensions=config.EMBEDDING_DIMENSIONS,
        )
    except OpenAIError as e:
        logger.error(f"[EMBEDDER] Embedding request failed: {e}")
        raise EmbeddingFailure("Embedding generation failed") from e

    data = list(getattr(response, "data", None) or [])
    if len(data) != len(texts):
        logger.error(f"[EMBEDDER] Expected {len(texts)} embeddings, got {len(data)}")
        raise EmbeddingFailure("Embedding generation returned an incomplete result")

    # The API tags each vector with the position of its input
    data.sort(key=lambda item: item.index)
    embeddings = [item.embedding for item in data]
    if any(not vector for vector in embeddings):
        raise EmbeddingFailure("Embedding generation returned an empty vector")

    usage = getattr(response, "usage", None)
    logger.info(
        f"[EMBEDDER] Generated {len(embeddings)} embeddings "
        f"({config.EMBEDDING_MODEL}, {config.EMBEDDING_DIMENSIONS}d), "
        f"usage: {getattr(usage, 'total_tokens', '?')} tokens"
    )
    return embeddings


async def embed_one(
    text: str,
    client: Optional[AsyncOpenAI] = None,
) -> List[float]:
    """Generate an embedding for a single text.

    Args:
        text: The text to embed.
        client: Optional pre-existing AsyncOpenAI client.

    Returns:
        Embedding vector (list of floats).
    """
    embeddings = await embed_many([text], client=client)
    return embeddings[0]
