"""
Retriever module for multi-query semantic retrieval at query time.

Expands the user's question into several phrasings, embeds them in one
batch, runs one vector search per phrasing concurrently against ChromaDB,
and merges the hit lists into a single score-ordered list with duplicate
contents removed.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Iterable, List, Optional

from openai import AsyncOpenAI, OpenAIError

from chatbot import config
from chatbot.clients.openai_client import get_openai_client
from chatbot.errors import EmbeddingFailure, RetrievalFailure
from chatbot.rag.chunk_store import vector_search
from chatbot.rag.embedder import embed_many

logger = logging.getLogger(__name__)

MIN_QUERY_VARIANTS = 1
MAX_QUERY_VARIANTS = 3

QUERY_EXPANSION_PROMPT = """You rewrite a student's question into {n} alternative search queries
for a knowledge base about the institution's student services.
Each query must keep the meaning of the original question but use different
wording, so that together they match as many relevant knowledge fragments as
possible. Use the conversation context only to resolve what the question
refers to. Keep the language of the question.

Respond with a JSON object of the form {{"queries": ["query 1", "query 2", "query 3"]}}."""


async def expand_query(
    query: str,
    context: str = "",
    client: Optional[AsyncOpenAI] = None,
) -> List[str]:
    """Ask the LLM for alternative phrasings of a query.

    Args:
        query: The query text the model passed to the search tool.
        context: Optional prior conversation, for disambiguation only.
        client: Optional pre-existing AsyncOpenAI client.

    Returns:
        Between 1 and 3 query strings.

    Raises:
        RetrievalFailure: If the call fails or the output has the wrong shape
            or an out-of-range number of queries.
    """
    if client is None:
        client = get_openai_client()

    user_content = f"Create {config.QUERY_VARIANTS} queries from this question:\n\n{query}"
    if context:
        user_content = f"Conversation so far:\n{context}\n\n{user_content}"

    try:
        response = await client.chat.completions.create(
            model=config.STRUCTURED_MODEL,
            messages=[
                {"role": "system", "content": QUERY_EXPANSION_PROMPT.format(n=config.QUERY_VARIANTS)},
                {"role": "user", "content": user_content},
            ],
            response_format={"type": "json_object"},
        )
        parsed = json.loads(response.choices[0].message.content or "")
    except (OpenAIError, json.JSONDecodeError) as e:
        logger.error(f"[RETRIEVER] Query expansion failed: {e}")
        raise RetrievalFailure("Query expansion failed") from e

    queries = parsed.get("queries") if isinstance(parsed, dict) else None
    if not isinstance(queries, list) or not all(isinstance(q, str) for q in queries):
        raise RetrievalFailure("Query expansion returned an unexpected shape")

    queries = [q.strip() for q in queries if q.strip()]
    if not MIN_QUERY_VARIANTS <= len(queries) <= MAX_QUERY_VARIANTS:
        raise RetrievalFailure(
            f"Query expansion returned {len(queries)} queries "
            f"(expected {MIN_QUERY_VARIANTS}-{MAX_QUERY_VARIANTS})"
        )
    return queries


def merge_hits(result_sets: Iterable[List[Dict[str, Any]]]) -> List[Dict[str, Any]]:
    """Flatten per-query hit lists, sort by score and drop duplicate contents.

    The sort is stable, so equal scores keep their insertion order (query
    variant order, then rank within the variant). After sorting, the first
    hit seen for a given content is kept, which is its highest-scoring copy.
    """
    flat = [hit for hits in result_sets for hit in hits]
    flat.sort(key=lambda hit: hit["score"], reverse=True)

    seen = set()
    unique = []
    for hit in flat:
        if hit["content"] in seen:
            continue
        seen.add(hit["content"])
        unique.append(hit)
    return unique


async def search_all(
    queries: List[str],
    client: Optional[AsyncOpenAI] = None,
    collection=None,
) -> List[Dict[str, Any]]:
    """Embed the queries in one batch and search for each one concurrently.

    Raises:
        RetrievalFailure: If embedding or any single search fails.
    """
    try:
        embeddings = await embed_many(queries, client=client)
    except EmbeddingFailure as e:
        raise RetrievalFailure("Embedding the search queries failed") from e

    try:
        result_sets = await asyncio.gather(*[
            asyncio.to_thread(
                vector_search,
                embedding,
                config.SEARCH_NUM_CANDIDATES,
                config.SEARCH_LIMIT,
                collection,
            )
            for embedding in embeddings
        ])
    except Exception as e:
        logger.exception("[RETRIEVER] Vector search failed")
        raise RetrievalFailure("Vector search failed") from e

    return merge_hits(result_sets)


async def expand_and_search(
    query: str,
    context: str = "",
    client: Optional[AsyncOpenAI] = None,
    collection=None,
) -> List[Dict[str, Any]]:
    """Expand a query into several phrasings and retrieve matching chunks.

    Args:
        query: The query text.
        context: Optional prior conversation used by query expansion.
        client: Optional pre-existing AsyncOpenAI client.
        collection: Optional pre-existing ChromaDB collection.

    Returns:
        Deduplicated ``{"content", "score"}`` hits, best first.

    Raises:
        RetrievalFailure: If any step fails; there are no partial results.
    """
    queries = await expand_query(query, context=context, client=client)
    logger.info(f"[RETRIEVER] Expanded {query[:80]!r} into {len(queries)} queries: {queries}")

    hits = await search_all(queries, client=client, collection=collection)
    logger.info(f"[RETRIEVER] Retrieved {len(hits)} unique chunks for query: {query[:80]}")
    return hits
