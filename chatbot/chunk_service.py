"""Knowledge base management: create, edit, delete and split chunks.

An edit re-embeds a chunk only when its content actually changes; a title
change leaves the stored vector untouched.
"""
import asyncio
import logging
from typing import Any, Dict, List, Optional

from openai import AsyncOpenAI

from chatbot.errors import ChunkNotFound, InvalidRequest
from chatbot.rag import chunk_store
from chatbot.rag.chunker import create_chunks
from chatbot.rag.embedder import embed_many, embed_one

logger = logging.getLogger(__name__)


async def create_chunk(
    title: str,
    content: str,
    client: Optional[AsyncOpenAI] = None,
    collection=None,
) -> Dict[str, Any]:
    """Embed and store a single chunk."""
    if not title or not content:
        raise InvalidRequest("Title and content are required")

    embedding = await embed_one(content, client=client)
    return await asyncio.to_thread(chunk_store.insert_chunk, title, content, embedding, collection=collection)


def get_chunk(chunk_id: str, collection=None) -> Dict[str, Any]:
    chunk = chunk_store.find_chunk_by_id(chunk_id, collection=collection)
    if chunk is None:
        raise ChunkNotFound("Chunk not found")
    return chunk


def list_chunks(collection=None) -> List[Dict[str, Any]]:
    return chunk_store.list_all_chunks(collection=collection)


async def update_chunk(
    chunk_id: str,
    title: Optional[str] = None,
    content: Optional[str] = None,
    client: Optional[AsyncOpenAI] = None,
    collection=None,
) -> Dict[str, Any]:
    """Edit a chunk's title and/or content.

    Raises:
        InvalidRequest: If neither title nor content is given.
        ChunkNotFound: If the chunk does not exist.
    """
    if not title and not content:
        raise InvalidRequest("Title or content must be provided")

    existing = await asyncio.to_thread(chunk_store.find_chunk_by_id, chunk_id, collection=collection)
    if existing is None:
        raise ChunkNotFound("Chunk not found")

    fields: Dict[str, Any] = {}
    if title:
        fields["title"] = title
    if content and content != existing["content"]:
        fields["content"] = content
        fields["embedding"] = await embed_one(content, client=client)

    updated = await asyncio.to_thread(chunk_store.update_chunk_by_id, chunk_id, fields, collection=collection)
    if updated is None:
        # Deleted between the read and the write
        raise ChunkNotFound("Chunk not found")
    return updated


def delete_chunk(chunk_id: str, collection=None) -> None:
    if not chunk_store.delete_chunk_by_id(chunk_id, collection=collection):
        raise ChunkNotFound("Chunk not found")


async def split_text(
    text: str,
    max_chunk_size: int = None,
    client: Optional[AsyncOpenAI] = None,
) -> Dict[str, List[str]]:
    """Bulk chunk-creation entry point: ``{text} -> {chunks}``."""
    chunks = await create_chunks(text, max_chunk_size=max_chunk_size, client=client)
    return {"chunks": chunks}


async def ingest_text(
    title: str,
    text: str,
    max_chunk_size: int = None,
    client: Optional[AsyncOpenAI] = None,
    collection=None,
) -> List[Dict[str, Any]]:
    """Split a document, embed every chunk in one batch and store them all.

    Every chunk shares ``title``. Embedding happens before any insert, so an
    embedding failure stores nothing.
    """
    if not title:
        raise InvalidRequest("Title is required")

    chunks = await create_chunks(text, max_chunk_size=max_chunk_size, client=client)
    embeddings = await embed_many(chunks, client=client)

    def insert_all():
        return [
            chunk_store.insert_chunk(title, content, embedding, collection=collection)
            for content, embedding in zip(chunks, embeddings)
        ]

    stored = await asyncio.to_thread(insert_all)
    logger.info(f"[INGEST] Stored {len(stored)} chunks for {title!r}")
    return stored
