"""
ChromaDB persistent collection management for knowledge chunks.

Stores one record per chunk: the chunk content as the document, the title
and creation timestamp as metadata, and the content embedding. The
collection uses the inner-product space, so a search score is the dot
product between the query vector and the stored embedding.
"""

import logging
import os
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from chatbot import config

logger = logging.getLogger(__name__)


def get_chroma_client(persist_dir: str = None):
    """Get a persistent ChromaDB client.

    Args:
        persist_dir: Directory for persistent storage.
                     Defaults to config.CHROMA_PERSIST_DIR.

    Returns:
        ChromaDB PersistentClient instance.
    """
    import chromadb

    persist_dir = persist_dir or config.CHROMA_PERSIST_DIR
    os.makedirs(persist_dir, exist_ok=True)
    return chromadb.PersistentClient(path=persist_dir)


def get_or_create_collection(client=None, persist_dir: str = None, name: str = None):
    """Get or create the knowledge chunk collection.

    Embeddings are always supplied by the caller, so the collection has no
    embedding function of its own. ``hnsw:search_ef`` is the candidate
    pool the HNSW index explores per query.

    Args:
        client: Optional pre-existing ChromaDB client.
        persist_dir: Directory for persistent storage.
        name: Collection name. Defaults to config.CHUNK_COLLECTION_NAME.

    Returns:
        ChromaDB Collection instance.
    """
    if client is None:
        client = get_chroma_client(persist_dir)

    return client.get_or_create_collection(
        name=name or config.CHUNK_COLLECTION_NAME,
        metadata={
            "hnsw:space": "ip",
            "hnsw:search_ef": config.SEARCH_NUM_CANDIDATES,
        },
        embedding_function=None,
    )


def _to_chunk(chunk_id: str, document: str, metadata: Dict[str, Any], embedding=None) -> Dict[str, Any]:
    chunk = {
        "id": chunk_id,
        "title": metadata.get("title", ""),
        "content": document,
        "timestamp": metadata.get("timestamp"),
    }
    if embedding is not None:
        chunk["embedding"] = [float(x) for x in embedding]
    return chunk


def insert_chunk(
    title: str,
    content: str,
    embedding: List[float],
    collection=None,
) -> Dict[str, Any]:
    """Insert a new chunk with its embedding.

    Returns:
        The stored chunk without its embedding.
    """
    if collection is None:
        collection = get_or_create_collection()

    chunk_id = uuid.uuid4().hex
    metadata = {
        "title": title,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    collection.add(
        ids=[chunk_id],
        embeddings=[embedding],
        documents=[content],
        metadatas=[metadata],
    )
    logger.info(f"[CHUNK_STORE] Inserted chunk {chunk_id} ({len(content)} chars)")
    return _to_chunk(chunk_id, content, metadata)


def find_chunk_by_id(
    chunk_id: str,
    include_embedding: bool = False,
    collection=None,
) -> Optional[Dict[str, Any]]:
    """Fetch a single chunk, optionally with its embedding.

    Returns:
        Chunk dict, or None if the id does not exist.
    """
    if collection is None:
        collection = get_or_create_collection()

    include = ["documents", "metadatas"]
    if include_embedding:
        include.append("embeddings")
    results = collection.get(ids=[chunk_id], include=include)
    if not results["ids"]:
        return None

    embedding = None
    if include_embedding:
        embedding = results["embeddings"][0]
    return _to_chunk(results["ids"][0], results["documents"][0], results["metadatas"][0], embedding)


def update_chunk_by_id(
    chunk_id: str,
    fields: Dict[str, Any],
    collection=None,
) -> Optional[Dict[str, Any]]:
    """Update title, content and/or embedding of an existing chunk.

    Only the fields present in ``fields`` change. The content and its
    embedding are written together; callers decide when to re-embed.

    Returns:
        The updated chunk without its embedding, or None if missing.
    """
    if collection is None:
        collection = get_or_create_collection()

    existing = find_chunk_by_id(chunk_id, collection=collection)
    if existing is None:
        return None

    metadata = {
        "title": fields.get("title") or existing["title"],
        "timestamp": existing["timestamp"],
    }
    update_args = {"ids": [chunk_id], "metadatas": [metadata]}
    if "content" in fields:
        if "embedding" not in fields:
            raise ValueError("A content update must carry the new embedding")
        update_args["documents"] = [fields["content"]]
        update_args["embeddings"] = [fields["embedding"]]

    collection.update(**update_args)
    logger.info(
        f"[CHUNK_STORE] Updated chunk {chunk_id} "
        f"(re-embedded={'embeddings' in update_args})"
    )
    return _to_chunk(chunk_id, fields.get("content", existing["content"]), metadata)


def delete_chunk_by_id(chunk_id: str, collection=None) -> bool:
    """Delete a chunk. Returns False if it did not exist."""
    if collection is None:
        collection = get_or_create_collection()

    if find_chunk_by_id(chunk_id, collection=collection) is None:
        return False
    collection.delete(ids=[chunk_id])
    logger.info(f"[CHUNK_STORE] Deleted chunk {chunk_id}")
    return True


def list_all_chunks(collection=None) -> List[Dict[str, Any]]:
    """List every chunk, oldest first. Embeddings are never included."""
    if collection is None:
        collection = get_or_create_collection()

    results = collection.get(include=["documents", "metadatas"])
    chunks = [
        _to_chunk(chunk_id, results["documents"][i], results["metadatas"][i])
        for i, chunk_id in enumerate(results["ids"])
    ]
    chunks.sort(key=lambda c: c["timestamp"] or "")
    return chunks


def vector_search(
    query_vector: List[float],
    num_candidates: int = None,
    limit: int = None,
    collection=None,
) -> List[Dict[str, Any]]:
    """Nearest-neighbour search by dot product.

    Args:
        query_vector: Embedding of the query text.
        num_candidates: Candidate pool size. Defaults to
                        config.SEARCH_NUM_CANDIDATES.
        limit: Maximum hits to return. Defaults to config.SEARCH_LIMIT.
        collection: Optional pre-existing collection.

    Returns:
        List of ``{"content", "score"}`` dicts, best first.
    """
    if collection is None:
        collection = get_or_create_collection()

    num_candidates = num_candidates or config.SEARCH_NUM_CANDIDATES
    limit = limit or config.SEARCH_LIMIT
    n_results = min(limit, num_candidates, collection.count())
    if n_results == 0:
        return []

    results = collection.query(
        query_embeddings=[query_vector],
        n_results=n_results,
        include=["documents", "distances"],
    )

    hits = []
    if results and results["ids"] and results["ids"][0]:
        for i in range(len(results["ids"][0])):
            # Chroma's "ip" distance is 1 - dot product
            hits.append({
                "content": results["documents"][0][i],
                "score": 1.0 - float(results["distances"][0][i]),
            })
    return hits


def get_collection_info(persist_dir: str = None) -> Dict[str, Any]:
    """Get information about the current collection."""
    collection = get_or_create_collection(persist_dir=persist_dir)
    return {
        "name": collection.name,
        "count": collection.count(),
        "metadata": collection.metadata,
    }


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    info = get_collection_info()
    print(f"Collection: {info['name']}")
    print(f"Chunks stored: {info['count']}")
