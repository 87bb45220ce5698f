#!/usr/bin/env python3
"""
Tests for the ChromaDB knowledge chunk store.

Uses an in-memory Chroma client with a fresh collection per test.
"""
import uuid

import chromadb

from chatbot.rag import chunk_store


def _collection():
    return chunk_store.get_or_create_collection(
        client=chromadb.EphemeralClient(),
        name=f"test_chunks_{uuid.uuid4().hex}",
    )


def test_insert_and_find_chunk():
    collection = _collection()

    chunk = chunk_store.insert_chunk("Hours", "Office hours are 9-5.", [1.0, 0.0, 0.0], collection=collection)

    assert "embedding" not in chunk
    assert chunk["timestamp"]
    found = chunk_store.find_chunk_by_id(chunk["id"], collection=collection)
    assert found == chunk
    with_vector = chunk_store.find_chunk_by_id(chunk["id"], include_embedding=True, collection=collection)
    assert with_vector["embedding"] == [1.0, 0.0, 0.0]


def test_list_never_includes_embeddings():
    collection = _collection()
    chunk_store.insert_chunk("A", "First fragment.", [1.0, 0.0, 0.0], collection=collection)
    chunk_store.insert_chunk("B", "Second fragment.", [0.0, 1.0, 0.0], collection=collection)

    chunks = chunk_store.list_all_chunks(collection=collection)

    assert sorted(c["content"] for c in chunks) == ["First fragment.", "Second fragment."]
    assert all("embedding" not in c for c in chunks)


def test_title_update_keeps_embedding():
    collection = _collection()
    chunk = chunk_store.insert_chunk("Old", "Office hours are 9-5.", [0.6, 0.8, 0.0], collection=collection)
    before = chunk_store.find_chunk_by_id(chunk["id"], include_embedding=True, collection=collection)

    updated = chunk_store.update_chunk_by_id(chunk["id"], {"title": "New"}, collection=collection)

    after = chunk_store.find_chunk_by_id(chunk["id"], include_embedding=True, collection=collection)
    assert updated["title"] == "New"
    assert after["content"] == "Office hours are 9-5."
    assert after["timestamp"] == before["timestamp"]
    assert after["embedding"] == before["embedding"]


def test_content_update_requires_embedding():
    collection = _collection()
    chunk = chunk_store.insert_chunk("T", "Old content.", [1.0, 0.0, 0.0], collection=collection)

    try:
        chunk_store.update_chunk_by_id(chunk["id"], {"content": "New content."}, collection=collection)
        assert False, "Expected ValueError"
    except ValueError:
        pass

    chunk_store.update_chunk_by_id(
        chunk["id"], {"content": "New content.", "embedding": [0.0, 1.0, 0.0]}, collection=collection
    )
    after = chunk_store.find_chunk_by_id(chunk["id"], include_embedding=True, collection=collection)
    assert after["content"] == "New content."
    assert after["embedding"] == [0.0, 1.0, 0.0]


def test_missing_chunk_operations():
    collection = _collection()

    assert chunk_store.find_chunk_by_id("missing", collection=collection) is None
    assert chunk_store.update_chunk_by_id("missing", {"title": "x"}, collection=collection) is None
    assert chunk_store.delete_chunk_by_id("missing", collection=collection) is False


def test_delete_chunk():
    collection = _collection()
    chunk = chunk_store.insert_chunk("T", "Content.", [1.0, 0.0, 0.0], collection=collection)

    assert chunk_store.delete_chunk_by_id(chunk["id"], collection=collection) is True
    assert chunk_store.find_chunk_by_id(chunk["id"], collection=collection) is None


def test_vector_search_scores_by_dot_product():
    collection = _collection()
    chunk_store.insert_chunk("Hours", "Office hours are 9-5.", [1.0, 0.0, 0.0], collection=collection)
    chunk_store.insert_chunk("Library", "The library lends laptops.", [0.0, 1.0, 0.0], collection=collection)

    # Unnormalized query: a dot product gives 1.6 and 1.2, cosine would give 0.8 and 0.6
    hits = chunk_store.vector_search([1.6, 1.2, 0.0], 10, 5, collection=collection)

    assert [h["content"] for h in hits] == ["Office hours are 9-5.", "The library lends laptops."]
    assert abs(hits[0]["score"] - 1.6) < 1e-4
    assert abs(hits[1]["score"] - 1.2) < 1e-4


def test_vector_search_limit_and_empty_collection():
    collection = _collection()
    assert chunk_store.vector_search([1.0, 0.0, 0.0], 10, 5, collection=collection) == []

    for i in range(7):
        chunk_store.insert_chunk(f"T{i}", f"Fragment {i}.", [1.0, i / 10.0, 0.0], collection=collection)

    hits = chunk_store.vector_search([1.0, 0.0, 0.0], 10, 5, collection=collection)
    assert len(hits) == 5


if __name__ == "__main__":
    test_insert_and_find_chunk()
    test_list_never_includes_embeddings()
    test_title_update_keeps_embedding()
    test_content_update_requires_embedding()
    test_missing_chunk_operations()
    test_delete_chunk()
    test_vector_search_scores_by_dot_product()
    test_vector_search_limit_and_empty_collection()
    print("✅ ALL CHUNK STORE TESTS PASSED!")
