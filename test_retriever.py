#!/usr/bin/env python3
"""
Tests for multi-query retrieval: expansion, merging/deduplication and the
end-to-end ingest-then-search flow.
"""
import asyncio
import json
import uuid
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch

import chromadb

from chatbot.errors import RetrievalFailure
from chatbot.rag import chunk_store, retriever


def _collection():
    return chunk_store.get_or_create_collection(
        client=chromadb.EphemeralClient(),
        name=f"test_retriever_{uuid.uuid4().hex}",
    )


def _fake_client(queries_payload, vectors):
    """Client whose query expansion returns ``queries_payload`` and whose
    embeddings come from the ``vectors`` text -> vector mapping."""
    client = MagicMock()
    client.chat.completions.create = AsyncMock(return_value=SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=json.dumps(queries_payload)))]
    ))

    async def create_embeddings(model, input, dimensions):
        return SimpleNamespace(
            data=[SimpleNamespace(index=i, embedding=vectors[t]) for i, t in enumerate(input)],
            usage=SimpleNamespace(total_tokens=len(input)),
        )

    client.embeddings.create = AsyncMock(side_effect=create_embeddings)
    return client


def test_merge_keeps_highest_scoring_duplicate():
    variant_a = [{"content": "text X", "score": 0.8}, {"content": "text Y", "score": 0.7}]
    variant_b = [{"content": "text X", "score": 0.95}, {"content": "text Z", "score": 0.5}]

    merged = retriever.merge_hits([variant_a, variant_b])

    assert merged == [
        {"content": "text X", "score": 0.95},
        {"content": "text Y", "score": 0.7},
        {"content": "text Z", "score": 0.5},
    ]


def test_merge_ties_keep_insertion_order():
    merged = retriever.merge_hits([
        [{"content": "first", "score": 0.5}],
        [{"content": "second", "score": 0.5}, {"content": "first", "score": 0.5}],
    ])

    assert [h["content"] for h in merged] == ["first", "second"]


def test_merge_result_has_unique_contents():
    sets = [
        [{"content": f"c{i % 4}", "score": (i * 37 % 100) / 100} for i in range(10)],
        [{"content": f"c{i % 3}", "score": (i * 53 % 100) / 100} for i in range(10)],
    ]

    merged = retriever.merge_hits(sets)

    contents = [h["content"] for h in merged]
    assert len(contents) == len(set(contents))
    for hit in merged:
        best = max(h["score"] for s in sets for h in s if h["content"] == hit["content"])
        assert hit["score"] == best
    assert [h["score"] for h in merged] == sorted((h["score"] for h in merged), reverse=True)


def test_expand_query_accepts_one_to_three_queries():
    client = _fake_client({"queries": ["when is the office open", "office hours"]}, {})

    queries = asyncio.run(retriever.expand_query("when is the office open", context="user: hi", client=client))

    assert queries == ["when is the office open", "office hours"]
    user_prompt = client.chat.completions.create.call_args.kwargs["messages"][1]["content"]
    assert "user: hi" in user_prompt
    assert "when is the office open" in user_prompt


def test_expand_query_rejects_out_of_range_output():
    for payload in [{"queries": []}, {"queries": ["a", "b", "c", "d"]}, {"queries": "a"}, {"other": []}]:
        client = _fake_client(payload, {})
        try:
            asyncio.run(retriever.expand_query("question", client=client))
            assert False, f"Expected RetrievalFailure for {payload}"
        except RetrievalFailure:
            pass


def test_queries_are_embedded_in_one_batch():
    queries = ["q1", "q2", "q3"]
    vectors = {"q1": [1.0, 0.0, 0.0], "q2": [0.0, 1.0, 0.0], "q3": [0.0, 0.0, 1.0]}
    client = _fake_client({"queries": queries}, vectors)
    collection = _collection()
    chunk_store.insert_chunk("A", "Alpha.", [1.0, 0.0, 0.0], collection=collection)

    asyncio.run(retriever.expand_and_search("question", client=client, collection=collection))

    assert client.embeddings.create.await_count == 1
    assert client.embeddings.create.call_args.kwargs["input"] == queries


def test_end_to_end_office_hours():
    collection = _collection()
    # Normalized embeddings, so dot-product scores fall in [0, 1]
    chunk_store.insert_chunk("X", "Office hours are 9-5.", [1.0, 0.0, 0.0], collection=collection)
    chunk_store.insert_chunk("Y", "The library lends laptops.", [0.0, 1.0, 0.0], collection=collection)
    queries = ["when is the office open", "office opening hours", "what time does the office close"]
    vectors = {
        "when is the office open": [0.8, 0.6, 0.0],
        "office opening hours": [0.96, 0.28, 0.0],
        "what time does the office close": [0.6, 0.8, 0.0],
    }
    client = _fake_client({"queries": queries}, vectors)

    hits = asyncio.run(retriever.expand_and_search("when is the office open", client=client, collection=collection))

    office = [h for h in hits if h["content"] == "Office hours are 9-5."]
    assert len(office) == 1
    assert 0.0 <= office[0]["score"] <= 1.0
    assert abs(office[0]["score"] - 0.96) < 1e-4
    assert hits[0]["content"] == "Office hours are 9-5."
    assert len(hits) == 2


def test_single_failed_search_fails_whole_retrieval():
    queries = ["q1", "q2", "q3"]
    vectors = {"q1": [1.0, 0.0, 0.0], "q2": [0.0, 1.0, 0.0], "q3": [0.0, 0.0, 1.0]}
    client = _fake_client({"queries": queries}, vectors)

    def flaky_search(vector, num_candidates, limit, collection):
        if vector == vectors["q2"]:
            raise RuntimeError("search backend unavailable")
        return [{"content": "Alpha.", "score": 0.9}]

    with patch.object(retriever, "vector_search", side_effect=flaky_search):
        try:
            asyncio.run(retriever.expand_and_search("question", client=client))
            assert False, "Expected RetrievalFailure"
        except RetrievalFailure:
            pass


def test_search_uses_configured_pool_and_limit():
    queries = ["q1"]
    client = _fake_client({"queries": queries}, {"q1": [1.0, 0.0, 0.0]})

    with patch.object(retriever, "vector_search", return_value=[]) as search:
        asyncio.run(retriever.expand_and_search("question", client=client))

    args = search.call_args.args
    assert args[1] == 10
    assert args[2] == 5


if __name__ == "__main__":
    test_merge_keeps_highest_scoring_duplicate()
    test_merge_ties_keep_insertion_order()
    test_merge_result_has_unique_contents()
    test_expand_query_accepts_one_to_three_queries()
    test_expand_query_rejects_out_of_range_output()
    test_queries_are_embedded_in_one_batch()
    test_end_to_end_office_hours()
    test_single_failed_search_fails_whole_retrieval()
    test_search_uses_configured_pool_and_limit()
    print("✅ ALL RETRIEVER TESTS PASSED!")
