"""
RAG (Retrieval Augmented Generation) package for the student-support chatbot.

Provides the knowledge base behind the assistant's search tool: document
chunking, embeddings, the vector store and multi-query retrieval.

Components:
    - chunker: Splits long documents into self-contained chunks via an LLM
    - embedder: Generates embeddings via OpenAI text-embedding-3-small
    - chunk_store: ChromaDB persistent collection of knowledge chunks
    - retriever: Query expansion + parallel vector search at query time
"""
