"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Document chunking with overlap
- Embedding generation
- Local vector storage
- Brute-force cosine ranking
- Ingest and retrieval orchestration
"""
