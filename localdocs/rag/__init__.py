"""RAG (Retrieval-Augmented Generation) pipeline components.

This package contains modules for:
- Document loading (PDF, DOCX, markdown, plain text)
- Document chunking with overlap
- Embedding generation
- FAISS vector index and storage
- Semantic retrieval and prompt assembly
- Streaming generation and chat orchestration
"""
