"""Retriever for semantic search over indexed documents.

Handles:
- Query embedding generation
- FAISS vector search
- Result ranking and formatting
"""
import math
from dataclasses import dataclass
from typing import List

import structlog

from localdocs.errors import ConfigurationError
from localdocs.rag.embedder import Embedder
from localdocs.rag.models import Chunk, SourceReference
from localdocs.rag.store_faiss import IndexStore, VectorIndex

logger = structlog.get_logger()


@dataclass(frozen=True)
class RetrievalResult:
    """A single retrieved chunk with its distance to the query."""

    chunk: Chunk
    distance: float
    position: int

    @property
    def reference(self) -> SourceReference:
        return SourceReference.for_chunk(self.chunk)

    @property
    def source(self) -> str:
        """Get a formatted source string for display."""
        return self.reference.anchor

    @property
    def relevance_score(self) -> float:
        """Convert L2 distance to a 0-1 relevance score.

        Lower distance = higher relevance.
        We use a simple exponential decay for interpretability.
        """
        return math.exp(-self.distance / 2.0)


class Retriever:
    """Semantic retriever for RAG pipeline."""

    def __init__(self, index: VectorIndex, embedder: Embedder):
        """Initialize the retriever.

        Args:
            index: Loaded (read-only) vector index
            embedder: Embedder using the same model the index was built with
        """
        self.index = index
        self.embedder = embedder

        logger.info(
            "retriever_initialized",
            embedding_model=embedder.model,
            vector_count=len(index),
        )

    @classmethod
    async def from_store(cls, store: IndexStore, embedder: Embedder) -> "Retriever":
        """Load the persisted index and wrap it in a retriever.

        The stored vectors must have the dimension the embedder produces.

        Raises:
            IndexNotFoundError: If nothing has been ingested yet
            CorruptIndexError: If the stored index is unusable or was built
                with an embedding model of another dimension
            EmbeddingError: If the embedding dimension cannot be determined
        """
        expected_dimension = await embedder.dimension() if store.exists() else None
        index = await store.load(expected_dimension=expected_dimension)
        return cls(index, embedder)

    async def retrieve(self, query: str, top_k: int) -> List[RetrievalResult]:
        """Retrieve relevant chunks for a query.

        Args:
            query: User query text
            top_k: Number of results to return (at least 1)

        Returns:
            RetrievalResult objects, most relevant first; ties keep
            indexing order

        Raises:
            ConfigurationError: If top_k < 1
            EmbeddingError: If the query cannot be embedded
            DimensionMismatchError: If the query vector does not fit the index
        """
        if top_k < 1:
            raise ConfigurationError(f"top_k must be at least 1, got {top_k}")

        if not query or not query.strip():
            logger.warning("empty_query_provided")
            return []

        if len(self.index) == 0:
            logger.warning("empty_index_no_results")
            return []

        logger.info("retrieval_started", query_length=len(query), top_k=top_k)

        query_embedding = await self.embedder.embed(query)
        hits = self.index.search(query_embedding, top_k)

        results = [
            RetrievalResult(chunk=hit.chunk, distance=hit.distance, position=hit.position)
            for hit in hits
        ]

        logger.info(
            "retrieval_completed",
            query_length=len(query),
            results_returned=len(results),
            top_distance=results[0].distance if results else None,
        )

        return results
