"""Embedding generation through the local Ollama embedding model."""
import asyncio
from typing import List, Optional, Sequence

import httpx
import structlog

from localdocs import config
from localdocs.errors import EmbeddingError
from localdocs.llm_client import OllamaClient, ollama_client

logger = structlog.get_logger()


class Embedder:
    """Maps text to fixed-length vectors with a single embedding model."""

    def __init__(self, client: OllamaClient = None, model: str = None):
        """Initialize the embedder.

        Args:
            client: Ollama client (defaults to the global client)
            model: Embedding model name (default from config)
        """
        self.client = client or ollama_client
        self.model = model or config.EMBEDDING_MODEL
        self._dimension: Optional[int] = None

    async def embed(self, text: str) -> List[float]:
        """Embed a single text.

        Args:
            text: Text to embed

        Returns:
            Embedding vector

        Raises:
            EmbeddingError: If the model call fails or returns no vector
        """
        try:
            response = await self.client.embeddings(prompt=text, model=self.model)
        except httpx.HTTPError as e:
            logger.error(
                "embedding_generation_failed",
                text_preview=text[:100],
                error=str(e),
            )
            raise EmbeddingError(f"Failed to generate embedding: {e}") from e

        embedding = response.get("embedding", [])

        if not embedding:
            raise EmbeddingError("Empty embedding returned for text")

        return [float(x) for x in embedding]

    async def embed_batch(self, texts: Sequence[str]) -> List[List[float]]:
        """Embed several texts concurrently.

        Output order matches input order; the result is the same as calling
        ``embed`` on each text in turn.

        Raises:
            EmbeddingError: If any embedding fails or dimensions disagree
        """
        if not texts:
            return []

        embeddings = await asyncio.gather(*(self.embed(text) for text in texts))

        dimensions = {len(e) for e in embeddings}
        if len(dimensions) != 1:
            raise EmbeddingError(
                f"Inconsistent embedding dimensions in batch: {sorted(dimensions)}"
            )

        logger.debug(
            "embeddings_batch_generated",
            batch_size=len(texts),
            dimension=len(embeddings[0]),
        )

        return list(embeddings)

    async def dimension(self) -> int:
        """Detect embedding dimension by embedding a test string (cached)."""
        if self._dimension is None:
            self._dimension = len(await self.embed("test"))
            logger.info(
                "embedding_dimension_detected",
                model=self.model,
                dimension=self._dimension,
            )
        return self._dimension
