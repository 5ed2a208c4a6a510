"""Batched embedding and incremental index construction."""
from typing import Callable, Iterable, List, Optional

import structlog

from localdocs import config
from localdocs.errors import ConfigurationError
from localdocs.rag.embedder import Embedder
from localdocs.rag.models import Chunk
from localdocs.rag.store_faiss import VectorIndex

logger = structlog.get_logger()

ProgressCallback = Callable[[float], None]


class IndexBuilder:
    """Embeds chunks batch by batch and folds each batch into one index."""

    def __init__(self, embedder: Embedder):
        self.embedder = embedder

    async def build(
        self,
        chunks: Iterable[Chunk],
        batch_size: int = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> VectorIndex:
        """Build a vector index from chunks.

        Each batch of at most ``batch_size`` chunks is embedded and turned
        into its own sub-index. The first sub-index becomes the accumulator
        and every later one is merged into it. After each batch
        ``on_progress`` receives the percentage of chunks processed so far;
        the last call reports exactly 100. With no chunks an empty index is
        returned and ``on_progress`` is never called.

        Args:
            chunks: Chunks to index (materialised once to count them)
            batch_size: Maximum chunks embedded per batch (default from config)
            on_progress: Optional callback receiving a percentage in (0, 100]

        Returns:
            The cumulative VectorIndex

        Raises:
            ConfigurationError: If batch_size < 1
            EmbeddingError: If embedding any batch fails
        """
        batch_size = config.EMBED_BATCH_SIZE if batch_size is None else batch_size
        if batch_size < 1:
            raise ConfigurationError(f"Batch size must be at least 1, got {batch_size}")

        chunks = list(chunks)
        total = len(chunks)

        if total == 0:
            logger.warning("no_chunks_to_index")
            return VectorIndex()

        accumulator: Optional[VectorIndex] = None
        processed = 0

        for start in range(0, total, batch_size):
            batch: List[Chunk] = chunks[start:start + batch_size]
            embeddings = await self.embedder.embed_batch([c.text for c in batch])

            sub_index = VectorIndex.from_embeddings(embeddings, batch)

            if accumulator is None:
                accumulator = sub_index
            else:
                accumulator.merge(sub_index)

            processed += len(batch)
            percent = 100.0 * processed / total

            logger.debug(
                "index_batch_merged",
                batch_size=len(batch),
                processed=processed,
                total=total,
                percent=round(percent, 2),
            )

            if on_progress is not None:
                on_progress(percent)

        logger.info(
            "index_built",
            vector_count=len(accumulator),
            dimension=accumulator.dimension,
        )

        return accumulator
