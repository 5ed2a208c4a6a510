"""Ingest pipeline for indexing a folder of documents.

Orchestrates:
- File discovery and parsing
- Text chunking
- Batched embedding generation
- Vector index construction and persistence
"""
from contextlib import aclosing
from pathlib import Path
from typing import Any, AsyncIterator, Callable, Dict, Optional, Set

import structlog

from localdocs.config import RagConfig
from localdocs.errors import IngestionInProgressError
from localdocs.rag.chunker import TextChunker
from localdocs.rag.embedder import Embedder
from localdocs.rag.events import Outcome, outcome_to_dict, stream_events
from localdocs.rag.index_builder import IndexBuilder, ProgressCallback
from localdocs.rag.loaders import DocumentLoader
from localdocs.rag.store_faiss import IndexStore

logger = structlog.get_logger()

# Index locations with an ingestion currently running in this process
_active_locations: Set[Path] = set()


class IngestPipeline:
    """Pipeline for ingesting a folder into the RAG index."""

    def __init__(
        self,
        rag_config: RagConfig = None,
        embedder: Embedder = None,
        store: IndexStore = None,
        loader: DocumentLoader = None,
        on_saved: Optional[Callable[[], None]] = None,
    ):
        """Initialize the ingest pipeline.

        Args:
            rag_config: Chunking and batching settings (defaults from environment)
            embedder: Embedder (defaults to one for rag_config.embedding_model)
            store: Destination index store (default: config.INDEX_DIR)
            loader: Document loader (default: all supported formats)
            on_saved: Called after each new index is written, e.g. to drop
                indexes cached by chat runners

        Raises:
            ConfigurationError: If the chunking parameters are invalid
        """
        self.rag_config = rag_config or RagConfig.from_env()
        self.embedder = embedder or Embedder(model=self.rag_config.embedding_model)
        self.store = store or IndexStore()
        self.loader = loader or DocumentLoader()
        self.on_saved = on_saved

        self.chunker = TextChunker(
            chunk_size=self.rag_config.chunk_size,
            chunk_overlap=self.rag_config.chunk_overlap,
        )
        self.builder = IndexBuilder(self.embedder)

        self.stats = self._empty_stats()

        logger.info(
            "ingest_pipeline_initialized",
            index_dir=str(self.store.location),
            embedding_model=self.embedder.model,
            settings=self.rag_config.describe(),
        )

    @staticmethod
    def _empty_stats() -> Dict[str, Any]:
        return {
            "files_processed": 0,
            "files_failed": 0,
            "documents_created": 0,
            "chunks_created": 0,
            "embeddings_generated": 0,
        }

    async def ingest_all(
        self,
        root_dir: Path,
        on_progress: Optional[ProgressCallback] = None,
    ) -> Dict[str, Any]:
        """Rebuild the index from every supported file under root_dir.

        The previous index at the store location is replaced once the new
        one is complete. Files that fail to parse are skipped and counted.

        Args:
            root_dir: Folder to ingest
            on_progress: Optional callback receiving percentages after each batch

        Returns:
            Dictionary with ingestion statistics

        Raises:
            FileNotFoundError: If root_dir doesn't exist
            IngestionInProgressError: If another ingestion targets the same store
            EmbeddingError: If the embedding model fails
        """
        location = self.store.location.resolve()
        if location in _active_locations:
            raise IngestionInProgressError(
                f"An ingestion into {self.store.location} is already running"
            )

        _active_locations.add(location)
        try:
            return await self._ingest(Path(root_dir), on_progress)
        finally:
            _active_locations.discard(location)

    async def _ingest(
        self, root_dir: Path, on_progress: Optional[ProgressCallback]
    ) -> Dict[str, Any]:
        logger.info("starting_ingest_all", root_dir=str(root_dir))

        self.stats = self._empty_stats()

        documents = list(self.loader.load(root_dir))
        self.stats["files_processed"] = self.loader.stats["files_processed"]
        self.stats["files_failed"] = self.loader.stats["files_failed"]
        self.stats["documents_created"] = len(documents)

        chunks = self.chunker.chunk_documents(documents)
        self.stats["chunks_created"] = len(chunks)

        index = await self.builder.build(
            chunks,
            batch_size=self.rag_config.batch_size,
            on_progress=on_progress,
        )
        self.stats["embeddings_generated"] = len(index)

        await self.store.save(index, embedding_model=self.embedder.model)
        if self.on_saved is not None:
            self.on_saved()

        logger.info("ingest_all_completed", stats=self.stats)

        return dict(self.stats)

    async def stream(self, root_dir: Path) -> AsyncIterator[Dict[str, Any]]:
        """Run an ingestion and yield its events as dicts.

        Yields ``{"type": "progress", "percent": ...}`` after each batch, then
        one ``{"type": "success", "stats": {...}}`` or ``{"type": "error", ...}``.
        """

        async def _run(emit):
            return await self.ingest_all(root_dir, on_progress=emit)

        async with aclosing(stream_events(_run)) as events:
            async for item in events:
                if isinstance(item, Outcome):
                    yield outcome_to_dict(item, "success", "stats")
                else:
                    yield {"type": "progress", "percent": item}

