"""Text chunking with overlap for RAG pipeline.

Implements character-based chunking to avoid tokenizer dependencies.
Windows are fixed-size and advance by ``chunk_size - chunk_overlap``
characters, so boundaries are reproducible from the parameters alone.
"""
from typing import Dict, Iterable, Iterator, List

import structlog

from localdocs import config
from localdocs.errors import ConfigurationError
from localdocs.rag.models import Chunk, Document

logger = structlog.get_logger()


class TextChunker:
    """Character-based text chunker with overlap support."""

    def __init__(
        self,
        chunk_size: int = None,
        chunk_overlap: int = None,
    ):
        """Initialize the text chunker.

        Args:
            chunk_size: Size of each chunk in characters (default from config)
            chunk_overlap: Overlap between chunks in characters (default from config)

        Raises:
            ConfigurationError: If the overlap is not smaller than the chunk size
        """
        self.chunk_size = config.CHUNK_SIZE if chunk_size is None else chunk_size
        self.chunk_overlap = config.CHUNK_OVERLAP if chunk_overlap is None else chunk_overlap

        # Validate parameters
        if self.chunk_size <= 0:
            raise ConfigurationError(f"Chunk size must be positive, got {self.chunk_size}")

        if self.chunk_overlap < 0:
            raise ConfigurationError(
                f"Chunk overlap must not be negative, got {self.chunk_overlap}"
            )

        if self.chunk_overlap >= self.chunk_size:
            raise ConfigurationError(
                f"Overlap ({self.chunk_overlap}) must be less than "
                f"chunk size ({self.chunk_size})"
            )

        logger.info(
            "chunker_initialized",
            chunk_size=self.chunk_size,
            chunk_overlap=self.chunk_overlap,
        )

    @property
    def step(self) -> int:
        """Distance between the starts of consecutive windows."""
        return self.chunk_size - self.chunk_overlap

    def split(self, document: Document) -> Iterator[Chunk]:
        """Split a document into overlapping chunks.

        Each call returns a fresh generator, so the sequence can be restarted
        by calling ``split`` again. The last window stops at the end of the
        text and may be shorter than ``chunk_size``.

        Args:
            document: Document to chunk

        Yields:
            Chunk objects carrying the document's source path and page number
        """
        return self._windows(document)

    def _windows(self, document: Document) -> Iterator[Chunk]:
        text = document.text
        text_length = len(text)

        start = 0
        chunk_index = 0

        while start < text_length:
            end = min(start + self.chunk_size, text_length)

            yield Chunk(
                text=text[start:end],
                source_path=document.source_path,
                chunk_index=chunk_index,
                page_number=document.page_number,
                char_start=start,
                char_end=end,
                metadata=document.metadata,
            )

            if end == text_length:
                break

            start += self.step
            chunk_index += 1

    def chunk_documents(self, documents: Iterable[Document]) -> List[Chunk]:
        """Chunk every document, keeping document order.

        Args:
            documents: Documents to chunk

        Returns:
            Flat list of chunks
        """
        chunks: List[Chunk] = []
        document_count = 0

        for document in documents:
            chunks.extend(self.split(document))
            document_count += 1

        logger.info(
            "documents_chunked",
            document_count=document_count,
            chunk_count=len(chunks),
        )

        return chunks

    def get_chunk_stats(self, chunks: List[Chunk]) -> Dict[str, int]:
        """Get statistics about a set of chunks.

        Args:
            chunks: List of Chunk objects

        Returns:
            Dictionary with chunk statistics
        """
        if not chunks:
            return {
                "chunk_count": 0,
                "total_chars": 0,
                "avg_chunk_size": 0,
                "min_chunk_size": 0,
                "max_chunk_size": 0,
                "overlap": self.chunk_overlap,
            }

        chunk_sizes = [len(c.text) for c in chunks]

        return {
            "chunk_count": len(chunks),
            "total_chars": sum(chunk_sizes),
            "avg_chunk_size": sum(chunk_sizes) // len(chunks),
            "min_chunk_size": min(chunk_sizes),
            "max_chunk_size": max(chunk_sizes),
            "overlap": self.chunk_overlap,
        }
