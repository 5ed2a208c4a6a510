"""FAISS vector index and its on-disk store.

Handles:
- Append-only vector index with chunk payloads and merge
- Exact L2 search with deterministic tie-breaking
- Persistence of the index and chunk metadata to a fixed directory
- Integrity and dimension checks on load
"""
import json
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Sequence, Tuple

import faiss
import numpy as np
import structlog

from localdocs import config
from localdocs.errors import CorruptIndexError, IndexNotFoundError
from localdocs.rag.models import Chunk, IndexEntry

logger = structlog.get_logger()

INDEX_FILENAME = "vectors.index"
METADATA_FILENAME = "metadata.json"
INDEX_TYPE = "IndexFlatL2"


class DimensionMismatchError(ValueError):
    """A vector does not have the index's dimension."""


@dataclass(frozen=True)
class SearchHit:
    """A chunk matched by a vector search."""

    chunk: Chunk
    distance: float
    position: int


class VectorIndex:
    """Append-only FAISS index keeping one chunk per vector.

    The FAISS index is created on the first insertion, which fixes the
    dimension for every later vector.
    """

    def __init__(self, dimension: Optional[int] = None):
        self.dimension: Optional[int] = None
        self._index: Optional[faiss.Index] = None
        self._chunks: List[Chunk] = []
        self._frozen = False

        if dimension is not None:
            self._init_index(dimension)

    def _init_index(self, dimension: int) -> None:
        if dimension <= 0:
            raise ValueError(f"Embedding dimension must be positive, got {dimension}")
        self.dimension = dimension
        # Exact search, simple, works for <100k vectors
        self._index = faiss.IndexFlatL2(dimension)

    @classmethod
    def from_embeddings(
        cls, embeddings: Sequence[Sequence[float]], chunks: Sequence[Chunk]
    ) -> "VectorIndex":
        """Build an index from parallel sequences of vectors and chunks."""
        index = cls()
        index.add(embeddings, chunks)
        return index

    @classmethod
    def _from_faiss(cls, faiss_index: faiss.Index, chunks: List[Chunk]) -> "VectorIndex":
        index = cls()
        index.dimension = faiss_index.d
        index._index = faiss_index
        index._chunks = list(chunks)
        return index

    def __len__(self) -> int:
        return len(self._chunks)

    @property
    def frozen(self) -> bool:
        return self._frozen

    @property
    def chunks(self) -> List[Chunk]:
        return list(self._chunks)

    def freeze(self) -> "VectorIndex":
        """Make the index read-only; later add/merge calls raise."""
        self._frozen = True
        return self

    def _check_writable(self) -> None:
        if self._frozen:
            raise RuntimeError("Vector index is read-only after load")

    def add(self, embeddings: Sequence[Sequence[float]], chunks: Sequence[Chunk]) -> None:
        """Append vectors and their chunks.

        Raises:
            ValueError: If lengths differ or the dimension does not match
            RuntimeError: If the index is frozen
        """
        self._check_writable()

        if len(embeddings) != len(chunks):
            raise ValueError(
                f"Got {len(embeddings)} embeddings for {len(chunks)} chunks"
            )

        if len(embeddings) == 0:
            return

        vectors = np.asarray(embeddings, dtype=np.float32)

        if vectors.ndim != 2:
            raise ValueError("Embeddings must all have the same length")

        if self._index is None:
            self._init_index(vectors.shape[1])

        if vectors.shape[1] != self.dimension:
            raise DimensionMismatchError(
                f"Embedding dimension mismatch: expected {self.dimension}, "
                f"got {vectors.shape[1]}"
            )

        self._index.add(vectors)
        self._chunks.extend(chunks)

        logger.debug("vectors_added", count=len(chunks), total=len(self._chunks))

    def vectors(self) -> np.ndarray:
        """All stored vectors as a (n, dimension) float32 array."""
        if not self._chunks:
            return np.zeros((0, self.dimension or 0), dtype=np.float32)
        return self._index.reconstruct_n(0, len(self._chunks))

    def merge(self, other: "VectorIndex") -> "VectorIndex":
        """Absorb another index's entries, keeping their order after ours.

        Vectors are copied out of the other FAISS index, never re-embedded.

        Returns:
            self, for chaining
        """
        self._check_writable()

        if len(other) == 0:
            return self

        if self.dimension is not None and other.dimension != self.dimension:
            raise DimensionMismatchError(
                f"Cannot merge index of dimension {other.dimension} "
                f"into index of dimension {self.dimension}"
            )

        self.add(other.vectors(), other._chunks)
        return self

    def entries(self) -> Iterator[IndexEntry]:
        """Iterate over (vector, chunk) pairs in insertion order."""
        for vector, chunk in zip(self.vectors(), self._chunks):
            yield IndexEntry(vector=vector.tolist(), chunk=chunk)

    def search(self, query_embedding: Sequence[float], top_k: int) -> List[SearchHit]:
        """Find the top_k nearest chunks to a query vector.

        Results are ordered by ascending distance. Equal distances keep
        insertion order, including at the top_k cut-off.

        Raises:
            DimensionMismatchError: If the query dimension does not match
        """
        total = len(self._chunks)
        if total == 0 or top_k <= 0:
            return []

        query_vector = np.asarray([query_embedding], dtype=np.float32)

        if query_vector.shape[1] != self.dimension:
            raise DimensionMismatchError(
                f"Query dimension mismatch: expected {self.dimension}, "
                f"got {query_vector.shape[1]}"
            )

        k = min(top_k, total)
        fetch = k

        # Widen the fetch until nothing tied with the k-th result can be missing
        while True:
            distances, ids = self._index.search(query_vector, fetch)
            distances, ids = distances[0], ids[0]
            if fetch == total or distances[fetch - 1] > distances[k - 1]:
                break
            fetch = min(total, fetch * 2)

        ranked = sorted(
            (float(d), int(i)) for d, i in zip(distances, ids) if i >= 0
        )[:k]

        return [
            SearchHit(chunk=self._chunks[i], distance=d, position=i)
            for d, i in ranked
        ]


class IndexStore:
    """Saves and loads a VectorIndex in a fixed directory."""

    def __init__(self, location: Path = None):
        """Initialize the store.

        Args:
            location: Directory holding the index files (default: config.INDEX_DIR)
        """
        self.location = Path(location or config.INDEX_DIR)
        self.index_path = self.location / INDEX_FILENAME
        self.metadata_path = self.location / METADATA_FILENAME

    def exists(self) -> bool:
        return self.metadata_path.exists()

    def version(self) -> Optional[Tuple[int, int, int]]:
        """Identity of the saved index, or None if nothing is saved.

        Every save replaces the metadata file, so the tuple changes whenever
        a new index is written, including by another process.
        """
        try:
            st = os.stat(self.metadata_path)
        except FileNotFoundError:
            return None
        return (st.st_ino, st.st_mtime_ns, st.st_size)

    async def save(self, index: VectorIndex, embedding_model: str = None) -> None:
        """Save an index, replacing whatever was stored here before.

        Both files are written to temporaries and then moved into place.

        Raises:
            RuntimeError: If writing fails
        """
        self.location.mkdir(parents=True, exist_ok=True)

        metadata = {
            "embedding_model": embedding_model,
            "embedding_dimension": index.dimension,
            "index_type": INDEX_TYPE,
            "vector_count": len(index),
            "indexed_at": datetime.now(timezone.utc).isoformat(),
            "chunks": [chunk.to_record() for chunk in index.chunks],
        }

        tmp_index = self.index_path.with_suffix(".index.tmp")
        tmp_metadata = self.metadata_path.with_suffix(".json.tmp")

        try:
            if len(index):
                faiss.write_index(index._index, str(tmp_index))

            with open(tmp_metadata, "w", encoding="utf-8") as f:
                json.dump(metadata, f, indent=2)

            if len(index):
                os.replace(tmp_index, self.index_path)
            elif self.index_path.exists():
                self.index_path.unlink()

            os.replace(tmp_metadata, self.metadata_path)
        except (OSError, RuntimeError) as e:
            logger.error("index_save_failed", location=str(self.location), error=str(e))
            raise RuntimeError(f"Failed to save index: {e}") from e

        logger.info(
            "faiss_index_saved",
            index_path=str(self.index_path),
            vector_count=len(index),
            dimension=index.dimension,
        )

    async def load(self, expected_dimension: Optional[int] = None) -> VectorIndex:
        """Load the stored index.

        Args:
            expected_dimension: If given, the stored dimension must match it

        Returns:
            A frozen VectorIndex

        Raises:
            IndexNotFoundError: If no index has been saved here
            CorruptIndexError: If the files cannot be parsed or are inconsistent
        """
        if not self.metadata_path.exists():
            raise IndexNotFoundError(f"Index not found: {self.location}")

        try:
            with open(self.metadata_path, "r", encoding="utf-8") as f:
                metadata = json.load(f)
            stored_dim = metadata["embedding_dimension"]
            vector_count = int(metadata["vector_count"])
            chunks = [Chunk.from_record(r) for r in metadata["chunks"]]
        except (OSError, ValueError, KeyError, TypeError) as e:
            raise CorruptIndexError(f"Failed to load metadata: {e}") from e

        if len(chunks) != vector_count:
            raise CorruptIndexError(
                f"Metadata lists {len(chunks)} chunks but {vector_count} vectors"
            )

        if vector_count == 0:
            index = VectorIndex()
        else:
            if not self.index_path.exists():
                raise CorruptIndexError(f"Vector file missing: {self.index_path}")

            try:
                faiss_index = faiss.read_index(str(self.index_path))
            except RuntimeError as e:
                raise CorruptIndexError(f"Failed to load FAISS index: {e}") from e

            if faiss_index.d != stored_dim:
                raise CorruptIndexError(
                    f"Dimension mismatch: metadata says {stored_dim}, "
                    f"FAISS index has {faiss_index.d}"
                )

            if faiss_index.ntotal != vector_count:
                raise CorruptIndexError(
                    f"FAISS index holds {faiss_index.ntotal} vectors, "
                    f"metadata expects {vector_count}"
                )

            index = VectorIndex._from_faiss(faiss_index, chunks)

        if (
            expected_dimension is not None
            and index.dimension is not None
            and index.dimension != expected_dimension
        ):
            raise CorruptIndexError(
                f"Dimension mismatch: index was built with "
                f"{metadata.get('embedding_model')} (dim={index.dimension}), "
                f"current model has dim={expected_dimension}. Please rebuild the index."
            )

        logger.info(
            "faiss_index_loaded",
            dimension=index.dimension,
            vector_count=len(index),
            model=metadata.get("embedding_model"),
        )

        return index.freeze()

    def get_stats(self) -> Dict[str, Any]:
        """Get statistics about the stored index without loading vectors.

        Returns:
            Dictionary with store statistics
        """
        stats: Dict[str, Any] = {
            "location": str(self.location),
            "exists": self.exists(),
        }

        if not stats["exists"]:
            return stats

        try:
            with open(self.metadata_path, "r", encoding="utf-8") as f:
                metadata = json.load(f)
        except (OSError, ValueError) as e:
            stats["error"] = str(e)
            return stats

        for key in ("embedding_model", "embedding_dimension", "index_type",
                    "vector_count", "indexed_at"):
            stats[key] = metadata.get(key)

        stats["source_count"] = len({c.get("source_path") for c in metadata.get("chunks", [])})
        return stats
