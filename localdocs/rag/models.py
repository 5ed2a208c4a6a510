"""Value types shared by the ingestion and chat pipelines."""
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple

TokenKind = Literal["source", "answer"]


@dataclass(frozen=True)
class Document:
    """Text extracted from one file, or from one page of a paginated file."""

    source_path: str
    text: str
    page_number: Optional[int] = None
    metadata: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))


@dataclass(frozen=True)
class Chunk:
    """An overlapping window of a document's text, the unit of retrieval."""

    text: str
    source_path: str
    chunk_index: int
    page_number: Optional[int] = None
    char_start: int = 0
    char_end: int = 0
    metadata: Mapping[str, Any] = field(default_factory=dict, hash=False)

    def __post_init__(self):
        object.__setattr__(self, "metadata", MappingProxyType(dict(self.metadata)))

    def to_record(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "source_path": self.source_path,
            "chunk_index": self.chunk_index,
            "page_number": self.page_number,
            "char_start": self.char_start,
            "char_end": self.char_end,
            "metadata": dict(self.metadata),
        }

    @classmethod
    def from_record(cls, record: Mapping[str, Any]) -> "Chunk":
        return cls(
            text=record["text"],
            source_path=record["source_path"],
            chunk_index=int(record["chunk_index"]),
            page_number=record.get("page_number"),
            char_start=int(record.get("char_start", 0)),
            char_end=int(record.get("char_end", 0)),
            metadata=record.get("metadata") or {},
        )


@dataclass(frozen=True)
class IndexEntry:
    """A stored vector together with the chunk it was computed from."""

    vector: List[float]
    chunk: Chunk


@dataclass(frozen=True)
class SourceReference:
    """Where a retrieved chunk came from."""

    source_path: str
    page_number: Optional[int] = None
    title: Optional[str] = None

    @property
    def anchor(self) -> str:
        """Page-anchored reference for paginated sources, plain path otherwise."""
        if self.page_number is not None:
            return f"{self.source_path}#page={self.page_number}"
        return self.source_path

    @classmethod
    def for_chunk(cls, chunk: Chunk) -> "SourceReference":
        return cls(
            source_path=chunk.source_path,
            page_number=chunk.page_number,
            title=chunk.metadata.get("title"),
        )


@dataclass(frozen=True)
class TokenEvent:
    """One streamed chat token.

    ``kind`` separates the single up-front "source" announcement from the
    "answer" tokens so renderers can place them apart.
    """

    kind: TokenKind
    value: str
    references: Tuple[SourceReference, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {"type": "token", "kind": self.kind, "value": self.value}
        if self.references:
            data["sources"] = [
                {
                    "path": r.source_path,
                    "page": r.page_number,
                    "anchor": r.anchor,
                    "title": r.title,
                }
                for r in self.references
            ]
        return data
