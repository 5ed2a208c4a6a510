"""Exceptions raised by the ingestion and chat pipelines."""


class LocalDocsError(Exception):
    """Base class for all localdocs errors."""


class ConfigurationError(LocalDocsError, ValueError):
    """Invalid or missing configuration (e.g. chunk overlap >= chunk size)."""


class ParseError(LocalDocsError):
    """A file with a supported extension could not be parsed."""

    def __init__(self, path, reason: str):
        self.path = str(path)
        self.reason = reason
        super().__init__(f"Failed to parse {self.path}: {reason}")


class EmbeddingError(LocalDocsError):
    """The embedding model failed or returned an unusable vector."""


class IndexNotFoundError(LocalDocsError, FileNotFoundError):
    """No persisted index exists at the requested location."""


class CorruptIndexError(LocalDocsError):
    """A persisted index failed its integrity or dimension checks."""


class IndexUnavailableError(LocalDocsError):
    """Chat was requested but no usable index could be loaded.

    Run an ingestion first.
    """


class GenerationError(LocalDocsError):
    """The language model failed while producing an answer."""


class IngestionInProgressError(LocalDocsError):
    """Another ingestion is already writing to the same index location."""
