"""Application configuration with sensible defaults."""
import os
from pathlib import Path
from typing import Any, Dict, Tuple

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from localdocs.errors import ConfigurationError

# Paths (one index per user profile)
DATA_DIR = Path(os.getenv("LOCALDOCS_HOME", str(Path.home() / ".localdocs")))
INDEX_DIR = DATA_DIR / "index"

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
CHAT_MODEL = os.getenv("CHAT_MODEL", "llama3.1:8b")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "mxbai-embed-large:latest")
OLLAMA_TIMEOUT = float(os.getenv("OLLAMA_TIMEOUT", "120.0"))

# RAG parameters (character-based to avoid tokenizer inconsistencies)
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "4000"))          # ≈1000 tokens
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "2000"))    # ≈500 tokens
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", "4"))
CONTEXT_WINDOW_TOKENS = int(os.getenv("CONTEXT_WINDOW_TOKENS", "8192"))
MAX_ANSWER_TOKENS = int(os.getenv("MAX_ANSWER_TOKENS", "1024"))
EMBED_BATCH_SIZE = int(os.getenv("EMBED_BATCH_SIZE", "10"))

# Generation halts before the model starts inventing a follow-up question
STOP_SEQUENCES: Tuple[str, ...] = ("\nQuestion:", "\nQUESTION:")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


class RagConfig(BaseModel):
    """Read-only settings for one ingestion or chat operation."""

    model_config = ConfigDict(frozen=True)

    chunk_size: int = Field(default=CHUNK_SIZE, gt=0)
    chunk_overlap: int = Field(default=CHUNK_OVERLAP, ge=0)
    top_k: int = Field(default=RETRIEVAL_TOP_K, ge=1)
    context_window_tokens: int = Field(default=CONTEXT_WINDOW_TOKENS, gt=0)
    max_answer_tokens: int = Field(default=MAX_ANSWER_TOKENS, gt=0)
    model_path: str = Field(default=CHAT_MODEL, min_length=1)
    embedding_model: str = Field(default=EMBEDDING_MODEL, min_length=1)
    batch_size: int = Field(default=EMBED_BATCH_SIZE, ge=1)
    stop_sequences: Tuple[str, ...] = STOP_SEQUENCES

    @model_validator(mode="after")
    def _check_budgets(self) -> "RagConfig":
        if self.chunk_overlap >= self.chunk_size:
            raise ValueError(
                f"chunk_overlap ({self.chunk_overlap}) must be less than "
                f"chunk_size ({self.chunk_size})"
            )
        if self.max_answer_tokens >= self.context_window_tokens:
            raise ValueError(
                f"max_answer_tokens ({self.max_answer_tokens}) must be less than "
                f"context_window_tokens ({self.context_window_tokens})"
            )
        return self

    @classmethod
    def from_env(cls, **overrides: Any) -> "RagConfig":
        """Build a config from the environment defaults plus overrides.

        Raises:
            ConfigurationError: If any field is missing or invalid
        """
        try:
            return cls(**overrides)
        except ValidationError as e:
            raise ConfigurationError(str(e)) from e

    def describe(self) -> Dict[str, Any]:
        """Settings as a plain dict, for logging."""
        return self.model_dump()
