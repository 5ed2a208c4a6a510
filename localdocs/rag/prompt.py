"""Prompt assembly for retrieval-augmented answers."""
from typing import List, Sequence

import structlog

from localdocs import config
from localdocs.rag.models import Chunk

logger = structlog.get_logger()

PROMPT_TEMPLATE = """You are an assistant answering questions about the user's documents.
Use only the context below to answer the question.
If the answer is not in the context, say that you don't know.
Keep the answer concise.

Question: {question}

Context:
{context}

Answer:"""

# Rough character budget per token, matching the character-based chunking
CHARS_PER_TOKEN = 4

# Smallest tail worth keeping when the last chunk has to be truncated
MIN_TRUNCATED_CHARS = 200


class PromptAssembler:
    """Renders a question and retrieved chunks into PROMPT_TEMPLATE."""

    def __init__(
        self,
        context_window_tokens: int = None,
        max_answer_tokens: int = None,
        template: str = PROMPT_TEMPLATE,
    ):
        self.context_window_tokens = context_window_tokens or config.CONTEXT_WINDOW_TOKENS
        self.max_answer_tokens = max_answer_tokens or config.MAX_ANSWER_TOKENS
        self.template = template

    def context_budget(self, question: str) -> int:
        """Characters left for context once the template, question and answer fit."""
        prompt_tokens = self.context_window_tokens - self.max_answer_tokens
        fixed = len(self.template.format(question=question, context=""))
        return max(0, prompt_tokens * CHARS_PER_TOKEN - fixed)

    def assemble(self, question: str, context_chunks: Sequence[Chunk]) -> str:
        """Build the prompt for a question.

        Chunks are concatenated in rank order. When they do not fit the
        context window, the first chunk that overflows is truncated (or
        dropped if little room is left) and later chunks are omitted.

        Args:
            question: The user's question, inserted verbatim
            context_chunks: Retrieved chunks, most relevant first

        Returns:
            The rendered prompt
        """
        budget = self.context_budget(question)
        separator = "\n\n"

        parts: List[str] = []
        used = 0

        for chunk in context_chunks:
            text = chunk.text.strip()
            cost = len(text) + (len(separator) if parts else 0)

            if used + cost > budget:
                remaining = budget - used - (len(separator) if parts else 0)
                if remaining >= MIN_TRUNCATED_CHARS:
                    parts.append(text[:remaining])
                logger.debug(
                    "context_truncated",
                    chunks_included=len(parts),
                    chunks_available=len(context_chunks),
                    budget=budget,
                )
                break

            parts.append(text)
            used += cost

        prompt = self.template.format(question=question, context=separator.join(parts))

        logger.debug(
            "prompt_assembled",
            num_chunks=len(parts),
            prompt_chars=len(prompt),
        )

        return prompt
