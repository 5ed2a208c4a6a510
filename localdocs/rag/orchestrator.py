"""Chat runners: retrieval-augmented and plain.

Both expose ``run_chat(question, on_token, config) -> answer`` so callers can
swap one for the other. The RAG runner walks an explicit state machine:

    RECEIVED -> RETRIEVING -> CONTEXT_EMITTED -> STREAMING_ANSWER -> DONE

with any step able to end in FAILED.
"""
from contextlib import aclosing
from enum import Enum
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

import structlog

from localdocs.config import RagConfig
from localdocs.errors import CorruptIndexError, IndexNotFoundError, IndexUnavailableError
from localdocs.rag.embedder import Embedder
from localdocs.rag.events import Outcome, outcome_to_dict, stream_events
from localdocs.rag.generator import Generator
from localdocs.rag.models import SourceReference, TokenEvent
from localdocs.rag.prompt import PromptAssembler
from localdocs.rag.retriever import RetrievalResult, Retriever
from localdocs.rag.store_faiss import DimensionMismatchError, IndexStore

logger = structlog.get_logger()

TokenCallback = Callable[[TokenEvent], None]


class ChatState(str, Enum):
    RECEIVED = "received"
    RETRIEVING = "retrieving"
    CONTEXT_EMITTED = "context_emitted"
    STREAMING_ANSWER = "streaming_answer"
    DONE = "done"
    FAILED = "failed"


def source_event(results: List[RetrievalResult]) -> TokenEvent:
    """Build the single "source" token announcing where the context came from.

    References are unique and keep rank order; paginated sources are
    anchored to their page.
    """
    references: List[SourceReference] = []
    for result in results:
        if result.reference not in references:
            references.append(result.reference)

    return TokenEvent(
        kind="source",
        value="\n".join(r.anchor for r in references),
        references=tuple(references),
    )


class RagOrchestrator:
    """Retriever -> PromptAssembler -> Generator, streaming sources then answer.

    One instance serves concurrent chats, so per-request state lives in
    ``run_chat`` and only the loaded retriever is shared.
    """

    def __init__(
        self,
        embedder: Embedder,
        generator: Generator,
        store: IndexStore = None,
    ):
        self.embedder = embedder
        self.generator = generator
        self.store = store or IndexStore()
        self._retriever: Optional[Retriever] = None
        self._loaded_version: Optional[Tuple[int, int, int]] = None

    def reset(self) -> None:
        """Forget the loaded index so the next chat reloads it from disk."""
        self._retriever = None
        self._loaded_version = None

    async def _get_retriever(self) -> Retriever:
        version = self.store.version()
        if self._retriever is None or version != self._loaded_version:
            if self._retriever is not None:
                logger.info("index_changed_reloading", location=str(self.store.location))
            self._retriever = await Retriever.from_store(self.store, self.embedder)
            self._loaded_version = version
        return self._retriever

    async def _retrieve(self, question: str, top_k: int) -> List[RetrievalResult]:
        try:
            retriever = await self._get_retriever()
            return await retriever.retrieve(question, top_k)
        except (IndexNotFoundError, CorruptIndexError) as e:
            raise IndexUnavailableError(
                f"No usable index at {self.store.location}; run an ingestion first ({e})"
            ) from e
        except DimensionMismatchError as e:
            raise IndexUnavailableError(
                f"Index at {self.store.location} was built with a different "
                f"embedding model; run an ingestion again ({e})"
            ) from e

    async def run_chat(
        self,
        question: str,
        on_token: TokenCallback,
        config: RagConfig,
    ) -> str:
        """Answer a question from the indexed documents.

        Emits one "source" TokenEvent before any "answer" TokenEvent. Tokens
        already delivered are not retracted if generation later fails.

        Args:
            question: The user's question
            on_token: Receives each TokenEvent as it is produced
            config: Retrieval and generation settings

        Returns:
            The full answer text (without the source announcement)

        Raises:
            IndexUnavailableError: If no index can be loaded; no tokens are emitted
            GenerationError: If the model fails mid-stream
        """
        state = ChatState.RECEIVED
        logger.info("rag_chat_received", question_length=len(question), top_k=config.top_k)

        try:
            state = ChatState.RETRIEVING
            results = await self._retrieve(question, config.top_k)

            on_token(source_event(results))
            state = ChatState.CONTEXT_EMITTED

            assembler = PromptAssembler(
                context_window_tokens=config.context_window_tokens,
                max_answer_tokens=config.max_answer_tokens,
            )
            prompt = assembler.assemble(question, [r.chunk for r in results])

            state = ChatState.STREAMING_ANSWER
            answer_parts: List[str] = []

            async for token in self.generator.generate(
                prompt,
                max_tokens=config.max_answer_tokens,
                stop_sequences=config.stop_sequences,
                context_window_tokens=config.context_window_tokens,
            ):
                answer_parts.append(token)
                on_token(TokenEvent(kind="answer", value=token))

        except Exception as e:
            logger.error(
                "rag_chat_failed",
                state=ChatState.FAILED.value,
                failed_during=state.value,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise

        state = ChatState.DONE
        answer = "".join(answer_parts)

        logger.info(
            "rag_chat_completed",
            state=state.value,
            sources=len(results),
            answer_length=len(answer),
            generator_state=self.generator.state.value,
        )

        return answer


class PlainChat:
    """Sends the question straight to the model: no retrieval, no sources."""

    def __init__(self, generator: Generator):
        self.generator = generator

    async def run_chat(
        self,
        question: str,
        on_token: TokenCallback,
        config: RagConfig,
    ) -> str:
        answer_parts: List[str] = []

        async for token in self.generator.generate(
            question,
            max_tokens=config.max_answer_tokens,
            stop_sequences=config.stop_sequences,
            context_window_tokens=config.context_window_tokens,
        ):
            answer_parts.append(token)
            on_token(TokenEvent(kind="answer", value=token))

        return "".join(answer_parts)


def get_chat_runner(use_rag: bool, rag: RagOrchestrator, plain: PlainChat):
    """Pick the chat runner for a request."""
    return rag if use_rag else plain


async def stream_chat(
    runner: Any,
    question: str,
    config: RagConfig,
) -> AsyncIterator[Dict[str, Any]]:
    """Run a chat and yield its events as dicts.

    Yields ``{"type": "token", "kind": ..., "value": ...}`` for each token,
    then one ``{"type": "final", "final_answer": ...}`` or
    ``{"type": "error", ...}``.
    """

    async def _run(emit):
        return await runner.run_chat(question, emit, config)

    async with aclosing(stream_events(_run)) as events:
        async for item in events:
            if isinstance(item, Outcome):
                yield outcome_to_dict(item, "final", "final_answer")
            else:
                yield item.to_dict()
