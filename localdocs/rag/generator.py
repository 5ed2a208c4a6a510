"""Streaming answer generation with stop sequences and a token budget."""
import asyncio
from contextlib import aclosing
from enum import Enum
from typing import AsyncIterator, Optional, Sequence, Tuple

import httpx
import structlog

from localdocs import config
from localdocs.errors import GenerationError
from localdocs.llm_client import OllamaClient, ollama_client

logger = structlog.get_logger()


class GeneratorState(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    COMPLETE = "complete"
    STOPPED = "stopped"
    FAILED = "failed"


class StopMatcher:
    """Holds back output that might be the beginning of a stop sequence.

    ``feed`` returns the text that is safe to emit. Text is only released
    once no stop sequence can start inside it, so a stop sequence split
    across several model tokens is still caught before any of it is emitted.
    """

    def __init__(self, stop_sequences: Sequence[str]):
        self.stop_sequences: Tuple[str, ...] = tuple(s for s in stop_sequences if s)
        self.pending = ""
        self.stopped = False

    def feed(self, piece: str) -> str:
        if self.stopped:
            return ""

        self.pending += piece

        cut = min(
            (i for i in (self.pending.find(s) for s in self.stop_sequences) if i >= 0),
            default=-1,
        )
        if cut >= 0:
            self.stopped = True
            released, self.pending = self.pending[:cut], ""
            return released

        hold = self._partial_match_length()
        release_upto = len(self.pending) - hold
        released, self.pending = self.pending[:release_upto], self.pending[release_upto:]
        return released

    def flush(self) -> str:
        released, self.pending = self.pending, ""
        return released

    def _partial_match_length(self) -> int:
        """Length of the longest suffix of pending that prefixes a stop sequence."""
        longest = 0
        for stop in self.stop_sequences:
            for size in range(min(len(stop) - 1, len(self.pending)), longest, -1):
                if self.pending.endswith(stop[:size]):
                    longest = size
                    break
        return longest


class Generator:
    """Local language model that streams answer tokens.

    The model is an exclusively owned resource: concurrent ``generate``
    calls queue on a lock and run one after another.
    """

    def __init__(self, client: OllamaClient = None, model: str = None):
        """Initialize the generator.

        Args:
            client: Ollama client (defaults to the global client)
            model: Chat model tag (default from config)
        """
        self.client = client or ollama_client
        self.model = model or config.CHAT_MODEL
        self.state = GeneratorState.IDLE
        self._lock = asyncio.Lock()

    async def generate(
        self,
        prompt: str,
        max_tokens: int,
        stop_sequences: Sequence[str] = (),
        context_window_tokens: Optional[int] = None,
    ) -> AsyncIterator[str]:
        """Stream output tokens for a prompt.

        Ends with state STOPPED as soon as a stop sequence appears in the
        output (the stop text is never yielded), or COMPLETE when the model
        finishes or ``max_tokens`` model tokens have been produced.

        Args:
            prompt: Fully assembled prompt
            max_tokens: Maximum number of model tokens to consume
            stop_sequences: Strings that end generation when produced
            context_window_tokens: Optional context size passed to the model

        Yields:
            Answer text fragments in order

        Raises:
            GenerationError: If the model fails; state becomes FAILED
        """
        async with self._lock:
            self.state = GeneratorState.GENERATING
            matcher = StopMatcher(stop_sequences)
            token_count = 0

            # No "stop" option: the stop text must reach StopMatcher
            options = {"num_predict": max_tokens}
            if context_window_tokens:
                options["num_ctx"] = context_window_tokens

            logger.info(
                "generation_started",
                model=self.model,
                prompt_length=len(prompt),
                max_tokens=max_tokens,
            )

            try:
                stream = self.client.generate_stream(
                    prompt=prompt, model=self.model, options=options
                )
                async with aclosing(stream):
                    async for record in stream:
                        if record.get("error"):
                            raise GenerationError(f"Model error: {record['error']}")

                        piece = record.get("response", "")
                        if piece:
                            token_count += 1
                            released = matcher.feed(piece)
                            if released:
                                yield released

                        if matcher.stopped or record.get("done") or token_count >= max_tokens:
                            break

                if matcher.stopped:
                    self.state = GeneratorState.STOPPED
                else:
                    tail = matcher.flush()
                    if tail:
                        yield tail
                    self.state = GeneratorState.COMPLETE

            except GenerationError as e:
                self.state = GeneratorState.FAILED
                logger.error("generation_failed", model=self.model, error=str(e))
                raise
            except (httpx.HTTPError, ValueError) as e:
                self.state = GeneratorState.FAILED
                logger.error(
                    "generation_failed",
                    model=self.model,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise GenerationError(f"Generation failed: {e}") from e

            logger.info(
                "generation_finished",
                state=self.state.value,
                tokens=token_count,
            )
