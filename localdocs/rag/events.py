"""Producer/consumer channel for progress and token events.

Pipelines report through plain callbacks. ``stream_events`` runs such a
pipeline as a task, forwards everything it reports through an unbounded
queue and finishes with exactly one terminal ``Outcome``. Each event is
delivered at most once and never replayed; ``put_nowait`` means a slow
consumer never blocks the producing pipeline.
"""
import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, Optional, Union

import structlog

logger = structlog.get_logger()

Emit = Callable[[Any], None]


@dataclass(frozen=True)
class Outcome:
    """Terminal event: either the pipeline's result or the error it raised."""

    result: Any = None
    error: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def stream_events(
    run: Callable[[Emit], Awaitable[Any]],
) -> AsyncIterator[Union[Any, Outcome]]:
    """Run ``run(emit)`` and yield each emitted event, then an Outcome.

    There is no cancellation: if the consumer stops early, the pipeline is
    still awaited to its terminal state before the generator closes.
    """
    queue: asyncio.Queue = asyncio.Queue()

    async def _runner() -> None:
        try:
            result = await run(queue.put_nowait)
        except Exception as e:
            logger.error(
                "streamed_operation_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            queue.put_nowait(Outcome(error=e))
        else:
            queue.put_nowait(Outcome(result=result))

    task = asyncio.create_task(_runner())

    try:
        while True:
            item = await queue.get()
            yield item
            if isinstance(item, Outcome):
                return
    finally:
        if not task.done():
            await task


def outcome_to_dict(outcome: Outcome, success_type: str, result_key: str) -> Dict[str, Any]:
    """Terminal event payload: ``{"type": success_type, result_key: result}`` or an error."""
    if outcome.ok:
        return {"type": success_type, result_key: outcome.result}
    return {
        "type": "error",
        "error": str(outcome.error),
        "error_type": type(outcome.error).__name__,
    }
