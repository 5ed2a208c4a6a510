"""Quart application exposing ingestion and chat as NDJSON streams."""
import json
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Optional

import structlog
from pydantic import BaseModel, Field, ValidationError
from quart import Quart, jsonify, request

from localdocs.config import RagConfig
from localdocs.llm_client import OllamaClient, ollama_client
from localdocs.logging_setup import configure_logging
from localdocs.rag.embedder import Embedder
from localdocs.rag.generator import Generator
from localdocs.rag.ingest import IngestPipeline
from localdocs.rag.orchestrator import PlainChat, RagOrchestrator, get_chat_runner, stream_chat
from localdocs.rag.store_faiss import IndexStore

logger = structlog.get_logger()

NDJSON = "application/x-ndjson"


class ChatRequest(BaseModel):
    message: str = Field(min_length=1, max_length=2000)
    use_rag: bool = True


class IngestRequest(BaseModel):
    root_directory: str = Field(min_length=1)


async def _ndjson(events: AsyncIterator[Dict[str, Any]]) -> AsyncIterator[bytes]:
    async for event in events:
        yield (json.dumps(event) + "\n").encode("utf-8")


def _validation_message(e: ValidationError) -> str:
    return "; ".join(
        f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
    )


def create_app(
    rag_config: Optional[RagConfig] = None,
    client: Optional[OllamaClient] = None,
    store: Optional[IndexStore] = None,
) -> Quart:
    """Build the app and its pipelines.

    Args:
        rag_config: Settings for ingestion and chat (defaults from environment)
        client: Ollama client shared by embedding and generation
        store: Index store (default: config.INDEX_DIR)
    """
    rag_config = rag_config or RagConfig.from_env()
    client = client or ollama_client
    store = store or IndexStore()

    embedder = Embedder(client=client, model=rag_config.embedding_model)
    generator = Generator(client=client, model=rag_config.model_path)
    rag_chat = RagOrchestrator(embedder=embedder, generator=generator, store=store)
    plain_chat = PlainChat(generator=generator)

    app = Quart(__name__)

    @app.route("/api/ingest", methods=["POST"])
    async def ingest():
        """Rebuild the index from a folder.

        Expects JSON body:
        {
            "root_directory": "/path/to/folder"
        }

        Streams NDJSON: progress events, then one success or error event.
        """
        try:
            payload = IngestRequest.model_validate(await request.get_json(silent=True) or {})
        except ValidationError as e:
            return jsonify({"error": _validation_message(e)}), 400

        pipeline = IngestPipeline(
            rag_config=rag_config,
            embedder=embedder,
            store=store,
            on_saved=rag_chat.reset,
        )

        root_dir = Path(payload.root_directory).expanduser()
        logger.info("ingest_request_received", root_dir=str(root_dir))

        return _ndjson(pipeline.stream(root_dir)), 200, {"Content-Type": NDJSON}

    @app.route("/api/chat", methods=["POST"])
    async def chat():
        """Answer a message, streaming tokens.

        Expects JSON body:
        {
            "message": "user message text",
            "use_rag": true  // optional, defaults to true
        }

        Streams NDJSON: token events tagged "source" or "answer", then one
        final or error event.
        """
        try:
            payload = ChatRequest.model_validate(await request.get_json(silent=True) or {})
        except ValidationError as e:
            return jsonify({"error": _validation_message(e)}), 400

        message = payload.message.strip()
        if not message:
            return jsonify({"error": "Message cannot be empty"}), 400

        logger.info(
            "chat_request_received",
            message_length=len(message),
            use_rag=payload.use_rag,
        )

        runner = get_chat_runner(payload.use_rag, rag_chat, plain_chat)
        return _ndjson(stream_chat(runner, message, rag_config)), 200, {"Content-Type": NDJSON}

    @app.route("/api/index", methods=["GET"])
    async def index_stats():
        """Describe the persisted index."""
        return jsonify(store.get_stats())

    @app.route("/health/ready")
    async def health_ready():
        """Readiness probe - check if app can serve requests.

        Checks:
        - Ollama service is reachable
        - Chat and embedding models are available
        """
        checks = {
            "status": "healthy",
            "ollama": False,
            "models": False,
        }

        try:
            models = await client.list_models()
            checks["ollama"] = True

            missing = [
                m for m in (rag_config.model_path, rag_config.embedding_model)
                if m not in models
            ]
            if missing:
                checks["status"] = "unhealthy"
                checks["error"] = f"Missing models: {', '.join(missing)}"
            else:
                checks["models"] = True

            status_code = 200 if checks["status"] == "healthy" else 503
            return jsonify(checks), status_code

        except Exception as e:
            logger.error("health_check_failed", error=str(e))
            checks["status"] = "unhealthy"
            checks["error"] = str(e)
            return jsonify(checks), 503

    @app.route("/health/live")
    async def health_live():
        """Liveness probe - check if app is running."""
        return jsonify({"status": "alive"}), 200

    @app.errorhandler(404)
    async def not_found(error):
        return jsonify({"error": "Not found"}), 404

    @app.errorhandler(500)
    async def internal_error(error):
        logger.error("internal_server_error", error=str(error))
        return jsonify({"error": "Internal server error"}), 500

    return app


configure_logging()

app = create_app()


if __name__ == "__main__":
    # For development - serve `localdocs.main:app` with an ASGI server otherwise
    app.run(host="127.0.0.1", port=5000, debug=True)
