"""End-to-end tests for the HTTP API with a stubbed model server."""
import json

import pytest

from conftest import FakeOllamaClient
from localdocs.main import create_app
from localdocs.rag.embedder import Embedder
from localdocs.rag.ingest import IngestPipeline
from localdocs.rag.store_faiss import IndexStore


def _events(body: str):
    return [json.loads(line) for line in body.splitlines() if line.strip()]


@pytest.fixture
def docs_dir(tmp_path):
    root = tmp_path / "library"
    root.mkdir()
    (root / "shipping.txt").write_text(
        "Orders ship within two business days from our warehouse.", encoding="utf-8"
    )
    (root / "returns.md").write_text(
        "# Returns\n\nItems can be returned within thirty days.", encoding="utf-8"
    )
    return root


@pytest.fixture
def app_client(rag_config, tmp_path):
    client = FakeOllamaClient(script=("Within", " thirty", " days."))
    app = create_app(rag_config, client=client, store=IndexStore(tmp_path / "index"))
    return app.test_client()


@pytest.mark.asyncio
async def test_ingest_then_chat(app_client, docs_dir):
    response = await app_client.post("/api/ingest", json={"root_directory": str(docs_dir)})
    assert response.status_code == 200
    ingest_events = _events(await response.get_data(as_text=True))

    assert ingest_events[-1]["type"] == "success"
    assert ingest_events[-1]["stats"]["files_processed"] == 2
    assert ingest_events[-2] == {"type": "progress", "percent": 100.0}

    question = "Items can be returned within thirty days."
    response = await app_client.post("/api/chat", json={"message": question})
    chat_events = _events(await response.get_data(as_text=True))

    assert chat_events[0]["kind"] == "source"
    assert chat_events[0]["value"].split("\n")[0].endswith("returns.md")
    assert [e["value"] for e in chat_events[1:-1]] == ["Within", " thirty", " days."]
    assert chat_events[-1] == {"type": "final", "final_answer": "Within thirty days."}


@pytest.mark.asyncio
async def test_chat_before_ingest_reports_missing_index(app_client):
    response = await app_client.post("/api/chat", json={"message": "hello"})
    events = _events(await response.get_data(as_text=True))

    assert events == [
        {
            "type": "error",
            "error": events[0]["error"],
            "error_type": "IndexUnavailableError",
        }
    ]


@pytest.mark.asyncio
async def test_plain_chat_skips_retrieval(app_client):
    response = await app_client.post("/api/chat", json={"message": "hello", "use_rag": False})
    events = _events(await response.get_data(as_text=True))

    assert {e.get("kind") for e in events[:-1]} == {"answer"}
    assert events[-1]["final_answer"] == "Within thirty days."


@pytest.mark.asyncio
async def test_ingest_missing_folder(app_client, tmp_path):
    response = await app_client.post(
        "/api/ingest", json={"root_directory": str(tmp_path / "missing")}
    )
    events = _events(await response.get_data(as_text=True))

    assert events[-1]["type"] == "error"
    assert events[-1]["error_type"] == "FileNotFoundError"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "path,body",
    [
        ("/api/chat", {}),
        ("/api/chat", {"message": ""}),
        ("/api/chat", {"message": "   "}),
        ("/api/chat", {"message": "x" * 2001}),
        ("/api/ingest", {}),
    ],
)
async def test_invalid_requests_rejected(app_client, path, body):
    response = await app_client.post(path, json=body)

    assert response.status_code == 400
    assert "error" in await response.get_json()


@pytest.mark.asyncio
async def test_index_stats(app_client, docs_dir):
    response = await app_client.get("/api/index")
    assert (await response.get_json())["exists"] is False

    response = await app_client.post("/api/ingest", json={"root_directory": str(docs_dir)})
    await response.get_data()

    stats = await (await app_client.get("/api/index")).get_json()
    assert stats["exists"] is True
    assert stats["source_count"] == 2
    assert stats["embedding_model"] == "test-embed"


@pytest.mark.asyncio
async def test_health(app_client, rag_config, tmp_path):
    live = await app_client.get("/health/live")
    assert live.status_code == 200

    ready = await app_client.get("/health/ready")
    assert ready.status_code == 200
    assert (await ready.get_json())["models"] is True

    missing_models = create_app(
        rag_config,
        client=FakeOllamaClient(models=("other",)),
        store=IndexStore(tmp_path / "other"),
    ).test_client()
    ready = await missing_models.get("/health/ready")
    assert ready.status_code == 503


@pytest.mark.asyncio
async def test_unknown_route(app_client):
    response = await app_client.get("/api/nope")

    assert response.status_code == 404


@pytest.mark.asyncio
async def test_chat_sees_documents_from_abandoned_ingestion(app_client, rag_config, tmp_path):
    library = tmp_path / "small"
    library.mkdir()
    (library / "a.txt").write_text("Apples grow in the orchard.", encoding="utf-8")
    response = await app_client.post("/api/ingest", json={"root_directory": str(library)})
    await response.get_data()

    question = "Bananas ripen in the greenhouse."
    response = await app_client.post("/api/chat", json={"message": question})
    before = _events(await response.get_data(as_text=True))
    assert [s["path"].endswith("a.txt") for s in before[0]["sources"]] == [True]

    # Reindex from a separate pipeline and stop reading after the first event
    (library / "b.txt").write_text(question, encoding="utf-8")
    pipeline = IngestPipeline(
        rag_config=rag_config,
        embedder=Embedder(client=FakeOllamaClient(), model="test-embed"),
        store=IndexStore(tmp_path / "index"),
    )
    stream = pipeline.stream(library)
    await stream.__anext__()
    await stream.aclose()

    response = await app_client.post("/api/chat", json={"message": question})
    after = _events(await response.get_data(as_text=True))

    assert after[0]["sources"][0]["path"].endswith("b.txt")
    assert len(after[0]["sources"]) == 2


@pytest.mark.asyncio
async def test_markdown_title_in_chat_sources(app_client, tmp_path):
    library = tmp_path / "titled"
    library.mkdir()
    (library / "guide.md").write_text(
        "---\ntitle: Returns Policy\n---\nItems can be returned within thirty days.\n",
        encoding="utf-8",
    )
    response = await app_client.post("/api/ingest", json={"root_directory": str(library)})
    await response.get_data()

    response = await app_client.post(
        "/api/chat", json={"message": "Items can be returned within thirty days."}
    )
    events = _events(await response.get_data(as_text=True))

    assert events[0]["sources"][0]["title"] == "Returns Policy"
