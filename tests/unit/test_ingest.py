"""Tests for the ingestion pipeline."""
import asyncio

import pytest
from structlog.testing import capture_logs

from localdocs.config import RagConfig
from localdocs.errors import IngestionInProgressError
from localdocs.rag.ingest import IngestPipeline


@pytest.fixture
def docs_dir(tmp_path):
    root = tmp_path / "docs"
    root.mkdir()
    (root / "faq.md").write_text("---\ntitle: FAQ\n---\n" + "Refunds take five days. " * 10, encoding="utf-8")
    (root / "notes.txt").write_text("Support is open on weekdays.", encoding="utf-8")
    (root / "broken.txt").write_bytes(b"\xff\xfe\xfa")
    (root / "photo.jpg").write_bytes(b"\xff\xd8\xff")
    return root


@pytest.fixture
def pipeline(rag_config, embedder, store):
    return IngestPipeline(rag_config=rag_config, embedder=embedder, store=store)


@pytest.mark.asyncio
async def test_ingest_builds_and_saves_index(pipeline, docs_dir, store):
    progress = []

    stats = await pipeline.ingest_all(docs_dir, on_progress=progress.append)

    assert stats["files_processed"] == 2
    assert stats["files_failed"] == 1
    assert stats["documents_created"] == 2
    assert stats["chunks_created"] == stats["embeddings_generated"] > 2
    assert progress[-1] == 100.0

    loaded = await store.load()
    assert len(loaded) == stats["chunks_created"]
    assert store.get_stats()["embedding_model"] == "test-embed"


@pytest.mark.asyncio
async def test_empty_folder_saves_empty_index(pipeline, tmp_path, store):
    empty = tmp_path / "empty"
    empty.mkdir()
    progress = []

    stats = await pipeline.ingest_all(empty, on_progress=progress.append)

    assert stats["chunks_created"] == 0
    assert progress == []
    assert len(await store.load()) == 0


@pytest.mark.asyncio
async def test_missing_folder(pipeline, tmp_path):
    with pytest.raises(FileNotFoundError):
        await pipeline.ingest_all(tmp_path / "nope")


@pytest.mark.asyncio
async def test_concurrent_ingestion_into_same_store_rejected(rag_config, embedder, store, docs_dir):
    first = IngestPipeline(rag_config=rag_config, embedder=embedder, store=store)
    second = IngestPipeline(rag_config=rag_config, embedder=embedder, store=store)

    results = await asyncio.gather(
        first.ingest_all(docs_dir),
        second.ingest_all(docs_dir),
        return_exceptions=True,
    )

    assert isinstance(results[0], dict)
    assert isinstance(results[1], IngestionInProgressError)


@pytest.mark.asyncio
async def test_stream_yields_progress_then_success(pipeline, docs_dir):
    events = [e async for e in pipeline.stream(docs_dir)]

    assert all(e["type"] == "progress" for e in events[:-1])
    assert events[-2]["percent"] == 100.0
    assert events[-1]["type"] == "success"
    assert events[-1]["stats"]["files_failed"] == 1


@pytest.mark.asyncio
async def test_stream_reports_failure(pipeline, tmp_path):
    events = [e async for e in pipeline.stream(tmp_path / "nope")]

    assert events == [
        {
            "type": "error",
            "error": events[0]["error"],
            "error_type": "FileNotFoundError",
        }
    ]


@pytest.mark.asyncio
async def test_nine_thousand_character_file_makes_four_chunks(embedder, store, tmp_path):
    root = tmp_path / "long"
    root.mkdir()
    text = "".join(chr(ord("a") + i % 26) for i in range(9000))
    (root / "long.txt").write_text(text, encoding="utf-8")
    config = RagConfig(
        chunk_size=4000,
        chunk_overlap=2000,
        model_path="test-chat",
        embedding_model="test-embed",
    )
    pipeline = IngestPipeline(rag_config=config, embedder=embedder, store=store)

    stats = await pipeline.ingest_all(root)

    assert stats["chunks_created"] == 4
    chunks = (await store.load()).chunks
    assert [(c.char_start, c.char_end) for c in chunks] == [
        (0, 4000),
        (2000, 6000),
        (4000, 8000),
        (6000, 9000),
    ]
    assert all(c.text == text[c.char_start:c.char_end] for c in chunks)


@pytest.mark.asyncio
async def test_markdown_title_survives_save_and_load(pipeline, tmp_path, store):
    root = tmp_path / "md"
    root.mkdir()
    (root / "guide.md").write_text(
        "---\ntitle: Setup Guide\ntags: [setup]\n---\nInstall the package first.\n",
        encoding="utf-8",
    )

    await pipeline.ingest_all(root)

    chunk = (await store.load()).chunks[0]
    assert chunk.metadata["title"] == "Setup Guide"
    assert chunk.metadata["tags"] == ["setup"]


@pytest.mark.asyncio
async def test_on_saved_runs_once_per_ingestion(rag_config, embedder, store, docs_dir):
    saved = []
    pipeline = IngestPipeline(
        rag_config=rag_config,
        embedder=embedder,
        store=store,
        on_saved=lambda: saved.append(store.exists()),
    )

    await pipeline.ingest_all(docs_dir)
    await pipeline.ingest_all(docs_dir)

    assert saved == [True, True]


@pytest.mark.asyncio
async def test_on_saved_runs_when_stream_is_abandoned(rag_config, embedder, store, docs_dir):
    saved = []
    pipeline = IngestPipeline(
        rag_config=rag_config,
        embedder=embedder,
        store=store,
        on_saved=lambda: saved.append(True),
    )

    stream = pipeline.stream(docs_dir)
    await stream.__anext__()
    await stream.aclose()

    assert saved == [True]
    assert store.exists()


@pytest.mark.asyncio
async def test_on_saved_not_called_when_ingestion_fails(rag_config, embedder, store, tmp_path):
    saved = []
    pipeline = IngestPipeline(
        rag_config=rag_config,
        embedder=embedder,
        store=store,
        on_saved=lambda: saved.append(True),
    )

    with pytest.raises(FileNotFoundError):
        await pipeline.ingest_all(tmp_path / "nope")

    assert saved == []


def test_init_logs_settings(rag_config, embedder, store):
    with capture_logs() as logs:
        IngestPipeline(rag_config=rag_config, embedder=embedder, store=store)

    init = next(log for log in logs if log["event"] == "ingest_pipeline_initialized")
    assert init["settings"] == rag_config.describe()
