#!/usr/bin/env python
"""Rebuild the document index from a folder.

Usage:
    python scripts/reindex.py ~/Documents/papers
    python scripts/reindex.py ~/Documents/papers --chunk-size 2000 --chunk-overlap 500
"""
import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

import structlog

from localdocs import config
from localdocs.config import RagConfig
from localdocs.errors import LocalDocsError
from localdocs.logging_setup import configure_logging
from localdocs.rag.ingest import IngestPipeline
from localdocs.rag.store_faiss import IndexStore

logger = structlog.get_logger()


class ProgressReporter:
    """Simple progress reporter for CLI."""

    def __init__(self):
        self.start_time = None

    def start(self, message: str):
        """Start progress reporting."""
        self.start_time = datetime.now()
        print(f"\n{'=' * 60}")
        print(f"  {message}")
        print(f"{'=' * 60}\n")

    def update(self, percentage: float):
        """Redraw the progress bar."""
        bar_length = 40
        filled = int(bar_length * percentage / 100)
        bar = "█" * filled + "░" * (bar_length - filled)
        print(f"\r  [{bar}] {percentage:5.1f}%", end="", flush=True)

    def finish(self, stats: dict, index_dir: Path):
        """Finish progress reporting."""
        print("\n")
        elapsed_seconds = (datetime.now() - self.start_time).total_seconds()

        print(f"{'=' * 60}")
        print("  Indexing Complete!")
        print(f"{'=' * 60}\n")
        print(f"  Files processed:      {stats['files_processed']}")
        print(f"  Files failed:         {stats['files_failed']}")
        print(f"  Documents created:    {stats['documents_created']}")
        print(f"  Chunks created:       {stats['chunks_created']}")
        print(f"  Embeddings generated: {stats['embeddings_generated']}")
        print(f"  Time elapsed:         {elapsed_seconds:.1f}s")

        if stats["chunks_created"] > 0 and elapsed_seconds > 0:
            rate = stats["chunks_created"] / elapsed_seconds
            print(f"  Indexing rate:        {rate:.1f} chunks/sec")

        print(f"\n{'=' * 60}\n")

        if stats["files_failed"] > 0:
            print(f"Warning: {stats['files_failed']} file(s) could not be parsed.")
            print("   Check logs for details.\n")

        print(f"Index ready at: {index_dir}\n")


async def main():
    """Main entry point for reindex script."""
    parser = argparse.ArgumentParser(
        description="Rebuild the document index from a folder",
    )

    parser.add_argument("root_directory", type=Path, help="Folder to index")

    parser.add_argument(
        "--index-dir",
        type=Path,
        default=None,
        help=f"Index directory (default: {config.INDEX_DIR})",
    )
    parser.add_argument("--chunk-size", type=int, default=None)
    parser.add_argument("--chunk-overlap", type=int, default=None)
    parser.add_argument("--batch-size", type=int, default=None)

    args = parser.parse_args()

    configure_logging()
    progress = ProgressReporter()

    overrides = {
        key: value
        for key, value in (
            ("chunk_size", args.chunk_size),
            ("chunk_overlap", args.chunk_overlap),
            ("batch_size", args.batch_size),
        )
        if value is not None
    }

    try:
        rag_config = RagConfig.from_env(**overrides)
        store = IndexStore(args.index_dir)

        print("\nConfiguration:")
        print(f"   Root directory:   {args.root_directory}")
        print(f"   Index directory:  {store.location}")
        print(f"   Embedding model:  {rag_config.embedding_model}")
        print(f"   Chunk size:       {rag_config.chunk_size} chars")
        print(f"   Chunk overlap:    {rag_config.chunk_overlap} chars")
        print(f"   Batch size:       {rag_config.batch_size}")

        progress.start("Indexing Documents")

        pipeline = IngestPipeline(rag_config=rag_config, store=store)
        stats = await pipeline.ingest_all(args.root_directory, on_progress=progress.update)

        progress.finish(stats, store.location)

        if stats["files_failed"] > 0:
            sys.exit(1)

    except KeyboardInterrupt:
        print("\n\nIndexing cancelled by user.\n")
        sys.exit(1)

    except (FileNotFoundError, LocalDocsError) as e:
        print(f"\nError: {e}\n")
        sys.exit(1)

    except Exception as e:
        print(f"\nError: {e}\n")
        logger.error("reindex_script_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
