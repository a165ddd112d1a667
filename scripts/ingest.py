#!/usr/bin/env python
"""Ingest documents into the local vector index from the command line.

Usage:
    python scripts/ingest.py notes.txt paper.pdf    # Ingest files
    python scripts/ingest.py --reset notes.txt      # Reset index, then ingest
    python scripts/ingest.py --list                 # Show stored records
    python scripts/ingest.py --query "what is X?"   # Show top passages
"""
import argparse
import asyncio
import mimetypes
import sys
from datetime import datetime
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from ragcore import config
from ragcore.errors import IngestError, RAGError
from ragcore.extract import extract_text
from ragcore.llm_client import OllamaClient
from ragcore.main import configure_logging
from ragcore.rag.embedder import Embedder
from ragcore.rag.pipeline import RetrievalPipeline
from ragcore.rag.store import LocalVectorStore
import structlog

logger = structlog.get_logger()


def guess_content_type(path: Path) -> str:
    content_type, _ = mimetypes.guess_type(str(path))
    return content_type or "text/plain"


async def ingest_files(pipeline: RetrievalPipeline, paths) -> int:
    """Ingest each file, returning the number that failed."""
    failed = 0
    start = datetime.now()

    for idx, path in enumerate(paths, 1):
        print(f"  [{idx}/{len(paths)}] {path.name:<40}", end="", flush=True)
        try:
            text = extract_text(path.read_bytes(), guess_content_type(path))
            result = await pipeline.ingest(text)
            print(f" {result.chunk_count} chunks")
        except IngestError as e:
            failed += 1
            print(f" FAILED ({e.inserted}/{e.total} chunks stored)")
            logger.error("file_ingestion_failed", path=str(path), error=str(e))
        except (RAGError, ValueError, OSError) as e:
            failed += 1
            print(f" FAILED: {e}")
            logger.error("file_ingestion_failed", path=str(path), error=str(e))

    elapsed = (datetime.now() - start).total_seconds()
    print(f"\n  Files: {len(paths)}  Failed: {failed}  Time: {elapsed:.1f}s\n")
    return failed


async def main():
    """Main entry point for the ingest script."""
    parser = argparse.ArgumentParser(
        description="Ingest documents into the local vector index",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("files", nargs="*", type=Path, help="PDF or text files to ingest")
    parser.add_argument(
        "--reset",
        action="store_true",
        help="Reset the index before ingesting (drops all records)",
    )
    parser.add_argument("--list", action="store_true", help="List stored records")
    parser.add_argument("--query", help="Print the top passages for a query")
    parser.add_argument("--top-k", type=int, default=config.RETRIEVAL_TOP_K)
    parser.add_argument(
        "--index-dir",
        type=Path,
        default=None,
        help=f"Index directory (default: {config.INDEX_DIR})",
    )

    args = parser.parse_args()
    configure_logging("WARNING")

    client = OllamaClient()
    store = LocalVectorStore(index_dir=args.index_dir)
    pipeline = RetrievalPipeline(store=store, embedder=Embedder(client=client), chat_client=client)

    try:
        async with client, store:
            if args.reset:
                await pipeline.reset()
                print("Index reset.")

            failed = await ingest_files(pipeline, args.files) if args.files else 0

            if args.list:
                for item in await pipeline.inspect(include_vectors=False):
                    text = item["metadata"].get("text", "")
                    print(f"{item['id']}  norm={item['norm']:.4f}  {text[:80]}")

            if args.query:
                passages = await pipeline.retrieve(args.query, top_k=args.top_k)
                for i, passage in enumerate(passages, 1):
                    print(f"[{i}] {passage}\n")

    except RAGError as e:
        print(f"\nError: {e}\n")
        sys.exit(1)

    if failed:
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
