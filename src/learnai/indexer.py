from __future__ import annotations

import argparse
from pathlib import Path
import sys

from learnai.config import get_settings
from learnai.services.rag.ingest import index_corpus
from learnai.services.rag.types import ModuleSummary


def _build_parser() -> argparse.ArgumentParser:
    settings = get_settings()

    parser = argparse.ArgumentParser(
        prog="learnai-index",
        description="Chunk and embed per-module course texts into a snapshot file",
    )
    parser.add_argument(
        "--source-dir",
        default=settings.kb_source_dir,
        help="Directory with one sub-directory of .txt/.md files per module",
    )
    parser.add_argument(
        "--output",
        default=settings.kb_index_path,
        help="Snapshot file to (atomically) overwrite",
    )
    parser.add_argument(
        "--max-length",
        type=int,
        default=settings.kb_chunk_max_length,
        help="Maximum chunk length in characters",
    )
    parser.add_argument(
        "--batch-size",
        type=int,
        default=settings.kb_embed_batch_size,
        help="Texts per embedding request",
    )
    parser.add_argument(
        "--no-embeddings",
        action="store_true",
        help="Skip embeddings; retrieval falls back to textual matching",
    )
    return parser


def _print_module(summary: ModuleSummary) -> None:
    if not summary.document_count:
        print(f"[learnai-index] module={summary.module_id!r} skipped: no text files", flush=True)
        return
    print(
        f"[learnai-index] module={summary.module_id!r} "
        f"documents={summary.document_count} chunks={summary.chunk_count}",
        flush=True,
    )


def _print_progress(module_id: str, done: int, total: int) -> None:
    end = "\n" if done >= total else ""
    print(f"\r[learnai-index]   embeddings {done}/{total}", end=end, flush=True)


def main() -> None:
    parser = _build_parser()
    args = parser.parse_args()

    print(f"[learnai-index] scanning {args.source_dir}", flush=True)
    try:
        summary = index_corpus(
            source_dir=Path(args.source_dir),
            snapshot_path=Path(args.output),
            max_length=args.max_length,
            batch_size=args.batch_size,
            embed=not args.no_embeddings,
            on_module=_print_module,
            on_progress=_print_progress,
        )
    except Exception as exc:
        print(f"\n[learnai-index] failed: {exc}", file=sys.stderr, flush=True)
        raise SystemExit(1) from exc

    print(
        "[learnai-index] completed "
        f"modules={len(summary.modules)} "
        f"chunks={summary.chunk_count} "
        f"embedded={str(summary.embedded).lower()} "
        f"snapshot={summary.snapshot_file}",
        flush=True,
    )


if __name__ == "__main__":
    main()
