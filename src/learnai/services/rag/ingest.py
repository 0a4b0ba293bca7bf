from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import Callable

from learnai.config import get_settings
from learnai.services.rag.chunker import DEFAULT_MAX_LENGTH, chunk_documents
from learnai.services.rag.embedder import DEFAULT_BATCH_SIZE, embed_batch
from learnai.services.rag.embedding_client import (
    EmbeddingClient,
    create_embedding_client,
    embedding_model_name,
)
from learnai.services.rag.loader import load_module_documents
from learnai.services.rag.snapshot import persist_snapshot
from learnai.services.rag.types import Chunk, IndexSummary, ModuleSummary

ModuleProgress = Callable[[str, int, int], None]


def index_corpus(
    *,
    source_dir: Path,
    snapshot_path: Path,
    max_length: int = DEFAULT_MAX_LENGTH,
    batch_size: int = DEFAULT_BATCH_SIZE,
    embed: bool = True,
    embedding_client: EmbeddingClient | None = None,
    embed_model: str | None = None,
    on_module: Callable[[ModuleSummary], None] | None = None,
    on_progress: ModuleProgress | None = None,
) -> IndexSummary:
    """Chunk, embed and snapshot every module under ``source_dir``.

    The snapshot is only replaced once every module has been embedded; any
    provider failure aborts the run and leaves the previous snapshot intact.
    """
    if embed and embedding_client is None:
        settings = get_settings()
        embedding_client = create_embedding_client(settings)
        embed_model = embed_model or embedding_model_name(settings)
    elif embed and embed_model is None:
        embed_model = getattr(embedding_client, "model", None)

    modules = load_module_documents(source_dir)
    summaries: list[ModuleSummary] = []
    corpus: list[Chunk] = []

    for module_id, documents in modules.items():
        chunks = chunk_documents(documents, max_length=max_length)

        if chunks and embed and embedding_client is not None:
            def _report(done: int, total: int, module_id: str = module_id) -> None:
                if on_progress is not None:
                    on_progress(module_id, done, total)

            vectors = embed_batch(
                [chunk.text for chunk in chunks],
                client=embedding_client,
                batch_size=batch_size,
                on_progress=_report,
            )
            chunks = [
                replace(chunk, embedding=tuple(vector))
                for chunk, vector in zip(chunks, vectors)
            ]

        summary = ModuleSummary(
            module_id=module_id,
            document_count=len(documents),
            chunk_count=len(chunks),
        )
        summaries.append(summary)
        if on_module is not None:
            on_module(summary)
        corpus.extend(chunks)

    if not corpus:
        raise ValueError(f"No chunks produced from {source_dir}; nothing to index")

    snapshot_file = persist_snapshot(
        snapshot_path,
        chunks=corpus,
        embed_model=embed_model if embed else None,
    )

    return IndexSummary(
        modules=tuple(summaries),
        chunk_count=len(corpus),
        embedded=embed,
        snapshot_file=str(snapshot_file),
    )
