from __future__ import annotations

from learnai.services.rag.embedding_client import EmbeddingClient, EmbeddingProviderError
from learnai.services.rag.similarity import cosine_similarity
from learnai.services.rag.snapshot import Corpus
from learnai.services.rag.types import Chunk, RetrievalResult, ScoredChunk

DEFAULT_TOP_K = 6
MIN_SCORE = 0.24
MIN_SELECTED = 3
MAX_SELECTED = 6
SCORE_DECIMALS = 3


class MissingModuleError(ValueError):
    pass


def selection_size(top_k: int) -> int:
    return max(MIN_SELECTED, min(top_k, MAX_SELECTED))


def _textual_rank(
    scoped: list[Chunk],
    *,
    query: str,
    module_id: str,
    top_k: int,
) -> list[ScoredChunk]:
    needle = query.lower()
    module_key = module_id.lower()

    scored: list[tuple[int, Chunk]] = []
    for chunk in scoped:
        same_module = 1 if chunk.module_id.lower() == module_key else 0
        hits = 1 if needle and needle in chunk.text.lower() else 0
        scored.append((same_module * 2 + hits, chunk))

    # list.sort is stable, so ties keep corpus order
    scored.sort(key=lambda item: item[0], reverse=True)
    limit = min(top_k, MAX_SELECTED)

    return [
        ScoredChunk(chunk=chunk, rank=rank, score=score)
        for rank, (score, chunk) in enumerate(scored[:limit], start=1)
    ]


def _embed_query(query: str, *, embedding_client: EmbeddingClient, dimensions: int) -> list[float]:
    vectors = embedding_client.embed_texts([query])
    if len(vectors) != 1:
        raise EmbeddingProviderError(f"expected 1 query vector, got {len(vectors)}")

    query_embedding = vectors[0]
    if len(query_embedding) != dimensions:
        raise EmbeddingProviderError(
            f"query embedding has {len(query_embedding)} dimensions, "
            f"corpus was indexed with {dimensions}"
        )
    return query_embedding


def _vector_rank(
    scoped: list[Chunk],
    *,
    query: str,
    top_k: int,
    embedding_client: EmbeddingClient,
) -> list[ScoredChunk]:
    query_embedding = _embed_query(
        query,
        embedding_client=embedding_client,
        dimensions=len(scoped[0].embedding or ()),
    )

    ranked = sorted(
        ((cosine_similarity(query_embedding, chunk.embedding or ()), chunk) for chunk in scoped),
        key=lambda item: item[0],
        reverse=True,
    )[:top_k]

    confident = [item for item in ranked if item[0] >= MIN_SCORE]
    selected = (confident or ranked)[: selection_size(top_k)]

    return [
        ScoredChunk(chunk=chunk, rank=rank, score=round(score, SCORE_DECIMALS))
        for rank, (score, chunk) in enumerate(selected, start=1)
    ]


def retrieve_module_chunks(
    corpus: Corpus,
    *,
    query: str,
    module_id: str | None,
    top_k: int = DEFAULT_TOP_K,
    embedding_client: EmbeddingClient | None = None,
) -> RetrievalResult:
    """Rank the chunks of one module against ``query``.

    Uses cosine similarity when every chunk in the module carries an
    embedding, and textual scoring otherwise. An unknown module yields an
    empty selection with ``scoped_count == 0`` rather than an error.
    """
    if not module_id:
        raise MissingModuleError("module_id is required")
    if top_k < 1:
        raise ValueError("top_k must be >= 1")

    scoped = corpus.scoped(module_id)
    if not scoped:
        return RetrievalResult(selected=[], scoped_count=0)

    if all(chunk.embedding is not None for chunk in scoped):
        if embedding_client is None:
            raise EmbeddingProviderError("an embedding client is required for embedded modules")
        selected = _vector_rank(
            scoped,
            query=query,
            top_k=top_k,
            embedding_client=embedding_client,
        )
    else:
        selected = _textual_rank(scoped, query=query, module_id=module_id, top_k=top_k)

    return RetrievalResult(selected=selected, scoped_count=len(scoped))
