from __future__ import annotations

from typing import Callable

from learnai.services.rag.embedding_client import EmbeddingClient, EmbeddingProviderError

DEFAULT_BATCH_SIZE = 64

ProgressCallback = Callable[[int, int], None]


def embed_batch(
    texts: list[str],
    *,
    client: EmbeddingClient,
    batch_size: int = DEFAULT_BATCH_SIZE,
    on_progress: ProgressCallback | None = None,
) -> list[list[float]]:
    """Embed ``texts`` in contiguous groups of at most ``batch_size``.

    Groups are sent one at a time and the vectors come back in input order.
    ``on_progress(done, total)`` fires after every group.
    """
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")

    vectors: list[list[float]] = []
    total = len(texts)

    for start in range(0, total, batch_size):
        group = texts[start : start + batch_size]
        group_vectors = client.embed_texts(group)
        if len(group_vectors) != len(group):
            raise EmbeddingProviderError(
                f"embedding batch at offset {start}: expected {len(group)} vectors, "
                f"got {len(group_vectors)}"
            )
        vectors.extend(group_vectors)

        if on_progress is not None:
            on_progress(len(vectors), total)

    return vectors
