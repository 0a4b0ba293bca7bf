from __future__ import annotations

import re

from learnai.services.rag.types import Chunk, SourceDocument

DEFAULT_MAX_LENGTH = 1100
PARAGRAPH_SEPARATOR = "\n\n"

_BLANK_LINE = re.compile(r"\n[ \t\r\f\v]*\n")


def _split_paragraphs(text: str) -> list[str]:
    paragraphs = (part.strip() for part in _BLANK_LINE.split(text))
    return [paragraph for paragraph in paragraphs if paragraph]


def chunk_by_paragraphs(text: str, max_length: int = DEFAULT_MAX_LENGTH) -> list[str]:
    if max_length < 1:
        raise ValueError("max_length must be >= 1")

    chunks: list[str] = []
    buffer = ""

    for paragraph in _split_paragraphs(text or ""):
        if len(paragraph) > max_length:
            # oversized paragraph: flush, then hard-split on its own
            if buffer:
                chunks.append(buffer)
                buffer = ""
            for start in range(0, len(paragraph), max_length):
                chunks.append(paragraph[start : start + max_length])
            continue

        candidate = f"{buffer}{PARAGRAPH_SEPARATOR}{paragraph}" if buffer else paragraph
        if len(candidate) > max_length:
            chunks.append(buffer)
            buffer = paragraph
        else:
            buffer = candidate

    if buffer:
        chunks.append(buffer)

    return [chunk for chunk in chunks if chunk.strip()]


def chunk_documents(
    documents: list[SourceDocument],
    *,
    max_length: int = DEFAULT_MAX_LENGTH,
) -> list[Chunk]:
    chunks: list[Chunk] = []

    for document in documents:
        for index, chunk_text in enumerate(chunk_by_paragraphs(document.text, max_length)):
            chunks.append(
                Chunk(
                    id=f"{document.module_id}::{document.source}::{index}",
                    module_id=document.module_id,
                    source=f"{document.source}#{index}",
                    text=chunk_text,
                )
            )

    return chunks
