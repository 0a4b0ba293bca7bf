from dataclasses import dataclass


@dataclass(frozen=True)
class SourceDocument:
    module_id: str
    source: str
    text: str


@dataclass(frozen=True)
class Chunk:
    id: str
    module_id: str
    source: str
    text: str
    embedding: tuple[float, ...] | None = None


@dataclass(frozen=True)
class ScoredChunk:
    chunk: Chunk
    rank: int
    score: int | float


@dataclass(frozen=True)
class RetrievalResult:
    selected: list[ScoredChunk]
    scoped_count: int


@dataclass(frozen=True)
class ModuleSummary:
    module_id: str
    document_count: int
    chunk_count: int


@dataclass(frozen=True)
class IndexSummary:
    modules: tuple[ModuleSummary, ...]
    chunk_count: int
    embedded: bool
    snapshot_file: str
