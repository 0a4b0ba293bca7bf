from learnai.services.rag.ingest import index_corpus
from learnai.services.rag.retriever import MissingModuleError, retrieve_module_chunks
from learnai.services.rag.snapshot import Corpus, SnapshotLoadError, load_corpus_or_empty
from learnai.services.rag.types import IndexSummary, RetrievalResult, ScoredChunk

__all__ = [
    "Corpus",
    "IndexSummary",
    "MissingModuleError",
    "RetrievalResult",
    "ScoredChunk",
    "SnapshotLoadError",
    "index_corpus",
    "load_corpus_or_empty",
    "retrieve_module_chunks",
]
