from dataclasses import dataclass
from functools import lru_cache
import os


def _to_int(value: str | None, *, default: int, minimum: int) -> int:
    if value is None:
        return default
    parsed = int(value)
    return max(minimum, parsed)


def _to_list(value: str | None) -> tuple[str, ...]:
    if value is None:
        return ()
    return tuple(item.strip() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    kb_index_path: str
    kb_source_dir: str
    kb_chunk_max_length: int
    kb_embed_batch_size: int
    rag_top_k: int
    embed_provider: str
    embed_dimensions: int
    openai_base_url: str
    openai_api_key: str
    openai_embed_model: str
    openai_chat_model: str
    openai_chat_fallback_model: str
    openai_timeout_seconds: float
    cors_origins: tuple[str, ...]
    port: int


@lru_cache
def get_settings() -> Settings:
    return Settings(
        kb_index_path=os.getenv("KB_INDEX_PATH", "data/kb_index.json"),
        kb_source_dir=os.getenv("KB_SOURCE_DIR", "data/conteudos_txt"),
        kb_chunk_max_length=_to_int(os.getenv("KB_CHUNK_MAX_LENGTH"), default=1100, minimum=100),
        kb_embed_batch_size=_to_int(os.getenv("KB_EMBED_BATCH_SIZE"), default=64, minimum=1),
        rag_top_k=_to_int(os.getenv("RAG_TOP_K"), default=6, minimum=1),
        embed_provider=os.getenv("EMBED_PROVIDER", "openai").strip().lower(),
        embed_dimensions=_to_int(os.getenv("EMBED_DIMENSIONS"), default=64, minimum=8),
        openai_base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1"),
        openai_api_key=os.getenv("OPENAI_API_KEY", "").strip(),
        openai_embed_model=os.getenv("OPENAI_EMBED_MODEL", "text-embedding-3-large"),
        openai_chat_model=os.getenv("OPENAI_CHAT_MODEL", "gpt-4o-mini"),
        openai_chat_fallback_model=os.getenv("OPENAI_CHAT_FALLBACK_MODEL", ""),
        openai_timeout_seconds=float(os.getenv("OPENAI_TIMEOUT_SECONDS", "30")),
        cors_origins=_to_list(os.getenv("CORS_ORIGINS")),
        port=_to_int(os.getenv("PORT"), default=3000, minimum=1),
    )
