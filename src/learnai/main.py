from functools import lru_cache
import logging
from pathlib import Path
from typing import Annotated, Any

from fastapi import Depends, FastAPI, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from learnai.config import get_settings
from learnai.llm import (
    ChatTurn,
    LLMClient,
    LLMClientError,
    OpenAIChatClient,
    build_chat_messages,
    parse_coach_reply,
)
from learnai.services.rag import (
    Corpus,
    MissingModuleError,
    RetrievalResult,
    ScoredChunk,
    load_corpus_or_empty,
    retrieve_module_chunks,
)
from learnai.services.rag.embedding_client import (
    EmbeddingClient,
    EmbeddingProviderError,
    create_embedding_client,
    embedding_model_name,
)

logger = logging.getLogger(__name__)

app = FastAPI(title="LearnAI Coach API", version="0.1.0")

if get_settings().cors_origins:
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(get_settings().cors_origins),
        allow_methods=["*"],
        allow_headers=["*"],
    )


class HistoryItem(BaseModel):
    role: str
    text: str


class ChatRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    text: str = ""
    module_id: str = ""
    level: str = "intermediate"
    goal: str = "general_conversation"
    history: list[HistoryItem] = Field(default_factory=list)


@lru_cache
def get_corpus() -> Corpus:
    settings = get_settings()
    return load_corpus_or_empty(
        Path(settings.kb_index_path),
        expected_model=embedding_model_name(settings),
    )


@app.on_event("startup")
def startup() -> None:
    corpus = get_corpus()
    logger.info("knowledge base ready with %d chunks", len(corpus))


def get_embedding_client() -> EmbeddingClient:
    return create_embedding_client(get_settings())


def get_llm_client() -> LLMClient:
    settings = get_settings()
    return OpenAIChatClient(
        base_url=settings.openai_base_url,
        default_model=settings.openai_chat_model,
        fallback_model=settings.openai_chat_fallback_model,
        api_key=settings.openai_api_key,
        timeout_seconds=settings.openai_timeout_seconds,
    )


def _provider_error(exc: EmbeddingProviderError) -> HTTPException:
    if exc.auth_failure:
        return HTTPException(
            status_code=503,
            detail="Embedding provider rejected the API key; update OPENAI_API_KEY and restart.",
        )
    return HTTPException(status_code=502, detail=f"Embedding request failed: {exc}")


def _llm_error(exc: LLMClientError) -> HTTPException:
    if exc.auth_failure:
        return HTTPException(
            status_code=503,
            detail="Chat provider rejected the API key; update OPENAI_API_KEY and restart.",
        )
    return HTTPException(status_code=502, detail=f"LLM request failed: {exc}")


def _no_module_content(module_id: str) -> JSONResponse:
    return JSONResponse(
        status_code=404,
        content={
            "error": "no_module_content",
            "detail": f'No content indexed for module "{module_id}".',
        },
    )


def _retrieve(
    corpus: Corpus,
    *,
    query: str,
    module_id: str,
    top_k: int,
    embedding_client: EmbeddingClient,
) -> RetrievalResult:
    try:
        return retrieve_module_chunks(
            corpus,
            query=query,
            module_id=module_id,
            top_k=top_k,
            embedding_client=embedding_client,
        )
    except MissingModuleError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except EmbeddingProviderError as exc:
        raise _provider_error(exc) from exc


def _source_meta(item: ScoredChunk) -> dict[str, Any]:
    return {
        "idx": item.rank,
        "id": item.chunk.id,
        "source": item.chunk.source,
        "score": item.score,
    }


@app.get("/health")
def health(corpus: Annotated[Corpus, Depends(get_corpus)]) -> dict[str, Any]:
    return {"status": "ok", "kb_chunks": len(corpus)}


@app.get("/rag/modules")
def list_modules(corpus: Annotated[Corpus, Depends(get_corpus)]) -> list[dict[str, Any]]:
    return [
        {"module_id": module_id, "chunks": count}
        for module_id, count in sorted(corpus.module_counts().items())
    ]


@app.get("/rag/search", response_model=None)
def rag_search(
    corpus: Annotated[Corpus, Depends(get_corpus)],
    embedding_client: Annotated[EmbeddingClient, Depends(get_embedding_client)],
    q: str,
    module_id: str = Query(default=""),
    k: int = 6,
) -> dict[str, Any] | JSONResponse:
    if not q.strip():
        raise HTTPException(status_code=400, detail="q must not be empty")

    result = _retrieve(
        corpus,
        query=q,
        module_id=module_id,
        top_k=max(1, k),
        embedding_client=embedding_client,
    )
    if not result.scoped_count:
        return _no_module_content(module_id)

    return {
        "module_id": module_id,
        "scoped_count": result.scoped_count,
        "results": [
            {
                "rank": item.rank,
                "id": item.chunk.id,
                "source": item.chunk.source,
                "score": item.score,
                "text": item.chunk.text,
            }
            for item in result.selected
        ],
    }


@app.post("/chat", response_model=None)
def chat(
    request: ChatRequest,
    corpus: Annotated[Corpus, Depends(get_corpus)],
    embedding_client: Annotated[EmbeddingClient, Depends(get_embedding_client)],
    llm_client: Annotated[LLMClient, Depends(get_llm_client)],
) -> dict[str, Any] | JSONResponse:
    question = request.text.strip()
    if not question:
        raise HTTPException(status_code=400, detail="text must not be empty")

    settings = get_settings()
    result = _retrieve(
        corpus,
        query=question,
        module_id=request.module_id,
        top_k=settings.rag_top_k,
        embedding_client=embedding_client,
    )
    if not result.scoped_count:
        return _no_module_content(request.module_id)

    messages = build_chat_messages(
        question=question,
        module_id=request.module_id,
        selected=result.selected,
        level=request.level,
        goal=request.goal,
        history=[ChatTurn(role=item.role, text=item.text) for item in request.history],
    )

    try:
        chat_result = llm_client.generate_answer(messages=messages)
    except LLMClientError as exc:
        raise _llm_error(exc) from exc

    reply = parse_coach_reply(chat_result.answer)
    return {
        **reply.model_dump(by_alias=True),
        "module_id": request.module_id,
        "level": request.level,
        "goal": request.goal,
        "sources": [_source_meta(item) for item in result.selected],
        "meta": {
            "model": chat_result.model,
            "used_fallback": chat_result.used_fallback,
            "retrieval_k": settings.rag_top_k,
            "retrieved_count": len(result.selected),
            "scoped_count": result.scoped_count,
        },
    }


def run() -> None:
    import uvicorn

    uvicorn.run("learnai.main:app", host="0.0.0.0", port=get_settings().port, reload=False)


if __name__ == "__main__":
    run()
