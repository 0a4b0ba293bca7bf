import json
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from learnai.llm import ChatResult, LLMClientError
from learnai.main import app, get_corpus, get_embedding_client, get_llm_client
from learnai.services.rag.embedding_client import EmbeddingProviderError
from learnai.services.rag.ingest import index_corpus
from learnai.services.rag.snapshot import Corpus
from learnai.services.rag.types import Chunk


class FakeEmbeddingClient:
    model = "keyword-test"

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        vectors: list[list[float]] = []
        for text in texts:
            normalized = text.lower()
            vectors.append(
                [
                    float(normalized.count("grammar") + normalized.count("verb")),
                    float(normalized.count("pronunciation") + normalized.count("accent")),
                ]
            )
        return vectors


class FailingEmbeddingClient:
    def __init__(self, *, auth_failure: bool = False) -> None:
        self._auth_failure = auth_failure

    def embed_texts(self, texts: list[str]) -> list[list[float]]:
        raise EmbeddingProviderError("provider down", auth_failure=self._auth_failure)


COACH_JSON = json.dumps(
    {
        "reply": "Verbs change with tense [1].",
        "translation": "",
        "grammarNotes": "Regular verbs add -ed.",
        "vocabulary": ["verb", "tense"],
        "followUpQuestion": "Can you conjugate walk?",
        "extraSuggestions": [],
        "culturalTip": "",
        "confidence": "high",
    }
)


class FakeLLMClient:
    def __init__(self, answer: str = COACH_JSON) -> None:
        self.calls: list[list[dict[str, str]]] = []
        self._answer = answer

    def generate_answer(self, *, messages: list[dict[str, str]]) -> ChatResult:
        self.calls.append(messages)
        return ChatResult(answer=self._answer, model="fake-model", used_fallback=False)


class FailingLLMClient:
    def __init__(self, *, auth_failure: bool = False) -> None:
        self._auth_failure = auth_failure

    def generate_answer(self, *, messages: list[dict[str, str]]) -> ChatResult:
        raise LLMClientError("simulated failure", auth_failure=self._auth_failure)


def _textual_corpus() -> Corpus:
    return Corpus(
        chunks=(
            Chunk(id="m1::a.txt::0", module_id="m1", source="a.txt#0", text="Greetings and farewells."),
            Chunk(id="m1::a.txt::1", module_id="m1", source="a.txt#1", text="Past tense grammar."),
            Chunk(id="m2::b.txt::0", module_id="m2", source="b.txt#0", text="Grammar of module two."),
        )
    )


def _vector_corpus() -> Corpus:
    return Corpus(
        chunks=(
            Chunk(id="m1::a.txt::0", module_id="m1", source="a.txt#0", text="verbs", embedding=(1.0, 0.0)),
            Chunk(id="m1::a.txt::1", module_id="m1", source="a.txt#1", text="accent", embedding=(0.0, 1.0)),
            Chunk(id="m1::a.txt::2", module_id="m1", source="a.txt#2", text="mixed", embedding=(0.6, 0.8)),
        ),
        embed_model="keyword-test",
    )


def test_health_reports_empty_corpus_when_snapshot_missing(client: TestClient) -> None:
    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "kb_chunks": 0}


def test_snapshot_is_loaded_from_configured_path(
    client: TestClient, course_dir: Path, tmp_path: Path
) -> None:
    index_corpus(
        source_dir=course_dir,
        snapshot_path=tmp_path / "kb" / "kb_index.json",
        embedding_client=FakeEmbeddingClient(),
    )
    get_corpus.cache_clear()

    health = client.get("/health")
    modules = client.get("/rag/modules")

    assert health.json()["kb_chunks"] == 3
    assert modules.json() == [
        {"module_id": "m1", "chunks": 2},
        {"module_id": "m2", "chunks": 1},
    ]


def test_rag_search_textual_mode(client: TestClient) -> None:
    app.dependency_overrides[get_corpus] = _textual_corpus

    response = client.get("/rag/search", params={"q": "grammar", "module_id": "m1"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["scoped_count"] == 2
    assert [item["id"] for item in payload["results"]] == ["m1::a.txt::1", "m1::a.txt::0"]
    assert [item["rank"] for item in payload["results"]] == [1, 2]
    assert {"rank", "id", "source", "score", "text"}.issubset(payload["results"][0].keys())


def test_rag_search_vector_mode(client: TestClient) -> None:
    app.dependency_overrides[get_corpus] = _vector_corpus
    app.dependency_overrides[get_embedding_client] = lambda: FakeEmbeddingClient()

    response = client.get("/rag/search", params={"q": "verb grammar", "module_id": "m1", "k": 6})

    assert response.status_code == 200
    results = response.json()["results"]
    assert [item["id"] for item in results] == ["m1::a.txt::0", "m1::a.txt::2"]
    assert [item["score"] for item in results] == [1.0, 0.6]


def test_rag_search_requires_module(client: TestClient) -> None:
    app.dependency_overrides[get_corpus] = _textual_corpus

    response = client.get("/rag/search", params={"q": "grammar"})

    assert response.status_code == 400
    assert "module_id" in response.json()["detail"]


def test_rag_search_unknown_module_returns_404(client: TestClient) -> None:
    app.dependency_overrides[get_corpus] = _textual_corpus

    response = client.get("/rag/search", params={"q": "grammar", "module_id": "m9"})

    assert response.status_code == 404
    assert response.json()["error"] == "no_module_content"


@pytest.mark.parametrize(("auth_failure", "status_code"), [(False, 502), (True, 503)])
def test_rag_search_surfaces_provider_failures(
    client: TestClient, auth_failure: bool, status_code: int
) -> None:
    app.dependency_overrides[get_corpus] = _vector_corpus
    app.dependency_overrides[get_embedding_client] = lambda: FailingEmbeddingClient(
        auth_failure=auth_failure
    )

    response = client.get("/rag/search", params={"q": "verbs", "module_id": "m1"})

    assert response.status_code == status_code


def test_chat_returns_coaching_fields_with_cited_sources(client: TestClient) -> None:
    fake_llm = FakeLLMClient()
    app.dependency_overrides[get_corpus] = _vector_corpus
    app.dependency_overrides[get_embedding_client] = lambda: FakeEmbeddingClient()
    app.dependency_overrides[get_llm_client] = lambda: fake_llm

    response = client.post(
        "/chat",
        json={
            "text": "How do verbs work?",
            "module_id": "m1",
            "level": "beginner",
            "history": [{"role": "assistant", "text": "Welcome!"}],
        },
    )

    assert response.status_code == 200
    payload = response.json()
    assert payload["reply"] == "Verbs change with tense [1]."
    assert payload["grammarNotes"] == "Regular verbs add -ed."
    assert payload["vocabulary"] == ["verb", "tense"]
    assert payload["followUpQuestion"] == "Can you conjugate walk?"
    assert payload["confidence"] == "high"
    assert payload["sources"][0] == {
        "idx": 1,
        "id": "m1::a.txt::0",
        "source": "a.txt#0",
        "score": 1.0,
    }
    assert payload["meta"]["scoped_count"] == 3

    messages = fake_llm.calls[0]
    assert messages[0]["role"] == "system"
    assert "Module: m1" in messages[0]["content"]
    assert messages[1] == {"role": "assistant", "content": "Welcome!"}
    assert "[1] verbs" in messages[-1]["content"]
    assert "How do verbs work?" in messages[-1]["content"]


def test_chat_validates_text_and_module(client: TestClient) -> None:
    app.dependency_overrides[get_corpus] = _textual_corpus
    app.dependency_overrides[get_llm_client] = lambda: FakeLLMClient()

    missing_text = client.post("/chat", json={"text": "  ", "module_id": "m1"})
    missing_module = client.post("/chat", json={"text": "hello"})

    assert missing_text.status_code == 400
    assert missing_module.status_code == 400


def test_chat_reports_module_without_content(client: TestClient) -> None:
    fake_llm = FakeLLMClient()
    app.dependency_overrides[get_llm_client] = lambda: fake_llm

    response = client.post("/chat", json={"text": "hello", "module_id": "m1"})

    assert response.status_code == 404
    assert response.json()["error"] == "no_module_content"
    assert fake_llm.calls == []


def test_chat_llm_failure_returns_502(client: TestClient) -> None:
    app.dependency_overrides[get_corpus] = _textual_corpus
    app.dependency_overrides[get_llm_client] = lambda: FailingLLMClient()

    response = client.post("/chat", json={"text": "grammar", "module_id": "m1"})

    assert response.status_code == 502
    assert "simulated failure" in response.json()["detail"]


def test_chat_falls_back_to_plain_reply_when_answer_is_not_json(client: TestClient) -> None:
    app.dependency_overrides[get_corpus] = _textual_corpus
    app.dependency_overrides[get_llm_client] = lambda: FakeLLMClient("Just practice daily.")

    response = client.post("/chat", json={"text": "grammar", "module_id": "m1"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["reply"] == "Just practice daily."
    assert payload["translation"] == ""
    assert payload["grammarNotes"] == ""
    assert payload["vocabulary"] == []
    assert payload["extraSuggestions"] == []
    assert payload["confidence"] == "medium"
    assert payload["module_id"] == "m1"


def test_chat_rejected_api_key_returns_503(client: TestClient) -> None:
    app.dependency_overrides[get_corpus] = _textual_corpus
    app.dependency_overrides[get_llm_client] = lambda: FailingLLMClient(auth_failure=True)

    response = client.post("/chat", json={"text": "grammar", "module_id": "m1"})

    assert response.status_code == 503
    assert "OPENAI_API_KEY" in response.json()["detail"]
