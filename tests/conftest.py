from collections.abc import Iterator
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from learnai.config import get_settings
from learnai.main import app, get_corpus


@pytest.fixture(autouse=True)
def reset_app_caches() -> Iterator[None]:
    get_settings.cache_clear()
    get_corpus.cache_clear()
    yield
    get_settings.cache_clear()
    get_corpus.cache_clear()


@pytest.fixture
def course_dir(tmp_path: Path) -> Path:
    source_dir = tmp_path / "conteudos_txt"
    (source_dir / "m1").mkdir(parents=True)
    (source_dir / "m2").mkdir(parents=True)
    (source_dir / "m1" / "lesson.txt").write_text(
        "Grammar basics: the verb comes second.\n\nMore grammar and verb drills.",
        encoding="utf-8",
    )
    (source_dir / "m1" / "extra.md").write_text(
        "Pronunciation tips for a neutral accent.", encoding="utf-8"
    )
    (source_dir / "m2" / "intro.txt").write_text(
        "Accent and pronunciation practice.", encoding="utf-8"
    )
    return source_dir


@pytest.fixture
def client(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Iterator[TestClient]:
    monkeypatch.setenv("KB_INDEX_PATH", str(tmp_path / "kb" / "kb_index.json"))
    monkeypatch.setenv("OPENAI_EMBED_MODEL", "keyword-test")
    monkeypatch.setenv("OPENAI_API_KEY", "")

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()
