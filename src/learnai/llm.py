from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from learnai.services.rag.embedding_client import redact_api_key
from learnai.services.rag.types import ScoredChunk

HISTORY_TURNS = 8
PROMPT_HISTORY_TURNS = 6


class LLMClientError(RuntimeError):
    def __init__(self, message: str, *, auth_failure: bool = False) -> None:
        super().__init__(message)
        self.auth_failure = auth_failure


@dataclass(frozen=True)
class ChatTurn:
    role: str
    text: str


@dataclass(frozen=True)
class ChatResult:
    answer: str
    model: str
    used_fallback: bool


class LLMClient(Protocol):
    def generate_answer(self, *, messages: list[dict[str, str]]) -> ChatResult: ...


class CoachReply(BaseModel):
    """Structured coaching answer; field names are camelCase on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    reply: str = ""
    translation: str = ""
    grammar_notes: str = ""
    vocabulary: list[Any] = Field(default_factory=list)
    follow_up_question: str = ""
    extra_suggestions: list[Any] = Field(default_factory=list)
    cultural_tip: str = ""
    confidence: str = "medium"


def parse_coach_reply(raw: str) -> CoachReply:
    try:
        return CoachReply.model_validate_json(raw)
    except ValidationError:
        return CoachReply(reply=raw)


def format_context(selected: list[ScoredChunk]) -> str:
    return "\n\n".join(f"[{item.rank}] {item.chunk.text}" for item in selected)


def build_chat_messages(
    *,
    question: str,
    module_id: str,
    selected: list[ScoredChunk],
    level: str,
    goal: str,
    history: list[ChatTurn] | None = None,
) -> list[dict[str, str]]:
    turns = history or []
    system_prompt = "\n".join(
        [
            "You are the LearnAI coach. Answer from the module material when it is available.",
            f"- Learner level: {level}",
            f"- Goal: {goal}",
            f"- Module: {module_id}",
            "- When you use the retrieved material below, cite it as [n] without links.",
            "- Keep the explanation short, give examples and end with a follow-up question.",
            "- Reply with a single JSON object with the keys reply, translation, grammarNotes,"
            " vocabulary (array), followUpQuestion, extraSuggestions (array), culturalTip"
            " and confidence (low, medium or high).",
        ]
    )
    recent = "\n".join(f"- {turn.role}: {turn.text}" for turn in turns[-PROMPT_HISTORY_TURNS:])
    user_prompt = (
        f"LEARNER QUESTION:\n{question}\n\n"
        f"RECENT HISTORY:\n{recent or '(empty)'}\n\n"
        f"MODULE CONTEXT (cite [n] when used):\n{format_context(selected)}"
    )

    messages = [{"role": "system", "content": system_prompt}]
    messages.extend(
        {
            "role": "assistant" if turn.role == "assistant" else "user",
            "content": turn.text,
        }
        for turn in turns[-HISTORY_TURNS:]
    )
    messages.append({"role": "user", "content": user_prompt})
    return messages


class OpenAIChatClient:
    def __init__(
        self,
        *,
        base_url: str,
        default_model: str,
        fallback_model: str = "",
        api_key: str = "",
        timeout_seconds: float = 30.0,
        temperature: float = 0.3,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._default_model = default_model
        self._fallback_model = fallback_model
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._temperature = temperature

    def generate_answer(self, *, messages: list[dict[str, str]]) -> ChatResult:
        candidates = self._model_candidates()
        for model, used_fallback in candidates:
            try:
                content = self._chat_completion(model=model, messages=messages)
            except httpx.HTTPStatusError as exc:
                # every candidate shares the key
                if exc.response.status_code in (401, 403):
                    raise LLMClientError(redact_api_key(str(exc)), auth_failure=True) from exc
                if (model, used_fallback) == candidates[-1]:
                    raise LLMClientError(redact_api_key(str(exc))) from exc
                continue
            except (httpx.HTTPError, ValueError) as exc:
                if (model, used_fallback) == candidates[-1]:
                    raise LLMClientError(redact_api_key(str(exc))) from exc
                continue

            return ChatResult(answer=content, model=model, used_fallback=used_fallback)

        raise LLMClientError("No model candidates configured")

    def _model_candidates(self) -> list[tuple[str, bool]]:
        candidates: list[tuple[str, bool]] = [(self._default_model, False)]
        if self._fallback_model and self._fallback_model != self._default_model:
            candidates.append((self._fallback_model, True))
        return candidates

    def _chat_completion(self, *, model: str, messages: list[dict[str, str]]) -> str:
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else {}
        response = httpx.post(
            f"{self._base_url}/chat/completions",
            json={
                "model": model,
                "messages": messages,
                "temperature": self._temperature,
                "response_format": {"type": "json_object"},
            },
            headers=headers,
            timeout=self._timeout_seconds,
        )
        response.raise_for_status()

        payload = response.json()
        choices = payload.get("choices")
        if not isinstance(choices, list) or not choices:
            raise ValueError("Invalid chat completion payload: missing choices")

        message = choices[0].get("message") if isinstance(choices[0], dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content.strip():
            raise ValueError("Invalid chat completion payload: missing assistant content")

        return content.strip()
