"""Unit tests for completion text extraction and the completion wrapper."""

from types import SimpleNamespace

import pytest
from langchain_core.messages import HumanMessage, SystemMessage

from config import settings
from services.llm_service import CompletionError, complete, create_llm, extract_completion_text
from conftest import FakeLLM


class TestExtractCompletionText:
    @pytest.mark.parametrize("response,expected", [
        ("plain", "plain"),
        (None, ""),
        ([{"type": "text", "text": "a"}, "b"], "ab"),
        ({"choices": [{"message": {"content": "hi"}}]}, "hi"),
        ({"choices": [{"text": "legacy"}]}, "legacy"),
        ({"choices": []}, ""),
        ({"text": "x"}, "x"),
        ({"content": [{"text": "nested"}]}, "nested"),
        ({"unexpected": 1}, ""),
    ])
    def test_shapes(self, response, expected) -> None:
        assert extract_completion_text(response) == expected

    def test_message_object(self) -> None:
        assert extract_completion_text(SimpleNamespace(content="c")) == "c"
        assert extract_completion_text(SimpleNamespace(content=[{"text": "z"}])) == "z"

    def test_choices_object(self) -> None:
        response = SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content="m"))])
        assert extract_completion_text(response) == "m"


class TestComplete:
    def test_returns_stripped_text(self) -> None:
        llm = FakeLLM("  answer  ")
        assert complete(llm, "system", "user") == "answer"
        system, human = llm.calls[0]
        assert isinstance(system, SystemMessage) and system.content == "system"
        assert isinstance(human, HumanMessage) and human.content == "user"

    def test_empty_response(self) -> None:
        with pytest.raises(CompletionError):
            complete(FakeLLM("   "), "system", "user")

    def test_client_error(self) -> None:
        with pytest.raises(CompletionError, match="boom"):
            complete(FakeLLM(error=RuntimeError("boom")), "system", "user")


class TestCreateLlm:
    def test_unknown_provider(self, monkeypatch) -> None:
        monkeypatch.setattr(settings, "llm_provider", "bogus")
        with pytest.raises(ValueError, match="Unsupported LLM provider"):
            create_llm()

    def test_openai_requires_key(self, monkeypatch) -> None:
        monkeypatch.setattr(settings, "llm_provider", "openai")
        monkeypatch.setattr(settings, "openai_api_key", None)
        with pytest.raises(ValueError, match="OPENAI_API_KEY"):
            create_llm()
