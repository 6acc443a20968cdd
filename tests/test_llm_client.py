"""Tests for the provider-agnostic JSON client (LangChain chat models are stubbed)."""

from __future__ import annotations

import sys
import types

import pytest

from langchain_core.messages import HumanMessage, SystemMessage

from disc.llm.client import _classify_error, _extract_json_object, generate_json, load_llm_config


class _Msg:
    def __init__(self, content: str):
        self.content = content


def _install_openai_stub(monkeypatch, *, reply: str = '{"ok": true}', raises: Exception = None, seen=None) -> None:
    lc_mod = types.ModuleType("langchain_openai")

    class _ChatOpenAI:
        def __init__(self, **kwargs):
            if seen is not None:
                seen["kwargs"] = kwargs

        def invoke(self, messages):
            if seen is not None:
                seen["messages"] = messages
            if raises is not None:
                raise raises
            return _Msg(reply)

    lc_mod.ChatOpenAI = _ChatOpenAI  # type: ignore[attr-defined]
    monkeypatch.setitem(sys.modules, "langchain_openai", lc_mod)


@pytest.fixture(autouse=True)
def _llm_env(monkeypatch) -> None:
    for name in (
        "LLM_MOCK",
        "LLM_PROVIDER",
        "LLM_MODEL",
        "LLM_TEMPERATURE",
        "LLM_MAX_OUTPUT_TOKENS",
        "LLM_TIMEOUT_SECONDS",
    ):
        monkeypatch.delenv(name, raising=False)


def test_openai_is_default_provider(monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    seen: dict = {}
    _install_openai_stub(monkeypatch, reply='{"recommendations": [], "explanation": "x"}', seen=seen)

    obj, err = generate_json("Liked albums: Dummy", system="be helpful")

    assert err is None
    assert obj == {"recommendations": [], "explanation": "x"}
    assert seen["kwargs"]["model"] == "gpt-4o"
    assert seen["kwargs"]["api_key"] == "sk-test"
    assert seen["kwargs"]["model_kwargs"] == {"response_format": {"type": "json_object"}}
    system, human = seen["messages"]
    assert isinstance(system, SystemMessage) and system.content == "be helpful"
    assert isinstance(human, HumanMessage) and human.content == "Liked albums: Dummy"


def test_openai_requires_api_key(monkeypatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    obj, err = generate_json("hello")
    assert obj is None
    assert err == "missing_api_key"


def test_anthropic_provider(monkeypatch) -> None:
    monkeypatch.setenv("LLM_PROVIDER", "anthropic")
    monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-test-key")
    monkeypatch.setenv("LLM_MODEL", "claude-test")

    lc_mod = types.ModuleType("langchain_anthropic")

    class _ChatAnthropic:
        def __init__(self, **kwargs):
            assert kwargs.get("anthropic_api_key") == "sk-ant-test-key"
            assert kwargs.get("model") == "claude-test"

        def invoke(self, _messages):
            return _Msg('Here you go:\n```json\n{"rating": 4, "confidence": 0.7}\n```')

    lc_mod.ChatAnthropic = _ChatAnthropic  # type: ignore[attr-defined]
    monkeypatch.setitem(sys.modules, "langchain_anthropic", lc_mod)

    obj, err = generate_json("Great album")
    assert err is None
    assert obj == {"rating": 4, "confidence": 0.7}


def test_unknown_provider(monkeypatch) -> None:
    monkeypatch.setenv("LLM_PROVIDER", "nope")
    assert generate_json("hello") == (None, "provider_not_configured")


def test_non_json_reply(monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    _install_openai_stub(monkeypatch, reply="I cannot help with that.")
    assert generate_json("hello") == (None, "json_parse_failed")


def test_provider_exception_is_classified(monkeypatch) -> None:
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    _install_openai_stub(monkeypatch, raises=RuntimeError("Error code: 429 - rate limit exceeded"))
    assert generate_json("hello") == (None, "rate_limited")


def test_mock_mode_returns_stub_without_sdk(monkeypatch) -> None:
    monkeypatch.setenv("LLM_MOCK", "1")
    monkeypatch.setitem(sys.modules, "langchain_openai", None)
    assert generate_json("hello", mock={"a": 1}) == ({"a": 1}, None)
    assert generate_json("hello") == ({}, None)


def test_extract_json_object_variants() -> None:
    assert _extract_json_object('{"a": 1}') == {"a": 1}
    assert _extract_json_object('```json\n{"a": 1}\n```') == {"a": 1}
    assert _extract_json_object('Sure! {"a": {"b": "}"}} trailing') == {"a": {"b": "}"}}
    assert _extract_json_object("[1, 2]") is None
    assert _extract_json_object('{not json} then {"b": 2}') == {"b": 2}
    assert _extract_json_object("") is None


def test_classify_error() -> None:
    assert _classify_error(TimeoutError("x"), model="m") == "timeout"
    assert _classify_error(RuntimeError("401 Unauthorized"), model="m") == "unauthenticated"
    assert _classify_error(RuntimeError("404 model missing"), model="gpt-x") == "model_not_found:gpt-x"
    assert _classify_error(ValueError("boom"), model="m") == "llm_error:ValueError"


def test_load_config_bounds(monkeypatch) -> None:
    monkeypatch.setenv("LLM_TEMPERATURE", "5")
    monkeypatch.setenv("LLM_MAX_OUTPUT_TOKENS", "10")
    monkeypatch.setenv("LLM_TIMEOUT_SECONDS", "not-a-number")
    cfg = load_llm_config()
    assert cfg.provider == "openai"
    assert cfg.model == "gpt-4o"
    assert cfg.temperature == 1.0
    assert cfg.max_output_tokens == 64
    assert cfg.timeout == 60
