"""
LLM access for Disc, always in JSON mode.

`generate_json(prompt, system=..., mock=...) -> (obj, err_code)` never raises;
exactly one of the pair is None. Callers turn an error code into their own
user-facing failure.

Env:
- LLM_PROVIDER: `openai` (default, `langchain_openai`) or `anthropic` (`langchain_anthropic`)
- LLM_MODEL: defaults to gpt-4o / claude-sonnet-4-5
- LLM_TEMPERATURE (0-1, default 0.7), LLM_MAX_OUTPUT_TOKENS (64-8192, default 2048)
- LLM_TIMEOUT_SECONDS (5-300, default 60)
- OPENAI_API_KEY / ANTHROPIC_API_KEY
- LLM_MOCK=1: return the caller's mock object, no SDK import and no network
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

logger = logging.getLogger(__name__)

_DEFAULT_MODELS = {
    "openai": "gpt-4o",
    "anthropic": "claude-sonnet-4-5",
}


class _ProviderUnavailable(Exception):
    def __init__(self, code: str):
        super().__init__(code)
        self.code = code


@dataclass(frozen=True)
class LLMConfig:
    provider: str
    model: str
    temperature: float
    max_output_tokens: int
    timeout: int


def _env_num(name: str, default: float, cast: Callable[[str], Any], lo: float, hi: float) -> Any:
    raw = (os.getenv(name) or "").strip()
    try:
        value = cast(raw) if raw else default
    except ValueError:
        value = default
    return cast(max(lo, min(value, hi)))


def load_llm_config() -> LLMConfig:
    provider = (os.getenv("LLM_PROVIDER") or "").strip().lower() or "openai"
    return LLMConfig(
        provider=provider,
        model=(os.getenv("LLM_MODEL") or "").strip() or _DEFAULT_MODELS.get(provider, "gpt-4o"),
        temperature=_env_num("LLM_TEMPERATURE", 0.7, float, 0.0, 1.0),
        max_output_tokens=_env_num("LLM_MAX_OUTPUT_TOKENS", 2048, int, 64, 8192),
        timeout=_env_num("LLM_TIMEOUT_SECONDS", 60, int, 5, 300),
    )


def _api_key(name: str) -> str:
    key = (os.getenv(name) or "").strip()
    if not key:
        raise _ProviderUnavailable("missing_api_key")
    return key


def _openai(cfg: LLMConfig) -> Any:
    api_key = _api_key("OPENAI_API_KEY")
    try:
        from langchain_openai import ChatOpenAI  # type: ignore[import-not-found]
    except ImportError as e:
        raise _ProviderUnavailable("sdk_import_failed:langchain_openai") from e
    return ChatOpenAI(
        model=cfg.model,
        temperature=cfg.temperature,
        max_tokens=cfg.max_output_tokens,
        api_key=api_key,
        timeout=cfg.timeout,
        # JSON mode: the reply is a single JSON object.
        model_kwargs={"response_format": {"type": "json_object"}},
    )


def _anthropic(cfg: LLMConfig) -> Any:
    api_key = _api_key("ANTHROPIC_API_KEY")
    try:
        from langchain_anthropic import ChatAnthropic  # type: ignore[import-not-found]
    except ImportError as e:
        raise _ProviderUnavailable("sdk_import_failed:langchain_anthropic") from e
    # No JSON mode here; the system prompt asks for JSON and the reply is extracted.
    return ChatAnthropic(
        model=cfg.model,
        temperature=cfg.temperature,
        max_tokens=cfg.max_output_tokens,
        anthropic_api_key=api_key,
        timeout=cfg.timeout,
    )


_PROVIDERS: Dict[str, Callable[[LLMConfig], Any]] = {
    "openai": _openai,
    "anthropic": _anthropic,
}


def _chat_model(cfg: LLMConfig) -> Any:
    factory = _PROVIDERS.get(cfg.provider)
    if factory is None:
        raise _ProviderUnavailable("provider_not_configured")
    return factory(cfg)


def _extract_json_object(text: str) -> Optional[Dict[str, Any]]:
    """First JSON object in `text`, tolerating code fences and chatter around it."""
    decoder = json.JSONDecoder()
    start = text.find("{")
    while start != -1:
        try:
            obj, _ = decoder.raw_decode(text, start)
        except json.JSONDecodeError:
            start = text.find("{", start + 1)
            continue
        return obj
    return None


# First match wins.
_ERROR_PATTERNS = (
    ("timeout", ("408", "TIMEOUT", "TIMED OUT")),
    ("gateway_timeout", ("504",)),
    ("permission_denied", ("403", "PERMISSION_DENIED")),
    ("unauthenticated", ("401", "UNAUTHENTICATED", "INVALID API KEY", "INVALID X-API-KEY")),
    ("model_not_found", ("404", "NOT FOUND", "MODEL_NOT_FOUND")),
    ("rate_limited", ("429", "RATE LIMIT", "RATE_LIMIT", "OVERLOADED")),
    ("max_tokens_truncated", ("MAX_TOKENS", "MAX TOKENS", "CONTEXT LENGTH")),
)


def _classify_error(e: Exception, *, model: str) -> str:
    if isinstance(e, TimeoutError):
        return "timeout"
    msg = str(e).replace("\n", " ").upper()
    for code, needles in _ERROR_PATTERNS:
        if any(n in msg for n in needles):
            return f"{code}:{model}" if code == "model_not_found" else code
    return f"llm_error:{type(e).__name__}"


def generate_json(
    prompt: str, *, system: Optional[str] = None, mock: Optional[Dict[str, Any]] = None
) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    """
    Send `prompt` (plus an optional system instruction) and parse the reply as a JSON object.

    Returns: (obj, err_code). Exactly one is non-None.
    """
    if (os.getenv("LLM_MOCK") or "").strip().lower() in ("1", "true", "yes", "on"):
        return dict(mock or {}), None

    cfg = load_llm_config()
    try:
        llm = _chat_model(cfg)
    except _ProviderUnavailable as e:
        logger.warning("LLM provider %r unavailable: %s", cfg.provider, e.code)
        return None, e.code

    from langchain_core.messages import HumanMessage, SystemMessage  # type: ignore[import-not-found]

    messages = [SystemMessage(content=system)] if system else []
    messages.append(HumanMessage(content=prompt))

    try:
        reply = llm.invoke(messages)
    except Exception as e:
        code = _classify_error(e, model=cfg.model)
        logger.warning("LLM call failed (%s, model=%s): %s", code, cfg.model, e)
        return None, code

    obj = _extract_json_object(str(getattr(reply, "content", "") or ""))
    if obj is None:
        logger.warning("LLM reply was not a JSON object (model=%s)", cfg.model)
        return None, "json_parse_failed"
    return obj, None
