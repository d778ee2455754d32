"""Token counting and context-window accounting for one exchange."""

import logging
import math
import re
from functools import lru_cache
from typing import Any, Dict, Iterable, Mapping, Optional

import tiktoken

from ..models.message import UsageSnapshot

logger = logging.getLogger(__name__)

DEFAULT_CONTEXT_LIMIT = 64000
REFERENCE_MODEL = "gpt-3.5-turbo"

# Context window sizes in tokens
MODEL_CONTEXT_LIMITS: Dict[str, int] = {
    # DeepSeek
    "deepseek-chat": 64000,
    "deepseek-reasoner": 64000,
    "deepseek-chat-reasoner": 64000,
    "deepseek-ai/DeepSeek-V3-0324": 128000,
    "deepseek-ai/DeepSeek-V2-Lite": 64000,
    "deepseek-ai/DeepSeek-R1": 64000,
    # Qwen
    "Qwen/Qwen2.5-72B-Instruct": 128000,
    "Qwen/Qwen2.5-32B-Instruct": 128000,
    "Qwen/Qwen2.5-14B-Instruct": 128000,
    "Qwen/Qwen2.5-7B-Instruct": 128000,
    "Qwen/Qwen2.5-3B-Instruct": 128000,
    # Llama
    "meta-llama/Llama-3.1-8B-Instruct": 128000,
    "meta-llama/Llama-3.1-70B-Instruct": 128000,
    "meta-llama/Llama-3.2-3B-Instruct": 128000,
    "meta-llama/Llama-2-7b-chat-hf": 4096,
    "llama-3.3-70b-versatile": 128000,
    "llama-3.1-8b-instant": 128000,
    # Gemma
    "google/gemma-2-2b-it": 8192,
    "google/gemma-2-9b-it": 8192,
    # Mistral
    "mistralai/Mistral-7B-Instruct-v0.2": 32768,
    "mistralai/Mixtral-8x7B-Instruct-v0.1": 32768,
    # GLM
    "zai-org/GLM-4.7-Flash:novita": 128000,
}

# Checked in order against the lowercased model id
PROVIDER_CONTEXT_LIMITS = (
    ("deepseek", 64000),
    ("qwen", 128000),
    ("llama", 128000),
    ("gemma", 8192),
    ("mistral", 32768),
)

_CJK = re.compile(r"[一-鿿]")
_CYRILLIC = re.compile(r"[а-яА-ЯёЁ]")


def get_context_limit(model: Optional[str]) -> int:
    """Context window size for a model id."""
    if not model:
        return DEFAULT_CONTEXT_LIMIT

    if model in MODEL_CONTEXT_LIMITS:
        return MODEL_CONTEXT_LIMITS[model]

    # Versioned or prefixed ids
    for key, limit in MODEL_CONTEXT_LIMITS.items():
        if key in model or model in key:
            return limit

    lowered = model.lower()
    for family, limit in PROVIDER_CONTEXT_LIMITS:
        if family in lowered:
            return limit

    return DEFAULT_CONTEXT_LIMIT


@lru_cache(maxsize=32)
def _load_encoding(model: str) -> tiktoken.Encoding:
    try:
        return tiktoken.encoding_for_model(model)
    except KeyError:
        logger.debug(f"Model {model} not known to tiktoken, using {REFERENCE_MODEL} encoding")
        return tiktoken.encoding_for_model(REFERENCE_MODEL)


def heuristic_token_count(text: str) -> int:
    """Character-based estimate used when no tokenizer is available."""
    if _CJK.search(text):
        coefficient = 0.6
    elif _CYRILLIC.search(text):
        coefficient = 0.4
    else:
        coefficient = 0.3
    return math.ceil(len(text) * coefficient)


def estimate_tokens(text: Optional[str], model: Optional[str] = None) -> int:
    """
    Estimate the token count of a text.

    Uses the model's tiktoken encoding, the reference encoding for unknown
    models, and a character heuristic when tiktoken cannot load at all.
    """
    if not text or not isinstance(text, str):
        return 0

    try:
        encoding = _load_encoding(model or REFERENCE_MODEL)
        return len(encoding.encode(text, disallowed_special=()))
    except Exception as e:
        logger.warning(f"tiktoken unavailable, falling back to character estimate: {e}")
        return heuristic_token_count(text)


def render_prompt(messages: Iterable[Mapping[str, Any]]) -> str:
    """Join chat messages as ``role: content`` lines."""
    return "\n".join(f"{m.get('role', '')}: {m.get('content', '')}" for m in messages)


def _count(usage: Mapping[str, Any], key: str) -> int:
    value = usage.get(key)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return 0
    return max(0, int(value))


def context_usage_percent(total_tokens: int, max_context_tokens: int) -> float:
    """Share of the context window used, in [0, 100] with one decimal."""
    if max_context_tokens <= 0:
        return 100.0 if total_tokens > 0 else 0.0
    percent = min(100.0, max(0.0, total_tokens / max_context_tokens * 100))
    # Round half up
    return math.floor(percent * 10 + 0.5) / 10


def build_usage_snapshot(
    prompt_messages: Iterable[Mapping[str, Any]],
    completion: Optional[str],
    model: Optional[str] = None,
    usage: Optional[Mapping[str, Any]] = None
) -> UsageSnapshot:
    """
    Compute the usage snapshot of one exchange.

    Args:
        prompt_messages: Messages sent upstream, system prompt included
        completion: Reply text
        model: Model id used for the exchange
        usage: Upstream ``usage`` object with exact counts, if the provider sent one

    Returns:
        UsageSnapshot; ``estimated`` is False only when exact counts were given
    """
    max_context_tokens = get_context_limit(model)

    if isinstance(usage, Mapping):
        prompt_tokens = _count(usage, "prompt_tokens")
        completion_tokens = _count(usage, "completion_tokens")
        total_tokens = _count(usage, "total_tokens")
        estimated = False
    else:
        prompt_tokens = estimate_tokens(render_prompt(prompt_messages), model)
        completion_tokens = estimate_tokens(completion, model)
        total_tokens = prompt_tokens + completion_tokens
        estimated = True

    return UsageSnapshot(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=total_tokens,
        estimated=estimated,
        max_context_tokens=max_context_tokens,
        context_usage_percent=context_usage_percent(total_tokens, max_context_tokens),
    )
