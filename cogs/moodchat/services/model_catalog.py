"""Catalog of providers and the chat models they offer."""

import logging
from typing import Any, Dict, Iterable, List, Optional

import httpx

from ..core.config import ChatConfig

logger = logging.getLogger(__name__)

HUB_MODELS_URL = (
    "https://huggingface.co/api/models"
    "?filter=text-generation-inference&sort=downloads&direction=-1&limit=50"
)
HUB_TIMEOUT = 30.0
MAX_HF_MODELS = 30

DEEPSEEK_MODELS = [
    "deepseek-ai/DeepSeek-V3-0324",
    "deepseek-chat",
    "deepseek-reasoner",
    "deepseek-chat-reasoner",
    "deepseek-ai/DeepSeek-V2-Lite",
    "deepseek-ai/DeepSeek-R1",
]

# Known to work through router.huggingface.co chat completions
PREDEFINED_HF_MODELS = [
    "Qwen/Qwen2.5-72B-Instruct",
    "Qwen/Qwen2.5-32B-Instruct",
    "Qwen/Qwen2.5-14B-Instruct",
    "Qwen/Qwen2.5-7B-Instruct",
    "Qwen/Qwen2.5-3B-Instruct",
    "meta-llama/Llama-3.1-8B-Instruct",
    "meta-llama/Llama-3.1-70B-Instruct",
    "meta-llama/Llama-3.2-3B-Instruct",
    "meta-llama/Llama-2-7b-chat-hf",
    "google/gemma-2-2b-it",
    "google/gemma-2-9b-it",
    "mistralai/Mistral-7B-Instruct-v0.2",
    "mistralai/Mixtral-8x7B-Instruct-v0.1",
    "deepseek-ai/DeepSeek-V3-0324",
    "deepseek-ai/DeepSeek-V2-Lite",
    "deepseek-ai/DeepSeek-R1",
    "zai-org/GLM-4.7-Flash:novita",
]

VERIFIED_HF_MODELS = [
    "Qwen/Qwen2.5-7B-Instruct",
    "Qwen/Qwen2.5-14B-Instruct",
    "meta-llama/Llama-3.1-8B-Instruct",
    "google/gemma-2-2b-it",
    "mistralai/Mistral-7B-Instruct-v0.2",
    "zai-org/GLM-4.7-Flash:novita",
]

PRESET_MODELS = {
    "deepseek": {
        "top": "deepseek-ai/DeepSeek-V3-0324",
        "medium": "deepseek-chat",
        "light": "deepseek-chat",
    },
    "huggingface": {
        "top": "Qwen/Qwen2.5-72B-Instruct",
        "medium": "Qwen/Qwen2.5-7B-Instruct",
        "light": "google/gemma-2-2b-it",
    },
    "groq": {
        "top": "llama-3.3-70b-versatile",
        "medium": "llama-3.3-70b-versatile",
        "light": "llama-3.1-8b-instant",
    },
}

_EXCLUDE_PATTERNS = (
    "gpt2",
    "gpt-2",
    "base",
    "vision",
    "embedding",
    "tokenizer",
    "qwen3-",
    "qwen2-0",
    "-0.6b",
    "-1.5b",
    "-3b-instruct",
)

_INCLUDE_PATTERNS = (
    "qwen2.5-",
    "llama-3.1-",
    "llama-3.2-",
    "llama-2-7b-chat",
    "mistral-7b-instruct",
    "mixtral-8x7b-instruct",
    "gemma-2-",
    "deepseek-",
    "glm-",
)


def is_chat_model(model_id: Any) -> bool:
    """Whether a Hub model id belongs to a chat family known to work."""
    if not isinstance(model_id, str) or "/" not in model_id:
        return False
    lowered = model_id.lower()

    if any(pattern in lowered for pattern in _EXCLUDE_PATTERNS):
        return False
    # Families only usable in their instruction-tuned variants
    if "qwen" in lowered and "-instruct" not in lowered:
        return False
    if "llama" in lowered and "-instruct" not in lowered and "-chat" not in lowered:
        return False
    if "mistral" in lowered and "-instruct" not in lowered:
        return False
    if "gemma" in lowered and "-it" not in lowered:
        return False

    return any(pattern in lowered for pattern in _INCLUDE_PATTERNS)


def filter_hub_models(entries: Iterable[Any]) -> List[str]:
    """
    Turn a Hub ``/api/models`` listing into the Hugging Face model list.

    Verified models come first; duplicates are dropped and the list is capped.
    Returns an empty list when nothing usable was found.
    """
    found = [
        entry["id"] for entry in entries
        if isinstance(entry, dict) and is_chat_model(entry.get("id"))
    ][:MAX_HF_MODELS]
    if not found:
        return []

    merged = list(dict.fromkeys(VERIFIED_HF_MODELS + found))
    return merged[:MAX_HF_MODELS]


class ModelCatalog:
    """Catalog capability for running without the gateway."""

    def __init__(self, config: ChatConfig, http_client: Optional[httpx.AsyncClient] = None):
        self.config = config
        self._owns_http_client = http_client is None
        self.http_client = http_client or httpx.AsyncClient()

    async def _fetch_hub_models(self, api_key: str) -> List[str]:
        try:
            response = await self.http_client.get(
                HUB_MODELS_URL,
                headers={"Authorization": f"Bearer {api_key}"},
                timeout=HUB_TIMEOUT,
            )
            response.raise_for_status()
            entries = response.json()
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"Could not fetch models from Hub API: {e}")
            return []

        if not isinstance(entries, list):
            logger.warning("Hub API returned an unexpected payload")
            return []
        return filter_hub_models(entries)

    def _groq_models(self) -> List[str]:
        groq = self.config.providers["groq"]
        return list(dict.fromkeys([groq.model] + groq.fallback_models))

    async def fetch(self) -> Dict[str, Any]:
        """
        Build the catalog.

        Returns:
            ``{providers: {id: {name, models, presets}}, defaultProvider}``
        """
        hf_models: List[str] = []
        hf_key = self.config.providers["huggingface"].api_key
        if hf_key:
            hf_models = await self._fetch_hub_models(hf_key)

        if not hf_models:
            logger.info("Using predefined Hugging Face model list")
            hf_models = list(PREDEFINED_HF_MODELS)

        models = {
            "deepseek": list(DEEPSEEK_MODELS),
            "huggingface": hf_models,
            "groq": self._groq_models(),
        }
        providers = {
            name: {
                "name": self.config.providers[name].display_name,
                "models": models[name],
                "presets": dict(PRESET_MODELS[name]),
            }
            for name in models
        }

        logger.info(
            f"Catalog: {len(models['deepseek'])} DeepSeek, {len(hf_models)} Hugging Face, "
            f"{len(models['groq'])} Groq models"
        )
        return {"providers": providers, "defaultProvider": self.config.default_provider}

    async def aclose(self) -> None:
        if self._owns_http_client:
            await self.http_client.aclose()
