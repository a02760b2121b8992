"""
Volcano Engine (火山引擎) LLM Provider.
Uses the OpenAI-compatible chat/completions format with Ark defaults.

Ark does not serve OpenAI model names, so the chat-level model choices are
mapped onto Doubao models unless the caller maps them explicitly.
"""

from typing import Dict, Optional

from ..session.state import ModelVersion
from .openai_provider import OpenAIProvider

DEFAULT_MODEL_MAP = {
    ModelVersion.GPT35_TURBO.value: "doubao-1-5-lite-32k-250115",
    ModelVersion.GPT4.value: "doubao-1-5-pro-256k-250115",
}


class VolcEngineProvider(OpenAIProvider):
    """Provider for the Volcano Engine Ark API."""

    provider_name = "volcengine"

    def __init__(
        self,
        api_key: str,
        model: str = "doubao-1-5-pro-256k-250115",
        base_url: str = "https://ark.cn-beijing.volces.com/api/v3",
        default_temperature: float = 0.7,
        default_max_tokens: Optional[int] = None,
        timeout: float = 120.0,
        log_calls: bool = True,
        model_map: Optional[Dict[str, str]] = None,
    ):
        super().__init__(api_key, model, base_url, default_temperature,
                         default_max_tokens, timeout, log_calls,
                         {**DEFAULT_MODEL_MAP, **(model_map or {})})
