"""
OpenAI-compatible LLM Provider.
Talks to any endpoint implementing the OpenAI chat/completions API.
"""

import logging
import time
from typing import Any, Dict, List, Optional

import httpx

from ..core.logging_config import truncate_large_data
from .base import CompletionError, LLMMessage, LLMProvider, LLMResponse

logger = logging.getLogger(__name__)


def _error_body(error: Exception) -> Optional[str]:
    if isinstance(error, httpx.HTTPStatusError):
        return truncate_large_data(str(error.response.text), 2000)
    return None


class OpenAIProvider(LLMProvider):
    """Provider for the OpenAI chat/completions endpoint."""

    provider_name = "openai"

    def __init__(
        self,
        api_key: str,
        model: str = "gpt-3.5-turbo",
        base_url: str = "https://api.openai.com/v1",
        default_temperature: float = 0.7,
        default_max_tokens: Optional[int] = None,
        timeout: float = 120.0,
        log_calls: bool = True,
        model_map: Optional[Dict[str, str]] = None,
    ):
        """
        Args:
            model_map: Requested model name -> model id sent to the endpoint.
                Names without an entry are sent unchanged.
        """
        super().__init__(api_key, model, base_url, default_temperature, default_max_tokens)
        self.timeout = timeout
        self.log_calls = log_calls
        self.model_map = dict(model_map or {})

    def resolve_model(self, model: Optional[str]) -> str:
        if not model:
            return self.model
        return self.model_map.get(model, model)

    def _get_headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

    def _build_payload(self, messages: List[LLMMessage], model: Optional[str],
                       temperature: Optional[float], max_tokens: Optional[int]) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "model": self.resolve_model(model),
            "messages": self._format_messages(messages),
            "temperature": temperature if temperature is not None else self.default_temperature,
        }
        if max_tokens or self.default_max_tokens:
            payload["max_tokens"] = max_tokens or self.default_max_tokens
        return payload

    async def chat_completion(
        self,
        messages: List[LLMMessage],
        model: Optional[str] = None,
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> LLMResponse:
        """Send request to the Chat Completions endpoint."""
        start_time = time.time()
        url = f"{self.base_url}/chat/completions"
        payload = self._build_payload(messages, model, temperature, max_tokens)

        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                f"LLM API call starting: provider={self.provider_name}, model={payload['model']}, "
                f"{len(messages)} messages"
            )

        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                resp = await client.post(url, json=payload, headers=self._get_headers())
                resp.raise_for_status()
                data = resp.json()

            choice = data["choices"][0]
            content = choice["message"]["content"]
            if not isinstance(content, str):
                raise ValueError("Response message has no text content")
        except (httpx.HTTPError, KeyError, IndexError, TypeError, ValueError) as e:
            duration_ms = (time.time() - start_time) * 1000
            logger.error(
                f"LLM API call failed: {e}",
                extra={"extra_fields": {
                    "provider": self.provider_name,
                    "model": payload["model"],
                    "duration_ms": round(duration_ms, 2),
                    "error": str(e),
                    "response_body": _error_body(e),
                }}
            )
            raise CompletionError(str(e) or type(e).__name__) from e

        usage = data.get("usage") or {}
        duration_ms = (time.time() - start_time) * 1000
        if self.log_calls:
            logger.info(
                "LLM API call completed",
                extra={"extra_fields": {
                    "provider": self.provider_name,
                    "model": data.get("model", payload["model"]),
                    "prompt_tokens": usage.get("prompt_tokens", 0),
                    "completion_tokens": usage.get("completion_tokens", 0),
                    "total_tokens": usage.get("total_tokens", 0),
                    "duration_ms": round(duration_ms, 2),
                }}
            )

        return LLMResponse(
            content=content,
            model=data.get("model", payload["model"]),
            usage=usage,
            raw=data,
        )
