"""LLM module - provides unified interface for chat completion providers."""

from .base import CompletionError, LLMProvider, LLMMessage, LLMResponse
from .openai_provider import OpenAIProvider
from .volcengine_provider import VolcEngineProvider
from .factory import create_llm_provider

__all__ = [
    'CompletionError',
    'LLMProvider',
    'LLMMessage',
    'LLMResponse',
    'OpenAIProvider',
    'VolcEngineProvider',
    'create_llm_provider',
]
