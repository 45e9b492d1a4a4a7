"""
LLM completion clients.

One small interface, ``complete(prompt, budget) -> str``, with an OpenAI and
an Anthropic implementation. The provider is chosen once from settings; the
rest of the pipeline never branches on it. SDK-level retries are disabled so
the RetryExecutor owns all backoff.
"""

from typing import NamedTuple, Optional

import anthropic
import openai

from .config import LLMSettings, ModelSettings
from .retry import ConfigError, ErrorKind, default_classify

REASONING_PREFIXES = ("gpt-5", "o1", "o3")


def is_reasoning_model(model: str) -> bool:
    """Reasoning models take max_completion_tokens and no temperature."""
    return model.startswith(REASONING_PREFIXES)


class LLMClient:
    """Base client: a model name plus its default output budget."""

    provider = "base"

    def __init__(self, model: str, max_tokens: int, temperature: Optional[float] = None):
        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature

    def complete(self, prompt: str, budget: Optional[int] = None) -> str:
        raise NotImplementedError

    def __repr__(self):
        return f"<{type(self).__name__} {self.model}>"


class OpenAIClient(LLMClient):
    provider = "openai"

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        max_tokens: int,
        temperature: Optional[float] = None,
        timeout: float = 30.0,
        client=None,
    ):
        super().__init__(model, max_tokens, temperature)
        if client is None:
            if not api_key:
                raise ConfigError("OPENAI_API_KEY environment variable is required")
            client = openai.OpenAI(api_key=api_key, timeout=timeout, max_retries=0)
        self._client = client

    def complete(self, prompt: str, budget: Optional[int] = None) -> str:
        budget = budget or self.max_tokens
        params = {
            "model": self.model,
            "messages": [{"role": "user", "content": prompt}],
        }
        if is_reasoning_model(self.model):
            params["max_completion_tokens"] = budget
        else:
            params["max_tokens"] = budget
            if self.temperature is not None:
                params["temperature"] = self.temperature

        response = self._client.chat.completions.create(**params)
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""


class AnthropicClient(LLMClient):
    provider = "anthropic"

    def __init__(
        self,
        api_key: Optional[str],
        model: str,
        max_tokens: int,
        temperature: Optional[float] = None,
        timeout: float = 30.0,
        client=None,
    ):
        super().__init__(model, max_tokens, temperature)
        if client is None:
            if not api_key:
                raise ConfigError("ANTHROPIC_API_KEY environment variable is required")
            client = anthropic.Anthropic(api_key=api_key, timeout=timeout, max_retries=0)
        self._client = client

    def complete(self, prompt: str, budget: Optional[int] = None) -> str:
        params = {
            "model": self.model,
            "max_tokens": budget or self.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        if self.temperature is not None:
            params["temperature"] = self.temperature

        message = self._client.messages.create(**params)
        for block in message.content:
            if getattr(block, "type", None) == "text":
                return block.text
        return ""


class LLMClients(NamedTuple):
    fast: LLMClient
    strong: LLMClient


def _build(settings: LLMSettings, model: ModelSettings) -> LLMClient:
    if settings.provider == "anthropic":
        return AnthropicClient(
            settings.anthropic_api_key, model.model, model.max_tokens,
            temperature=model.temperature, timeout=settings.timeout,
        )
    return OpenAIClient(
        settings.openai_api_key, model.model, model.max_tokens,
        temperature=model.temperature, timeout=settings.timeout,
    )


def build_llm_clients(settings: LLMSettings) -> LLMClients:
    """Fast (scoring) and strong (summaries) clients for the configured provider."""
    return LLMClients(fast=_build(settings, settings.fast), strong=_build(settings, settings.strong))


_RATE_LIMIT_ERRORS = (openai.RateLimitError, anthropic.RateLimitError)
_TRANSIENT_ERRORS = (
    openai.APITimeoutError,
    openai.APIConnectionError,
    openai.InternalServerError,
    anthropic.APITimeoutError,
    anthropic.APIConnectionError,
    anthropic.InternalServerError,
)
_STATUS_ERRORS = (openai.APIStatusError, anthropic.APIStatusError)
_TRANSIENT_STATUSES = {408, 409, 529}


def classify_llm_error(error: BaseException) -> ErrorKind:
    """Map SDK errors to retry kinds."""
    if isinstance(error, _RATE_LIMIT_ERRORS):
        return ErrorKind.RATE_LIMITED
    if isinstance(error, _TRANSIENT_ERRORS):
        return ErrorKind.TRANSIENT
    if isinstance(error, _STATUS_ERRORS):
        status = getattr(error, "status_code", None) or 0
        if status == 429:
            return ErrorKind.RATE_LIMITED
        if status in _TRANSIENT_STATUSES or status >= 500:
            return ErrorKind.TRANSIENT
        if "overloaded" in str(error).lower():
            return ErrorKind.TRANSIENT
        return ErrorKind.FATAL
    return default_classify(error)
