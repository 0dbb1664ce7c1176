from __future__ import annotations
"""
LLM client facade over OpenAI-compatible chat completion endpoints.

The rest of the code should not care which provider is in use. This module sends a single
user prompt and returns the text plus token usage. Providers:
- openai: SDK default endpoint
- anthropic: Anthropic's OpenAI-compatible endpoint
- gateway: any OpenAI-compatible base URL (SETTINGS.api_base or credentials.base_url)

Transport failures surface as LlmApiError; the SDK's own retries are disabled so the
job layer alone decides whether to try again.
"""
from dataclasses import dataclass
import logging

import openai
from openai import OpenAI

from .config import SETTINGS
from .errors import ConfigurationError, LlmApiError
from .models import LlmCredentials

log = logging.getLogger("llm_client")

PROVIDER_BASE_URLS = {
    "openai": None,
    "anthropic": "https://api.anthropic.com/v1/",
}


@dataclass(frozen=True)
class Completion:
    content: str
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


def _base_url_for(credentials: LlmCredentials) -> str | None:
    if credentials.base_url:
        return credentials.base_url
    provider = (credentials.provider or "").lower()
    if provider in PROVIDER_BASE_URLS:
        return PROVIDER_BASE_URLS[provider]
    if provider == "gateway":
        if not SETTINGS.api_base:
            raise ConfigurationError("Provider 'gateway' needs PROMPTCHESS_LLM_BASE_URL or credentials.base_url")
        return SETTINGS.api_base
    raise ConfigurationError(f"Unsupported LLM provider '{credentials.provider}'")


def describe_api_error(e: Exception) -> tuple[str, bool]:
    """Return (human message, retryable) for an SDK exception."""
    if isinstance(e, openai.APITimeoutError):
        return "Request to the language model timed out", True
    if isinstance(e, openai.APIConnectionError):
        return f"Network error: {e}", True
    if isinstance(e, openai.AuthenticationError):
        return "Invalid API key. Please check your API key.", False
    if isinstance(e, openai.PermissionDeniedError):
        return "Permission denied. Check your API key has access to this model.", False
    if isinstance(e, openai.RateLimitError):
        body = str(e)
        if "insufficient_quota" in body:
            return "Insufficient quota. Please check your account billing.", False
        return "Rate limit exceeded. Please try again later.", True
    if isinstance(e, openai.NotFoundError):
        return "Model not found. Please check your model name.", False
    if isinstance(e, openai.APIStatusError):
        return f"API error ({e.status_code}): {e.message}", e.status_code >= 500
    return f"API error: {e}", False


class LLMClient:
    def __init__(
        self,
        credentials: LlmCredentials,
        timeout_s: float | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ):
        if credentials is None or not credentials.is_complete():
            raise ConfigurationError("LLM credentials (provider, api_key, model) are required")
        self.credentials = credentials
        self.model = credentials.model
        self.timeout_s = timeout_s if timeout_s is not None else SETTINGS.responses_timeout_s
        self.max_tokens = max_tokens if max_tokens is not None else SETTINGS.llm_max_tokens
        self.temperature = temperature if temperature is not None else SETTINGS.llm_temperature
        self._client = OpenAI(
            api_key=credentials.api_key,
            base_url=_base_url_for(credentials),
            timeout=self.timeout_s,
            max_retries=0,
        )

    def complete(self, prompt: str, max_tokens: int | None = None, temperature: float | None = None) -> Completion:
        """Send one user prompt. Raises LlmApiError on transport/auth failure."""
        try:
            rsp = self._client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                max_tokens=max_tokens or self.max_tokens,
                temperature=self.temperature if temperature is None else temperature,
            )
        except openai.OpenAIError as e:
            message, retryable = describe_api_error(e)
            log.warning("Completion request failed (%s): %s", self.credentials.provider, message)
            raise LlmApiError(message, retryable=retryable) from e
        if not getattr(rsp, "choices", None):
            raise LlmApiError("Unexpected response structure from the language model API")
        usage = getattr(rsp, "usage", None)
        return Completion(
            content=_extract_text(rsp),
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            total_tokens=getattr(usage, "total_tokens", 0) or 0,
        )

    def test_connection(self) -> tuple[bool, str]:
        """Minimal round trip to validate credentials. Never raises."""
        try:
            self.complete("Hi", max_tokens=10)
        except LlmApiError as e:
            return False, str(e)
        return True, f"Connected successfully to {self.credentials.provider} API"


def _extract_text(rsp) -> str:
    msg = rsp.choices[0].message
    content = getattr(msg, "content", None)
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for c in content:
            if isinstance(c, dict):
                if c.get("type") == "text" and isinstance(c.get("text"), str):
                    parts.append(c["text"])
                continue
            t = getattr(c, "text", None)
            if isinstance(t, str):
                parts.append(t)
        return "\n".join(parts)
    return ""
