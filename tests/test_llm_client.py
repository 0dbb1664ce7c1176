import unittest
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import httpx
import openai

from promptchess.errors import ConfigurationError, LlmApiError
from promptchess.llm_client import LLMClient, describe_api_error
from promptchess.models import LlmCredentials

from fakes import CREDS

URL = "https://api.example.test/v1/chat/completions"


def status_error(cls, status, message="boom"):
    request = httpx.Request("POST", URL)
    return cls(message, response=httpx.Response(status, request=request), body=None)


def chat_response(content, prompt_tokens=30, completion_tokens=12):
    usage = SimpleNamespace(prompt_tokens=prompt_tokens, completion_tokens=completion_tokens,
                            total_tokens=prompt_tokens + completion_tokens)
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))], usage=usage)


class LLMClientTests(unittest.TestCase):
    def setUp(self):
        patcher = patch("promptchess.llm_client.OpenAI")
        self.openai_cls = patcher.start()
        self.addCleanup(patcher.stop)
        self.sdk = MagicMock()
        self.openai_cls.return_value = self.sdk

    def test_complete_returns_text_and_usage(self):
        self.sdk.chat.completions.create.return_value = chat_response("MOVE: e4")
        client = LLMClient(CREDS, timeout_s=12, max_tokens=200, temperature=0.2)
        out = client.complete("Your move")
        self.assertEqual(out.content, "MOVE: e4")
        self.assertEqual((out.input_tokens, out.output_tokens, out.total_tokens), (30, 12, 42))
        kwargs = self.sdk.chat.completions.create.call_args.kwargs
        self.assertEqual(kwargs["model"], "gpt-test")
        self.assertEqual(kwargs["messages"], [{"role": "user", "content": "Your move"}])
        self.assertEqual(kwargs["max_tokens"], 200)
        self.assertEqual(kwargs["temperature"], 0.2)
        ctor = self.openai_cls.call_args.kwargs
        self.assertEqual(ctor["max_retries"], 0)
        self.assertEqual(ctor["timeout"], 12)
        self.assertIsNone(ctor["base_url"])

    def test_anthropic_uses_compatible_endpoint(self):
        LLMClient(LlmCredentials(provider="anthropic", api_key="sk-ant-xyz9", model="claude-test"))
        self.assertEqual(self.openai_cls.call_args.kwargs["base_url"], "https://api.anthropic.com/v1/")

    def test_explicit_base_url_wins(self):
        LLMClient(LlmCredentials(provider="gateway", api_key="k-1234", model="m", base_url="http://localhost:8080/v1"))
        self.assertEqual(self.openai_cls.call_args.kwargs["base_url"], "http://localhost:8080/v1")

    def test_incomplete_or_unknown_credentials(self):
        with self.assertRaises(ConfigurationError):
            LLMClient(LlmCredentials(provider="openai", api_key="", model="gpt-test"))
        with self.assertRaises(ConfigurationError):
            LLMClient(LlmCredentials(provider="carrier-pigeon", api_key="k-1234", model="m"))
        self.openai_cls.assert_not_called()

    def test_list_content_is_joined(self):
        parts = [{"type": "text", "text": "Thinking."}, SimpleNamespace(text="MOVE: d4")]
        self.sdk.chat.completions.create.return_value = chat_response(parts)
        self.assertEqual(LLMClient(CREDS).complete("x").content, "Thinking.\nMOVE: d4")

    def test_sdk_errors_become_llm_api_errors(self):
        self.sdk.chat.completions.create.side_effect = status_error(openai.AuthenticationError, 401)
        with self.assertRaises(LlmApiError) as ctx:
            LLMClient(CREDS).complete("x")
        self.assertFalse(ctx.exception.retryable)
        self.assertIn("Invalid API key", str(ctx.exception))

    def test_empty_choices(self):
        self.sdk.chat.completions.create.return_value = SimpleNamespace(choices=[], usage=None)
        with self.assertRaises(LlmApiError):
            LLMClient(CREDS).complete("x")

    def test_connection_probe(self):
        self.sdk.chat.completions.create.return_value = chat_response("Hello")
        ok, message = LLMClient(CREDS).test_connection()
        self.assertTrue(ok)
        self.assertIn("openai", message)
        self.sdk.chat.completions.create.side_effect = status_error(openai.NotFoundError, 404)
        ok, message = LLMClient(CREDS).test_connection()
        self.assertFalse(ok)
        self.assertIn("Model not found", message)


class DescribeApiErrorTests(unittest.TestCase):
    def test_retryable_classification(self):
        request = httpx.Request("POST", URL)
        cases = [
            (openai.APITimeoutError(request=request), True),
            (openai.APIConnectionError(request=request), True),
            (status_error(openai.RateLimitError, 429, "Too many requests"), True),
            (status_error(openai.RateLimitError, 429, "insufficient_quota"), False),
            (status_error(openai.PermissionDeniedError, 403), False),
            (status_error(openai.NotFoundError, 404), False),
            (status_error(openai.InternalServerError, 500), True),
            (status_error(openai.BadRequestError, 400), False),
        ]
        for exc, retryable in cases:
            with self.subTest(exc=type(exc).__name__):
                self.assertEqual(describe_api_error(exc)[1], retryable)

    def test_credentials_repr_masks_key(self):
        self.assertNotIn("sk-test-abcd1234", repr(CREDS))
        self.assertEqual(CREDS.masked_key(), "...1234")


if __name__ == "__main__":
    unittest.main()
