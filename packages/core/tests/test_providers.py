"""Tests for model client implementations.

Shared behaviour (generate logging, never-raising health_check and
list_models) lives in BaseModelClient and is tested once via a lightweight
stub. Backend tests cover only what differs: the wire format and how
transport failures map onto ServiceUnavailable / ModelError.
"""

import json

import httpx
import pytest

from filelens_core.config import GenerationOptions
from filelens_core.errors import ModelError, ServiceUnavailable
from filelens_core.providers.base import BaseModelClient, estimate_tokens
from filelens_core.providers.ollama import OllamaClient
from filelens_core.reviewer import get_client

OPTIONS = GenerationOptions(temperature=0.3, top_p=0.9, num_predict=4000, timeout=600)


class _StubClient(BaseModelClient):
    """Minimal concrete subclass used to test BaseModelClient shared methods."""

    name = "stub"

    def __init__(self, probe=True, models=None, error=None):
        super().__init__("http://stub/", "stub-model")
        self.probe_result = probe
        self.models = models or []
        self.error = error

    def _call_api(self, prompt, options):
        return f"echo:{prompt}"

    def _probe(self):
        if self.error:
            raise self.error
        return self.probe_result

    def _fetch_models(self):
        if self.error:
            raise self.error
        return self.models


# ---------------------------------------------------------------------------
# Shared behaviour, tested once through the stub
# ---------------------------------------------------------------------------


class TestBaseModelClient:
    def test_generate_delegates_to_call_api(self):
        assert _StubClient().generate("hi", OPTIONS) == "echo:hi"

    def test_base_url_trailing_slash_stripped(self):
        assert _StubClient().base_url == "http://stub"

    def test_health_check_true(self):
        assert _StubClient().health_check() is True

    def test_health_check_never_raises(self):
        assert _StubClient(error=RuntimeError("boom")).health_check() is False

    def test_list_models_never_raises(self):
        assert _StubClient(error=RuntimeError("boom")).list_models() == []

    def test_close_is_noop_by_default(self):
        _StubClient().close()


class TestEstimateTokens:
    def test_four_chars_per_token_rounded_up(self):
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2


# ---------------------------------------------------------------------------
# Ollama
# ---------------------------------------------------------------------------


def _ollama(handler):
    return OllamaClient(base_url="http://ollama:11434", model="codellama", transport=httpx.MockTransport(handler))


class TestOllamaClient:
    def test_generate_wire_format(self):
        seen = {}

        def handler(request):
            seen["method"] = request.method
            seen["path"] = request.url.path
            seen["body"] = json.loads(request.content)
            return httpx.Response(200, json={"response": '{"issues": []}', "done": True})

        assert _ollama(handler).generate("review this", OPTIONS) == '{"issues": []}'
        assert seen["method"] == "POST"
        assert seen["path"] == "/api/generate"
        assert seen["body"] == {
            "model": "codellama",
            "prompt": "review this",
            "stream": False,
            "options": {"temperature": 0.3, "top_p": 0.9, "num_predict": 4000},
        }

    def test_non_200_is_model_error(self):
        client = _ollama(lambda request: httpx.Response(500, text="model not loaded"))
        with pytest.raises(ModelError, match="500"):
            client.generate("x", OPTIONS)

    def test_missing_response_field_is_model_error(self):
        client = _ollama(lambda request: httpx.Response(200, json={"done": True}))
        with pytest.raises(ModelError):
            client.generate("x", OPTIONS)

    @pytest.mark.parametrize("value", [None, 42, ["a"]])
    def test_non_text_response_field_is_model_error(self, value):
        client = _ollama(lambda request: httpx.Response(200, json={"response": value}))
        with pytest.raises(ModelError, match="non-text"):
            client.generate("x", OPTIONS)

    def test_connection_refused_is_service_unavailable(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with pytest.raises(ServiceUnavailable):
            _ollama(handler).generate("x", OPTIONS)

    def test_timeout_is_service_unavailable(self):
        def handler(request):
            raise httpx.ReadTimeout("timed out", request=request)

        with pytest.raises(ServiceUnavailable, match="timed out"):
            _ollama(handler).generate("x", OPTIONS)

    def test_health_check_probes_tags(self):
        paths = []

        def handler(request):
            paths.append(request.url.path)
            return httpx.Response(200, json={"models": []})

        assert _ollama(handler).health_check() is True
        assert paths == ["/api/tags"]

    def test_health_check_false_when_unreachable(self):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert _ollama(handler).health_check() is False

    def test_health_check_false_on_error_status(self):
        assert _ollama(lambda request: httpx.Response(503)).health_check() is False

    def test_list_models(self):
        body = {"models": [{"name": "codellama:7b"}, {"name": "qwen2.5-coder"}, {"size": 1}]}
        client = _ollama(lambda request: httpx.Response(200, json=body))
        assert client.list_models() == ["codellama:7b", "qwen2.5-coder"]

    def test_list_models_empty_on_failure(self):
        assert _ollama(lambda request: httpx.Response(500)).list_models() == []


# ---------------------------------------------------------------------------
# OpenAI-compatible
# ---------------------------------------------------------------------------


class TestOpenAICompatibleClient:
    def test_generate_sends_single_user_message(self, mocker):
        openai = pytest.importorskip("openai")
        mock_sdk = mocker.patch.object(openai, "OpenAI")
        completion = mocker.MagicMock()
        completion.choices[0].message.content = '{"issues": []}'
        mock_sdk.return_value.chat.completions.create.return_value = completion

        from filelens_core.providers.openai import OpenAICompatibleClient

        client = OpenAICompatibleClient(base_url="http://llama:8080/v1", model="qwen")
        assert client.generate("review", OPTIONS) == '{"issues": []}'

        kwargs = mock_sdk.return_value.chat.completions.create.call_args.kwargs
        assert kwargs["messages"] == [{"role": "user", "content": "review"}]
        assert kwargs["max_tokens"] == 4000
        assert kwargs["timeout"] == 600
        assert mock_sdk.call_args.kwargs["max_retries"] == 0

    def test_connection_error_is_service_unavailable(self, mocker):
        openai = pytest.importorskip("openai")
        mock_sdk = mocker.patch.object(openai, "OpenAI")
        request = httpx.Request("POST", "http://llama:8080/v1/chat/completions")
        mock_sdk.return_value.chat.completions.create.side_effect = openai.APIConnectionError(request=request)

        from filelens_core.providers.openai import OpenAICompatibleClient

        with pytest.raises(ServiceUnavailable):
            OpenAICompatibleClient(base_url="http://llama:8080/v1", model="qwen").generate("x", OPTIONS)

    def test_status_error_is_model_error(self, mocker):
        openai = pytest.importorskip("openai")
        mock_sdk = mocker.patch.object(openai, "OpenAI")
        request = httpx.Request("POST", "http://llama:8080/v1/chat/completions")
        response = httpx.Response(404, request=request)
        mock_sdk.return_value.chat.completions.create.side_effect = openai.NotFoundError(
            "model not found", response=response, body=None
        )

        from filelens_core.providers.openai import OpenAICompatibleClient

        with pytest.raises(ModelError, match="404"):
            OpenAICompatibleClient(base_url="http://llama:8080/v1", model="qwen").generate("x", OPTIONS)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


class TestGetClient:
    def test_ollama_by_default(self):
        client = get_client({"model_url": "http://box:11434", "model_name": "codellama"})
        assert isinstance(client, OllamaClient)
        assert client.base_url == "http://box:11434"
        assert client.model == "codellama"

    def test_unknown_provider_raises(self):
        with pytest.raises(ValueError, match="Unknown model provider"):
            get_client({"provider": "bard"})
