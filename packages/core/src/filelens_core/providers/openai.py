from __future__ import annotations

try:
    import openai as _openai
except ImportError:
    _openai = None  # type: ignore[assignment]

from filelens_core.config import GenerationOptions
from filelens_core.errors import ModelError, ServiceUnavailable
from filelens_core.providers.base import BaseModelClient


class OpenAICompatibleClient(BaseModelClient):
    """Client for local servers exposing the OpenAI API (llama.cpp, vLLM, LM Studio).

    The prompt is sent as a single user message; local servers usually
    ignore the API key, so a placeholder is used when none is configured.
    """

    name = "openai"

    def __init__(self, base_url: str, model: str, api_key: str | None = None, health_timeout: float = 5.0):
        if _openai is None:
            raise ImportError(
                "The 'openai' package is required for this provider. " "Install it with: pip install 'filelens[openai]'"
            )
        super().__init__(base_url, model, health_timeout)
        self.client = _openai.OpenAI(base_url=self.base_url, api_key=api_key or "not-needed", max_retries=0)

    def _call_api(self, prompt: str, options: GenerationOptions) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=options.temperature,
                top_p=options.top_p,
                max_tokens=options.num_predict,
                timeout=options.timeout,
            )
        except (_openai.APITimeoutError, _openai.APIConnectionError) as e:
            raise ServiceUnavailable(f"Cannot reach model server at {self.base_url}: {e}") from e
        except _openai.APIStatusError as e:
            raise ModelError(f"Model server returned HTTP {e.status_code}: {e.message}") from e
        return response.choices[0].message.content or ""

    def _probe(self) -> bool:
        self.client.models.list(timeout=self.health_timeout)
        return True

    def _fetch_models(self) -> list[str]:
        return [m.id for m in self.client.models.list(timeout=self.health_timeout)]

    def close(self) -> None:
        self.client.close()
