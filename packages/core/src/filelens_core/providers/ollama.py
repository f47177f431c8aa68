from __future__ import annotations

import httpx

from filelens_core.config import GenerationOptions
from filelens_core.errors import ModelError, ServiceUnavailable
from filelens_core.providers.base import BaseModelClient


class OllamaClient(BaseModelClient):
    """Client for a local Ollama server (``/api/generate`` and ``/api/tags``)."""

    name = "ollama"

    def __init__(
        self,
        base_url: str = "http://localhost:11434",
        model: str = "codellama:7b-instruct",
        health_timeout: float = 5.0,
        transport: httpx.BaseTransport | None = None,
    ):
        super().__init__(base_url, model, health_timeout)
        # The transport hook lets tests swap in httpx.MockTransport.
        self.client = httpx.Client(base_url=self.base_url, transport=transport)

    def _call_api(self, prompt: str, options: GenerationOptions) -> str:
        payload = {
            "model": self.model,
            "prompt": prompt,
            "stream": False,
            "options": {
                "temperature": options.temperature,
                "top_p": options.top_p,
                "num_predict": options.num_predict,
            },
        }
        try:
            response = self.client.post("/api/generate", json=payload, timeout=options.timeout)
        except httpx.TimeoutException as e:
            raise ServiceUnavailable(f"Model server timed out after {options.timeout}s") from e
        except httpx.TransportError as e:
            raise ServiceUnavailable(f"Cannot reach model server at {self.base_url}: {e}") from e

        if response.status_code != 200:
            raise ModelError(f"Model server returned HTTP {response.status_code}: {response.text[:200]}")
        try:
            text = response.json()["response"]
        except (ValueError, KeyError, TypeError) as e:
            raise ModelError("Model server returned a body without a 'response' field") from e
        if not isinstance(text, str):
            raise ModelError(f"Model server returned a non-text 'response' field ({type(text).__name__})")
        return text

    def _probe(self) -> bool:
        response = self.client.get("/api/tags", timeout=self.health_timeout)
        return response.status_code == 200

    def _fetch_models(self) -> list[str]:
        response = self.client.get("/api/tags", timeout=self.health_timeout)
        response.raise_for_status()
        return [m["name"] for m in response.json().get("models") or [] if m.get("name")]

    def close(self) -> None:
        self.client.close()
