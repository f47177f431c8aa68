"""Base model client implementing the Template Method pattern.

All backends share the same call flow:
    generate() → _call_api()      ← only this differs per backend
    health_check() → _probe()     ← never raises
    list_models() → _fetch_models() ← never raises

Subclasses implement three things only:
  - _call_api: make one generation request and return the raw text
  - _probe: one lightweight status request
  - _fetch_models: return the model names the server offers

There are no retries at this layer. A failed call surfaces as
ServiceUnavailable (unreachable / timed out) or ModelError (non-success
answer) and the caller decides what to do with it.
"""

from __future__ import annotations

import logging
import math
import time
from abc import ABC, abstractmethod

from filelens_core.config import GenerationOptions

logger = logging.getLogger(__name__)


def estimate_tokens(text: str) -> int:
    """Rough token count: four characters per token."""
    return math.ceil(len(text) / 4)


class BaseModelClient(ABC):
    name: str = "base"

    def __init__(self, base_url: str, model: str, health_timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.model = model
        self.health_timeout = health_timeout

    # ------------------------------------------------------------------ #
    # Public interface                                                     #
    # ------------------------------------------------------------------ #

    def generate(self, prompt: str, options: GenerationOptions) -> str:
        """Send ``prompt`` to the model and return the raw response text."""
        logger.info(
            "%s: sending request to %s (~%d tokens, timeout %ss)",
            self.__class__.__name__,
            self.model,
            estimate_tokens(prompt),
            options.timeout,
        )
        start = time.monotonic()
        text = self._call_api(prompt, options)
        logger.info(
            "%s: response received (%d chars) in %.1fs",
            self.__class__.__name__,
            len(text),
            time.monotonic() - start,
        )
        return text

    def health_check(self) -> bool:
        try:
            return self._probe()
        except Exception as e:
            logger.warning("%s health check failed: %s", self.__class__.__name__, e)
            return False

    def list_models(self) -> list[str]:
        try:
            return self._fetch_models()
        except Exception as e:
            logger.warning("%s could not list models: %s", self.__class__.__name__, e)
            return []

    def close(self) -> None:
        """Release any pooled connections. Default is a no-op."""

    # ------------------------------------------------------------------ #
    # Abstract: implement in each backend                                 #
    # ------------------------------------------------------------------ #

    @abstractmethod
    def _call_api(self, prompt: str, options: GenerationOptions) -> str:
        """Make a single generation call and return the raw text.

        Must raise ServiceUnavailable or ModelError on failure.
        """

    @abstractmethod
    def _probe(self) -> bool:
        """Return True if the backend answers a lightweight status request."""

    @abstractmethod
    def _fetch_models(self) -> list[str]:
        """Return the names of the models the backend can serve."""
