"""
AI oracle client — chat-completion requests with retry and a small cache.

Rate limits (429) back off exponentially with jitter; request errors
(transport, decoding, redirects) and 5xx back off linearly. Once retries
are exhausted the call raises OracleError and the caller decides what
to fall back to.
"""

from __future__ import annotations

import hashlib
import random
import time
from collections import OrderedDict
from typing import Callable, Optional

import httpx

from ..config import LintConfig
from ..errors import OracleError
from ..utils.logging import logger

SYSTEM_PROMPT = (
    "You are an expert code analyzer focused on understanding variable usage, "
    "code patterns, and refactoring. Provide detailed analysis and precise "
    "recommendations."
)

OPENAI_URL = "https://api.openai.com/v1/chat/completions"
AZURE_API_VERSION = "2023-05-15"
CACHE_SIZE = 100


class Oracle:
    """Text-completion oracle over the OpenAI or Azure OpenAI HTTP API."""

    def __init__(
        self,
        config: LintConfig,
        client: Optional[httpx.Client] = None,
        sleep: Callable[[float], None] = time.sleep,
        jitter: Callable[[], float] = random.random,
    ):
        self.config = config
        self._client = client or httpx.Client(timeout=config.ai_timeout)
        self._owns_client = client is None
        self._sleep = sleep
        self._jitter = jitter
        self._cache: OrderedDict[str, str] = OrderedDict()

    def close(self):
        if self._owns_client:
            self._client.close()

    def complete(self, prompt: str, model: Optional[str] = None) -> str:
        """Send one prompt, return the reply text."""
        model = model or self.config.default_model
        key = f"{model}:{hashlib.sha256(prompt.encode('utf-8')).hexdigest()}"
        if key in self._cache:
            self._cache.move_to_end(key)
            return self._cache[key]

        max_retries = max(1, self.config.max_retries)
        last_error: Optional[Exception] = None

        for attempt in range(1, max_retries + 1):
            try:
                text = self._request(prompt, model)
            except httpx.HTTPStatusError as e:
                status = e.response.status_code
                if status == 429:
                    delay = 2 ** attempt + self._jitter()
                    logger.warning(f"Rate limited, waiting {delay:.1f}s before retry {attempt}/{max_retries}")
                elif status >= 500:
                    delay = float(attempt)
                    logger.warning(f"Oracle returned {status}, retrying in {delay:.0f}s")
                else:
                    raise OracleError(f"Oracle rejected the request: HTTP {status}", status_code=status) from e
                last_error = e
            except httpx.RequestError as e:
                delay = float(attempt)
                logger.warning(f"Oracle request error: {e!r}. Retrying in {delay:.0f}s")
                last_error = e
            else:
                self._remember(key, text)
                return text

            if attempt < max_retries:
                self._sleep(delay)

        status = None
        if isinstance(last_error, httpx.HTTPStatusError):
            status = last_error.response.status_code
        raise OracleError(
            f"Oracle request failed after {max_retries} attempts: {last_error}",
            status_code=status,
        )

    def _remember(self, key: str, text: str):
        self._cache[key] = text
        while len(self._cache) > CACHE_SIZE:
            self._cache.popitem(last=False)

    def _request(self, prompt: str, model: str) -> str:
        url, headers, body = self._build_request(prompt, model)
        response = self._client.post(url, headers=headers, json=body)
        response.raise_for_status()
        try:
            return response.json()["choices"][0]["message"]["content"].strip()
        except (ValueError, KeyError, IndexError, TypeError, AttributeError) as e:
            raise OracleError(f"Unexpected oracle response envelope: {e}") from e

    def _build_request(self, prompt: str, model: str) -> tuple[str, dict, dict]:
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ]

        if self.config.ai_provider == "azure":
            if not self.config.azure_api_key or not self.config.azure_endpoint:
                raise OracleError("Azure OpenAI configuration missing")
            deployment = self.config.azure_deployments.get(model, model)
            endpoint = self.config.azure_endpoint.rstrip("/")
            url = (
                f"{endpoint}/openai/deployments/{deployment}/chat/completions"
                f"?api-version={AZURE_API_VERSION}"
            )
            headers = {"api-key": self.config.azure_api_key}
            return url, headers, {"messages": messages, "temperature": 0.2}

        if not self.config.openai_api_key:
            raise OracleError("OpenAI API key not configured")
        headers = {"Authorization": f"Bearer {self.config.openai_api_key}"}
        return OPENAI_URL, headers, {"model": model, "messages": messages, "temperature": 0.2}
