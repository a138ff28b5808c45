# FILE: kbcore/llm/clients.py
"""
Model client helpers.

- classify_openai_error(): maps OpenAI SDK exceptions onto the
  TransientProviderError / PermanentProviderError taxonomy
- ChatModel: minimal chat-completions client used by the answer synthesizer

Clients are constructed with explicit credentials; nothing here reads the
environment or keeps a module-level client.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import openai

from kbcore.config import CHAT_MODEL, CHAT_TEMPERATURE, CHAT_MAX_TOKENS
from kbcore.errors import EmbeddingFailure, PermanentProviderError, TransientProviderError

logger = logging.getLogger(__name__)


_TRANSIENT_OPENAI_ERRORS = (
    openai.RateLimitError,
    openai.APIConnectionError,  # includes APITimeoutError
    openai.InternalServerError,
    openai.ConflictError,
)

_PERMANENT_OPENAI_ERRORS = (
    openai.AuthenticationError,
    openai.PermissionDeniedError,
    openai.BadRequestError,
    openai.NotFoundError,
    openai.UnprocessableEntityError,
)


def classify_openai_error(exc: Exception) -> EmbeddingFailure:
    """Wrap an SDK exception in the matching provider error (not raised here)."""
    if isinstance(exc, EmbeddingFailure):
        return exc
    if isinstance(exc, _TRANSIENT_OPENAI_ERRORS):
        return TransientProviderError(f"{type(exc).__name__}: {exc}")
    if isinstance(exc, _PERMANENT_OPENAI_ERRORS):
        return PermanentProviderError(f"{type(exc).__name__}: {exc}")
    if isinstance(exc, openai.APIStatusError):
        # Unlisted status codes: 5xx are worth another try, 4xx are not
        if exc.status_code >= 500:
            return TransientProviderError(f"HTTP {exc.status_code}: {exc}")
        return PermanentProviderError(f"HTTP {exc.status_code}: {exc}")
    return PermanentProviderError(f"{type(exc).__name__}: {exc}")


class ChatModel:
    """
    Chat-completions client.

    complete(system_prompt, user_prompt) -> str
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = CHAT_MODEL,
        temperature: float = CHAT_TEMPERATURE,
        max_tokens: int = CHAT_MAX_TOKENS,
        timeout: float = 60.0,
        client: Optional[Any] = None,
    ):
        """
        Args:
            api_key: Provider credential (ignored when client is given)
            model: Language model identifier
            temperature: Sampling temperature
            max_tokens: Completion budget
            timeout: Request timeout in seconds
            client: Pre-built OpenAI client (tests, per-tenant credentials)
        """
        self.model = model
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._api_key = api_key
        self._timeout = timeout
        self._client = client

    @property
    def client(self):
        if self._client is None:
            if not self._api_key:
                raise PermanentProviderError("No API key configured for the language model")
            self._client = openai.OpenAI(api_key=self._api_key, timeout=self._timeout)
        return self._client

    def complete(self, system_prompt: str, user_prompt: str) -> str:
        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": system_prompt},
                    {"role": "user", "content": user_prompt},
                ],
                temperature=self.temperature,
                max_tokens=self.max_tokens,
            )
        except openai.OpenAIError as e:
            error = classify_openai_error(e)
            logger.error(f"[chat] {self.model} call failed: {error}")
            raise error from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise TransientProviderError(f"Empty completion from {self.model}")
        return content
