"""
HTTP client for an Azure-OpenAI-style chat-completion deployment.
"""

import logging
from typing import List, Optional

import requests

from modules.utils.config import ApiSettings

logger = logging.getLogger(__name__)


class DialogueServiceError(Exception):
    """The remote chat-completion call failed or returned an unusable body."""


class ChatCompletionClient:
    """Thin wrapper around one chat-completion deployment.

    One POST per call, no retries. Every failure surfaces as
    DialogueServiceError so callers only need one except clause.
    """

    def __init__(self, settings: ApiSettings, timeout: float = 30.0,
                 session: Optional[requests.Session] = None):
        self._settings = settings.validate()
        self._timeout = timeout
        self._session = session or requests.Session()

    def complete(self, messages: List[dict], max_tokens: int = None,
                 temperature: float = None) -> str:
        """Send chat messages and return ``choices[0].message.content``.

        Args:
            messages: [{"role": ..., "content": ...}, ...]
            max_tokens: completion length cap
            temperature: sampling temperature, omitted when None

        Returns:
            The raw (untrimmed) content string.

        Raises:
            DialogueServiceError: transport error, non-2xx status or a
                response body without a string content field
        """
        payload = {"messages": messages}
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if temperature is not None:
            payload["temperature"] = temperature

        headers = {
            "Content-Type": "application/json",
            "api-key": self._settings.api_key,
        }

        try:
            resp = self._session.post(
                self._settings.chat_url, json=payload, headers=headers, timeout=self._timeout,
            )
            resp.raise_for_status()
            data = resp.json()
        except requests.RequestException as e:
            raise DialogueServiceError(f"Chat completion request failed: {e}") from e
        except ValueError as e:
            raise DialogueServiceError(f"Chat completion returned invalid JSON: {e}") from e

        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise DialogueServiceError(f"Unexpected chat completion body: {data!r}") from e

        if not isinstance(content, str):
            raise DialogueServiceError(f"Chat completion content is not text: {content!r}")

        logger.debug("Chat completion: %d message(s) -> %d chars", len(messages), len(content))
        return content

    def close(self):
        self._session.close()

    @property
    def settings(self) -> ApiSettings:
        return self._settings
