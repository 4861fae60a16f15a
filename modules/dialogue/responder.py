"""
Language detection and reply generation on top of the chat-completion client.
"""

import logging

from modules.dialogue.client import ChatCompletionClient, DialogueServiceError

logger = logging.getLogger(__name__)

LANGUAGE_DETECTION_PROMPT = (
    "You are a language detection assistant. Identify the language of the given "
    "text and return only the language code (e.g., 'en' for English, 'es' for "
    "Spanish, 'fr' for French)."
)

DEFAULT_SYSTEM_PROMPT = (
    "You are a friendly, patient assistant talking with children. Answer in the "
    "same language the child used, in one to three short sentences, using simple "
    "words."
)


class LanguageDetector:
    """Returns a short language code for a transcript."""

    def __init__(self, client: ChatCompletionClient, default_language: str = "en"):
        self._client = client
        self._default = default_language

    def detect_language(self, text: str) -> str:
        """Ask the remote model for the language code of ``text``.

        Never raises for service problems: any failed call, unparsable body
        or empty answer yields the default code.
        """
        try:
            content = self._client.complete(
                [
                    {"role": "system", "content": LANGUAGE_DETECTION_PROMPT},
                    {"role": "user", "content": text},
                ],
                max_tokens=10,
            )
        except DialogueServiceError as e:
            logger.warning("Language detection failed (%s), using '%s'", e, self._default)
            return self._default

        code = _clean_language_code(content)
        if not code:
            logger.warning("Empty language detection result, using '%s'", self._default)
            return self._default
        return code

    @property
    def default_language(self) -> str:
        return self._default


def _clean_language_code(content: str) -> str:
    """Trim a model answer down to a bare code: " 'es'. " -> "es"."""
    code = (content or "").strip()
    code = code.strip("'\"`.").strip()
    # Models sometimes answer "es (Spanish)"
    return code.split()[0] if code else ""


class DialogueResponder:
    """Generates the spoken reply for a transcript."""

    def __init__(self, client: ChatCompletionClient, config: dict = None):
        config = config or {}
        self._client = client
        self._system_prompt = config.get("system_prompt") or DEFAULT_SYSTEM_PROMPT
        self._max_tokens = config.get("reply_max_tokens", 150)
        self._temperature = config.get("temperature", 0.7)

    def get_reply(self, text: str) -> str:
        """Return the reply text for ``text``.

        Raises:
            DialogueServiceError: the call failed or produced an empty reply
        """
        content = self._client.complete(
            [
                {"role": "system", "content": self._system_prompt},
                {"role": "user", "content": text},
            ],
            max_tokens=self._max_tokens,
            temperature=self._temperature,
        )
        reply = content.strip()
        if not reply:
            raise DialogueServiceError("Empty reply from chat completion")
        return reply
