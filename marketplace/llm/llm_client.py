"""LLM Client Module
==================
Single-attempt client for an OpenAI-compatible chat completions API.
Used by the LLM-backed verifier and chatbot.

Failures are never papered over with canned text: a missing API key,
timeout, HTTP error or malformed body raises ExternalServiceError, and the
HTTP layer turns that into a 500 response. Retrying is the caller's call.

Error messages never include the API key or the upstream body.
"""

import logging

import requests

from marketplace.config import LLM_API_KEY, LLM_API_URL, LLM_MODEL, LLM_TIMEOUT_SECONDS
from marketplace.errors import ExternalServiceError

logger = logging.getLogger(__name__)


def _call_provider(api_url: str, api_key: str, model: str,
                   messages: list[dict[str, str]], temperature: float,
                   max_tokens: int, timeout: float) -> str:
    """
    Generic OpenAI-compatible API call.

    Returns the generated text (possibly empty). Raises
    ExternalServiceError if the call fails for any reason.
    """
    if not api_key:
        raise ExternalServiceError("Language model service is not configured")

    headers = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json"
    }

    payload = {
        "model": model,
        "messages": messages,
        "temperature": temperature,
        "max_tokens": max_tokens
    }

    try:
        response = requests.post(api_url, headers=headers, json=payload, timeout=timeout)
    except requests.exceptions.Timeout:
        logger.warning(f"[LLM] {model} timeout ({timeout}s)")
        raise ExternalServiceError("Language model service timed out")
    except requests.exceptions.RequestException as e:
        logger.error(f"[LLM] {model} request failed: {type(e).__name__}")
        raise ExternalServiceError("Language model service is unavailable")

    if response.status_code == 429:
        logger.warning(f"[LLM] {model} rate limited (429), retry-after={response.headers.get('retry-after', '?')}")
        raise ExternalServiceError("Language model service is rate limited")

    if response.status_code >= 400:
        logger.warning(f"[LLM] {model} returned HTTP {response.status_code}")
        raise ExternalServiceError("Language model service returned an error")

    try:
        content = response.json()["choices"][0]["message"]["content"]
    except (ValueError, KeyError, IndexError, TypeError):
        logger.error(f"[LLM] {model} returned a malformed body")
        raise ExternalServiceError("Language model service returned an invalid response")

    return (content or "").strip()


class LLMClient:
    """
    Bound configuration for _call_provider.

    The verifier and chatbot receive an instance instead of reading config
    themselves, so tests can hand them a stub with the same `complete`
    method.
    """

    def __init__(self, api_key: str = LLM_API_KEY, api_url: str = LLM_API_URL,
                 model: str = LLM_MODEL, timeout: float = LLM_TIMEOUT_SECONDS):
        self.api_key = api_key
        self.api_url = api_url
        self.model = model
        self.timeout = timeout

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    def complete(self, messages: list[dict[str, str]], temperature: float = 0.7,
                 max_tokens: int = 800) -> str:
        """
        Send a chat completion request.

        Args:
            messages: List of message dicts with 'role' and 'content'
            temperature: Sampling temperature (0.0-1.0)
            max_tokens: Completion length cap

        Returns:
            Generated text, stripped; may be empty

        Raises:
            ExternalServiceError: not configured, timed out, or upstream failed
        """
        result = _call_provider(
            self.api_url, self.api_key, self.model,
            messages, temperature,
            max_tokens=max_tokens,
            timeout=self.timeout
        )
        logger.info(f"[LLM] Response from {self.model} ({len(result)} chars)")
        return result
