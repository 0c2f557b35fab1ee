"""
xAI Grok chat-completions client (OpenAI-compatible API)

The client is constructed explicitly and injected where it is needed.
Calls are retried with exponential backoff, except for request errors the
backend will keep rejecting (400/401/403).
"""
import asyncio
import logging
from typing import Optional

import requests

from exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = 'grok-4-1-fast-reasoning'
DEFAULT_TEMPERATURE = 0.7
DEFAULT_BASE_URL = 'https://api.x.ai/v1'

# Never retried: the same request fails the same way
NON_RETRYABLE_STATUSES = (400, 401, 403)


class LLMBackendError(Exception):
    """
    Backend call failure

    Attributes:
        status_code: HTTP status of the backend answer, None for transport errors
        kind: 'http', 'timeout', 'connection' or 'empty'
    """

    def __init__(self, message: str, status_code: Optional[int] = None, kind: str = 'http'):
        super().__init__(message)
        self.status_code = status_code
        self.kind = kind

    @property
    def retryable(self) -> bool:
        return self.status_code not in NON_RETRYABLE_STATUSES


class GrokClient:
    """Text completion over the xAI chat completions endpoint"""

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = DEFAULT_BASE_URL,
        request_timeout: float = 50.0,
        max_retries: int = 2,
        base_delay: float = 1.0
    ):
        """
        Initialize Grok client

        Args:
            api_key: xAI API key; calls fail with ConfigurationError when missing
            base_url: API base URL
            request_timeout: Client-side HTTP timeout for one attempt, in seconds
            max_retries: Retries after the first attempt
            base_delay: Delay before the first retry, doubled on each retry
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.api_url = f"{self.base_url}/chat/completions"
        self.request_timeout = request_timeout
        self.max_retries = max_retries
        self.base_delay = base_delay

    @property
    def configured(self) -> bool:
        return bool(self.api_key)

    async def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        model: str = DEFAULT_MODEL,
        temperature: Optional[float] = DEFAULT_TEMPERATURE,
        max_tokens: Optional[int] = None
    ) -> str:
        """
        Run one chat completion with retry and backoff

        Args:
            system_prompt: System message
            user_prompt: User message
            model: Model name
            temperature: Sampling temperature (backend default when None)
            max_tokens: Completion length cap (optional)

        Returns:
            Completion text

        Raises:
            ConfigurationError: API key is not set
            LLMBackendError: last failure after retries, or first non-retryable one
        """
        if not self.api_key:
            raise ConfigurationError("XAI_API_KEY is not set")

        payload = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "temperature": DEFAULT_TEMPERATURE if temperature is None else temperature,
        }
        if max_tokens:
            payload["max_tokens"] = max_tokens

        loop = asyncio.get_running_loop()
        attempts = self.max_retries + 1

        for attempt in range(attempts):
            try:
                return await loop.run_in_executor(None, self._call_api, payload)
            except LLMBackendError as e:
                if not e.retryable:
                    logger.error(f"Grok API rejected request (status {e.status_code}), not retrying: {e}")
                    raise
                if attempt == attempts - 1:
                    logger.error(f"Grok API failed after {attempts} attempts: {e}")
                    raise
                error = e
            except Exception as e:
                if attempt == attempts - 1:
                    logger.error(f"Grok API failed after {attempts} attempts: {e}")
                    raise
                error = e

            delay = self.base_delay * (2 ** attempt)
            logger.warning(
                f"Grok API error (attempt {attempt + 1}/{attempts}), "
                f"retrying in {delay:.1f}s: {error}"
            )
            await asyncio.sleep(delay)

    def _call_api(self, payload: dict) -> str:
        """
        Synchronous call to the chat completions endpoint (runs in executor)

        Args:
            payload: Request body

        Returns:
            Content of the first choice
        """
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self.api_key}"
        }

        try:
            response = requests.post(
                self.api_url,
                headers=headers,
                json=payload,
                timeout=self.request_timeout
            )
        except requests.exceptions.Timeout as e:
            raise LLMBackendError(f"Request to Grok API timed out: {e}", kind='timeout') from e
        except requests.exceptions.ConnectionError as e:
            raise LLMBackendError(f"Connection error calling Grok API: {e}", kind='connection') from e

        if response.status_code != 200:
            logger.error(
                f"Grok API error: status {response.status_code}, "
                f"response: {response.text[:500]}"
            )
            raise LLMBackendError(
                f"Grok API returned status {response.status_code}",
                status_code=response.status_code
            )

        body = response.json()
        choices = body.get("choices") or []
        content = choices[0].get("message", {}).get("content") if choices else None
        if not content:
            raise LLMBackendError("No response from Grok API", status_code=response.status_code, kind='empty')
        return content
