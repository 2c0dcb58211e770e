"""Completion backend clients.

Both clients expose ``generate_content(contents, system_instruction,
generation_config) -> str``. Rate limiting surfaces as ``RateLimitError``
(with the server-suggested delay when one is sent), exhausted quota as
``QuotaExceededError`` and rejected credentials as ``LLMAuthenticationError``.
Those are never retried here; the caller owns that policy. Timeouts and 5xx
responses are retried with the client's own ``RetryPolicy``.
"""

from email.utils import parsedate_to_datetime
from datetime import datetime, timezone
from typing import Dict, Any, Optional, List, Union

import httpx
from httpx import TimeoutException, HTTPStatusError

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from submission_intake.core.config import Settings
from submission_intake.core.exceptions import (
    APIClientError,
    APITimeoutError,
    ConfigurationError,
    LLMAuthenticationError,
    QuotaExceededError,
    RateLimitError,
)
from submission_intake.core.retry import RetryPolicy
from submission_intake.utils.logging import get_logger

LOGGER = get_logger(__name__)

QUOTA_MARKERS = ("insufficient_quota", "quota exceeded", "exceeded your current quota")


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parse a Retry-After header (delta-seconds or HTTP-date) into seconds."""
    if not value:
        return None
    value = value.strip()
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


def is_quota_message(text: str) -> bool:
    lowered = (text or "").lower()
    return any(marker in lowered for marker in QUOTA_MARKERS)


class _TransientHTTPError(APIClientError):
    """5xx response; retried by ``BaseLLMClient``."""
    pass


class BaseLLMClient:
    """Base client for chat-completion HTTP APIs.

    Handles request construction, error classification and transient
    retries (timeouts and 5xx).
    """

    def __init__(
        self,
        api_key: str,
        base_url: str,
        timeout: int = 60,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        """Initialize the LLM client.

        Args:
            api_key: API key for authentication
            base_url: Full URL of the completion endpoint
            timeout: Request timeout in seconds
            max_retries: Maximum attempts for transient failures
            retry_delay: Base delay for exponential backoff
            http_client: Optional shared client (used by tests)
        """
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.retry_policy = RetryPolicy(max_attempts=max_retries, base_delay=retry_delay)
        self.http_client = http_client
        self.logger = LOGGER

    async def call_api(
        self,
        payload: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
    ) -> Dict[str, Any]:
        """POST ``payload`` and return the parsed JSON body.

        Raises:
            RateLimitError: On HTTP 429 (``QuotaExceededError`` for quota exhaustion)
            LLMAuthenticationError: On HTTP 401/403
            APIClientError: On other 4xx, or 5xx after retries
            APITimeoutError: If the call times out after retries
        """
        default_headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        if headers:
            default_headers.update(headers)

        self.logger.debug(
            f"Calling LLM API: {self.base_url}",
            extra={"timeout": self.timeout},
        )

        async def attempt() -> Dict[str, Any]:
            try:
                response = await self._post(default_headers, payload)
                response.raise_for_status()
                return response.json()
            except HTTPStatusError as e:
                raise self._classify_http_error(e) from e
            except TimeoutException as e:
                self.logger.warning("API Timeout", extra={"url": self.base_url})
                raise APITimeoutError(f"API Timeout calling {self.base_url}", e) from e

        return await self.retry_policy.run(
            attempt,
            retry_on=(APITimeoutError, _TransientHTTPError),
            give_up_on=(RateLimitError, LLMAuthenticationError),
        )

    async def _post(self, headers: Dict[str, str], payload: Dict[str, Any]) -> httpx.Response:
        if self.http_client is not None:
            return await self.http_client.post(self.base_url, headers=headers, json=payload)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(self.base_url, headers=headers, json=payload)

    def _classify_http_error(self, error: HTTPStatusError) -> APIClientError:
        status_code = error.response.status_code
        error_body = error.response.text or ""

        self.logger.warning(
            "API HTTP error",
            extra={
                "url": self.base_url,
                "status_code": status_code,
                "error_body": error_body[:500],
            },
        )

        if status_code in (401, 403):
            return LLMAuthenticationError(
                f"Completion backend rejected credentials ({status_code})", error
            )
        if status_code == 429:
            if is_quota_message(error_body):
                return QuotaExceededError(f"Completion backend quota exhausted: {error_body[:200]}", None, error)
            retry_after = parse_retry_after(error.response.headers.get("retry-after"))
            return RateLimitError("Completion backend rate limited", retry_after, error)
        if 400 <= status_code < 500:
            return APIClientError(f"API Client Error {status_code}: {error_body[:500]}", error)
        return _TransientHTTPError(f"API HTTP Error {status_code}", error)


class OpenRouterClient:
    """OpenRouter (OpenAI-compatible chat completions) client."""

    def __init__(
        self,
        api_key: str,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: int = 60,
        max_retries: int = 3,
        retry_delay: float = 2.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.model = model
        self.client = BaseLLMClient(
            api_key=api_key,
            base_url=base_url,
            timeout=timeout,
            max_retries=max_retries,
            retry_delay=retry_delay,
            http_client=http_client,
        )
        LOGGER.info(f"Initialized OpenRouter client with model {self.model}")

    async def generate_content(
        self,
        contents: Union[str, List[Union[str, Dict[str, Any]]]],
        system_instruction: Optional[str] = None,
        generation_config: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Generate content using the configured OpenRouter model.

        Args:
            contents: Input content (string or list of parts)
            system_instruction: Optional system instruction
            generation_config: Optional generation config (temperature,
                max_output_tokens, response_mime_type)

        Returns:
            Generated text response
        """
        messages: List[Dict[str, str]] = []
        if system_instruction:
            messages.append({"role": "system", "content": system_instruction})

        if isinstance(contents, str):
            user_content = contents
        else:
            user_content = "".join(
                part if isinstance(part, str) else part.get("text", "")
                for part in contents
            )
        messages.append({"role": "user", "content": user_content})

        config = generation_config or {}
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": config.get("temperature", 0.0),
        }
        if "max_output_tokens" in config:
            payload["max_tokens"] = config["max_output_tokens"]
        if config.get("response_mime_type") == "application/json":
            payload["response_format"] = {"type": "json_object"}

        response = await self.client.call_api(payload)

        choices = response.get("choices") or []
        if not choices:
            LOGGER.error(f"Unexpected OpenRouter response format: {str(response)[:500]}")
            raise APIClientError("Invalid response format from OpenRouter")

        content = choices[0].get("message", {}).get("content") or ""
        if not content:
            LOGGER.warning("Empty response from OpenRouter")
        return content


class GeminiClient:
    """Wrapper for the Google Gemini API client."""

    def __init__(self, api_key: str, model: str = "gemini-2.0-flash"):
        self.api_key = api_key
        self.model = model

        try:
            self.client = genai.Client(api_key=self.api_key)
            LOGGER.info(f"Initialized Gemini client with model {self.model}")
        except Exception as e:
            LOGGER.error(f"Failed to initialize Gemini client: {e}")
            raise APIClientError(f"Failed to initialize Gemini client: {e}", e)

    async def generate_content(
        self,
        contents: Union[str, List[Union[str, Dict[str, Any]]]],
        system_instruction: Optional[str] = None,
        generation_config: Optional[Dict[str, Any]] = None,
    ) -> str:
        """Generate content using the Gemini model."""
        config = types.GenerateContentConfig(temperature=0.0)

        if generation_config:
            if "temperature" in generation_config:
                config.temperature = generation_config["temperature"]
            if "max_output_tokens" in generation_config:
                config.max_output_tokens = generation_config["max_output_tokens"]
            if "response_mime_type" in generation_config:
                config.response_mime_type = generation_config["response_mime_type"]

        if system_instruction:
            config.system_instruction = system_instruction

        try:
            response = await self.client.aio.models.generate_content(
                model=self.model,
                contents=contents,
                config=config,
            )
        except genai_errors.APIError as e:
            raise self._classify_api_error(e) from e

        if not response.text:
            LOGGER.warning("Empty response from Gemini")
            return ""
        return response.text

    @staticmethod
    def _classify_api_error(error: "genai_errors.APIError") -> APIClientError:
        code = getattr(error, "code", None)
        message = str(error)
        if code in (401, 403):
            return LLMAuthenticationError(f"Gemini rejected credentials ({code})", error)
        if code == 429:
            if is_quota_message(message) and "per minute" not in message.lower():
                return QuotaExceededError(f"Gemini quota exhausted: {message[:200]}", None, error)
            return RateLimitError("Gemini rate limited", None, error)
        return APIClientError(f"Gemini generation failed: {message}", error)


def create_llm_client(settings: Settings) -> Union[OpenRouterClient, GeminiClient]:
    """Build the completion client selected by ``LLM_PROVIDER``."""
    provider = settings.llm.provider.lower()
    if provider == "gemini":
        if not settings.llm.gemini_api_key:
            raise ConfigurationError("GEMINI_API_KEY is required for the gemini provider")
        return GeminiClient(api_key=settings.llm.gemini_api_key, model=settings.llm.gemini_model)
    if provider == "openrouter":
        if not settings.llm.openrouter_api_key:
            raise ConfigurationError("OPENROUTER_API_KEY is required for the openrouter provider")
        return OpenRouterClient(
            api_key=settings.llm.openrouter_api_key,
            model=settings.llm.openrouter_model,
            base_url=settings.llm.openrouter_api_url,
            timeout=settings.llm.timeout_seconds,
            max_retries=settings.max_retries,
            retry_delay=settings.retry_delay,
        )
    raise ConfigurationError(f"Unsupported LLM provider: {settings.llm.provider}")
