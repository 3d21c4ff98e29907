"""Groq API client for the coach chat pipeline.

Lazy client init, exponential backoff for transient errors, and cooperative
cancellation: each attempt is bounded by the time left on the request's
cancellation token, and backoff sleeps wake early when it fires.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import groq
from groq import Groq

from hoops_analytics.data.cancellation import CancellationToken, QueryCancelledError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "llama-3.3-70b-versatile"


@dataclass
class GroqResponse:
    """Completion text plus token usage."""

    content: str
    model: str
    usage_prompt_tokens: int
    usage_completion_tokens: int


class GroqClient:
    """Chat-completions wrapper with retries.

    Attributes:
        api_key: Groq API key
        max_attempts: Total attempts per call, the first one included
        initial_retry_delay: Seconds before the first retry (doubles after)
    """

    def __init__(
        self,
        api_key: str,
        max_attempts: int = 2,
        initial_retry_delay: float = 2.0,
    ) -> None:
        """Store settings; the SDK client is created on first use.

        Raises:
            ValueError: If api_key is empty
        """
        if not api_key:
            raise ValueError("Groq API key is required")

        self.api_key = api_key
        self.max_attempts = max_attempts
        self.initial_retry_delay = initial_retry_delay
        self._client: Groq | None = None

    @property
    def client(self) -> Groq:
        if self._client is None:
            self._client = Groq(api_key=self.api_key)
        return self._client

    def generate(
        self,
        messages: list[dict[str, str]],
        model: str = DEFAULT_MODEL,
        max_tokens: int = 2048,
        temperature: float = 0.0,
        response_format: Optional[dict[str, str]] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> GroqResponse:
        """Run one chat completion, retrying transient failures.

        Args:
            messages: Chat messages ({"role": ..., "content": ...})
            model: Model identifier
            max_tokens: Completion token cap
            temperature: Sampling temperature
            response_format: {"type": "json_object"} enables JSON mode
            cancel_token: Request cancellation token

        Returns:
            GroqResponse

        Raises:
            QueryCancelledError: If the request is cancelled before or between
                attempts
            groq.RateLimitError: When still throttled on the last attempt
            groq.APIConnectionError: When still unreachable on the last attempt
            groq.AuthenticationError: Immediately, credentials never recover
            groq.APIError: Immediately for other 4xx, after retries for 5xx
        """
        for attempt in range(1, self.max_attempts + 1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            request = self._build_request(
                messages, model, max_tokens, temperature, response_format, cancel_token
            )

            try:
                started = time.monotonic()
                completion = self.client.chat.completions.create(**request)
                logger.debug(
                    f"Groq completion in {time.monotonic() - started:.2f}s "
                    f"(attempt {attempt}/{self.max_attempts})"
                )
                return self._to_response(completion, model)

            except groq.RateLimitError as e:
                self._backoff_or_raise(attempt, "rate limited", e, cancel_token)

            except groq.APIConnectionError as e:
                self._backoff_or_raise(attempt, "unreachable", e, cancel_token)

            except (groq.AuthenticationError, groq.PermissionDeniedError):
                raise

            except groq.APIError as e:
                status_code = getattr(e, "status_code", None)
                if status_code and 400 <= status_code < 500:
                    logger.error(f"Groq rejected the request ({status_code}): {e}")
                    raise
                self._backoff_or_raise(attempt, "server error", e, cancel_token)

        raise RuntimeError("Groq retry loop ended without a result")

    @staticmethod
    def _build_request(
        messages: list[dict[str, str]],
        model: str,
        max_tokens: int,
        temperature: float,
        response_format: Optional[dict[str, str]],
        cancel_token: Optional[CancellationToken],
    ) -> dict[str, Any]:
        request: dict[str, Any] = {
            "messages": messages,
            "model": model,
            "max_tokens": max_tokens,
            "temperature": temperature,
        }
        if response_format is not None:
            request["response_format"] = response_format
        if cancel_token is not None:
            remaining = cancel_token.remaining()
            if remaining is not None:
                request["timeout"] = max(remaining, 0.1)
        return request

    @staticmethod
    def _to_response(completion: Any, model: str) -> GroqResponse:
        usage = completion.usage
        return GroqResponse(
            content=completion.choices[0].message.content or "",
            model=completion.model or model,
            usage_prompt_tokens=usage.prompt_tokens if usage else 0,
            usage_completion_tokens=usage.completion_tokens if usage else 0,
        )

    def _backoff_or_raise(
        self,
        attempt: int,
        label: str,
        error: Exception,
        cancel_token: Optional[CancellationToken],
    ) -> None:
        """Sleep before the next attempt, or re-raise after the last one."""
        if attempt >= self.max_attempts:
            logger.error(f"Groq {label}, giving up after {attempt} attempts")
            raise error

        delay = self.initial_retry_delay * (2 ** (attempt - 1))
        logger.warning(f"Groq {label}, attempt {attempt} failed, retrying in {delay}s: {error}")
        if cancel_token is None:
            time.sleep(delay)
        elif cancel_token.wait(delay):
            raise QueryCancelledError(cancel_token.reason or "cancelled") from error
