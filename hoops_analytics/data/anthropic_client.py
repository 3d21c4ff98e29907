"""Anthropic API client, the alternative completion provider.

Structured output goes through tool calling: the caller passes one tool and
forces it with ``tool_choice``, so the reply always carries a JSON input.

Example:
    >>> client = AnthropicClient(api_key=config.ANTHROPIC_API_KEY)
    >>> message = client.generate_with_tools(
    ...     messages=[{"role": "user", "content": "Top scorer last game?"}],
    ...     tools=[SUBMIT_JSON_TOOL],
    ...     tool_choice={"type": "tool", "name": "submit_json"},
    ...     system=system_prompt,
    ... )
"""

import logging
import time
from typing import Any, Optional

import anthropic
from anthropic.types import MessageParam, ToolParam

from hoops_analytics.data.cancellation import CancellationToken, QueryCancelledError

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-3-5-haiku-20241022"


class AnthropicClient:
    """Messages API wrapper with retries.

    Attributes:
        api_key: Anthropic API key
        max_retries: Total attempts per call, the first one included
        initial_retry_delay: Seconds before the first retry (doubles after)
    """

    def __init__(
        self,
        api_key: str,
        max_retries: int = 2,
        initial_retry_delay: float = 1.0,
    ) -> None:
        if not api_key:
            raise ValueError("Anthropic API key is required")

        self.api_key = api_key
        self.max_retries = max_retries
        self.initial_retry_delay = initial_retry_delay
        self._client: anthropic.Anthropic | None = None

    @property
    def client(self) -> anthropic.Anthropic:
        if self._client is None:
            self._client = anthropic.Anthropic(api_key=self.api_key)
        return self._client

    def generate_with_tools(
        self,
        messages: list[MessageParam],
        tools: list[ToolParam],
        model: str = DEFAULT_MODEL,
        max_tokens: int = 2048,
        system: Optional[str] = None,
        tool_choice: Optional[dict[str, Any]] = None,
        temperature: Optional[float] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> anthropic.types.Message:
        """Create a message with tools available.

        Args:
            messages: Conversation turns
            tools: Tool definitions
            model: Model name
            max_tokens: Completion token cap
            system: System prompt
            tool_choice: Forces a specific tool when given
            temperature: Sampling temperature
            cancel_token: Request cancellation token

        Returns:
            Message whose content blocks include the tool_use block

        Raises:
            QueryCancelledError: If the request is cancelled before or between
                attempts
            anthropic.APIError: Immediately for 4xx, after retries otherwise
        """
        request: dict[str, Any] = {
            "model": model,
            "max_tokens": max_tokens,
            "messages": messages,
            "tools": tools,
        }
        optional = {"system": system, "tool_choice": tool_choice, "temperature": temperature}
        request.update({key: value for key, value in optional.items() if value is not None})

        for attempt in range(1, self.max_retries + 1):
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
                remaining = cancel_token.remaining()
                if remaining is not None:
                    request["timeout"] = max(remaining, 0.1)

            try:
                started = time.monotonic()
                message = self.client.messages.create(**request)
                logger.debug(
                    f"Anthropic message in {time.monotonic() - started:.2f}s "
                    f"(attempt {attempt}/{self.max_retries})"
                )
                return message

            except anthropic.RateLimitError as e:
                self._backoff_or_raise(attempt, "rate limited", e, cancel_token)

            except anthropic.APIConnectionError as e:
                self._backoff_or_raise(attempt, "unreachable", e, cancel_token)

            except anthropic.APIError as e:
                status_code = getattr(e, "status_code", None)
                if status_code and 400 <= status_code < 500:
                    logger.error(f"Anthropic rejected the request ({status_code}): {e}")
                    raise
                self._backoff_or_raise(attempt, "server error", e, cancel_token)

        raise RuntimeError("Anthropic retry loop ended without a result")

    def _backoff_or_raise(
        self,
        attempt: int,
        label: str,
        error: Exception,
        cancel_token: Optional[CancellationToken],
    ) -> None:
        if attempt >= self.max_retries:
            logger.error(f"Anthropic {label}, giving up after {attempt} attempts")
            raise error

        delay = self.initial_retry_delay * (2 ** (attempt - 1))
        logger.warning(f"Anthropic {label}, retrying in {delay}s: {error}")
        if cancel_token is None:
            time.sleep(delay)
        elif cancel_token.wait(delay):
            raise QueryCancelledError(cancel_token.reason or "cancelled") from error
