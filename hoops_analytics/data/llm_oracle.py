"""Completion oracles: one JSON-producing call to a language model.

The chat pipeline only needs "system prompt + user prompt + temperature in,
raw JSON text out". Each provider client is wrapped behind that shape so the
generator and evaluator stay provider-agnostic and trivially fakeable in
tests.
"""

import json
import logging
from typing import Optional, Protocol

from hoops_analytics.config import Config
from hoops_analytics.data.anthropic_client import AnthropicClient
from hoops_analytics.data.cancellation import CancellationToken
from hoops_analytics.data.groq_client import GroqClient

logger = logging.getLogger(__name__)


class CompletionOracle(Protocol):
    """Anything that turns a prompt pair into raw JSON text."""

    def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        cancel_token: Optional[CancellationToken] = None,
    ) -> str:
        ...


class GroqCompletionOracle:
    """Oracle backed by Groq chat completions in JSON mode."""

    def __init__(
        self,
        api_key: str,
        model: str,
        max_attempts: int = 2,
        client: Optional[GroqClient] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.max_attempts = max_attempts
        self._client = client

    @property
    def client(self) -> GroqClient:
        """Lazy-init Groq client (raises ValueError when the key is missing)."""
        if self._client is None:
            self._client = GroqClient(
                api_key=self.api_key, max_attempts=self.max_attempts
            )
        return self._client

    def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        cancel_token: Optional[CancellationToken] = None,
    ) -> str:
        response = self.client.generate(
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            model=self.model,
            temperature=temperature,
            response_format={"type": "json_object"},
            cancel_token=cancel_token,
        )
        logger.info(
            f"Groq response: model={response.model} "
            f"tokens={response.usage_prompt_tokens}+{response.usage_completion_tokens}"
        )
        return response.content


# Single catch-all tool; forcing it makes the model answer with a JSON object.
SUBMIT_JSON_TOOL = {
    "name": "submit_json",
    "description": "Submit the answer as the JSON object requested by the instructions.",
    "input_schema": {"type": "object", "additionalProperties": True},
}


class AnthropicCompletionOracle:
    """Oracle backed by Anthropic messages with a forced JSON tool."""

    def __init__(
        self,
        api_key: str,
        model: str,
        max_attempts: int = 2,
        client: Optional[AnthropicClient] = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.max_attempts = max_attempts
        self._client = client

    @property
    def client(self) -> AnthropicClient:
        """Lazy-init Anthropic client (raises ValueError when the key is missing)."""
        if self._client is None:
            self._client = AnthropicClient(
                api_key=self.api_key, max_retries=self.max_attempts
            )
        return self._client

    def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        cancel_token: Optional[CancellationToken] = None,
    ) -> str:
        response = self.client.generate_with_tools(
            messages=[{"role": "user", "content": user_prompt}],
            tools=[SUBMIT_JSON_TOOL],
            model=self.model,
            system=system_prompt,
            tool_choice={"type": "tool", "name": SUBMIT_JSON_TOOL["name"]},
            temperature=temperature,
            cancel_token=cancel_token,
        )

        for block in response.content:
            if block.type == "tool_use":
                return json.dumps(block.input)

        logger.warning("Anthropic response contained no tool_use block")
        return ""


def build_oracle(config: Config) -> CompletionOracle:
    """Build the completion oracle for the configured provider.

    Args:
        config: Configuration object

    Returns:
        Oracle instance; its client is created on first use

    Raises:
        ValueError: If the provider is unknown
    """
    provider = config.LLM_PROVIDER
    if provider == "groq":
        return GroqCompletionOracle(
            api_key=config.GROQ_API_KEY,
            model=config.GROQ_MODEL,
            max_attempts=config.LLM_MAX_ATTEMPTS,
        )
    if provider == "anthropic":
        return AnthropicCompletionOracle(
            api_key=config.ANTHROPIC_API_KEY,
            model=config.ANTHROPIC_MODEL,
            max_attempts=config.LLM_MAX_ATTEMPTS,
        )
    raise ValueError(f"Unknown LLM provider: {provider}")
