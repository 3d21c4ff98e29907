"""Tests for the completion oracles and provider selection."""

import json
from unittest.mock import MagicMock, patch

import pytest

from hoops_analytics.config import TestConfig
from hoops_analytics.data.anthropic_client import AnthropicClient
from hoops_analytics.data.cancellation import CancellationToken
from hoops_analytics.data.groq_client import GroqResponse
from hoops_analytics.data.llm_oracle import (
    SUBMIT_JSON_TOOL,
    AnthropicCompletionOracle,
    GroqCompletionOracle,
    build_oracle,
)


def test_groq_oracle_sends_json_mode_request() -> None:
    client = MagicMock()
    client.generate.return_value = GroqResponse(
        content='{"sql": null}',
        model="llama-3.3-70b-versatile",
        usage_prompt_tokens=10,
        usage_completion_tokens=5,
    )
    oracle = GroqCompletionOracle("key", "llama-3.3-70b-versatile", client=client)
    token = CancellationToken(10)

    content = oracle.complete_json("system", "question", temperature=0.1, cancel_token=token)

    assert content == '{"sql": null}'
    kwargs = client.generate.call_args.kwargs
    assert kwargs["messages"] == [
        {"role": "system", "content": "system"},
        {"role": "user", "content": "question"},
    ]
    assert kwargs["temperature"] == 0.1
    assert kwargs["response_format"] == {"type": "json_object"}
    assert kwargs["cancel_token"] is token


def test_groq_oracle_missing_key_fails_on_first_call() -> None:
    oracle = GroqCompletionOracle("", "llama-3.3-70b-versatile")

    with pytest.raises(ValueError, match="Groq API key is required"):
        oracle.complete_json("s", "u", temperature=0.0)


@patch("hoops_analytics.data.llm_oracle.AnthropicClient")
def test_anthropic_oracle_returns_tool_input_as_json(mock_client_class: MagicMock) -> None:
    """The forced tool call carries the JSON object."""
    mock_client = MagicMock()
    mock_client_class.return_value = mock_client

    text_block = MagicMock()
    text_block.type = "text"
    tool_block = MagicMock()
    tool_block.type = "tool_use"
    tool_block.input = {"satisfactory": True, "response": "🏀 Done"}
    mock_client.generate_with_tools.return_value = MagicMock(content=[text_block, tool_block])

    oracle = AnthropicCompletionOracle("key", "claude-3-5-haiku-20241022")
    content = oracle.complete_json("system", "question", temperature=0.2)

    assert json.loads(content) == {"satisfactory": True, "response": "🏀 Done"}
    kwargs = mock_client.generate_with_tools.call_args.kwargs
    assert kwargs["system"] == "system"
    assert kwargs["messages"] == [{"role": "user", "content": "question"}]
    assert kwargs["tools"] == [SUBMIT_JSON_TOOL]
    assert kwargs["tool_choice"] == {"type": "tool", "name": "submit_json"}
    assert kwargs["temperature"] == 0.2
    mock_client_class.assert_called_once_with(api_key="key", max_retries=2)


def test_anthropic_oracle_without_tool_use_returns_empty() -> None:
    client = MagicMock()
    text_block = MagicMock()
    text_block.type = "text"
    client.generate_with_tools.return_value = MagicMock(content=[text_block])
    oracle = AnthropicCompletionOracle("key", "claude-3-5-haiku-20241022", client=client)

    assert oracle.complete_json("s", "u", temperature=0.0) == ""


def test_build_oracle_selects_groq() -> None:
    config = TestConfig()
    config.LLM_PROVIDER = "groq"
    config.GROQ_API_KEY = "gsk-test"

    oracle = build_oracle(config)

    assert isinstance(oracle, GroqCompletionOracle)
    assert oracle.api_key == "gsk-test"
    assert oracle.max_attempts == config.LLM_MAX_ATTEMPTS


def test_build_oracle_selects_anthropic() -> None:
    config = TestConfig()
    config.LLM_PROVIDER = "anthropic"
    config.ANTHROPIC_API_KEY = "sk-test"

    oracle = build_oracle(config)

    assert isinstance(oracle, AnthropicCompletionOracle)
    assert oracle.model == config.ANTHROPIC_MODEL


def test_build_oracle_rejects_unknown_provider() -> None:
    config = TestConfig()
    config.LLM_PROVIDER = "openai"

    with pytest.raises(ValueError, match="Unknown LLM provider: openai"):
        build_oracle(config)


def test_anthropic_client_requires_api_key() -> None:
    with pytest.raises(ValueError, match="Anthropic API key is required"):
        AnthropicClient(api_key="")
