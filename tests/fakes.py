"""Test doubles shared across the chat pipeline tests."""

import json
from datetime import datetime
from typing import Any, Optional

from hoops_analytics.data.cancellation import CancellationToken

USER_TEAM_ID = 50
OPPONENT_TEAM_ID = 77
OTHER_TEAM_ID = 999
NOW = datetime(2025, 3, 1, 12, 0, 0)


class StubOracle:
    """Completion oracle returning canned replies in order.

    Replies may be dicts (sent as JSON), raw strings, or exceptions to raise.
    """

    def __init__(self, replies: list[Any]) -> None:
        self.replies = list(replies)
        self.calls: list[dict[str, Any]] = []

    def complete_json(
        self,
        system_prompt: str,
        user_prompt: str,
        *,
        temperature: float,
        cancel_token: Optional[CancellationToken] = None,
    ) -> str:
        self.calls.append(
            {
                "system_prompt": system_prompt,
                "user_prompt": user_prompt,
                "temperature": temperature,
                "cancel_token": cancel_token,
            }
        )
        if not self.replies:
            raise AssertionError("StubOracle ran out of replies")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if isinstance(reply, str):
            return reply
        return json.dumps(reply)
