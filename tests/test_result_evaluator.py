"""Tests for the result evaluator."""

import json

import pytest

from hoops_analytics.data.result_evaluator import (
    EvaluationResponse,
    ResultEvaluator,
    build_evaluation_prompt,
    parse_evaluation_response,
)
from hoops_analytics.data.sql_guard import TeamScope
from tests.fakes import StubOracle

SCOPE = TeamScope(50, 77)
SQL = "SELECT name FROM teams WHERE id IN (50, 77)"


def test_prompt_with_rows_shows_count_and_data() -> None:
    rows = [{"name": "Valencia Hoops", "points": 80}]

    prompt = build_evaluation_prompt(
        "How many points?", SQL, None, rows, "Sum makes.", "Team points."
    )

    assert 'The coach asked: "How many points?"' in prompt
    assert SQL in prompt
    assert "RETURNED DATA (1 rows, showing 1)" in prompt
    assert '"Valencia Hoops"' in prompt
    assert "Generator reasoning: Sum makes." in prompt
    assert "Tactical context: Team points." in prompt
    assert "SQL ERROR RECEIVED" not in prompt


def test_prompt_with_error_shows_error_instead_of_rows() -> None:
    prompt = build_evaluation_prompt(
        "q", SQL, 'Binder Error: column "points" not found', [], "t", "c"
    )

    assert 'SQL ERROR RECEIVED: Binder Error: column "points" not found' in prompt
    assert "RETURNED DATA" not in prompt


def test_prompt_caps_rows() -> None:
    """Only max_rows rows are serialized, the total is still reported."""
    rows = [{"id": i} for i in range(120)]

    prompt = build_evaluation_prompt("q", SQL, None, rows, "t", "c", max_rows=50)

    assert "RETURNED DATA (120 rows, showing 50)" in prompt
    assert '"id": 49' in prompt
    assert '"id": 50' not in prompt


def test_prompt_with_empty_rows() -> None:
    prompt = build_evaluation_prompt("q", SQL, None, [], "t", "c")

    assert "RETURNED DATA (0 rows, showing 0): []" in prompt


class TestParseEvaluation:
    """Evaluator reply parsing."""

    def test_satisfied_reply(self) -> None:
        raw = json.dumps({"satisfactory": True, "response": "🏀 80 points", "new_sql": None})

        assert parse_evaluation_response(raw) == EvaluationResponse(
            satisfactory=True, response="🏀 80 points"
        )

    def test_corrective_reply(self) -> None:
        raw = json.dumps({"satisfactory": False, "new_sql": "SELECT 2", "response": ""})

        assert parse_evaluation_response(raw) == EvaluationResponse(
            satisfactory=False, new_sql="SELECT 2"
        )

    @pytest.mark.parametrize("value", ["true", 1, "yes", None])
    def test_only_boolean_true_is_satisfactory(self, value: object) -> None:
        raw = json.dumps({"satisfactory": value})

        assert parse_evaluation_response(raw).satisfactory is False

    def test_fenced_reply(self) -> None:
        raw = '```json\n{"satisfactory": true, "response": "ok"}\n```'

        assert parse_evaluation_response(raw).response == "ok"

    @pytest.mark.parametrize("raw", ["", "not json", "[true]"])
    def test_unparseable_reply_is_satisfactory_without_narrative(self, raw: str) -> None:
        """The caller then answers with its row-count fallback."""
        assert parse_evaluation_response(raw) == EvaluationResponse(satisfactory=True)


def test_evaluate_uses_schema_prompt_and_temperature() -> None:
    oracle = StubOracle([{"satisfactory": True, "response": "Done"}])
    evaluator = ResultEvaluator(oracle, temperature=0.2, max_rows=10)

    evaluation = evaluator.evaluate(
        "q", SQL, None, [{"a": 1}], "thought", "context", SCOPE
    )

    assert evaluation.satisfactory is True
    assert evaluation.response == "Done"
    call = oracle.calls[0]
    assert call["temperature"] == 0.2
    assert "team_id IN (50, 77)" in call["system_prompt"]
    assert "RETURNED DATA (1 rows, showing 1)" in call["user_prompt"]


def test_evaluate_propagates_oracle_errors() -> None:
    oracle = StubOracle([RuntimeError("boom")])
    evaluator = ResultEvaluator(oracle)

    with pytest.raises(RuntimeError, match="boom"):
        evaluator.evaluate("q", SQL, None, [], "t", "c", SCOPE)
