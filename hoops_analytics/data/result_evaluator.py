"""Second model call: does the data actually answer the question?

The evaluator sees the question, the SQL that ran, the execution error or the
returned rows, and the generator's reasoning. It replies with a verdict, a
narrative answer when satisfied, or a corrective SQL statement when not.
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from hoops_analytics.config import Config
from hoops_analytics.data.cancellation import CancellationToken
from hoops_analytics.data.llm_oracle import CompletionOracle
from hoops_analytics.data.sql_generator import build_system_prompt, strip_json_fence
from hoops_analytics.data.sql_guard import TeamScope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvaluationResponse:
    """Evaluator verdict."""

    satisfactory: bool
    response: Optional[str] = None
    new_sql: Optional[str] = None


_EVALUATION_PROMPT_TEMPLATE = """\
You are an evaluator and orchestrator for basketball analytics.
The coach asked: "{question}"
This SQL query was executed: {sql}

Generator reasoning: {thought}
Tactical context: {tactical_context}

Database result:
{result_block}

STRICT EVALUATION RULES:
1. If you received an "SQL ERROR":
   - You MUST NOT repeat the same SQL query.
   - Read the error. If a column does not exist (e.g. stats_team_games.points), use the logical alternative from the schema (e.g. (t2_made*2)+(t3_made*3)+ft_made).
   - Put a new query that fixes the failure in 'new_sql'. 'satisfactory' must be false.
2. If the data is empty (RETURNED DATA: []):
   - Consider whether a filter (date, exact name, minute) was too restrictive.
   - If you can improve it (e.g. ILIKE, a different join), put the query in 'new_sql'. 'satisfactory' must be false.
3. If the data DOES answer the question ('satisfactory': true):
   - Write the natural-language answer in 'response'.
   - Do not use raw markdown tables. Weave the numbers into fluent prose.
   - ALWAYS name teams explicitly using the names returned by the query.
   - Be concise and use emojis (🏀, 📊, 🎯).

RESPONSE FORMAT (strict JSON):
{{
  "satisfactory": boolean,
  "new_sql": "NEW CORRECTED QUERY (different from the previous one)" | null,
  "response": "NATURAL-LANGUAGE ANSWER" | null
}}"""


def serialize_rows(rows: list[dict[str, Any]], max_rows: int) -> str:
    """Render rows as indented JSON, capped at max_rows."""
    return json.dumps(rows[:max_rows], indent=2, default=str, ensure_ascii=False)


def build_evaluation_prompt(
    question: str,
    sql: str,
    execution_error: Optional[str],
    rows: list[dict[str, Any]],
    prior_thought: str,
    prior_context: str,
    max_rows: int = Config.EVALUATOR_MAX_ROWS,
) -> str:
    """Build the user prompt for the evaluation call."""
    if execution_error:
        result_block = f"SQL ERROR RECEIVED: {execution_error}"
    else:
        shown = min(len(rows), max_rows)
        result_block = (
            f"RETURNED DATA ({len(rows)} rows, showing {shown}): "
            f"{serialize_rows(rows, max_rows)}"
        )

    return _EVALUATION_PROMPT_TEMPLATE.format(
        question=question,
        sql=sql,
        thought=prior_thought,
        tactical_context=prior_context,
        result_block=result_block,
    )


def parse_evaluation_response(raw: str) -> EvaluationResponse:
    """Parse an evaluator reply without raising.

    An unparseable reply counts as satisfactory with no narrative, so the
    caller falls back to its row-count answer instead of retrying blindly.
    """
    try:
        parsed: Any = json.loads(strip_json_fence(raw))
    except (TypeError, ValueError):
        parsed = None

    if not isinstance(parsed, dict):
        logger.warning("Could not parse evaluator reply")
        return EvaluationResponse(satisfactory=True)

    response = parsed.get("response")
    new_sql = parsed.get("new_sql")

    return EvaluationResponse(
        satisfactory=parsed.get("satisfactory") is True,
        response=response if isinstance(response, str) and response.strip() else None,
        new_sql=new_sql if isinstance(new_sql, str) and new_sql.strip() else None,
    )


class ResultEvaluator:
    """Judges executed results through a completion oracle."""

    def __init__(
        self,
        oracle: CompletionOracle,
        temperature: float = Config.EVALUATION_TEMPERATURE,
        max_rows: int = Config.EVALUATOR_MAX_ROWS,
    ) -> None:
        self.oracle = oracle
        self.temperature = temperature
        self.max_rows = max_rows

    def evaluate(
        self,
        question: str,
        sql: str,
        execution_error: Optional[str],
        rows: list[dict[str, Any]],
        prior_thought: str,
        prior_context: str,
        scope: TeamScope,
        cancel_token: Optional[CancellationToken] = None,
    ) -> EvaluationResponse:
        """Evaluate one executed query.

        Args:
            question: Coach question
            sql: SQL that was executed
            execution_error: Database error message, or None on success
            rows: Normalized result rows
            prior_thought: Generator reasoning for this attempt
            prior_context: Generator tactical context
            scope: Allowed teams (the schema prompt is reused as system prompt)
            cancel_token: Request cancellation token

        Returns:
            EvaluationResponse

        Raises:
            Any oracle error unchanged; the caller decides how to degrade.
        """
        started = time.monotonic()
        prompt = build_evaluation_prompt(
            question,
            sql,
            execution_error,
            rows,
            prior_thought,
            prior_context,
            max_rows=self.max_rows,
        )

        content = self.oracle.complete_json(
            build_system_prompt(scope),
            prompt,
            temperature=self.temperature,
            cancel_token=cancel_token,
        )
        evaluation = parse_evaluation_response(content)

        logger.info(
            f"Evaluation took {time.monotonic() - started:.2f}s "
            f"(satisfactory={evaluation.satisfactory}, "
            f"corrective_sql={'yes' if evaluation.new_sql else 'no'})"
        )
        return evaluation
