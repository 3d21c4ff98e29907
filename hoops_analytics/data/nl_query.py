"""Natural language to SQL chat pipeline.

Orchestrates one coach question through a bounded state machine:
generation -> validation (safety, team scope) -> execution -> evaluation,
retrying with the evaluator's corrective SQL at most MAX_ITERATIONS times.

Every entry into GENERATING appends exactly one IterationLogEntry before any
further processing, so the returned trace reflects every attempt made.
"""

import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, Protocol

from hoops_analytics.config import get_chat_messages
from hoops_analytics.data.audit import AuditRecord
from hoops_analytics.data.cancellation import CancellationToken, QueryCancelledError
from hoops_analytics.data.queries import ExecutionResult
from hoops_analytics.data.result_evaluator import EvaluationResponse, ResultEvaluator
from hoops_analytics.data.sql_generator import SQLGenerator, SQLResponse
from hoops_analytics.data.sql_guard import (
    TeamScope,
    ValidationResult,
    normalize_sql,
    validate_sql_safety,
)

logger = logging.getLogger(__name__)
security_logger = logging.getLogger(f"{__name__}.security")

MAX_ITERATIONS = 3


class ChatState(str, Enum):
    """States of the chat iteration controller."""

    GENERATING = "generating"
    VALIDATING = "validating"
    EXECUTING = "executing"
    EVALUATING = "evaluating"
    RETRYING = "retrying"
    SATISFIED = "satisfied"
    EXHAUSTED = "exhausted"
    CONVERSATIONAL = "conversational"
    BLOCKED = "blocked"


TRANSITIONS: dict[ChatState, frozenset[ChatState]] = {
    ChatState.GENERATING: frozenset({ChatState.VALIDATING, ChatState.CONVERSATIONAL}),
    ChatState.VALIDATING: frozenset({ChatState.EXECUTING, ChatState.BLOCKED}),
    ChatState.EXECUTING: frozenset({ChatState.EVALUATING}),
    ChatState.EVALUATING: frozenset(
        {ChatState.SATISFIED, ChatState.RETRYING, ChatState.EXHAUSTED}
    ),
    ChatState.RETRYING: frozenset({ChatState.GENERATING}),
    ChatState.SATISFIED: frozenset(),
    ChatState.EXHAUSTED: frozenset(),
    ChatState.CONVERSATIONAL: frozenset(),
    ChatState.BLOCKED: frozenset(),
}

TERMINAL_STATES = frozenset(state for state, nxt in TRANSITIONS.items() if not nxt)


class InvalidTransitionError(RuntimeError):
    """Raised when the controller attempts a transition not in TRANSITIONS."""


@dataclass(frozen=True)
class IterationLogEntry:
    """One attempt of the retry loop."""

    iteration: int
    thought: str
    sql: Optional[str]
    result: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        entry: dict[str, Any] = {
            "iteration": self.iteration,
            "thought": self.thought,
            "sql": self.sql,
        }
        if self.result is not None:
            entry["result"] = self.result
        return entry


@dataclass
class ChatResult:
    """Final outcome of a chat request.

    Attributes:
        type: "conversational", "data" or "error"
        answer: User-facing answer text
        thought: Reasoning of the last attempt
        tactical_context: Supplementary narrative of the last attempt
        sql: Last normalized SQL ("" when none ran)
        data: Result rows for "data" outcomes, None otherwise
        iterations: Append-only attempt trace
        state: Terminal state the controller stopped in
    """

    type: str
    answer: str
    thought: str
    tactical_context: str = ""
    sql: str = ""
    data: Optional[list[dict[str, Any]]] = None
    iterations: list[IterationLogEntry] = field(default_factory=list)
    state: ChatState = ChatState.SATISFIED

    def to_response(self) -> dict[str, Any]:
        """Shape the result as the POST /chat JSON body."""
        iterations = [entry.to_dict() for entry in self.iterations]
        if self.type == "data":
            return {
                "type": self.type,
                "answer": self.answer,
                "thought": self.thought,
                "tactical_context": self.tactical_context,
                "sql": self.sql,
                "data": self.data if self.data is not None else [],
                "iterations": iterations,
            }
        return {
            "type": self.type,
            "answer": self.answer,
            "thought": self.thought,
            "data": None,
            "iterations": iterations,
        }

    def to_audit_record(self, user_id: str, question: str) -> AuditRecord:
        return AuditRecord(
            user_id=user_id,
            question=question,
            thought=self.thought,
            final_sql=self.sql or None,
            answer=self.answer,
            num_iterations=len(self.iterations),
            result_type=self.type,
        )


class QueryExecutor(Protocol):
    """Runs validated SQL and reports rows or a database error."""

    def execute_coach_query(
        self, sql: str, cancel_token: Optional[CancellationToken] = None
    ) -> ExecutionResult:
        ...


def normalize_rows(payload: Any) -> list[dict[str, Any]]:
    """Coerce an executor payload into a list of rows.

    A list stays a list, a single row is wrapped, and no payload becomes [].
    """
    if payload is None:
        return []
    if isinstance(payload, Mapping):
        return [dict(payload)]
    if isinstance(payload, (list, tuple)):
        return list(payload)
    return [payload]


def degraded_answer(rows: list[dict[str, Any]], tactical_context: str) -> str:
    """Row-count answer used when the evaluator gives no narrative."""
    messages = get_chat_messages()
    if rows:
        return messages["rows_fallback"].format(
            count=len(rows), context=tactical_context
        )
    return messages["empty_fallback"].format(context=tactical_context)


def _advance(current: ChatState, target: ChatState) -> ChatState:
    if target not in TRANSITIONS[current]:
        raise InvalidTransitionError(f"{current.name} -> {target.name}")
    logger.debug(f"Chat state {current.name} -> {target.name}")
    return target


class ChatQueryService:
    """Iteration controller for coach questions."""

    def __init__(
        self,
        generator: SQLGenerator,
        evaluator: ResultEvaluator,
        executor: QueryExecutor,
    ) -> None:
        self.generator = generator
        self.evaluator = evaluator
        self.executor = executor

    def ask(
        self,
        question: str,
        scope: TeamScope,
        cancel_token: Optional[CancellationToken] = None,
        user_id: Optional[str] = None,
    ) -> ChatResult:
        """Answer one coach question.

        Args:
            question: Coach question, verbatim
            scope: Allowed teams, fixed for the whole request
            cancel_token: Request cancellation token
            user_id: Requesting coach (for security logging)

        Returns:
            ChatResult in one of the terminal states

        Raises:
            QueryCancelledError: If the request is cancelled at any I/O step
            Exception: Whatever the first generation call raises
        """
        messages = get_chat_messages()
        started = time.monotonic()
        logger.info(f"Chat question from user {user_id}: {question}")

        state = ChatState.GENERATING
        iteration_log: list[IterationLogEntry] = []
        pending: Optional[SQLResponse] = None
        response: Optional[SQLResponse] = None
        sql = ""
        execution: Optional[ExecutionResult] = None
        rows: list[dict[str, Any]] = []
        evaluation: Optional[EvaluationResponse] = None

        while True:
            if state is ChatState.GENERATING:
                if pending is None:
                    self._check_cancelled(cancel_token)
                    pending = self.generator.generate(question, scope, cancel_token)
                response, pending = pending, None

                iteration_log.append(
                    IterationLogEntry(
                        iteration=len(iteration_log) + 1,
                        thought=response.thought,
                        sql=response.sql,
                    )
                )

                if not response.sql:
                    state = _advance(state, ChatState.CONVERSATIONAL)
                    logger.info("Conversational answer, no SQL needed")
                    return ChatResult(
                        type="conversational",
                        answer=response.tactical_context,
                        thought=response.thought,
                        iterations=iteration_log,
                        state=state,
                    )
                state = _advance(state, ChatState.VALIDATING)

            elif state is ChatState.VALIDATING:
                sql = normalize_sql(response.sql)
                logger.info(f"Iteration {len(iteration_log)} SQL:\n{sql}")

                check = self._validate(sql, scope, user_id)
                if not check.valid:
                    state = _advance(state, ChatState.BLOCKED)
                    return ChatResult(
                        type="error",
                        answer=messages["blocked"].format(reason=check.error),
                        thought=response.thought,
                        tactical_context=response.tactical_context,
                        sql=sql,
                        iterations=iteration_log,
                        state=state,
                    )
                state = _advance(state, ChatState.EXECUTING)

            elif state is ChatState.EXECUTING:
                self._check_cancelled(cancel_token)
                execution = self.executor.execute_coach_query(sql, cancel_token)
                rows = [] if execution.error else normalize_rows(execution.payload)
                if execution.error:
                    logger.warning(f"SQL execution error: {execution.error}")
                else:
                    logger.info(f"SQL returned {len(rows)} rows")
                state = _advance(state, ChatState.EVALUATING)

            elif state is ChatState.EVALUATING:
                self._check_cancelled(cancel_token)
                try:
                    evaluation = self.evaluator.evaluate(
                        question,
                        sql,
                        execution.error,
                        rows,
                        response.thought,
                        response.tactical_context,
                        scope,
                        cancel_token,
                    )
                except QueryCancelledError:
                    raise
                except Exception as e:
                    logger.error(f"Evaluation failed, using row-count answer: {e}")
                    state = _advance(state, ChatState.SATISFIED)
                    return self._data_result(
                        degraded_answer(rows, response.tactical_context),
                        response, sql, rows, iteration_log, state, started,
                    )

                if evaluation.satisfactory:
                    state = _advance(state, ChatState.SATISFIED)
                    answer = evaluation.response or degraded_answer(
                        rows, response.tactical_context
                    )
                    return self._data_result(
                        answer, response, sql, rows, iteration_log, state, started
                    )

                if evaluation.new_sql and len(iteration_log) < MAX_ITERATIONS:
                    state = _advance(state, ChatState.RETRYING)
                else:
                    state = _advance(state, ChatState.EXHAUSTED)
                    if evaluation.new_sql:
                        fallback = messages["not_found_after_retries"]
                    else:
                        fallback = messages["not_found"]
                    logger.info(
                        f"Chat exhausted after {len(iteration_log)} iterations"
                    )
                    return ChatResult(
                        type="error",
                        answer=evaluation.response or fallback,
                        thought=response.thought,
                        tactical_context=response.tactical_context,
                        sql=sql,
                        iterations=iteration_log,
                        state=state,
                    )

            elif state is ChatState.RETRYING:
                logger.info(f"Retrying with corrective SQL:\n{evaluation.new_sql}")
                pending = SQLResponse(
                    sql=evaluation.new_sql,
                    thought=messages["retry_thought"],
                    tactical_context=response.tactical_context,
                )
                state = _advance(state, ChatState.GENERATING)

            else:
                raise InvalidTransitionError(f"Unexpected state {state.name}")

    @staticmethod
    def _check_cancelled(cancel_token: Optional[CancellationToken]) -> None:
        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

    @staticmethod
    def _validate(
        sql: str, scope: TeamScope, user_id: Optional[str]
    ) -> ValidationResult:
        """Run the safety check, then the team-scope check."""
        safety = validate_sql_safety(sql)
        if not safety.valid:
            logger.warning(f"SQL blocked by safety check: {safety.error}")
            return safety

        scope_check = scope.validate(sql)
        if not scope_check.valid:
            security_logger.warning(
                f"SQL scope blocked: user_id={user_id} "
                f"user_team_id={scope.user_team_id} "
                f"opponent_team_id={scope.opponent_team_id} "
                f"reason={scope_check.error} sql={sql}"
            )
        return scope_check

    @staticmethod
    def _data_result(
        answer: str,
        response: SQLResponse,
        sql: str,
        rows: list[dict[str, Any]],
        iteration_log: list[IterationLogEntry],
        state: ChatState,
        started: float,
    ) -> ChatResult:
        logger.info(
            f"Chat answered with data after {len(iteration_log)} iterations "
            f"in {time.monotonic() - started:.2f}s"
        )
        return ChatResult(
            type="data",
            answer=answer,
            thought=response.thought,
            tactical_context=response.tactical_context,
            sql=sql,
            data=rows,
            iterations=iteration_log,
            state=state,
        )
