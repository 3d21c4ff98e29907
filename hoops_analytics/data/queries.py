"""Queries backing the chat endpoint.

This module resolves bearer sessions to coach identities, looks up a team's
next scheduled opponent, executes model-generated SQL on the sandboxed league
database and writes the chat audit log to the accounts database.
"""

import datetime
import decimal
import logging
import time
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import duckdb
import pandas as pd

from hoops_analytics.config import Config
from hoops_analytics.data.audit import AuditRecord
from hoops_analytics.data.cancellation import CancellationToken, QueryCancelledError
from hoops_analytics.data.database import HoopsDatabase

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Identity:
    """Authenticated coach; team_id is None until a team is assigned."""

    user_id: str
    team_id: Optional[int]


@dataclass(frozen=True)
class ExecutionResult:
    """Outcome of a coach query.

    Exactly one of payload / error is meaningful: payload holds the rows on
    success, error the database message on failure.
    """

    payload: Any = None
    error: Optional[str] = None


def to_json_scalar(value: Any) -> Any:
    """Convert a DuckDB value into something jsonify can render."""
    if isinstance(value, (list, tuple)):
        return [to_json_scalar(item) for item in value]
    if isinstance(value, dict):
        return {key: to_json_scalar(item) for key, item in value.items()}
    if value is None or pd.isna(value):
        return None
    if isinstance(value, decimal.Decimal):
        return float(value)
    if isinstance(value, (datetime.datetime, datetime.date, datetime.time)):
        return value.isoformat()
    if isinstance(value, datetime.timedelta):
        return str(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray)):
        return value.hex()
    return value


class HoopsQueries:
    """Collection of queries used by the chat endpoint."""

    def __init__(
        self,
        league: HoopsDatabase,
        accounts: HoopsDatabase,
        row_limit: int = Config.CHAT_ROW_LIMIT,
    ) -> None:
        """Initialize with the two databases.

        Args:
            league: League database; must be sandboxed to run coach queries
            accounts: Accounts, sessions and audit log database
            row_limit: Maximum rows kept from one coach query
        """
        self.league = league
        self.accounts = accounts
        self.row_limit = row_limit

    def resolve_identity(
        self, token: str, now: Optional[datetime.datetime] = None
    ) -> Optional[Identity]:
        """Resolve a bearer token to the coach it belongs to.

        Args:
            token: Bearer token from the Authorization header
            now: Reference time for expiry (defaults to current time)

        Returns:
            Identity, or None if the session is unknown or expired
        """
        query = """
        SELECT u.id, u.team_id
        FROM user_sessions s
        JOIN users u ON s.user_id = u.id
        WHERE s.token = ? AND s.expires_at > ?
        """
        row = self.accounts.fetch_one(query, [token, now or datetime.datetime.now()])
        if row is None:
            return None
        return Identity(user_id=row[0], team_id=row[1])

    def get_next_opponent_id(
        self, team_id: int, now: Optional[datetime.datetime] = None
    ) -> Optional[int]:
        """Get the opponent of a team's nearest future scheduled game.

        Args:
            team_id: Team to look up
            now: Reference time (defaults to current time)

        Returns:
            Opponent team id, or None if nothing is scheduled
        """
        query = """
        SELECT home_team_id, away_team_id
        FROM games
        WHERE status = 'SCHEDULED'
          AND (home_team_id = ? OR away_team_id = ?)
          AND date >= ?
        ORDER BY date ASC
        LIMIT 1
        """
        row = self.league.fetch_one(
            query, [team_id, team_id, now or datetime.datetime.now()]
        )
        if row is None:
            return None

        home_team_id, away_team_id = row
        return away_team_id if home_team_id == team_id else home_team_id

    def execute_coach_query(
        self, sql: str, cancel_token: Optional[CancellationToken] = None
    ) -> ExecutionResult:
        """Execute validated, model-generated SQL.

        The statement runs exactly as given on a dedicated cursor of the
        sandboxed league database, inside a transaction that is always rolled
        back. Anything but a single SELECT statement is refused unexecuted. At
        most row_limit rows are kept. Cancelling the token interrupts the
        running query.

        Args:
            sql: Validated, normalized SQL
            cancel_token: Request cancellation token

        Returns:
            ExecutionResult with a list of row dicts, or the database error

        Raises:
            QueryCancelledError: If the token is cancelled before or during
                execution
            RuntimeError: If the league database is not sandboxed
        """
        if not self.league.sandboxed:
            raise RuntimeError("Coach queries need a sandboxed league database")

        if cancel_token is not None:
            cancel_token.raise_if_cancelled()

        started = time.monotonic()
        cursor = self.league.cursor()
        interrupt = cursor.interrupt
        if cancel_token is not None:
            cancel_token.add_callback(interrupt)

        try:
            statements = cursor.extract_statements(sql)
            if len(statements) != 1 or statements[0].type != duckdb.StatementType.SELECT:
                logger.warning(f"Refused coach query with {len(statements)} statement(s): {sql}")
                return ExecutionResult(error="Only a single SELECT statement can be executed.")

            cursor.execute("BEGIN TRANSACTION")
            cursor.execute(sql)
            columns = [column[0] for column in cursor.description or []]
            records = cursor.fetchmany(self.row_limit) if columns else []

            rows = [
                {column: to_json_scalar(value) for column, value in zip(columns, record)}
                for record in records
            ]
            logger.info(
                f"Coach query returned {len(rows)} rows, {len(columns)} columns "
                f"in {time.monotonic() - started:.2f}s"
            )
            return ExecutionResult(payload=rows)

        except duckdb.Error as e:
            if cancel_token is not None and cancel_token.cancelled:
                raise QueryCancelledError(cancel_token.reason or "cancelled") from e
            logger.warning(f"Coach query failed: {e}\nSQL: {sql}")
            return ExecutionResult(error=str(e))

        finally:
            if cancel_token is not None:
                cancel_token.remove_callback(interrupt)
            try:
                cursor.execute("ROLLBACK")
            except duckdb.Error as e:
                logger.debug(f"Rollback after coach query failed: {e}")
            cursor.close()

    def save_chat_log(self, record: AuditRecord) -> None:
        """Insert one chat audit record into hoops_ai_logs."""
        query = """
        INSERT INTO hoops_ai_logs (
            user_id, question, thought, final_sql, response, num_iterations,
            result_type, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """
        self.accounts.execute_query(
            query,
            [
                record.user_id,
                record.question,
                record.thought,
                record.final_sql,
                record.answer,
                record.num_iterations,
                record.result_type,
                datetime.datetime.now(),
            ],
        )

    def get_chat_logs(self, user_id: Optional[str] = None, limit: int = 50) -> pd.DataFrame:
        """Get recent chat audit records, newest first.

        Args:
            user_id: Only records of this coach when given
            limit: Maximum number of records

        Returns:
            DataFrame with one row per audited chat request
        """
        where_clause = ""
        params: List[Any] = []
        if user_id is not None:
            where_clause = "WHERE user_id = ?"
            params.append(user_id)
        params.append(limit)

        query = f"""
        SELECT id, user_id, question, thought, final_sql, response,
               num_iterations, result_type, created_at
        FROM hoops_ai_logs
        {where_clause}
        ORDER BY created_at DESC, id DESC
        LIMIT ?
        """
        with self.accounts.get_connection() as conn:
            return conn.execute(query, params).df()

    def get_table_counts(self) -> Dict[str, int]:
        """Get row counts of the league tables."""
        tables: List[str] = [
            "teams",
            "players",
            "games",
            "stats_player_games",
            "stats_team_games",
            "play_by_play",
            "shots",
        ]
        counts = {}
        for table in tables:
            row = self.league.fetch_one(f"SELECT COUNT(*) FROM {table}")
            counts[table] = row[0] if row else 0
        return counts
