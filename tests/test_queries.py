"""Tests for session lookup, opponent lookup, coach query execution and audit."""

import threading
import time
from datetime import timedelta
from pathlib import Path

import pytest

from hoops_analytics.data.audit import AuditRecord
from hoops_analytics.data.cancellation import CancellationToken, QueryCancelledError
from hoops_analytics.data.database import HoopsDatabase
from hoops_analytics.data.queries import HoopsQueries, Identity, to_json_scalar
from tests.fakes import NOW, OPPONENT_TEAM_ID, OTHER_TEAM_ID, USER_TEAM_ID


@pytest.fixture
def queries(coach_db: HoopsDatabase, accounts_db: HoopsDatabase) -> HoopsQueries:
    return HoopsQueries(coach_db, accounts_db, row_limit=500)


@pytest.fixture
def league_queries(league_db: HoopsDatabase, accounts_db: HoopsDatabase) -> HoopsQueries:
    """Queries over the writable league file, for tests that schedule games."""
    return HoopsQueries(league_db, accounts_db)


class TestResolveIdentity:
    def test_valid_session(self, queries: HoopsQueries) -> None:
        assert queries.resolve_identity("valid-token") == Identity("coach-1", USER_TEAM_ID)

    def test_expired_session(self, queries: HoopsQueries) -> None:
        assert queries.resolve_identity("expired-token") is None

    def test_unknown_token(self, queries: HoopsQueries) -> None:
        assert queries.resolve_identity("nope") is None

    def test_coach_without_team(self, queries: HoopsQueries) -> None:
        assert queries.resolve_identity("teamless-token") == Identity("coach-2", None)


class TestNextOpponent:
    def _schedule(self, db: HoopsDatabase, game_id: int, days: int, home: int, away: int) -> None:
        db.insert_game(
            {
                "id": game_id,
                "date": NOW + timedelta(days=days),
                "home_team_id": home,
                "away_team_id": away,
                "status": "SCHEDULED",
            }
        )

    def test_no_scheduled_game(self, league_queries: HoopsQueries) -> None:
        """Played games never count as the next opponent."""
        assert league_queries.get_next_opponent_id(USER_TEAM_ID, now=NOW) is None

    def test_home_game(self, league_queries: HoopsQueries, league_db: HoopsDatabase) -> None:
        self._schedule(league_db, 10, 3, USER_TEAM_ID, OPPONENT_TEAM_ID)

        assert league_queries.get_next_opponent_id(USER_TEAM_ID, now=NOW) == OPPONENT_TEAM_ID

    def test_away_game(self, league_queries: HoopsQueries, league_db: HoopsDatabase) -> None:
        self._schedule(league_db, 10, 3, OTHER_TEAM_ID, USER_TEAM_ID)

        assert league_queries.get_next_opponent_id(USER_TEAM_ID, now=NOW) == OTHER_TEAM_ID

    def test_nearest_future_game_wins(
        self, league_queries: HoopsQueries, league_db: HoopsDatabase
    ) -> None:
        self._schedule(league_db, 10, 10, USER_TEAM_ID, OTHER_TEAM_ID)
        self._schedule(league_db, 11, 2, OPPONENT_TEAM_ID, USER_TEAM_ID)
        self._schedule(league_db, 12, -2, USER_TEAM_ID, OTHER_TEAM_ID)

        assert league_queries.get_next_opponent_id(USER_TEAM_ID, now=NOW) == OPPONENT_TEAM_ID

    def test_other_teams_games_are_ignored(
        self, league_queries: HoopsQueries, league_db: HoopsDatabase
    ) -> None:
        self._schedule(league_db, 10, 1, OPPONENT_TEAM_ID, OTHER_TEAM_ID)

        assert league_queries.get_next_opponent_id(USER_TEAM_ID, now=NOW) is None


class TestExecuteCoachQuery:
    def test_rows_are_dicts(self, queries: HoopsQueries) -> None:
        result = queries.execute_coach_query(
            "SELECT id, name FROM teams WHERE id IN (50, 77) ORDER BY id"
        )

        assert result.error is None
        assert result.payload == [
            {"id": 50, "name": "Valencia Hoops"},
            {"id": 77, "name": "Costa Blanca BC"},
        ]

    def test_database_error_is_reported_not_raised(self, queries: HoopsQueries) -> None:
        """A missing column comes back as an error string for the evaluator."""
        result = queries.execute_coach_query("SELECT points FROM stats_team_games")

        assert result.payload is None
        assert "points" in result.error

    def test_row_limit(self, coach_db: HoopsDatabase, accounts_db: HoopsDatabase) -> None:
        queries = HoopsQueries(coach_db, accounts_db, row_limit=5)

        result = queries.execute_coach_query("SELECT * FROM range(100)")

        assert len(result.payload) == 5

    def test_write_statement_is_refused(self, queries: HoopsQueries, coach_db: HoopsDatabase) -> None:
        result = queries.execute_coach_query("INSERT INTO teams (id, name) VALUES (1234, 'Ghost')")

        assert result.payload is None
        assert "single SELECT" in result.error
        assert coach_db.fetch_one("SELECT COUNT(*) FROM teams WHERE id = 1234") == (0,)

    def test_account_tables_are_out_of_reach(self, queries: HoopsQueries) -> None:
        """Sessions live in another file, so a token query fails to bind."""
        result = queries.execute_coach_query(
            "SELECT s.token, u.id, u.team_id FROM user_sessions s "
            "JOIN users u ON u.id = s.user_id"
        )

        assert result.payload is None
        assert "user_sessions" in result.error

    def test_commit_then_copy_is_refused(self, queries: HoopsQueries, tmp_path: Path) -> None:
        """A second statement never runs, even after an injected COMMIT."""
        target = tmp_path / "teams.csv"

        result = queries.execute_coach_query(
            f"SELECT 1; COMMIT; COPY (SELECT * FROM teams) TO '{target}'"
        )

        assert result.payload is None
        assert "single SELECT" in result.error
        assert not target.exists()

    def test_file_reads_fail(self, queries: HoopsQueries, tmp_path: Path) -> None:
        source = tmp_path / "export.csv"
        source.write_text("token\nvalid-token\n")

        result = queries.execute_coach_query(f"SELECT * FROM read_csv('{source}')")

        assert result.payload is None
        assert result.error

    def test_unsandboxed_league_is_refused(self, league_queries: HoopsQueries) -> None:
        with pytest.raises(RuntimeError, match="sandboxed"):
            league_queries.execute_coach_query("SELECT 1")

    def test_databases_are_required(self, coach_db: HoopsDatabase) -> None:
        """No module-level fallback database exists."""
        with pytest.raises(TypeError):
            HoopsQueries()
        with pytest.raises(TypeError):
            HoopsQueries(coach_db)

    def test_values_are_json_friendly(self, queries: HoopsQueries) -> None:
        result = queries.execute_coach_query(
            "SELECT 1.5::DECIMAL(4, 1) AS pct, DATE '2025-01-02' AS day, "
            "NULL AS missing, 'x' AS text"
        )

        assert result.payload == [
            {"pct": 1.5, "day": "2025-01-02", "missing": None, "text": "x"}
        ]

    def test_error_after_failure_leaves_database_usable(self, queries: HoopsQueries) -> None:
        queries.execute_coach_query("SELECT nope FROM teams")

        assert queries.execute_coach_query("SELECT COUNT(*) AS n FROM teams").payload == [
            {"n": 3}
        ]

    def test_cancelled_token_skips_execution(self, queries: HoopsQueries) -> None:
        token = CancellationToken()
        token.cancel("client disconnected")

        with pytest.raises(QueryCancelledError):
            queries.execute_coach_query("SELECT 1", token)

    def test_cancellation_interrupts_running_query(self, queries: HoopsQueries) -> None:
        token = CancellationToken()
        timer = threading.Timer(0.2, token.cancel, args=("deadline exceeded",))
        timer.start()
        started = time.monotonic()

        try:
            with pytest.raises(QueryCancelledError):
                queries.execute_coach_query(
                    "SELECT SUM(range % 7) AS total FROM range(100000000000)", token
                )
        finally:
            timer.cancel()

        assert time.monotonic() - started < 30


def test_to_json_scalar_nested() -> None:
    assert to_json_scalar([1, {"a": None}]) == [1, {"a": None}]
    assert to_json_scalar(float("nan")) is None
    assert to_json_scalar(b"\x01\x02") == "0102"
    assert to_json_scalar(timedelta(minutes=5)) == "0:05:00"


def test_save_and_read_chat_logs(queries: HoopsQueries) -> None:
    queries.save_chat_log(
        AuditRecord(
            user_id="coach-1",
            question="Average points?",
            thought="Average team points.",
            final_sql="SELECT 1",
            answer="78 points",
            num_iterations=2,
            result_type="data",
        )
    )
    queries.save_chat_log(
        AuditRecord(
            user_id="coach-2",
            question="Hello",
            thought="Greeting.",
            final_sql=None,
            answer="Hi",
            num_iterations=1,
            result_type="conversational",
        )
    )

    all_logs = queries.get_chat_logs()
    coach_logs = queries.get_chat_logs(user_id="coach-1")

    assert len(all_logs) == 2
    assert len(coach_logs) == 1
    row = coach_logs.iloc[0]
    assert row["question"] == "Average points?"
    assert row["response"] == "78 points"
    assert row["final_sql"] == "SELECT 1"
    assert row["num_iterations"] == 2


def test_get_table_counts(queries: HoopsQueries) -> None:
    counts = queries.get_table_counts()

    assert counts["teams"] == 3
    assert counts["games"] == 2
    assert counts["stats_team_games"] == 2
    assert counts["shots"] == 0
