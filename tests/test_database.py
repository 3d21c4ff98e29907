"""Tests for database schema creation and write helpers."""

from datetime import datetime
from pathlib import Path

import duckdb
import pytest

from hoops_analytics.data.database import HoopsDatabase, open_coach_database


@pytest.fixture
def test_db(tmp_path: Path) -> HoopsDatabase:
    """Create a temporary league database."""
    db_path = tmp_path / "test.duckdb"
    db = HoopsDatabase(str(db_path))
    db.create_league_schema()
    yield db
    db.close()


@pytest.fixture
def test_accounts_db(tmp_path: Path) -> HoopsDatabase:
    """Create a temporary accounts database."""
    db = HoopsDatabase(str(tmp_path / "accounts.duckdb"))
    db.create_accounts_schema()
    yield db
    db.close()


def _table_names(db: HoopsDatabase) -> set:
    rows = db.fetch_all(
        "SELECT table_name FROM information_schema.tables WHERE table_schema = 'main'"
    )
    return {row[0] for row in rows}


def test_league_schema_creates_only_league_tables(test_db: HoopsDatabase) -> None:
    """Coach SQL runs against this file, so no account data may live in it."""
    assert _table_names(test_db) == {
        "teams",
        "players",
        "games",
        "stats_player_games",
        "stats_team_games",
        "play_by_play",
        "shots",
    }


def test_accounts_schema_creates_account_tables(test_accounts_db: HoopsDatabase) -> None:
    assert _table_names(test_accounts_db) == {"users", "user_sessions", "hoops_ai_logs"}


def test_create_schema_is_idempotent(
    test_db: HoopsDatabase, test_accounts_db: HoopsDatabase
) -> None:
    """Running schema creation twice should not fail."""
    test_db.create_league_schema()
    test_accounts_db.create_accounts_schema()


def test_stats_team_games_has_no_points_column(test_db: HoopsDatabase) -> None:
    """Team points are derived from makes, never stored."""
    rows = test_db.fetch_all(
        "SELECT column_name FROM information_schema.columns "
        "WHERE table_name = 'stats_team_games'"
    )
    columns = {row[0] for row in rows}

    assert "points" not in columns
    assert {"t2_made", "t3_made", "ft_made"} <= columns


def test_game_status_is_constrained(test_db: HoopsDatabase) -> None:
    test_db.insert_team({"id": 1, "name": "A"})
    test_db.insert_team({"id": 2, "name": "B"})

    with pytest.raises(duckdb.Error):
        test_db.insert_game(
            {
                "id": 1,
                "date": datetime(2025, 1, 1),
                "home_team_id": 1,
                "away_team_id": 2,
                "status": "POSTPONED",
            }
        )


def test_insert_game_defaults_to_scheduled(test_db: HoopsDatabase) -> None:
    test_db.insert_team({"id": 1, "name": "A"})
    test_db.insert_team({"id": 2, "name": "B"})
    test_db.insert_game(
        {"id": 1, "date": datetime(2025, 1, 1), "home_team_id": 1, "away_team_id": 2}
    )

    assert test_db.fetch_one("SELECT status FROM games WHERE id = 1") == ("SCHEDULED",)


def test_bulk_insert_player_stats_assigns_ids(test_db: HoopsDatabase) -> None:
    test_db.insert_team({"id": 1, "name": "A"})
    test_db.insert_team({"id": 2, "name": "B"})
    test_db.insert_player({"id": 10, "name": "Guard", "current_team_id": 1})
    test_db.insert_player({"id": 11, "name": "Center", "current_team_id": 1})
    test_db.insert_game(
        {
            "id": 1,
            "date": datetime(2025, 1, 1),
            "home_team_id": 1,
            "away_team_id": 2,
            "status": "PROCESSED",
        }
    )

    test_db.bulk_insert_player_stats(
        [
            {"game_id": 1, "player_id": 10, "team_id": 1, "points": 12, "minutes": "25:10"},
            {"game_id": 1, "player_id": 11, "team_id": 1, "points": 8, "starter": True},
        ]
    )

    rows = test_db.fetch_all(
        "SELECT id, player_id, points FROM stats_player_games ORDER BY player_id"
    )
    assert [row[1:] for row in rows] == [(10, 12), (11, 8)]
    assert rows[0][0] != rows[1][0]


def test_bulk_insert_empty_list_is_noop(test_db: HoopsDatabase) -> None:
    test_db.bulk_insert_player_stats([])
    test_db.bulk_insert_team_stats([])

    assert test_db.fetch_one("SELECT COUNT(*) FROM stats_team_games") == (0,)


def test_audit_log_ids_are_generated(test_accounts_db: HoopsDatabase) -> None:
    test_accounts_db.execute_query(
        "INSERT INTO hoops_ai_logs (user_id, question) VALUES (?, ?)", ["u", "q1"]
    )
    test_accounts_db.execute_query(
        "INSERT INTO hoops_ai_logs (user_id, question) VALUES (?, ?)", ["u", "q2"]
    )

    rows = test_accounts_db.fetch_all("SELECT id, created_at FROM hoops_ai_logs ORDER BY id")

    assert [row[0] for row in rows] == [1, 2]
    assert all(row[1] is not None for row in rows)


def test_cursor_is_independent_of_shared_connection(test_db: HoopsDatabase) -> None:
    test_db.insert_team({"id": 1, "name": "A"})

    cursor = test_db.cursor()
    try:
        assert cursor.execute("SELECT name FROM teams").fetchall() == [("A",)]
    finally:
        cursor.close()

    assert test_db.fetch_one("SELECT COUNT(*) FROM teams") == (1,)


class TestCoachDatabase:
    """The league file as coach SQL sees it."""

    def test_opened_read_only_and_sandboxed(self, coach_db: HoopsDatabase) -> None:
        assert coach_db.read_only is True
        assert coach_db.sandboxed is True
        assert coach_db.fetch_one("SELECT COUNT(*) FROM teams") == (3,)

    def test_writes_are_rejected(self, coach_db: HoopsDatabase) -> None:
        with pytest.raises(duckdb.Error):
            coach_db.execute_query("INSERT INTO teams (id, name) VALUES (1, 'Ghost')")

    def test_copy_to_file_is_rejected(self, coach_db: HoopsDatabase, tmp_path: Path) -> None:
        target = tmp_path / "teams.csv"

        with pytest.raises(duckdb.Error):
            coach_db.execute_query(f"COPY (SELECT * FROM teams) TO '{target}'")

        assert not target.exists()

    def test_reading_files_is_rejected(self, coach_db: HoopsDatabase, tmp_path: Path) -> None:
        source = tmp_path / "secrets.csv"
        source.write_text("token\nvalid-token\n")

        with pytest.raises(duckdb.Error):
            coach_db.fetch_all(f"SELECT * FROM read_csv('{source}')")

    def test_attaching_another_file_is_rejected(
        self, coach_db: HoopsDatabase, test_accounts_db: HoopsDatabase
    ) -> None:
        with pytest.raises(duckdb.Error):
            coach_db.execute_query(f"ATTACH '{test_accounts_db.db_path}' AS accounts")

    def test_configuration_is_locked(self, coach_db: HoopsDatabase) -> None:
        with pytest.raises(duckdb.Error):
            coach_db.execute_query("SET enable_external_access = true")

    def test_missing_file_is_created_empty(self, tmp_path: Path) -> None:
        db_path = tmp_path / "new" / "league.duckdb"

        db = open_coach_database(str(db_path))
        try:
            assert db_path.exists()
            assert db.read_only is True
            assert db.fetch_one("SELECT COUNT(*) FROM games") == (0,)
        finally:
            db.close()

    def test_in_memory_database_is_sandboxed(self) -> None:
        db = open_coach_database(":memory:")
        try:
            assert db.sandboxed is True
            assert db.fetch_one("SELECT COUNT(*) FROM teams") == (0,)
            with pytest.raises(duckdb.Error):
                db.fetch_all("SELECT * FROM read_csv('/etc/hosts')")
        finally:
            db.close()
