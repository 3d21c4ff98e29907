"""Shared fixtures for the chat pipeline tests."""

from datetime import datetime, timedelta
from pathlib import Path

import pytest

from hoops_analytics.data.database import HoopsDatabase, open_coach_database
from tests.fakes import NOW, OPPONENT_TEAM_ID, OTHER_TEAM_ID, USER_TEAM_ID


def _load_league(db: HoopsDatabase) -> None:
    """Teams 50 (coach), 77 and 999, two played games, no scheduled games."""
    db.create_league_schema()

    db.insert_team({"id": USER_TEAM_ID, "name": "Valencia Hoops"})
    db.insert_team({"id": OPPONENT_TEAM_ID, "name": "Costa Blanca BC"})
    db.insert_team({"id": OTHER_TEAM_ID, "name": "Northern Lights"})

    db.insert_player({"id": 1, "name": "Marc Ferrer", "current_team_id": USER_TEAM_ID})
    db.insert_player({"id": 2, "name": "Hugo Blasco", "current_team_id": OPPONENT_TEAM_ID})

    db.insert_game(
        {
            "id": 1,
            "date": NOW - timedelta(days=7),
            "home_team_id": USER_TEAM_ID,
            "away_team_id": OTHER_TEAM_ID,
            "home_score": 80,
            "away_score": 72,
            "status": "PROCESSED",
        }
    )
    db.insert_game(
        {
            "id": 2,
            "date": NOW - timedelta(days=1),
            "home_team_id": OPPONENT_TEAM_ID,
            "away_team_id": USER_TEAM_ID,
            "home_score": 70,
            "away_score": 76,
            "status": "PROCESSED",
        }
    )
    db.bulk_insert_team_stats(
        [
            {"game_id": 1, "team_id": USER_TEAM_ID, "t2_made": 25, "t3_made": 8, "ft_made": 6},
            {"game_id": 2, "team_id": USER_TEAM_ID, "t2_made": 22, "t3_made": 7, "ft_made": 11},
        ]
    )


@pytest.fixture
def league_db(tmp_path: Path) -> HoopsDatabase:
    """Writable league database, for tests that add games as they go."""
    db = HoopsDatabase(db_path=str(tmp_path / "league.duckdb"))
    _load_league(db)

    yield db

    db.close()


@pytest.fixture
def coach_db(tmp_path: Path) -> HoopsDatabase:
    """The same league, reopened read-only and sandboxed as the chat service does."""
    db_path = str(tmp_path / "coach_league.duckdb")
    writer = HoopsDatabase(db_path=db_path)
    _load_league(writer)
    writer.close()

    db = open_coach_database(db_path)

    yield db

    db.close()


@pytest.fixture
def accounts_db(tmp_path: Path) -> HoopsDatabase:
    """Accounts database with a coach, a teamless coach and three sessions."""
    db = HoopsDatabase(db_path=str(tmp_path / "accounts.duckdb"))
    db.create_accounts_schema()

    db.insert_user("coach-1", "coach@example.com", USER_TEAM_ID)
    db.insert_user("coach-2", "newcoach@example.com", None)
    db.insert_session("valid-token", "coach-1", datetime.now() + timedelta(days=1))
    db.insert_session("expired-token", "coach-1", datetime.now() - timedelta(days=1))
    db.insert_session("teamless-token", "coach-2", datetime.now() + timedelta(days=1))

    yield db

    db.close()
