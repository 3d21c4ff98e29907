"""Create a small demo league database for local runs of the chat service.

Creates the league file with three teams, a handful of players, two played
games with box scores and one scheduled game (the next opponent), and the
accounts file with a coach account and its bearer session token.

Usage:
    python scripts/seed_demo_data.py                     # Uses HOOPS_DB_PATH
    python scripts/seed_demo_data.py --db /tmp/demo.duckdb --accounts-db /tmp/acc.duckdb
    python scripts/seed_demo_data.py --force             # Recreate both files
"""

import argparse
import logging
import sys
from datetime import datetime, timedelta
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

from hoops_analytics.config import Config
from hoops_analytics.data.database import HoopsDatabase
from hoops_analytics.data.queries import HoopsQueries

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

DEMO_USER_ID = "coach-demo"
DEMO_TOKEN = "demo-token"
USER_TEAM_ID = 50
OPPONENT_TEAM_ID = 77
OTHER_TEAM_ID = 999

TEAMS = [
    {"id": USER_TEAM_ID, "name": "Valencia Hoops"},
    {"id": OPPONENT_TEAM_ID, "name": "Costa Blanca BC"},
    {"id": OTHER_TEAM_ID, "name": "Northern Lights"},
]

PLAYERS = [
    {"id": 1, "name": "Marc Ferrer", "current_team_id": USER_TEAM_ID, "jersey_number": 7},
    {"id": 2, "name": "Dani Ortega", "current_team_id": USER_TEAM_ID, "jersey_number": 11},
    {"id": 3, "name": "Leo Navarro", "current_team_id": USER_TEAM_ID, "jersey_number": 23},
    {"id": 4, "name": "Hugo Blasco", "current_team_id": OPPONENT_TEAM_ID, "jersey_number": 5},
    {"id": 5, "name": "Pablo Cano", "current_team_id": OPPONENT_TEAM_ID, "jersey_number": 14},
    {"id": 6, "name": "Erik Lund", "current_team_id": OTHER_TEAM_ID, "jersey_number": 9},
]


def _player_line(game_id: int, player: dict, points: int, t3_made: int, ft_made: int) -> dict:
    """Build a plausible box score line worth roughly `points`."""
    t2_made = max(0, (points - 3 * t3_made - ft_made) // 2)
    return {
        "game_id": game_id,
        "player_id": player["id"],
        "team_id": player["current_team_id"],
        "minutes": f"{20 + points % 15}:00",
        "points": 2 * t2_made + 3 * t3_made + ft_made,
        "t2_made": t2_made,
        "t2_att": t2_made * 2,
        "t3_made": t3_made,
        "t3_att": t3_made * 3,
        "ft_made": ft_made,
        "ft_att": ft_made + 1,
        "reb_off": 1,
        "reb_def": 4,
        "reb_tot": 5,
        "assists": 3,
        "steals": 1,
        "turnovers": 2,
        "rating": points + 3,
        "plus_minus": 4,
        "starter": True,
    }


def _team_line(game_id: int, team_id: int, lines: list[dict]) -> dict:
    """Aggregate player lines into a team box score row."""
    totals = {
        key: sum(line[key] for line in lines)
        for key in ("t2_made", "t2_att", "t3_made", "t3_att", "ft_made", "ft_att",
                    "reb_off", "reb_def", "reb_tot", "assists", "steals", "turnovers")
    }
    fg_made = totals["t2_made"] + totals["t3_made"]
    fg_att = totals["t2_att"] + totals["t3_att"]
    return {
        "game_id": game_id,
        "team_id": team_id,
        "fg_made": fg_made,
        "fg_att": fg_att,
        "fg_pct": round(fg_made / fg_att * 100, 1) if fg_att else None,
        "t2_pct": round(totals["t2_made"] / totals["t2_att"] * 100, 1) if totals["t2_att"] else None,
        "t3_pct": round(totals["t3_made"] / totals["t3_att"] * 100, 1) if totals["t3_att"] else None,
        "ft_pct": round(totals["ft_made"] / totals["ft_att"] * 100, 1) if totals["ft_att"] else None,
        **totals,
    }


def seed(database: HoopsDatabase, accounts: HoopsDatabase, now: datetime) -> None:
    """Load the demo league and the demo coach into empty databases."""
    database.create_league_schema()
    accounts.create_accounts_schema()

    for team in TEAMS:
        database.insert_team(team)
    for player in PLAYERS:
        database.insert_player(player)

    players_by_team: dict[int, list[dict]] = {}
    for player in PLAYERS:
        players_by_team.setdefault(player["current_team_id"], []).append(player)

    played = [
        (1, now - timedelta(days=14), USER_TEAM_ID, OTHER_TEAM_ID, (18, 2, 4)),
        (2, now - timedelta(days=7), OPPONENT_TEAM_ID, USER_TEAM_ID, (22, 3, 2)),
    ]
    for game_id, date, home_id, away_id, (points, t3_made, ft_made) in played:
        lines_by_team = {
            team_id: [
                _player_line(game_id, player, points - 4 * idx, t3_made, ft_made)
                for idx, player in enumerate(players_by_team[team_id])
            ]
            for team_id in (home_id, away_id)
        }
        score = {
            team_id: sum(line["points"] for line in lines)
            for team_id, lines in lines_by_team.items()
        }

        database.insert_game(
            {
                "id": game_id,
                "date": date,
                "home_team_id": home_id,
                "away_team_id": away_id,
                "home_score": score[home_id],
                "away_score": score[away_id],
                "status": "PROCESSED",
                "matchday": game_id,
            }
        )
        for team_id, lines in lines_by_team.items():
            database.bulk_insert_player_stats(lines)
            database.bulk_insert_team_stats([_team_line(game_id, team_id, lines)])

    database.insert_game(
        {
            "id": 3,
            "date": now + timedelta(days=3),
            "home_team_id": USER_TEAM_ID,
            "away_team_id": OPPONENT_TEAM_ID,
            "status": "SCHEDULED",
            "matchday": 3,
        }
    )

    accounts.insert_user(DEMO_USER_ID, "coach@example.com", USER_TEAM_ID)
    accounts.insert_session(DEMO_TOKEN, DEMO_USER_ID, now + timedelta(days=30))


def _prepare(db_path: Path, force: bool) -> bool:
    """Make room for a fresh database file; False if one exists and force is off."""
    if db_path.exists():
        if not force:
            logger.error(f"{db_path} already exists (use --force to recreate)")
            return False
        db_path.unlink()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    return True


def main() -> int:
    parser = argparse.ArgumentParser(description="Create the demo league database")
    parser.add_argument("--db", default=Config.DATABASE_PATH, help="League database path")
    parser.add_argument(
        "--accounts-db",
        default=Config.ACCOUNTS_DATABASE_PATH,
        help="Accounts and audit log database path",
    )
    parser.add_argument(
        "--force", action="store_true", help="Delete existing database files first"
    )
    args = parser.parse_args()

    db_path = Path(args.db)
    accounts_path = Path(args.accounts_db)
    if db_path.resolve() == accounts_path.resolve():
        logger.error("League and accounts databases must be different files")
        return 1
    if not (_prepare(db_path, args.force) and _prepare(accounts_path, args.force)):
        return 1

    database = HoopsDatabase(str(db_path))
    accounts = HoopsDatabase(str(accounts_path))
    try:
        seed(database, accounts, datetime.now())
        counts = HoopsQueries(database, accounts).get_table_counts()
    finally:
        database.close()
        accounts.close()

    for table, count in counts.items():
        logger.info(f"  {table}: {count} rows")
    logger.info(f"Demo league ready at {db_path}, accounts at {accounts_path}")
    logger.info(f"Bearer token for user {DEMO_USER_ID}: {DEMO_TOKEN}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
