"""Database connection and schema management for basketball league data.

Two DuckDB files back the chat service. The league file holds teams, players,
games and box scores; it is the only data coach SQL can see, through a
read-only connection with external access disabled. The accounts file holds
coach accounts, bearer sessions and the chat audit log.
"""

import logging
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import duckdb

logger = logging.getLogger(__name__)


# Connection settings for coach SQL: no files, URLs, extensions or ATTACH,
# and no SET that could turn them back on.
SANDBOX_CONFIG: Dict[str, Any] = {
    "enable_external_access": False,
    "lock_configuration": True,
}


class HoopsDatabase:
    """Manages one DuckDB file: connection, locking and schema."""

    def __init__(
        self,
        db_path: str = "data/hoops_data.duckdb",
        read_only: bool = False,
        sandboxed: bool = False,
    ) -> None:
        """Initialize database connection.

        Args:
            db_path: Path to the DuckDB database file (":memory:" for tests)
            read_only: Whether to open in read-only mode
            sandboxed: Whether to connect with SANDBOX_CONFIG
        """
        self.db_path = db_path
        self.read_only = read_only
        self.sandboxed = sandboxed
        self.connection: Optional[duckdb.DuckDBPyConnection] = None
        self._lock = threading.RLock()  # Use reentrant lock to avoid deadlocks

    @contextmanager
    def get_connection(self):
        """Context manager for the shared connection with proper locking.

        Yields:
            DuckDB connection object
        """
        with self._lock:
            conn = self.connect()
            yield conn

    def connect(self) -> duckdb.DuckDBPyConnection:
        """Establish database connection.

        Returns:
            DuckDB connection object
        """
        if self.connection is None:
            with self._lock:
                if self.connection is None:
                    config = dict(SANDBOX_CONFIG) if self.sandboxed else {}
                    self.connection = duckdb.connect(
                        self.db_path, read_only=self.read_only, config=config
                    )
                    mode = "read-only" if self.read_only else "read-write"
                    if self.sandboxed:
                        mode += ", sandboxed"
                    logger.info(f"Connected to database: {self.db_path} ({mode} mode)")
        return self.connection

    def cursor(self) -> duckdb.DuckDBPyConnection:
        """Open a dedicated cursor on the shared database.

        Cursors run independently of the shared connection, so a long coach
        query can be interrupted without touching other users of the lock.
        """
        with self._lock:
            return self.connect().cursor()

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            if self.connection:
                self.connection.close()
                self.connection = None
                logger.info("Database connection closed")

    def execute_query(self, query: str, parameters: Optional[List[Any]] = None) -> None:
        """Execute a SQL statement (for INSERT/UPDATE/DELETE operations)."""
        with self.get_connection() as conn:
            conn.execute(query, parameters or [])

    def fetch_all(
        self, query: str, parameters: Optional[List[Any]] = None
    ) -> List[Tuple]:
        """Execute query and fetch all results."""
        with self.get_connection() as conn:
            return conn.execute(query, parameters or []).fetchall()

    def fetch_one(
        self, query: str, parameters: Optional[List[Any]] = None
    ) -> Optional[Tuple]:
        """Execute query and fetch one result."""
        with self.get_connection() as conn:
            return conn.execute(query, parameters or []).fetchone()

    def create_league_schema(self) -> None:
        """Create the league tables (the only tables coach SQL can read)."""
        logger.info("Creating league schema...")

        self._create_sequences()

        # Tables in dependency order
        self._create_teams_table()
        self._create_players_table()
        self._create_games_table()
        self._create_stats_player_games_table()
        self._create_stats_team_games_table()
        self._create_play_by_play_table()
        self._create_shots_table()

        logger.info("League schema created successfully")

    def create_accounts_schema(self) -> None:
        """Create the coach account, session and audit log tables."""
        logger.info("Creating accounts schema...")

        with self.get_connection() as conn:
            conn.execute("CREATE SEQUENCE IF NOT EXISTS hoops_ai_logs_id_seq START 1;")

        self._create_users_table()
        self._create_user_sessions_table()
        self._create_hoops_ai_logs_table()

        logger.info("Accounts schema created successfully")

    def _create_sequences(self) -> None:
        """Create sequences for auto-increment primary keys."""
        sequences = [
            "CREATE SEQUENCE IF NOT EXISTS stats_player_games_id_seq START 1;",
            "CREATE SEQUENCE IF NOT EXISTS stats_team_games_id_seq START 1;",
            "CREATE SEQUENCE IF NOT EXISTS play_by_play_id_seq START 1;",
            "CREATE SEQUENCE IF NOT EXISTS shots_id_seq START 1;",
        ]

        with self.get_connection() as conn:
            for seq_query in sequences:
                conn.execute(seq_query)

    def _create_teams_table(self) -> None:
        query = """
        CREATE TABLE IF NOT EXISTS teams (
            id INTEGER PRIMARY KEY,
            name VARCHAR NOT NULL,
            logo_url VARCHAR
        );
        """
        with self.get_connection() as conn:
            conn.execute(query)

    def _create_players_table(self) -> None:
        query = """
        CREATE TABLE IF NOT EXISTS players (
            id INTEGER PRIMARY KEY,
            name VARCHAR NOT NULL,
            current_team_id INTEGER REFERENCES teams(id),
            jersey_number INTEGER
        );

        CREATE INDEX IF NOT EXISTS idx_players_team ON players(current_team_id);
        """
        with self.get_connection() as conn:
            conn.execute(query)

    def _create_games_table(self) -> None:
        """Create the games table (status is SCHEDULED or PROCESSED)."""
        query = """
        CREATE TABLE IF NOT EXISTS games (
            id INTEGER PRIMARY KEY,
            date TIMESTAMP NOT NULL,
            home_team_id INTEGER NOT NULL REFERENCES teams(id),
            away_team_id INTEGER NOT NULL REFERENCES teams(id),
            home_score INTEGER,
            away_score INTEGER,
            status VARCHAR NOT NULL DEFAULT 'SCHEDULED',
            matchday INTEGER,

            CHECK (home_team_id != away_team_id),
            CHECK (status IN ('SCHEDULED', 'PROCESSED'))
        );

        CREATE INDEX IF NOT EXISTS idx_games_status_date ON games(status, date);
        """
        with self.get_connection() as conn:
            conn.execute(query)

    def _create_stats_player_games_table(self) -> None:
        query = """
        CREATE TABLE IF NOT EXISTS stats_player_games (
            id BIGINT PRIMARY KEY,
            game_id INTEGER NOT NULL REFERENCES games(id),
            player_id INTEGER NOT NULL REFERENCES players(id),
            team_id INTEGER NOT NULL REFERENCES teams(id),
            minutes VARCHAR,
            points INTEGER DEFAULT 0,
            t2_made INTEGER DEFAULT 0,
            t2_att INTEGER DEFAULT 0,
            t3_made INTEGER DEFAULT 0,
            t3_att INTEGER DEFAULT 0,
            ft_made INTEGER DEFAULT 0,
            ft_att INTEGER DEFAULT 0,
            reb_off INTEGER DEFAULT 0,
            reb_def INTEGER DEFAULT 0,
            reb_tot INTEGER DEFAULT 0,
            assists INTEGER DEFAULT 0,
            steals INTEGER DEFAULT 0,
            turnovers INTEGER DEFAULT 0,
            blocks_for INTEGER DEFAULT 0,
            blocks_against INTEGER DEFAULT 0,
            fouls_comm INTEGER DEFAULT 0,
            fouls_rec INTEGER DEFAULT 0,
            rating INTEGER DEFAULT 0,
            plus_minus INTEGER DEFAULT 0,
            starter BOOLEAN DEFAULT FALSE
        );

        CREATE INDEX IF NOT EXISTS idx_spg_team ON stats_player_games(team_id);
        CREATE INDEX IF NOT EXISTS idx_spg_game ON stats_player_games(game_id);
        """
        with self.get_connection() as conn:
            conn.execute(query)

    def _create_stats_team_games_table(self) -> None:
        """Create the team box score table (no points column, derived from makes)."""
        query = """
        CREATE TABLE IF NOT EXISTS stats_team_games (
            id BIGINT PRIMARY KEY,
            game_id INTEGER NOT NULL REFERENCES games(id),
            team_id INTEGER NOT NULL REFERENCES teams(id),
            t2_pct DOUBLE,
            t3_pct DOUBLE,
            ft_pct DOUBLE,
            fg_made INTEGER DEFAULT 0,
            fg_att INTEGER DEFAULT 0,
            fg_pct DOUBLE,
            t2_made INTEGER DEFAULT 0,
            t2_att INTEGER DEFAULT 0,
            t3_made INTEGER DEFAULT 0,
            t3_att INTEGER DEFAULT 0,
            ft_made INTEGER DEFAULT 0,
            ft_att INTEGER DEFAULT 0,
            reb_off INTEGER DEFAULT 0,
            reb_def INTEGER DEFAULT 0,
            reb_tot INTEGER DEFAULT 0,
            assists INTEGER DEFAULT 0,
            steals INTEGER DEFAULT 0,
            turnovers INTEGER DEFAULT 0,
            blocks_for INTEGER DEFAULT 0,
            blocks_against INTEGER DEFAULT 0,
            fouls_comm INTEGER DEFAULT 0,
            fouls_rec INTEGER DEFAULT 0
        );

        CREATE INDEX IF NOT EXISTS idx_stg_team ON stats_team_games(team_id);
        """
        with self.get_connection() as conn:
            conn.execute(query)

    def _create_play_by_play_table(self) -> None:
        query = """
        CREATE TABLE IF NOT EXISTS play_by_play (
            id BIGINT PRIMARY KEY,
            game_id INTEGER NOT NULL REFERENCES games(id),
            quarter INTEGER,
            minute VARCHAR,
            team_id INTEGER REFERENCES teams(id),
            player_id INTEGER REFERENCES players(id),
            action_type VARCHAR,
            home_score_partial INTEGER,
            away_score_partial INTEGER,
            action_value INTEGER DEFAULT 0,
            stat_count INTEGER DEFAULT 0,
            free_throws_awarded INTEGER DEFAULT 0
        );

        CREATE INDEX IF NOT EXISTS idx_pbp_game_quarter ON play_by_play(game_id, quarter);
        """
        with self.get_connection() as conn:
            conn.execute(query)

    def _create_shots_table(self) -> None:
        query = """
        CREATE TABLE IF NOT EXISTS shots (
            id BIGINT PRIMARY KEY,
            game_id INTEGER NOT NULL REFERENCES games(id),
            player_id INTEGER REFERENCES players(id),
            team_id INTEGER REFERENCES teams(id),
            x_coord DOUBLE,
            y_coord DOUBLE,
            made BOOLEAN,
            quarter INTEGER,
            zone VARCHAR,
            pbp_id BIGINT
        );
        """
        with self.get_connection() as conn:
            conn.execute(query)

    def _create_users_table(self) -> None:
        """Create the coach accounts table.

        team_id points at teams in the league file and is NULL until assigned.
        """
        query = """
        CREATE TABLE IF NOT EXISTS users (
            id VARCHAR PRIMARY KEY,
            email VARCHAR NOT NULL,
            team_id INTEGER
        );
        """
        with self.get_connection() as conn:
            conn.execute(query)

    def _create_user_sessions_table(self) -> None:
        query = """
        CREATE TABLE IF NOT EXISTS user_sessions (
            token VARCHAR PRIMARY KEY,
            user_id VARCHAR NOT NULL REFERENCES users(id),
            expires_at TIMESTAMP NOT NULL
        );
        """
        with self.get_connection() as conn:
            conn.execute(query)

    def _create_hoops_ai_logs_table(self) -> None:
        """Create the chat audit log table."""
        query = """
        CREATE TABLE IF NOT EXISTS hoops_ai_logs (
            id BIGINT PRIMARY KEY DEFAULT nextval('hoops_ai_logs_id_seq'),
            user_id VARCHAR,
            question TEXT NOT NULL,
            thought TEXT,
            final_sql TEXT,
            response TEXT,
            num_iterations INTEGER,
            result_type VARCHAR,
            created_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
        );
        """
        with self.get_connection() as conn:
            conn.execute(query)

    def insert_team(self, team_data: Dict[str, Any]) -> None:
        """Insert a team record.

        Args:
            team_data: Dictionary with id, name and optional logo_url
        """
        query = "INSERT INTO teams (id, name, logo_url) VALUES (?, ?, ?)"
        self.execute_query(
            query, [team_data["id"], team_data["name"], team_data.get("logo_url")]
        )

    def insert_player(self, player_data: Dict[str, Any]) -> None:
        """Insert a player record."""
        query = """
        INSERT INTO players (id, name, current_team_id, jersey_number)
        VALUES (?, ?, ?, ?)
        """
        self.execute_query(
            query,
            [
                player_data["id"],
                player_data["name"],
                player_data.get("current_team_id"),
                player_data.get("jersey_number"),
            ],
        )

    def insert_game(self, game_data: Dict[str, Any]) -> None:
        """Insert a game record.

        Args:
            game_data: Dictionary with game information; status defaults to
                SCHEDULED
        """
        query = """
        INSERT INTO games (
            id, date, home_team_id, away_team_id, home_score, away_score,
            status, matchday
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """
        self.execute_query(
            query,
            [
                game_data["id"],
                game_data["date"],
                game_data["home_team_id"],
                game_data["away_team_id"],
                game_data.get("home_score"),
                game_data.get("away_score"),
                game_data.get("status", "SCHEDULED"),
                game_data.get("matchday"),
            ],
        )

    def bulk_insert_player_stats(self, stats_data: List[Dict[str, Any]]) -> None:
        """Bulk insert player box score rows.

        Args:
            stats_data: List of per-player, per-game stat dictionaries
        """
        if not stats_data:
            return

        columns = [
            "game_id", "player_id", "team_id", "minutes", "points",
            "t2_made", "t2_att", "t3_made", "t3_att", "ft_made", "ft_att",
            "reb_off", "reb_def", "reb_tot", "assists", "steals", "turnovers",
            "blocks_for", "blocks_against", "fouls_comm", "fouls_rec",
            "rating", "plus_minus", "starter",
        ]
        self._bulk_insert("stats_player_games", columns, stats_data)

    def bulk_insert_team_stats(self, stats_data: List[Dict[str, Any]]) -> None:
        """Bulk insert team box score rows."""
        if not stats_data:
            return

        columns = [
            "game_id", "team_id", "t2_pct", "t3_pct", "ft_pct",
            "fg_made", "fg_att", "fg_pct", "t2_made", "t2_att",
            "t3_made", "t3_att", "ft_made", "ft_att", "reb_off", "reb_def",
            "reb_tot", "assists", "steals", "turnovers", "blocks_for",
            "blocks_against", "fouls_comm", "fouls_rec",
        ]
        self._bulk_insert("stats_team_games", columns, stats_data)

    def _bulk_insert(
        self, table: str, columns: List[str], rows: List[Dict[str, Any]]
    ) -> None:
        """Insert rows, drawing ids from the table's sequence."""
        placeholders = ", ".join("?" for _ in columns)
        query = f"""
        INSERT INTO {table} (id, {", ".join(columns)})
        VALUES (nextval('{table}_id_seq'), {placeholders})
        """
        values = [[row.get(column) for column in columns] for row in rows]

        with self.get_connection() as conn:
            conn.executemany(query, values)

    def insert_user(
        self, user_id: str, email: str, team_id: Optional[int] = None
    ) -> None:
        """Insert a coach account."""
        self.execute_query(
            "INSERT INTO users (id, email, team_id) VALUES (?, ?, ?)",
            [user_id, email, team_id],
        )

    def insert_session(self, token: str, user_id: str, expires_at: Any) -> None:
        """Insert a bearer session token for a coach account."""
        self.execute_query(
            "INSERT INTO user_sessions (token, user_id, expires_at) VALUES (?, ?, ?)",
            [token, user_id, expires_at],
        )


def open_coach_database(db_path: str) -> HoopsDatabase:
    """Open the league file for the chat service.

    The returned database is read-only and sandboxed, so its cursors are safe
    to hand model-generated SQL. A missing league file is created empty first.
    An in-memory database cannot be read-only; it is sandboxed only.

    Args:
        db_path: League database path, or ":memory:"

    Returns:
        Sandboxed HoopsDatabase
    """
    if db_path == ":memory:":
        league = HoopsDatabase(db_path, sandboxed=True)
        league.create_league_schema()
        return league

    if not Path(db_path).exists():
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
        writer = HoopsDatabase(db_path)
        try:
            writer.create_league_schema()
        finally:
            writer.close()
        logger.info(f"Created empty league database at {db_path}")

    return HoopsDatabase(db_path, read_only=True, sandboxed=True)
