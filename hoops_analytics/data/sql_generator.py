"""SQL generation for coach questions.

Builds the system prompt (schema, allowed team scope, metric formulas and
formatting rules), asks the completion oracle for a JSON reply and parses it
into a fully populated SQLResponse. When the model refuses an own-team
aggregate question that its scope explicitly permits, one stricter correction
call is made.
"""

import json
import logging
import re
import time
from dataclasses import dataclass
from typing import Any, Optional

from hoops_analytics.config import Config, get_chat_messages
from hoops_analytics.data.cancellation import CancellationToken
from hoops_analytics.data.llm_oracle import CompletionOracle
from hoops_analytics.data.sql_guard import TeamScope

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SQLResponse:
    """Parsed generator reply.

    ``sql`` is None for a conversational (non-data) answer.
    """

    sql: Optional[str]
    thought: str
    tactical_context: str


DEFAULT_THOUGHT = "No reasoning available."
DEFAULT_TACTICAL_CONTEXT = "No tactical context available."
PARSE_ERROR_THOUGHT = "Could not process the model response."
EMPTY_REPLY_THOUGHT = "The model returned no content."

_OWN_TEAM_PATTERN = re.compile(
    r"\b(my team|our team|mi equipo|nuestro equipo)\b", re.IGNORECASE
)
_AGGREGATE_PATTERN = re.compile(
    r"\b(averages?|accumulated|totals|stats|statistics|promedios?|acumulad\w*|"
    r"estad[ií]sticas)\b",
    re.IGNORECASE,
)
_REFUSAL_PATTERN = re.compile(
    r"\b(not allowed|cannot|can't|blocked|out of scope|restrict|no permitid|"
    r"no puedo|bloquead|fuera de alcance|restric)",
    re.IGNORECASE,
)

_FENCE_PATTERN = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)

_SYSTEM_PROMPT_TEMPLATE = """\
You are HoopsIQ Analyst, an expert in SQL (DuckDB, PostgreSQL dialect), advanced analytics and basketball tactics.
Your job is to translate coaches' questions into exact, efficient SQL queries.

### 1. SECURITY AND PRIVACY RULES (STRICT)
- Your team id (user_team_id): {user_team_id}
- Next opponent id: {opponent_label}
- ALLOWED SCOPE: you may only read data linked to team ids ({allowed_ids}).
- REFUSAL RULE: if the question explicitly asks for a team or player outside the allowed scope, return "sql": null.
- EXCEPTION: generic questions about "my team's averages", "my history" or "our stats" are ALWAYS valid using user_team_id.
- PERMISSIONS: SELECT statements only. The statement must start with SELECT; do not use WITH clauses, write subqueries in FROM or WHERE instead.

### 2. SCHEMA AND WHEN TO USE EACH TABLE
- teams (id INT PK, name TEXT, logo_url TEXT) -> team names.
- players (id INT PK, name TEXT, current_team_id INT FK, jersey_number INT) -> player names and jersey numbers.
- games (id INT PK, date TIMESTAMP, home_team_id INT FK, away_team_id INT FK, home_score INT, away_score INT, status TEXT, matchday INT)
  -> Played games always need `status = 'PROCESSED'`. Future games have `status = 'SCHEDULED'`.

AGGREGATED STATS (game box scores):
- stats_player_games (id INT PK, game_id INT FK, player_id INT FK, team_id INT FK, minutes TEXT, points INT, t2_made INT, t2_att INT, t3_made INT, t3_att INT, ft_made INT, ft_att INT, reb_off INT, reb_def INT, reb_tot INT, assists INT, steals INT, turnovers INT, blocks_for INT, blocks_against INT, fouls_comm INT, fouls_rec INT, rating INT, plus_minus INT, starter BOOLEAN)
  -> Season averages, top scorers and rebounders, player percentages, player comparisons.
- stats_team_games (id INT PK, game_id INT FK, team_id INT FK, t2_pct FLOAT, t3_pct FLOAT, ft_pct FLOAT, fg_made INT, fg_att INT, fg_pct FLOAT, t2_made INT, t2_att INT, t3_made INT, t3_att INT, ft_made INT, ft_att INT, reb_off INT, reb_def INT, reb_tot INT, assists INT, steals INT, turnovers INT, blocks_for INT, blocks_against INT, fouls_comm INT, fouls_rec INT)
  -> Team averages, overall offense, team vs opponent comparisons.
  -> IMPORTANT: this table has NO 'points' column. Team points are ((t2_made * 2) + (t3_made * 3) + ft_made).

GRANULAR DATA:
- play_by_play (id INT PK, game_id INT FK, quarter INT, minute TEXT, team_id INT FK, player_id INT FK, action_type TEXT, home_score_partial INT, away_score_partial INT, action_value INT, stat_count INT, free_throws_awarded INT)
  -> Required for specific moments ("last quarter", "last 5 minutes", "clutch"), partial stats and concrete actions ("fouls by X in the 3rd quarter", scoring runs). Filter by `quarter` (1-4) or match the `minute` text.
- shots (id INT PK, game_id INT FK, player_id INT FK, team_id INT FK, x_coord FLOAT, y_coord FLOAT, made BOOLEAN, quarter INT, zone TEXT, pbp_id INT FK)
  -> Required for shot locations ("shots from the paint", "corner threes", "hot zones") and efficiency by zone.

### 3. JOIN RECIPES
- Player performance: `stats_player_games spg JOIN players p ON spg.player_id = p.id JOIN games g ON spg.game_id = g.id`
- Shot analysis: `shots s JOIN players p ON s.player_id = p.id JOIN games g ON s.game_id = g.id`
- Quarter/minute detail: `play_by_play pbp JOIN players p ON pbp.player_id = p.id JOIN games g ON pbp.game_id = g.id`

### 4. FORMULAS AND QUERY PATTERNS
Whenever you aggregate (SUM, AVG), use NULLIF to avoid division by zero and ::FLOAT to avoid integer division.
- Never SUM stats_player_games.points while joining play_by_play or shots (cartesian products inflate totals).
- Partial stats ("points in the 3rd quarter", "points before the last quarter") come from play_by_play: SUM(pbp.action_value) filtered by quarter.
- eFG%: `(SUM(fg_made) + 0.5 * SUM(t3_made))::FLOAT / NULLIF(SUM(fg_att), 0)`
- TS%: `SUM(points)::FLOAT / NULLIF(2.0 * (SUM(t2_att + t3_att) + 0.44 * SUM(ft_att)), 0)`
- Standard percentages: `ROUND((SUM(made)::FLOAT / NULLIF(SUM(att), 0)) * 100, 1)`
- Team total points (stats_team_games): `SUM((t2_made * 2) + (t3_made * 3) + ft_made)`
- Team average points (stats_team_games): `AVG((t2_made * 2) + (t3_made * 3) + ft_made)`
- Playing time ('minutes' in stats_player_games) is TEXT formatted 'MM:SS'. Use `minutes LIKE '25:%'` or string comparisons, never `minutes = 25`.
- Booleans ('made' in shots, 'starter' in stats_player_games): use `made = TRUE` or `starter IS TRUE`, never `= 1`.
- Names: match with `ILIKE '%text%'`.
- "Last game": look the id up with a subquery, e.g. `g.id = (SELECT id FROM games WHERE (home_team_id = {user_team_id} OR away_team_id = {user_team_id}) AND status = 'PROCESSED' ORDER BY date DESC LIMIT 1)`.
- A global minute ("minute 25") maps to a quarter assuming 10-minute quarters (minute 25 = quarter 3).
- "Our player" / "my players": always add `p.current_team_id = {user_team_id}` when joining players.
- Fouls committed: `action_type ILIKE '%foul%'`.
- "Best", "top scorer", "most valuable": use averages (AVG(points), AVG(rating)) grouped by player and ordered descending, never MAX() unless a single-game record is asked.

### 5. WRITING RULES
- Never return bare ids. Join to return teams.name and players.name.
- When reporting on the next opponent, select the opponent's teams.name so it can be named.
- Format dates from games.date with strftime(date, '%Y-%m-%d').
- ALWAYS apply the base security filter on the main table: `team_id IN ({allowed_ids})`.

### 6. REQUIRED RESPONSE FORMAT (STRICT JSON)
Return ONLY this JSON object, without markdown fences:
{{
  "thought": "1. Identify intent. 2. Check scope and data types. 3. Design joins and formulas. 4. Build the query.",
  "sql": "Raw SQL here, or null if out of scope or no data is needed.",
  "tactical_context": "Short summary for the coach of what this query answers."
}}"""

_CORRECTION_DIRECTIVE = (
    "\n\nMANDATORY ADDITIONAL INSTRUCTION: if the question asks for averages or "
    "totals of the account's own team ({user_team_id}), you must return valid SQL "
    "within the allowed scope and must not refuse."
)


def build_system_prompt(scope: TeamScope) -> str:
    """Build the generator system prompt for a team scope."""
    opponent_label = (
        str(scope.opponent_team_id) if scope.opponent_team_id is not None else "NONE"
    )
    return _SYSTEM_PROMPT_TEMPLATE.format(
        user_team_id=scope.user_team_id,
        opponent_label=opponent_label,
        allowed_ids=scope.allowed_ids_text,
    )


def strip_json_fence(raw: str) -> str:
    """Remove a ```json fence some models wrap around JSON replies."""
    return _FENCE_PATTERN.sub("", raw).strip()


def parse_sql_response(raw: str) -> SQLResponse:
    """Parse a generator reply, replacing missing or mistyped fields with defaults.

    Never raises. A reply that is not a JSON object becomes a conversational
    response whose tactical context is the raw text.

    Args:
        raw: Raw model reply

    Returns:
        Fully populated SQLResponse
    """
    try:
        parsed: Any = json.loads(strip_json_fence(raw))
    except (TypeError, ValueError):
        parsed = None

    if not isinstance(parsed, dict):
        return SQLResponse(
            sql=None, thought=PARSE_ERROR_THOUGHT, tactical_context=raw or ""
        )

    sql = parsed.get("sql")
    if not isinstance(sql, str) or not sql.strip():
        sql = None

    thought = parsed.get("thought")
    tactical_context = parsed.get("tactical_context")

    return SQLResponse(
        sql=sql,
        thought=thought if isinstance(thought, str) else DEFAULT_THOUGHT,
        tactical_context=(
            tactical_context
            if isinstance(tactical_context, str)
            else DEFAULT_TACTICAL_CONTEXT
        ),
    )


def looks_like_own_team_aggregate(question: str) -> bool:
    """True when the question asks for aggregates of the coach's own team."""
    return bool(
        _OWN_TEAM_PATTERN.search(question) and _AGGREGATE_PATTERN.search(question)
    )


def looks_like_refusal(response: SQLResponse) -> bool:
    """True when a reply has no SQL and its narrative reads as a refusal."""
    if response.sql:
        return False
    return bool(
        _REFUSAL_PATTERN.search(f"{response.thought} {response.tactical_context}")
    )


class SQLGenerator:
    """Turns a coach question into an SQLResponse via a completion oracle."""

    def __init__(
        self,
        oracle: CompletionOracle,
        temperature: float = Config.GENERATION_TEMPERATURE,
        correction_temperature: float = Config.CORRECTION_TEMPERATURE,
    ) -> None:
        self.oracle = oracle
        self.temperature = temperature
        self.correction_temperature = correction_temperature

    def generate(
        self,
        question: str,
        scope: TeamScope,
        cancel_token: Optional[CancellationToken] = None,
    ) -> SQLResponse:
        """Generate SQL for a question.

        Args:
            question: Coach question, verbatim
            scope: Allowed teams for this request
            cancel_token: Request cancellation token

        Returns:
            Parsed SQLResponse (sql is None for conversational answers)

        Raises:
            Any oracle error (network, credentials, cancellation) unchanged.
        """
        started = time.monotonic()
        system_prompt = build_system_prompt(scope)

        content = self.oracle.complete_json(
            system_prompt,
            question,
            temperature=self.temperature,
            cancel_token=cancel_token,
        )
        if not content:
            logger.warning("Generator returned no content")
            return SQLResponse(
                sql=None,
                thought=EMPTY_REPLY_THOUGHT,
                tactical_context=get_chat_messages()["no_content"],
            )

        parsed = parse_sql_response(content)

        if looks_like_own_team_aggregate(question) and looks_like_refusal(parsed):
            logger.info("Generator refused an own-team aggregate, retrying once")
            retry_content = self.oracle.complete_json(
                system_prompt
                + _CORRECTION_DIRECTIVE.format(user_team_id=scope.user_team_id),
                question,
                temperature=self.correction_temperature,
                cancel_token=cancel_token,
            )
            if retry_content:
                parsed = parse_sql_response(retry_content)
                logger.info(
                    f"Generation (with correction) took {time.monotonic() - started:.2f}s"
                )
                if parsed.sql:
                    logger.info(f"Generated SQL:\n{parsed.sql}")
                return parsed

        logger.info(f"Generation took {time.monotonic() - started:.2f}s")
        if parsed.sql:
            logger.info(f"Generated SQL:\n{parsed.sql}")
        return parsed
