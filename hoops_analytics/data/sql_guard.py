"""Static guards for model-generated SQL.

Two pure checks run before any generated statement reaches the database:

- ``validate_sql_safety``: the text must be a single read-only SELECT.
- ``validate_team_scope``: every literal team id the statement filters on must
  belong to the requesting coach's team or its next opponent.

The SQL comes from an LLM and is treated as untrusted. The scope check is a
textual scan, not a parser: a team id reached only through a join or a
computed expression is not inspected.
"""

import re
from dataclasses import dataclass
from typing import Optional

FORBIDDEN_KEYWORDS: tuple[str, ...] = (
    "INSERT",
    "UPDATE",
    "DELETE",
    "DROP",
    "TRUNCATE",
    "ALTER",
    "CREATE",
    "GRANT",
    "REVOKE",
    "EXECUTE",
)

_FORBIDDEN_PATTERN = re.compile(
    r"\b(" + "|".join(FORBIDDEN_KEYWORDS) + r")\b", re.IGNORECASE
)

TEAM_ID_COLUMNS: tuple[str, ...] = (
    "team_id",
    "current_team_id",
    "home_team_id",
    "away_team_id",
)

_STRING_LITERAL_PATTERN = re.compile(r"'(?:''|[^'])*'")

_TEAM_FILTER_PATTERN = re.compile(
    r"\b(" + "|".join(TEAM_ID_COLUMNS) + r")\b\s*(=|IN)\s*(\([^)]*\)|\d+)",
    re.IGNORECASE,
)

_INTEGER_PATTERN = re.compile(r"\d+")


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a SQL guard check."""

    valid: bool
    error: Optional[str] = None


def normalize_sql(sql: str) -> str:
    """Strip markdown fences, surrounding whitespace and trailing semicolons."""
    cleaned = re.sub(r"^\s*```(?:sql)?", "", sql, flags=re.IGNORECASE)
    cleaned = re.sub(r"```\s*$", "", cleaned)
    return re.sub(r"[;\s]+$", "", cleaned.strip())


def validate_sql_safety(sql: str) -> ValidationResult:
    """Check that a statement is a read-only SELECT.

    Args:
        sql: Raw or normalized SQL text

    Returns:
        ValidationResult, invalid if the statement does not start with SELECT,
        names a forbidden keyword as a whole word anywhere, or holds more than
        one statement
    """
    upper_sql = sql.strip().upper()

    if not upper_sql.startswith("SELECT"):
        return ValidationResult(False, "Only SELECT queries are allowed.")

    match = _FORBIDDEN_PATTERN.search(upper_sql)
    if match:
        return ValidationResult(
            False,
            f"The query contains a forbidden operation ({match.group(1)}). "
            "Only SELECT is allowed.",
        )

    # A semicolon outside string literals starts a second statement
    if ";" in normalize_sql(strip_string_literals(sql)):
        return ValidationResult(False, "Only a single SELECT statement is allowed.")

    return ValidationResult(True)


def strip_string_literals(sql: str) -> str:
    """Replace every single-quoted literal (with '' escapes) by ''."""
    return _STRING_LITERAL_PATTERN.sub("''", sql)


def validate_team_scope(
    sql: str, user_team_id: int, opponent_team_id: Optional[int]
) -> ValidationResult:
    """Check that literal team-id filters stay inside the allowed teams.

    Args:
        sql: Normalized SQL text
        user_team_id: Team of the authenticated coach
        opponent_team_id: Team of the next scheduled opponent, if any

    Returns:
        ValidationResult, invalid with the first out-of-scope id named
    """
    allowed_ids = [user_team_id]
    if opponent_team_id is not None:
        allowed_ids.append(opponent_team_id)
    allowed = set(allowed_ids)

    for match in _TEAM_FILTER_PATTERN.finditer(strip_string_literals(sql)):
        for raw_id in _INTEGER_PATTERN.findall(match.group(3)):
            team_id = int(raw_id)
            if team_id not in allowed:
                allowed_text = ", ".join(str(i) for i in allowed_ids)
                return ValidationResult(
                    False,
                    f"Out-of-scope access detected for team_id {team_id}. "
                    f"Only {allowed_text} allowed.",
                )

    return ValidationResult(True)


@dataclass(frozen=True)
class TeamScope:
    """Teams a chat request may read, fixed for the whole request.

    Attributes:
        user_team_id: Team assigned to the authenticated coach
        opponent_team_id: Opponent of the team's next scheduled game, if any
    """

    user_team_id: int
    opponent_team_id: Optional[int] = None

    @property
    def allowed_ids(self) -> tuple[int, ...]:
        if self.opponent_team_id is None:
            return (self.user_team_id,)
        return (self.user_team_id, self.opponent_team_id)

    @property
    def allowed_ids_text(self) -> str:
        return ", ".join(str(team_id) for team_id in self.allowed_ids)

    def validate(self, sql: str) -> ValidationResult:
        """Run the team-scope check for this scope."""
        return validate_team_scope(sql, self.user_team_id, self.opponent_team_id)
