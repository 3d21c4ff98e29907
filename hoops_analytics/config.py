"""Settings for the hoops analytics chat service.

Database location, model provider credentials, chat pipeline limits and the
user-facing message table, read from the environment (and a .env file).
"""

import os
from typing import Dict, List

from dotenv import load_dotenv

# Environment variables from a local .env file, before the classes read them
load_dotenv()


class Config:
    """Main configuration class for the hoops analytics service."""

    # Database settings (league data, and coach accounts plus audit log)
    DATABASE_PATH = os.getenv("HOOPS_DB_PATH", "data/hoops_data.duckdb")
    ACCOUNTS_DATABASE_PATH = os.getenv(
        "HOOPS_ACCOUNTS_DB_PATH", "data/hoops_accounts.duckdb"
    )

    # Application settings
    APP_TITLE = "HoopsIQ Analyst"
    APP_HOST = os.getenv("HOOPS_HOST", "127.0.0.1")
    APP_PORT = int(os.getenv("HOOPS_PORT", "8060"))
    DEBUG_MODE = os.getenv("FLASK_DEBUG", "True").lower() in ("true", "1")

    # LLM provider settings
    LLM_PROVIDER = os.getenv("HOOPS_LLM_PROVIDER", "groq").lower()
    GROQ_API_KEY = os.getenv("GROQ_API_KEY", "")
    GROQ_MODEL = os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile")
    ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
    ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", "claude-3-5-haiku-20241022")
    LLM_MAX_ATTEMPTS = int(os.getenv("HOOPS_LLM_MAX_ATTEMPTS", "2"))

    # Sampling temperatures (near-deterministic SQL)
    GENERATION_TEMPERATURE = 0.1
    CORRECTION_TEMPERATURE = 0.0
    EVALUATION_TEMPERATURE = 0.2

    # Chat pipeline limits
    CHAT_REQUEST_TIMEOUT_SECONDS = float(os.getenv("HOOPS_CHAT_TIMEOUT", "45"))
    CHAT_ROW_LIMIT = int(os.getenv("HOOPS_CHAT_ROW_LIMIT", "500"))
    EVALUATOR_MAX_ROWS = 50
    AUDIT_MAX_WORKERS = 2


class DevelopmentConfig(Config):
    """Local development: debug on, reachable from the LAN."""

    DEBUG_MODE = True
    APP_HOST = "0.0.0.0"


class ProductionConfig(Config):
    """Production settings; the platform injects PORT and the database paths."""

    DEBUG_MODE = False
    APP_HOST = "0.0.0.0"

    def __init__(self) -> None:
        """Re-read PORT and the database paths at instantiation time."""
        super().__init__()
        self.APP_PORT = int(os.getenv("PORT", "8080"))
        self.DATABASE_PATH = os.getenv("HOOPS_DB_PATH", "data/hoops_data.duckdb")
        self.ACCOUNTS_DATABASE_PATH = os.getenv(
            "HOOPS_ACCOUNTS_DB_PATH", "data/hoops_accounts.duckdb"
        )


class TestConfig(Config):
    """Settings for the test suite."""

    DATABASE_PATH = ":memory:"
    ACCOUNTS_DATABASE_PATH = ":memory:"
    DEBUG_MODE = False
    CHAT_REQUEST_TIMEOUT_SECONDS = 5.0
    LLM_MAX_ATTEMPTS = 1


# Configuration mapping
CONFIG_MAP = {
    "development": DevelopmentConfig,
    "production": ProductionConfig,
    "testing": TestConfig,
}

SUPPORTED_LLM_PROVIDERS = ("groq", "anthropic")


def get_config(config_name: str | None = None) -> Config:
    """Get configuration object based on environment.

    Args:
        config_name: Configuration name (development/production/testing).
                    If None, auto-detects from FLASK_ENV or PORT environment variable.

    Returns:
        Configuration object (Config subclass instance)
    """
    if config_name is None:
        config_name = os.getenv("FLASK_ENV", "development")

        # A platform-provided PORT implies production
        if os.getenv("PORT") and config_name == "development":
            config_name = "production"

    config_class = CONFIG_MAP.get(config_name, DevelopmentConfig)
    return config_class()


# User-facing chat messages. Security blocks carry the shield marker and
# generic failures the warning marker so the UI can style them apart.
BLOCKED_MARKER = "🛡️"
WARNING_MARKER = "⚠️"

CHAT_MESSAGES = {
    "unauthorized": "Not authorized. Sign in to use HoopsIQ.",
    "invalid_session": "Invalid session. Please sign in again.",
    "empty_question": "The question cannot be empty.",
    "no_team": "You do not have a team assigned. Set up your profile first.",
    "blocked": BLOCKED_MARKER + " Query blocked: {reason}",
    "unexpected_error": WARNING_MARKER + " Unexpected error: {reason}",
    "timeout": WARNING_MARKER + " The request took too long and was cancelled. Try a simpler question.",
    "not_found": "Could not find the information.",
    "not_found_after_retries": "Could not find the information after several attempts.",
    "no_content": "Could not build a query from the information provided.",
    "rows_fallback": "📊 **Results found** ({count} rows)\n\n{context}",
    "empty_fallback": "No data found for your query. {context}",
    "retry_thought": "Retrying with a new query based on the evaluation.",
}


def get_chat_messages() -> Dict[str, str]:
    """Get the user-facing chat message table.

    Returns:
        Dictionary of message templates keyed by message name
    """
    return dict(CHAT_MESSAGES)


def validate_config(config: Config) -> List[str]:
    """Validate configuration settings.

    A missing API key is not reported here: it surfaces on the first model
    call of a chat request.

    Args:
        config: Configuration object to validate

    Returns:
        List of validation errors (empty if valid)
    """
    errors = []

    # Validate port range
    if not (1024 <= config.APP_PORT <= 65535):
        errors.append(f"Invalid port number: {config.APP_PORT}")

    if config.LLM_PROVIDER not in SUPPORTED_LLM_PROVIDERS:
        errors.append(
            f"Unknown LLM provider: {config.LLM_PROVIDER} "
            f"(expected one of {', '.join(SUPPORTED_LLM_PROVIDERS)})"
        )

    # Coach SQL must never see the accounts tables
    if (
        config.DATABASE_PATH != ":memory:"
        and config.DATABASE_PATH == config.ACCOUNTS_DATABASE_PATH
    ):
        errors.append("HOOPS_DB_PATH and HOOPS_ACCOUNTS_DB_PATH must be different files")

    if config.CHAT_REQUEST_TIMEOUT_SECONDS <= 0:
        errors.append("CHAT_REQUEST_TIMEOUT_SECONDS must be positive")

    if config.CHAT_ROW_LIMIT <= 0:
        errors.append("CHAT_ROW_LIMIT must be positive")

    if config.EVALUATOR_MAX_ROWS <= 0:
        errors.append("EVALUATOR_MAX_ROWS must be positive")

    if config.LLM_MAX_ATTEMPTS < 1:
        errors.append("LLM_MAX_ATTEMPTS must be at least 1")

    return errors
