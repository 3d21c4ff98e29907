"""Flask application for the hoops analytics chat service.

This module creates the Flask app, configures logging and wires the chat
pipeline (completion oracle, generator, evaluator, DuckDB executor and audit
dispatcher) into the chat blueprint.
"""

import atexit
import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import Optional

from flask import Flask

from hoops_analytics.api import chat_api
from hoops_analytics.api.chat_routes import BACKEND_EXTENSION_KEY, ChatBackend
from hoops_analytics.config import Config, get_config, validate_config
from hoops_analytics.data.audit import AuditDispatcher
from hoops_analytics.data.database import HoopsDatabase, open_coach_database
from hoops_analytics.data.llm_oracle import build_oracle
from hoops_analytics.data.nl_query import ChatQueryService
from hoops_analytics.data.queries import HoopsQueries
from hoops_analytics.data.result_evaluator import ResultEvaluator
from hoops_analytics.data.sql_generator import SQLGenerator

logger = logging.getLogger(__name__)


def setup_logging() -> str:
    """Set up logging configuration. Only configures once per process."""
    if logging.getLogger().handlers:
        return "Already configured"

    log_dir = Path("logs")
    log_dir.mkdir(exist_ok=True)

    log_filename = (
        log_dir / f"hoops_analytics_{datetime.now().strftime('%Y%m%d_%H%M%S')}.log"
    )

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.FileHandler(log_filename),
            logging.StreamHandler(),  # Console output
        ],
    )
    return str(log_filename)


def build_default_backend(config: Config) -> ChatBackend:
    """Wire the production chat backend from configuration.

    The model client is created lazily, so a missing API key only fails the
    chat requests that need it. Coach SQL runs on the sandboxed league file;
    sessions and the audit log live in the separate accounts file.
    """
    if config.ACCOUNTS_DATABASE_PATH != ":memory:":
        Path(config.ACCOUNTS_DATABASE_PATH).parent.mkdir(parents=True, exist_ok=True)

    league = open_coach_database(config.DATABASE_PATH)
    accounts = HoopsDatabase(config.ACCOUNTS_DATABASE_PATH)
    accounts.create_accounts_schema()
    queries = HoopsQueries(league, accounts, row_limit=config.CHAT_ROW_LIMIT)

    oracle = build_oracle(config)
    service = ChatQueryService(
        generator=SQLGenerator(
            oracle,
            temperature=config.GENERATION_TEMPERATURE,
            correction_temperature=config.CORRECTION_TEMPERATURE,
        ),
        evaluator=ResultEvaluator(
            oracle,
            temperature=config.EVALUATION_TEMPERATURE,
            max_rows=config.EVALUATOR_MAX_ROWS,
        ),
        executor=queries,
    )
    audit = AuditDispatcher(queries.save_chat_log, max_workers=config.AUDIT_MAX_WORKERS)

    return ChatBackend(
        identities=queries,
        service=service,
        audit=audit,
        request_timeout=config.CHAT_REQUEST_TIMEOUT_SECONDS,
    )


def create_app(
    config: Optional[Config] = None, backend: Optional[ChatBackend] = None
) -> Flask:
    """Create the Flask application.

    Args:
        config: Configuration object (defaults to get_config())
        backend: Pre-built chat backend (tests inject fakes here)

    Returns:
        Configured Flask app
    """
    config = config or get_config()

    config_errors = validate_config(config)
    if config_errors:
        logger.error("Configuration errors found:")
        for error in config_errors:
            logger.error(f"  - {error}")
        raise ValueError("; ".join(config_errors))

    app = Flask(__name__)
    app.json.ensure_ascii = False

    if backend is None:
        backend = build_default_backend(config)
        atexit.register(backend.audit.shutdown)

    app.extensions[BACKEND_EXTENSION_KEY] = backend
    app.register_blueprint(chat_api)

    logger.info(
        f"{config.APP_TITLE} ready (provider={config.LLM_PROVIDER}, "
        f"database={config.DATABASE_PATH})"
    )
    return app


def run_development_server() -> None:
    """Run the development server."""
    config = get_config()
    try:
        app = create_app(config)
    except ValueError:
        sys.exit(1)

    logger.info(f"Server will run on http://{config.APP_HOST}:{config.APP_PORT}")
    try:
        app.run(
            host=config.APP_HOST,
            port=config.APP_PORT,
            debug=config.DEBUG_MODE,
            threaded=True,
            use_reloader=False,
        )
    except KeyboardInterrupt:
        logger.info("Server interrupted by user")
    except OSError as e:
        if "Address already in use" in str(e):
            logger.error(
                f"Port {config.APP_PORT} is already in use. "
                "Try a different port or stop other servers."
            )
        else:
            logger.error(f"OS error starting server: {e}")


if __name__ == "__main__":
    log_file = setup_logging()
    if log_file != "Already configured":
        logger.info(f"Logging to file: {log_file}")
    run_development_server()
