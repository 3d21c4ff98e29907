"""Flask routes for the coach chat assistant.

Provides:
- POST /chat - answer a coach question (Bearer token + {"question": ...})
- GET /health - liveness check
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Optional, Protocol

from flask import current_app, jsonify, request

from hoops_analytics.api import chat_api
from hoops_analytics.config import get_chat_messages
from hoops_analytics.data.audit import AuditDispatcher
from hoops_analytics.data.cancellation import CancellationToken, QueryCancelledError
from hoops_analytics.data.nl_query import ChatQueryService, ChatResult
from hoops_analytics.data.queries import Identity
from hoops_analytics.data.sql_guard import TeamScope

logger = logging.getLogger(__name__)

BACKEND_EXTENSION_KEY = "chat_backend"


class IdentityResolver(Protocol):
    """Session and schedule lookups the route depends on."""

    def resolve_identity(self, token: str) -> Optional[Identity]:
        ...

    def get_next_opponent_id(self, team_id: int) -> Optional[int]:
        ...


@dataclass
class ChatBackend:
    """Collaborators of the chat route, stored on app.extensions."""

    identities: IdentityResolver
    service: ChatQueryService
    audit: AuditDispatcher
    request_timeout: Optional[float] = None


def parse_bearer_token(header: Optional[str]) -> Optional[str]:
    """Extract the token from an 'Authorization: Bearer <token>' header."""
    if not header or not header.startswith("Bearer "):
        return None
    token = header[len("Bearer "):].strip()
    return token or None


def _error(message: str, status: int) -> tuple[Any, int]:
    return jsonify({"error": message}), status


def _failure_envelope(answer: str, status: int) -> tuple[Any, int]:
    return jsonify({"type": "error", "answer": answer, "data": None}), status


def _dispatch_audit(
    backend: ChatBackend, result: ChatResult, user_id: str, question: str
) -> None:
    """Hand the finished result to the audit dispatcher; never raises."""
    try:
        backend.audit.dispatch(result.to_audit_record(user_id, question))
    except Exception:
        logger.exception("Could not dispatch chat audit log")


@chat_api.route("/chat", methods=["POST"])
def chat():
    """Answer a coach question.

    Returns:
        JSON response; 401/400 for auth and input errors, 200 for every
        completed pipeline outcome, 504 on timeout, 500 on unexpected errors
    """
    started = time.monotonic()
    backend: ChatBackend = current_app.extensions[BACKEND_EXTENSION_KEY]
    messages = get_chat_messages()

    token = parse_bearer_token(request.headers.get("Authorization"))
    if token is None:
        return _error(messages["unauthorized"], 401)

    payload = request.get_json(silent=True)
    question = payload.get("question") if isinstance(payload, dict) else None
    if not isinstance(question, str) or not question.strip():
        return _error(messages["empty_question"], 400)

    cancel_token = CancellationToken(backend.request_timeout)
    cancel_token.start_watchdog()
    try:
        identity = backend.identities.resolve_identity(token)
        if identity is None:
            return _error(messages["invalid_session"], 401)
        if identity.team_id is None:
            return _error(messages["no_team"], 400)

        opponent_team_id = backend.identities.get_next_opponent_id(identity.team_id)
        scope = TeamScope(identity.team_id, opponent_team_id)

        result = backend.service.ask(
            question, scope, cancel_token=cancel_token, user_id=identity.user_id
        )

    except QueryCancelledError as e:
        logger.warning(f"Chat request cancelled: {e}")
        return _failure_envelope(messages["timeout"], 504)

    except Exception as e:
        logger.exception("Unexpected error in POST /chat")
        return _failure_envelope(messages["unexpected_error"].format(reason=e), 500)

    finally:
        cancel_token.stop()

    body = result.to_response()
    _dispatch_audit(backend, result, identity.user_id, question)

    logger.info(f"POST /chat finished in {time.monotonic() - started:.2f}s")
    return jsonify(body), 200


@chat_api.route("/health")
def health_check():
    """Health check endpoint for monitoring."""
    return jsonify({"status": "ok"}), 200
