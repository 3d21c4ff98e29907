"""Flask API blueprint for the hoops analytics chat service.

This module provides the coach chat endpoint and the health check.
"""

from flask import Blueprint

# Create the API blueprint
chat_api = Blueprint(
    "chat_api",
    __name__,
    url_prefix="",  # Routes define their own prefixes
)

# Import routes to register them with the blueprint
from hoops_analytics.api import chat_routes  # noqa: F401, E402
