"""Gunicorn configuration for production deployment.

Run with:
    gunicorn -c gunicorn.conf.py "hoops_analytics.app:create_app()"
"""

import os

# Server socket
bind = f"0.0.0.0:{os.getenv('PORT', '8080')}"
backlog = 512

# Worker processes
# Each chat request blocks a thread for up to HOOPS_CHAT_TIMEOUT seconds
# waiting on the model, so use threads rather than many processes.
# DuckDB allows a single read-write process per database file.
workers = 1
threads = int(os.getenv("GUNICORN_THREADS", "8"))
worker_class = "gthread"
# Must exceed the chat watchdog so the app answers 504 before gunicorn kills it
timeout = int(float(os.getenv("HOOPS_CHAT_TIMEOUT", "45"))) + 30
keepalive = 5

# Logging
accesslog = "-"  # Log to stdout
errorlog = "-"  # Log to stderr
loglevel = "info"
access_log_format = '%(h)s %(l)s %(u)s %(t)s "%(r)s" %(s)s %(b)s %(D)s'

# Process naming
proc_name = "hoops_analytics"

# Server mechanics
daemon = False
pidfile = None

# The app factory opens the DuckDB file; load it per worker, not in the master
preload_app = False

# Recycle workers periodically
max_requests = 1000
max_requests_jitter = 50


def post_worker_init(worker):
    """Configure application logging inside each worker."""
    from hoops_analytics.app import setup_logging

    setup_logging()
