#!/usr/bin/env python3
"""Management script for the hoops analytics development server.

Usage:
    python manage.py start [--foreground] [--no-debug]
    python manage.py stop | restart | status
    python manage.py logs [--follow]
    python manage.py seed [--db PATH] [--accounts-db PATH]
"""

import argparse
import os
import signal
import subprocess
import sys
import time
from pathlib import Path
from typing import Callable, Optional

PORT = int(os.getenv("HOOPS_PORT", "8060"))
PID_FILE = Path(".hoops_server.pid")
LOG_DIR = Path("logs")
LOG_PATTERN = "hoops_analytics_*.log"
SERVER_COMMAND = [sys.executable, "-m", "hoops_analytics.app"]
STOP_GRACE_SECONDS = 5.0


def _is_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def find_server_pid() -> Optional[int]:
    """Return the PID of a running server (PID file first, then the port)."""
    if PID_FILE.exists():
        try:
            recorded = int(PID_FILE.read_text().strip())
        except ValueError:
            recorded = None
        if recorded is not None and _is_alive(recorded):
            return recorded
        PID_FILE.unlink(missing_ok=True)

    try:
        lsof = subprocess.run(
            ["lsof", "-ti", f":{PORT}"], capture_output=True, text=True, check=False
        )
    except OSError:
        return None
    pids = lsof.stdout.split()
    return int(pids[0]) if lsof.returncode == 0 and pids else None


def latest_log() -> Optional[Path]:
    candidates = sorted(LOG_DIR.glob(LOG_PATTERN))
    return candidates[-1] if candidates else None


def stop_server(quiet: bool = False) -> bool:
    """Send SIGTERM, escalating to SIGKILL after the grace period.

    Returns:
        True if no server is left running
    """
    pid = find_server_pid()
    if pid is None:
        if not quiet:
            print("Chat server is not running")
        PID_FILE.unlink(missing_ok=True)
        return True

    if not quiet:
        print(f"Stopping chat server {pid}")
    try:
        os.kill(pid, signal.SIGTERM)
        deadline = time.monotonic() + STOP_GRACE_SECONDS
        while _is_alive(pid) and time.monotonic() < deadline:
            time.sleep(0.25)
        if _is_alive(pid):
            print(f"Process {pid} ignored SIGTERM, sending SIGKILL")
            os.kill(pid, signal.SIGKILL)
    except ProcessLookupError:
        pass
    except PermissionError:
        print(f"Not allowed to signal process {pid}")
        return False

    PID_FILE.unlink(missing_ok=True)
    return True


def start_server(debug: bool = True, foreground: bool = False) -> bool:
    """Launch ``python -m hoops_analytics.app``.

    Args:
        debug: Value for FLASK_DEBUG
        foreground: Block until the server exits instead of detaching

    Returns:
        True if the server is up (or exited cleanly in foreground mode)
    """
    running = find_server_pid()
    if running:
        print(f"Chat server already running as {running} on port {PORT}")
        return False

    env = {**os.environ, "FLASK_DEBUG": "1" if debug else "0"}

    if foreground:
        print(f"Serving on http://localhost:{PORT} (Ctrl+C to stop)")
        return subprocess.run(SERVER_COMMAND, env=env, check=False).returncode == 0

    process = subprocess.Popen(
        SERVER_COMMAND,
        env=env,
        stdout=subprocess.DEVNULL,
        stderr=subprocess.DEVNULL,
        start_new_session=True,
    )
    PID_FILE.write_text(str(process.pid))

    time.sleep(2)
    if process.poll() is not None:
        print(f"Chat server exited with code {process.returncode}; see {LOG_DIR}/")
        PID_FILE.unlink(missing_ok=True)
        return False

    print(f"Chat server {process.pid} listening on http://localhost:{PORT}")
    print(
        f"  curl -X POST http://localhost:{PORT}/chat "
        "-H 'Authorization: Bearer demo-token' -H 'Content-Type: application/json' "
        "-d '{\"question\": \"What are my team averages?\"}'"
    )
    return True


def show_status() -> bool:
    pid = find_server_pid()
    if pid is None:
        print("Chat server is not running")
        return True

    print(f"Chat server {pid} on http://localhost:{PORT}")
    log_file = latest_log()
    if log_file:
        print(f"Log file: {log_file}")
    return True


def show_logs(follow: bool = False) -> bool:
    log_file = latest_log()
    if log_file is None:
        print(f"Nothing matching {LOG_PATTERN} in {LOG_DIR}/")
        return True

    if not follow:
        sys.stdout.write(log_file.read_text())
        return True

    try:
        subprocess.run(["tail", "-n", "50", "-f", str(log_file)], check=False)
    except KeyboardInterrupt:
        print()
    return True


def seed_demo_data(db_path: Optional[str], accounts_db_path: Optional[str]) -> bool:
    """Create the demo databases via scripts/seed_demo_data.py."""
    command = [sys.executable, "scripts/seed_demo_data.py"]
    if db_path:
        command += ["--db", db_path]
    if accounts_db_path:
        command += ["--accounts-db", accounts_db_path]
    return subprocess.run(command, check=False).returncode == 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Hoops analytics dev server helper")
    commands = parser.add_subparsers(dest="command")

    start = commands.add_parser("start", help="Start the chat server")
    start.add_argument("--no-debug", action="store_true", help="Run with FLASK_DEBUG=0")
    start.add_argument("--foreground", "-f", action="store_true", help="Do not detach")

    restart = commands.add_parser("restart", help="Stop, then start the chat server")
    restart.add_argument("--no-debug", action="store_true", help="Run with FLASK_DEBUG=0")

    commands.add_parser("stop", help="Stop the chat server")
    commands.add_parser("status", help="Report whether the chat server is running")

    logs = commands.add_parser("logs", help="Print the newest log file")
    logs.add_argument("--follow", "-f", action="store_true", help="Keep tailing the log")

    seed = commands.add_parser("seed", help="Create the demo league and accounts databases")
    seed.add_argument("--db", help="League database path (default: HOOPS_DB_PATH)")
    seed.add_argument(
        "--accounts-db", help="Accounts database path (default: HOOPS_ACCOUNTS_DB_PATH)"
    )
    return parser


def _restart(args: argparse.Namespace) -> bool:
    stop_server(quiet=True)
    time.sleep(1)
    return start_server(debug=not args.no_debug)


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()

    handlers: dict[str, Callable[[argparse.Namespace], bool]] = {
        "start": lambda a: start_server(debug=not a.no_debug, foreground=a.foreground),
        "stop": lambda a: stop_server(),
        "restart": _restart,
        "status": lambda a: show_status(),
        "logs": lambda a: show_logs(follow=a.follow),
        "seed": lambda a: seed_demo_data(a.db, a.accounts_db),
    }
    handler = handlers.get(args.command)
    if handler is None:
        parser.print_help()
        return 1

    try:
        return 0 if handler(args) else 1
    except KeyboardInterrupt:
        return 1


if __name__ == "__main__":
    sys.exit(main())
