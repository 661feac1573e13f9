#!/usr/bin/env python3
"""Development scripts for the Community Events API."""

import subprocess
import sys

from community_events.config import get_settings


def start():
    """Start the development server."""
    settings = get_settings()
    subprocess.run([
        "uvicorn",
        "community_events.main:app",
        "--host", settings.host,
        "--port", str(settings.port),
        "--reload"
    ])


def worker():
    """Start a Celery worker for notification jobs."""
    subprocess.run([
        "celery", "-A", "community_events.tasks.celery_app:celery_app",
        "worker", "--loglevel", "info"
    ])


def migrate():
    """Apply database migrations."""
    subprocess.run(["alembic", "upgrade", "head"])


def test():
    """Run the test suite."""
    sys.exit(subprocess.run(["pytest", "tests/"]).returncode)


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python scripts.py <command>")
        print("Commands: start, worker, migrate, test")
        sys.exit(1)

    command = sys.argv[1].replace("-", "_")
    if hasattr(sys.modules[__name__], command):
        getattr(sys.modules[__name__], command)()
    else:
        print(f"Unknown command: {sys.argv[1]}")
        sys.exit(1)
