"""
Entry point for running sqlmigrate as a module.

Enables execution via:
    python -m sqlmigrate [command] [options]

This is equivalent to running the installed CLI:
    sqlmigrate [command] [options]
"""

from sqlmigrate.cli import app

if __name__ == "__main__":
    app()
