"""
Default locations for the journal database and logs.
"""

import os
from pathlib import Path


DATA_DIR_NAME = ".trade-journal"


def resolve_app_data_dir() -> Path:
    """
    Directory holding the journal's SQLite file and logs.

    ``JOURNAL_APP_DATA_DIR`` wins when set; otherwise ``~/.trade-journal``.
    Created on first use.
    """
    raw = os.getenv("JOURNAL_APP_DATA_DIR", "").strip()
    target = Path(raw).expanduser() if raw else Path.home() / DATA_DIR_NAME
    target = target.resolve()
    target.mkdir(parents=True, exist_ok=True)
    return target


def default_database_url() -> str:
    # SQLAlchemy sqlite URL requires 3 slashes + absolute path.
    return f"sqlite:///{resolve_app_data_dir() / 'journal.db'}"


def default_log_directory() -> str:
    return str(resolve_app_data_dir() / "logs")
