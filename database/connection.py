import sqlite3
from pathlib import Path
from typing import Any


def get_sqlite_connection(db_path: str) -> Any:
    if db_path != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path, timeout=30)
    conn.row_factory = sqlite3.Row
    return conn
