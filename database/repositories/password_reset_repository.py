from database.connection import get_sqlite_connection
from database.models import COMPLETED, PENDING


def add_request(db_path: str, request_id: str, identifier: str, user_id: str | None, requested_at: str):
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    try:
        cursor.execute("""
            INSERT INTO password_reset_requests (id, identifier, user_id, requested_at, status)
            VALUES (?, ?, ?, ?, ?)
        """, (request_id, identifier, user_id, requested_at, PENDING))
        conn.commit()
    finally:
        conn.close()


def list_requests(db_path: str, status: str | None = None):
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    if status:
        cursor.execute(
            "SELECT * FROM password_reset_requests WHERE status = ? ORDER BY requested_at ASC, rowid ASC",
            (status,),
        )
    else:
        cursor.execute("SELECT * FROM password_reset_requests ORDER BY requested_at ASC, rowid ASC")
    rows = cursor.fetchall()
    conn.close()
    return [dict(row) for row in rows]


def get_request(db_path: str, request_id: str):
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    cursor.execute("SELECT * FROM password_reset_requests WHERE id = ?", (request_id,))
    row = cursor.fetchone()
    conn.close()
    return dict(row) if row else None


def mark_completed(db_path: str, request_id: str, completed_at: str) -> bool:
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    try:
        cursor.execute(
            "UPDATE password_reset_requests SET status = ?, completed_at = ? WHERE id = ?",
            (COMPLETED, completed_at, request_id),
        )
        conn.commit()
        return cursor.rowcount > 0
    finally:
        conn.close()
