from database.connection import get_sqlite_connection


def save_session(db_path: str, token: str, user_id: str, created_at: str):
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    try:
        cursor.execute("""
            INSERT INTO sessions (token, user_id, created_at)
            VALUES (?, ?, ?)
            ON CONFLICT(token) DO UPDATE SET
                user_id = excluded.user_id,
                created_at = excluded.created_at
        """, (token, user_id, created_at))
        conn.commit()
    finally:
        conn.close()


def get_session_user(db_path: str, token: str):
    """Resolve a session token to its user row (None when the token is unknown)."""
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    cursor.execute("""
        SELECT u.* FROM sessions s
        JOIN users u ON u.id = s.user_id
        WHERE s.token = ?
    """, (token,))
    row = cursor.fetchone()
    conn.close()
    return dict(row) if row else None


def delete_session(db_path: str, token: str):
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    cursor.execute("DELETE FROM sessions WHERE token = ?", (token,))
    conn.commit()
    conn.close()
