import logging
import sqlite3

from database.connection import get_sqlite_connection
from database.errors import DuplicateAccount

_PROFILE_COLUMNS = {"display_name", "photo_url", "student_id", "username"}


def add_user(
    db_path: str,
    user_id: str,
    username: str,
    email: str,
    password_hash: str,
    created_at: str,
    recovery_pin_hash: str | None = None,
    student_id: str | None = None,
):
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    try:
        cursor.execute("""
            INSERT INTO users (id, username, email, password_hash, recovery_pin_hash, student_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
        """, (user_id, username, email, password_hash, recovery_pin_hash, student_id, created_at))
        conn.commit()
    except sqlite3.IntegrityError as e:
        logging.info(f"Rejected duplicate account for {email}: {e}")
        raise DuplicateAccount(f"An account already exists for {email}") from e
    finally:
        conn.close()


def get_user(db_path: str, user_id: str):
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    cursor.execute("SELECT * FROM users WHERE id = ?", (user_id,))
    row = cursor.fetchone()
    conn.close()
    return dict(row) if row else None


def find_login_candidate(db_path: str, identifier: str):
    """Matches an e-mail (case-insensitive) or an exact username."""
    text = (identifier or "").strip()
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    cursor.execute(
        "SELECT * FROM users WHERE LOWER(email) = LOWER(?) OR username = ? ORDER BY created_at LIMIT 1",
        (text, text),
    )
    row = cursor.fetchone()
    conn.close()
    return dict(row) if row else None


def find_user_by_identifier(db_path: str, identifier: str):
    """Matches e-mail, username or student id, all case-insensitive."""
    text = (identifier or "").strip().lower()
    if not text:
        return None
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    cursor.execute("""
        SELECT * FROM users
        WHERE LOWER(email) = ? OR LOWER(username) = ? OR LOWER(COALESCE(student_id, '')) = ?
        ORDER BY created_at
        LIMIT 1
    """, (text, text, text))
    row = cursor.fetchone()
    conn.close()
    return dict(row) if row else None


def list_users(db_path: str):
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    cursor.execute("SELECT * FROM users ORDER BY created_at")
    rows = cursor.fetchall()
    conn.close()
    return [dict(row) for row in rows]


def update_user_profile(db_path: str, user_id: str, **kwargs):
    fields_to_set = {k: v for k, v in kwargs.items() if k in _PROFILE_COLUMNS and v is not None}
    if not fields_to_set:
        return

    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()

    fields = ", ".join([f"{k} = ?" for k in fields_to_set.keys()])
    values = list(fields_to_set.values())
    values.append(user_id)

    try:
        cursor.execute(f"UPDATE users SET {fields} WHERE id = ?", values)
        conn.commit()
    finally:
        conn.close()


def set_password_hash(db_path: str, user_id: str, password_hash: str) -> bool:
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    try:
        cursor.execute("UPDATE users SET password_hash = ? WHERE id = ?", (password_hash, user_id))
        conn.commit()
        return cursor.rowcount > 0
    finally:
        conn.close()
