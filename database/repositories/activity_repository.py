import datetime

from core.scoring import next_streak
from database.connection import get_sqlite_connection


def update_streak(db_path: str, user_id: str, today: datetime.date, activity_at: str) -> int:
    """
    Applies the day-granular streak rule under a write lock so two same-day
    calls cannot both read the old date and double-count.
    """
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    try:
        cursor.execute("BEGIN IMMEDIATE")
        cursor.execute(
            "SELECT last_activity_date, streak FROM activity_meta WHERE user_id = ?",
            (user_id,),
        )
        row = cursor.fetchone()
        last_date, streak = (row[0], row[1]) if row else (None, 0)
        new_streak = next_streak(last_date, streak, today)
        cursor.execute("""
            INSERT INTO activity_meta (user_id, last_activity_date, last_activity_at, streak)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(user_id) DO UPDATE SET
                last_activity_date = excluded.last_activity_date,
                last_activity_at = excluded.last_activity_at,
                streak = excluded.streak
        """, (user_id, today.isoformat(), activity_at, new_streak))
        conn.commit()
        return new_streak
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def set_last_activity_at(db_path: str, user_id: str, activity_at: str):
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    try:
        cursor.execute("""
            INSERT INTO activity_meta (user_id, last_activity_at, streak)
            VALUES (?, ?, 0)
            ON CONFLICT(user_id) DO UPDATE SET last_activity_at = excluded.last_activity_at
        """, (user_id, activity_at))
        conn.commit()
    finally:
        conn.close()


def get_activity_meta(db_path: str, user_id: str):
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    cursor.execute(
        "SELECT last_activity_date, last_activity_at, streak FROM activity_meta WHERE user_id = ?",
        (user_id,),
    )
    row = cursor.fetchone()
    conn.close()
    return dict(row) if row else None
