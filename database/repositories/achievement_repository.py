from database.connection import get_sqlite_connection


def unlock_achievement(db_path: str, user_id: str, achievement_id: str, unlocked_at: str) -> bool:
    """Returns True when newly unlocked; an existing unlock keeps its original timestamp."""
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    try:
        cursor.execute("""
            INSERT INTO achievements (user_id, achievement_id, unlocked_at)
            VALUES (?, ?, ?)
            ON CONFLICT(user_id, achievement_id) DO NOTHING
        """, (user_id, achievement_id, unlocked_at))
        conn.commit()
        return cursor.rowcount > 0
    finally:
        conn.close()


def get_achievements(db_path: str, user_id: str):
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    cursor.execute(
        "SELECT achievement_id, unlocked_at FROM achievements WHERE user_id = ?",
        (user_id,),
    )
    rows = cursor.fetchall()
    conn.close()
    return [(row[0], row[1]) for row in rows]
