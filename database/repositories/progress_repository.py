from database.connection import get_sqlite_connection


def upsert_progress(db_path: str, user_id: str, topic_id: int, content: int, activities: int, updated_at: str):
    """
    Single-statement merge: content keeps the larger value, activities takes
    the new one. SQLite applies the upsert atomically, so concurrent writers
    cannot lose each other's content high-water mark.
    """
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    try:
        cursor.execute("""
            INSERT INTO progress (user_id, topic_id, content, activities, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(user_id, topic_id) DO UPDATE SET
                content = MAX(content, excluded.content),
                activities = excluded.activities,
                updated_at = excluded.updated_at
        """, (user_id, topic_id, content, activities, updated_at))
        conn.commit()
    finally:
        conn.close()


def upsert_content(db_path: str, user_id: str, topic_id: int, content: int, updated_at: str):
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    try:
        cursor.execute("""
            INSERT INTO progress (user_id, topic_id, content, activities, updated_at)
            VALUES (?, ?, ?, 0, ?)
            ON CONFLICT(user_id, topic_id) DO UPDATE SET
                content = MAX(content, excluded.content),
                updated_at = excluded.updated_at
        """, (user_id, topic_id, content, updated_at))
        conn.commit()
    finally:
        conn.close()


def upsert_activities(db_path: str, user_id: str, topic_id: int, activities: int, updated_at: str):
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    try:
        cursor.execute("""
            INSERT INTO progress (user_id, topic_id, content, activities, updated_at)
            VALUES (?, ?, 0, ?, ?)
            ON CONFLICT(user_id, topic_id) DO UPDATE SET
                activities = excluded.activities,
                updated_at = excluded.updated_at
        """, (user_id, topic_id, activities, updated_at))
        conn.commit()
    finally:
        conn.close()


def get_progress_rows(db_path: str, user_id: str):
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    cursor.execute(
        "SELECT topic_id, content, activities FROM progress WHERE user_id = ? ORDER BY topic_id",
        (user_id,),
    )
    rows = cursor.fetchall()
    conn.close()
    return [(row[0], row[1], row[2]) for row in rows]


def delete_topic_progress(db_path: str, user_id: str, topic_id: int):
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    cursor.execute("DELETE FROM progress WHERE user_id = ? AND topic_id = ?", (user_id, topic_id))
    conn.commit()
    conn.close()


def clear_user_progress(db_path: str, user_id: str):
    """Wipes progress, scores, achievements and streak for one user in one transaction."""
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    try:
        for table in ("progress", "scores", "achievements", "activity_meta"):
            cursor.execute(f"DELETE FROM {table} WHERE user_id = ?", (user_id,))
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()
