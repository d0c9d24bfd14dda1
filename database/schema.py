import logging

from database.connection import get_sqlite_connection


def create_tables(db_path: str):
    """Initializes the embedded (offline) store schema."""
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()

    # users
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id TEXT PRIMARY KEY NOT NULL,
            username TEXT NOT NULL,
            email TEXT UNIQUE NOT NULL,
            password_hash TEXT,
            recovery_pin_hash TEXT,
            display_name TEXT,
            photo_url TEXT,
            student_id TEXT,
            created_at TEXT NOT NULL
        )
    """)

    # sessions (one row per logged-in runtime)
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS sessions (
            token TEXT PRIMARY KEY NOT NULL,
            user_id TEXT NOT NULL,
            created_at TEXT NOT NULL
        )
    """)

    # progress
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS progress (
            user_id TEXT NOT NULL,
            topic_id INTEGER NOT NULL,
            content INTEGER NOT NULL DEFAULT 0,
            activities INTEGER NOT NULL DEFAULT 0,
            updated_at TEXT NOT NULL,
            PRIMARY KEY (user_id, topic_id)
        )
    """)

    # achievements
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS achievements (
            user_id TEXT NOT NULL,
            achievement_id TEXT NOT NULL,
            unlocked_at TEXT NOT NULL,
            PRIMARY KEY (user_id, achievement_id)
        )
    """)

    # scores
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS scores (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id TEXT NOT NULL,
            topic_id INTEGER NOT NULL,
            quiz_id TEXT,
            difficulty TEXT,
            score INTEGER NOT NULL,
            total INTEGER NOT NULL,
            passed INTEGER NOT NULL,
            completed_at TEXT NOT NULL,
            answers TEXT
        )
    """)
    cursor.execute(
        "CREATE INDEX IF NOT EXISTS idx_scores_user_completed ON scores (user_id, completed_at)"
    )

    # activity_meta
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS activity_meta (
            user_id TEXT PRIMARY KEY NOT NULL,
            last_activity_date TEXT,
            last_activity_at TEXT,
            streak INTEGER NOT NULL DEFAULT 0
        )
    """)

    # password_reset_requests
    cursor.execute("""
        CREATE TABLE IF NOT EXISTS password_reset_requests (
            id TEXT PRIMARY KEY NOT NULL,
            identifier TEXT NOT NULL,
            user_id TEXT,
            requested_at TEXT NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            completed_at TEXT
        )
    """)

    conn.commit()
    conn.close()
    logging.info("Embedded store schema ready at %s", db_path)
