import json

from database.connection import get_sqlite_connection

_COLUMNS = "id, topic_id, quiz_id, difficulty, score, total, passed, completed_at, answers"


def add_score(
    db_path: str,
    user_id: str,
    topic_id: int,
    score: int,
    total: int,
    passed: bool,
    completed_at: str,
    quiz_id: str | None = None,
    difficulty: str | None = None,
    answers: list[dict] | None = None,
) -> int:
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    answers_json = json.dumps(answers, ensure_ascii=False) if answers is not None else None
    try:
        cursor.execute("""
            INSERT INTO scores (user_id, topic_id, quiz_id, difficulty, score, total, passed, completed_at, answers)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """, (user_id, topic_id, quiz_id, difficulty, score, total, 1 if passed else 0, completed_at, answers_json))
        conn.commit()
        return int(cursor.lastrowid)
    finally:
        conn.close()


def _row_to_dict(row) -> dict:
    data = dict(row)
    raw_answers = data.get("answers")
    data["answers"] = json.loads(raw_answers) if raw_answers else None
    data["passed"] = bool(data.get("passed"))
    return data


def get_scores(db_path: str, user_id: str, topic_id: int | None = None, limit: int | None = None):
    """Newest first; `id` breaks ties between attempts stored in the same instant."""
    params: list = [user_id]
    where = "user_id = ?"
    if topic_id is not None:
        where += " AND topic_id = ?"
        params.append(topic_id)
    sql = f"SELECT {_COLUMNS} FROM scores WHERE {where} ORDER BY completed_at DESC, id DESC"
    if limit is not None:
        sql += " LIMIT ?"
        params.append(int(limit))

    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    cursor.execute(sql, params)
    rows = cursor.fetchall()
    conn.close()
    return [_row_to_dict(row) for row in rows]


def get_score(db_path: str, user_id: str, score_id: str):
    try:
        numeric_id = int(score_id)
    except (TypeError, ValueError):
        return None
    conn = get_sqlite_connection(db_path)
    cursor = conn.cursor()
    cursor.execute(
        f"SELECT {_COLUMNS} FROM scores WHERE user_id = ? AND id = ?",
        (user_id, numeric_id),
    )
    row = cursor.fetchone()
    conn.close()
    return _row_to_dict(row) if row else None
