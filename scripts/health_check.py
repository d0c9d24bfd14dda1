import os
import sqlite3
import sys

from google.api_core import exceptions as gcp_exceptions
from google.auth import exceptions as auth_exceptions

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.config import settings
from database.document_store import USERS, create_firestore_client
from database.schema import create_tables


def check(condition, ok_msg, fail_msg):
    if condition:
        print(f"OK: {ok_msg}")
        return True
    print(f"FAIL: {fail_msg}")
    return False


def table_exists(cursor, table_name):
    cursor.execute("SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table_name,))
    return cursor.fetchone() is not None


def check_embedded() -> bool:
    all_ok = True
    create_tables(settings.db_path)
    all_ok &= check(os.path.exists(settings.db_path), f"{settings.db_path} exists", "DB file not found")

    conn = sqlite3.connect(settings.db_path)
    cur = conn.cursor()
    required_tables = [
        "users",
        "sessions",
        "progress",
        "achievements",
        "scores",
        "activity_meta",
        "password_reset_requests",
    ]
    for t in required_tables:
        all_ok &= check(table_exists(cur, t), f"table {t} present", f"table {t} missing")

    cur.execute("SELECT COUNT(*) FROM users")
    user_count = cur.fetchone()[0]
    all_ok &= check(user_count >= 0, f"{user_count} user(s) registered", "users table unreadable")
    conn.close()
    return all_ok


def check_remote() -> bool:
    all_ok = True
    all_ok &= check(bool(settings.firebase_api_key), "FIREBASE_API_KEY set", "FIREBASE_API_KEY missing (check .env)")
    all_ok &= check(
        bool(settings.firebase_project_id), "FIREBASE_PROJECT_ID set", "FIREBASE_PROJECT_ID missing (check .env)"
    )
    check(
        bool(settings.firebase_service_account),
        "FIREBASE_SERVICE_ACCOUNT set",
        "FIREBASE_SERVICE_ACCOUNT missing: admin password changes will fail",
    )
    try:
        docs = list(create_firestore_client(settings).collection(USERS).limit(1).stream())
    except (gcp_exceptions.GoogleAPICallError, auth_exceptions.GoogleAuthError) as e:
        return check(False, "", f"Firestore unreachable: {e}")
    check(True, f"Firestore reachable ({len(docs)} sample user document(s))", "")
    return all_ok


def main():
    all_ok = check(
        settings.store_backend in ("embedded", "remote"),
        f"STORE_BACKEND={settings.store_backend}",
        f"unknown STORE_BACKEND '{settings.store_backend}'",
    )
    all_ok &= check(bool(settings.admin_emails), "ADMIN_EMAILS configured", "ADMIN_EMAILS is empty")

    if settings.store_backend == "remote":
        all_ok &= check_remote()
    else:
        all_ok &= check_embedded()

    if all_ok:
        print("OK: health_check finished successfully.")
        return 0
    print("FAIL: health_check finished with errors.")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
