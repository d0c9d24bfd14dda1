import argparse
import asyncio
import dataclasses
import getpass
import json
import logging
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import database
from services.admin_service import AdminService


def _print_header(title: str):
    print(f"\n=== {title} ===")


def _print_report(report):
    _print_header("Class overview")
    print(f"Students: {report.overview.total_students}")
    print(f"Average combined progress: {report.overview.avg_combined_progress}%")
    print(f"Quizzes taken: {report.overview.total_quizzes_taken}")

    _print_header("Students")
    if not report.users:
        print("(no students yet)")
        return
    for row in sorted(report.users, key=lambda r: (-r.combined_progress, r.username.lower())):
        flag = "  [incomplete]" if row.fetch_failed else ""
        print(
            f"{row.username:<20} {row.email:<32} progress={row.combined_progress:>3}% "
            f"quizzes={row.quizzes_taken:<3} avg={row.avg_score:>3}% best={row.best_score:>3}% "
            f"streak={row.streak or 0} last={row.last_activity_date or '-'}{flag}"
        )


async def _run(args) -> int:
    store = database.create_store()
    try:
        admin = await store.login_user(args.admin, args.password)
        if admin is None:
            print("FAIL: admin login rejected")
            return 1
        service = AdminService(store)
        report = await service.fetch_all_users_with_summaries(admin)
        if args.json:
            print(json.dumps(dataclasses.asdict(report), ensure_ascii=False, indent=2))
        else:
            _print_report(report)
        if args.pending_resets:
            _print_header("Pending password resets")
            for request in await service.fetch_password_reset_requests(admin):
                matched = request.user_id or "no matching account"
                print(f"{request.requested_at}  {request.identifier:<32} {matched}  id={request.id}")
        await store.sign_out(admin)
        return 0
    except database.StoreError as e:
        print(f"FAIL: {type(e).__name__}: {e}")
        return 1
    finally:
        await store.close()


def main():
    parser = argparse.ArgumentParser(description="Classroom progress report (admin only)")
    parser.add_argument("--admin", default=os.getenv("ADMIN_LOGIN", ""), help="Admin e-mail or username")
    parser.add_argument("--password", default=os.getenv("ADMIN_PASSWORD"), help="Admin password (prompted if omitted)")
    parser.add_argument("--json", action="store_true", help="Print the report as JSON")
    parser.add_argument("--pending-resets", action="store_true", help="Also list pending password reset requests")
    args = parser.parse_args()

    logging.basicConfig(level=logging.WARNING, format="%(asctime)s - %(levelname)s - %(message)s")
    if not args.admin:
        parser.error("--admin is required (or set ADMIN_LOGIN)")
    if args.password is None:
        args.password = getpass.getpass("Admin password: ")
    return asyncio.run(_run(args))


if __name__ == "__main__":
    raise SystemExit(main())
