"""
Embedded (offline) store: one SQLite file on the device.

There is no e-mail channel here, so accounts carry an optional hashed
recovery PIN and forgotten passwords go through `reset_password_with_pin`
or the admin reset queue. Blocking sqlite3 work runs in worker threads so
the public surface stays awaitable like the remote store's.
"""
import asyncio
import datetime
import logging
import re

from core.config import Config, settings
from core.scoring import activity_day, clamp_percent
from core.security import hash_secret, new_record_id, new_session_token, verify_secret
from database.contract import LearningStore
from database.errors import InvalidPin, NotFound, PermissionDenied
from database.models import (
    AchievementRecord,
    ActivityMeta,
    PasswordResetRequest,
    ProgressDetail,
    ScoreRecord,
    Session,
    User,
    UserCredentials,
    utc_now_iso,
)
from database.repositories import (
    achievement_repository,
    activity_repository,
    password_reset_repository,
    progress_repository,
    score_repository,
    session_repository,
    user_repository,
)
from database.schema import create_tables
from utils.ops_logging import log_structured

_PIN_RE = re.compile(r"\d{4,6}")


def _check_pin(pin: str | None) -> None:
    if not _PIN_RE.fullmatch(pin or ""):
        raise InvalidPin("Recovery PIN must be 4-6 digits.")


def _user_from_row(row: dict) -> User:
    return User(
        id=row["id"],
        username=row["username"],
        email=row["email"],
        created_at=row["created_at"],
        display_name=row.get("display_name"),
        photo_url=row.get("photo_url"),
        student_id=row.get("student_id"),
    )


def _score_from_row(row: dict) -> ScoreRecord:
    data = {
        "topicId": row["topic_id"],
        "quizId": row.get("quiz_id"),
        "difficulty": row.get("difficulty"),
        "score": row["score"],
        "total": row["total"],
        "passed": row["passed"],
        "completedAt": row["completed_at"],
        "answers": row.get("answers"),
    }
    return ScoreRecord.from_dict(str(row["id"]), data)


def _reset_request_from_row(row: dict) -> PasswordResetRequest:
    return PasswordResetRequest(
        id=row["id"],
        identifier=row["identifier"],
        user_id=row.get("user_id"),
        requested_at=row["requested_at"],
        status=row["status"],
        completed_at=row.get("completed_at"),
    )


class EmbeddedStore(LearningStore):
    backend_name = "embedded"

    def __init__(self, config: Config | None = None):
        super().__init__(config or settings)
        self.db_path = self.config.db_path
        create_tables(self.db_path)

    # ---- credentials -------------------------------------------------

    async def create_user(self, credentials: UserCredentials) -> tuple[User, Session]:
        self._check_password(credentials.password)
        if credentials.recovery_pin:
            _check_pin(credentials.recovery_pin)
        return await asyncio.to_thread(self._create_user_sync, credentials)

    def _create_user_sync(self, credentials: UserCredentials) -> tuple[User, Session]:
        user_id = new_record_id("user_")
        created_at = utc_now_iso()
        email = credentials.email.strip().lower()
        pin_hash = hash_secret(credentials.recovery_pin) if credentials.recovery_pin else None
        user_repository.add_user(
            self.db_path,
            user_id,
            credentials.username.strip(),
            email,
            hash_secret(credentials.password),
            created_at,
            recovery_pin_hash=pin_hash,
            student_id=credentials.student_id,
        )
        user = User(
            id=user_id,
            username=credentials.username.strip(),
            email=email,
            created_at=created_at,
            student_id=credentials.student_id,
        )
        session = self._open_session(user)
        log_structured("account_created", backend=self.backend_name, user_id=user_id)
        return user, session

    def _open_session(self, user: User) -> Session:
        token = new_session_token()
        session_repository.save_session(self.db_path, token, user.id, utc_now_iso())
        return Session(user_id=user.id, email=user.email, username=user.username, token=token)

    async def login_user(self, identifier: str, password: str) -> Session | None:
        return await asyncio.to_thread(self._login_user_sync, identifier, password)

    def _login_user_sync(self, identifier: str, password: str) -> Session | None:
        row = user_repository.find_login_candidate(self.db_path, identifier)
        if not row or not verify_secret(password or "", row.get("password_hash")):
            log_structured("login_rejected", backend=self.backend_name)
            return None
        session = self._open_session(_user_from_row(row))
        log_structured("login", backend=self.backend_name, user_id=session.user_id)
        return session

    async def get_user_data(self, session: Session | None) -> User | None:
        if session is None:
            return None
        row = await asyncio.to_thread(user_repository.get_user, self.db_path, session.user_id)
        return _user_from_row(row) if row else None

    async def sign_out(self, session: Session | None) -> None:
        if session is None or not session.token:
            return
        await asyncio.to_thread(session_repository.delete_session, self.db_path, session.token)

    async def update_user_profile(
        self, session: Session, display_name: str | None = None, photo_url: str | None = None
    ) -> None:
        user_id = self._require(session)
        await asyncio.to_thread(
            user_repository.update_user_profile,
            self.db_path,
            user_id,
            display_name=display_name,
            photo_url=photo_url,
        )

    # ---- progress ----------------------------------------------------

    async def save_progress(self, session: Session, topic_id: int, content, activities) -> None:
        user_id = self._require(session)
        await asyncio.to_thread(
            progress_repository.upsert_progress,
            self.db_path,
            user_id,
            int(topic_id),
            clamp_percent(content),
            clamp_percent(activities),
            utc_now_iso(),
        )

    async def save_content_progress(self, session: Session, topic_id: int, content) -> None:
        user_id = self._require(session)
        await asyncio.to_thread(
            progress_repository.upsert_content,
            self.db_path,
            user_id,
            int(topic_id),
            clamp_percent(content),
            utc_now_iso(),
        )

    async def save_activities_progress(self, session: Session, topic_id: int, activities) -> None:
        user_id = self._require(session)
        await asyncio.to_thread(
            progress_repository.upsert_activities,
            self.db_path,
            user_id,
            int(topic_id),
            clamp_percent(activities),
            utc_now_iso(),
        )

    async def reset_topic(self, session: Session, topic_id: int) -> None:
        user_id = self._require(session)
        await asyncio.to_thread(progress_repository.delete_topic_progress, self.db_path, user_id, int(topic_id))

    async def read_progress_detail(self, user_id: str) -> dict[int, ProgressDetail]:
        rows = await asyncio.to_thread(progress_repository.get_progress_rows, self.db_path, user_id)
        return {int(tid): ProgressDetail(content=c, activities=a) for tid, c, a in rows}

    # ---- achievements ------------------------------------------------

    async def unlock_achievement(self, session: Session, achievement_id: str) -> None:
        user_id = self._require(session)
        newly = await asyncio.to_thread(
            achievement_repository.unlock_achievement, self.db_path, user_id, achievement_id, utc_now_iso()
        )
        if newly:
            logging.info(f"[ACHIEVEMENT] user={user_id} earned '{achievement_id}'")

    async def read_achievements(self, user_id: str) -> list[AchievementRecord]:
        rows = await asyncio.to_thread(achievement_repository.get_achievements, self.db_path, user_id)
        return [AchievementRecord(id=aid, unlocked_at=at) for aid, at in rows]

    # ---- scores ------------------------------------------------------

    async def save_score(self, session: Session, record: ScoreRecord) -> ScoreRecord:
        user_id = self._require(session)
        completed_at = record.completed_at or utc_now_iso()
        answers = [answer.to_dict() for answer in record.answers] if record.answers is not None else None
        score_id = await asyncio.to_thread(
            score_repository.add_score,
            self.db_path,
            user_id,
            int(record.topic_id),
            int(record.score),
            int(record.total),
            bool(record.passed),
            completed_at,
            quiz_id=record.quiz_id,
            difficulty=record.difficulty,
            answers=answers,
        )
        record.id = str(score_id)
        record.completed_at = completed_at
        return record

    async def read_scores(
        self, user_id: str, topic_id: int | None = None, limit: int | None = None
    ) -> list[ScoreRecord]:
        rows = await asyncio.to_thread(score_repository.get_scores, self.db_path, user_id, topic_id, limit)
        return [_score_from_row(row) for row in rows]

    async def read_score(self, user_id: str, score_id: str) -> ScoreRecord | None:
        row = await asyncio.to_thread(score_repository.get_score, self.db_path, user_id, score_id)
        return _score_from_row(row) if row else None

    # ---- activity / streak -------------------------------------------

    async def set_last_activity_and_streak(self, session: Session, now: datetime.datetime | str) -> int:
        user_id = self._require(session)
        today = activity_day(now)
        activity_at = now if isinstance(now, str) else now.isoformat()
        return await asyncio.to_thread(
            activity_repository.update_streak, self.db_path, user_id, today, activity_at
        )

    async def set_last_activity_timestamp(self, session: Session, iso: str) -> None:
        user_id = self._require(session)
        await asyncio.to_thread(activity_repository.set_last_activity_at, self.db_path, user_id, iso)

    async def read_activity_meta(self, user_id: str) -> ActivityMeta:
        row = await asyncio.to_thread(activity_repository.get_activity_meta, self.db_path, user_id)
        if not row:
            return ActivityMeta()
        return ActivityMeta(
            last_activity_date=row.get("last_activity_date"),
            streak=int(row.get("streak") or 0),
            last_activity_at=row.get("last_activity_at"),
        )

    async def clear_all_progress(self, session: Session) -> None:
        user_id = self._require(session)
        await asyncio.to_thread(progress_repository.clear_user_progress, self.db_path, user_id)
        log_structured("progress_cleared", backend=self.backend_name, user_id=user_id)

    # ---- password reset ----------------------------------------------

    async def request_password_reset(self, identifier: str) -> PasswordResetRequest:
        return await asyncio.to_thread(self._request_password_reset_sync, identifier)

    def _request_password_reset_sync(self, identifier: str) -> PasswordResetRequest:
        text = (identifier or "").strip()
        row = user_repository.find_user_by_identifier(self.db_path, text)
        request = PasswordResetRequest(
            id=new_record_id("reset_"),
            identifier=text,
            user_id=row["id"] if row else None,
            requested_at=utc_now_iso(),
        )
        password_reset_repository.add_request(
            self.db_path, request.id, request.identifier, request.user_id, request.requested_at
        )
        log_structured("password_reset_requested", backend=self.backend_name, matched=bool(row))
        return request

    async def reset_password_with_pin(self, identifier: str, pin: str, new_password: str) -> None:
        self._check_password(new_password)
        _check_pin(pin)
        await asyncio.to_thread(self._reset_password_with_pin_sync, identifier, pin, new_password)

    def _reset_password_with_pin_sync(self, identifier: str, pin: str, new_password: str):
        row = user_repository.find_login_candidate(self.db_path, identifier)
        if not row:
            raise NotFound("No account found for this email.")
        if not verify_secret(pin or "", row.get("recovery_pin_hash")):
            raise InvalidPin("Incorrect recovery PIN.")
        user_repository.set_password_hash(self.db_path, row["id"], hash_secret(new_password))
        log_structured("password_reset_with_pin", backend=self.backend_name, user_id=row["id"])

    async def send_password_reset_email(self, email: str) -> None:
        # No mail channel offline; the request queue or the recovery PIN covers this.
        logging.info("Password reset e-mail skipped on the embedded store")

    # ---- admin -------------------------------------------------------

    async def verify_admin(self, session: Session | None) -> str:
        if session is None or not session.token:
            raise PermissionDenied("Admin session required")
        row = await asyncio.to_thread(session_repository.get_session_user, self.db_path, session.token)
        if not row or row["id"] != session.user_id or not self.config.is_admin_email(row["email"]):
            log_structured("admin_denied", backend=self.backend_name, user_id=session.user_id)
            raise PermissionDenied("Admin access required")
        return row["email"]

    async def list_users(self) -> list[User]:
        rows = await asyncio.to_thread(user_repository.list_users, self.db_path)
        return [_user_from_row(row) for row in rows]

    async def list_password_reset_requests(self, status: str | None = None) -> list[PasswordResetRequest]:
        rows = await asyncio.to_thread(password_reset_repository.list_requests, self.db_path, status)
        return [_reset_request_from_row(row) for row in rows]

    async def get_password_reset_request(self, request_id: str) -> PasswordResetRequest | None:
        row = await asyncio.to_thread(password_reset_repository.get_request, self.db_path, request_id)
        return _reset_request_from_row(row) if row else None

    async def mark_password_reset_completed(self, request_id: str) -> None:
        updated = await asyncio.to_thread(
            password_reset_repository.mark_completed, self.db_path, request_id, utc_now_iso()
        )
        if not updated:
            raise NotFound(f"Password reset request {request_id} not found")

    async def set_user_password(self, user_id: str, new_password: str) -> None:
        self._check_password(new_password)
        updated = await asyncio.to_thread(
            user_repository.set_password_hash, self.db_path, user_id, hash_secret(new_password)
        )
        if not updated:
            raise NotFound(f"User {user_id} not found")
