"""
The behavioral contract shared by the embedded (relational) and remote
(document) stores.

Student-facing operations take the caller's `Session` explicitly so several
simulated sessions can run side by side. The per-user `read_*` primitives
are what the admin pipeline fans out over; the student reads are built on
top of them here so both adapters blend and cap results identically.
"""
import abc
import datetime

from core.config import Config
from core.scoring import combined_progress
from database.errors import NotAuthenticated, WeakPassword
from database.models import (
    AchievementRecord,
    ActivityMeta,
    PasswordResetRequest,
    ProgressDetail,
    ScoreRecord,
    Session,
    User,
    UserCredentials,
)


class LearningStore(abc.ABC):
    backend_name = "abstract"

    def __init__(self, config: Config):
        self.config = config

    # ---- helpers -----------------------------------------------------

    @staticmethod
    def _require(session: Session | None) -> str:
        if session is None or not session.user_id:
            raise NotAuthenticated("No active session")
        return session.user_id

    def _check_password(self, password: str):
        if not isinstance(password, str) or len(password) < self.config.min_password_length:
            raise WeakPassword(
                f"Password must be at least {self.config.min_password_length} characters"
            )

    async def close(self) -> None:
        return

    # ---- credentials -------------------------------------------------

    @abc.abstractmethod
    async def create_user(self, credentials: UserCredentials) -> tuple[User, Session]:
        ...

    @abc.abstractmethod
    async def login_user(self, identifier: str, password: str) -> Session | None:
        ...

    @abc.abstractmethod
    async def get_user_data(self, session: Session | None) -> User | None:
        ...

    @abc.abstractmethod
    async def sign_out(self, session: Session | None) -> None:
        ...

    @abc.abstractmethod
    async def update_user_profile(
        self, session: Session, display_name: str | None = None, photo_url: str | None = None
    ) -> None:
        ...

    # ---- progress ----------------------------------------------------

    @abc.abstractmethod
    async def save_progress(self, session: Session, topic_id: int, content, activities) -> None:
        ...

    @abc.abstractmethod
    async def save_content_progress(self, session: Session, topic_id: int, content) -> None:
        """Raises the content percentage only; the stored activities value is left as is."""

    @abc.abstractmethod
    async def save_activities_progress(self, session: Session, topic_id: int, activities) -> None:
        """Replaces the activities percentage only; the stored content value is left as is."""

    @abc.abstractmethod
    async def reset_topic(self, session: Session, topic_id: int) -> None:
        ...

    async def get_progress(self, session: Session, topic_id: int | None = None):
        user_id = self._require(session)
        detail = await self.read_progress_detail(user_id)
        if topic_id is not None:
            item = detail.get(int(topic_id))
            return combined_progress(item.content, item.activities) if item else 0
        return {tid: combined_progress(d.content, d.activities) for tid, d in detail.items()}

    async def get_progress_detail(self, session: Session, topic_id: int | None = None):
        user_id = self._require(session)
        detail = await self.read_progress_detail(user_id)
        if topic_id is not None:
            return detail.get(int(topic_id))
        return detail

    # ---- achievements ------------------------------------------------

    @abc.abstractmethod
    async def unlock_achievement(self, session: Session, achievement_id: str) -> None:
        ...

    async def get_achievements(self, session: Session) -> list[AchievementRecord]:
        return await self.read_achievements(self._require(session))

    # ---- scores ------------------------------------------------------

    @abc.abstractmethod
    async def save_score(self, session: Session, record: ScoreRecord) -> ScoreRecord:
        ...

    async def get_scores(self, session: Session, topic_id: int | None = None) -> list[ScoreRecord]:
        return await self.read_scores(
            self._require(session), topic_id=topic_id, limit=self.config.scores_page_size
        )

    # ---- activity / streak -------------------------------------------

    @abc.abstractmethod
    async def set_last_activity_and_streak(self, session: Session, now: datetime.datetime | str) -> int:
        ...

    @abc.abstractmethod
    async def set_last_activity_timestamp(self, session: Session, iso: str) -> None:
        ...

    async def get_streak(self, session: Session) -> int:
        meta = await self.read_activity_meta(self._require(session))
        return meta.streak

    async def get_last_activity_timestamp(self, session: Session) -> str | None:
        meta = await self.read_activity_meta(self._require(session))
        return meta.last_activity_at

    @abc.abstractmethod
    async def clear_all_progress(self, session: Session) -> None:
        ...

    # ---- password reset ----------------------------------------------

    @abc.abstractmethod
    async def request_password_reset(self, identifier: str) -> PasswordResetRequest:
        ...

    @abc.abstractmethod
    async def reset_password_with_pin(self, identifier: str, pin: str, new_password: str) -> None:
        ...

    @abc.abstractmethod
    async def send_password_reset_email(self, email: str) -> None:
        ...

    # ---- per-user reads and privileged writes (admin pipeline) --------

    @abc.abstractmethod
    async def verify_admin(self, session: Session | None) -> str:
        """Return the verified admin e-mail or raise PermissionDenied."""

    @abc.abstractmethod
    async def list_users(self) -> list[User]:
        ...

    @abc.abstractmethod
    async def read_progress_detail(self, user_id: str) -> dict[int, ProgressDetail]:
        ...

    @abc.abstractmethod
    async def read_scores(
        self, user_id: str, topic_id: int | None = None, limit: int | None = None
    ) -> list[ScoreRecord]:
        ...

    @abc.abstractmethod
    async def read_score(self, user_id: str, score_id: str) -> ScoreRecord | None:
        ...

    @abc.abstractmethod
    async def read_achievements(self, user_id: str) -> list[AchievementRecord]:
        ...

    @abc.abstractmethod
    async def read_activity_meta(self, user_id: str) -> ActivityMeta:
        ...

    @abc.abstractmethod
    async def list_password_reset_requests(self, status: str | None = None) -> list[PasswordResetRequest]:
        ...

    @abc.abstractmethod
    async def get_password_reset_request(self, request_id: str) -> PasswordResetRequest | None:
        ...

    @abc.abstractmethod
    async def mark_password_reset_completed(self, request_id: str) -> None:
        ...

    @abc.abstractmethod
    async def set_user_password(self, user_id: str, new_password: str) -> None:
        ...
