import datetime
import logging

from database.contract import LearningStore
from database.errors import NotAuthenticated
from database.models import (
    AchievementRecord,
    PasswordResetRequest,
    ProgressDetail,
    ScoreRecord,
    Session,
    User,
    UserCredentials,
)


class LearnerClient:
    """
    One learner's handle on a store. It owns the current `Session`, so two
    clients over the same store are two independent signed-in users.
    """

    def __init__(self, store: LearningStore):
        self.store = store
        self.session: Session | None = None

    @property
    def is_signed_in(self) -> bool:
        return self.session is not None

    def _active_session(self) -> Session:
        if self.session is None:
            raise NotAuthenticated("Sign in first")
        return self.session

    # ---- credentials -------------------------------------------------

    async def create_user(self, credentials: UserCredentials) -> User:
        user, session = await self.store.create_user(credentials)
        self.session = session
        return user

    async def login_user(self, identifier: str, password: str) -> bool:
        session = await self.store.login_user(identifier, password)
        if session is None:
            return False
        self.session = session
        return True

    async def get_user_data(self) -> User | None:
        return await self.store.get_user_data(self.session)

    async def sign_out(self) -> None:
        session, self.session = self.session, None
        await self.store.sign_out(session)
        if session is not None:
            logging.info(f"Signed out {session.user_id}")

    async def update_user_profile(self, display_name: str | None = None, photo_url: str | None = None) -> None:
        await self.store.update_user_profile(
            self._active_session(), display_name=display_name, photo_url=photo_url
        )

    # ---- progress ----------------------------------------------------

    async def save_progress(self, topic_id: int, content, activities) -> None:
        await self.store.save_progress(self._active_session(), topic_id, content, activities)

    async def save_content_progress(self, topic_id: int, content) -> None:
        await self.store.save_content_progress(self._active_session(), topic_id, content)

    async def save_activities_progress(self, topic_id: int, activities) -> None:
        await self.store.save_activities_progress(self._active_session(), topic_id, activities)

    async def get_progress(self, topic_id: int | None = None):
        return await self.store.get_progress(self._active_session(), topic_id)

    async def get_progress_detail(self, topic_id: int | None = None) -> ProgressDetail | dict | None:
        return await self.store.get_progress_detail(self._active_session(), topic_id)

    async def reset_topic(self, topic_id: int) -> None:
        await self.store.reset_topic(self._active_session(), topic_id)

    # ---- achievements / scores -----------------------------------------

    async def unlock_achievement(self, achievement_id: str) -> None:
        await self.store.unlock_achievement(self._active_session(), achievement_id)

    async def get_achievements(self) -> list[AchievementRecord]:
        return await self.store.get_achievements(self._active_session())

    async def save_score(self, record: ScoreRecord) -> ScoreRecord:
        return await self.store.save_score(self._active_session(), record)

    async def get_scores(self, topic_id: int | None = None) -> list[ScoreRecord]:
        return await self.store.get_scores(self._active_session(), topic_id)

    # ---- activity ----------------------------------------------------

    async def set_last_activity_and_streak(self, now: datetime.datetime | str | None = None) -> int:
        if now is None:
            now = datetime.datetime.now()
        return await self.store.set_last_activity_and_streak(self._active_session(), now)

    async def get_streak(self) -> int:
        return await self.store.get_streak(self._active_session())

    async def set_last_activity_timestamp(self, iso: str) -> None:
        await self.store.set_last_activity_timestamp(self._active_session(), iso)

    async def get_last_activity_timestamp(self) -> str | None:
        return await self.store.get_last_activity_timestamp(self._active_session())

    async def clear_all_progress(self) -> None:
        await self.store.clear_all_progress(self._active_session())

    # ---- password reset (no session needed) ----------------------------

    async def request_password_reset(self, identifier: str) -> PasswordResetRequest:
        return await self.store.request_password_reset(identifier)

    async def reset_password_with_pin(self, identifier: str, pin: str, new_password: str) -> None:
        await self.store.reset_password_with_pin(identifier, pin, new_password)

    async def send_password_reset_email(self, email: str) -> None:
        await self.store.send_password_reset_email(email)
