"""
Admin surface: the classroom report and the password-reset queue.

Every public method takes the admin's `Session` and asks the store to
verify it before touching other users' data; the store decides against the
configured administrator allow-list, never the caller.
"""
import asyncio
import logging

from core.config import Config, settings
from core.scoring import combined_progress, mean_rounded, summarize_scores
from database.contract import LearningStore
from database.errors import NotFound
from database.models import (
    AchievementRecord,
    AdminOverview,
    AdminUserSummary,
    ClassReport,
    PENDING,
    PasswordResetRequest,
    QuizAnswerDetail,
    ScoreRecord,
    Session,
    User,
)
from utils.ops_logging import log_structured


class AdminService:
    def __init__(self, store: LearningStore, config: Config | None = None):
        self.store = store
        self.config = config or settings

    async def _authorize(self, admin: Session, action: str) -> str:
        email = await self.store.verify_admin(admin)
        log_structured("admin_action", action=action, admin=email)
        return email

    # ---- class report ------------------------------------------------

    async def _summarize_user(self, user: User) -> AdminUserSummary:
        progress, scores, meta = await asyncio.gather(
            self.store.read_progress_detail(user.id),
            self.store.read_scores(user.id, limit=self.config.admin_scores_cap),
            self.store.read_activity_meta(user.id),
        )
        topic_progress = {
            topic_id: combined_progress(detail.content, detail.activities)
            for topic_id, detail in sorted(progress.items())
        }
        quiz = summarize_scores(scores)
        return AdminUserSummary(
            id=user.id,
            username=user.username,
            email=user.email,
            created_at=user.created_at,
            display_name=user.display_name,
            photo_url=user.photo_url,
            combined_progress=mean_rounded(topic_progress.values()),
            topic_progress=topic_progress,
            last_activity_date=meta.last_activity_date,
            streak=meta.streak,
            quizzes_taken=quiz.quizzes_taken,
            avg_score=quiz.avg_score,
            best_score=quiz.best_score,
            last_quiz_at=quiz.last_quiz_at,
        )

    async def _summarize_or_zero(self, user: User) -> AdminUserSummary:
        try:
            return await self._summarize_user(user)
        except Exception as e:
            logging.error(f"Admin summary fetch failed for {user.id}: {e}")
            return AdminUserSummary(
                id=user.id,
                username=user.username,
                email=user.email,
                created_at=user.created_at,
                display_name=user.display_name,
                photo_url=user.photo_url,
                fetch_failed=True,
            )

    async def fetch_all_users_with_summaries(self, admin: Session) -> ClassReport:
        await self._authorize(admin, "class_report")
        users = [u for u in await self.store.list_users() if not self.config.is_admin_email(u.email)]
        summaries = list(await asyncio.gather(*(self._summarize_or_zero(u) for u in users)))

        succeeded = [s for s in summaries if not s.fetch_failed]
        overview = AdminOverview(
            total_students=len(summaries),
            avg_combined_progress=mean_rounded(s.combined_progress for s in succeeded),
            total_quizzes_taken=sum(s.quizzes_taken for s in succeeded),
        )
        failed = len(summaries) - len(succeeded)
        if failed:
            logging.warning(f"Class report built with {failed} incomplete student row(s)")
        return ClassReport(overview=overview, users=summaries)

    # ---- per-student drill-down ----------------------------------------

    async def fetch_user_scores(self, admin: Session, user_id: str) -> list[ScoreRecord]:
        await self._authorize(admin, "user_scores")
        return await self.store.read_scores(user_id, limit=self.config.admin_scores_cap)

    async def fetch_user_achievements(self, admin: Session, user_id: str) -> list[AchievementRecord]:
        await self._authorize(admin, "user_achievements")
        return await self.store.read_achievements(user_id)

    async def fetch_quiz_attempt_details(self, admin: Session, user_id: str, score_id: str) -> list[QuizAnswerDetail]:
        await self._authorize(admin, "quiz_attempt_details")
        record = await self.store.read_score(user_id, score_id)
        if record is None:
            raise NotFound(f"Quiz attempt {score_id} not found for {user_id}")
        return sorted(record.answers or [], key=lambda a: a.question_index)

    # ---- password reset queue ------------------------------------------

    async def fetch_password_reset_requests(self, admin: Session) -> list[PasswordResetRequest]:
        await self._authorize(admin, "list_reset_requests")
        return await self.store.list_password_reset_requests(status=PENDING)

    async def complete_password_reset_request(self, admin: Session, request_id: str) -> None:
        await self._authorize(admin, "complete_reset_request")
        await self.store.mark_password_reset_completed(request_id)

    async def admin_set_password(self, admin: Session, user_id: str, new_password: str) -> None:
        await self._authorize(admin, "set_password")
        await self.store.set_user_password(user_id, new_password)

    async def resolve_password_reset_request(self, admin: Session, request_id: str, new_password: str) -> None:
        """Set the matched account's password, then close the request."""
        await self._authorize(admin, "resolve_reset_request")
        request = await self.store.get_password_reset_request(request_id)
        if request is None:
            raise NotFound(f"Password reset request {request_id} not found")
        if not request.user_id:
            raise NotFound(f"Request {request_id} did not match any account")
        await self.store.set_user_password(request.user_id, new_password)
        await self.store.mark_password_reset_completed(request_id)
