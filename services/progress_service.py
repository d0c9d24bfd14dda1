import datetime
import logging
from dataclasses import dataclass

from core.scoring import attempt_percent
from database.models import ScoreRecord
from services.learner_client import LearnerClient


@dataclass(frozen=True)
class Achievement:
    id: str
    title: str
    description: str
    category: str
    points: int


ACHIEVEMENTS = {
    a.id: a
    for a in (
        Achievement("geometry_master", "Geometry Master", "Complete all Geometry topics with 100% mastery", "topic_mastery", 50),
        Achievement("streak_7", "Weekly Warrior", "Maintain a 7-day learning streak", "streak", 25),
        Achievement("algebra_expert", "Algebra Expert", "Solve 100 algebra problems", "topic_mastery", 75),
        Achievement("speed_demon", "Speed Demon", "Complete exercises with 95% accuracy in under 2 minutes", "speed", 100),
        Achievement("streak_30", "Monthly Champion", "Maintain a 30-day learning streak", "streak", 150),
        Achievement("level_10", "Level Up", "Reach level 10", "level", 30),
        Achievement("perfect_score", "Perfect Score", "Get 100% on any quiz", "special", 40),
        Achievement("statistics_master", "Statistics Master", "Complete all Statistics topics", "topic_mastery", 75),
        Achievement("consistency_king", "Consistency King", "Study every day for 2 weeks", "consistency", 60),
        Achievement("fast_learner", "Fast Learner", "Complete 5 topics in one day", "speed", 50),
        Achievement("trigonometry_expert", "Trigonometry Expert", "Master all trigonometry concepts", "topic_mastery", 60),
        Achievement("night_owl", "Night Owl", "Complete 10 exercises after 10 PM", "special", 20),
    )
}

# Streak length -> achievement unlocked when reached.
STREAK_MILESTONES = (
    (7, "streak_7"),
    (14, "consistency_king"),
    (30, "streak_30"),
)

# Each practice difficulty is worth a third of the activities share.
PRACTICE_LEVELS = {"easy": 33, "medium": 66, "hard": 100}


class ProgressService:
    """Progress writes the way lesson and practice screens perform them."""

    def __init__(self, client: LearnerClient):
        self.client = client

    async def save_content_progress(self, topic_id: int, percent) -> None:
        await self.client.save_content_progress(topic_id, percent)

    async def save_activities_progress(self, topic_id: int, percent) -> None:
        await self.client.save_activities_progress(topic_id, percent)

    async def save_practice_level(self, topic_id: int, level: str) -> int:
        key = (level or "").strip().lower()
        if key not in PRACTICE_LEVELS:
            raise ValueError(f"Unknown practice level '{level}' (expected easy, medium or hard)")
        percent = PRACTICE_LEVELS[key]
        await self.save_activities_progress(topic_id, percent)
        return percent

    async def reset_topic_progress(self, topic_id: int | None = None) -> None:
        """Reset one topic, or every progress record, score and achievement when topic_id is None."""
        if topic_id is None:
            await self.client.clear_all_progress()
        else:
            await self.client.reset_topic(topic_id)

    async def record_activity(self, now: datetime.datetime | str | None = None) -> int:
        streak = await self.client.set_last_activity_and_streak(now)
        await self.award_for_streak(streak)
        return streak

    async def award_for_streak(self, streak: int) -> list[str]:
        awarded = []
        for days, achievement_id in STREAK_MILESTONES:
            if streak >= days:
                await self.client.unlock_achievement(achievement_id)
                awarded.append(achievement_id)
        return awarded

    async def record_quiz(self, record: ScoreRecord) -> ScoreRecord:
        saved = await self.client.save_score(record)
        await self.award_for_score(saved)
        return saved

    async def award_for_score(self, record: ScoreRecord) -> list[str]:
        awarded = []
        if record.total and attempt_percent(record.score, record.total) >= 100:
            await self.client.unlock_achievement("perfect_score")
            awarded.append("perfect_score")
        if awarded:
            logging.info(f"Quiz on topic {record.topic_id} earned {awarded}")
        return awarded
