import datetime
from dataclasses import dataclass, field
from typing import Any


def utc_now_iso() -> str:
    return datetime.datetime.now(datetime.timezone.utc).isoformat(timespec="microseconds")


def _as_int(value: Any, default: int = 0) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


@dataclass
class User:
    id: str
    username: str
    email: str
    created_at: str
    display_name: str | None = None
    photo_url: str | None = None
    student_id: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data = {
            "username": self.username,
            "email": self.email,
            "createdAt": self.created_at,
        }
        if self.display_name:
            data["displayName"] = self.display_name
        if self.photo_url:
            data["photoUrl"] = self.photo_url
        if self.student_id:
            data["studentId"] = self.student_id
        return data

    @classmethod
    def from_dict(cls, user_id: str, data: dict[str, Any]) -> "User":
        return cls(
            id=user_id,
            username=data.get("username") or "",
            email=data.get("email") or "",
            created_at=data.get("createdAt") or "",
            display_name=data.get("displayName"),
            photo_url=data.get("photoUrl"),
            student_id=data.get("studentId"),
        )


@dataclass
class UserCredentials:
    username: str
    email: str
    password: str
    recovery_pin: str | None = None
    student_id: str | None = None


@dataclass(frozen=True)
class Session:
    user_id: str
    email: str
    username: str | None = None
    # Opaque proof of login: a persisted session token (embedded) or a provider ID token (remote).
    token: str | None = None
    refresh_token: str | None = None


@dataclass
class ProgressDetail:
    content: int = 0
    activities: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"content": self.content, "activities": self.activities}

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ProgressDetail":
        data = data or {}
        return cls(content=_as_int(data.get("content")), activities=_as_int(data.get("activities")))


@dataclass
class AchievementRecord:
    id: str
    unlocked_at: str

    def to_dict(self) -> dict[str, Any]:
        return {"id": self.id, "unlockedAt": self.unlocked_at}


@dataclass
class QuizAnswerDetail:
    question_index: int
    selected_answer: str
    correct_answer: str
    is_correct: bool
    question_text: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "questionIndex": self.question_index,
            "selectedAnswer": self.selected_answer,
            "correctAnswer": self.correct_answer,
            "isCorrect": self.is_correct,
        }
        if self.question_text is not None:
            data["questionText"] = self.question_text
        return data

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "QuizAnswerDetail":
        return cls(
            question_index=_as_int(data.get("questionIndex")),
            selected_answer=str(data.get("selectedAnswer") or ""),
            correct_answer=str(data.get("correctAnswer") or ""),
            is_correct=bool(data.get("isCorrect")),
            question_text=data.get("questionText"),
        )


@dataclass
class ScoreRecord:
    topic_id: int
    score: int
    total: int
    passed: bool
    quiz_id: str | None = None
    difficulty: str | None = None
    answers: list[QuizAnswerDetail] | None = None
    id: str | None = None
    completed_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "topicId": self.topic_id,
            "quizId": self.quiz_id,
            "score": self.score,
            "total": self.total,
            "passed": bool(self.passed),
            "completedAt": self.completed_at,
        }
        if self.difficulty is not None:
            data["difficulty"] = self.difficulty
        if self.answers is not None:
            data["answers"] = [answer.to_dict() for answer in self.answers]
        return data

    @classmethod
    def from_dict(cls, score_id: str | None, data: dict[str, Any]) -> "ScoreRecord":
        answers = data.get("answers")
        return cls(
            id=score_id,
            topic_id=_as_int(data.get("topicId")),
            quiz_id=data.get("quizId"),
            difficulty=data.get("difficulty"),
            score=_as_int(data.get("score")),
            total=_as_int(data.get("total")),
            passed=bool(data.get("passed")),
            completed_at=data.get("completedAt") or "",
            answers=[QuizAnswerDetail.from_dict(a) for a in answers] if isinstance(answers, list) else None,
        )


@dataclass
class ActivityMeta:
    last_activity_date: str | None = None
    streak: int = 0
    last_activity_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "lastActivityDate": self.last_activity_date,
            "streak": self.streak,
            "lastActivity": self.last_activity_at,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "ActivityMeta":
        data = data or {}
        return cls(
            last_activity_date=data.get("lastActivityDate"),
            streak=max(_as_int(data.get("streak")), 0),
            last_activity_at=data.get("lastActivity"),
        )


PENDING = "pending"
COMPLETED = "completed"


@dataclass
class PasswordResetRequest:
    id: str
    identifier: str
    user_id: str | None
    requested_at: str
    status: str = PENDING
    completed_at: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "identifier": self.identifier,
            "userId": self.user_id,
            "requestedAt": self.requested_at,
            "status": self.status,
            "completedAt": self.completed_at,
        }

    @classmethod
    def from_dict(cls, request_id: str, data: dict[str, Any]) -> "PasswordResetRequest":
        return cls(
            id=request_id,
            identifier=data.get("identifier") or "",
            user_id=data.get("userId"),
            requested_at=data.get("requestedAt") or "",
            status=data.get("status") or PENDING,
            completed_at=data.get("completedAt"),
        )


@dataclass
class AdminUserSummary:
    id: str
    username: str
    email: str
    created_at: str
    display_name: str | None = None
    photo_url: str | None = None
    combined_progress: int = 0
    topic_progress: dict[int, int] = field(default_factory=dict)
    last_activity_date: str | None = None
    streak: int | None = None
    quizzes_taken: int = 0
    avg_score: int = 0
    best_score: int = 0
    last_quiz_at: str | None = None
    fetch_failed: bool = False


@dataclass
class AdminOverview:
    total_students: int = 0
    avg_combined_progress: int = 0
    total_quizzes_taken: int = 0


@dataclass
class ClassReport:
    overview: AdminOverview
    users: list[AdminUserSummary]
