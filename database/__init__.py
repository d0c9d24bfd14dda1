import logging

from core.config import Config, settings

# Public API for the database package
from database.contract import LearningStore as LearningStore
from database.document_store import RemoteStore as RemoteStore
from database.errors import (
    BackendUnavailable as BackendUnavailable,
    DuplicateAccount as DuplicateAccount,
    EmailNotVerified as EmailNotVerified,
    InvalidPin as InvalidPin,
    NotAuthenticated as NotAuthenticated,
    NotFound as NotFound,
    PermissionDenied as PermissionDenied,
    StoreError as StoreError,
    UnsupportedOperation as UnsupportedOperation,
    WeakPassword as WeakPassword,
)
from database.models import (
    AchievementRecord as AchievementRecord,
    ProgressDetail as ProgressDetail,
    QuizAnswerDetail as QuizAnswerDetail,
    ScoreRecord as ScoreRecord,
    Session as Session,
    User as User,
    UserCredentials as UserCredentials,
)
from database.sqlite_store import EmbeddedStore as EmbeddedStore

__all__ = [
    "create_store",
    "LearningStore",
    "EmbeddedStore",
    "RemoteStore",
    "StoreError",
    "BackendUnavailable",
    "DuplicateAccount",
    "EmailNotVerified",
    "InvalidPin",
    "NotAuthenticated",
    "NotFound",
    "PermissionDenied",
    "UnsupportedOperation",
    "WeakPassword",
    "AchievementRecord",
    "ProgressDetail",
    "QuizAnswerDetail",
    "ScoreRecord",
    "Session",
    "User",
    "UserCredentials",
]


def create_store(config: Config | None = None) -> LearningStore:
    """Builds the store for the configured deployment target (STORE_BACKEND)."""
    config = config or settings
    backend = config.store_backend
    if backend == "remote":
        store = RemoteStore(config)
    elif backend == "embedded":
        store = EmbeddedStore(config)
    else:
        raise ValueError(f"Unknown STORE_BACKEND '{backend}' (expected 'embedded' or 'remote')")
    logging.info(f"Store backend: {store.backend_name}")
    return store
