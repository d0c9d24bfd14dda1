"""
Remote store: identity through the hosted identity provider, data in Cloud
Firestore.

Document layout (collection path / document id):

    users/{uid}                         identity record
    progress/{uid}                      {"<topicId>": {"content", "activities"}}
    achievements/{uid}/items/{id}       {"id", "unlockedAt"}
    scores/{uid}/items/{autoId}         score record
    activity_meta/{uid}                 {"lastActivityDate", "streak", "lastActivity"}
    password_reset_requests/{autoId}    reset request

The Firestore client is synchronous; every call runs in a worker thread.
Score reads filtered by topic need the (topicId, completedAt desc) composite
index, and pending reset requests need (status, requestedAt).
"""
import asyncio
import datetime
import json
import logging

from google.api_core import exceptions as gcp_exceptions
from google.cloud import firestore
from google.cloud.firestore_v1 import FieldFilter
from google.oauth2 import service_account

from core.config import Config, settings
from core.scoring import activity_day, clamp_percent, merge_progress, next_streak
from database.contract import LearningStore
from database.errors import BackendUnavailable, EmailNotVerified, NotFound, PermissionDenied, UnsupportedOperation
from database.identity_toolkit import IdentityToolkitClient
from database.models import (
    AchievementRecord,
    ActivityMeta,
    COMPLETED,
    PasswordResetRequest,
    ProgressDetail,
    ScoreRecord,
    Session,
    User,
    UserCredentials,
    utc_now_iso,
)
from utils.ops_logging import log_structured

USERS = "users"
PROGRESS = "progress"
ACHIEVEMENTS = "achievements"
SCORES = "scores"
ACTIVITY_META = "activity_meta"
RESET_REQUESTS = "password_reset_requests"
ITEMS = "items"

# Firestore rejects write batches above 500 operations.
_BATCH_LIMIT = 500


def create_firestore_client(config: Config):
    kwargs = {"project": config.firebase_project_id or None, "database": config.firestore_database}
    if config.firebase_service_account:
        info = json.loads(config.firebase_service_account)
        kwargs["credentials"] = service_account.Credentials.from_service_account_info(info)
    return firestore.Client(**kwargs)


def _snapshot_data(snapshot) -> dict | None:
    if not snapshot.exists:
        return None
    return snapshot.to_dict() or {}


class RemoteStore(LearningStore):
    backend_name = "remote"

    def __init__(
        self,
        config: Config | None = None,
        client=None,
        identity: IdentityToolkitClient | None = None,
    ):
        super().__init__(config or settings)
        self.db = client or create_firestore_client(self.config)
        self.identity = identity or IdentityToolkitClient(self.config)

    # ---- references --------------------------------------------------

    def _user_ref(self, user_id: str):
        return self.db.collection(USERS).document(user_id)

    def _progress_ref(self, user_id: str):
        return self.db.collection(PROGRESS).document(user_id)

    def _meta_ref(self, user_id: str):
        return self.db.collection(ACTIVITY_META).document(user_id)

    def _scores(self, user_id: str):
        return self.db.collection(SCORES).document(user_id).collection(ITEMS)

    def _achievements(self, user_id: str):
        return self.db.collection(ACHIEVEMENTS).document(user_id).collection(ITEMS)

    def _run_transaction(self, fn):
        return firestore.transactional(fn)(self.db.transaction())

    def _get(self, ref) -> dict | None:
        return _snapshot_data(ref.get())

    async def _call(self, fn, *args, **kwargs):
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except (gcp_exceptions.ServerError, gcp_exceptions.RetryError) as e:
            logging.error(f"Firestore call {getattr(fn, '__name__', fn)} failed: {e}")
            raise BackendUnavailable("The document store is unreachable, try again later") from e

    # ---- credentials -------------------------------------------------

    async def create_user(self, credentials: UserCredentials) -> tuple[User, Session]:
        self._check_password(credentials.password)
        email = credentials.email.strip()
        username = credentials.username.strip()
        account = await self.identity.sign_up(email, credentials.password)
        user_id = account["localId"]
        id_token = account.get("idToken")

        user = User(
            id=user_id,
            username=username,
            email=email,
            created_at=utc_now_iso(),
            display_name=username,
            student_id=credentials.student_id,
        )
        # The identity record goes in before any follow-up call that can fail.
        await self._call(self._user_ref(user_id).set, user.to_dict())
        log_structured("account_created", backend=self.backend_name, user_id=user_id)

        try:
            await self.identity.update_profile(id_token, display_name=username)
            if self.config.is_placeholder_email(email):
                logging.info(f"Skipping verification e-mail for placeholder address of {user_id}")
            else:
                await self.identity.send_email_verification(id_token)
        except Exception as e:
            logging.error(f"Account {user_id} was created but the sign-up follow-up failed: {e}")
            raise

        session = Session(
            user_id=user_id,
            email=email,
            username=username,
            token=id_token,
            refresh_token=account.get("refreshToken"),
        )
        return user, session

    def _find_email_by_username_sync(self, username: str) -> str | None:
        docs = (
            self.db.collection(USERS)
            .where(filter=FieldFilter("username", "==", username))
            .limit(1)
            .stream()
        )
        for doc in docs:
            return (doc.to_dict() or {}).get("email")
        return None

    async def _resolve_login_email(self, identifier: str) -> str | None:
        text = (identifier or "").strip()
        if "@" in text:
            return text
        if not text:
            return None
        return await self._call(self._find_email_by_username_sync, text)

    async def login_user(self, identifier: str, password: str) -> Session | None:
        email = await self._resolve_login_email(identifier)
        if not email:
            log_structured("login_rejected", backend=self.backend_name)
            return None
        account = await self.identity.sign_in_with_password(email, password or "")
        if account is None:
            log_structured("login_rejected", backend=self.backend_name)
            return None

        id_token = account.get("idToken")
        email = account.get("email") or email
        if not self.config.is_admin_email(email) and not self.config.is_placeholder_email(email):
            info = await self.identity.lookup(id_token)
            if not info or not info.get("emailVerified"):
                log_structured("login_unverified", backend=self.backend_name, user_id=account.get("localId"))
                raise EmailNotVerified("Please verify your e-mail address before signing in.")

        user_id = account["localId"]
        doc = await self._call(self._get, self._user_ref(user_id))
        log_structured("login", backend=self.backend_name, user_id=user_id)
        return Session(
            user_id=user_id,
            email=email,
            username=(doc or {}).get("username") or account.get("displayName"),
            token=id_token,
            refresh_token=account.get("refreshToken"),
        )

    async def get_user_data(self, session: Session | None) -> User | None:
        if session is None:
            return None
        doc = await self._call(self._get, self._user_ref(session.user_id))
        return User.from_dict(session.user_id, doc) if doc is not None else None

    async def sign_out(self, session: Session | None) -> None:
        # ID tokens expire on their own; dropping the handle is the sign-out.
        if session is not None:
            log_structured("sign_out", backend=self.backend_name, user_id=session.user_id)

    async def update_user_profile(
        self, session: Session, display_name: str | None = None, photo_url: str | None = None
    ) -> None:
        user_id = self._require(session)
        if session.token:
            await self.identity.update_profile(session.token, display_name=display_name, photo_url=photo_url)
        fields = {}
        if display_name is not None:
            fields["displayName"] = display_name
        if photo_url is not None:
            fields["photoUrl"] = photo_url
        if not fields:
            return
        try:
            await self._call(self._user_ref(user_id).update, fields)
        except gcp_exceptions.NotFound:
            logging.warning(f"No identity record for {user_id}; profile change kept at the provider only")

    # ---- progress ----------------------------------------------------

    def _update_topic_sync(self, user_id: str, key: str, compute) -> None:
        """Transactional read-modify-write of one topic entry; other topics are not rewritten."""
        ref = self._progress_ref(user_id)

        def apply(transaction):
            snapshot = ref.get(transaction=transaction)
            stored = (_snapshot_data(snapshot) or {}).get(key)
            existing = ProgressDetail.from_dict(stored) if isinstance(stored, dict) else None
            transaction.set(ref, {key: compute(existing)}, merge=True)

        self._run_transaction(apply)

    async def save_progress(self, session: Session, topic_id: int, content, activities) -> None:
        user_id = self._require(session)

        def compute(existing):
            current = (existing.content, existing.activities) if existing else None
            merged_content, merged_activities = merge_progress(current, content, activities)
            return {"content": merged_content, "activities": merged_activities}

        await self._call(self._update_topic_sync, user_id, str(int(topic_id)), compute)

    async def save_content_progress(self, session: Session, topic_id: int, content) -> None:
        user_id = self._require(session)
        value = clamp_percent(content)

        def compute(existing):
            if existing is None:
                return {"content": value, "activities": 0}
            return {"content": max(existing.content, value)}

        await self._call(self._update_topic_sync, user_id, str(int(topic_id)), compute)

    async def save_activities_progress(self, session: Session, topic_id: int, activities) -> None:
        user_id = self._require(session)
        value = clamp_percent(activities)

        def compute(existing):
            if existing is None:
                return {"content": 0, "activities": value}
            return {"activities": value}

        await self._call(self._update_topic_sync, user_id, str(int(topic_id)), compute)

    def _reset_topic_sync(self, user_id: str, key: str) -> None:
        ref = self._progress_ref(user_id)

        def apply(transaction):
            doc = _snapshot_data(ref.get(transaction=transaction))
            if not doc or key not in doc:
                return
            del doc[key]
            transaction.set(ref, doc)

        self._run_transaction(apply)

    async def reset_topic(self, session: Session, topic_id: int) -> None:
        user_id = self._require(session)
        await self._call(self._reset_topic_sync, user_id, str(int(topic_id)))

    async def read_progress_detail(self, user_id: str) -> dict[int, ProgressDetail]:
        doc = await self._call(self._get, self._progress_ref(user_id))
        detail = {}
        for key, value in (doc or {}).items():
            if not isinstance(value, dict):
                continue
            try:
                detail[int(key)] = ProgressDetail.from_dict(value)
            except ValueError:
                logging.warning(f"Ignoring malformed progress key {key!r} for {user_id}")
        return detail

    # ---- achievements ------------------------------------------------

    def _create_achievement_sync(self, user_id: str, record: AchievementRecord) -> bool:
        try:
            self._achievements(user_id).document(record.id).create(record.to_dict())
        except gcp_exceptions.AlreadyExists:
            return False
        return True

    async def unlock_achievement(self, session: Session, achievement_id: str) -> None:
        user_id = self._require(session)
        record = AchievementRecord(id=achievement_id, unlocked_at=utc_now_iso())
        if await self._call(self._create_achievement_sync, user_id, record):
            logging.info(f"[ACHIEVEMENT] user={user_id} earned '{achievement_id}'")

    async def read_achievements(self, user_id: str) -> list[AchievementRecord]:
        docs = await self._call(lambda: list(self._achievements(user_id).stream()))
        records = []
        for doc in docs:
            data = doc.to_dict() or {}
            records.append(AchievementRecord(id=data.get("id") or doc.id, unlocked_at=data.get("unlockedAt") or ""))
        return records

    # ---- scores ------------------------------------------------------

    async def save_score(self, session: Session, record: ScoreRecord) -> ScoreRecord:
        user_id = self._require(session)
        record.completed_at = record.completed_at or utc_now_iso()
        _, ref = await self._call(self._scores(user_id).add, record.to_dict())
        record.id = ref.id
        return record

    def _read_scores_sync(self, user_id: str, topic_id: int | None, limit: int | None) -> list[ScoreRecord]:
        query = self._scores(user_id)
        if topic_id is not None:
            query = query.where(filter=FieldFilter("topicId", "==", int(topic_id)))
        query = query.order_by("completedAt", direction=firestore.Query.DESCENDING)
        if limit is not None:
            query = query.limit(limit)
        return [ScoreRecord.from_dict(doc.id, doc.to_dict() or {}) for doc in query.stream()]

    async def read_scores(
        self, user_id: str, topic_id: int | None = None, limit: int | None = None
    ) -> list[ScoreRecord]:
        return await self._call(self._read_scores_sync, user_id, topic_id, limit)

    async def read_score(self, user_id: str, score_id: str) -> ScoreRecord | None:
        doc = await self._call(self._get, self._scores(user_id).document(score_id))
        return ScoreRecord.from_dict(score_id, doc) if doc is not None else None

    # ---- activity / streak -------------------------------------------

    def _update_streak_sync(self, user_id: str, today: datetime.date, activity_at: str) -> int:
        ref = self._meta_ref(user_id)

        def apply(transaction):
            meta = ActivityMeta.from_dict(_snapshot_data(ref.get(transaction=transaction)))
            streak = next_streak(meta.last_activity_date, meta.streak, today)
            transaction.set(ref, ActivityMeta(today.isoformat(), streak, activity_at).to_dict(), merge=True)
            return streak

        return self._run_transaction(apply)

    async def set_last_activity_and_streak(self, session: Session, now: datetime.datetime | str) -> int:
        user_id = self._require(session)
        today = activity_day(now)
        activity_at = now if isinstance(now, str) else now.isoformat()
        return await self._call(self._update_streak_sync, user_id, today, activity_at)

    async def set_last_activity_timestamp(self, session: Session, iso: str) -> None:
        user_id = self._require(session)
        await self._call(self._meta_ref(user_id).set, {"lastActivity": iso}, merge=True)

    async def read_activity_meta(self, user_id: str) -> ActivityMeta:
        doc = await self._call(self._get, self._meta_ref(user_id))
        return ActivityMeta.from_dict(doc)

    def _clear_all_progress_sync(self, user_id: str) -> None:
        refs = [self._progress_ref(user_id), self._meta_ref(user_id)]
        for items in (self._scores(user_id), self._achievements(user_id)):
            refs.extend(doc.reference for doc in items.stream())
        for start in range(0, len(refs), _BATCH_LIMIT):
            batch = self.db.batch()
            for ref in refs[start:start + _BATCH_LIMIT]:
                batch.delete(ref)
            batch.commit()

    async def clear_all_progress(self, session: Session) -> None:
        user_id = self._require(session)
        await self._call(self._clear_all_progress_sync, user_id)
        log_structured("progress_cleared", backend=self.backend_name, user_id=user_id)

    # ---- password reset ----------------------------------------------

    def _match_identifier_sync(self, needle: str) -> str | None:
        # Identifiers are matched case-insensitively, which Firestore cannot query for.
        for doc in self.db.collection(USERS).stream():
            data = doc.to_dict() or {}
            candidates = (data.get("email"), data.get("username"), data.get("studentId"))
            if any((value or "").strip().lower() == needle for value in candidates):
                return doc.id
        return None

    async def request_password_reset(self, identifier: str) -> PasswordResetRequest:
        text = (identifier or "").strip()
        needle = text.lower()
        user_id = await self._call(self._match_identifier_sync, needle) if needle else None

        request = PasswordResetRequest(id="", identifier=text, user_id=user_id, requested_at=utc_now_iso())
        _, ref = await self._call(self.db.collection(RESET_REQUESTS).add, request.to_dict())
        request.id = ref.id
        log_structured("password_reset_requested", backend=self.backend_name, matched=bool(user_id))
        return request

    async def reset_password_with_pin(self, identifier: str, pin: str, new_password: str) -> None:
        raise UnsupportedOperation("Recovery PINs are only available on the offline store")

    async def send_password_reset_email(self, email: str) -> None:
        await self.identity.send_password_reset_email((email or "").strip())
        log_structured("password_reset_email_sent", backend=self.backend_name)

    # ---- admin -------------------------------------------------------

    async def verify_admin(self, session: Session | None) -> str:
        if session is None or not session.token:
            raise PermissionDenied("Admin session required")
        claims = await self.identity.verify_id_token(session.token)
        if not claims:
            log_structured("admin_denied", backend=self.backend_name, user_id=session.user_id)
            raise PermissionDenied("Admin session is invalid or expired")
        subject = claims.get("user_id") or claims.get("sub")
        email = claims.get("email")
        if subject != session.user_id or not self.config.is_admin_email(email):
            log_structured("admin_denied", backend=self.backend_name, user_id=session.user_id)
            raise PermissionDenied("Admin access required")
        return email

    async def list_users(self) -> list[User]:
        docs = await self._call(lambda: list(self.db.collection(USERS).stream()))
        return [User.from_dict(doc.id, doc.to_dict() or {}) for doc in docs]

    def _list_reset_requests_sync(self, status: str | None) -> list[PasswordResetRequest]:
        query = self.db.collection(RESET_REQUESTS)
        if status:
            query = query.where(filter=FieldFilter("status", "==", status))
        query = query.order_by("requestedAt")
        return [PasswordResetRequest.from_dict(doc.id, doc.to_dict() or {}) for doc in query.stream()]

    async def list_password_reset_requests(self, status: str | None = None) -> list[PasswordResetRequest]:
        return await self._call(self._list_reset_requests_sync, status)

    async def get_password_reset_request(self, request_id: str) -> PasswordResetRequest | None:
        doc = await self._call(self._get, self.db.collection(RESET_REQUESTS).document(request_id))
        return PasswordResetRequest.from_dict(request_id, doc) if doc is not None else None

    async def mark_password_reset_completed(self, request_id: str) -> None:
        ref = self.db.collection(RESET_REQUESTS).document(request_id)
        try:
            await self._call(ref.update, {"status": COMPLETED, "completedAt": utc_now_iso()})
        except gcp_exceptions.NotFound as e:
            raise NotFound(f"Password reset request {request_id} not found") from e

    async def set_user_password(self, user_id: str, new_password: str) -> None:
        self._check_password(new_password)
        await self.identity.admin_set_password(user_id, new_password)
        log_structured("admin_password_set", backend=self.backend_name, user_id=user_id)
