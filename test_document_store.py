import asyncio
import dataclasses

import pytest
from google.api_core import exceptions as gcp_exceptions

from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, FakeFirestore, FakeIdentity, credentials, make_config, make_store
from database.document_store import RemoteStore
from database.errors import (
    BackendUnavailable,
    DuplicateAccount,
    EmailNotVerified,
    NotFound,
    PermissionDenied,
    UnsupportedOperation,
)
from database.identity_toolkit import IdentityToolkitClient
from database.models import QuizAnswerDetail, ScoreRecord, Session, UserCredentials


@pytest.fixture
def strict_identity():
    return FakeIdentity(auto_verify=False)


@pytest.fixture
def strict_store(tmp_path, strict_identity):
    return make_store("remote", tmp_path, identity=strict_identity)


def test_sign_up_sends_verification_except_for_placeholder_addresses(strict_store, strict_identity):
    async def scenario():
        user, _ = await strict_store.create_user(credentials("ana"))
        placeholder, _ = await strict_store.create_user(
            UserCredentials("kid42", "kid42@noemail.mathbridge.app", "kid42-pass")
        )
        assert strict_identity.verification_sent == [user.id]
        assert placeholder.id not in strict_identity.verification_sent

    asyncio.run(scenario())


def test_unverified_login_is_refused_unless_exempt(strict_store, strict_identity):
    async def scenario():
        await strict_store.create_user(credentials("ben"))
        await strict_store.create_user(UserCredentials("kid7", "kid7@noemail.mathbridge.app", "kid7-pass"))
        await strict_store.create_user(UserCredentials("ms_rivera", ADMIN_EMAIL, ADMIN_PASSWORD))

        with pytest.raises(EmailNotVerified):
            await strict_store.login_user("ben@school.test", "ben-pass")
        assert await strict_store.login_user("kid7", "kid7-pass") is not None
        assert await strict_store.login_user(ADMIN_EMAIL, ADMIN_PASSWORD) is not None
        # wrong password never reaches the verification check
        assert await strict_store.login_user("ben@school.test", "nope-nope") is None

        strict_identity.accounts["ben@school.test"]["emailVerified"] = True
        session = await strict_store.login_user("ben", "ben-pass")
        assert session.username == "ben"
        assert session.token

    asyncio.run(scenario())


def test_documents_use_the_camel_case_layout(remote_store):
    async def scenario():
        user, session = await remote_store.create_user(credentials("cai"))
        await remote_store.save_progress(session, 3, 45, 66)
        await remote_store.set_last_activity_and_streak(session, "2026-04-01T10:00:00")
        answers = [QuizAnswerDetail(1, "a", "c", False)]
        saved = await remote_store.save_score(
            session, ScoreRecord(3, 4, 5, True, quiz_id="q-3", difficulty="medium", answers=answers)
        )
        return user, saved

    user, saved = asyncio.run(scenario())
    db = remote_store.db
    assert db.data(f"users/{user.id}")["username"] == "cai"
    assert db.data(f"progress/{user.id}") == {"3": {"content": 45, "activities": 66}}
    meta = db.data(f"activity_meta/{user.id}")
    assert meta["lastActivityDate"] == "2026-04-01"
    assert meta["streak"] == 0
    score = db.data(f"scores/{user.id}/items/{saved.id}")
    assert score["topicId"] == 3
    assert score["quizId"] == "q-3"
    assert score["answers"][0]["selectedAnswer"] == "a"
    assert score["answers"][0]["isCorrect"] is False


def test_field_scoped_save_leaves_other_topics_alone(remote_store):
    async def scenario():
        user, session = await remote_store.create_user(credentials("cam"))
        await remote_store.save_progress(session, 1, 30, 20)
        await remote_store.save_content_progress(session, 2, 50)
        await remote_store.save_activities_progress(session, 1, 90)
        return user

    user = asyncio.run(scenario())
    assert remote_store.db.data(f"progress/{user.id}") == {
        "1": {"content": 30, "activities": 90},
        "2": {"content": 50, "activities": 0},
    }


def test_clear_all_progress_removes_item_collections(remote_store):
    async def scenario():
        user, session = await remote_store.create_user(credentials("dee"))
        other, other_session = await remote_store.create_user(credentials("eve"))
        for s in (session, other_session):
            await remote_store.save_score(s, ScoreRecord(1, 1, 1, True))
            await remote_store.unlock_achievement(s, "perfect_score")
        await remote_store.clear_all_progress(session)
        return user, other

    user, other = asyncio.run(scenario())
    paths = set(remote_store.db.docs)
    assert not any(path.startswith(f"scores/{user.id}/") for path in paths)
    assert not any(path.startswith(f"achievements/{user.id}/") for path in paths)
    assert f"users/{user.id}" in paths
    assert len([path for path in paths if path.startswith(f"scores/{other.id}/items/")]) == 1
    assert f"achievements/{other.id}/items/perfect_score" in paths


class FailingVerification(FakeIdentity):
    async def send_email_verification(self, id_token):
        raise BackendUnavailable("mail relay down")


def test_identity_record_survives_a_failed_verification_email(tmp_path):
    store = make_store("remote", tmp_path, identity=FailingVerification())

    async def scenario():
        with pytest.raises(BackendUnavailable):
            await store.create_user(credentials("amy"))
        with pytest.raises(DuplicateAccount):
            await store.create_user(credentials("amy"))
        session = await store.login_user("amy", "amy-pass")
        user = await store.get_user_data(session)
        assert user.username == "amy"
        assert [u.username for u in await store.list_users()] == ["amy"]
        request = await store.request_password_reset("amy@school.test")
        assert request.user_id == session.user_id

    asyncio.run(scenario())


def test_firestore_outage_becomes_backend_unavailable(remote_store, monkeypatch):
    async def scenario():
        _, session = await remote_store.create_user(credentials("bob"))

        def unavailable(*args, **kwargs):
            raise gcp_exceptions.ServiceUnavailable("firestore is down")

        monkeypatch.setattr(remote_store, "_update_topic_sync", unavailable)
        with pytest.raises(BackendUnavailable):
            await remote_store.save_progress(session, 1, 10, 10)

    asyncio.run(scenario())


def test_verify_admin_checks_the_verified_token(remote_store):
    async def scenario():
        admin, admin_session = await remote_store.create_user(UserCredentials("ms_rivera", ADMIN_EMAIL, ADMIN_PASSWORD))
        _, student_session = await remote_store.create_user(credentials("fin"))

        assert await remote_store.verify_admin(admin_session) == ADMIN_EMAIL
        with pytest.raises(PermissionDenied):
            await remote_store.verify_admin(student_session)
        forged = dataclasses.replace(student_session, user_id=admin.id, email=ADMIN_EMAIL)
        with pytest.raises(PermissionDenied):
            await remote_store.verify_admin(forged)
        expired = dataclasses.replace(admin_session, token="not-a-real-token")
        with pytest.raises(PermissionDenied):
            await remote_store.verify_admin(expired)

    asyncio.run(scenario())


def test_pin_reset_is_not_offered_remotely(remote_store):
    with pytest.raises(UnsupportedOperation):
        asyncio.run(remote_store.reset_password_with_pin("a@school.test", "1234", "new-password"))


def test_password_reset_email_goes_through_the_provider(remote_store, fake_identity):
    asyncio.run(remote_store.send_password_reset_email(" gil@school.test "))
    assert fake_identity.reset_emails_sent == ["gil@school.test"]


def test_set_user_password_uses_the_privileged_call(remote_store, fake_identity):
    async def scenario():
        user, _ = await remote_store.create_user(credentials("hal"))
        await remote_store.set_user_password(user.id, "admin-chosen")
        assert await remote_store.login_user("hal", "admin-chosen") is not None
        with pytest.raises(NotFound):
            await remote_store.set_user_password("uid-missing", "admin-chosen")

    asyncio.run(scenario())


def test_reset_topic_on_missing_document_is_a_no_op(remote_store):
    async def scenario():
        _, session = await remote_store.create_user(credentials("ivy"))
        await remote_store.reset_topic(session, 4)
        return session

    session = asyncio.run(scenario())
    assert remote_store.db.data(f"progress/{session.user_id}") is None


def test_admin_check_fails_closed_without_a_project_id(tmp_path):
    config = make_config(tmp_path, store_backend="remote", firebase_project_id="")
    store = RemoteStore(config, client=FakeFirestore(), identity=IdentityToolkitClient(config))
    session = Session(user_id="uid-1", email=ADMIN_EMAIL, username="ms_rivera", token="any-id-token")
    with pytest.raises(PermissionDenied):
        asyncio.run(store.verify_admin(session))
