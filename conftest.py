import copy
import itertools
import threading

import pytest
from google.api_core import exceptions as gcp_exceptions
from google.cloud import firestore

from core.config import Config
from database.document_store import RemoteStore
from database.errors import DuplicateAccount, NotFound
from database.models import UserCredentials
from database.sqlite_store import EmbeddedStore

ADMIN_EMAIL = "admin@school.test"
ADMIN_PASSWORD = "admin-secret"


def _merge(target, data):
    for key, value in data.items():
        if isinstance(value, dict) and isinstance(target.get(key), dict):
            _merge(target[key], value)
        else:
            target[key] = copy.deepcopy(value)


class FakeSnapshot:
    def __init__(self, reference, data):
        self.reference = reference
        self.id = reference.id
        self._data = data

    @property
    def exists(self):
        return self._data is not None

    def to_dict(self):
        return copy.deepcopy(self._data)


class FakeDocument:
    def __init__(self, db, path):
        self._db = db
        self.path = path
        self.id = path.rsplit("/", 1)[-1]

    def collection(self, name):
        return FakeQuery(self._db, f"{self.path}/{name}")

    def get(self, transaction=None):
        with self._db.lock:
            return FakeSnapshot(self, copy.deepcopy(self._db.docs.get(self.path)))

    def set(self, data, merge=False):
        self._db.apply([("set", self, data, merge)])

    def create(self, data):
        self._db.apply([("create", self, data, False)])

    def update(self, fields):
        self._db.apply([("update", self, fields, False)])

    def delete(self):
        self._db.apply([("delete", self, None, False)])


class FakeQuery:
    """A collection reference and the queries built on it."""

    def __init__(self, db, path, filters=(), orders=(), limit_to=None):
        self._db = db
        self.path = path
        self._filters = filters
        self._orders = orders
        self._limit = limit_to

    def _derive(self, **changes):
        values = {"filters": self._filters, "orders": self._orders, "limit_to": self._limit}
        values.update(changes)
        return FakeQuery(self._db, self.path, **values)

    def document(self, doc_id=None):
        return FakeDocument(self._db, f"{self.path}/{doc_id or self._db.auto_id()}")

    def add(self, data):
        ref = self.document()
        ref.set(data)
        return None, ref

    def where(self, filter=None):
        assert filter.op_string == "=="
        return self._derive(filters=self._filters + ((filter.field_path, filter.value),))

    def order_by(self, field_path, direction=firestore.Query.ASCENDING):
        return self._derive(orders=self._orders + ((field_path, direction == firestore.Query.DESCENDING),))

    def limit(self, count):
        return self._derive(limit_to=count)

    def stream(self):
        with self._db.lock:
            rows = [
                (path, copy.deepcopy(data))
                for path, data in self._db.docs.items()
                if path.rsplit("/", 1)[0] == self.path
            ]
        rows = [row for row in rows if all(row[1].get(field) == value for field, value in self._filters)]
        for field, descending in reversed(self._orders):
            rows = [row for row in rows if field in row[1]]
            rows.sort(key=lambda row: row[1][field], reverse=descending)
        if self._limit is not None:
            rows = rows[: self._limit]
        return [FakeSnapshot(FakeDocument(self._db, path), data) for path, data in rows]


class FakeBatch:
    def __init__(self, db):
        self._db = db
        self._writes = []

    def delete(self, ref):
        self._writes.append(("delete", ref, None, False))

    def commit(self):
        self._db.apply(self._writes)
        self._writes = []


class FakeTransaction:
    """Buffers writes and holds the database lock from begin to commit."""

    _max_attempts = 1
    _read_only = False

    def __init__(self, db):
        self._db = db
        self._id = None
        self._writes = []

    @property
    def in_progress(self):
        return self._id is not None

    def _clean_up(self):
        self._writes = []

    def _begin(self, retry_id=None):
        self._db.lock.acquire()
        self._id = b"fake-transaction"

    def _finish(self):
        if self._id is not None:
            self._id = None
            self._db.lock.release()

    def _commit(self):
        try:
            self._db.apply(self._writes)
        finally:
            self._writes = []
            self._finish()
        return []

    def _rollback(self):
        self._writes = []
        self._finish()

    def set(self, ref, data, merge=False):
        self._writes.append(("set", ref, data, merge))

    def update(self, ref, fields):
        self._writes.append(("update", ref, fields, False))

    def delete(self, ref):
        self._writes.append(("delete", ref, None, False))


class FakeFirestore:
    """In-memory document database with the google.cloud.firestore client surface the store uses."""

    def __init__(self):
        self.docs = {}
        self.lock = threading.RLock()
        self._ids = itertools.count(1)

    def auto_id(self):
        return f"auto{next(self._ids):06d}"

    def collection(self, name):
        return FakeQuery(self, name)

    def transaction(self):
        return FakeTransaction(self)

    def batch(self):
        return FakeBatch(self)

    def data(self, path):
        with self.lock:
            return copy.deepcopy(self.docs.get(path))

    def apply(self, writes):
        with self.lock:
            for op, ref, data, merge in writes:
                current = self.docs.get(ref.path)
                if op == "create" and current is not None:
                    raise gcp_exceptions.AlreadyExists(f"Document already exists: {ref.path}")
                if op == "update" and current is None:
                    raise gcp_exceptions.NotFound(f"No document to update: {ref.path}")
            for op, ref, data, merge in writes:
                if op == "delete":
                    self.docs.pop(ref.path, None)
                elif op == "update":
                    self.docs[ref.path].update(copy.deepcopy(data))
                elif op == "set" and merge and ref.path in self.docs:
                    _merge(self.docs[ref.path], data)
                else:
                    self.docs[ref.path] = copy.deepcopy(data)


class FakeIdentity:
    """In-memory stand-in for the identity provider REST client."""

    def __init__(self, auto_verify: bool = True):
        self.auto_verify = auto_verify
        self.accounts = {}
        self.tokens = {}
        self.verification_sent = []
        self.reset_emails_sent = []
        self._counter = 0

    def _issue(self, uid: str) -> str:
        self._counter += 1
        token = f"id-token-{uid}-{self._counter}"
        self.tokens[token] = uid
        return token

    def _by_uid(self, uid: str):
        for account in self.accounts.values():
            if account["localId"] == uid:
                return account
        return None

    def _response(self, account):
        return {
            "localId": account["localId"],
            "email": account["email"],
            "displayName": account.get("displayName"),
            "idToken": self._issue(account["localId"]),
            "refreshToken": f"refresh-{account['localId']}",
        }

    async def sign_up(self, email, password):
        key = email.strip().lower()
        if key in self.accounts:
            raise DuplicateAccount(f"An account already exists for {email}")
        self._counter += 1
        account = {
            "localId": f"uid-{self._counter}",
            "email": email,
            "password": password,
            "emailVerified": self.auto_verify,
        }
        self.accounts[key] = account
        return self._response(account)

    async def sign_in_with_password(self, email, password):
        account = self.accounts.get(email.strip().lower())
        if account is None or account["password"] != password:
            return None
        return self._response(account)

    async def lookup(self, id_token):
        uid = self.tokens.get(id_token)
        account = self._by_uid(uid) if uid else None
        if account is None:
            return None
        return {"localId": uid, "email": account["email"], "emailVerified": account["emailVerified"]}

    async def update_profile(self, id_token, display_name=None, photo_url=None):
        account = self._by_uid(self.tokens[id_token])
        if display_name is not None:
            account["displayName"] = display_name
        if photo_url is not None:
            account["photoUrl"] = photo_url

    async def send_email_verification(self, id_token):
        self.verification_sent.append(self.tokens[id_token])

    async def send_password_reset_email(self, email):
        self.reset_emails_sent.append(email)

    async def admin_set_password(self, user_id, new_password):
        account = self._by_uid(user_id)
        if account is None:
            raise NotFound(f"User {user_id} not found")
        account["password"] = new_password

    async def verify_id_token(self, token):
        uid = self.tokens.get(token)
        account = self._by_uid(uid) if uid else None
        if account is None:
            return None
        return {"user_id": uid, "sub": uid, "email": account["email"].lower()}


def make_config(tmp_path, **overrides) -> Config:
    values = {
        "db_path": str(tmp_path / "mathbridge-test.db"),
        "firebase_project_id": "mathbridge-test",
        "admin_emails": (ADMIN_EMAIL,),
        "placeholder_email_domains": ("noemail.mathbridge.app",),
    }
    values.update(overrides)
    return Config(**values)


def make_store(kind: str, tmp_path, identity=None, client=None):
    if kind == "embedded":
        return EmbeddedStore(make_config(tmp_path, store_backend="embedded"))
    config = make_config(tmp_path, store_backend="remote")
    return RemoteStore(config, client=client or FakeFirestore(), identity=identity or FakeIdentity())


def credentials(name: str, **extra) -> UserCredentials:
    return UserCredentials(username=name, email=f"{name}@school.test", password=f"{name}-pass", **extra)


@pytest.fixture
def config(tmp_path):
    return make_config(tmp_path)


@pytest.fixture(params=["embedded", "remote"])
def store(request, tmp_path):
    return make_store(request.param, tmp_path)


@pytest.fixture
def embedded_store(tmp_path):
    return make_store("embedded", tmp_path)


@pytest.fixture
def fake_identity():
    return FakeIdentity()


@pytest.fixture
def remote_store(tmp_path, fake_identity):
    return make_store("remote", tmp_path, identity=fake_identity)
