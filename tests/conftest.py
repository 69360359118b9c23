"""
Shared fixtures.

The app talks to Supabase through `get_supabase_client()`; tests swap in an
in-memory client that understands the subset of the PostgREST builder the
services use (select/insert/update/delete with eq, neq, in_, ilike, or_,
order, limit, range and exact counts).
"""
import copy
import itertools
import os
import re
import tempfile
import uuid
from datetime import datetime, timedelta, timezone
from io import BytesIO
from types import SimpleNamespace

# Environment must be in place before the app modules are imported
_TMP_ROOT = tempfile.mkdtemp(prefix="storytelling-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_ROOT, 'test.db')}"
os.environ["UPLOADS_DIR"] = os.path.join(_TMP_ROOT, "uploads")
os.environ["SUPABASE_URL"] = "https://test.supabase.co"
os.environ.pop("SUPABASE_ANON_KEY", None)
os.environ.pop("SUPABASE_SERVICE_KEY", None)
os.environ["JWT_SECRET_KEY"] = "test-jwt-secret-0123456789-abcdefghijklmnop"
os.environ["SERVER_ADMIN_TOKEN"] = "test-admin-token"
os.environ["RATE_LIMIT_ENABLED"] = "false"
os.environ["STORAGE_DRIVER"] = "local"
os.environ["MAINTENANCE_MODE"] = "false"
os.environ.pop("ALLOWED_ORIGINS", None)

import jwt
import pytest
from fastapi.testclient import TestClient
from PIL import Image
from postgrest.exceptions import APIError

import runtime_config
from access_control import init_access_control
from database import CompressionSettings, ImageMetadata, SessionLocal, create_tables
from jwt_utils import reset_jwt_verifier
from main import app
from supabase_client import SupabaseClient, set_supabase_client

ADMIN_TOKEN = os.environ["SERVER_ADMIN_TOKEN"]
ADMIN_ID = "00000000-0000-4000-8000-000000000001"
USER_ID = "00000000-0000-4000-8000-000000000002"
OTHER_USER_ID = "00000000-0000-4000-8000-000000000003"

UNIQUE_KEYS = {
    "posts": [("slug",)],
    "labels": [("name",), ("slug",)],
    "page_layouts": [("page_id", "slot_number")],
    "system_settings": [("key",)],
}

_clock = itertools.count()
_BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def _timestamp() -> str:
    # strictly increasing so created_at ordering is deterministic
    return (_BASE_TIME + timedelta(seconds=next(_clock))).isoformat()


def _norm(value):
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _sort_key(value):
    if value is None:
        return (1, 0, "")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return (0, value, "")
    return (0, 0, _norm(value))


def _like(pattern: str, value) -> bool:
    if value is None:
        return False
    regex = "".join(
        ".*" if ch == "%" else "." if ch == "_" else re.escape(ch) for ch in pattern
    )
    return re.fullmatch(regex, str(value), re.IGNORECASE | re.DOTALL) is not None


class FakeResult:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FakeQuery:
    def __init__(self, database, table):
        self.database = database
        self.table = table
        self.action = "select"
        self.columns = "*"
        self.count = None
        self.payload = None
        self.filters = []
        self.orders = []
        self.limit_n = None
        self.range_bounds = None

    # Actions

    def select(self, columns="*", count=None):
        self.action = "select"
        self.columns = columns
        self.count = count
        return self

    def insert(self, rows):
        self.action = "insert"
        self.payload = rows
        return self

    def update(self, values):
        self.action = "update"
        self.payload = values
        return self

    def delete(self):
        self.action = "delete"
        return self

    # Filters

    def eq(self, column, value):
        self.filters.append(lambda row: _norm(row.get(column)) == _norm(value))
        return self

    def neq(self, column, value):
        self.filters.append(lambda row: _norm(row.get(column)) != _norm(value))
        return self

    def in_(self, column, values):
        wanted = {_norm(v) for v in values}
        self.filters.append(lambda row: _norm(row.get(column)) in wanted)
        return self

    def ilike(self, column, pattern):
        self.filters.append(lambda row: _like(pattern, row.get(column)))
        return self

    def or_(self, expression):
        clauses = []
        for part in expression.split(","):
            column, op, value = part.split(".", 2)
            assert op == "ilike", f"unsupported or_ operator {op}"
            clauses.append((column, value))
        self.filters.append(lambda row: any(_like(v, row.get(c)) for c, v in clauses))
        return self

    def order(self, column, desc=False):
        self.orders.append((column, desc))
        return self

    def limit(self, n):
        self.limit_n = n
        return self

    def range(self, start, end):
        self.range_bounds = (start, end)
        return self

    # Execution

    def _matching(self, rows):
        return [row for row in rows if all(f(row) for f in self.filters)]

    def _project(self, row):
        if self.columns.strip() == "*":
            return copy.deepcopy(row)
        names = [name.strip() for name in self.columns.split(",") if name.strip()]
        return {name: copy.deepcopy(row.get(name)) for name in names}

    def execute(self):
        if self.table in self.database.fail_tables:
            raise APIError({
                "code": "42P01",
                "message": f'relation "public.{self.table}" does not exist',
                "details": None,
                "hint": None,
            })

        rows = self.database.tables.setdefault(self.table, [])
        if self.action == "insert":
            return FakeResult(self.database.insert_rows(self.table, self.payload))
        if self.action == "update":
            return FakeResult(self.database.update_rows(self.table, self._matching(rows), self.payload))
        if self.action == "delete":
            doomed = self._matching(rows)
            ids = {id(row) for row in doomed}
            self.database.tables[self.table] = [row for row in rows if id(row) not in ids]
            return FakeResult([copy.deepcopy(row) for row in doomed])

        matched = self._matching(rows)
        for column, desc in reversed(self.orders):
            matched.sort(key=lambda row: _sort_key(row.get(column)), reverse=desc)
        total = len(matched)
        if self.range_bounds:
            start, end = self.range_bounds
            matched = matched[start:end + 1]
        if self.limit_n is not None:
            matched = matched[:self.limit_n]
        return FakeResult([self._project(row) for row in matched], total if self.count else None)


class FakeBucket:
    def __init__(self, storage, name):
        self.storage = storage
        self.name = name

    def upload(self, path, data, file_options=None):
        self.storage.objects[(self.name, path)] = data
        return SimpleNamespace(path=path)

    def get_public_url(self, path):
        return f"{os.environ['SUPABASE_URL']}/storage/v1/object/public/{self.name}/{path}"

    def remove(self, paths):
        if self.storage.fail_remove:
            raise RuntimeError("storage removal failed")
        for path in paths:
            self.storage.objects.pop((self.name, path), None)
        return []


class FakeStorage:
    def __init__(self):
        self.objects = {}
        self.buckets = {"post-images"}
        self.fail_remove = False

    def from_(self, bucket):
        return FakeBucket(self, bucket)

    def list_buckets(self):
        return [SimpleNamespace(name=name) for name in sorted(self.buckets)]

    def create_bucket(self, name, options=None):
        self.buckets.add(name)


class FakeAuthAdmin:
    def __init__(self):
        self.deleted = []
        self.fail = False

    def delete_user(self, user_id):
        if self.fail:
            raise RuntimeError("auth admin unavailable")
        self.deleted.append(user_id)


class FakeAuth:
    def __init__(self):
        self.admin = FakeAuthAdmin()
        self.tokens = {}

    def get_user(self, token):
        if token not in self.tokens:
            raise RuntimeError("invalid JWT")
        user_id, email = self.tokens[token]
        return SimpleNamespace(user=SimpleNamespace(id=user_id, email=email))


class FakeRpc:
    def __init__(self, database, name, params):
        self.database = database
        self.name = name
        self.params = params

    def execute(self):
        self.database.rpc_calls.append((self.name, self.params))
        if self.name in self.database.rpc_errors:
            raise RuntimeError(f"function {self.name} failed")
        return FakeResult(copy.deepcopy(self.database.rpc_results.get(self.name)))


class FakeDatabase:
    def __init__(self):
        self.tables = {}
        self.fail_tables = set()
        self.rpc_calls = []
        self.rpc_results = {}
        self.rpc_errors = set()
        self.storage = FakeStorage()
        self.auth = FakeAuth()

    def table(self, name):
        return FakeQuery(self, name)

    def rpc(self, name, params=None):
        return FakeRpc(self, name, params)

    def _check_unique(self, table, candidate, ignore=None):
        for columns in UNIQUE_KEYS.get(table, []):
            key = tuple(_norm(candidate.get(c)) for c in columns)
            for row in self.tables.get(table, []):
                if row is ignore or row is candidate:
                    continue
                if tuple(_norm(row.get(c)) for c in columns) == key:
                    raise APIError({
                        "code": "23505",
                        "message": f"duplicate key value violates unique constraint on {table}{columns}",
                        "details": None,
                        "hint": None,
                    })

    def insert_rows(self, table, payload):
        rows = payload if isinstance(payload, list) else [payload]
        inserted = []
        for values in rows:
            now = _timestamp()
            row = {"id": str(uuid.uuid4()), "created_at": now, "updated_at": now, **copy.deepcopy(values)}
            self._check_unique(table, row)
            self.tables.setdefault(table, []).append(row)
            inserted.append(copy.deepcopy(row))
        return inserted

    def update_rows(self, table, rows, values):
        updated = []
        for row in rows:
            candidate = {**row, **copy.deepcopy(values)}
            self._check_unique(table, candidate, ignore=row)
            row.update(copy.deepcopy(values))
            updated.append(copy.deepcopy(row))
        return updated

    # Test helpers

    def seed(self, table, **values):
        return self.insert_rows(table, values)[0]

    def rows(self, table, **filters):
        return [
            row for row in self.tables.get(table, [])
            if all(_norm(row.get(k)) == _norm(v) for k, v in filters.items())
        ]


class FakeSupabaseClient(SupabaseClient):
    def __init__(self):
        self.url = os.environ["SUPABASE_URL"]
        self.anon_key = "anon-key"
        self.service_key = "service-key"
        self.db = FakeDatabase()
        self.client = self.db
        self.service_client = self.db

    def disconnect(self):
        self.client = None
        self.service_client = None


def make_token(user_id: str, email: str = "writer@example.com", expires_in: int = 3600, **claims) -> str:
    payload = {
        "sub": user_id,
        "email": email,
        "iss": f"{os.environ['SUPABASE_URL']}/auth/v1",
        "aud": "authenticated",
        "exp": datetime.now(timezone.utc) + timedelta(seconds=expires_in),
        **claims,
    }
    return jwt.encode(payload, os.environ["JWT_SECRET_KEY"], algorithm="HS256")


def bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


def png_bytes(size=(64, 48), color=(200, 40, 40), mode="RGB") -> bytes:
    buffer = BytesIO()
    Image.new(mode, size, color).save(buffer, format="PNG")
    return buffer.getvalue()


def jpeg_bytes(size=(64, 48), color=(20, 120, 200)) -> bytes:
    buffer = BytesIO()
    Image.new("RGB", size, color).save(buffer, format="JPEG", quality=95)
    return buffer.getvalue()


def doc(*paragraphs, images=()) -> dict:
    """Small TipTap document with text paragraphs followed by image nodes"""
    content = [
        {"type": "paragraph", "content": [{"type": "text", "text": text}]}
        for text in paragraphs
    ]
    for src in images:
        content.append({"type": "image", "attrs": {"src": src, "alt": f"alt for {src}"}})
    return {"type": "doc", "content": content}


@pytest.fixture(scope="session", autouse=True)
def _tables():
    create_tables()


@pytest.fixture(autouse=True)
def _reset_local_db():
    yield
    session = SessionLocal()
    try:
        session.query(ImageMetadata).delete()
        session.query(CompressionSettings).delete()
        session.commit()
    finally:
        session.close()


@pytest.fixture
def supabase():
    fake = FakeSupabaseClient()
    set_supabase_client(fake)
    init_access_control(fake)
    reset_jwt_verifier()
    runtime_config.reset_from_env()
    yield fake
    set_supabase_client(None)
    runtime_config.set_coming_soon(False)


@pytest.fixture
def db(supabase):
    return supabase.db


@pytest.fixture
def client(supabase):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def admin_headers():
    return {"X-Admin-Token": ADMIN_TOKEN}


@pytest.fixture
def user_headers(db):
    db.seed("profiles", id=USER_ID, role="user", display_name="Writer")
    return bearer(make_token(USER_ID))


@pytest.fixture
def other_headers(db):
    db.seed("profiles", id=OTHER_USER_ID, role="user", display_name="Someone Else")
    return bearer(make_token(OTHER_USER_ID, email="other@example.com"))


@pytest.fixture
def site_admin_headers(db):
    db.seed("profiles", id=ADMIN_ID, role="admin", display_name="Editor")
    return bearer(make_token(ADMIN_ID, email="editor@example.com"))
