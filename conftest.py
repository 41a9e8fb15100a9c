"""
Shared fixtures: an in-memory stand-in for the supabase query builder and
storage bucket, and a scripted HTTP session for the processing API.
"""
import copy
import json
import uuid
from datetime import datetime, timezone

import pytest
import requests
from postgrest.exceptions import APIError

from studyquiz.database import DatabaseClient
from studyquiz.processing_api import TriggerResult


class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    def __init__(self, client, table):
        self.client = client
        self.table = table
        self.op = "select"
        self.payload = None
        self.filters = []
        self.ordering = None
        self.want_single = False

    def select(self, *columns):
        self.op = "select"
        return self

    def insert(self, row):
        self.op, self.payload = "insert", row
        return self

    def update(self, fields):
        self.op, self.payload = "update", fields
        return self

    def upsert(self, row, on_conflict=""):
        self.op, self.payload = "upsert", row
        self.on_conflict = [c.strip() for c in on_conflict.split(",") if c.strip()]
        return self

    def delete(self):
        self.op = "delete"
        return self

    def eq(self, column, value):
        self.filters.append(lambda r: r.get(column) == value)
        return self

    def in_(self, column, values):
        values = list(values)
        self.filters.append(lambda r: r.get(column) in values)
        return self

    def order(self, column, desc=False):
        self.ordering = (column, desc)
        return self

    def single(self):
        self.want_single = True
        return self

    def _matching(self):
        rows = self.client.tables.setdefault(self.table, [])
        return [r for r in rows if all(f(r) for f in self.filters)]

    def execute(self):
        self.client.calls.append((self.table, self.op))
        if self.table in self.client.failing:
            raise APIError({"message": f"{self.table} unavailable", "code": "500"})
        rows = self.client.tables.setdefault(self.table, [])

        if self.op == "insert":
            new_rows = self.payload if isinstance(self.payload, list) else [self.payload]
            inserted = []
            for row in new_rows:
                row = dict(row)
                row.setdefault("id", str(uuid.uuid4()))
                row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
                rows.append(row)
                inserted.append(copy.deepcopy(row))
            return FakeResponse(inserted)

        if self.op == "upsert":
            row = dict(self.payload)
            for existing in rows:
                if all(existing.get(c) == row.get(c) for c in self.on_conflict):
                    existing.update(row)
                    return FakeResponse([copy.deepcopy(existing)])
            rows.append(row)
            return FakeResponse([copy.deepcopy(row)])

        matching = self._matching()
        if self.op == "update":
            for row in matching:
                row.update(self.payload)
            return FakeResponse(copy.deepcopy(matching))
        if self.op == "delete":
            self.client.tables[self.table] = [r for r in rows if r not in matching]
            return FakeResponse(copy.deepcopy(matching))

        result = copy.deepcopy(matching)
        if self.ordering:
            column, desc = self.ordering
            result.sort(key=lambda r: (r.get(column) is None, r.get(column)), reverse=desc)
        if self.want_single:
            if len(result) != 1:
                raise APIError({
                    "message": "JSON object requested, multiple (or no) rows returned",
                    "code": "PGRST116",
                })
            return FakeResponse(result[0])
        return FakeResponse(result)


class FakeBucket:
    def __init__(self, storage, name):
        self.storage = storage
        self.name = name

    def upload(self, path, content, options=None):
        if self.storage.fail_upload:
            raise RuntimeError("storage upload failed")
        self.storage.objects[path] = content
        return {"Key": f"{self.name}/{path}"}

    def remove(self, paths):
        if self.storage.fail_remove:
            raise RuntimeError("storage remove failed")
        for p in paths:
            self.storage.objects.pop(p, None)
        return []


class FakeStorage:
    def __init__(self):
        self.objects = {}
        self.fail_upload = False
        self.fail_remove = False

    def from_(self, bucket):
        return FakeBucket(self, bucket)


class FakeSupabase:
    """Just enough of supabase.Client for DatabaseClient."""

    def __init__(self, tables=None):
        self.tables = tables or {}
        self.calls = []
        self.failing = set()
        self.storage = FakeStorage()

    def table(self, name):
        return FakeQuery(self, name)


class FakeHTTPResponse:
    encoding = "utf-8"

    def __init__(self, status_code, body=None, text="", reason=""):
        self.status_code = status_code
        self._body = body
        self.text = text or (json.dumps(body) if body is not None else "")
        self.reason = reason
        self.closed = False

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        if self._body is None:
            raise ValueError("no JSON body")
        return self._body

    def iter_content(self, chunk_size=1):
        data = self.text.encode()
        for i in range(0, len(data), chunk_size):
            yield data[i:i + chunk_size]

    def close(self):
        self.closed = True


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class DrippingResponse(FakeHTTPResponse):
    """Sends its body one byte at a time, moving the clock forward by interval per byte."""

    def __init__(self, status_code, text, clock, interval):
        super().__init__(status_code, text=text)
        self.clock = clock
        self.interval = interval

    def iter_content(self, chunk_size=1):
        for chunk in super().iter_content(chunk_size):
            self.clock.now += self.interval
            yield chunk


class ScriptedHTTP:
    """requests.Session stand-in that replays queued responses (or raises queued exceptions)."""

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.requests = []

    def _next(self, method, url, kwargs):
        self.requests.append((method, url, kwargs))
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def post(self, url, **kwargs):
        return self._next("POST", url, kwargs)

    def get(self, url, **kwargs):
        return self._next("GET", url, kwargs)


class StubProcessingAPI:
    def __init__(self, result=None):
        self.result = result or TriggerResult(success=True)
        self.triggered = []

    def trigger_processing(self, document_id):
        self.triggered.append(document_id)
        return self.result

    def wake_up(self):
        return True


@pytest.fixture
def supabase():
    return FakeSupabase()


@pytest.fixture
def db(supabase):
    return DatabaseClient(supabase)


@pytest.fixture
def api():
    return StubProcessingAPI()


@pytest.fixture
def no_sleep():
    slept = []
    return slept, slept.append


@pytest.fixture
def connection_error():
    return requests.ConnectionError("connection refused")
