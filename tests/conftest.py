"""
Shared fixtures: an in-memory stand-in for the Supabase client and a few
page/frame doubles for the browser helpers.
"""

import copy
import re
import uuid
from datetime import datetime, timedelta, timezone

import pytest
from postgrest.exceptions import APIError

from scraper_worker.config import WorkerSettings, RetrySettings


class FakeResponse:
    def __init__(self, data):
        self.data = data


class FakeQuery:
    """Subset of the PostgREST query builder used by the worker."""

    def __init__(self, db, table):
        self.db = db
        self.table = table
        self.operation = "select"
        self.values = None
        self.filters = []
        self.orders = []
        self.row_limit = None

    # Operations
    def select(self, columns="*"):
        self.operation = "select"
        return self

    def insert(self, values):
        self.operation = "insert"
        self.values = values
        return self

    def update(self, values):
        self.operation = "update"
        self.values = values
        return self

    # Filters
    def eq(self, column, value):
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def neq(self, column, value):
        self.filters.append(lambda row: row.get(column) != value)
        return self

    def in_(self, column, values):
        values = list(values)
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def lte(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row[column] <= value)
        return self

    def lt(self, column, value):
        self.filters.append(lambda row: row.get(column) is not None and row[column] < value)
        return self

    def is_(self, column, value):
        assert value == "null"
        self.filters.append(lambda row: row.get(column) is None)
        return self

    def ilike(self, column, pattern):
        regex = ""
        i = 0
        while i < len(pattern):
            char = pattern[i]
            if char == "\\" and i + 1 < len(pattern):
                regex += re.escape(pattern[i + 1])
                i += 2
                continue
            if char == "%":
                regex += ".*"
            elif char == "_":
                regex += "."
            else:
                regex += re.escape(char)
            i += 1
        compiled = re.compile(f"^{regex}$", re.IGNORECASE)
        self.filters.append(lambda row: row.get(column) is not None and bool(compiled.match(str(row[column]))))
        return self

    # Modifiers
    def order(self, column, desc=False):
        self.orders.append((column, desc))
        return self

    def limit(self, count):
        self.row_limit = count
        return self

    def _matches(self, row):
        return all(check(row) for check in self.filters)

    def execute(self):
        self.db.calls.append((self.table, self.operation))
        if (self.table, self.operation) in self.db.failures:
            raise APIError({"message": f"{self.operation} on {self.table} failed", "code": "500"})

        rows = self.db.tables.setdefault(self.table, [])

        if self.operation == "insert":
            values = self.values if isinstance(self.values, list) else [self.values]
            inserted = []
            for value in values:
                row = copy.deepcopy(value)
                row.setdefault("id", str(uuid.uuid4()))
                row.setdefault("created_at", self.db.next_timestamp())
                rows.append(row)
                inserted.append(copy.deepcopy(row))
            return FakeResponse(inserted)

        matched = [row for row in rows if self._matches(row)]

        if self.operation == "update":
            for row in matched:
                row.update(copy.deepcopy(self.values))
            return FakeResponse([copy.deepcopy(row) for row in matched])

        for column, desc in reversed(self.orders):
            matched.sort(key=lambda row: (row.get(column) is None, row.get(column)), reverse=desc)
        if self.row_limit is not None:
            matched = matched[:self.row_limit]
        return FakeResponse([copy.deepcopy(row) for row in matched])


class FakeSupabase:
    """In-memory tables with just enough of supabase.Client to run the worker."""

    def __init__(self):
        self.tables = {}
        self.failures = set()
        self.calls = []
        self._clock = datetime(2024, 1, 1, tzinfo=timezone.utc)

    def table(self, name):
        return FakeQuery(self, name)

    def fail(self, table, operation):
        self.failures.add((table, operation))

    def next_timestamp(self):
        self._clock += timedelta(seconds=1)
        return self._clock.isoformat()

    def rows(self, table):
        return self.tables.setdefault(table, [])

    def get(self, table, row_id):
        return next(row for row in self.rows(table) if row["id"] == row_id)

    def events(self, job_id=None, event_type=None):
        return [
            event for event in self.rows("scraper_job_events")
            if (job_id is None or event["job_id"] == job_id)
            and (event_type is None or event["event_type"] == event_type)
        ]

    def event_types(self, job_id=None):
        return [event["event_type"] for event in self.events(job_id)]

    def add_job(self, **overrides):
        row = {
            "id": str(uuid.uuid4()),
            "job_type": "fwc_lookup",
            "status": "queued",
            "payload": {"employerIds": ["emp-1"]},
            "priority": 5,
            "run_at": "2000-01-01T00:00:00+00:00",
            "attempts": 0,
            "max_attempts": 5,
            "lock_token": None,
            "locked_at": None,
            "progress_completed": 0,
            "progress_total": None,
            "last_error": None,
            "created_at": self.next_timestamp(),
        }
        row.update(overrides)
        self.rows("scraper_jobs").append(row)
        return row


@pytest.fixture
def fake_db():
    return FakeSupabase()


@pytest.fixture
def settings():
    return WorkerSettings(
        supabase_url="https://example.supabase.co",
        supabase_key="test-key",
        worker_id="worker-test",
        poll_interval_ms=1000,
        lock_timeout_ms=60000,
        stale_cleanup_interval_ms=300000,
        graceful_shutdown_timeout_ms=2000,
        retry=RetrySettings(max_attempts=3, initial_delay_ms=1000, max_delay_ms=60000,
                            backoff_multiplier=2.0, jitter=0),
        incolink_email="ops@example.com",
        incolink_password="secret",
    )


@pytest.fixture
def no_sleep(monkeypatch):
    """Make time.sleep a no-op so pipeline delays don't slow the tests down."""
    monkeypatch.setattr("time.sleep", lambda seconds: None)


# ----------------------------------------------------------------------
# Browser doubles
# ----------------------------------------------------------------------

class FakeElement:
    def __init__(self, name):
        self.name = name
        self.clicks = []
        self.typed = []

    def click(self, **kwargs):
        self.clicks.append(kwargs)

    def type(self, text, delay=None):
        self.typed.append(text)


class FakeFrame:
    def __init__(self, url="about:blank", elements=None, collections=None, broken=False):
        self.url = url
        self.elements = elements or {}
        self.collections = collections or {}
        self.broken = broken

    def query_selector(self, selector):
        if self.broken:
            raise RuntimeError("Frame was detached")
        return self.elements.get(selector)

    def eval_on_selector_all(self, selector, script):
        if self.broken:
            raise RuntimeError("Frame was detached")
        return self.collections.get(selector, [])


class FakePage:
    def __init__(self, frames=None, url="https://example.test/", title="Example", html="<html></html>"):
        self.frames = frames or [FakeFrame()]
        self.url = url
        self._title = title
        self._html = html

    def title(self):
        return self._title

    def content(self):
        return self._html


@pytest.fixture
def fake_page_factory():
    return FakePage
