"""
Shared pytest fixtures for the ProcessOS test suite.

Provides:
    - app: Flask application (session-scoped)
    - _setup_db: Database table creation/teardown (session-scoped)
    - session: Per-test DB cleanup w/ rollback + recreate (autouse)
    - events: Recording event sink installed for the test
    - org: Two teams, an admin and four members with fixed ids
    - make_process: Factory for DRAFT / PUBLISHED processes owned by Finance
    - make_run: Factory for runs on a published process

Time is explicit everywhere: tests pass ``now`` derived from ``NOW``.
"""

from datetime import datetime, timezone
from types import SimpleNamespace

import pytest

from processos import create_app
from processos.models import db as _db
from processos.models.directory import PERMISSION_FLAGS
from processos.services import directory_service, process_lifecycle, run_engine
from processos.services.notification import EVENT_SINK_KEY

NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


class RecordingSink:
    """Event sink that keeps published events in memory."""

    def __init__(self):
        self.events = []

    def publish(self, event):
        self.events.append(event)

    def of(self, category):
        return [e for e in self.events if e.category == category]

    def clear(self):
        self.events.clear()


# ── App & DB fixtures ────────────────────────────────────────────────────


@pytest.fixture(scope="session")
def app():
    """Create the Flask application once per test session."""
    application = create_app("testing")
    return application


@pytest.fixture(scope="session")
def _setup_db(app):
    """Create all tables at session start, drop at end."""
    with app.app_context():
        _db.create_all()
    yield
    with app.app_context():
        _db.drop_all()


@pytest.fixture(autouse=True)
def session(app, _setup_db):
    """Per-test: open app context, rollback after test, recreate tables."""
    with app.app_context():
        yield
        _db.session.rollback()
        _db.drop_all()
        _db.create_all()


@pytest.fixture()
def events(app):
    """Swap the event sink for a RecordingSink for the duration of a test."""
    previous = app.extensions.get(EVENT_SINK_KEY)
    sink = RecordingSink()
    app.extensions[EVENT_SINK_KEY] = sink
    yield sink
    if previous is None:
        app.extensions.pop(EVENT_SINK_KEY, None)
    else:
        app.extensions[EVENT_SINK_KEY] = previous


# ── Directory ────────────────────────────────────────────────────────────


@pytest.fixture()
def org(session):
    """
    Finance (lead: Lena) and Operations (lead: Omar).

    Ids sort in the order listed so "first match" results are predictable.
    """
    finance = directory_service.create_team("Finance", team_id="t-fin", color="emerald")
    ops = directory_service.create_team("Operations", team_id="t-ops", color="amber")

    admin = directory_service.create_user(
        "Ada Admin", "ada@example.com", user_id="u-00-admin",
        job_title="Workspace Admin",
        permissions={flag: True for flag in PERMISSION_FLAGS},
    )
    lead = directory_service.create_user(
        "Lena Lead", "lena@example.com", user_id="u-10-lead",
        job_title="Controller", team_id=finance.id,
        permissions={"can_design": True, "can_verify_design": True,
                     "can_execute": True, "can_verify_run": True},
    )
    alice = directory_service.create_user(
        "Alice Analyst", "alice@example.com", user_id="u-20-alice",
        job_title="Accountant", team_id=finance.id,
        permissions={"can_design": True, "can_execute": True},
    )
    bob = directory_service.create_user(
        "Bob Booker", "bob@example.com", user_id="u-30-bob",
        job_title="Clerk", team_id=finance.id,
        permissions={"can_execute": True},
    )
    oscar = directory_service.create_user(
        "Oscar Ops", "oscar@example.com", user_id="u-40-oscar",
        job_title="Dispatcher", team_id=ops.id,
        permissions={"can_execute": True},
    )
    omar = directory_service.create_user(
        "Omar Manager", "omar@example.com", user_id="u-50-omar",
        job_title="Ops Manager", team_id=ops.id,
        permissions={"can_execute": True, "can_verify_run": True},
    )
    directory_service.set_team_lead(finance.id, lead.id)
    directory_service.set_team_lead(ops.id, omar.id)

    return SimpleNamespace(
        finance=finance, ops=ops,
        admin=admin, lead=lead, alice=alice, bob=bob, oscar=oscar, omar=omar,
    )


# ── Processes & runs ─────────────────────────────────────────────────────


CLOSE_STEPS = [
    {"text": "Reconcile bank", "input_type": "CHECKBOX"},
    {"text": "Post accruals", "input_type": "CHECKBOX"},
    {"text": "Sign off", "input_type": "CHECKBOX"},
]


@pytest.fixture()
def make_process(org):
    """
    Build a Finance-owned process authored by Alice.

    ``publish=True`` submits (Alice) and publishes (Lena) it at ``published_at``.
    """
    def _make(title="Month-end close", steps=None, publish=True, published_at=NOW, **kwargs):
        process = process_lifecycle.create_process(
            org.alice, title, org.finance.id,
            steps=CLOSE_STEPS if steps is None else steps,
            now=published_at, **kwargs,
        )
        if publish:
            process_lifecycle.submit_for_review(process.id, org.alice, now=published_at)
            process = process_lifecycle.publish(process.id, org.lead, now=published_at)
        return process
    return _make


@pytest.fixture()
def make_run(org, make_process):
    """Start a run as Alice on a fresh published process (or the one given)."""
    def _make(process=None, user=None, now=NOW, **process_kwargs):
        process = process or make_process(**process_kwargs)
        return run_engine.create_run(process.id, user or org.alice, now=now)
    return _make
