"""
Pytest configuration for the availability core.

Contains shared fixtures, factories and fakes for the email transport and job queues.
"""

import os
from datetime import datetime, timedelta

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

os.environ.setdefault("MAGIC_TOKEN_SECRET", "test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite://")

from gamenight import email_service  # noqa: E402
from gamenight.database import Base  # noqa: E402
from gamenight.domain.scheduling.queues import plan_reminders  # noqa: E402
from gamenight.domain.tokens.codec import SigningContext  # noqa: E402
from gamenight.email_service import EmailResult  # noqa: E402
from gamenight.models import (  # noqa: E402
    PROMPT_ACTIVE,
    ROLE_MEMBER,
    AvailabilityPrompt,
    AvailabilityResponse,
    Game,
    Group,
    GroupMembership,
    GroupPromptSettings,
    User,
)
from gamenight.services import AppServices  # noqa: E402

# Wednesday of ISO week 2026-W42
NOW = datetime(2026, 10, 14, 12, 0, 0)


# --------------------
# Fakes
# --------------------


class FakeMailer:
    """Records outgoing messages; recipients in fail_for get a failed result"""

    def __init__(self):
        self.sent = []
        self.fail_for = set()

    async def send(self, message):
        if message.recipient in self.fail_for:
            return EmailResult(success=False, error="mailbox unavailable")
        self.sent.append(message)
        return EmailResult(success=True, message_id=f"msg-{len(self.sent)}")

    def recipients(self):
        return [m.recipient for m in self.sent]


class FakeJob:
    def __init__(self, job_id):
        self.job_id = job_id


class FakeQueues:
    """Stands in for JobQueues and records what would have been enqueued"""

    def __init__(self):
        self.prompt_jobs = []
        self.deadlines = []
        self.reminders = []
        self.closed = False

    async def enqueue_prompt_creation(self, group_id, settings_id, timezone="UTC", run_at=None, job_id=None):
        job_id = job_id or f"prompt-{settings_id or group_id}-{len(self.prompt_jobs)}"
        if any(job["job_id"] == job_id for job in self.prompt_jobs):
            return None
        self.prompt_jobs.append(
            {"group_id": group_id, "settings_id": settings_id, "timezone": timezone, "run_at": run_at, "job_id": job_id}
        )
        return FakeJob(job_id)

    async def schedule_deadline(self, prompt_id, deadline):
        # Job ids are per prompt, so a repeat is dropped like arq drops it
        if any(queued == prompt_id for queued, _ in self.deadlines):
            return None
        self.deadlines.append((prompt_id, deadline))
        return FakeJob(f"deadline-{prompt_id}")

    async def schedule_reminders(self, prompt_id, group_id, created_at, deadline, now=None):
        stages = [stage for stage, _ in plan_reminders(created_at, deadline, now or created_at)]
        if not any(queued == prompt_id for queued, _ in self.reminders):
            self.reminders.append((prompt_id, stages))
        return stages

    async def queue_counts(self):
        return {"prompts": len(self.prompt_jobs), "reminders": 0, "deadlines": len(self.deadlines)}

    async def close(self):
        self.closed = True


# --------------------
# Fixtures
# --------------------


@pytest.fixture(autouse=True)
def skip_mjml_compile(monkeypatch):
    """Email HTML compilation is not under test; keep the MJML source as the body"""
    monkeypatch.setattr(email_service, "compile_mjml_to_html", lambda content: content)


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def signing():
    return SigningContext("test-secret")


@pytest.fixture
def mailer():
    return FakeMailer()


@pytest.fixture
def queues():
    return FakeQueues()


@pytest.fixture
def services(session_factory, signing, mailer, queues):
    return AppServices(session_factory=session_factory, signing=signing, mailer=mailer, queues=queues)


# --------------------
# Factories
# --------------------


def make_user(db, user_id, username=None, email="default", notifications=True):
    user = User(
        id=user_id,
        username=username or user_id.title(),
        email=f"{user_id}@example.com" if email == "default" else email,
        email_notifications_enabled=notifications,
    )
    db.add(user)
    db.commit()
    return user


def make_group(db, name="Weekend Warriors", members=()):
    """members: iterable of (user, role)"""
    group = Group(name=name)
    db.add(group)
    db.flush()
    for user, role in members:
        db.add(GroupMembership(group_id=group.id, user_id=user.id, role=role or ROLE_MEMBER))
    db.commit()
    return group


def make_settings(db, group, **overrides):
    values = {
        "group_id": group.id,
        "schedule_day_of_week": 1,
        "schedule_time": "18:00",
        "schedule_timezone": "UTC",
        "default_deadline_hours": 72,
        "default_token_expiry_hours": 168,
        "min_participants": None,
        "is_active": True,
    }
    values.update(overrides)
    settings = GroupPromptSettings(**values)
    db.add(settings)
    db.commit()
    return settings


def make_game(db, name="Catan", min_players=3, playing_time_minutes=90):
    game = Game(name=name, min_players=min_players, playing_time_minutes=playing_time_minutes)
    db.add(game)
    db.commit()
    return game


def make_prompt(db, group, status=PROMPT_ACTIVE, created=NOW, deadline=None, week="2026-W42", **overrides):
    prompt = AvailabilityPrompt(
        group_id=group.id,
        prompt_date=created,
        deadline=deadline or created + timedelta(hours=72),
        status=status,
        week_identifier=week,
        **overrides,
    )
    db.add(prompt)
    db.commit()
    return prompt


def slot(start, end, preference="if-need-be"):
    """Stored slot dict with UTC instants, as submit_response writes them"""
    return {
        "start": start.isoformat(),
        "end": end.isoformat(),
        "start_utc": start.isoformat(),
        "end_utc": end.isoformat(),
        "preference": preference,
    }


def make_response(db, prompt, user, slots=(), submitted_at=NOW, reminder_count=0, last_reminded_at=None):
    response = AvailabilityResponse(
        prompt_id=prompt.id,
        user_id=user.id,
        time_slots=list(slots),
        user_timezone="UTC",
        submitted_at=submitted_at,
        reminder_count=reminder_count,
        last_reminded_at=last_reminded_at,
    )
    db.add(response)
    db.commit()
    return response


@pytest.fixture
def warriors(db):
    """Weekend Warriors: one owner and three members"""
    alice = make_user(db, "alice")
    bob = make_user(db, "bob")
    carol = make_user(db, "carol")
    dave = make_user(db, "dave")
    group = make_group(
        db,
        members=[(alice, "owner"), (bob, "member"), (carol, "member"), (dave, "member")],
    )
    return {"group": group, "alice": alice, "bob": bob, "carol": carol, "dave": dave}


# --------------------
# API client
# --------------------


class CurrentUser:
    def __init__(self):
        self.user = None


@pytest.fixture
def current_user():
    return CurrentUser()


@pytest.fixture
def client(db, services, current_user):
    from fastapi import HTTPException
    from fastapi.testclient import TestClient

    from gamenight.auth import get_current_user
    from gamenight.database import get_db
    from gamenight.main import app
    from gamenight.services import get_services

    def override_db():
        yield db

    def override_user():
        if current_user.user is None:
            raise HTTPException(status_code=401, detail="Invalid authentication credentials")
        return current_user.user

    app.dependency_overrides[get_db] = override_db
    app.dependency_overrides[get_services] = lambda: services
    app.dependency_overrides[get_current_user] = override_user

    # No context manager: the lifespan (real Redis, real database) must not run
    yield TestClient(app)

    app.dependency_overrides.clear()
