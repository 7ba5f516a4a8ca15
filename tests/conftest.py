"""
tests/conftest.py -- Shared test fixtures for Falcons integration tests.

This module provides:
  - _make_test_stores(): isolated in-memory DB shared by UserStore + CourseStore
  - _patch_lifespan(): wires test collaborators into app.state, bypassing real startup
  - api: module-scoped Harness (TestClient + the collaborators behind it)
  - client: per-test view of api.client with cookies, outbox and counters reset
  - make_account / make_course: factories that write straight to the stores

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

DEBUG must be set before any core/auth import so get_settings() auto-generates
SECRET_KEY in dev mode rather than raising ValueError. API_RATE_LIMIT and
AUTH_RATE_LIMIT are raised so the slowapi budgets never trip during a test
run; tests that exercise the auth budget lower it on the settings object.
"""

from __future__ import annotations

import itertools
import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set before any core/auth import so get_settings() picks them up.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("API_RATE_LIMIT", "100000/minute")
os.environ.setdefault("AUTH_RATE_LIMIT", "100000/minute")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import app
from auth.models import User
from auth.permissions import load_permission_table
from auth.store import UserStore
from auth.tokens import hash_password, issue_session_token
from core.config import get_settings
from courses.models import Course
from courses.store import CourseStore
from mail.sender import LogEmailSender

_email_seq = itertools.count(1)


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[UserStore, CourseStore]:
    """Create both stores over one named shared-memory SQLite database.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'test_auth_routes').
    """
    url = f"sqlite:///file:falcons_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=url), CourseStore(db_url=url)


@dataclass
class Harness:
    client: TestClient
    user_store: UserStore
    course_store: CourseStore
    mailer: LogEmailSender


def _patch_lifespan(user_store: UserStore, course_store: CourseStore, mailer: LogEmailSender):
    """Return an async context manager that replaces the real lifespan."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.permissions = load_permission_table(get_settings().permissions_file)
        app.state.user_store = user_store
        app.state.course_store = course_store
        app.state.mailer = mailer
        yield

    return test_lifespan


class AccountFactory:
    """Insert accounts directly and mint a session token for each.

        user, token = make_account(role="instructor")
        client.get("/api/v1/auth/me", headers=make_account.bearer(token))
    """

    password = "correct-horse-9"

    def __init__(self, user_store: UserStore) -> None:
        self.user_store = user_store

    @staticmethod
    def email(prefix: str = "user") -> str:
        return f"{prefix}{next(_email_seq)}@example.com"

    @staticmethod
    def bearer(token: str) -> dict[str, str]:
        return {"Authorization": f"Bearer {token}"}

    def __call__(
        self,
        role: str = "student",
        email: str | None = None,
        password: str | None = None,
        is_active: bool = True,
    ) -> tuple[User, str]:
        user_id = self.user_store.create_user(
            User(
                email=email or self.email(role),
                first_name="Test",
                last_name=role.title(),
                role=role,
                hashed_password=hash_password(password or self.password),
                is_active=is_active,
            )
        )
        user = self.user_store.get_by_id(user_id)
        return user, issue_session_token(user.id, user.role)


class CourseFactory:
    """Insert a published course owned by instructor_id and return it."""

    def __init__(self, course_store: CourseStore) -> None:
        self.course_store = course_store

    def __call__(self, instructor_id: int, **overrides) -> Course:
        fields = {
            "title": "Intro to Python",
            "description": "Variables, functions and the standard library.",
            "category": "programming",
            "level": "beginner",
            "duration_hours": 10,
            "price": 100.0,
            "instructor_id": instructor_id,
            "is_published": True,
        }
        fields.update(overrides)
        return self.course_store.get_course(self.course_store.create_course(Course(**fields)))


# ---------------------------------------------------------------------------
# Module-scoped harness -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api(request) -> Generator[Harness, None, None]:
    """Yield a Harness whose TestClient runs the real app on isolated stores.

    raise_server_exceptions=False so 500 responses reach the test as
    responses (the envelope is part of the contract) instead of re-raising.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    user_store, course_store = _make_test_stores(suffix)
    mailer = LogEmailSender(get_settings())

    app.router.lifespan_context = _patch_lifespan(user_store, course_store, mailer)

    with TestClient(app, raise_server_exceptions=False) as client:
        yield Harness(client=client, user_store=user_store, course_store=course_store, mailer=mailer)

    course_store.close()
    user_store.close()


@pytest.fixture()
def client(api: Harness) -> TestClient:
    """api.client with a clean cookie jar, outbox and rate-limit counters.

    TestClient keeps cookies between requests, and the "token" cookie takes
    precedence over a Bearer header, so each test starts without one.
    """
    api.client.cookies.clear()
    api.mailer.outbox.clear()
    limiter.reset()
    return api.client


@pytest.fixture()
def make_account(api: Harness) -> AccountFactory:
    return AccountFactory(api.user_store)


@pytest.fixture()
def make_course(api: Harness) -> CourseFactory:
    return CourseFactory(api.course_store)
