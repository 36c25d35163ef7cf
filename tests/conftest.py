# tests/conftest.py
from __future__ import annotations

import os
from collections.abc import Callable, Generator, Iterator
from datetime import UTC, datetime, timedelta
from itertools import count

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker

os.environ.setdefault("SECRET_KEY", "test-secret-key-for-pytest-only")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("ANOMALY_SWEEP_ENABLED", "false")

from eoty_platform.core.roles import Role
from eoty_platform.core.security import create_access_token
from eoty_platform.db.session import Base, build_engine
from eoty_platform.db.session import get_db as app_get_session
from eoty_platform.main import app as fastapi_app
from eoty_platform.models import ForumPost, ForumTopic, Lesson, User, VideoProvider

TEST_DB_URL = "sqlite://"

_USER_COUNTER = count(1)


class FakeClock:
    """Settable UTC clock for services that take a ``clock`` callable."""

    def __init__(self, start: datetime | None = None) -> None:
        self.now = start or datetime(2024, 5, 1, 12, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture()
def engine() -> Generator[Engine, None, None]:
    engine = build_engine(TEST_DB_URL)
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(engine: Engine) -> Iterator[Session]:
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="session")
def app() -> FastAPI:
    return fastapi_app


@pytest.fixture(autouse=True)
def override_session_dependency(app: FastAPI, db_session: Session) -> Iterator[None]:
    def _get_session_override() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[app_get_session] = _get_session_override
    try:
        yield
    finally:
        app.dependency_overrides.pop(app_get_session, None)


@pytest.fixture()
def client(app: FastAPI) -> Iterator[TestClient]:
    with TestClient(app, base_url="http://test") as test_client:
        yield test_client


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def make_user(db_session: Session) -> Callable[..., User]:
    def _make_user(role: Role = Role.STUDENT, first_name: str = "Test", **kwargs: object) -> User:
        user = User(
            id=f"user-{next(_USER_COUNTER)}",
            first_name=first_name,
            last_name=kwargs.pop("last_name", "User"),  # type: ignore[arg-type]
            role=role,
            **kwargs,
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make_user


@pytest.fixture()
def student(make_user: Callable[..., User]) -> User:
    return make_user(Role.STUDENT, first_name="Sam")


@pytest.fixture()
def other_student(make_user: Callable[..., User]) -> User:
    return make_user(Role.STUDENT, first_name="Alex")


@pytest.fixture()
def teacher(make_user: Callable[..., User]) -> User:
    return make_user(Role.TEACHER, first_name="Tara")


@pytest.fixture()
def admin(make_user: Callable[..., User]) -> User:
    return make_user(Role.CHAPTER_ADMIN, first_name="Ada")


@pytest.fixture()
def auth_headers() -> Callable[[User], dict[str, str]]:
    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user.id)}"}

    return _headers


@pytest.fixture()
def topic(db_session: Session) -> ForumTopic:
    topic = ForumTopic(title="General")
    db_session.add(topic)
    db_session.commit()
    return topic


@pytest.fixture()
def make_post(db_session: Session, topic: ForumTopic) -> Callable[..., ForumPost]:
    def _make_post(author: User, content: str = "Hello forum", **kwargs: object) -> ForumPost:
        post = ForumPost(author_id=author.id, content=content, topic_id=topic.id, **kwargs)
        db_session.add(post)
        db_session.commit()
        return post

    return _make_post


@pytest.fixture()
def lesson(db_session: Session) -> Lesson:
    lesson = Lesson(
        title="Introduction to Orthodox Christianity",
        video_provider=VideoProvider.ADAPTIVE_STREAM,
        stream_ref="playback-abc123",
        duration=300.0,
    )
    db_session.add(lesson)
    db_session.commit()
    return lesson
