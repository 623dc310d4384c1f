from __future__ import annotations

from collections.abc import Callable, Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from leadhub import events
from leadhub.core.auth import get_current_actor
from leadhub.core.config import get_settings
from leadhub.core.database import Base, get_db
from leadhub.crm.models import User
from leadhub.main import app
from leadhub.middleware.rate_limit import reset_rate_limiter
from leadhub.notifications import get_emitter, get_mailer, set_emitter, set_mailer
from leadhub.platform.security import Actor

from factories import RecordingEmitter, RecordingMailer, actor_for


@pytest.fixture()
def session_factory() -> Generator[sessionmaker[Session], None, None]:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)
    Base.metadata.create_all(bind=engine)
    try:
        yield SessionLocal
    finally:
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture()
def db_session(session_factory: sessionmaker[Session]) -> Generator[Session, None, None]:
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(autouse=True)
def setup_env(monkeypatch: pytest.MonkeyPatch) -> Generator[None, None, None]:
    monkeypatch.setenv("RATE_LIMIT_DISABLED", "true")
    monkeypatch.setenv("BCRYPT_ROUNDS", "4")
    get_settings.cache_clear()
    reset_rate_limiter()
    events.published_events.clear()
    yield
    events.published_events.clear()
    get_settings.cache_clear()
    reset_rate_limiter()


@pytest.fixture()
def emitter() -> Generator[RecordingEmitter, None, None]:
    previous = get_emitter()
    recording = RecordingEmitter()
    set_emitter(recording)
    yield recording
    set_emitter(previous)


@pytest.fixture()
def mailer() -> Generator[RecordingMailer, None, None]:
    previous = get_mailer()
    recording = RecordingMailer()
    set_mailer(recording)
    yield recording
    set_mailer(previous)


@pytest.fixture()
def users(db_session: Session) -> dict[str, User]:
    people = {
        "admin": User(email="admin@example.com", first_name="Ada", last_name="Admin", role="Admin"),
        "manager": User(email="manager@example.com", first_name="Max", last_name="Manager", role="Manager"),
        "exec1": User(email="sam@example.com", first_name="Sam", last_name="Seller", role="Sales Executive"),
        "exec2": User(email="tia@example.com", first_name="Tia", last_name="Trader", role="Sales Executive"),
        "inactive": User(
            email="gone@example.com",
            first_name="Gil",
            last_name="Gone",
            role="Sales Executive",
            is_active=False,
        ),
    }
    db_session.add_all(people.values())
    db_session.commit()
    return people


@pytest.fixture()
def client(
    db_session: Session,
    users: dict[str, User],
    emitter: RecordingEmitter,
    mailer: RecordingMailer,
) -> Generator[tuple[TestClient, Callable[[str], None]], None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    state = {"current": "admin"}

    def override_get_current_actor() -> Actor:
        return actor_for(users[state["current"]])

    def set_actor(name: str) -> None:
        state["current"] = name

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_current_actor] = override_get_current_actor
    with TestClient(app) as test_client:
        yield test_client, set_actor
    app.dependency_overrides.clear()


@pytest.fixture()
def token_client(
    db_session: Session,
    users: dict[str, User],
    emitter: RecordingEmitter,
    mailer: RecordingMailer,
) -> Generator[TestClient, None, None]:
    def override_get_db() -> Generator[Session, None, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
