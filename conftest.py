import itertools
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from sqlalchemy.orm import sessionmaker
from fastapi.testclient import TestClient

# --- Alembic Imports ---
from alembic.config import Config
from alembic import command
# --- End Alembic Imports ---

import models
from auth import get_current_user
from database import Base, build_engine
from main import create_app
from settings import Settings, get_settings

ROOT = Path(__file__).resolve().parent
BASE_TIME = datetime(2026, 1, 1, tzinfo=timezone.utc)


@pytest.fixture(scope="session")
def test_settings(tmp_path_factory) -> Settings:
    db_path = tmp_path_factory.mktemp("db") / "prodmarket-test.db"
    return Settings(
        _env_file=None,
        database_url=f"sqlite:///{db_path}",
        auth_enabled=False,
        log_format="console",
        log_level="WARNING",
    )


@pytest.fixture(scope="session")
def test_engine(test_settings):
    """Create the test database from models and stamp with Alembic head."""
    engine = build_engine(test_settings.sqlalchemy_database_url)
    Base.metadata.create_all(bind=engine)

    alembic_cfg = Config(str(ROOT / "alembic.ini"))
    alembic_cfg.set_main_option("sqlalchemy.url", test_settings.sqlalchemy_database_url)
    command.stamp(alembic_cfg, "head")  # Mark DB as up-to-date

    yield engine

    engine.dispose()


@pytest.fixture(scope="session")
def session_factory(test_engine):
    """Fresh-session factory for tests that need one session per thread."""
    return sessionmaker(autocommit=False, autoflush=False, bind=test_engine)


@pytest.fixture(autouse=True)
def clean_tables(test_engine):
    yield
    with test_engine.begin() as conn:
        for table in reversed(Base.metadata.sorted_tables):
            conn.execute(table.delete())


@pytest.fixture(scope="function")
def db_session(test_engine):
    """Yields a SQLAlchemy session directly from the test engine.

    Objects stay loaded after commit so tests can keep using the rows they
    created; call ``db_session.refresh(obj)`` to see changes made through the API.
    """
    session = sessionmaker(autoflush=False, expire_on_commit=False, bind=test_engine)()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="session")
def app(test_settings, test_engine):
    application = create_app(test_settings)
    application.dependency_overrides[get_settings] = lambda: test_settings
    yield application
    application.state.engine.dispose()


@pytest.fixture(scope="function")
def test_client(app):
    """Provides a test client bound to the test database."""
    return TestClient(app)


@pytest.fixture(scope="function")
def login_as(app):
    """Make subsequent API calls run as ``user``."""

    def _login(user: models.User) -> None:
        app.dependency_overrides[get_current_user] = lambda: user

    yield _login

    app.dependency_overrides.pop(get_current_user, None)


# --- Row factories ---
@pytest.fixture
def make_user(db_session):
    counter = itertools.count(1)

    def _make(user_id: str = None, **fields) -> models.User:
        n = next(counter)
        user = models.User(
            id=user_id or f"user-{n}",
            email=fields.pop("email", f"user-{n}@example.com"),
            role=fields.pop("role", "client"),
            **fields,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def make_tariff(db_session):
    def _make(name: str = "Стандарт", price: int = 4990, **fields) -> models.Tariff:
        tariff = models.Tariff(
            name=name,
            price=price,
            features=fields.pop("features", ["unlimited_responses"]),
            is_active=fields.pop("is_active", True),
            **fields,
        )
        db_session.add(tariff)
        db_session.commit()
        db_session.refresh(tariff)
        return tariff

    return _make


@pytest.fixture
def make_company(db_session):
    counter = itertools.count(1)

    def _make(owner: models.User, **fields) -> models.Company:
        n = next(counter)
        fields.setdefault("name", f"Factory {n}")
        fields.setdefault("created_at", BASE_TIME + timedelta(minutes=n))
        company = models.Company(user_id=owner.id, **fields)
        db_session.add(company)
        db_session.commit()
        db_session.refresh(company)
        return company

    return _make


@pytest.fixture
def make_order(db_session):
    counter = itertools.count(1)

    def _make(customer: models.User, **fields) -> models.Order:
        n = next(counter)
        fields.setdefault("title", f"Order {n}")
        fields.setdefault("created_at", BASE_TIME + timedelta(minutes=n))
        order = models.Order(customer_id=customer.id, **fields)
        db_session.add(order)
        db_session.commit()
        db_session.refresh(order)
        return order

    return _make
