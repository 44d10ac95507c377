"""Shared fixtures: settings env, in-memory database, referral factories."""
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/15")
os.environ.setdefault("CELERY_BROKER_URL", "memory://")
os.environ.setdefault("CELERY_RESULT_BACKEND", "cache+memory://")
os.environ.setdefault("TRANSFER_PROVIDER", "mock")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ["SMTP_HOST"] = ""

from decimal import Decimal  # noqa: E402
from unittest.mock import MagicMock  # noqa: E402
from uuid import uuid4  # noqa: E402

import pytest  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

import app.models  # noqa: E402,F401
from app.db.base import Base  # noqa: E402
from app.models.user import User  # noqa: E402


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autocommit=False, autoflush=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def notifier():
    n = MagicMock()
    n.send.return_value = True
    return n


@pytest.fixture
def make_user(db):
    def _make(email: str | None = None, name: str | None = "Test User") -> User:
        user = User(id=str(uuid4()), email=email or f"{uuid4().hex[:8]}@example.com", name=name)
        db.add(user)
        db.commit()
        return user

    return _make


@pytest.fixture
def make_referrer(db, make_user, notifier):
    """Applied (and by default approved) referrer with its code."""
    from app.referral.applications import ApplicationService

    def _make(
        role: str = "partner",
        discount_rate=Decimal("0"),
        commission_rate=None,
        preferred_code: str | None = None,
        approve: bool = True,
        usage_limit=None,
    ):
        user = make_user()
        service = ApplicationService(db, notifier)
        referrer = service.submit_application(
            user.id,
            role,
            profile={"first_name": "Ann", "email": user.email},
            preferred_code=preferred_code,
            discount_rate=discount_rate,
            commission_rate=commission_rate,
        )
        if usage_limit is not None:
            code = service.codes.get(referrer.code_id)
            code.usage_limit = usage_limit
            db.commit()
        if approve:
            service.update_status(referrer.id, "approved")
        db.refresh(referrer)
        return referrer

    return _make
