import itertools
import random
from datetime import datetime, timezone

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import sessionmaker

from reviewspin.db import Base, get_db, make_engine
from reviewspin.main import app, get_clock, get_rng
from reviewspin.models import Reward, Tenant
from reviewspin.schemas import TenantConfig
from reviewspin.security import hash_tenant_token

TENANT_TOKEN = "staff-secret-token"
# Thursday 4 Dec 2025, 14:30 in Paris
NOW = datetime(2025, 12, 4, 13, 30, tzinfo=timezone.utc)

_slugs = itertools.count(1)


class FixedClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def engine(tmp_path):
    eng = make_engine(f"sqlite:///{tmp_path / 'engine.db'}", timeout_seconds=30)
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_tenant(db):
    """Create a venue; rewards are (label, weight, is_win[, active]) tuples."""

    def _make(rewards=(("Coffee", 1, True), ("Thanks", 1, False)), **overrides):
        fields = dict(
            slug=f"venue-{next(_slugs)}",
            name="Café Délice",
            timezone="Europe/Paris",
            max_plays_per_day=1,
            replay_delay_hours=24,
            reward_validity_days=30,
            enforce_replay_delay=False,
            admin_token_hash=hash_tenant_token(TENANT_TOKEN),
        )
        fields.update(overrides)
        tenant = Tenant(**fields)
        db.add(tenant)
        db.flush()
        for position, (label, weight, is_win, *rest) in enumerate(rewards):
            db.add(Reward(
                tenant_id=tenant.id,
                label=label,
                weight=weight,
                is_win=is_win,
                active=rest[0] if rest else True,
                position=position,
            ))
        db.commit()
        db.refresh(tenant)
        return tenant

    return _make


@pytest.fixture
def tenant(make_tenant):
    return make_tenant()


@pytest.fixture
def config(tenant):
    return TenantConfig.from_tenant(tenant)


@pytest.fixture
def clock():
    return FixedClock(NOW)


@pytest.fixture
def client(session_factory, clock):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[get_rng] = lambda: random.Random(1234)
    yield TestClient(app)
    app.dependency_overrides.clear()
