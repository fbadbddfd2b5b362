"""
Shared fixtures: an in-memory SQLite engine with the full schema, plus
helpers for seeding campaigns and entries.
"""

import pytest
from sqlalchemy import create_engine, insert
from sqlalchemy.pool import StaticPool

from app.database import Base
from app.models import Campaign, Entry


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
def conn(engine):
    with engine.connect() as conn:
        yield conn


@pytest.fixture
def default_campaign(engine, monkeypatch):
    monkeypatch.setattr("app.config.DEFAULT_CAMPAIGN_SLUG", "spring-sweeps")
    campaign = {
        "id": "camp-default",
        "slug": "spring-sweeps",
        "title": "Spring Sweepstakes",
        "prize_name": "Gift Card",
        "prize_amount": "$500",
        "target_audience": "Everyone",
        "source_id": None,
    }
    with engine.begin() as c:
        c.execute(insert(Campaign.__table__).values(**campaign))
    return campaign


@pytest.fixture
def make_entry(engine):
    def _make_entry(email, referral_code, **overrides):
        values = {
            "first_name": "Test",
            "last_name": "User",
            "email": email,
            "referral_code": referral_code,
        }
        values.update(overrides)
        with engine.begin() as c:
            row = c.execute(
                insert(Entry.__table__).values(**values).returning(*Entry.__table__.c)
            ).mappings().one()
        return dict(row)

    return _make_entry
