# backend/tests/conftest.py
"""
Pytest configuration and fixtures for the settlement engine tests.
"""
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from survivor_market.db import Base
from survivor_market.models import Season


# In-memory SQLite keeps every test isolated and fast
TEST_DATABASE_URL = "sqlite:///:memory:"


@pytest.fixture(scope="function")
def db_session():
    """Create a test database session."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)
        engine.dispose()


@pytest.fixture(scope="function")
def season(db_session):
    """An active season with the default $100 starting salary."""
    row = Season(name="Test Season", starting_salary=100, is_active=True)
    db_session.add(row)
    db_session.commit()
    return row
