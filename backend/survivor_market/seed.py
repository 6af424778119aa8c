import os
import time
from decimal import Decimal

from sqlalchemy import select, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from .db import Base, engine
from .issuance import allocate_shares
from .models import Contestant, Season, User
from .seasons import enroll_players

SAMPLE_SEASON_NAME = os.environ.get("SAMPLE_SEASON_NAME", "Survivor 47 (Sample)")
DEFAULT_STARTING_SALARY = Decimal(os.environ.get("DEFAULT_STARTING_SALARY", "100"))

SAMPLE_USERS: list[dict[str, object]] = [
    {"email": "admin@survivor.com", "name": "Admin User", "is_admin": True},
    {"email": "player1@test.com", "name": "Test Player 1", "is_admin": False},
    {"email": "player2@test.com", "name": "Test Player 2", "is_admin": False},
]

SAMPLE_CONTESTANTS: list[dict[str, str]] = [
    {"name": "Andy Shen", "tribe": "Lava"},
    {"name": "Anika Dhar", "tribe": "Lava"},
    {"name": "Aysha Welch", "tribe": "Lava"},
    {"name": "Caroline Vidmar", "tribe": "Lava"},
    {"name": "Gabe Ortis", "tribe": "Vati"},
    {"name": "Genevieve Mushaluk", "tribe": "Vati"},
    {"name": "Kishan Patel", "tribe": "Vati"},
    {"name": "Kyle Ostwald", "tribe": "Vati"},
    {"name": "Rachel LaMont", "tribe": "Taku"},
    {"name": "Rome Cooney", "tribe": "Taku"},
    {"name": "Sam Phalen", "tribe": "Taku"},
    {"name": "Sue Smey", "tribe": "Taku"},
    {"name": "Tiyana Leumi", "tribe": "Reba"},
    {"name": "Teen Karikari", "tribe": "Reba"},
    {"name": "Tulan Sebastian-Scot", "tribe": "Reba"},
    {"name": 'Vincent "Vinny" Poteito', "tribe": "Reba"},
    {"name": "Chloe Lipson", "tribe": "Laga"},
    {"name": "David Avila", "tribe": "Laga"},
    {"name": "Kendra McQuarrie", "tribe": "Laga"},
    {"name": 'Sierra "Ray" Wright', "tribe": "Laga"},
]


def init_db():
    # Wait for the database to accept connections
    for attempt in range(30):  # ~30 seconds
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            break
        except OperationalError:
            time.sleep(1)
    else:
        raise RuntimeError("Database not ready after 30 seconds")

    Base.metadata.create_all(bind=engine)


def seed(db: Session) -> Season:
    """Create the sample users, season and cast. Safe to run repeatedly."""
    existing_emails = set(db.execute(select(User.email)).scalars().all())
    for row in SAMPLE_USERS:
        if row["email"] in existing_emails:
            continue
        db.add(User(email=str(row["email"]), name=str(row["name"]), is_admin=bool(row["is_admin"])))

    season = db.execute(select(Season).where(Season.name == SAMPLE_SEASON_NAME)).scalar_one_or_none()
    if season is None:
        has_active = db.execute(select(Season.id).where(Season.is_active.is_(True)).limit(1)).first()
        season = Season(
            name=SAMPLE_SEASON_NAME,
            starting_salary=float(DEFAULT_STARTING_SALARY),
            is_active=has_active is None,
        )
        db.add(season)
        db.flush()

    existing_names = set(
        db.execute(select(Contestant.name).where(Contestant.season_id == season.id)).scalars().all()
    )
    for row in SAMPLE_CONTESTANTS:
        if row["name"] in existing_names:
            continue
        db.add(Contestant(season_id=season.id, name=row["name"], tribe=row["tribe"]))
    db.commit()

    enroll_players(db, season.id)
    allocate_shares(db, season.id)
    return season
