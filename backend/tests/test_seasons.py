# backend/tests/test_seasons.py
"""
Season administration: enrollment, weekly schedule, airing and eliminations.
"""
from datetime import datetime, timedelta

import pytest
from sqlalchemy import select

from survivor_market.errors import NoActiveSeason, NotFoundError, PreconditionError, SeasonNotFound
from survivor_market.models import Contestant, Portfolio, PhaseType, Season, User
from survivor_market.seasons import (
    create_week_phases,
    eliminate_contestant,
    enroll_players,
    get_active_season,
    get_current_phase,
    is_phase_open,
    mark_week_aired,
)
from survivor_market.seed import seed

from factories import add_contestant, add_game, add_phase


class TestEnrollment:
    def test_enrolls_non_admin_users_once(self, db_session, season):
        db_session.add_all(
            [
                User(email="admin@test.com", name="Admin", is_admin=True),
                User(email="p1@test.com", name="P1"),
                User(email="p2@test.com", name="P2"),
            ]
        )
        db_session.commit()

        assert enroll_players(db_session, season.id) == (2, 2)
        assert enroll_players(db_session, season.id) == (0, 2)

        portfolios = db_session.execute(select(Portfolio)).scalars().all()
        assert all(float(p.cash_balance) == pytest.approx(100.0) for p in portfolios)
        assert all(float(p.net_worth) == pytest.approx(100.0) for p in portfolios)

    def test_missing_season(self, db_session):
        with pytest.raises(SeasonNotFound):
            enroll_players(db_session, 77)

    def test_active_season_lookup(self, db_session, season):
        assert get_active_season(db_session).id == season.id
        season.is_active = False
        db_session.commit()
        with pytest.raises(NoActiveSeason):
            get_active_season(db_session)


class TestWeekSchedule:
    def test_creates_five_closed_phases_per_week(self, db_session, season):
        now = datetime(2025, 3, 1, 12, 0)

        week, phases, created = create_week_phases(db_session, season.id, now=now)

        assert (week, created) == (1, True)
        assert [phase.phase_type for phase in phases] == [
            PhaseType.INITIAL_OFFERING,
            PhaseType.SECOND_OFFERING,
            PhaseType.FIRST_LISTING,
            PhaseType.SECOND_LISTING,
            PhaseType.GAME_DAY,
        ]
        assert all(phase.is_open is False for phase in phases)
        assert phases[0].name == "Week 1 Initial Offering"
        assert phases[2].start_date == now + timedelta(days=5)
        assert phases[4].end_date == now + timedelta(days=11)

        next_week, _, _ = create_week_phases(db_session, season.id, now=now)
        assert next_week == 2

    def test_phase_window(self, db_session, season):
        now = datetime(2025, 3, 1, 12, 0)
        phase = add_phase(db_session, season, PhaseType.INITIAL_OFFERING)
        phase.start_date = now - timedelta(hours=1)
        phase.end_date = now + timedelta(hours=1)
        db_session.commit()

        assert is_phase_open(phase, now) is True
        assert is_phase_open(phase, now + timedelta(hours=2)) is False
        assert get_current_phase(db_session, season.id, now).id == phase.id
        assert get_current_phase(db_session, season.id, now + timedelta(hours=2)) is None

        phase.is_open = False
        db_session.commit()
        assert is_phase_open(phase, now) is False


class TestAiring:
    def test_marks_new_week_aired(self, db_session, season):
        game = mark_week_aired(db_session, season.id, 3)
        assert game.aired is True
        assert game.dividend_processed is False
        assert game.title == "Episode 3"

    def test_marks_existing_game_aired(self, db_session, season):
        existing = add_game(db_session, season, 2, aired=False)
        game = mark_week_aired(db_session, season.id, 2)
        assert game.id == existing.id
        assert game.aired is True
        assert game.air_date is not None

    def test_rejects_week_zero(self, db_session, season):
        with pytest.raises(PreconditionError):
            mark_week_aired(db_session, season.id, 0)


class TestElimination:
    def test_eliminates_contestant(self, db_session, season):
        contestant = add_contestant(db_session, season, "Rome")
        when = datetime(2025, 4, 2, 20, 0)

        eliminate_contestant(db_session, contestant.id, when=when)

        assert contestant.is_active is False
        assert contestant.eliminated_at == when

    def test_unknown_contestant(self, db_session):
        with pytest.raises(NotFoundError):
            eliminate_contestant(db_session, 1234)


class TestSeed:
    def test_seed_is_idempotent(self, db_session):
        first = seed(db_session)
        second = seed(db_session)

        assert first.id == second.id
        assert len(db_session.execute(select(Season)).scalars().all()) == 1
        assert len(db_session.execute(select(User)).scalars().all()) == 3
        contestants = db_session.execute(select(Contestant)).scalars().all()
        assert len(contestants) == 20
        assert len(db_session.execute(select(Portfolio)).scalars().all()) == 2
        # 2 players * $100 / (20 contestants * 2)
        assert {contestant.total_shares for contestant in contestants} == {5}
