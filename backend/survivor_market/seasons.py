import logging
from datetime import datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .errors import NoActiveSeason, NotFoundError, PreconditionError, SeasonNotFound
from .models import Contestant, Game, Phase, PhaseType, Portfolio, Season, User, utcnow

logger = logging.getLogger(__name__)

# (phase type, start offset days, end offset days) for a freshly scheduled week
WEEK_SCHEDULE: list[tuple[PhaseType, int, int]] = [
    (PhaseType.INITIAL_OFFERING, 0, 3),
    (PhaseType.SECOND_OFFERING, 3, 4),
    (PhaseType.FIRST_LISTING, 5, 7),
    (PhaseType.SECOND_LISTING, 7, 9),
    (PhaseType.GAME_DAY, 10, 11),
]


def get_season_or_raise(db: Session, season_id: int) -> Season:
    season = db.get(Season, season_id)
    if season is None:
        raise SeasonNotFound(season_id)
    return season


def get_active_season(db: Session) -> Season:
    season = db.execute(select(Season).where(Season.is_active.is_(True)).limit(1)).scalar_one_or_none()
    if season is None:
        raise NoActiveSeason()
    return season


def enroll_players(db: Session, season_id: int) -> tuple[int, int]:
    """Give every non-admin user a portfolio funded with the season's starting salary."""
    season = get_season_or_raise(db, season_id)
    enrolled = set(
        db.execute(select(Portfolio.user_id).where(Portfolio.season_id == season_id)).scalars().all()
    )
    players = db.execute(select(User.id).where(User.is_admin.is_(False)).order_by(User.id)).scalars().all()

    created = 0
    for user_id in players:
        if user_id in enrolled:
            continue
        db.add(
            Portfolio(
                user_id=user_id,
                season_id=season_id,
                cash_balance=season.starting_salary,
                total_stock=0,
                net_worth=season.starting_salary,
                movement=0,
            )
        )
        created += 1
    db.commit()

    total = int(
        db.execute(
            select(func.count()).select_from(Portfolio).where(Portfolio.season_id == season_id)
        ).scalar_one()
    )
    logger.info("Enrolled %d new players in season %s (%d total)", created, season_id, total)
    return created, total


def create_week_phases(db: Session, season_id: int, now: datetime | None = None) -> tuple[int, list[Phase], bool]:
    """
    Schedule the five phases for the week after the latest scheduled one.

    Phases start closed; an admin opens each one by hand. If the next week
    already has phases nothing is created.
    """
    get_season_or_raise(db, season_id)
    latest_week = db.execute(
        select(func.max(Phase.week_number)).where(Phase.season_id == season_id)
    ).scalar_one_or_none()
    next_week = (latest_week or 0) + 1

    existing = db.execute(
        select(Phase).where(Phase.season_id == season_id, Phase.week_number == next_week).order_by(Phase.id)
    ).scalars().all()
    if existing:
        return next_week, list(existing), False

    current = now or utcnow()
    phases = [
        Phase(
            season_id=season_id,
            phase_type=phase_type,
            week_number=next_week,
            name=f"Week {next_week} {phase_type.display_name}",
            start_date=current + timedelta(days=start_offset),
            end_date=current + timedelta(days=end_offset),
            is_open=False,
        )
        for phase_type, start_offset, end_offset in WEEK_SCHEDULE
    ]
    db.add_all(phases)
    db.commit()
    return next_week, phases, True


def mark_week_aired(db: Session, season_id: int, week_number: int) -> Game:
    get_season_or_raise(db, season_id)
    if week_number < 1:
        raise PreconditionError("Invalid week number")

    game = db.execute(
        select(Game).where(Game.season_id == season_id, Game.episode_number == week_number)
    ).scalar_one_or_none()
    if game is None:
        game = Game(
            season_id=season_id,
            episode_number=week_number,
            air_date=utcnow(),
            aired=True,
            dividend_processed=False,
            title=f"Episode {week_number}",
        )
        db.add(game)
    else:
        game.aired = True
        game.air_date = game.air_date or utcnow()
    db.commit()
    db.refresh(game)
    return game


def is_phase_open(phase: Phase, now: datetime | None = None) -> bool:
    """Open only when flagged open and `now` falls inside its window."""
    if not phase.is_open:
        return False
    current = now or utcnow()
    if current < phase.start_date:
        return False
    if phase.end_date is not None:
        return current < phase.end_date
    return True


def get_current_phase(db: Session, season_id: int, now: datetime | None = None) -> Phase | None:
    current = now or utcnow()
    candidates = db.execute(
        select(Phase)
        .where(
            Phase.season_id == season_id,
            Phase.is_open.is_(True),
            Phase.start_date <= current,
        )
        .order_by(Phase.start_date.desc())
    ).scalars().all()
    for phase in candidates:
        if phase.end_date is None or phase.end_date >= current:
            return phase
    return None


def eliminate_contestant(db: Session, contestant_id: int, when: datetime | None = None) -> Contestant:
    """Vote a contestant out. Their shares stay held but are valued at zero from now on."""
    contestant = db.get(Contestant, contestant_id)
    if contestant is None:
        raise NotFoundError(f"Contestant {contestant_id} not found")
    contestant.is_active = False
    contestant.eliminated_at = contestant.eliminated_at or when or utcnow()
    db.commit()
    logger.info("Contestant %s eliminated from season %s", contestant_id, contestant.season_id)
    return contestant
