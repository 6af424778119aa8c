import logging

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .errors import SeasonNotFound
from .models import Contestant, Portfolio, Season
from .pricing import to_decimal

logger = logging.getLogger(__name__)


def shares_per_contestant(num_players: int, num_contestants: int, starting_salary) -> int:
    """Half of all starting capital, spread evenly over the contestants."""
    if num_contestants <= 0:
        return 0
    return int((num_players * to_decimal(starting_salary)) // (num_contestants * 2))


def allocate_shares(db: Session, season_id: int) -> dict[int, int]:
    """
    Size each active contestant's tradeable supply from enrollment.

    Re-running overwrites the totals without looking at shares already sold;
    the auction works out what is still available from holdings.
    """
    season = db.get(Season, season_id)
    if season is None:
        raise SeasonNotFound(season_id)

    num_players = int(
        db.execute(
            select(func.count()).select_from(Portfolio).where(Portfolio.season_id == season_id)
        ).scalar_one()
    )
    contestants = db.execute(
        select(Contestant)
        .where(Contestant.season_id == season_id, Contestant.is_active.is_(True))
        .order_by(Contestant.id)
    ).scalars().all()

    per_contestant = shares_per_contestant(num_players, len(contestants), season.starting_salary)
    shares_by_contestant: dict[int, int] = {}
    for contestant in contestants:
        contestant.total_shares = per_contestant
        shares_by_contestant[contestant.id] = per_contestant

    db.commit()
    logger.info(
        "Allocated %d shares to each of %d contestants in season %s (%d players)",
        per_contestant,
        len(contestants),
        season_id,
        num_players,
    )
    return shares_by_contestant
