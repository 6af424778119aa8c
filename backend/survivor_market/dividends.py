import logging
from collections import defaultdict
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from .errors import SeasonNotFound, WeekNotAired
from .models import Achievement, Contestant, Dividend, Game, Portfolio, Season
from .pricing import round_cents, to_decimal
from .schemas import DividendRunOut
from .valuation import recalculate_portfolios

logger = logging.getLogger(__name__)


def process_dividends(db: Session, season_id: int, week_number: int) -> DividendRunOut:
    """
    Pay every shareholder for the achievements their contestants logged in a week.

    The week's game record guards against double payment: it must be aired,
    and once flagged `dividend_processed` a repeat call returns without paying.
    """
    if db.get(Season, season_id) is None:
        raise SeasonNotFound(season_id)

    game = db.execute(
        select(Game)
        .where(Game.season_id == season_id, Game.episode_number == week_number)
        .with_for_update()
    ).scalar_one_or_none()
    if game is None or not game.aired:
        raise WeekNotAired(season_id, week_number)
    if game.dividend_processed:
        db.rollback()
        return DividendRunOut(season_id=season_id, week=week_number, already_processed=True)

    rows = db.execute(
        select(Achievement.contestant_id, Achievement.multiplier, Contestant.name)
        .join(Contestant, Contestant.id == Achievement.contestant_id)
        .where(Contestant.season_id == season_id, Achievement.week_number == week_number)
    ).all()
    multiplier_by_contestant: dict[int, Decimal] = defaultdict(Decimal)
    name_by_contestant: dict[int, str] = {}
    for contestant_id, multiplier, name in rows:
        multiplier_by_contestant[contestant_id] += to_decimal(multiplier)
        name_by_contestant[contestant_id] = name

    portfolios = db.execute(
        select(Portfolio)
        .where(Portfolio.season_id == season_id)
        .options(selectinload(Portfolio.stocks))
        .order_by(Portfolio.id)
    ).scalars().all()

    result = DividendRunOut(season_id=season_id, week=week_number)
    total_paid = Decimal("0")

    for portfolio in portfolios:
        portfolio_total = Decimal("0")
        for stock in portfolio.stocks:
            multiplier = multiplier_by_contestant.get(stock.contestant_id)
            if not multiplier or stock.shares <= 0:
                continue
            amount = round_cents(Decimal(stock.shares) * multiplier)
            if amount <= 0:
                continue
            db.add(
                Dividend(
                    portfolio_id=portfolio.id,
                    week_number=week_number,
                    contestant_id=stock.contestant_id,
                    contestant_name=name_by_contestant.get(stock.contestant_id, "Unknown"),
                    amount=float(amount),
                )
            )
            portfolio_total += amount
            result.ledger_rows += 1

        if portfolio_total > 0:
            portfolio.cash_balance = float(to_decimal(portfolio.cash_balance) + portfolio_total)
            total_paid += portfolio_total
            result.portfolios_credited += 1

    game.dividend_processed = True
    db.commit()

    result.dividends_paid_total = float(total_paid)
    logger.info(
        "Paid %s in dividends for season %s week %s across %d portfolios",
        total_paid,
        season_id,
        week_number,
        result.portfolios_credited,
    )
    recalculate_portfolios(db, season_id)
    return result
