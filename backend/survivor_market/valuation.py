import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from .models import Game, Portfolio, PortfolioStock
from .pricing import current_price, round_cents, round_whole, to_decimal

logger = logging.getLogger(__name__)


def get_current_week(db: Session, season_id: int) -> int:
    latest = db.execute(
        select(Game.episode_number)
        .where(Game.season_id == season_id, Game.aired.is_(True))
        .order_by(Game.episode_number.desc())
        .limit(1)
    ).scalar_one_or_none()
    return int(latest) if latest is not None else 1


def recalculate_portfolios(db: Session, season_id: int) -> int:
    """
    Mark every portfolio in the season to market.

    Writes whole-unit stock value, net worth to the cent, and the percent
    movement against the net worth stored by the previous run.
    """
    portfolios = db.execute(
        select(Portfolio)
        .where(Portfolio.season_id == season_id)
        .options(selectinload(Portfolio.stocks).selectinload(PortfolioStock.contestant))
        .order_by(Portfolio.id)
    ).scalars().all()

    week = get_current_week(db, season_id)
    price_cache: dict[int, Decimal] = {}

    for portfolio in portfolios:
        previous_net_worth = to_decimal(portfolio.net_worth)

        stock_value = Decimal("0")
        for stock in portfolio.stocks:
            if stock.contestant_id not in price_cache:
                price_cache[stock.contestant_id] = current_price(db, stock.contestant, week)
            stock_value += Decimal(stock.shares) * price_cache[stock.contestant_id]

        net_worth = to_decimal(portfolio.cash_balance) + stock_value
        if previous_net_worth > 0:
            movement = (net_worth - previous_net_worth) / previous_net_worth * 100
        else:
            movement = Decimal("0")

        portfolio.total_stock = float(round_whole(stock_value))
        portfolio.net_worth = float(round_cents(net_worth))
        portfolio.movement = float(round_cents(movement))

    db.commit()
    logger.info("Revalued %d portfolios for season %s at week %s", len(portfolios), season_id, week)
    return len(portfolios)
