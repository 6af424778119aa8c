"""Row-level building blocks shared by the auction and listing engines.

Every helper here runs inside the caller's open transaction; the engines
commit once per award or transfer so a failed unit never rolls back its
siblings.
"""
import enum
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from .errors import InsufficientShares, InvalidPhaseType, PhaseNotFound
from .models import Contestant, Phase, PhaseType, Portfolio, PortfolioStock
from .pricing import to_decimal, weighted_average_price


class SettlementKind(enum.Enum):
    AUCTION = "settle auction"
    LISTING_MATCH = "match listings"


# Which engine clears each phase type. Game day trades nothing.
SETTLEMENT_BY_PHASE_TYPE: dict[PhaseType, SettlementKind | None] = {
    PhaseType.INITIAL_OFFERING: SettlementKind.AUCTION,
    PhaseType.SECOND_OFFERING: SettlementKind.AUCTION,
    PhaseType.FIRST_LISTING: SettlementKind.LISTING_MATCH,
    PhaseType.SECOND_LISTING: SettlementKind.LISTING_MATCH,
    PhaseType.GAME_DAY: None,
}


def load_phase_for(db: Session, phase_id: int, kind: SettlementKind) -> Phase:
    phase = db.get(Phase, phase_id)
    if phase is None:
        raise PhaseNotFound(phase_id)
    if SETTLEMENT_BY_PHASE_TYPE[phase.phase_type] is not kind:
        raise InvalidPhaseType(phase_id, phase.phase_type, kind.value)
    return phase


def close_phase(db: Session, phase: Phase) -> None:
    phase.is_open = False
    db.commit()


def tradeable_contestants(db: Session, season_id: int) -> dict[int, Contestant]:
    rows = db.execute(
        select(Contestant).where(Contestant.season_id == season_id, Contestant.is_active.is_(True))
    ).scalars().all()
    return {contestant.id: contestant for contestant in rows}


def shares_held_in_season(db: Session, season_id: int, contestant_id: int) -> int:
    held = db.execute(
        select(func.coalesce(func.sum(PortfolioStock.shares), 0))
        .join(Portfolio, Portfolio.id == PortfolioStock.portfolio_id)
        .where(Portfolio.season_id == season_id, PortfolioStock.contestant_id == contestant_id)
    ).scalar_one()
    return int(held)


def portfolios_by_user(db: Session, season_id: int, user_ids) -> dict[int, Portfolio]:
    if not user_ids:
        return {}
    rows = db.execute(
        select(Portfolio).where(Portfolio.season_id == season_id, Portfolio.user_id.in_(list(user_ids)))
    ).scalars().all()
    return {portfolio.user_id: portfolio for portfolio in rows}


def lock_portfolio(db: Session, portfolio_id: int) -> Portfolio:
    return db.execute(
        select(Portfolio).where(Portfolio.id == portfolio_id).with_for_update()
    ).scalar_one()


def _lock_stock(db: Session, portfolio_id: int, contestant_id: int) -> PortfolioStock | None:
    return db.execute(
        select(PortfolioStock)
        .where(
            PortfolioStock.portfolio_id == portfolio_id,
            PortfolioStock.contestant_id == contestant_id,
        )
        .with_for_update()
    ).scalar_one_or_none()


def credit_shares(
    db: Session,
    portfolio_id: int,
    contestant_id: int,
    shares: int,
    fill_price: Decimal,
) -> PortfolioStock:
    stock = _lock_stock(db, portfolio_id, contestant_id)
    if stock is None:
        stock = PortfolioStock(
            portfolio_id=portfolio_id,
            contestant_id=contestant_id,
            shares=shares,
            average_price=float(fill_price),
        )
        db.add(stock)
        return stock

    stock.average_price = float(
        weighted_average_price(to_decimal(stock.average_price), int(stock.shares), fill_price, shares)
    )
    stock.shares = int(stock.shares) + shares
    return stock


def debit_shares(db: Session, portfolio_id: int, contestant_id: int, shares: int) -> None:
    stock = _lock_stock(db, portfolio_id, contestant_id)
    owned = int(stock.shares) if stock is not None else 0
    if owned < shares:
        raise InsufficientShares(portfolio_id, contestant_id, shares, owned)
    if owned == shares:
        db.delete(stock)
    else:
        stock.shares = owned - shares
