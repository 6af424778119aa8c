from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from .errors import OrderRejected
from .models import Bid, Contestant, Listing, Phase, PhaseType, Portfolio, PortfolioStock
from .pricing import is_quarter_increment, to_decimal

MIN_PRICE = Decimal("0.25")
MIN_OFFERING_PRICE = Decimal("1.00")


def _open_phase_or_raise(db: Session, phase_id: int) -> Phase:
    phase = db.get(Phase, phase_id)
    if phase is None or not phase.is_open:
        raise OrderRejected("Phase is not open")
    return phase


def _portfolio_or_raise(db: Session, user_id: int, season_id: int) -> Portfolio:
    portfolio = db.execute(
        select(Portfolio).where(Portfolio.user_id == user_id, Portfolio.season_id == season_id)
    ).scalar_one_or_none()
    if portfolio is None:
        raise OrderRejected("Portfolio not found")
    return portfolio


def _tradeable_contestant_or_raise(db: Session, contestant_id: int, season_id: int) -> Contestant:
    contestant = db.get(Contestant, contestant_id)
    if contestant is None or contestant.season_id != season_id or not contestant.is_active:
        raise OrderRejected("Invalid contestant")
    return contestant


def _validate_price(value: Decimal, label: str) -> None:
    if value < MIN_PRICE:
        raise OrderRejected(f"{label} must be at least {MIN_PRICE:.2f}")
    if not is_quarter_increment(value):
        raise OrderRejected(f"{label} must be in $0.25 increments")


def place_bid(
    db: Session,
    user_id: int,
    phase_id: int,
    contestant_id: int,
    shares: int,
    bid_price,
) -> Bid:
    price = to_decimal(bid_price)
    if shares < 1:
        raise OrderRejected("shares must be >= 1")

    phase = _open_phase_or_raise(db, phase_id)
    if phase.phase_type == PhaseType.GAME_DAY:
        raise OrderRejected("Trading is closed on Game Day")
    if not phase.phase_type.accepts_bids:
        raise OrderRejected("Invalid trading phase")

    _validate_price(price, "Bid price")
    if phase.phase_type.is_offering and price < MIN_OFFERING_PRICE:
        raise OrderRejected(f"Offering bids must be at least {MIN_OFFERING_PRICE:.2f}")

    _portfolio_or_raise(db, user_id, phase.season_id)

    existing = db.execute(
        select(Bid.id).where(
            Bid.user_id == user_id,
            Bid.phase_id == phase_id,
            Bid.contestant_id == contestant_id,
        )
    ).scalar_one_or_none()
    if existing is not None:
        raise OrderRejected("Bid already exists for this contestant")

    _tradeable_contestant_or_raise(db, contestant_id, phase.season_id)

    if phase.phase_type.is_listing:
        lowest_minimum = db.execute(
            select(func.min(Listing.minimum_price)).where(
                Listing.phase_id == phase_id,
                Listing.contestant_id == contestant_id,
                Listing.is_filled.is_(False),
                Listing.seller_id != user_id,
            )
        ).scalar_one_or_none()
        if lowest_minimum is None:
            raise OrderRejected("No active listings available for this contestant")
        if price < to_decimal(lowest_minimum):
            raise OrderRejected(f"Bid must be at least {float(lowest_minimum):.2f} for available listings")

    bid = Bid(
        user_id=user_id,
        phase_id=phase_id,
        contestant_id=contestant_id,
        shares=shares,
        bid_price=float(price),
    )
    db.add(bid)
    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise OrderRejected("Bid already exists for this contestant")
    db.refresh(bid)
    return bid


def create_listing(
    db: Session,
    seller_id: int,
    phase_id: int,
    contestant_id: int,
    shares: int,
    minimum_price,
) -> Listing:
    price = to_decimal(minimum_price)
    if shares < 1:
        raise OrderRejected("shares must be >= 1")

    phase = _open_phase_or_raise(db, phase_id)
    if not phase.phase_type.accepts_listings:
        raise OrderRejected("Listings can only be created during listing phases")

    _validate_price(price, "Minimum price")
    portfolio = _portfolio_or_raise(db, seller_id, phase.season_id)
    _tradeable_contestant_or_raise(db, contestant_id, phase.season_id)

    existing = db.execute(
        select(Listing.id).where(
            Listing.seller_id == seller_id,
            Listing.phase_id == phase_id,
            Listing.contestant_id == contestant_id,
            Listing.is_filled.is_(False),
        )
    ).scalar_one_or_none()
    if existing is not None:
        raise OrderRejected("You already have an active listing for this contestant in this phase")

    owned = db.execute(
        select(PortfolioStock.shares).where(
            PortfolioStock.portfolio_id == portfolio.id,
            PortfolioStock.contestant_id == contestant_id,
        )
    ).scalar_one_or_none()
    if owned is None or int(owned) < shares:
        raise OrderRejected("Not enough shares")

    listing = Listing(
        seller_id=seller_id,
        phase_id=phase_id,
        contestant_id=contestant_id,
        shares=shares,
        remaining_shares=shares,
        minimum_price=float(price),
    )
    db.add(listing)
    db.commit()
    db.refresh(listing)
    return listing
