import os
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from .errors import OrderRejected
from .models import Contestant, Rating, StockPrice, utcnow


# Ratings are on a 1-10 scale; an unrated contestant sits mid-scale.
DEFAULT_STOCK_PRICE = Decimal(os.environ.get("DEFAULT_STOCK_PRICE", "5"))
PRICE_INCREMENT = Decimal("0.25")
CENT = Decimal("0.01")


def to_decimal(value) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_cents(value: Decimal) -> Decimal:
    return value.quantize(CENT, rounding=ROUND_HALF_UP)


def round_whole(value: Decimal) -> Decimal:
    return value.quantize(Decimal("1"), rounding=ROUND_HALF_UP)


def is_quarter_increment(value) -> bool:
    return to_decimal(value) % PRICE_INCREMENT == 0


def affordable_shares(cash: Decimal, price: Decimal) -> int:
    if price <= 0 or cash <= 0:
        return 0
    return int(cash // price)


def weighted_average_price(
    old_average: Decimal,
    old_shares: int,
    fill_price: Decimal,
    fill_shares: int,
) -> Decimal:
    """Volume-weighted cost basis after adding `fill_shares` at `fill_price`."""
    total = old_shares + fill_shares
    if total <= 0:
        return Decimal("0")
    return (old_average * old_shares + fill_price * fill_shares) / Decimal(total)


def calculate_median(values: list) -> Decimal:
    if not values:
        return Decimal("0")
    ordered = sorted(to_decimal(v) for v in values)
    mid = len(ordered) // 2
    if len(ordered) % 2:
        return ordered[mid]
    return (ordered[mid - 1] + ordered[mid]) / Decimal(2)


def calculate_stock_price(db: Session, contestant_id: int, week_number: int) -> Decimal:
    """Median of every player's rating for the contestant that week."""
    ratings = db.execute(
        select(Rating.rating).where(
            Rating.contestant_id == contestant_id,
            Rating.week_number == week_number,
        )
    ).scalars().all()
    if not ratings:
        return DEFAULT_STOCK_PRICE
    return calculate_median(list(ratings))


def save_stock_price(db: Session, contestant_id: int, week_number: int, price: Decimal) -> StockPrice:
    row = db.execute(
        select(StockPrice).where(
            StockPrice.contestant_id == contestant_id,
            StockPrice.week_number == week_number,
        )
    ).scalar_one_or_none()
    if row is None:
        row = StockPrice(contestant_id=contestant_id, week_number=week_number, price=float(price))
        db.add(row)
    else:
        row.price = float(price)
        row.calculated_at = utcnow()
    db.flush()
    return row


def current_price(db: Session, contestant: Contestant, week_number: int) -> Decimal:
    if not contestant.is_active:
        return Decimal("0")
    latest = db.execute(
        select(StockPrice.price)
        .where(
            StockPrice.contestant_id == contestant.id,
            StockPrice.week_number <= week_number,
        )
        .order_by(StockPrice.week_number.desc())
        .limit(1)
    ).scalar_one_or_none()
    if latest is None:
        return DEFAULT_STOCK_PRICE
    return to_decimal(latest)


def submit_rating(db: Session, user_id: int, contestant_id: int, week_number: int, rating: int) -> Decimal:
    """Record a player's 1-10 rating and reprice the contestant for that week."""
    if not 1 <= int(rating) <= 10 or week_number < 1:
        raise OrderRejected("Rating must be 1-10 for a week >= 1")
    contestant = db.get(Contestant, contestant_id)
    if contestant is None or not contestant.is_active:
        raise OrderRejected("Cannot rate eliminated contestants")

    row = db.execute(
        select(Rating).where(
            Rating.user_id == user_id,
            Rating.contestant_id == contestant_id,
            Rating.week_number == week_number,
        )
    ).scalar_one_or_none()
    if row is None:
        db.add(Rating(user_id=user_id, contestant_id=contestant_id, week_number=week_number, rating=int(rating)))
    else:
        row.rating = int(rating)
    db.flush()

    price = calculate_stock_price(db, contestant_id, week_number)
    save_stock_price(db, contestant_id, week_number, price)
    db.commit()
    return price
