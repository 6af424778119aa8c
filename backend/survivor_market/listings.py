"""Two-sided clearing for listing phases.

Sellers post listings with a minimum price, buyers post bids. For each
contestant the bid price tiers are walked from the top; at each tier every
listing priced at or below the tier is in play, and buyers split that supply
through the seeded allocator. Buyers pay the tier price and sellers receive it
in full. A seller who also bids never buys from their own listing, and each
buyer's allocation is routed so the other sellers' supply covers it.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from .allocation import TieRequest, allocate_tied_shares, price_key
from .errors import InsufficientFunds, InsufficientShares
from .models import Bid, Listing, PortfolioStock, utcnow
from .pricing import affordable_shares, to_decimal
from .schemas import SettlementOut
from .settlement import (
    SettlementKind,
    close_phase,
    credit_shares,
    debit_shares,
    load_phase_for,
    lock_portfolio,
    portfolios_by_user,
    tradeable_contestants,
)
from .valuation import recalculate_portfolios

logger = logging.getLogger(__name__)


@dataclass
class OpenListing:
    id: int
    seller_id: int
    contestant_id: int
    minimum_price: Decimal
    remaining: int


@dataclass(frozen=True)
class BuyOrder:
    id: int
    user_id: int
    contestant_id: int
    shares: int
    price: Decimal


def _execute_transfer(
    db: Session,
    listing: OpenListing,
    order: BuyOrder,
    buyer_portfolio_id: int,
    seller_portfolio_id: int,
    shares: int,
    price: Decimal,
) -> bool:
    """Move shares and cash for one buyer/listing pair. Returns True when the listing fills."""
    amount = price * shares
    buyer = lock_portfolio(db, buyer_portfolio_id)
    seller = lock_portfolio(db, seller_portfolio_id)

    buyer_cash = to_decimal(buyer.cash_balance)
    if buyer_cash < amount:
        raise InsufficientFunds(buyer_portfolio_id, amount, buyer_cash)

    debit_shares(db, seller_portfolio_id, listing.contestant_id, shares)
    credit_shares(db, buyer_portfolio_id, listing.contestant_id, shares, price)
    buyer.cash_balance = float(buyer_cash - amount)
    seller.cash_balance = float(to_decimal(seller.cash_balance) + amount)

    row = db.execute(select(Listing).where(Listing.id == listing.id).with_for_update()).scalar_one()
    row.remaining_shares = int(row.remaining_shares) - shares
    filled = row.remaining_shares <= 0
    if filled:
        row.remaining_shares = 0
        row.is_filled = True
        row.buyer_id = order.user_id
        row.filled_at = utcnow()

    bid = db.get(Bid, order.id)
    bid.is_awarded = True
    bid.awarded_shares = int(bid.awarded_shares or 0) + shares

    db.commit()
    return filled


def _listing_capacity(listings: list[OpenListing], held: dict[tuple[int, int], int]) -> dict[int, int]:
    """Shares each listing can actually deliver, never promising more than its seller holds."""
    budget = dict(held)
    capacity: dict[int, int] = {}
    for listing in listings:
        key = (listing.seller_id, listing.contestant_id)
        deliverable = min(listing.remaining, budget.get(key, 0))
        capacity[listing.id] = deliverable
        budget[key] = budget.get(key, 0) - deliverable
    return capacity


def _plan_fills(
    pending: list[tuple[BuyOrder, int]],
    listings: list[OpenListing],
    capacity: dict[int, int],
) -> list[tuple[BuyOrder, OpenListing, int]]:
    """
    Assign each buyer's allocation to listings other than their own.

    Units go out one at a time. Each unit comes from the listing whose seller
    is the tightest pending buyer, where tightness is the supply that buyer
    could still draw on minus what it is still owed. Listings from sellers
    who are not buying rank last and otherwise keep the cheapest-first order.
    Drawing from the tightest seller keeps every other buyer's remaining
    allocation coverable, so no buyer is left with only their own listing.
    """
    supply = dict(capacity)
    owed: dict[int, int] = defaultdict(int)
    for order, shares in pending:
        owed[order.user_id] += shares

    fills: dict[tuple[int, int], list] = {}
    for order, shares in pending:
        for _ in range(shares):
            total = sum(supply.values())
            own: dict[int, int] = defaultdict(int)
            for listing in listings:
                own[listing.seller_id] += supply[listing.id]

            best = None
            best_key = None
            for position, listing in enumerate(listings):
                if supply[listing.id] <= 0 or listing.seller_id == order.user_id:
                    continue
                seller = listing.seller_id
                if owed.get(seller, 0) > 0:
                    slack = total - own[seller] - owed[seller]
                else:
                    slack = total + 1
                key = (slack, position)
                if best_key is None or key < best_key:
                    best, best_key = listing, key
            if best is None:
                break

            supply[best.id] -= 1
            owed[order.user_id] -= 1
            entry = fills.setdefault((order.id, best.id), [order, best, 0])
            entry[2] += 1

    return [(order, listing, shares) for order, listing, shares in fills.values()]


def match_listings(db: Session, phase_id: int) -> SettlementOut:
    phase = load_phase_for(db, phase_id, SettlementKind.LISTING_MATCH)
    phase_type = phase.phase_type.value
    season_id = phase.season_id
    if not phase.is_open:
        return SettlementOut(phase_id=phase_id, phase_type=phase_type, already_closed=True)

    listings = [
        OpenListing(
            id=row.id,
            seller_id=row.seller_id,
            contestant_id=row.contestant_id,
            minimum_price=to_decimal(row.minimum_price),
            remaining=int(row.remaining_shares),
        )
        for row in db.execute(
            select(Listing)
            .where(
                Listing.phase_id == phase_id,
                Listing.is_filled.is_(False),
                Listing.remaining_shares > 0,
            )
            .order_by(Listing.minimum_price.asc(), Listing.created_at.asc(), Listing.id)
        ).scalars()
    ]
    orders = [
        BuyOrder(
            id=row.id,
            user_id=row.user_id,
            contestant_id=row.contestant_id,
            shares=int(row.shares),
            price=to_decimal(row.bid_price),
        )
        for row in db.execute(
            select(Bid)
            .where(Bid.phase_id == phase_id, Bid.is_awarded.is_(False))
            .order_by(Bid.created_at, Bid.id)
        ).scalars()
    ]

    result = SettlementOut(phase_id=phase_id, phase_type=phase_type)
    listings_by_contestant: dict[int, list[OpenListing]] = defaultdict(list)
    for listing in listings:
        listings_by_contestant[listing.contestant_id].append(listing)
    orders_by_contestant: dict[int, list[BuyOrder]] = defaultdict(list)
    for order in orders:
        orders_by_contestant[order.contestant_id].append(order)

    contestants = tradeable_contestants(db, season_id)
    matched = sorted(
        contestant_id
        for contestant_id in set(listings_by_contestant) & set(orders_by_contestant)
        if contestant_id in contestants
    )

    user_ids = {listing.seller_id for listing in listings} | {order.user_id for order in orders}
    portfolios = portfolios_by_user(db, season_id, user_ids)
    portfolio_ids = {user_id: portfolio.id for user_id, portfolio in portfolios.items()}
    cash_by_user = {user_id: to_decimal(portfolio.cash_balance) for user_id, portfolio in portfolios.items()}

    held: dict[tuple[int, int], int] = {}
    if portfolio_ids and matched:
        user_by_portfolio = {portfolio_id: user_id for user_id, portfolio_id in portfolio_ids.items()}
        for stock in db.execute(
            select(PortfolioStock).where(
                PortfolioStock.portfolio_id.in_(list(user_by_portfolio)),
                PortfolioStock.contestant_id.in_(matched),
            )
        ).scalars():
            held[(user_by_portfolio[stock.portfolio_id], stock.contestant_id)] = int(stock.shares)

    cash_moved = Decimal("0")
    filled_listings: set[int] = set()

    for contestant_id in matched:
        contestant_listings = [
            listing for listing in listings_by_contestant[contestant_id] if listing.seller_id in portfolio_ids
        ]

        tiers: dict[Decimal, list[BuyOrder]] = defaultdict(list)
        for order in orders_by_contestant[contestant_id]:
            if order.user_id in portfolio_ids:
                tiers[order.price].append(order)

        for price in sorted(tiers, reverse=True):
            eligible = [
                listing
                for listing in contestant_listings
                if listing.minimum_price <= price
                and listing.remaining > 0
                and held.get((listing.seller_id, contestant_id), 0) > 0
            ]
            if not eligible:
                continue

            capacity = _listing_capacity(eligible, held)
            total_supply = sum(capacity.values())
            if total_supply <= 0:
                continue

            tier_orders = {order.id: order for order in tiers[price]}
            requests = []
            for order in tiers[price]:
                supply_from_others = sum(
                    capacity[listing.id] for listing in eligible if listing.seller_id != order.user_id
                )
                feasible = min(
                    order.shares,
                    affordable_shares(cash_by_user[order.user_id], price),
                    supply_from_others,
                )
                if feasible > 0:
                    requests.append(TieRequest(order.id, feasible))
            if not requests:
                continue

            awards = allocate_tied_shares(
                requests,
                total_supply,
                f"{phase_id}:{contestant_id}:{price_key(price)}:listing",
            )

            unfilled = {request.bid_id: awards[request.bid_id] for request in requests}
            transferred = {request.bid_id: 0 for request in requests}
            stopped: set[int] = set()

            # A failed transfer shrinks supply, so re-plan what is left until a round moves nothing.
            while True:
                pending = [
                    (tier_orders[bid_id], shares)
                    for bid_id, shares in unfilled.items()
                    if shares > 0 and bid_id not in stopped
                ]
                plan = _plan_fills(pending, eligible, _listing_capacity(eligible, held))
                if not plan:
                    break

                progressed = False
                failed = False
                for order, listing, planned in plan:
                    if order.id in stopped:
                        continue
                    seller_key = (listing.seller_id, contestant_id)
                    shares = min(planned, listing.remaining, held.get(seller_key, 0))
                    if shares <= 0:
                        continue

                    try:
                        filled = _execute_transfer(
                            db,
                            listing,
                            order,
                            portfolio_ids[order.user_id],
                            portfolio_ids[listing.seller_id],
                            shares,
                            price,
                        )
                    except InsufficientShares as exc:
                        db.rollback()
                        logger.warning("Skipping listing %s in phase %s: %s", listing.id, phase_id, exc)
                        held[seller_key] = 0
                        failed = True
                        continue
                    except InsufficientFunds as exc:
                        db.rollback()
                        logger.warning("Skipping bid %s in phase %s: %s", order.id, phase_id, exc)
                        stopped.add(order.id)
                        failed = True
                        continue

                    amount = price * shares
                    listing.remaining -= shares
                    held[seller_key] -= shares
                    buyer_key = (order.user_id, contestant_id)
                    held[buyer_key] = held.get(buyer_key, 0) + shares
                    cash_by_user[order.user_id] -= amount
                    cash_by_user[listing.seller_id] += amount
                    cash_moved += amount
                    unfilled[order.id] -= shares
                    transferred[order.id] += shares
                    progressed = True
                    if filled:
                        filled_listings.add(listing.id)

                # Each failure zeroes a seller or stops a buyer, so this terminates.
                if not (progressed or failed):
                    break

            for request in requests:
                if transferred[request.bid_id] > 0:
                    result.bids_awarded += 1
                    result.shares_transferred += transferred[request.bid_id]
                elif awards[request.bid_id] > 0:
                    result.bids_skipped += 1

    close_phase(db, phase)
    result.listings_filled = len(filled_listings)
    result.cash_transferred = float(cash_moved)
    result.portfolios_revalued = recalculate_portfolios(db, season_id)
    logger.info(
        "Matched listing phase %s: %d bids filled, %d shares, %d listings filled",
        phase_id,
        result.bids_awarded,
        result.shares_transferred,
        result.listings_filled,
    )
    return result
