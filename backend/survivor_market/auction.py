"""Silent-auction clearing for offering phases.

Bids are cleared per contestant against whatever supply no portfolio holds
yet, highest price tier first. Each winner pays their own bid price
(discriminatory pricing). Bids tied at a price split scarce supply through
the seeded allocator.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from .allocation import TieRequest, allocate_tied_shares, price_key
from .errors import InsufficientFunds
from .models import Bid
from .pricing import affordable_shares, to_decimal
from .schemas import SettlementOut
from .settlement import (
    SettlementKind,
    close_phase,
    credit_shares,
    load_phase_for,
    lock_portfolio,
    portfolios_by_user,
    shares_held_in_season,
    tradeable_contestants,
)
from .valuation import recalculate_portfolios

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OpenBid:
    id: int
    user_id: int
    contestant_id: int
    shares: int
    price: Decimal


def _award_bid(db: Session, bid: OpenBid, portfolio_id: int, shares: int) -> Decimal:
    cost = bid.price * shares
    portfolio = lock_portfolio(db, portfolio_id)
    cash = to_decimal(portfolio.cash_balance)
    if cash < cost:
        raise InsufficientFunds(portfolio_id, cost, cash)

    portfolio.cash_balance = float(cash - cost)
    credit_shares(db, portfolio_id, bid.contestant_id, shares, bid.price)

    row = db.get(Bid, bid.id)
    row.is_awarded = True
    row.awarded_shares = shares
    db.commit()
    return cost


def settle_auction(db: Session, phase_id: int) -> SettlementOut:
    phase = load_phase_for(db, phase_id, SettlementKind.AUCTION)
    phase_type = phase.phase_type.value
    season_id = phase.season_id
    if not phase.is_open:
        return SettlementOut(phase_id=phase_id, phase_type=phase_type, already_closed=True)

    bids = [
        OpenBid(
            id=row.id,
            user_id=row.user_id,
            contestant_id=row.contestant_id,
            shares=int(row.shares),
            price=to_decimal(row.bid_price),
        )
        for row in db.execute(
            select(Bid)
            .where(Bid.phase_id == phase_id, Bid.is_awarded.is_(False))
            .order_by(Bid.bid_price.desc(), Bid.created_at, Bid.id)
        ).scalars()
    ]

    portfolios = portfolios_by_user(db, season_id, {bid.user_id for bid in bids})
    portfolio_ids = {user_id: portfolio.id for user_id, portfolio in portfolios.items()}
    cash_by_user = {user_id: to_decimal(portfolio.cash_balance) for user_id, portfolio in portfolios.items()}
    contestants = tradeable_contestants(db, season_id)

    bids_by_contestant: dict[int, list[OpenBid]] = defaultdict(list)
    for bid in bids:
        bids_by_contestant[bid.contestant_id].append(bid)

    result = SettlementOut(phase_id=phase_id, phase_type=phase_type)
    cash_moved = Decimal("0")

    for contestant_id in sorted(bids_by_contestant):
        contestant = contestants.get(contestant_id)
        if contestant is None:
            continue

        available = max(int(contestant.total_shares) - shares_held_in_season(db, season_id, contestant_id), 0)
        if available <= 0:
            continue

        tiers: dict[Decimal, list[OpenBid]] = defaultdict(list)
        for bid in bids_by_contestant[contestant_id]:
            tiers[bid.price].append(bid)

        for price in sorted(tiers, reverse=True):
            if available <= 0:
                break

            tier_bids = {bid.id: bid for bid in tiers[price]}
            requests = []
            for bid in tiers[price]:
                if bid.user_id not in portfolio_ids:
                    continue
                feasible = min(bid.shares, affordable_shares(cash_by_user[bid.user_id], price))
                if feasible > 0:
                    requests.append(TieRequest(bid.id, feasible))
            if not requests:
                continue

            awards = allocate_tied_shares(requests, available, f"{phase_id}:{contestant_id}:{price_key(price)}")

            for request in requests:
                bid = tier_bids[request.bid_id]
                shares = min(awards[bid.id], available)
                if shares <= 0:
                    continue
                try:
                    cost = _award_bid(db, bid, portfolio_ids[bid.user_id], shares)
                except InsufficientFunds as exc:
                    db.rollback()
                    logger.warning("Skipping bid %s in phase %s: %s", bid.id, phase_id, exc)
                    result.bids_skipped += 1
                    continue

                available -= shares
                cash_by_user[bid.user_id] -= cost
                cash_moved += cost
                result.bids_awarded += 1
                result.shares_transferred += shares

    close_phase(db, phase)
    result.cash_transferred = float(cash_moved)
    result.portfolios_revalued = recalculate_portfolios(db, season_id)
    logger.info(
        "Settled auction phase %s: %d bids awarded, %d shares, %d skipped",
        phase_id,
        result.bids_awarded,
        result.shares_transferred,
        result.bids_skipped,
    )
    return result
