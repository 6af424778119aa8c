import argparse
import json
import sys
from pathlib import Path


def main() -> int:
    backend_dir = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(backend_dir))

    parser = argparse.ArgumentParser(description="Run a settlement step directly against DATABASE_URL")
    sub = parser.add_subparsers(dest="command", required=True)

    settle = sub.add_parser("settle", help="Settle an offering phase or match a listing phase")
    settle.add_argument("--phase", type=int, required=True, help="Phase id")

    dividends = sub.add_parser("dividends", help="Pay dividends for an aired week")
    dividends.add_argument("--season", type=int, required=True)
    dividends.add_argument("--week", type=int, required=True)

    recalc = sub.add_parser("recalculate", help="Revalue every portfolio in a season")
    recalc.add_argument("--season", type=int, required=True)

    shares = sub.add_parser("allocate-shares", help="Size contestant share supply from enrollment")
    shares.add_argument("--season", type=int, required=True)

    args = parser.parse_args()

    from survivor_market.auction import settle_auction
    from survivor_market.db import SessionLocal
    from survivor_market.dividends import process_dividends
    from survivor_market.errors import MarketError
    from survivor_market.issuance import allocate_shares
    from survivor_market.listings import match_listings
    from survivor_market.models import Phase
    from survivor_market.settlement import SETTLEMENT_BY_PHASE_TYPE, SettlementKind
    from survivor_market.valuation import recalculate_portfolios

    db = SessionLocal()
    try:
        if args.command == "settle":
            phase = db.get(Phase, args.phase)
            kind = SETTLEMENT_BY_PHASE_TYPE[phase.phase_type] if phase is not None else SettlementKind.AUCTION
            if kind is SettlementKind.LISTING_MATCH:
                out = match_listings(db, args.phase).model_dump()
            else:
                # unknown phases and game day fall through to the auction, which raises
                out = settle_auction(db, args.phase).model_dump()
        elif args.command == "dividends":
            out = process_dividends(db, args.season, args.week).model_dump()
        elif args.command == "recalculate":
            out = {"season_id": args.season, "portfolios_revalued": recalculate_portfolios(db, args.season)}
        else:
            out = {"season_id": args.season, "shares_by_contestant": allocate_shares(db, args.season)}
    except MarketError as exc:
        print(f"[error] {exc}")
        return 2
    finally:
        db.close()

    print(json.dumps(out, indent=2, default=str))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
