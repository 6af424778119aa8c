import os
import sys
from pathlib import Path


def main() -> int:
    # Ensure `import survivor_market.*` works when running from repo root in CI.
    backend_dir = Path(__file__).resolve().parents[1]
    sys.path.insert(0, str(backend_dir))

    database_url = os.environ.get("DATABASE_URL", "").strip()
    if not database_url:
        raise RuntimeError("DATABASE_URL is required for CI smoke test")

    from survivor_market.db import SessionLocal
    from survivor_market.models import Contestant, Portfolio, Season
    from survivor_market.seed import init_db, seed

    safe_url = database_url
    if "://" in safe_url and "@" in safe_url:
        scheme, rest = safe_url.split("://", 1)
        creds, host = rest.split("@", 1)
        if ":" in creds:
            user, _pw = creds.split(":", 1)
            safe_url = f"{scheme}://{user}:***@{host}"
    print("CI smoke DATABASE_URL:", safe_url)

    # 1) Create tables (fresh DB should be empty).
    init_db()

    # 2) Seed is idempotent. Run twice to verify "from scratch" and "restart" behavior.
    db = SessionLocal()
    try:
        seed(db)
        season = seed(db)

        from sqlalchemy import func, select

        season_count = int(db.execute(select(func.count()).select_from(Season)).scalar_one())
        contestant_count = int(
            db.execute(
                select(func.count()).select_from(Contestant).where(Contestant.season_id == season.id)
            ).scalar_one()
        )
        portfolio_count = int(
            db.execute(
                select(func.count()).select_from(Portfolio).where(Portfolio.season_id == season.id)
            ).scalar_one()
        )
        shares_each = db.execute(
            select(Contestant.total_shares).where(Contestant.season_id == season.id).limit(1)
        ).scalar_one()
    finally:
        db.close()

    if season_count != 1:
        raise RuntimeError(f"Expected exactly 1 seeded season, found {season_count}")
    if contestant_count < 1:
        raise RuntimeError("Expected at least 1 seeded contestant")
    if portfolio_count < 1:
        raise RuntimeError("Expected at least 1 enrolled portfolio")

    print(
        "OK create_all + seed",
        {
            "seasons": season_count,
            "contestants": contestant_count,
            "portfolios": portfolio_count,
            "shares_per_contestant": shares_each,
        },
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
