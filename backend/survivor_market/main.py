import logging
import os
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

from .auth import verify_admin_token
from .auction import settle_auction
from .db import get_db
from .dividends import process_dividends
from .errors import MarketError, NotFoundError
from .issuance import allocate_shares
from .listings import match_listings
from .models import Game, Phase
from .schemas import (
    DividendRunOut,
    EnrollmentOut,
    GameOut,
    PhaseOut,
    RecalculateOut,
    SettlementOut,
    ShareAllocationOut,
    WeekPhasesOut,
)
from .seasons import create_week_phases, enroll_players, get_season_or_raise, mark_week_aired
from .seed import init_db
from .valuation import recalculate_portfolios

logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

INIT_DB_ON_STARTUP = os.environ.get("INIT_DB_ON_STARTUP", "true").lower() in ("1", "true", "yes")


@asynccontextmanager
async def lifespan(_app: FastAPI):
    if INIT_DB_ON_STARTUP:
        init_db()
    yield


app = FastAPI(title="Survivor Stock Market (Settlement)", lifespan=lifespan)
ALLOWED_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(MarketError)
def market_error_handler(_request: Request, exc: MarketError):
    status_code = 404 if isinstance(exc, NotFoundError) else 400
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


@app.get("/healthz")
def healthz():
    return {"ok": True}


def require_admin(x_admin_token: str | None = Header(default=None, alias="X-Admin-Token")) -> None:
    if not verify_admin_token(x_admin_token):
        raise HTTPException(status_code=403, detail="Admin access required.")


def phase_to_out(phase: Phase) -> PhaseOut:
    return PhaseOut(
        id=int(phase.id),
        phase_type=phase.phase_type.value,
        week_number=int(phase.week_number),
        name=phase.name,
        is_open=bool(phase.is_open),
        start_date=phase.start_date,
        end_date=phase.end_date,
    )


def game_to_out(game: Game) -> GameOut:
    return GameOut(
        id=int(game.id),
        season_id=int(game.season_id),
        episode_number=int(game.episode_number),
        aired=bool(game.aired),
        dividend_processed=bool(game.dividend_processed),
        air_date=game.air_date,
    )


@app.post("/admin/phases/{phase_id}/settle", response_model=SettlementOut, dependencies=[Depends(require_admin)])
def admin_settle_auction(phase_id: int, db: Session = Depends(get_db)):
    return settle_auction(db, phase_id)


@app.post("/admin/phases/{phase_id}/match", response_model=SettlementOut, dependencies=[Depends(require_admin)])
def admin_match_listings(phase_id: int, db: Session = Depends(get_db)):
    return match_listings(db, phase_id)


@app.post(
    "/admin/seasons/{season_id}/dividends/{week_number}",
    response_model=DividendRunOut,
    dependencies=[Depends(require_admin)],
)
def admin_process_dividends(season_id: int, week_number: int, db: Session = Depends(get_db)):
    return process_dividends(db, season_id, week_number)


@app.post(
    "/admin/seasons/{season_id}/recalculate",
    response_model=RecalculateOut,
    dependencies=[Depends(require_admin)],
)
def admin_recalculate(season_id: int, db: Session = Depends(get_db)):
    get_season_or_raise(db, season_id)
    return RecalculateOut(season_id=season_id, portfolios_revalued=recalculate_portfolios(db, season_id))


@app.post(
    "/admin/seasons/{season_id}/allocate-shares",
    response_model=ShareAllocationOut,
    dependencies=[Depends(require_admin)],
)
def admin_allocate_shares(season_id: int, db: Session = Depends(get_db)):
    return ShareAllocationOut(season_id=season_id, shares_by_contestant=allocate_shares(db, season_id))


@app.post(
    "/admin/seasons/{season_id}/enroll",
    response_model=EnrollmentOut,
    dependencies=[Depends(require_admin)],
)
def admin_enroll(season_id: int, db: Session = Depends(get_db)):
    created, total = enroll_players(db, season_id)
    return EnrollmentOut(season_id=season_id, portfolios_created=created, portfolios_total=total)


@app.post(
    "/admin/seasons/{season_id}/weeks/next",
    response_model=WeekPhasesOut,
    dependencies=[Depends(require_admin)],
)
def admin_create_week(season_id: int, db: Session = Depends(get_db)):
    week_number, phases, created = create_week_phases(db, season_id)
    return WeekPhasesOut(
        season_id=season_id,
        week_number=week_number,
        created=created,
        phases=[phase_to_out(phase) for phase in phases],
    )


@app.post(
    "/admin/seasons/{season_id}/weeks/{week_number}/aired",
    response_model=GameOut,
    dependencies=[Depends(require_admin)],
)
def admin_mark_aired(season_id: int, week_number: int, db: Session = Depends(get_db)):
    return game_to_out(mark_week_aired(db, season_id, week_number))
