from datetime import datetime
from pydantic import BaseModel


class SettlementOut(BaseModel):
    phase_id: int
    phase_type: str
    bids_awarded: int = 0
    bids_skipped: int = 0
    shares_transferred: int = 0
    cash_transferred: float = 0.0
    listings_filled: int = 0
    portfolios_revalued: int = 0
    already_closed: bool = False


class DividendRunOut(BaseModel):
    season_id: int
    week: int
    dividends_paid_total: float = 0.0
    ledger_rows: int = 0
    portfolios_credited: int = 0
    already_processed: bool = False


class RecalculateOut(BaseModel):
    season_id: int
    portfolios_revalued: int


class ShareAllocationOut(BaseModel):
    season_id: int
    shares_by_contestant: dict[int, int]


class EnrollmentOut(BaseModel):
    season_id: int
    portfolios_created: int
    portfolios_total: int


class PhaseOut(BaseModel):
    id: int
    phase_type: str
    week_number: int
    name: str | None = None
    is_open: bool
    start_date: datetime
    end_date: datetime | None = None


class WeekPhasesOut(BaseModel):
    season_id: int
    week_number: int
    created: bool
    phases: list[PhaseOut]


class GameOut(BaseModel):
    id: int
    season_id: int
    episode_number: int
    aired: bool
    dividend_processed: bool
    air_date: datetime | None = None
