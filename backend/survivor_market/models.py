from __future__ import annotations
import enum
from datetime import datetime, timezone
from sqlalchemy import String, Integer, Numeric, DateTime, ForeignKey, UniqueConstraint, Boolean, Enum
from sqlalchemy.orm import Mapped, mapped_column, relationship
from .db import Base

NUM = Numeric(18, 6)


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class PhaseType(enum.Enum):
    INITIAL_OFFERING = "INITIAL_OFFERING"
    SECOND_OFFERING = "SECOND_OFFERING"
    FIRST_LISTING = "FIRST_LISTING"
    SECOND_LISTING = "SECOND_LISTING"
    GAME_DAY = "GAME_DAY"

    @property
    def is_offering(self) -> bool:
        return self in (PhaseType.INITIAL_OFFERING, PhaseType.SECOND_OFFERING)

    @property
    def is_listing(self) -> bool:
        return self in (PhaseType.FIRST_LISTING, PhaseType.SECOND_LISTING)

    @property
    def accepts_bids(self) -> bool:
        return self.is_offering or self.is_listing

    @property
    def accepts_listings(self) -> bool:
        return self.is_listing

    @property
    def display_name(self) -> str:
        return PHASE_NAMES[self]


PHASE_NAMES: dict[PhaseType, str] = {
    PhaseType.INITIAL_OFFERING: "Initial Offering",
    PhaseType.SECOND_OFFERING: "Second Offering",
    PhaseType.FIRST_LISTING: "First Listing",
    PhaseType.SECOND_LISTING: "Second Listing",
    PhaseType.GAME_DAY: "Game Day",
}


class AchievementType(enum.Enum):
    REWARD = "REWARD"
    HIDDEN_IDOL = "HIDDEN_IDOL"
    TRIBAL_IMMUNITY = "TRIBAL_IMMUNITY"
    INDIVIDUAL_IMMUNITY = "INDIVIDUAL_IMMUNITY"

    @property
    def multiplier(self) -> float:
        return ACHIEVEMENT_MULTIPLIERS[self]


# dollars paid per share held
ACHIEVEMENT_MULTIPLIERS: dict[AchievementType, float] = {
    AchievementType.REWARD: 0.05,
    AchievementType.HIDDEN_IDOL: 0.05,
    AchievementType.TRIBAL_IMMUNITY: 0.10,
    AchievementType.INDIVIDUAL_IMMUNITY: 0.15,
}


class User(Base):
    __tablename__ = "users"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    name: Mapped[str] = mapped_column(String(128))
    is_admin: Mapped[bool] = mapped_column(Boolean, default=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)

    portfolios: Mapped[list["Portfolio"]] = relationship(back_populates="user")


class Season(Base):
    __tablename__ = "seasons"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(128))
    starting_salary: Mapped[float] = mapped_column(NUM, default=100)
    is_active: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    start_date: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    end_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    contestants: Mapped[list["Contestant"]] = relationship(back_populates="season")
    phases: Mapped[list["Phase"]] = relationship(back_populates="season")
    portfolios: Mapped[list["Portfolio"]] = relationship(back_populates="season")


class Contestant(Base):
    __tablename__ = "contestants"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    season_id: Mapped[int] = mapped_column(ForeignKey("seasons.id"), index=True)
    name: Mapped[str] = mapped_column(String(128), index=True)
    tribe: Mapped[str | None] = mapped_column(String(64), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    is_winner: Mapped[bool] = mapped_column(Boolean, default=False)
    eliminated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    total_shares: Mapped[int] = mapped_column(Integer, default=0)

    season: Mapped["Season"] = relationship(back_populates="contestants")


class Phase(Base):
    __tablename__ = "phases"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    season_id: Mapped[int] = mapped_column(ForeignKey("seasons.id"), index=True)
    phase_type: Mapped[PhaseType] = mapped_column(Enum(PhaseType), index=True)
    week_number: Mapped[int] = mapped_column(Integer, index=True)
    name: Mapped[str | None] = mapped_column(String(128), nullable=True)
    is_open: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    start_date: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
    end_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    season: Mapped["Season"] = relationship(back_populates="phases")


class Portfolio(Base):
    __tablename__ = "portfolios"
    __table_args__ = (UniqueConstraint("user_id", "season_id", name="uq_portfolio_user_season"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    season_id: Mapped[int] = mapped_column(ForeignKey("seasons.id"), index=True)

    cash_balance: Mapped[float] = mapped_column(NUM, default=0)
    total_stock: Mapped[float] = mapped_column(NUM, default=0)
    net_worth: Mapped[float] = mapped_column(NUM, default=0)
    movement: Mapped[float] = mapped_column(NUM, default=0)  # percent vs prior net worth

    user: Mapped["User"] = relationship(back_populates="portfolios")
    season: Mapped["Season"] = relationship(back_populates="portfolios")
    stocks: Mapped[list["PortfolioStock"]] = relationship(back_populates="portfolio")


class PortfolioStock(Base):
    __tablename__ = "portfolio_stocks"
    __table_args__ = (UniqueConstraint("portfolio_id", "contestant_id", name="uq_portfolio_contestant"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolios.id"), index=True)
    contestant_id: Mapped[int] = mapped_column(ForeignKey("contestants.id"), index=True)

    shares: Mapped[int] = mapped_column(Integer, default=0)
    average_price: Mapped[float] = mapped_column(NUM, default=0)

    portfolio: Mapped["Portfolio"] = relationship(back_populates="stocks")
    contestant: Mapped["Contestant"] = relationship()


class Bid(Base):
    __tablename__ = "bids"
    __table_args__ = (UniqueConstraint("user_id", "phase_id", "contestant_id", name="uq_bid_user_phase_contestant"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    phase_id: Mapped[int] = mapped_column(ForeignKey("phases.id"), index=True)
    contestant_id: Mapped[int] = mapped_column(ForeignKey("contestants.id"), index=True)

    shares: Mapped[int] = mapped_column(Integer)
    bid_price: Mapped[float] = mapped_column(NUM)
    is_awarded: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    awarded_shares: Mapped[int] = mapped_column(Integer, default=0)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Listing(Base):
    __tablename__ = "listings"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    seller_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    phase_id: Mapped[int] = mapped_column(ForeignKey("phases.id"), index=True)
    contestant_id: Mapped[int] = mapped_column(ForeignKey("contestants.id"), index=True)

    shares: Mapped[int] = mapped_column(Integer)
    remaining_shares: Mapped[int] = mapped_column(Integer)
    minimum_price: Mapped[float] = mapped_column(NUM)
    is_filled: Mapped[bool] = mapped_column(Boolean, default=False, index=True)
    buyer_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    filled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Achievement(Base):
    __tablename__ = "achievements"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    contestant_id: Mapped[int] = mapped_column(ForeignKey("contestants.id"), index=True)
    week_number: Mapped[int] = mapped_column(Integer, index=True)
    achievement_type: Mapped[AchievementType] = mapped_column(Enum(AchievementType))
    multiplier: Mapped[float] = mapped_column(NUM)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Dividend(Base):
    __tablename__ = "dividends"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    portfolio_id: Mapped[int] = mapped_column(ForeignKey("portfolios.id"), index=True)
    week_number: Mapped[int] = mapped_column(Integer, index=True)
    contestant_id: Mapped[int] = mapped_column(ForeignKey("contestants.id"), index=True)
    contestant_name: Mapped[str] = mapped_column(String(128))
    amount: Mapped[float] = mapped_column(NUM, default=0)
    paid_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Game(Base):
    __tablename__ = "games"
    __table_args__ = (UniqueConstraint("season_id", "episode_number", name="uq_game_season_episode"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    season_id: Mapped[int] = mapped_column(ForeignKey("seasons.id"), index=True)
    episode_number: Mapped[int] = mapped_column(Integer, index=True)
    title: Mapped[str | None] = mapped_column(String(128), nullable=True)
    air_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    aired: Mapped[bool] = mapped_column(Boolean, default=False)
    dividend_processed: Mapped[bool] = mapped_column(Boolean, default=False)


class StockPrice(Base):
    __tablename__ = "stock_prices"
    __table_args__ = (UniqueConstraint("contestant_id", "week_number", name="uq_price_contestant_week"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    contestant_id: Mapped[int] = mapped_column(ForeignKey("contestants.id"), index=True)
    week_number: Mapped[int] = mapped_column(Integer, index=True)
    price: Mapped[float] = mapped_column(NUM)
    calculated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)


class Rating(Base):
    __tablename__ = "ratings"
    __table_args__ = (UniqueConstraint("user_id", "contestant_id", "week_number", name="uq_rating_user_contestant_week"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), index=True)
    contestant_id: Mapped[int] = mapped_column(ForeignKey("contestants.id"), index=True)
    week_number: Mapped[int] = mapped_column(Integer, index=True)
    rating: Mapped[int] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow)
