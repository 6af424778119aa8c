class MarketError(Exception):
    """Base class for settlement and order-intake failures."""


class NotFoundError(MarketError):
    pass


class PhaseNotFound(NotFoundError):
    def __init__(self, phase_id: int):
        super().__init__(f"Phase {phase_id} not found")
        self.phase_id = phase_id


class SeasonNotFound(NotFoundError):
    def __init__(self, season_id: int):
        super().__init__(f"Season {season_id} not found")
        self.season_id = season_id


class NoActiveSeason(NotFoundError):
    def __init__(self):
        super().__init__("No active season")


class PreconditionError(MarketError):
    pass


class InvalidPhaseType(PreconditionError):
    def __init__(self, phase_id: int, phase_type, operation: str):
        super().__init__(f"Phase {phase_id} is {phase_type.value}; cannot {operation}")
        self.phase_id = phase_id
        self.phase_type = phase_type


class WeekNotAired(PreconditionError):
    def __init__(self, season_id: int, week_number: int):
        super().__init__(
            f"Cannot process dividends before week {week_number} of season {season_id} is marked aired"
        )
        self.season_id = season_id
        self.week_number = week_number


class OrderRejected(MarketError):
    """A bid or listing failed intake validation."""


class InsufficientFunds(MarketError):
    def __init__(self, portfolio_id: int, needed, available):
        super().__init__(
            f"Portfolio {portfolio_id} needs {float(needed):.2f}, has {float(available):.2f}"
        )
        self.portfolio_id = portfolio_id


class InsufficientShares(MarketError):
    def __init__(self, portfolio_id: int, contestant_id: int, needed: int, available: int):
        super().__init__(
            f"Portfolio {portfolio_id} holds {available} shares of contestant {contestant_id}, needs {needed}"
        )
        self.portfolio_id = portfolio_id
        self.contestant_id = contestant_id
