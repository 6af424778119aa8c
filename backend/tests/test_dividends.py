# backend/tests/test_dividends.py
"""
Weekly dividend payouts from contestant achievements.
"""
import pytest
from sqlalchemy import select

from survivor_market.dividends import process_dividends
from survivor_market.errors import SeasonNotFound, WeekNotAired
from survivor_market.models import AchievementType, Dividend, Game

from factories import add_achievement, add_contestant, add_game, add_holding, add_player


class TestProcessDividends:
    def test_pays_shares_times_multiplier_once(self, db_session, season):
        contestant = add_contestant(db_session, season, "Kyle")
        _, pf = add_player(db_session, season, "Alice")
        add_holding(db_session, pf, contestant, 20)
        add_achievement(db_session, contestant, 3, AchievementType.TRIBAL_IMMUNITY)
        game = add_game(db_session, season, 3)

        result = process_dividends(db_session, season.id, 3)

        assert result.dividends_paid_total == pytest.approx(2.0)
        assert result.ledger_rows == 1
        assert result.portfolios_credited == 1
        assert float(pf.cash_balance) == pytest.approx(102.0)
        assert game.dividend_processed is True

        ledger = db_session.execute(select(Dividend)).scalars().all()
        assert len(ledger) == 1
        assert ledger[0].contestant_name == "Kyle"
        assert ledger[0].week_number == 3
        assert float(ledger[0].amount) == pytest.approx(2.0)

        again = process_dividends(db_session, season.id, 3)

        assert again.already_processed is True
        assert again.dividends_paid_total == 0
        assert float(pf.cash_balance) == pytest.approx(102.0)
        assert len(db_session.execute(select(Dividend)).scalars().all()) == 1

    def test_multipliers_for_one_contestant_are_summed(self, db_session, season):
        contestant = add_contestant(db_session, season, "Genevieve")
        _, pf = add_player(db_session, season, "Alice")
        add_holding(db_session, pf, contestant, 10)
        add_achievement(db_session, contestant, 2, AchievementType.REWARD)
        add_achievement(db_session, contestant, 2, AchievementType.INDIVIDUAL_IMMUNITY)
        add_game(db_session, season, 2)

        result = process_dividends(db_session, season.id, 2)

        assert result.dividends_paid_total == pytest.approx(2.0)
        assert result.ledger_rows == 1
        assert float(pf.cash_balance) == pytest.approx(102.0)

    def test_each_holding_gets_its_own_ledger_row(self, db_session, season):
        first = add_contestant(db_session, season, "Andy")
        second = add_contestant(db_session, season, "Sue")
        idle = add_contestant(db_session, season, "Sam")
        _, pf = add_player(db_session, season, "Alice")
        _, other_pf = add_player(db_session, season, "Bob")
        add_holding(db_session, pf, first, 7)
        add_holding(db_session, pf, second, 3)
        add_holding(db_session, pf, idle, 50)
        add_holding(db_session, other_pf, idle, 5)
        add_achievement(db_session, first, 1, AchievementType.HIDDEN_IDOL)
        add_achievement(db_session, second, 1, AchievementType.INDIVIDUAL_IMMUNITY)
        add_game(db_session, season, 1)

        result = process_dividends(db_session, season.id, 1)

        # 7 * 0.05 = 0.35, 3 * 0.15 = 0.45
        assert result.ledger_rows == 2
        assert result.portfolios_credited == 1
        assert result.dividends_paid_total == pytest.approx(0.80)
        assert float(pf.cash_balance) == pytest.approx(100.80)
        assert float(other_pf.cash_balance) == pytest.approx(100.0)

    def test_only_that_weeks_achievements_count(self, db_session, season):
        contestant = add_contestant(db_session, season, "Rachel")
        _, pf = add_player(db_session, season, "Alice")
        add_holding(db_session, pf, contestant, 10)
        add_achievement(db_session, contestant, 1, AchievementType.INDIVIDUAL_IMMUNITY)
        add_game(db_session, season, 1)
        week_two = add_game(db_session, season, 2)

        result = process_dividends(db_session, season.id, 2)

        assert result.dividends_paid_total == 0
        assert week_two.dividend_processed is True
        assert float(pf.cash_balance) == pytest.approx(100.0)

    def test_only_the_requested_week_is_marked(self, db_session, season):
        add_contestant(db_session, season, "Rachel")
        week_one = add_game(db_session, season, 1)
        week_two = add_game(db_session, season, 2)

        process_dividends(db_session, season.id, 2)

        assert week_two.dividend_processed is True
        assert week_one.dividend_processed is False

    def test_unaired_week_is_refused(self, db_session, season):
        add_game(db_session, season, 4, aired=False)
        with pytest.raises(WeekNotAired):
            process_dividends(db_session, season.id, 4)

        game = db_session.execute(select(Game).where(Game.episode_number == 4)).scalar_one()
        assert game.dividend_processed is False

    def test_missing_week_is_refused(self, db_session, season):
        with pytest.raises(WeekNotAired):
            process_dividends(db_session, season.id, 7)

    def test_missing_season(self, db_session):
        with pytest.raises(SeasonNotFound):
            process_dividends(db_session, 42, 1)

    def test_shareholders_are_revalued_after_payout(self, db_session, season):
        contestant = add_contestant(db_session, season, "Kyle")
        _, pf = add_player(db_session, season, "Alice", cash=50, net_worth=100)
        add_holding(db_session, pf, contestant, 10)
        add_achievement(db_session, contestant, 1, AchievementType.TRIBAL_IMMUNITY)
        add_game(db_session, season, 1)

        process_dividends(db_session, season.id, 1)

        # cash 51 plus 10 shares at the default price of 5
        assert float(pf.net_worth) == pytest.approx(101.0)
        assert float(pf.movement) == pytest.approx(1.0)
