# backend/tests/test_valuation.py
"""
Mark-to-market of every portfolio in a season.
"""
import pytest

from survivor_market.valuation import get_current_week, recalculate_portfolios

from factories import add_contestant, add_game, add_holding, add_player, add_price


class TestCurrentWeek:
    def test_defaults_to_week_one(self, db_session, season):
        assert get_current_week(db_session, season.id) == 1

    def test_latest_aired_episode_wins(self, db_session, season):
        add_game(db_session, season, 1)
        add_game(db_session, season, 2)
        add_game(db_session, season, 3, aired=False)
        assert get_current_week(db_session, season.id) == 2


class TestRecalculatePortfolios:
    def test_values_holdings_and_movement(self, db_session, season):
        priced = add_contestant(db_session, season, "Rachel")
        gone = add_contestant(db_session, season, "Gone", is_active=False)
        unpriced = add_contestant(db_session, season, "Sam")
        add_price(db_session, priced, 1, 7.5)
        add_price(db_session, gone, 1, 9)
        _, pf = add_player(db_session, season, "Alice", cash=50, net_worth=100)
        add_holding(db_session, pf, priced, 10)
        add_holding(db_session, pf, gone, 5)
        add_holding(db_session, pf, unpriced, 3)

        count = recalculate_portfolios(db_session, season.id)

        assert count == 1
        assert float(pf.total_stock) == pytest.approx(90.0)
        assert float(pf.net_worth) == pytest.approx(140.0)
        assert float(pf.movement) == pytest.approx(40.0)

    def test_uses_latest_price_up_to_current_week(self, db_session, season):
        contestant = add_contestant(db_session, season, "Kyle")
        add_price(db_session, contestant, 1, 4)
        add_price(db_session, contestant, 2, 6)
        add_price(db_session, contestant, 3, 9)
        add_game(db_session, season, 1)
        add_game(db_session, season, 2)
        _, pf = add_player(db_session, season, "Alice", cash=0, net_worth=50)
        add_holding(db_session, pf, contestant, 10)

        recalculate_portfolios(db_session, season.id)

        assert float(pf.total_stock) == pytest.approx(60.0)
        assert float(pf.movement) == pytest.approx(20.0)

    def test_zero_previous_net_worth_reports_no_movement(self, db_session, season):
        contestant = add_contestant(db_session, season, "Sue")
        _, pf = add_player(db_session, season, "Alice", cash=10, net_worth=0)
        add_holding(db_session, pf, contestant, 2)

        recalculate_portfolios(db_session, season.id)

        assert float(pf.net_worth) == pytest.approx(20.0)
        assert float(pf.movement) == 0

    def test_stock_value_rounds_to_whole_units(self, db_session, season):
        contestant = add_contestant(db_session, season, "Teeny")
        add_price(db_session, contestant, 1, 2.25)
        _, pf = add_player(db_session, season, "Alice", cash=1)
        add_holding(db_session, pf, contestant, 10)

        recalculate_portfolios(db_session, season.id)

        assert float(pf.total_stock) == pytest.approx(23.0)
        assert float(pf.net_worth) == pytest.approx(23.5)

    def test_other_seasons_untouched(self, db_session, season):
        from survivor_market.models import Season

        other = Season(name="Other", starting_salary=100, is_active=False)
        db_session.add(other)
        db_session.commit()
        _, mine = add_player(db_session, season, "Alice", cash=100, net_worth=100)
        _, theirs = add_player(db_session, other, "Bob", cash=30, net_worth=100)

        assert recalculate_portfolios(db_session, season.id) == 1
        assert float(theirs.net_worth) == pytest.approx(100.0)
        assert float(mine.net_worth) == pytest.approx(100.0)
