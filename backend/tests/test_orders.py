# backend/tests/test_orders.py
"""
Bid and listing intake rules.
"""
import pytest

from survivor_market.errors import OrderRejected
from survivor_market.models import PhaseType
from survivor_market.orders import create_listing, place_bid

from factories import add_contestant, add_holding, add_listing, add_phase, add_player


class TestPlaceBid:
    def test_accepts_valid_offering_bid(self, db_session, season):
        contestant = add_contestant(db_session, season, "Rachel", total_shares=10)
        phase = add_phase(db_session, season, PhaseType.INITIAL_OFFERING)
        alice, _ = add_player(db_session, season, "Alice")

        bid = place_bid(db_session, alice.id, phase.id, contestant.id, 3, "2.25")

        assert bid.id is not None
        assert bid.shares == 3
        assert float(bid.bid_price) == pytest.approx(2.25)
        assert bid.is_awarded is False

    @pytest.mark.parametrize("price", ["0.10", "2.30", "0.75"])
    def test_offering_price_rules(self, db_session, season, price):
        contestant = add_contestant(db_session, season, "Rachel")
        phase = add_phase(db_session, season, PhaseType.INITIAL_OFFERING)
        alice, _ = add_player(db_session, season, "Alice")

        with pytest.raises(OrderRejected):
            place_bid(db_session, alice.id, phase.id, contestant.id, 1, price)

    def test_closed_phase(self, db_session, season):
        contestant = add_contestant(db_session, season, "Rachel")
        phase = add_phase(db_session, season, PhaseType.INITIAL_OFFERING, is_open=False)
        alice, _ = add_player(db_session, season, "Alice")

        with pytest.raises(OrderRejected, match="not open"):
            place_bid(db_session, alice.id, phase.id, contestant.id, 1, 2)

    def test_game_day(self, db_session, season):
        contestant = add_contestant(db_session, season, "Rachel")
        phase = add_phase(db_session, season, PhaseType.GAME_DAY)
        alice, _ = add_player(db_session, season, "Alice")

        with pytest.raises(OrderRejected, match="Game Day"):
            place_bid(db_session, alice.id, phase.id, contestant.id, 1, 2)

    def test_one_bid_per_contestant_per_phase(self, db_session, season):
        contestant = add_contestant(db_session, season, "Rachel")
        phase = add_phase(db_session, season, PhaseType.INITIAL_OFFERING)
        alice, _ = add_player(db_session, season, "Alice")
        place_bid(db_session, alice.id, phase.id, contestant.id, 1, 2)

        with pytest.raises(OrderRejected, match="already exists"):
            place_bid(db_session, alice.id, phase.id, contestant.id, 2, 3)

    def test_eliminated_contestant(self, db_session, season):
        contestant = add_contestant(db_session, season, "Gone", is_active=False)
        phase = add_phase(db_session, season, PhaseType.INITIAL_OFFERING)
        alice, _ = add_player(db_session, season, "Alice")

        with pytest.raises(OrderRejected, match="Invalid contestant"):
            place_bid(db_session, alice.id, phase.id, contestant.id, 1, 2)

    def test_listing_phase_bid_needs_someone_elses_listing(self, db_session, season):
        contestant = add_contestant(db_session, season, "Rachel")
        phase = add_phase(db_session, season, PhaseType.FIRST_LISTING)
        alice, alice_pf = add_player(db_session, season, "Alice")
        add_holding(db_session, alice_pf, contestant, 5)
        add_listing(db_session, alice, phase, contestant, 5, 1)

        with pytest.raises(OrderRejected, match="No active listings"):
            place_bid(db_session, alice.id, phase.id, contestant.id, 1, 2)

    def test_listing_phase_bid_must_meet_lowest_minimum(self, db_session, season):
        contestant = add_contestant(db_session, season, "Rachel")
        phase = add_phase(db_session, season, PhaseType.FIRST_LISTING)
        seller, seller_pf = add_player(db_session, season, "Seller")
        add_holding(db_session, seller_pf, contestant, 5)
        add_listing(db_session, seller, phase, contestant, 5, 3)
        buyer, _ = add_player(db_session, season, "Buyer")

        with pytest.raises(OrderRejected, match="at least 3.00"):
            place_bid(db_session, buyer.id, phase.id, contestant.id, 1, "2.75")

        # listing phases allow prices under the offering floor
        bid = place_bid(db_session, buyer.id, phase.id, contestant.id, 1, 3)
        assert bid.id is not None


class TestCreateListing:
    def test_creates_listing_with_full_remaining(self, db_session, season):
        contestant = add_contestant(db_session, season, "Rachel")
        phase = add_phase(db_session, season, PhaseType.SECOND_LISTING)
        seller, seller_pf = add_player(db_session, season, "Seller")
        add_holding(db_session, seller_pf, contestant, 5)

        listing = create_listing(db_session, seller.id, phase.id, contestant.id, 4, "1.50")

        assert listing.remaining_shares == 4
        assert listing.is_filled is False
        assert float(listing.minimum_price) == pytest.approx(1.5)

    def test_only_in_listing_phases(self, db_session, season):
        contestant = add_contestant(db_session, season, "Rachel")
        phase = add_phase(db_session, season, PhaseType.INITIAL_OFFERING)
        seller, seller_pf = add_player(db_session, season, "Seller")
        add_holding(db_session, seller_pf, contestant, 5)

        with pytest.raises(OrderRejected, match="listing phases"):
            create_listing(db_session, seller.id, phase.id, contestant.id, 1, 1)

    def test_cannot_list_more_than_owned(self, db_session, season):
        contestant = add_contestant(db_session, season, "Rachel")
        phase = add_phase(db_session, season, PhaseType.FIRST_LISTING)
        seller, seller_pf = add_player(db_session, season, "Seller")
        add_holding(db_session, seller_pf, contestant, 2)

        with pytest.raises(OrderRejected, match="Not enough shares"):
            create_listing(db_session, seller.id, phase.id, contestant.id, 3, 1)

    def test_one_open_listing_per_contestant(self, db_session, season):
        contestant = add_contestant(db_session, season, "Rachel")
        phase = add_phase(db_session, season, PhaseType.FIRST_LISTING)
        seller, seller_pf = add_player(db_session, season, "Seller")
        add_holding(db_session, seller_pf, contestant, 5)
        create_listing(db_session, seller.id, phase.id, contestant.id, 2, 1)

        with pytest.raises(OrderRejected, match="already have an active listing"):
            create_listing(db_session, seller.id, phase.id, contestant.id, 2, 1)
