"""
Conservation Law Conformance Tests

INVARIANT: For all tokens u, across every sale operation:
    Σ_{w ∈ wallets} balance(w, u) = constant

and inside custody:
    balance(custody, SALE) = remaining_supply + Σ locked_balance + reserved_share

Purchases, unlocks and withdrawals redistribute tokens between the owner,
custody, buyers and the team wallet but never create or destroy them.
"""

from hypothesis import given, settings, note
from hypothesis import strategies as st
from datetime import timedelta
from decimal import Decimal

from tokensale import SaleError
from tests.sale_setup import (
    BUYERS, END_TIME, UNLOCK_START, SHARE_RELEASE_TIME,
    make_ledger, make_engine, initialize,
)


# =============================================================================
# STRATEGIES FOR PROPERTY-BASED TESTING
# =============================================================================

payment = st.decimals(
    min_value=Decimal("0.01"),
    max_value=Decimal("600"),
    places=2,
    allow_nan=False,
    allow_infinity=False,
)

purchases = st.lists(st.tuples(st.sampled_from(BUYERS), payment), min_size=1, max_size=12)


def custody_matches_obligations(engine) -> bool:
    state = engine.state()
    locked = sum((a.locked_balance for a in state.buyers.values()), Decimal("0"))
    custody = engine.ledger.get_balance("token_sale", "SALE")
    return custody == state.remaining_supply + locked + state.reserved_share.amount


def run_purchases(engine, orders):
    applied = 0
    for buyer, amount in orders:
        try:
            engine.buy(buyer, amount)
            applied += 1
        except SaleError as exc:
            note(f"{buyer} {amount}: {exc.code}")
    return applied


# =============================================================================
# CONSERVATION PROPERTY TESTS
# =============================================================================

class TestConservationProperties:

    @given(purchases)
    @settings(max_examples=50, deadline=None)
    def test_supply_constant_across_purchases(self, orders):
        engine = initialize(make_engine(make_ledger()))
        ledger = engine.ledger
        before = {"SALE": ledger.total_supply("SALE"), "BUSD": ledger.total_supply("BUSD")}

        run_purchases(engine, orders)

        result = ledger.verify_double_entry(expected_supplies=before)
        assert result['valid'], result['discrepancies']
        assert custody_matches_obligations(engine)

    @given(purchases)
    @settings(max_examples=50, deadline=None)
    def test_issued_never_exceeds_sale_supply(self, orders):
        engine = initialize(make_engine(make_ledger(token_supply=Decimal("20000"))))
        run_purchases(engine, orders)

        state = engine.state()
        issued = sum((a.initial_purchased_total for a in state.buyers.values()), Decimal("0"))
        assert state.remaining_supply >= 0
        assert issued + state.remaining_supply == state.total_supply

    @given(purchases)
    @settings(max_examples=30, deadline=None)
    def test_buyers_receive_exactly_what_they_bought(self, orders):
        engine = initialize(make_engine(make_ledger()))
        run_purchases(engine, orders)
        bought = {b: a.initial_purchased_total for b, a in engine.state().buyers.items()}

        engine.end_sale("owner", END_TIME)
        for month in (1, 2, 3):
            when = UNLOCK_START + timedelta(days=30 * month)
            for buyer in bought:
                engine.withdraw_unlocked(buyer, when)

        for buyer in BUYERS:
            assert engine.ledger.get_balance(buyer, "SALE") == bought.get(buyer, Decimal("0"))
        assert engine.state().buyers == {}
        assert custody_matches_obligations(engine)


class TestConservationExamples:

    def test_full_lifecycle_conserves(self, ended_engine):
        ledger = ended_engine.ledger
        before = {"SALE": ledger.total_supply("SALE"), "BUSD": ledger.total_supply("BUSD")}

        ended_engine.withdraw_unlocked("alice", UNLOCK_START + timedelta(days=30))
        ended_engine.withdraw_payment("owner")
        ended_engine.withdraw_unsold("owner")
        ended_engine.release_share(SHARE_RELEASE_TIME)
        assert custody_matches_obligations(ended_engine)
        ended_engine.finalize("owner")

        result = ledger.verify_double_entry(expected_supplies=before)
        assert result['valid'], result['discrepancies']
        assert ledger.get_balance("token_sale", "SALE") == Decimal("0")
        assert ledger.get_balance("team", "SALE") == Decimal("15000000")
        assert ledger.get_balance("alice", "SALE") == Decimal("400")
