"""
Atomicity Conformance Tests

INVARIANT: Sale operations are all-or-nothing.

    ∀ operation O:
        O succeeds ⟹ every move and the sale state change in O are applied
        O fails ⟹ balances, allowances and sale state are unchanged

A purchase pulls payment and delivers tokens in one transaction, so a
buyer can never pay without being credited or be credited without paying.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from datetime import timedelta
from decimal import Decimal

from tokensale import (
    Move, ExecuteResult, SaleError, TransferError, build_transaction,
    compute_purchase, compute_unlock_withdrawal,
)
from tests.sale_setup import (
    SALE_SYMBOL, BUYERS, UNLOCK_START, make_ledger, make_engine, initialize,
)


def snapshot(ledger):
    wallets = sorted(ledger.registered_wallets)
    return (
        {(w, u): ledger.get_balance(w, u) for w in wallets for u in ("SALE", "BUSD")},
        {b: ledger.allowance(b, "token_sale", "BUSD") for b in BUYERS},
        ledger.get_unit_state(SALE_SYMBOL),
        len(ledger.transaction_log),
    )


class TestAtomicityProperties:

    @given(
        st.decimals(min_value=Decimal("1"), max_value=Decimal("500"), places=2),
        st.decimals(min_value=Decimal("0"), max_value=Decimal("0.99"), places=2),
    )
    @settings(max_examples=50, deadline=None)
    def test_underfunded_purchase_changes_nothing(self, amount, approved_fraction):
        """
        PROPERTY: A purchase whose payment cannot be pulled applies nothing.
        """
        engine = initialize(make_engine(make_ledger()))
        ledger = engine.ledger
        # approve strictly less than the cost
        cost = compute_purchase(ledger, SALE_SYMBOL, "alice", amount).moves[0].quantity
        ledger.approve("alice", "token_sale", "BUSD", (cost * approved_fraction).quantize(Decimal("0.01")))
        before = snapshot(ledger)

        with pytest.raises(TransferError):
            engine.buy("alice", amount)

        assert snapshot(ledger) == before

    @given(st.lists(st.tuples(
        st.sampled_from(BUYERS),
        st.decimals(min_value=Decimal("-10"), max_value=Decimal("800"), places=2),
    ), min_size=1, max_size=10))
    @settings(max_examples=50, deadline=None)
    def test_operations_apply_fully_or_not_at_all(self, orders):
        """
        PROPERTY: Each buy either moves payment and tokens and updates the
        buyer's account together, or leaves everything as it was.
        """
        engine = initialize(make_engine(make_ledger()))
        ledger = engine.ledger

        for buyer, amount in orders:
            before = snapshot(ledger)
            cap_before = engine.spend_cap(buyer)
            paid_before = ledger.get_balance(buyer, "BUSD")
            held_before = ledger.get_balance(buyer, "SALE")
            locked_before = engine.locked_balance(buyer)
            try:
                issued = engine.buy(buyer, amount)
            except SaleError:
                assert snapshot(ledger) == before
                continue

            paid = paid_before - ledger.get_balance(buyer, "BUSD")
            received = ledger.get_balance(buyer, "SALE") - held_before
            locked = engine.locked_balance(buyer) - locked_before
            assert paid > 0
            assert received + locked == issued
            assert engine.spend_cap(buyer) == (cap_before or Decimal("500")) - paid


class TestAtomicityExamples:

    def test_stale_purchase_is_not_applied(self, active_engine):
        ledger = active_engine.ledger
        stale = compute_purchase(ledger, SALE_SYMBOL, "alice", Decimal("90"))
        active_engine.buy("bob", Decimal("90"))
        before = snapshot(ledger)

        assert ledger.execute(stale) == ExecuteResult.REJECTED
        assert "stale state" in ledger.last_rejection
        assert snapshot(ledger) == before

    def test_unlock_with_drained_custody_changes_nothing(self, ended_engine):
        ledger = ended_engine.ledger
        ledger.advance_time(UNLOCK_START + timedelta(days=30))
        pending = compute_unlock_withdrawal(ledger, SALE_SYMBOL, "alice")
        # drain custody below the unlock amount outside the sale
        ledger.set_balance("token_sale", "SALE", Decimal("100"))
        before = snapshot(ledger)

        assert ledger.execute(pending) == ExecuteResult.REJECTED
        assert ledger.last_rejection.startswith("balance")
        assert snapshot(ledger) == before

    def test_failing_second_move_rolls_back_first(self, ledger):
        tx = build_transaction(ledger, [
            Move(Decimal("100"), "BUSD", "alice", "bob", "leg_1"),
            Move(Decimal("5000"), "BUSD", "carol", "bob", "leg_2"),
        ])
        assert ledger.execute(tx) == ExecuteResult.REJECTED
        assert ledger.get_balance("alice", "BUSD") == Decimal("1000")
        assert ledger.get_balance("bob", "BUSD") == Decimal("1000")
