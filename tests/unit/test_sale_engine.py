"""
Tests for sale_engine.py - SaleEngine execution, time handling and queries
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from tokensale import (
    SaleEngine, SalePhase, LedgerError, ScheduleError, UnitNotRegistered, compute_set_paused,
)
from tests.sale_setup import (
    SALE_SYMBOL, DEPLOY_TIME, END_TIME, UNLOCK_START, make_ledger, make_engine, initialize,
)


class TestConstruction:

    def test_requires_registered_sale(self, ledger):
        with pytest.raises(UnitNotRegistered):
            SaleEngine(ledger, "NOPE")

    def test_requires_sale_unit(self, ledger):
        with pytest.raises(ValueError):
            SaleEngine(ledger, "BUSD")

    def test_attach_to_existing_sale(self, active_engine):
        other = SaleEngine(active_engine.ledger, SALE_SYMBOL)
        assert other.phase() == SalePhase.ACTIVE
        assert other.terms().custody_wallet == "token_sale"


class TestTimeHandling:

    def test_timestamp_advances_ledger(self, active_engine):
        active_engine.end_sale("owner", END_TIME)
        assert active_engine.ledger.current_time == END_TIME

    def test_default_timestamp_is_ledger_time(self, active_engine):
        active_engine.ledger.advance_time(END_TIME)
        active_engine.end_sale("owner")
        assert active_engine.state().unlock_start_date == UNLOCK_START

    def test_earlier_timestamp_does_not_rewind(self, ended_engine):
        ended_engine.ledger.advance_time(UNLOCK_START + timedelta(days=40))
        with pytest.raises(ScheduleError):
            ended_engine.withdraw_unlocked("alice", UNLOCK_START + timedelta(days=10))
        assert ended_engine.ledger.current_time == UNLOCK_START + timedelta(days=40)


class TestExecution:

    def test_replayed_intent_raises(self, active_engine):
        pending = compute_set_paused(active_engine.ledger, SALE_SYMBOL, "owner", True)
        active_engine._execute(pending)
        with pytest.raises(LedgerError, match="already applied"):
            active_engine._execute(pending)

    def test_stale_intent_is_rejected(self, active_engine):
        stale = compute_set_paused(active_engine.ledger, SALE_SYMBOL, "owner", True)
        active_engine.buy("alice", Decimal("90"))
        with pytest.raises(LedgerError, match="stale state"):
            active_engine._execute(stale)
        assert not active_engine.state().paused

    def test_verbose_prints_events(self, capsys):
        engine = initialize(make_engine(make_ledger(verbose=True)))
        capsys.readouterr()
        engine.buy("alice", Decimal("90"))
        out = capsys.readouterr().out
        assert "APPLIED" in out
        assert "event: PurchaseCompleted(alice, 90" in out

    def test_revision_counts_operations(self, active_engine):
        start = active_engine.state().revision
        active_engine.buy("alice", Decimal("90"))
        active_engine.pause("owner")
        assert active_engine.state().revision == start + 2


class TestQueries:

    def test_query_surface(self, active_engine):
        active_engine.buy("alice", Decimal("90"))
        assert active_engine.spend_cap("alice") == Decimal("410")
        assert active_engine.locked_balance("alice") == Decimal("900")
        assert active_engine.last_unlock_month("alice") == 0
        assert active_engine.remaining_supply() == Decimal("14999000")
        assert active_engine.current_price() == Decimal("0.09")
        assert active_engine.is_sale_active()
        assert not active_engine.is_unlock_active()

    def test_deploy_uses_ledger_time(self, engine):
        assert engine.state().created_at == DEPLOY_TIME
