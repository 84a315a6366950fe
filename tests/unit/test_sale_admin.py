"""
Tests for sale_admin.py - sale controller transitions and owner operations

Tests:
- compute_initialize: owner check, one-shot, funding through allowance, start date
- compute_end_sale: unlock start date, irreversibility
- compute_set_paused: toggling, repeated toggles stay distinct intents
- compute_withdraw_payment / compute_withdraw_unsold / compute_finalize
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from tokensale import (
    compute_initialize, compute_end_sale, compute_set_paused,
    compute_withdraw_payment, compute_withdraw_unsold, compute_finalize,
    SalePhase, StateError, AuthorizationError, ValidationError, ScheduleError, TransferError,
    EVENT_FUNDING_TRANSFERRED,
)
from tests.sale_setup import (
    SALE_SYMBOL, SALE_START, END_TIME, UNLOCK_START, TOKEN_SUPPLY, SHARE_RELEASE_TIME,
)


def code_of(exc_type, fn, *args):
    with pytest.raises(exc_type) as exc:
        fn(*args)
    return exc.value.code


class TestInitialize:

    def test_owner_only(self, engine):
        assert code_of(AuthorizationError, compute_initialize,
                       engine.ledger, SALE_SYMBOL, "alice") == "NOT_OWNER"

    def test_funds_custody_and_opens_sale(self, engine):
        ledger = engine.ledger
        ledger.approve("owner", "token_sale", "SALE", Decimal("30000000"))
        engine.initialize("owner")

        state = engine.state()
        assert state.started
        assert state.total_supply == Decimal("15000000")
        assert state.remaining_supply == Decimal("15000000")
        assert state.sale_start_date == SALE_START
        assert state.reserved_share.amount == Decimal("15000000")
        assert ledger.get_balance("token_sale", "SALE") == Decimal("30000000")
        assert ledger.get_balance("owner", "SALE") == TOKEN_SUPPLY - Decimal("30000000")
        assert ledger.allowance("owner", "token_sale", "SALE") == Decimal("0")
        assert engine.phase() == SalePhase.ACTIVE

        [event] = ledger.events(EVENT_FUNDING_TRANSFERRED)
        assert (event.wallet, event.amount) == ("owner", Decimal("30000000"))

    def test_start_rolls_to_next_day(self, engine):
        engine.ledger.approve("owner", "token_sale", "SALE", Decimal("30000000"))
        engine.initialize("owner", datetime(2025, 1, 1, 10, 30))
        assert engine.state().sale_start_date == datetime(2025, 1, 2, 10, 0)

    def test_without_allowance(self, engine):
        with pytest.raises(TransferError) as exc:
            engine.initialize("owner")
        assert exc.value.code == "INSUFFICIENT_ALLOWANCE"
        assert engine.phase() == SalePhase.UNINITIALIZED

    def test_backdated_start_rejected(self, engine):
        engine.ledger.advance_time(SALE_START)
        assert code_of(ScheduleError, compute_initialize, engine.ledger, SALE_SYMBOL,
                       "owner", SALE_START - timedelta(hours=2)) == "TIMESTAMP_IN_PAST"
        assert not engine.state().started

    def test_one_shot(self, active_engine):
        assert code_of(StateError, compute_initialize,
                       active_engine.ledger, SALE_SYMBOL, "owner") == "ALREADY_STARTED"


class TestEndSale:

    def test_unlock_start_date(self, active_engine):
        active_engine.end_sale("owner", END_TIME)
        state = active_engine.state()
        assert state.ended
        assert state.unlock_start_date == UNLOCK_START

    def test_end_before_start_hour(self, active_engine):
        active_engine.end_sale("owner", SALE_START - timedelta(hours=1))
        assert active_engine.state().unlock_start_date == SALE_START + timedelta(days=1)

    def test_backdated_end_rejected(self, active_engine):
        active_engine.ledger.advance_time(END_TIME)
        assert code_of(ScheduleError, active_engine.end_sale,
                       "owner", SALE_START + timedelta(days=1)) == "TIMESTAMP_IN_PAST"
        state = active_engine.state()
        assert not state.ended
        assert state.unlock_start_date is None

    def test_requires_started(self, engine):
        assert code_of(StateError, compute_end_sale, engine.ledger, SALE_SYMBOL, "owner") == "SALE_NOT_STARTED"

    def test_irreversible(self, ended_engine):
        assert code_of(StateError, compute_end_sale,
                       ended_engine.ledger, SALE_SYMBOL, "owner") == "SALE_ENDED"

    def test_owner_only(self, active_engine):
        assert code_of(AuthorizationError, compute_end_sale,
                       active_engine.ledger, SALE_SYMBOL, "bob") == "NOT_OWNER"


class TestPause:

    def test_pause_unpause_pause(self, active_engine):
        active_engine.pause("owner")
        assert active_engine.state().paused
        active_engine.unpause("owner")
        assert not active_engine.state().paused
        active_engine.pause("owner")
        assert active_engine.state().paused

    def test_double_pause(self, active_engine):
        active_engine.pause("owner")
        assert code_of(StateError, compute_set_paused,
                       active_engine.ledger, SALE_SYMBOL, "owner", True) == "ALREADY_PAUSED"

    def test_unpause_when_running(self, active_engine):
        assert code_of(StateError, compute_set_paused,
                       active_engine.ledger, SALE_SYMBOL, "owner", False) == "NOT_PAUSED"

    def test_owner_only(self, active_engine):
        assert code_of(AuthorizationError, compute_set_paused,
                       active_engine.ledger, SALE_SYMBOL, "alice", True) == "NOT_OWNER"

    def test_release_share_not_blocked(self, active_engine):
        active_engine.pause("owner")
        assert active_engine.release_share(SHARE_RELEASE_TIME)


class TestResidualWithdrawals:

    def test_withdraw_payment(self, ended_engine):
        ledger = ended_engine.ledger
        ended_engine.withdraw_payment("owner")
        assert ledger.get_balance("owner", "BUSD") == Decimal("90")
        assert ledger.get_balance("token_sale", "BUSD") == Decimal("0")
        assert code_of(ValidationError, compute_withdraw_payment,
                       ledger, SALE_SYMBOL, "owner") == "NOTHING_TO_WITHDRAW"

    def test_withdraw_payment_during_sale(self, active_engine):
        active_engine.buy("alice", Decimal("90"))
        active_engine.withdraw_payment("owner")
        active_engine.buy("bob", Decimal("90"))
        active_engine.withdraw_payment("owner")
        assert active_engine.ledger.get_balance("owner", "BUSD") == Decimal("180")

    def test_withdraw_unsold_requires_end(self, active_engine):
        assert code_of(StateError, compute_withdraw_unsold,
                       active_engine.ledger, SALE_SYMBOL, "owner") == "SALE_NOT_ENDED"

    def test_withdraw_unsold(self, ended_engine):
        ledger = ended_engine.ledger
        owner_before = ledger.get_balance("owner", "SALE")
        ended_engine.withdraw_unsold("owner")
        assert ledger.get_balance("owner", "SALE") == owner_before + Decimal("14999000")
        assert ended_engine.remaining_supply() == Decimal("0")
        # locked 900 and reserved 15M stay in custody
        assert ledger.get_balance("token_sale", "SALE") == Decimal("15000900")
        assert code_of(ValidationError, compute_withdraw_unsold,
                       ledger, SALE_SYMBOL, "owner") == "NOTHING_TO_WITHDRAW"


class TestFinalize:

    def test_sweeps_custody(self, ended_engine):
        ledger = ended_engine.ledger
        ended_engine.finalize("owner")
        assert ledger.get_balance("token_sale", "SALE") == Decimal("0")
        assert ledger.get_balance("token_sale", "BUSD") == Decimal("0")
        assert ledger.get_balance("owner", "BUSD") == Decimal("90")
        assert ledger.get_balance("owner", "SALE") == TOKEN_SUPPLY - Decimal("100")
        assert ended_engine.phase() == SalePhase.FINALIZED
        assert not ended_engine.is_unlock_active(UNLOCK_START + timedelta(days=45))

    def test_everything_blocked_after(self, ended_engine):
        ledger = ended_engine.ledger
        ended_engine.finalize("owner")
        for fn, args in [
            (compute_end_sale, ("owner",)),
            (compute_set_paused, ("owner", True)),
            (compute_withdraw_payment, ("owner",)),
            (compute_withdraw_unsold, ("owner",)),
            (compute_finalize, ("owner",)),
        ]:
            assert code_of(StateError, fn, ledger, SALE_SYMBOL, *args) == "FINALIZED"
        with pytest.raises(StateError):
            ended_engine.withdraw_unlocked("alice", UNLOCK_START + timedelta(days=31))
        with pytest.raises(StateError):
            ended_engine.release_share(SHARE_RELEASE_TIME)

    def test_owner_only(self, active_engine):
        assert code_of(AuthorizationError, compute_finalize,
                       active_engine.ledger, SALE_SYMBOL, "team") == "NOT_OWNER"
