"""
sale_engine.py - Token Sale Engine

Binds one token sale unit to an AssetLedger. Each operation builds a
PendingTransaction with the matching compute_* function and executes it.

Execution of every operation:
1. Advance ledger time to the given timestamp (if it is later)
2. Build the intent (guards raise SaleError subclasses here)
3. Execute atomically; a ledger rejection becomes TransferError

Queries never execute anything and never change state.
"""

from __future__ import annotations
from datetime import datetime
from decimal import Decimal
from typing import Optional

from .core import (
    PendingTransaction, Transaction, ExecuteResult,
    LedgerError, TransferError,
)
from .ledger import AssetLedger
from .units.token_sale import (
    SalePhase, SaleTerms, SaleState,
    create_token_sale_unit, load_token_sale,
    get_spend_cap, get_locked_balance, get_last_unlock_month, get_remaining_supply,
    get_current_price, get_sale_phase, is_sale_active, is_unlock_active,
)
from .units.purchase import compute_purchase
from .units.unlock import compute_unlock_withdrawal, compute_share_release
from .units.sale_admin import (
    compute_initialize, compute_end_sale, compute_set_paused,
    compute_withdraw_payment, compute_withdraw_unsold, compute_finalize,
)


class SaleEngine:
    """
    Runs one token sale against an AssetLedger.

    Example:
        engine = SaleEngine.deploy(ledger, "SALE_ROUND_1", SaleTerms(
            owner_wallet="owner", custody_wallet="token_sale", team_wallet="team"))
        ledger.approve("owner", "token_sale", "SALE", Decimal("30000000"))
        engine.initialize("owner")
        ledger.approve("alice", "token_sale", "BUSD", Decimal("500"))
        issued = engine.buy("alice", Decimal("90"))
    """

    def __init__(self, ledger: AssetLedger, symbol: str):
        """
        Args:
            ledger: Ledger holding the sale unit and both tokens
            symbol: Symbol of a registered token sale unit
        """
        load_token_sale(ledger, symbol)
        self.ledger = ledger
        self.symbol = symbol
        self.verbose = ledger.verbose

    @classmethod
    def deploy(
        cls,
        ledger: AssetLedger,
        symbol: str,
        terms: SaleTerms,
        name: Optional[str] = None,
    ) -> 'SaleEngine':
        """Create and register the sale unit at the ledger's current time."""
        unit = create_token_sale_unit(symbol, name or f"{symbol} token sale", terms, ledger.current_time)
        ledger.register_unit(unit)
        return cls(ledger, symbol)

    # ========================================================================
    # EXECUTION
    # ========================================================================

    def _now(self, timestamp: Optional[datetime]) -> datetime:
        if timestamp is not None and timestamp > self.ledger.current_time:
            self.ledger.advance_time(timestamp)
        return timestamp or self.ledger.current_time

    def _execute(self, pending: PendingTransaction) -> Transaction:
        result = self.ledger.execute(pending)
        if result == ExecuteResult.REJECTED:
            reason = self.ledger.last_rejection or "rejected"
            if reason.startswith("allowance"):
                code = "INSUFFICIENT_ALLOWANCE"
            elif reason.startswith("balance"):
                code = "INSUFFICIENT_BALANCE"
            else:
                code = "TRANSFER_REJECTED"
            raise TransferError(code, reason)
        if result == ExecuteResult.ALREADY_APPLIED:
            raise LedgerError(f"intent {pending.intent_id} was already applied")
        tx = self.ledger.transaction_log[-1]
        if self.verbose:
            for event in tx.events:
                print(f"  event: {event!r}")
        return tx

    # ========================================================================
    # OPERATIONS
    # ========================================================================

    def initialize(self, caller: str, timestamp: Optional[datetime] = None) -> Transaction:
        """Fund custody from the owner and open the sale."""
        now = self._now(timestamp)
        return self._execute(compute_initialize(self.ledger, self.symbol, caller, now))

    def end_sale(self, caller: str, timestamp: Optional[datetime] = None) -> Transaction:
        """Close purchases and fix the unlock start date."""
        now = self._now(timestamp)
        return self._execute(compute_end_sale(self.ledger, self.symbol, caller, now))

    def pause(self, caller: str) -> Transaction:
        return self._execute(compute_set_paused(self.ledger, self.symbol, caller, True))

    def unpause(self, caller: str) -> Transaction:
        return self._execute(compute_set_paused(self.ledger, self.symbol, caller, False))

    def buy(self, buyer: str, payment_amount: Decimal, timestamp: Optional[datetime] = None) -> Decimal:
        """
        Buy sale tokens for payment_amount.

        Returns:
            Quantity issued (immediate plus locked part)
        """
        self._now(timestamp)
        tx = self._execute(compute_purchase(self.ledger, self.symbol, buyer, payment_amount))
        return tx.events[0].quantity

    def withdraw_unlocked(self, buyer: str, timestamp: Optional[datetime] = None) -> Decimal:
        """
        Withdraw buyer's tokens unlocked so far.

        Returns:
            Quantity released
        """
        now = self._now(timestamp)
        tx = self._execute(compute_unlock_withdrawal(self.ledger, self.symbol, buyer, now))
        return tx.events[0].amount

    def release_share(self, timestamp: Optional[datetime] = None) -> bool:
        """Release the reserved share to its beneficiary. True on success."""
        now = self._now(timestamp)
        self._execute(compute_share_release(self.ledger, self.symbol, now))
        return True

    def withdraw_payment(self, caller: str) -> Transaction:
        return self._execute(compute_withdraw_payment(self.ledger, self.symbol, caller))

    def withdraw_unsold(self, caller: str) -> Transaction:
        return self._execute(compute_withdraw_unsold(self.ledger, self.symbol, caller))

    def finalize(self, caller: str) -> Transaction:
        """Sweep custody to the owner and decommission the sale."""
        return self._execute(compute_finalize(self.ledger, self.symbol, caller))

    # ========================================================================
    # QUERIES
    # ========================================================================

    def state(self) -> SaleState:
        return load_token_sale(self.ledger, self.symbol)[1]

    def terms(self) -> SaleTerms:
        return load_token_sale(self.ledger, self.symbol)[0]

    def spend_cap(self, buyer: str) -> Decimal:
        return get_spend_cap(self.ledger, self.symbol, buyer)

    def locked_balance(self, buyer: str) -> Decimal:
        return get_locked_balance(self.ledger, self.symbol, buyer)

    def last_unlock_month(self, buyer: str) -> int:
        return get_last_unlock_month(self.ledger, self.symbol, buyer)

    def remaining_supply(self) -> Decimal:
        return get_remaining_supply(self.ledger, self.symbol)

    def current_price(self) -> Decimal:
        return get_current_price(self.ledger, self.symbol)

    def phase(self) -> SalePhase:
        return get_sale_phase(self.ledger, self.symbol)

    def is_sale_active(self) -> bool:
        return is_sale_active(self.ledger, self.symbol)

    def is_unlock_active(self, timestamp: Optional[datetime] = None) -> bool:
        return is_unlock_active(self.ledger, self.symbol, timestamp)
