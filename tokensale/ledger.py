"""
ledger.py - Stateful Asset Ledger

AssetLedger is the only object in the package that mutates state. It plays
the part of the asset transfer collaborator for the sale engine: it holds
balances and pre-authorizations (allowances) and applies PendingTransactions
atomically.

Key responsibilities:
    - Implements the AssetTransferPort protocol for read-only access
    - Executes transactions atomically (all moves, state changes and events or nothing)
    - Consumes allowances for moves made on behalf of another wallet
    - Rejects state changes built from a stale snapshot
    - Logs every applied transaction
"""

from __future__ import annotations
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Dict, List, Set, Optional, Tuple, Any
import copy

from .core import (
    # Types
    Move, Event, Transaction, Unit, TransactionOrigin, OriginType,
    PendingTransaction, ExecuteResult,
    UnitState,
    # Constants
    QUANTITY_EPSILON, SYSTEM_WALLET,
    # Exceptions
    LedgerError, InsufficientFunds, InsufficientAllowance,
    TransferRuleViolation, UnitNotRegistered, WalletNotRegistered,
    # Helpers
    _freeze_state,
)


class AssetLedger:
    """
    Double-entry asset ledger with allowances and an audit trail.

    Design Principles:
        - Always validates: registration, transfer rules, allowances, balance
          limits and state freshness are checked before anything changes.
        - Always logs: every applied transaction is appended to transaction_log.

    Thread Safety:
        Not thread-safe. Operations are meant to run one at a time.

    Example:
        ledger = AssetLedger("main")
        ledger.register_unit(token("BUSD", "Binance USD"))
        ledger.register_wallet("alice")
        ledger.register_wallet("bob")
        ledger.issue("alice", "BUSD", Decimal("100"))
        ledger.transfer("alice", "bob", "BUSD", Decimal("40"))
    """

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
        test_mode: bool = False
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting logical time (default: 1970-01-01)
            verbose: Print registrations, applied and rejected transactions
            test_mode: Allow set_balance() calls
        """
        self.name = name
        self.balances: Dict[str, Dict[str, Decimal]] = {}
        self.allowances: Dict[Tuple[str, str, str], Decimal] = {}
        self.units: Dict[str, Unit] = {}
        self.registered_wallets: Set[str] = set()
        self.seen_intent_ids: Set[str] = set()
        self.transaction_log: List[Transaction] = []
        self.last_rejection: Optional[str] = None
        self._current_time: datetime = initial_time or datetime(1970, 1, 1)
        self.verbose = verbose
        self._test_mode = test_mode
        self._next_sequence: int = 0

        self.registered_wallets.add(SYSTEM_WALLET)
        self.balances[SYSTEM_WALLET] = defaultdict(lambda: Decimal("0"))

    # ========================================================================
    # AssetTransferPort PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """
        Balance of a unit in a wallet (Decimal("0") if never funded).

        Raises:
            WalletNotRegistered: If wallet is not registered
            UnitNotRegistered: If unit is not registered
        """
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return self.balances[wallet_id].get(unit_symbol, Decimal("0"))

    def total_supply(self, unit_symbol: str) -> Decimal:
        """
        Outstanding supply of a unit: the sum held by every wallet except the
        issuance wallet. Wallets are summed in sorted order for determinism.

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        return sum(
            (self.balances[w].get(unit_symbol, Decimal("0"))
             for w in sorted(self.registered_wallets) if w != SYSTEM_WALLET),
            Decimal("0"),
        )

    def allowance(self, owner: str, spender: str, unit_symbol: str) -> Decimal:
        """How much of owner's unit_symbol balance spender may move."""
        return self.allowances.get((owner, spender, unit_symbol), Decimal("0"))

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """
        Deep copy of a unit's internal state (safe to mutate).

        Raises:
            UnitNotRegistered: If unit is not registered
        """
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        state = self.units[unit_symbol].state
        return copy.deepcopy(state) if state else {}

    def get_unit(self, symbol: str) -> Unit:
        """Return the Unit object for a given symbol."""
        if symbol not in self.units:
            raise UnitNotRegistered(f"Unit {symbol} not registered")
        return self.units[symbol]

    def is_registered(self, wallet_id: str) -> bool:
        """Check if a wallet is registered."""
        return wallet_id in self.registered_wallets

    def events(self, name: Optional[str] = None) -> List[Event]:
        """
        Events recorded by applied transactions, in execution order.

        Args:
            name: Only return events with this name (EVENT_* constant)
        """
        return [
            event
            for tx in self.transaction_log
            for event in tx.events
            if name is None or event.name == name
        ]

    def verify_double_entry(
        self,
        expected_supplies: Dict[str, Decimal] = None,
        tolerance: Decimal = QUANTITY_EPSILON,
    ) -> Dict[str, Any]:
        """
        Check that every unit's outstanding supply is what it should be.

        Transfers never create or destroy value, so after any sequence of
        sale operations each token's total_supply() must be unchanged.

        Returns:
            Dict with keys:
            - 'valid': True if every expected supply matches
            - 'supplies': current total supply per unit
            - 'discrepancies': list of {unit, expected, actual, difference}

        Example:
            before = {"SALE": ledger.total_supply("SALE")}
            ... run the sale ...
            result = ledger.verify_double_entry(expected_supplies=before)
            assert result['valid'], result['discrepancies']
        """
        supplies = {}
        discrepancies = []

        for unit_symbol in self.units:
            current_supply = self.total_supply(unit_symbol)
            supplies[unit_symbol] = current_supply
            if expected_supplies and unit_symbol in expected_supplies:
                expected = expected_supplies[unit_symbol]
                difference = abs(current_supply - expected)
                if difference > tolerance:
                    discrepancies.append({
                        'unit': unit_symbol,
                        'expected': expected,
                        'actual': current_supply,
                        'difference': difference,
                    })

        for unit_symbol, expected in (expected_supplies or {}).items():
            if unit_symbol not in supplies:
                discrepancies.append({
                    'unit': unit_symbol,
                    'expected': expected,
                    'actual': Decimal("0"),
                    'difference': abs(expected),
                    'error': 'unit not registered',
                })

        return {
            'valid': len(discrepancies) == 0,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Move the logical clock forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # REGISTRATION AND AUTHORIZATION (Mutating)
    # ========================================================================

    def register_wallet(self, wallet_id: str) -> str:
        """
        Register a new wallet.

        Raises:
            ValueError: If wallet is already registered or the ID is empty
        """
        if not wallet_id or not wallet_id.strip():
            raise ValueError("wallet_id cannot be empty")
        if wallet_id in self.registered_wallets:
            raise ValueError(f"Wallet {wallet_id} already registered")
        self.registered_wallets.add(wallet_id)
        self.balances[wallet_id] = defaultdict(lambda: Decimal("0"))
        return wallet_id

    def register_unit(self, unit: Unit) -> None:
        """
        Register a new unit.

        Raises:
            ValueError: If unit symbol is already registered
        """
        if unit.symbol in self.units:
            raise ValueError(f"Unit {unit.symbol} already registered")
        self.units[unit.symbol] = unit
        if self.verbose:
            rule_str = f", rule={unit.transfer_rule.__name__}" if unit.transfer_rule else ""
            print(f"Registered: {unit.symbol} ({unit.name}) [{unit.unit_type}]{rule_str}")

    def approve(self, owner: str, spender: str, unit_symbol: str, quantity: Decimal) -> None:
        """
        Pre-authorize spender to move up to quantity of owner's balance.

        Replaces any previous allowance for the same (owner, spender, unit).

        Raises:
            WalletNotRegistered: If owner or spender is not registered
            UnitNotRegistered: If unit is not registered
            ValueError: If quantity is negative or owner == spender
        """
        if owner not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {owner} not registered")
        if spender not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {spender} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        if owner == spender:
            raise ValueError("owner and spender must be different")
        if not isinstance(quantity, Decimal):
            quantity = Decimal(str(quantity))
        if quantity < 0:
            raise ValueError(f"allowance must be non-negative, got {quantity}")
        self.allowances[(owner, spender, unit_symbol)] = quantity
        if self.verbose:
            print(f"Approved: {spender} may move {quantity} {unit_symbol} from {owner}")

    def set_balance(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> None:
        """
        Overwrite a wallet's balance directly.

        WARNING: Bypasses double-entry accounting. Only available in test mode;
        use issue() or execute() otherwise.

        Raises:
            LedgerError: If called when test_mode is False
        """
        if not self._test_mode:
            raise LedgerError(
                "set_balance() is disabled in production mode. "
                "Use issue() or execute() to modify balances. "
                "Set test_mode=True when creating the ledger for testing."
            )
        if wallet_id not in self.registered_wallets:
            raise WalletNotRegistered(f"Wallet {wallet_id} not registered")
        if unit_symbol not in self.units:
            raise UnitNotRegistered(f"Unit {unit_symbol} not registered")
        if not isinstance(quantity, Decimal):
            quantity = Decimal(str(quantity))
        self.balances[wallet_id][unit_symbol] = quantity

    # ========================================================================
    # TRANSFERS (Mutating)
    # ========================================================================

    def issue(self, wallet_id: str, unit_symbol: str, quantity: Decimal) -> ExecuteResult:
        """Create new supply of a unit in a wallet (a move out of the system wallet)."""
        return self._execute_single(
            Move(quantity, unit_symbol, SYSTEM_WALLET, wallet_id, f"issue_{unit_symbol}"),
            OriginType.SYSTEM,
        )

    def transfer(self, source: str, dest: str, unit_symbol: str, quantity: Decimal) -> ExecuteResult:
        """
        Move quantity of a unit from source to dest.

        Raises:
            InsufficientFunds: If source cannot cover the transfer
            LedgerError: If the transfer is rejected for any other reason
        """
        move = Move(quantity, unit_symbol, source, dest, f"transfer_{unit_symbol}")
        return self._execute_single(move, OriginType.USER_ACTION)

    def transfer_from(
        self, owner: str, spender: str, dest: str, unit_symbol: str, quantity: Decimal
    ) -> ExecuteResult:
        """
        Move quantity from owner to dest on behalf of spender.

        Requires owner to have approved at least quantity to spender.

        Raises:
            InsufficientAllowance: If the pre-authorization is too small
            InsufficientFunds: If owner cannot cover the transfer
        """
        move = Move(quantity, unit_symbol, owner, dest, f"transfer_from_{unit_symbol}", spender=spender)
        return self._execute_single(move, OriginType.USER_ACTION)

    def _execute_single(self, move: Move, origin_type: OriginType) -> ExecuteResult:
        pending = PendingTransaction(
            moves=(move,),
            state_changes=(),
            origin=TransactionOrigin(origin_type, move.source, move.unit_symbol),
            timestamp=self._current_time,
            # one-off transfers may legitimately repeat
            intent_id=f"single:{self._next_sequence}:{id(move)}",
        )
        result = self.execute(pending)
        if result == ExecuteResult.REJECTED:
            reason = self.last_rejection or "rejected"
            if reason.startswith("allowance"):
                raise InsufficientAllowance(reason)
            if reason.startswith("balance"):
                raise InsufficientFunds(reason)
            raise LedgerError(reason)
        return result

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """Format: exec:{ledger_name}:{sequence:012d}:{timestamp_micros}"""
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        All moves, allowance consumption, state changes and events are applied
        together or not at all. A pending transaction whose intent_id was seen
        before is not applied again.

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.ALREADY_APPLIED if the intent was already executed
            ExecuteResult.REJECTED if validation failed (see last_rejection)
        """
        self.last_rejection = None

        if pending.is_empty():
            return ExecuteResult.APPLIED

        if pending.intent_id in self.seen_intent_ids:
            if self.verbose:
                print(f"ALREADY_APPLIED: intent_id={pending.intent_id}")
            return ExecuteResult.ALREADY_APPLIED

        valid, reason = self._validate_pending(pending)
        if not valid:
            self.last_rejection = reason
            if self.verbose:
                print(f"✗ REJECTED: {reason}")
            return ExecuteResult.REJECTED

        sequence = self._next_sequence
        self._next_sequence += 1

        tx = Transaction(
            moves=pending.moves,
            state_changes=pending.state_changes,
            origin=pending.origin,
            timestamp=pending.timestamp,
            intent_id=pending.intent_id,
            exec_id=self._generate_exec_id(sequence),
            ledger_name=self.name,
            execution_time=self._current_time,
            sequence_number=sequence,
            events=pending.events,
        )

        self._execute_moves(tx.moves)

        for sc in tx.state_changes:
            old_unit = self.units[sc.unit]
            new_state = copy.deepcopy(sc.new_state if isinstance(sc.new_state, dict) else {})
            self.units[sc.unit] = replace(old_unit, _frozen_state=_freeze_state(new_state))

        self.transaction_log.append(tx)
        self.seen_intent_ids.add(pending.intent_id)

        if self.verbose:
            print(repr(tx))
            print("✓ APPLIED")
        return ExecuteResult.APPLIED

    def _validate_pending(self, pending: PendingTransaction) -> Tuple[bool, str]:
        """
        Validate a pending transaction against all constraints.

        Checks performed, in order:
        1. Timestamp (no intents from the future)
        2. Unit and wallet registration, transfer rules
        3. Allowances for moves made on another wallet's behalf
        4. Balance limits after netting all moves
        5. State freshness: old_state must equal the unit's current state

        Returns:
            (True, "") on success, (False, reason) otherwise
        """
        if pending.timestamp > self._current_time:
            return False, "future timestamp"

        for move in pending.moves:
            if move.unit_symbol not in self.units:
                return False, f"unit not registered: {move.unit_symbol}"
            if not self.is_registered(move.source):
                return False, f"wallet not registered: {move.source}"
            if not self.is_registered(move.dest):
                return False, f"wallet not registered: {move.dest}"
            if move.spender is not None and not self.is_registered(move.spender):
                return False, f"wallet not registered: {move.spender}"

            unit = self.units[move.unit_symbol]
            if unit.transfer_rule:
                try:
                    unit.transfer_rule(self, move)
                except TransferRuleViolation as e:
                    return False, str(e)

        spent: Dict[Tuple[str, str, str], Decimal] = {}
        for move in pending.moves:
            if move.spender is None:
                continue
            key = (move.source, move.spender, move.unit_symbol)
            spent[key] = spent.get(key, Decimal("0")) + move.quantity
        for (owner, spender, unit_sym), total in spent.items():
            approved = self.allowance(owner, spender, unit_sym)
            if total > approved:
                return False, (
                    f"allowance {owner}->{spender} {unit_sym}: {total} > approved {approved}"
                )

        net: Dict[Tuple[str, str], Decimal] = {}
        for move in pending.moves:
            unit = self.units[move.unit_symbol]
            key_src = (move.source, move.unit_symbol)
            key_dst = (move.dest, move.unit_symbol)
            net[key_src] = unit.round(net.get(key_src, Decimal("0")) - move.quantity)
            net[key_dst] = unit.round(net.get(key_dst, Decimal("0")) + move.quantity)

        # SYSTEM_WALLET is the issuance wallet and may go negative
        for (wallet, unit_sym), delta in net.items():
            if wallet == SYSTEM_WALLET:
                continue
            unit = self.units[unit_sym]
            proposed = unit.round(self.balances[wallet][unit_sym] + delta)
            if proposed < unit.min_balance:
                return False, f"balance {wallet} {unit_sym}: {proposed} < min {unit.min_balance}"
            if proposed > unit.max_balance:
                return False, f"balance {wallet} {unit_sym}: {proposed} > max {unit.max_balance}"

        for sc in pending.state_changes:
            if sc.unit not in self.units:
                return False, f"unit not registered: {sc.unit}"
            if sc.old_state is None:
                continue
            current_state = self.units[sc.unit].state
            old_state = sc.old_state if isinstance(sc.old_state, dict) else {}
            for key in set(old_state.keys()) | set(current_state.keys()):
                if old_state.get(key) != current_state.get(key):
                    return False, f"stale state for {sc.unit}.{key}"

        return True, ""

    def _execute_moves(self, moves) -> None:
        """
        Apply moves to balances and consume allowances.

        Only called after _validate_pending() succeeded.
        """
        for move in moves:
            unit = self.units[move.unit_symbol]
            if move.spender is not None:
                key = (move.source, move.spender, move.unit_symbol)
                self.allowances[key] = self.allowances.get(key, Decimal("0")) - move.quantity

            new_src_balance = unit.round(
                self.balances[move.source][move.unit_symbol] - move.quantity
            )
            self.balances[move.source][move.unit_symbol] = new_src_balance

            new_dst_balance = unit.round(
                self.balances[move.dest][move.unit_symbol] + move.quantity
            )
            self.balances[move.dest][move.unit_symbol] = new_dst_balance
