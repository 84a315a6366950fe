"""
Core types and pure functions for the token sale ledger.

This module provides the foundational data structures shared by the asset
ledger and the sale engine:
1. Protocols: AssetTransferPort for read-only access to balances and allowances
2. Immutable data structures: Move, Event, PendingTransaction, Transaction, Unit
3. Exceptions: LedgerError, transfer failures and the sale error taxonomy
4. Transfer rules: Pure validation functions for moves
5. Unit factories: token() for fungible assets

Nothing in this module mutates ledger state.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_EVEN, getcontext
from enum import Enum
import copy
import hashlib
from typing import (
    Dict, List, Optional, Callable, Any, Protocol,
    Tuple, FrozenSet, runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# All quantities are Decimal. Payment amounts carry 18 decimal places and are
# multiplied by tier prices, so the global context needs headroom well beyond
# 18 significant digits.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
_SALE_DECIMAL_CONTEXT = getcontext()
_SALE_DECIMAL_CONTEXT.prec = 60
_SALE_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Reserved wallet for issuance. Exempt from balance validation.
SYSTEM_WALLET = "system"

# Unit type constants (strings, not enum).
UNIT_TYPE_TOKEN = "TOKEN"
UNIT_TYPE_TOKEN_SALE = "TOKEN_SALE"

# Smallest representable payment-asset increment. Anything below is zero.
QUANTITY_EPSILON = Decimal("1e-18")

DECIMAL_ROUNDING = {
    UNIT_TYPE_TOKEN: ROUND_DOWN,
}

# Event names emitted by the sale engine.
EVENT_FUNDING_TRANSFERRED = "FundingTransferred"
EVENT_SHARE_RELEASED = "ShareReleased"
EVENT_PURCHASE_COMPLETED = "PurchaseCompleted"
EVENT_UNLOCK_COMPLETED = "UnlockCompleted"


# ============================================================================
# TYPE ALIASES
# ============================================================================

# Internal state for a unit (sale terms, buyer accounts, ...)
UnitState = Dict[str, Any]


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class AssetTransferPort(Protocol):
    """
    Read-only interface to the asset ledger.

    Sale functions receive an AssetTransferPort and return a PendingTransaction
    describing the transfers they want. Only the ledger applies them, so a
    function accepting this protocol cannot move value by itself.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    def get_balance(self, wallet_id: str, unit_symbol: str) -> Decimal:
        """Return the balance of a unit held by a wallet."""
        ...

    def total_supply(self, unit_symbol: str) -> Decimal:
        """Return the outstanding supply of a unit across all wallets."""
        ...

    def allowance(self, owner: str, spender: str, unit_symbol: str) -> Decimal:
        """Return how much of owner's balance spender is pre-authorized to move."""
        ...

    def get_unit_state(self, unit_symbol: str) -> UnitState:
        """Return a copy of the unit's internal state."""
        ...

    def get_unit(self, symbol: str) -> 'Unit':
        """Return the Unit object for a given symbol."""
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied.
    ALREADY_APPLIED: Same intent_id was processed before (nothing applied).
    REJECTED: Validation failed; the reason is kept in AssetLedger.last_rejection.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    USER_ACTION = "user_action"
    CONTRACT = "contract"
    ADMIN = "admin"
    SYSTEM = "system"


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class InsufficientFunds(LedgerError):
    """Raised when a move would take a wallet below the unit's minimum balance."""
    pass


class InsufficientAllowance(LedgerError):
    """Raised when a move exceeds the spender's pre-authorization."""
    pass


class TransferRuleViolation(LedgerError):
    """Raised when a move violates the unit's transfer rule."""
    pass


class UnitNotRegistered(LedgerError):
    """Raised when operating on a unit that has not been registered."""
    pass


class WalletNotRegistered(LedgerError):
    """Raised when operating on a wallet that has not been registered."""
    pass


class SaleError(LedgerError):
    """
    Base class for rejected sale operations.

    Every rejection carries a reason code naming the violated precondition
    (e.g. "SALE_NOT_STARTED", "SPEND_CAP_EXCEEDED"). Callers can branch on
    the exception class for the category and on ``code`` for the detail.
    """

    def __init__(self, code: str, message: str = ""):
        super().__init__(f"{code}: {message}" if message else code)
        self.code = code


class StateError(SaleError):
    """The sale is in the wrong phase (not started, already started, not ended, ...)."""
    pass


class AuthorizationError(SaleError):
    """The caller lacks the owner role or the sale is paused."""
    pass


class ValidationError(SaleError):
    """Bad input: empty address, non-positive amount, cap or supply exhausted."""
    pass


class ScheduleError(SaleError):
    """A time-gated release was attempted outside its window."""
    pass


class TransferError(SaleError):
    """The asset ledger refused the transfers (balance or pre-authorization)."""
    pass


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin.

    Attributes:
        origin_type: Classification of the origin source
        source_id: Identifier of the specific source (sale symbol, wallet, ...)
        unit_symbol: Unit that triggered this (if applicable)
        event_type: Operation name (e.g. "PURCHASE", "UNLOCK")
    """
    origin_type: OriginType
    source_id: str
    unit_symbol: Optional[str] = None
    event_type: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.unit_symbol:
            parts.append(f"unit={self.unit_symbol}")
        if self.event_type:
            parts.append(f"event={self.event_type}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# UNIT STATE CHANGE
# ============================================================================

@dataclass(frozen=True, slots=True)
class UnitStateChange:
    """
    Before/after snapshot of a unit's state.

    old_state doubles as the optimistic-concurrency check: the ledger rejects
    the change if the unit's current state no longer equals old_state.
    """
    unit: str
    old_state: Any
    new_state: Any

    def changed_fields(self) -> Dict[str, Tuple[Any, Any]]:
        """Return {field: (old, new)} for every field that differs."""
        old = self.old_state if isinstance(self.old_state, dict) else {}
        new = self.new_state if isinstance(self.new_state, dict) else {}
        changes = {}
        for key in set(old.keys()) | set(new.keys()):
            if old.get(key) != new.get(key):
                changes[key] = (old.get(key), new.get(key))
        return changes


# ============================================================================
# CORE DATA STRUCTURES
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A single transfer of value between two wallets.

    Attributes:
        quantity: Amount to transfer (finite, positive Decimal).
        unit_symbol: Asset being transferred (e.g. "BUSD", "SALE").
        source: Wallet debited.
        dest: Wallet credited.
        contract_id: Identifier of the operation generating this move.
        spender: When set, the move is made by ``spender`` on behalf of
            ``source`` and consumes source's pre-authorization to spender.
    """
    quantity: Decimal
    unit_symbol: str
    source: str
    dest: str
    contract_id: str
    spender: Optional[str] = None

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.unit_symbol or not self.unit_symbol.strip():
            raise ValueError("Move unit_symbol cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if self.quantity.is_infinite() or self.quantity.is_nan():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if self.quantity < QUANTITY_EPSILON:
            raise ValueError(f"Move quantity must be positive, got {self.quantity}")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")
        if self.spender is not None and self.spender == self.source:
            raise ValueError("spender must differ from source")

    def __repr__(self) -> str:
        via = f" via {self.spender}" if self.spender else ""
        return f"Move({self.quantity} {self.unit_symbol}: {self.source}→{self.dest}{via})"


@dataclass(frozen=True, slots=True)
class Event:
    """
    Notification emitted by a sale operation.

    Events ride inside the PendingTransaction and only reach the transaction
    log when the transaction is applied.

    Attributes:
        name: One of the EVENT_* constants.
        wallet: Sender, beneficiary or buyer the event is about.
        amount: Payment or token amount the event reports.
        quantity: Sale tokens issued (purchases only).
    """
    name: str
    wallet: str
    amount: Decimal
    quantity: Optional[Decimal] = None

    def __repr__(self) -> str:
        extra = f", quantity={self.quantity}" if self.quantity is not None else ""
        return f"{self.name}({self.wallet}, {self.amount}{extra})"


def _normalize_decimal(d: Decimal) -> str:
    """Canonical string for a Decimal: Decimal("1.0") and Decimal("1.00") both give "1"."""
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """
    Deterministic serialization used for content hashing.

    Independent of dict insertion order and Decimal representation.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, dict):
        items = sorted(value.items(), key=lambda kv: str(kv[0]))
        return "{" + ",".join(f"{_canonicalize(k)}:{_canonicalize(v)}" for k, v in items) + "}"
    if isinstance(value, (list, tuple)):
        return "[" + ",".join(_canonicalize(item) for item in value) + "]"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    state_changes: Tuple[UnitStateChange, ...],
    origin: TransactionOrigin,
) -> str:
    """
    Content hash of a transaction's intent, used for idempotent execution.

    Depends only on moves, state changes and origin. Sale state carries a
    revision counter, so two legitimate operations never share an intent.
    """
    content_parts = [f"origin:{origin.origin_type.value}:{origin.source_id}"]
    if origin.unit_symbol:
        content_parts.append(f"unit:{origin.unit_symbol}")
    if origin.event_type:
        content_parts.append(f"event:{origin.event_type}")

    sorted_moves = sorted(
        moves,
        key=lambda m: (_normalize_decimal(m.quantity), m.unit_symbol, m.source, m.dest, m.contract_id)
    )
    for m in sorted_moves:
        content_parts.append(
            f"move:{_normalize_decimal(m.quantity)}|{m.unit_symbol}|{m.source}|{m.dest}|"
            f"{m.contract_id}|{m.spender or ''}"
        )

    for sc in sorted(state_changes, key=lambda s: s.unit):
        content_parts.append(
            f"state_change:{sc.unit}|{_canonicalize(sc.old_state)}|{_canonicalize(sc.new_state)}"
        )

    return hashlib.sha256("|".join(content_parts).encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A transaction before execution - represents INTENT.

    Built by sale functions and handed to AssetLedger.execute(), which applies
    every move, state change and event together or none of them.

    Attributes:
        moves: Value transfers between wallets
        state_changes: Unit state changes (old_state and new_state)
        origin: Who/what created this transaction
        timestamp: Time the intent applies at (ledger time, or a later operation time)
        events: Notifications recorded when the transaction applies
        intent_id: Content hash (auto-computed)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    events: Tuple[Event, ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            object.__setattr__(
                self, 'intent_id',
                _compute_intent_id(self.moves, self.state_changes, self.origin)
            )

    def is_empty(self) -> bool:
        """True if there are no moves and no state changes."""
        return not self.moves and not self.state_changes

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.moves)} moves, {len(self.state_changes)} deltas, {self.origin})"


def build_transaction(
    view: AssetTransferPort,
    moves: List[Move],
    state_changes: Optional[List[UnitStateChange]] = None,
    origin: Optional[TransactionOrigin] = None,
    events: Optional[List[Event]] = None,
    timestamp: Optional[datetime] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction from moves, state changes and events.

    The intent is stamped with timestamp (default: the view's current time).
    The ledger rejects intents stamped later than its clock.

    State snapshots are deep-copied so later mutation by the caller cannot
    leak into the intent.

    Example:
        def compute_release(view, symbol):
            state = view.get_unit_state(symbol)
            new_state = {**state, "released": True}
            moves = [Move(Decimal("100"), "SALE", "custody", "team", "release")]
            changes = [UnitStateChange(symbol, state, new_state)]
            return build_transaction(view, moves, changes)
    """
    if origin is None:
        origin = TransactionOrigin(origin_type=OriginType.CONTRACT, source_id="contract")

    copied_changes: Tuple[UnitStateChange, ...] = ()
    if state_changes:
        copied_changes = tuple(
            UnitStateChange(
                unit=sc.unit,
                old_state=copy.deepcopy(sc.old_state),
                new_state=copy.deepcopy(sc.new_state),
            )
            for sc in state_changes
        )

    return PendingTransaction(
        moves=tuple(moves),
        state_changes=copied_changes,
        origin=origin,
        timestamp=timestamp or view.current_time,
        events=tuple(events or ()),
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger changes - represents FACT.

    Attributes:
        moves, state_changes, origin, timestamp, events, intent_id:
            copied from the PendingTransaction
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: Ledger time when executed
        sequence_number: Monotonic sequence within the ledger
        contract_ids: Contract IDs of the moves (auto-populated)
    """
    moves: Tuple[Move, ...]
    state_changes: Tuple[UnitStateChange, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    events: Tuple[Event, ...] = ()
    contract_ids: FrozenSet[str] = None

    def __post_init__(self):
        if not self.moves and not self.state_changes:
            raise ValueError("Transaction must have moves or state_changes")
        if self.contract_ids is None:
            object.__setattr__(self, 'contract_ids', frozenset(m.contract_id for m in self.moves))

    def __repr__(self) -> str:
        w = 88
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id      : ' + self.intent_id)}│",
            f"│{pad('   execution_time : ' + str(self.execution_time))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
            f"├{bar}┤",
            f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│",
        ]
        for i, move in enumerate(self.moves):
            lines.append(f"│{pad(f'   [{i}] {move!r}')}│")
        for sc in self.state_changes:
            for field_name, (old_val, new_val) in sorted(sc.changed_fields().items()):
                if isinstance(old_val, dict) or isinstance(new_val, dict):
                    continue
                lines.append(f"│{pad(f'   {sc.unit}.{field_name}: {old_val!r} → {new_val!r}')}│")
        for event in self.events:
            lines.append(f"│{pad(f'   event {event!r}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


# Transfer rules validate a move and raise TransferRuleViolation if invalid.
TransferRule = Callable[[AssetTransferPort, Move], None]


def _freeze_state(state: Optional[UnitState]) -> Tuple[Tuple[str, Any], ...]:
    """Convert a state dict to a sorted tuple of (key, value) pairs."""
    if not state:
        return ()
    return tuple(sorted(state.items()))


def _thaw_state(frozen_state: Tuple[Tuple[str, Any], ...]) -> UnitState:
    """Convert a frozen state back into a dict."""
    return dict(frozen_state)


@dataclass(frozen=True, slots=True)
class Unit:
    """
    Definition of an asset or instrument registered with the ledger.

    Attributes:
        symbol: Short identifier (e.g. "BUSD", "SALE", "SALE_ROUND_1").
        name: Human-readable name.
        unit_type: UNIT_TYPE_TOKEN or UNIT_TYPE_TOKEN_SALE.
        min_balance: Minimum allowed balance in any non-system wallet.
        max_balance: Maximum allowed balance in any wallet.
        decimal_places: Precision quantities are rounded to (None = no rounding).
        transfer_rule: Optional function validating moves of this unit.
        _frozen_state: Internal state as a tuple of key-value pairs.
    """
    symbol: str
    name: str
    unit_type: str
    min_balance: Decimal = Decimal("0")
    max_balance: Decimal = Decimal("Infinity")
    decimal_places: Optional[int] = None
    transfer_rule: Optional[TransferRule] = None
    _frozen_state: Tuple[Tuple[str, Any], ...] = field(default_factory=tuple)

    @property
    def state(self) -> UnitState:
        """The unit's state as a fresh dict."""
        return _thaw_state(self._frozen_state)

    def round(self, value: Decimal) -> Decimal:
        """Quantize a value to this unit's precision; unchanged if decimal_places is None."""
        if self.decimal_places is None:
            return value
        if not isinstance(value, Decimal):
            value = Decimal(str(value))
        quantizer = Decimal(10) ** -self.decimal_places
        rounding_mode = DECIMAL_ROUNDING.get(self.unit_type, ROUND_HALF_EVEN)
        return value.quantize(quantizer, rounding=rounding_mode)


# ============================================================================
# TRANSFER RULES
# ============================================================================

def non_transferable_rule(view: AssetTransferPort, move: Move) -> None:
    """
    Reject every move of the unit.

    Used for instrument units (such as a token sale) that exist only to carry
    state and are never held in a wallet.
    """
    raise TransferRuleViolation(f"{move.unit_symbol} is not transferable")


# ============================================================================
# UNIT FACTORIES
# ============================================================================

def token(symbol: str, name: str, decimal_places: int = 18) -> Unit:
    """
    Create a fungible token unit.

    Args:
        symbol: Token ticker (e.g. "BUSD", "SALE").
        name: Full name of the token.
        decimal_places: Smallest increment is 10**-decimal_places (default 18).

    Returns:
        A Unit that cannot go negative in any non-system wallet. Amounts are
        rounded down to the token's precision.
    """
    if decimal_places < 0:
        raise ValueError(f"decimal_places must be non-negative, got {decimal_places}")
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_TOKEN,
        decimal_places=decimal_places,
        min_balance=Decimal("0"),
    )
