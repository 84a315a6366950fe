"""
token_sale.py - Token Sale Unit: Terms, State, Buyer Registry and Guards

A token sale is registered with the ledger as a non-transferable unit whose
state holds everything the sale needs: its configuration, its phase flags,
the buyer accounts and the reserved (team) share. Keeping it all in one unit
state means every operation changes moves and sale state in the same atomic
transaction.

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs):
   - SaleTerms: configuration fixed at creation
   - SaleState: phase flags, supply, buyer accounts, reserved share
   - BuyerAccount, ReservedShare: nested records

2. ADAPTERS:
   - load_token_sale(view, symbol) -> (SaleTerms, SaleState)
   - to_state_dict(terms, state) -> dict stored in the unit

3. GUARDS (require_*): raise a SaleError subclass with a reason code

4. QUERIES (get_*, is_*): read-only views for external observers
"""

from __future__ import annotations
from dataclasses import dataclass, field, replace
from datetime import datetime
from decimal import Decimal, ROUND_DOWN
from enum import Enum
from typing import Dict, Any, List, Mapping, Optional, Tuple

from ..core import (
    AssetTransferPort, Move, Event, PendingTransaction, Unit, UnitStateChange,
    TransactionOrigin, OriginType,
    UNIT_TYPE_TOKEN_SALE,
    StateError, AuthorizationError, ScheduleError,
    build_transaction, non_transferable_rule, _freeze_state,
)
from ..pricing import PriceTiers, DEFAULT_PRICE_TIERS, BASE_PRICE, calculate_price, validate_price_tiers
from ..vesting import MONTH, MonthlyUnlock


SALE_TOKEN_DECIMALS = 6
PAYMENT_TOKEN_DECIMALS = 18


class SalePhase(Enum):
    """Lifecycle phase of a token sale."""
    UNINITIALIZED = "uninitialized"
    ACTIVE = "active"
    ENDED = "ended"
    FINALIZED = "finalized"


def quantize_amount(value: Decimal, decimal_places: int) -> Decimal:
    """Scale a quantity into an asset's precision, rounding down."""
    return value.quantize(Decimal(10) ** -decimal_places, rounding=ROUND_DOWN)


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class SaleTerms:
    """
    Configuration of a token sale, set at creation and never changed.

    Only the three wallets are required; every other field carries the
    standard sale parameters as defaults.
    """
    owner_wallet: str             # Administrator and funding source
    custody_wallet: str           # Holds sale supply and collected payments
    team_wallet: str              # Beneficiary of the reserved share
    sale_token: str = "SALE"
    payment_token: str = "BUSD"
    sale_token_decimals: int = SALE_TOKEN_DECIMALS
    payment_token_decimals: int = PAYMENT_TOKEN_DECIMALS
    sale_share: Decimal = Decimal("0.15")        # public sale supply / total supply
    team_share: Decimal = Decimal("0.15")        # reserved share / total supply
    spend_cap: Decimal = Decimal("500")          # per buyer, payment units
    immediate_unlock: Decimal = Decimal("0.10")  # fraction released at purchase
    monthly_unlock: Decimal = Decimal("0.30")    # fraction released per month
    unlock_window_months: int = 3
    share_lock_months: int = 6
    sale_start_hour: int = 10                    # UTC hour the sale opens
    price_tiers: PriceTiers = DEFAULT_PRICE_TIERS
    base_price: Decimal = BASE_PRICE

    def __post_init__(self):
        for name in ('sale_share', 'team_share', 'spend_cap', 'immediate_unlock',
                     'monthly_unlock', 'base_price'):
            value = getattr(self, name)
            if not isinstance(value, Decimal):
                object.__setattr__(self, name, Decimal(str(value)))
        object.__setattr__(self, 'price_tiers', tuple(
            (Decimal(str(t)), Decimal(str(p))) for t, p in self.price_tiers
        ))


@dataclass(frozen=True, slots=True)
class BuyerAccount:
    """Purchase and unlock progress of one buyer."""
    address: str
    spend_cap: Decimal
    last_unlock_month: int = 0
    initial_purchased_total: Decimal = Decimal("0")
    locked_balance: Decimal = Decimal("0")


@dataclass(frozen=True, slots=True)
class ReservedShare:
    """The reserved allocation, released once at release_time."""
    beneficiary: str
    amount: Decimal
    release_time: datetime
    released: bool = False


@dataclass(frozen=True, slots=True)
class SaleState:
    """
    Immutable snapshot of a sale. Each operation produces a new instance.

    revision counts applied operations so that two otherwise identical
    operations (pause, unpause, pause) are distinct intents.
    """
    total_supply: Decimal
    remaining_supply: Decimal
    sale_start_date: Optional[datetime]
    unlock_start_date: Optional[datetime]
    started: bool
    ended: bool
    paused: bool
    finalized: bool
    revision: int
    created_at: datetime
    reserved_share: ReservedShare
    buyers: Mapping[str, BuyerAccount] = field(default_factory=dict)


# ============================================================================
# ADAPTERS
# ============================================================================

def _dec(value: Any, default: str = "0") -> Decimal:
    return Decimal(str(value)) if value is not None else Decimal(default)


def load_token_sale(view: AssetTransferPort, symbol: str) -> Tuple[SaleTerms, SaleState]:
    """
    Load a token sale from ledger state as typed frozen dataclasses.

    This is the only place sale operations read the unit state.

    Raises:
        UnitNotRegistered: If the sale unit is not registered
        ValueError: If the unit is not a token sale
    """
    unit = view.get_unit(symbol)
    if unit.unit_type != UNIT_TYPE_TOKEN_SALE:
        raise ValueError(f"{symbol} is not a token sale (type {unit.unit_type})")
    raw = view.get_unit_state(symbol)

    terms = SaleTerms(
        owner_wallet=raw['owner_wallet'],
        custody_wallet=raw['custody_wallet'],
        team_wallet=raw['team_wallet'],
        sale_token=raw['sale_token'],
        payment_token=raw['payment_token'],
        sale_token_decimals=raw['sale_token_decimals'],
        payment_token_decimals=raw['payment_token_decimals'],
        sale_share=_dec(raw['sale_share']),
        team_share=_dec(raw['team_share']),
        spend_cap=_dec(raw['spend_cap']),
        immediate_unlock=_dec(raw['immediate_unlock']),
        monthly_unlock=_dec(raw['monthly_unlock']),
        unlock_window_months=raw['unlock_window_months'],
        share_lock_months=raw['share_lock_months'],
        sale_start_hour=raw['sale_start_hour'],
        price_tiers=tuple(tuple(tier) for tier in raw['price_tiers']),
        base_price=_dec(raw['base_price']),
    )

    share = raw['reserved_share']
    buyers = {
        address: BuyerAccount(
            address=address,
            spend_cap=_dec(acct['spend_cap']),
            last_unlock_month=acct['last_unlock_month'],
            initial_purchased_total=_dec(acct['initial_purchased_total']),
            locked_balance=_dec(acct['locked_balance']),
        )
        for address, acct in raw.get('buyers', {}).items()
    }

    state = SaleState(
        total_supply=_dec(raw['total_supply']),
        remaining_supply=_dec(raw['remaining_supply']),
        sale_start_date=raw.get('sale_start_date'),
        unlock_start_date=raw.get('unlock_start_date'),
        started=raw.get('started', False),
        ended=raw.get('ended', False),
        paused=raw.get('paused', False),
        finalized=raw.get('finalized', False),
        revision=raw.get('revision', 0),
        created_at=raw['created_at'],
        reserved_share=ReservedShare(
            beneficiary=share['beneficiary'],
            amount=_dec(share['amount']),
            release_time=share['release_time'],
            released=share['released'],
        ),
        buyers=buyers,
    )
    return terms, state


def to_state_dict(terms: SaleTerms, state: SaleState) -> Dict[str, Any]:
    """Convert terms and state back to the dict stored in the unit."""
    share = state.reserved_share
    return {
        'owner_wallet': terms.owner_wallet,
        'custody_wallet': terms.custody_wallet,
        'team_wallet': terms.team_wallet,
        'sale_token': terms.sale_token,
        'payment_token': terms.payment_token,
        'sale_token_decimals': terms.sale_token_decimals,
        'payment_token_decimals': terms.payment_token_decimals,
        'sale_share': terms.sale_share,
        'team_share': terms.team_share,
        'spend_cap': terms.spend_cap,
        'immediate_unlock': terms.immediate_unlock,
        'monthly_unlock': terms.monthly_unlock,
        'unlock_window_months': terms.unlock_window_months,
        'share_lock_months': terms.share_lock_months,
        'sale_start_hour': terms.sale_start_hour,
        'price_tiers': tuple(terms.price_tiers),
        'base_price': terms.base_price,
        'total_supply': state.total_supply,
        'remaining_supply': state.remaining_supply,
        'sale_start_date': state.sale_start_date,
        'unlock_start_date': state.unlock_start_date,
        'started': state.started,
        'ended': state.ended,
        'paused': state.paused,
        'finalized': state.finalized,
        'revision': state.revision,
        'created_at': state.created_at,
        'reserved_share': {
            'beneficiary': share.beneficiary,
            'amount': share.amount,
            'release_time': share.release_time,
            'released': share.released,
        },
        'buyers': {
            address: {
                'spend_cap': acct.spend_cap,
                'last_unlock_month': acct.last_unlock_month,
                'initial_purchased_total': acct.initial_purchased_total,
                'locked_balance': acct.locked_balance,
            }
            for address, acct in sorted(state.buyers.items())
        },
    }


# ============================================================================
# UNIT CREATION
# ============================================================================

def create_token_sale_unit(
    symbol: str,
    name: str,
    terms: SaleTerms,
    created_at: datetime,
) -> Unit:
    """
    Create the unit that carries a token sale's state.

    The reserved share's release time is fixed here (created_at plus
    share_lock_months 30-day months); its amount is set at initialization.

    Raises:
        ValueError: If wallets are empty or not distinct, fractions are out of
                    range, or the price tiers are malformed.

    Example:
        terms = SaleTerms(owner_wallet="owner", custody_wallet="token_sale",
                          team_wallet="team")
        ledger.register_unit(create_token_sale_unit(
            "SALE_ROUND_1", "SALE public round", terms, ledger.current_time))
    """
    wallets = (terms.owner_wallet, terms.custody_wallet, terms.team_wallet)
    for wallet in wallets:
        if not wallet or not wallet.strip():
            raise ValueError("sale wallets cannot be empty")
    if len(set(wallets)) != len(wallets):
        raise ValueError("owner, custody and team wallets must be different")
    if terms.sale_token == terms.payment_token:
        raise ValueError("sale_token and payment_token must be different")
    for label, fraction in (('sale_share', terms.sale_share), ('team_share', terms.team_share),
                            ('immediate_unlock', terms.immediate_unlock),
                            ('monthly_unlock', terms.monthly_unlock)):
        if fraction < 0 or fraction > 1:
            raise ValueError(f"{label} must be in [0, 1], got {fraction}")
    if terms.spend_cap <= 0:
        raise ValueError(f"spend_cap must be positive, got {terms.spend_cap}")
    if terms.unlock_window_months < 1:
        raise ValueError(f"unlock_window_months must be at least 1, got {terms.unlock_window_months}")
    validate_price_tiers(terms.price_tiers, terms.base_price)

    state = SaleState(
        total_supply=Decimal("0"),
        remaining_supply=Decimal("0"),
        sale_start_date=None,
        unlock_start_date=None,
        started=False,
        ended=False,
        paused=False,
        finalized=False,
        revision=0,
        created_at=created_at,
        reserved_share=ReservedShare(
            beneficiary=terms.team_wallet,
            amount=Decimal("0"),
            release_time=created_at + terms.share_lock_months * MONTH,
        ),
    )
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_TOKEN_SALE,
        min_balance=Decimal("0"),
        max_balance=Decimal("0"),
        decimal_places=terms.sale_token_decimals,
        transfer_rule=non_transferable_rule,
        _frozen_state=_freeze_state(to_state_dict(terms, state)),
    )


# ============================================================================
# GUARDS
# ============================================================================

def require_owner(terms: SaleTerms, caller: str) -> None:
    if caller != terms.owner_wallet:
        raise AuthorizationError("NOT_OWNER", f"{caller} is not the sale owner")


def require_not_finalized(state: SaleState) -> None:
    if state.finalized:
        raise StateError("FINALIZED", "sale has been finalized")


def require_not_paused(state: SaleState) -> None:
    if state.paused:
        raise AuthorizationError("PAUSED", "sale is paused")


def require_started(state: SaleState) -> None:
    if not state.started:
        raise StateError("SALE_NOT_STARTED", "sale has not been initialized")


def require_not_ended(state: SaleState) -> None:
    if state.ended:
        raise StateError("SALE_ENDED", "sale has already ended")


def require_ended(state: SaleState) -> None:
    if not state.ended:
        raise StateError("SALE_NOT_ENDED", "sale has not ended")


def resolve_time(view: AssetTransferPort, timestamp: Optional[datetime]) -> datetime:
    """
    The time an operation runs at: timestamp, or the ledger clock if omitted.

    Raises:
        ScheduleError: TIMESTAMP_IN_PAST if timestamp is before the ledger clock
    """
    if timestamp is None:
        return view.current_time
    if timestamp < view.current_time:
        raise ScheduleError(
            "TIMESTAMP_IN_PAST", f"{timestamp} is before ledger time {view.current_time}"
        )
    return timestamp


def monthly_schedule(terms: SaleTerms, state: SaleState) -> MonthlyUnlock:
    """The buyer unlock schedule of an ended sale."""
    return MonthlyUnlock(
        epoch=state.unlock_start_date,
        monthly_fraction=terms.monthly_unlock,
        window_months=terms.unlock_window_months,
        decimal_places=terms.sale_token_decimals,
    )


# ============================================================================
# BUYER REGISTRY
# ============================================================================

def open_account(state: SaleState, buyer: str, terms: SaleTerms) -> SaleState:
    """
    Return state with an account for buyer, creating it with the fixed cap.

    An account with a non-zero purchase total is never re-created.
    """
    existing = state.buyers.get(buyer)
    if existing is not None and existing.initial_purchased_total != 0:
        return state
    buyers = dict(state.buyers)
    buyers[buyer] = BuyerAccount(address=buyer, spend_cap=terms.spend_cap)
    return replace(state, buyers=buyers)


def build_sale_transaction(
    view: AssetTransferPort,
    symbol: str,
    terms: SaleTerms,
    new_state: SaleState,
    moves: List[Move],
    events: List[Event],
    event_type: str,
    source_id: str,
    origin_type: OriginType = OriginType.CONTRACT,
    timestamp: Optional[datetime] = None,
) -> PendingTransaction:
    """
    Wrap moves, events and the next sale state (revision bumped) into one intent.

    A time-gated operation passes the time it was computed for; the ledger
    refuses the intent until its clock has reached that time.
    """
    old_state = view.get_unit_state(symbol)
    committed = replace(new_state, revision=new_state.revision + 1)
    origin = TransactionOrigin(origin_type, source_id, symbol, event_type)
    return build_transaction(
        view,
        moves,
        [UnitStateChange(symbol, old_state, to_state_dict(terms, committed))],
        origin=origin,
        events=events,
        timestamp=timestamp,
    )


# ============================================================================
# QUERIES
# ============================================================================

def get_spend_cap(view: AssetTransferPort, symbol: str, buyer: str) -> Decimal:
    """Remaining spend cap of buyer (0 for unknown buyers)."""
    _, state = load_token_sale(view, symbol)
    acct = state.buyers.get(buyer)
    return acct.spend_cap if acct else Decimal("0")


def get_locked_balance(view: AssetTransferPort, symbol: str, buyer: str) -> Decimal:
    """Still-locked purchased tokens of buyer (0 for unknown buyers)."""
    _, state = load_token_sale(view, symbol)
    acct = state.buyers.get(buyer)
    return acct.locked_balance if acct else Decimal("0")


def get_last_unlock_month(view: AssetTransferPort, symbol: str, buyer: str) -> int:
    """Month marker of buyer's last unlock withdrawal (0 for unknown buyers)."""
    _, state = load_token_sale(view, symbol)
    acct = state.buyers.get(buyer)
    return acct.last_unlock_month if acct else 0


def get_remaining_supply(view: AssetTransferPort, symbol: str) -> Decimal:
    _, state = load_token_sale(view, symbol)
    return state.remaining_supply


def get_current_price(view: AssetTransferPort, symbol: str) -> Decimal:
    """Tier price a purchase would pay right now."""
    terms, state = load_token_sale(view, symbol)
    return calculate_price(state.remaining_supply, terms.price_tiers, terms.base_price)


def get_sale_phase(view: AssetTransferPort, symbol: str) -> SalePhase:
    _, state = load_token_sale(view, symbol)
    if state.finalized:
        return SalePhase.FINALIZED
    if state.ended:
        return SalePhase.ENDED
    if state.started:
        return SalePhase.ACTIVE
    return SalePhase.UNINITIALIZED


def is_sale_active(view: AssetTransferPort, symbol: str) -> bool:
    """True while purchases are accepted (started, not ended, not finalized)."""
    return get_sale_phase(view, symbol) == SalePhase.ACTIVE


def is_unlock_active(view: AssetTransferPort, symbol: str, timestamp: Optional[datetime] = None) -> bool:
    """True once the sale has ended and at least one unlock month has elapsed."""
    terms, state = load_token_sale(view, symbol)
    if state.finalized or not state.ended or state.unlock_start_date is None:
        return False
    return monthly_schedule(terms, state).is_open(timestamp or view.current_time)
