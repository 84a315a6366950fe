"""
sale_admin.py - Sale Controller Transitions and Owner Operations

Phases:

    UNINITIALIZED --initialize--> ACTIVE --end_sale--> ENDED
          any phase --finalize--> FINALIZED (terminal)

Every function here is restricted to the sale owner and refuses to run on a
finalized sale.
"""

from __future__ import annotations
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Optional

from ..core import (
    AssetTransferPort, Move, Event, PendingTransaction, OriginType,
    StateError, ValidationError, EVENT_FUNDING_TRANSFERRED,
)
from ..vesting import DAY, days_elapsed, next_daily_boundary
from .token_sale import (
    load_token_sale, build_sale_transaction, quantize_amount, resolve_time,
    require_owner, require_not_finalized, require_started, require_not_ended, require_ended,
)


def compute_initialize(
    view: AssetTransferPort,
    symbol: str,
    caller: str,
    timestamp: Optional[datetime] = None,
) -> PendingTransaction:
    """
    Open the sale.

    Sizes the public supply and the reserved share from the sale token's
    outstanding supply, pulls both from the owner into custody through the
    owner's allowance to the custody wallet, and schedules the sale start at
    the next sale_start_hour:00 at or after timestamp.

    Raises:
        AuthorizationError: NOT_OWNER
        StateError: FINALIZED, ALREADY_STARTED
        ValidationError: NO_SUPPLY if the sale token has no outstanding supply
        ScheduleError: TIMESTAMP_IN_PAST
    """
    now = resolve_time(view, timestamp)
    terms, state = load_token_sale(view, symbol)

    require_owner(terms, caller)
    require_not_finalized(state)
    if state.started:
        raise StateError("ALREADY_STARTED", "sale was already initialized")

    token_supply = view.total_supply(terms.sale_token)
    total = quantize_amount(token_supply * terms.sale_share, terms.sale_token_decimals)
    reserved = quantize_amount(token_supply * terms.team_share, terms.sale_token_decimals)
    funding = total + reserved
    if funding <= 0:
        raise ValidationError("NO_SUPPLY", f"{terms.sale_token} has no outstanding supply")

    new_state = replace(
        state,
        total_supply=total,
        remaining_supply=total,
        sale_start_date=next_daily_boundary(now, terms.sale_start_hour),
        started=True,
        reserved_share=replace(state.reserved_share, amount=reserved),
    )
    moves = [Move(funding, terms.sale_token, terms.owner_wallet, terms.custody_wallet,
                  f"{symbol}_funding", spender=terms.custody_wallet)]
    events = [Event(EVENT_FUNDING_TRANSFERRED, terms.owner_wallet, funding)]

    return build_sale_transaction(
        view, symbol, terms, new_state, moves, events,
        event_type="INITIALIZE", source_id=caller, origin_type=OriginType.ADMIN,
        timestamp=now,
    )


def compute_end_sale(
    view: AssetTransferPort,
    symbol: str,
    caller: str,
    timestamp: Optional[datetime] = None,
) -> PendingTransaction:
    """
    Close the sale and start the unlock clock.

    unlock_start_date = sale_start_date + whole days since the sale start + 1 day

    Raises:
        AuthorizationError: NOT_OWNER
        StateError: FINALIZED, SALE_NOT_STARTED, SALE_ENDED
        ScheduleError: TIMESTAMP_IN_PAST
    """
    now = resolve_time(view, timestamp)
    terms, state = load_token_sale(view, symbol)

    require_owner(terms, caller)
    require_not_finalized(state)
    require_started(state)
    require_not_ended(state)

    start = state.sale_start_date
    unlock_start = start + days_elapsed(start, now) * DAY + DAY
    new_state = replace(state, ended=True, unlock_start_date=unlock_start)

    return build_sale_transaction(
        view, symbol, terms, new_state, [], [],
        event_type="END_SALE", source_id=caller, origin_type=OriginType.ADMIN,
        timestamp=now,
    )


def compute_set_paused(
    view: AssetTransferPort,
    symbol: str,
    caller: str,
    paused: bool,
) -> PendingTransaction:
    """
    Pause or unpause purchases and unlock withdrawals.

    Raises:
        AuthorizationError: NOT_OWNER
        StateError: FINALIZED, ALREADY_PAUSED, NOT_PAUSED
    """
    terms, state = load_token_sale(view, symbol)

    require_owner(terms, caller)
    require_not_finalized(state)
    if paused and state.paused:
        raise StateError("ALREADY_PAUSED", "sale is already paused")
    if not paused and not state.paused:
        raise StateError("NOT_PAUSED", "sale is not paused")

    return build_sale_transaction(
        view, symbol, terms, replace(state, paused=paused), [], [],
        event_type="PAUSE" if paused else "UNPAUSE",
        source_id=caller, origin_type=OriginType.ADMIN,
    )


def compute_withdraw_payment(
    view: AssetTransferPort,
    symbol: str,
    caller: str,
) -> PendingTransaction:
    """
    Send every payment token collected in custody to the owner.

    Raises:
        AuthorizationError: NOT_OWNER
        StateError: FINALIZED
        ValidationError: NOTHING_TO_WITHDRAW
    """
    terms, state = load_token_sale(view, symbol)

    require_owner(terms, caller)
    require_not_finalized(state)

    collected = view.get_balance(terms.custody_wallet, terms.payment_token)
    if collected <= 0:
        raise ValidationError("NOTHING_TO_WITHDRAW", f"no {terms.payment_token} in custody")

    moves = [Move(collected, terms.payment_token, terms.custody_wallet, terms.owner_wallet,
                  f"{symbol}_withdraw_payment")]
    return build_sale_transaction(
        view, symbol, terms, state, moves, [],
        event_type="WITHDRAW_PAYMENT", source_id=caller, origin_type=OriginType.ADMIN,
    )


def compute_withdraw_unsold(
    view: AssetTransferPort,
    symbol: str,
    caller: str,
) -> PendingTransaction:
    """
    Return the unsold public supply to the owner once the sale has ended.

    Locked buyer tokens and the reserved share stay in custody.

    Raises:
        AuthorizationError: NOT_OWNER
        StateError: FINALIZED, SALE_NOT_ENDED
        ValidationError: NOTHING_TO_WITHDRAW
    """
    terms, state = load_token_sale(view, symbol)

    require_owner(terms, caller)
    require_not_finalized(state)
    require_ended(state)

    unsold = state.remaining_supply
    if unsold <= 0:
        raise ValidationError("NOTHING_TO_WITHDRAW", "no unsold supply")

    moves = [Move(unsold, terms.sale_token, terms.custody_wallet, terms.owner_wallet,
                  f"{symbol}_withdraw_unsold")]
    return build_sale_transaction(
        view, symbol, terms, replace(state, remaining_supply=Decimal("0")), moves, [],
        event_type="WITHDRAW_UNSOLD", source_id=caller, origin_type=OriginType.ADMIN,
    )


def compute_finalize(
    view: AssetTransferPort,
    symbol: str,
    caller: str,
) -> PendingTransaction:
    """
    Sweep everything held in custody to the owner and decommission the sale.

    Both the sale token and the payment token are swept, including tokens
    still locked for buyers and an unreleased reserved share. Afterwards
    every operation fails with StateError(FINALIZED).

    Raises:
        AuthorizationError: NOT_OWNER
        StateError: FINALIZED
    """
    terms, state = load_token_sale(view, symbol)

    require_owner(terms, caller)
    require_not_finalized(state)

    moves = []
    for unit_symbol in (terms.sale_token, terms.payment_token):
        held = view.get_balance(terms.custody_wallet, unit_symbol)
        if held > 0:
            moves.append(Move(held, unit_symbol, terms.custody_wallet, terms.owner_wallet,
                              f"{symbol}_finalize"))

    return build_sale_transaction(
        view, symbol, terms, replace(state, finalized=True, remaining_supply=Decimal("0")),
        moves, [],
        event_type="FINALIZE", source_id=caller, origin_type=OriginType.ADMIN,
    )
