"""
unlock.py - Vesting Withdrawals

Two withdrawals release tokens held in custody:

    compute_unlock_withdrawal: a buyer's monthly unlock after the sale ends
    compute_share_release:     the reserved share's one-time cliff release
"""

from __future__ import annotations
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Optional

from ..core import (
    AssetTransferPort, Move, Event, PendingTransaction, OriginType,
    ValidationError, EVENT_UNLOCK_COMPLETED, EVENT_SHARE_RELEASED,
)
from ..vesting import CliffRelease
from .token_sale import (
    load_token_sale, build_sale_transaction, monthly_schedule, resolve_time,
    require_not_finalized, require_not_paused, require_started, require_ended,
)


def compute_unlock_withdrawal(
    view: AssetTransferPort,
    symbol: str,
    buyer: str,
    timestamp: Optional[datetime] = None,
) -> PendingTransaction:
    """
    Release the part of buyer's locked tokens unlocked by now.

    With m = months elapsed since the unlock start and last = the month
    marker of the previous withdrawal:
        m >= 3: release the whole locked balance and delete the account
        else:   release initial_purchased_total * 30% * (m - last), set last = m

    Raises:
        StateError: FINALIZED, SALE_NOT_ENDED
        AuthorizationError: PAUSED
        ScheduleError: TIMESTAMP_IN_PAST, UNLOCK_NOT_OPEN, UNLOCK_WINDOW_CLOSED,
            ALREADY_WITHDRAWN_THIS_MONTH
        ValidationError: NO_ACCOUNT
    """
    now = resolve_time(view, timestamp)
    terms, state = load_token_sale(view, symbol)

    require_not_finalized(state)
    require_not_paused(state)
    require_ended(state)

    schedule = monthly_schedule(terms, state)
    months = schedule.check_open(now)

    account = state.buyers.get(buyer)
    if account is None or account.initial_purchased_total == 0:
        raise ValidationError("NO_ACCOUNT", f"{buyer} has no purchase to unlock")
    schedule.check_withdrawable(months, account.last_unlock_month)

    amount, final = schedule.release_amount(
        months, account.last_unlock_month,
        account.initial_purchased_total, account.locked_balance,
    )

    buyers = dict(state.buyers)
    if final:
        del buyers[buyer]
    else:
        buyers[buyer] = replace(
            account,
            locked_balance=account.locked_balance - amount,
            last_unlock_month=months,
        )
    new_state = replace(state, buyers=buyers)

    moves = []
    if amount > 0:
        moves.append(Move(amount, terms.sale_token, terms.custody_wallet, buyer, f"{symbol}_unlock"))
    events = [Event(EVENT_UNLOCK_COMPLETED, buyer, amount)]

    return build_sale_transaction(
        view, symbol, terms, new_state, moves, events,
        event_type="UNLOCK", source_id=buyer, origin_type=OriginType.USER_ACTION,
        timestamp=now,
    )


def compute_share_release(
    view: AssetTransferPort,
    symbol: str,
    timestamp: Optional[datetime] = None,
) -> PendingTransaction:
    """
    Release the whole reserved share to its beneficiary.

    Anyone may trigger the release; the tokens always go to the beneficiary.
    After release the share is marked released and its amount zeroed.

    Raises:
        StateError: FINALIZED, SALE_NOT_STARTED, SHARE_RELEASED
        ScheduleError: TIMESTAMP_IN_PAST, RELEASE_NOT_DUE
    """
    now = resolve_time(view, timestamp)
    terms, state = load_token_sale(view, symbol)

    require_not_finalized(state)
    require_started(state)

    share = state.reserved_share
    CliffRelease(share.release_time).check(now, share.released)

    new_state = replace(state, reserved_share=replace(share, amount=Decimal("0"), released=True))

    moves = []
    if share.amount > 0:
        moves.append(Move(share.amount, terms.sale_token, terms.custody_wallet,
                          share.beneficiary, f"{symbol}_share_release"))
    events = [Event(EVENT_SHARE_RELEASED, share.beneficiary, share.amount)]

    return build_sale_transaction(
        view, symbol, terms, new_state, moves, events,
        event_type="SHARE_RELEASE", source_id=symbol, timestamp=now,
    )
