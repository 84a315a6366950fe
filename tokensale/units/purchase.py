"""
purchase.py - Purchase Settlement

A purchase converts a payment into whole sale-token units at the current
tier price. The buyer is charged only for whole units; any remainder of the
payment stays with the buyer. Ten percent of the issued quantity is delivered
at once and the rest is locked for the monthly unlock.

Key Formulas:
    price        = calculate_price(remaining_supply)
    whole_units  = floor(payment_amount / price)
    total_cost   = whole_units * price
    issued       = whole_units scaled to the sale token's precision
    immediate    = issued * immediate_unlock (rounded down)
    locked       = issued - immediate
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal, ROUND_FLOOR

from ..core import (
    AssetTransferPort, Move, Event, PendingTransaction,
    OriginType, ValidationError, EVENT_PURCHASE_COMPLETED,
)
from ..pricing import calculate_price
from .token_sale import (
    SaleTerms, load_token_sale, open_account, build_sale_transaction, quantize_amount,
    require_not_finalized, require_not_paused, require_started, require_not_ended,
)


@dataclass(frozen=True, slots=True)
class PurchaseQuote:
    """Outcome of pricing one payment, before any transfer."""
    price: Decimal
    whole_units: int
    total_cost: Decimal
    issued_quantity: Decimal
    immediate_unlock: Decimal
    locked_quantity: Decimal


def calculate_purchase(
    payment_amount: Decimal,
    remaining_supply: Decimal,
    terms: SaleTerms,
) -> PurchaseQuote:
    """
    Price a payment against the current remaining supply.

    Pure: no ledger access, no supply or cap checks.

    Raises:
        ValidationError: AMOUNT_TOO_SMALL if the payment cannot buy one whole unit

    Example:
        >>> quote = calculate_purchase(Decimal("90"), Decimal("15000000"), terms)
        >>> quote.issued_quantity, quote.immediate_unlock, quote.locked_quantity
        (Decimal('1000.000000'), Decimal('100.000000'), Decimal('900.000000'))
    """
    price = calculate_price(remaining_supply, terms.price_tiers, terms.base_price)
    whole_units = int((payment_amount / price).to_integral_value(rounding=ROUND_FLOOR))
    if whole_units <= 0:
        raise ValidationError(
            "AMOUNT_TOO_SMALL", f"{payment_amount} does not buy one unit at {price}"
        )
    total_cost = quantize_amount(whole_units * price, terms.payment_token_decimals)
    issued = quantize_amount(Decimal(whole_units), terms.sale_token_decimals)
    immediate = quantize_amount(issued * terms.immediate_unlock, terms.sale_token_decimals)
    return PurchaseQuote(
        price=price,
        whole_units=whole_units,
        total_cost=total_cost,
        issued_quantity=issued,
        immediate_unlock=immediate,
        locked_quantity=issued - immediate,
    )


def compute_purchase(
    view: AssetTransferPort,
    symbol: str,
    buyer: str,
    payment_amount: Decimal,
) -> PendingTransaction:
    """
    Build the purchase of sale tokens by buyer for payment_amount.

    Checks run in this order, each with its own reason code: FINALIZED,
    PAUSED, SALE_NOT_STARTED, SALE_ENDED, ZERO_ADDRESS, INVALID_AMOUNT,
    SOLD_OUT, SPEND_CAP_EXHAUSTED / SPEND_CAP_EXCEEDED, AMOUNT_TOO_SMALL,
    INSUFFICIENT_SUPPLY.

    The payment is pulled from buyer through buyer's allowance to the custody
    wallet, so the ledger rejects the whole purchase when that allowance or
    buyer's balance is too small.

    Returns:
        PendingTransaction with two moves (payment in, immediate unlock out),
        the sale state change and a PurchaseCompleted event.
    """
    terms, state = load_token_sale(view, symbol)

    require_not_finalized(state)
    require_not_paused(state)
    require_started(state)
    require_not_ended(state)

    if not buyer or not buyer.strip():
        raise ValidationError("ZERO_ADDRESS", "buyer address is empty")
    if not isinstance(payment_amount, Decimal):
        payment_amount = Decimal(str(payment_amount))
    if not payment_amount.is_finite() or payment_amount <= 0:
        raise ValidationError("INVALID_AMOUNT", f"payment must be positive, got {payment_amount}")
    if state.remaining_supply <= 0:
        raise ValidationError("SOLD_OUT", "no sale supply remains")

    state = open_account(state, buyer, terms)
    account = state.buyers[buyer]
    if payment_amount > account.spend_cap:
        code = "SPEND_CAP_EXHAUSTED" if account.spend_cap == 0 else "SPEND_CAP_EXCEEDED"
        raise ValidationError(code, f"payment {payment_amount} above remaining cap {account.spend_cap}")

    quote = calculate_purchase(payment_amount, state.remaining_supply, terms)
    if quote.issued_quantity > state.remaining_supply:
        raise ValidationError(
            "INSUFFICIENT_SUPPLY",
            f"{quote.issued_quantity} requested, {state.remaining_supply} remaining",
        )

    buyers = dict(state.buyers)
    buyers[buyer] = replace(
        account,
        spend_cap=account.spend_cap - quote.total_cost,
        initial_purchased_total=account.initial_purchased_total + quote.issued_quantity,
        locked_balance=account.locked_balance + quote.locked_quantity,
    )
    new_state = replace(
        state,
        remaining_supply=state.remaining_supply - quote.issued_quantity,
        buyers=buyers,
    )

    contract_id = f"{symbol}_purchase"
    moves = [
        Move(quote.total_cost, terms.payment_token, buyer, terms.custody_wallet,
             contract_id, spender=terms.custody_wallet),
    ]
    if quote.immediate_unlock > 0:
        moves.append(Move(quote.immediate_unlock, terms.sale_token, terms.custody_wallet,
                          buyer, contract_id))
    events = [Event(EVENT_PURCHASE_COMPLETED, buyer, quote.total_cost, quote.issued_quantity)]

    return build_sale_transaction(
        view, symbol, terms, new_state, moves, events,
        event_type="PURCHASE", source_id=buyer, origin_type=OriginType.USER_ACTION,
    )
