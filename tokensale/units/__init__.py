"""
Units module - The token sale unit and the operations on it.

- token_sale: terms/state dataclasses, buyer registry, guards, queries
- purchase: purchase settlement
- unlock: buyer monthly unlock and reserved share release
- sale_admin: initialize, end, pause, residual withdrawals, finalize

All factories and compute_* functions are re-exported here for convenience.
"""

# Sale unit, state and queries
from .token_sale import (
    SALE_TOKEN_DECIMALS,
    PAYMENT_TOKEN_DECIMALS,
    SalePhase,
    SaleTerms,
    SaleState,
    BuyerAccount,
    ReservedShare,
    quantize_amount,
    load_token_sale,
    to_state_dict,
    create_token_sale_unit,
    open_account,
    build_sale_transaction,
    get_spend_cap,
    get_locked_balance,
    get_last_unlock_month,
    get_remaining_supply,
    get_current_price,
    get_sale_phase,
    is_sale_active,
    is_unlock_active,
    resolve_time,
    monthly_schedule,
)

# Purchase settlement
from .purchase import (
    PurchaseQuote,
    calculate_purchase,
    compute_purchase,
)

# Vesting withdrawals
from .unlock import (
    compute_unlock_withdrawal,
    compute_share_release,
)

# Sale controller
from .sale_admin import (
    compute_initialize,
    compute_end_sale,
    compute_set_paused,
    compute_withdraw_payment,
    compute_withdraw_unsold,
    compute_finalize,
)
