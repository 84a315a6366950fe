"""
tokensale - Token Sale and Vesting Ledger

An in-memory asset ledger and a token sale engine: tiered pricing, per-buyer
spend caps, purchase settlement, monthly buyer unlocks and a cliff release of
a reserved allocation.

Usage:
    from tokensale import AssetLedger, SaleEngine, SaleTerms, token

    ledger = AssetLedger("main")
    ledger.register_unit(token("BUSD", "Binance USD", 18))
    ledger.register_unit(token("SALE", "Sale Token", 6))
    for wallet in ("owner", "token_sale", "team", "alice"):
        ledger.register_wallet(wallet)
    ledger.issue("owner", "SALE", Decimal("100000000"))
    ledger.issue("alice", "BUSD", Decimal("1000"))

    engine = SaleEngine.deploy(ledger, "SALE_ROUND_1", SaleTerms(
        owner_wallet="owner", custody_wallet="token_sale", team_wallet="team"))
    ledger.approve("owner", "token_sale", "SALE", Decimal("30000000"))
    engine.initialize("owner")

    ledger.approve("alice", "token_sale", "BUSD", Decimal("500"))
    engine.buy("alice", Decimal("90"))   # 1000 SALE, 100 delivered, 900 locked
"""

# Core types
from .core import (
    AssetTransferPort,
    Move,
    Event,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    LedgerError,
    InsufficientFunds,
    InsufficientAllowance,
    TransferRuleViolation,
    UnitNotRegistered,
    WalletNotRegistered,
    SaleError,
    StateError,
    AuthorizationError,
    ValidationError,
    ScheduleError,
    TransferError,
    non_transferable_rule,
    token,
    SYSTEM_WALLET,
    UNIT_TYPE_TOKEN,
    UNIT_TYPE_TOKEN_SALE,
    QUANTITY_EPSILON,
    EVENT_FUNDING_TRANSFERRED,
    EVENT_SHARE_RELEASED,
    EVENT_PURCHASE_COMPLETED,
    EVENT_UNLOCK_COMPLETED,
)

# Ledger
from .ledger import AssetLedger

# Pricing
from .pricing import (
    DEFAULT_PRICE_TIERS,
    BASE_PRICE,
    calculate_price,
    price_curve,
)

# Vesting
from .vesting import (
    DAY,
    MONTH,
    months_elapsed,
    days_elapsed,
    next_daily_boundary,
    MonthlyUnlock,
    CliffRelease,
)

# Token sale unit and operations
from .units import (
    SalePhase,
    SaleTerms,
    SaleState,
    BuyerAccount,
    ReservedShare,
    PurchaseQuote,
    create_token_sale_unit,
    load_token_sale,
    calculate_purchase,
    compute_purchase,
    compute_unlock_withdrawal,
    compute_share_release,
    compute_initialize,
    compute_end_sale,
    compute_set_paused,
    compute_withdraw_payment,
    compute_withdraw_unsold,
    compute_finalize,
)

# Engine
from .sale_engine import SaleEngine

__all__ = [
    # Core
    'AssetTransferPort', 'Move', 'Event', 'Transaction', 'PendingTransaction',
    'TransactionOrigin', 'OriginType', 'build_transaction',
    'Unit', 'UnitStateChange', 'ExecuteResult',
    'LedgerError', 'InsufficientFunds', 'InsufficientAllowance', 'TransferRuleViolation',
    'UnitNotRegistered', 'WalletNotRegistered',
    'SaleError', 'StateError', 'AuthorizationError', 'ValidationError',
    'ScheduleError', 'TransferError',
    'non_transferable_rule', 'token',
    'SYSTEM_WALLET', 'UNIT_TYPE_TOKEN', 'UNIT_TYPE_TOKEN_SALE', 'QUANTITY_EPSILON',
    'EVENT_FUNDING_TRANSFERRED', 'EVENT_SHARE_RELEASED',
    'EVENT_PURCHASE_COMPLETED', 'EVENT_UNLOCK_COMPLETED',
    # Ledger
    'AssetLedger',
    # Pricing
    'DEFAULT_PRICE_TIERS', 'BASE_PRICE', 'calculate_price', 'price_curve',
    # Vesting
    'DAY', 'MONTH', 'months_elapsed', 'days_elapsed', 'next_daily_boundary',
    'MonthlyUnlock', 'CliffRelease',
    # Sale
    'SalePhase', 'SaleTerms', 'SaleState', 'BuyerAccount', 'ReservedShare', 'PurchaseQuote',
    'create_token_sale_unit', 'load_token_sale', 'calculate_purchase',
    'compute_purchase', 'compute_unlock_withdrawal', 'compute_share_release',
    'compute_initialize', 'compute_end_sale', 'compute_set_paused',
    'compute_withdraw_payment', 'compute_withdraw_unsold', 'compute_finalize',
    # Engine
    'SaleEngine',
]

__version__ = '1.0.0'
