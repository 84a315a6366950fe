#!/usr/bin/env python3
"""
demo.py - Interactive Walkthrough: One Token Sale From Deploy to Finalize

Each step drives the sale one phase further. Press Enter to advance.

WHAT YOU'LL SEE:
  1-2:  Setup      - Ledger, tokens, wallets, sale deployment and funding
  3-4:  Sale       - Tiered purchases, spend caps, rejections that change nothing
  5-6:  Unlocks    - End of sale, three monthly unlock withdrawals
  7-8:  Wrap-up    - Team share release, owner withdrawals, finalization

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import sys

from tokensale import (
    AssetLedger, SaleEngine, SaleTerms, SaleError, token,
    EVENT_PURCHASE_COMPLETED, EVENT_UNLOCK_COMPLETED,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the walkthrough. Modify these to experiment."""
    deploy_time: datetime = datetime(2025, 1, 1, 8, 0)
    end_time: datetime = datetime(2025, 1, 15, 12, 0)

    token_supply: Decimal = Decimal("100000000")
    buyer_funds: Decimal = Decimal("1000")

    # (buyer, BUSD paid)
    purchases: tuple = (("alice", Decimal("90")), ("bob", Decimal("100")), ("carol", Decimal("450")))


CONFIG = DemoConfig()
SYMBOL = "SALE_ROUND_1"

QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    print(f"\n--- {text} ---\n")


def show_buyers(engine: SaleEngine):
    ledger = engine.ledger
    print(f"{'buyer':<8} {'BUSD':>12} {'SALE':>14} {'locked':>12} {'cap':>10} {'month':>6}")
    for buyer in (b for b, _ in CONFIG.purchases):
        print(f"{buyer:<8} {ledger.get_balance(buyer, 'BUSD'):>12} "
              f"{ledger.get_balance(buyer, 'SALE'):>14} {engine.locked_balance(buyer):>12} "
              f"{engine.spend_cap(buyer):>10} {engine.last_unlock_month(buyer):>6}")


# ============================================================================
# STEPS
# ============================================================================

def step_01_setup() -> AssetLedger:
    """Tokens, wallets and funded buyers."""
    step_header(1, "The Ledger",
        "Register the payment and sale tokens and fund three buyers.")

    ledger = AssetLedger("demo", initial_time=CONFIG.deploy_time, verbose=True)
    ledger.register_unit(token("BUSD", "Binance USD", 18))
    ledger.register_unit(token("SALE", "Sale Token", 6))
    for wallet in ("owner", "team", "token_sale") + tuple(b for b, _ in CONFIG.purchases):
        ledger.register_wallet(wallet)

    ledger.issue("owner", "SALE", CONFIG.token_supply)
    for buyer, _ in CONFIG.purchases:
        ledger.issue(buyer, "BUSD", CONFIG.buyer_funds)
        ledger.approve(buyer, "token_sale", "BUSD", CONFIG.buyer_funds)

    section_header("Supplies")
    print(f"SALE outstanding: {ledger.total_supply('SALE')}")
    print(f"BUSD outstanding: {ledger.total_supply('BUSD')}")
    return ledger


def step_02_deploy(ledger: AssetLedger) -> SaleEngine:
    """Deploy the sale and pull funding into custody."""
    step_header(2, "Deploy and Initialize",
        "Create the sale unit, then fund custody with 15% for sale and 15% reserved.")

    terms = SaleTerms(owner_wallet="owner", custody_wallet="token_sale", team_wallet="team")
    engine = SaleEngine.deploy(ledger, SYMBOL, terms, name="Round 1")

    ledger.approve("owner", "token_sale", "SALE", CONFIG.token_supply * Decimal("0.30"))
    engine.initialize("owner")

    state = engine.state()
    section_header("Sale State")
    print(f"Public supply:   {state.total_supply}")
    print(f"Reserved share:  {state.reserved_share.amount} for {state.reserved_share.beneficiary}")
    print(f"Sale starts:     {state.sale_start_date}")
    print(f"Share unlocks:   {state.reserved_share.release_time}")
    print(f"Current price:   {engine.current_price()} BUSD")
    return engine


def step_03_purchases(engine: SaleEngine) -> SaleEngine:
    """Buy at the current tier price."""
    step_header(3, "Purchases",
        "Each purchase buys whole tokens: 10% delivered now, 90% locked.")

    day = timedelta(days=1)
    for i, (buyer, amount) in enumerate(CONFIG.purchases, start=1):
        issued = engine.buy(buyer, amount, CONFIG.deploy_time + i * day)
        print(f"{buyer} paid {amount} BUSD -> {issued} SALE")

    section_header("Buyers")
    show_buyers(engine)
    print(f"\nRemaining supply: {engine.remaining_supply()}")
    print(f"Purchases logged: {len(engine.ledger.events(EVENT_PURCHASE_COMPLETED))}")
    return engine


def step_04_rejections(engine: SaleEngine) -> SaleEngine:
    """Failed purchases leave no trace."""
    step_header(4, "Rejections",
        "A purchase above the spend cap fails with a reason code and changes nothing.")

    before = engine.state()
    for buyer, amount in (("alice", Decimal("500")), ("bob", Decimal("0")), ("", Decimal("10"))):
        try:
            engine.buy(buyer, amount)
        except SaleError as exc:
            print(f"buy({buyer!r}, {amount}) -> {exc.code}")

    assert engine.state() == before
    print("\nSale state unchanged.")
    return engine


def step_05_end_sale(engine: SaleEngine) -> SaleEngine:
    step_header(5, "End of Sale",
        "Closing the sale fixes the unlock start date; months count from there.")

    engine.end_sale("owner", CONFIG.end_time)
    print(f"Phase:        {engine.phase().value}")
    print(f"Unlock start: {engine.state().unlock_start_date}")
    return engine


def step_06_unlocks(engine: SaleEngine) -> SaleEngine:
    step_header(6, "Monthly Unlocks",
        "Each month releases 30% of the purchase; month three releases the rest.")

    start = engine.state().unlock_start_date
    for month in (1, 2, 3):
        when = start + timedelta(days=30 * month)
        section_header(f"Month {month} ({when:%Y-%m-%d})")
        for buyer, _ in CONFIG.purchases:
            released = engine.withdraw_unlocked(buyer, when)
            print(f"{buyer} withdrew {released}")

    section_header("Buyers")
    show_buyers(engine)
    print(f"\nUnlocks logged: {len(engine.ledger.events(EVENT_UNLOCK_COMPLETED))}")
    return engine


def step_07_share_release(engine: SaleEngine) -> SaleEngine:
    step_header(7, "Reserved Share",
        "The team allocation is released in one piece once its cliff has passed.")

    release_time = engine.state().reserved_share.release_time
    engine.release_share(release_time)
    print(f"team SALE: {engine.ledger.get_balance('team', 'SALE')}")
    return engine


def step_08_wrap_up(engine: SaleEngine, supplies: dict) -> SaleEngine:
    step_header(8, "Withdrawals and Finalize",
        "The owner collects payments and unsold supply, then decommissions the sale.")

    ledger = engine.ledger
    engine.withdraw_payment("owner")
    engine.withdraw_unsold("owner")
    engine.finalize("owner")

    print(f"owner BUSD:       {ledger.get_balance('owner', 'BUSD')}")
    print(f"owner SALE:       {ledger.get_balance('owner', 'SALE')}")
    print(f"custody SALE:     {ledger.get_balance('token_sale', 'SALE')}")
    print(f"Phase:            {engine.phase().value}")

    section_header("Conservation")
    result = ledger.verify_double_entry(expected_supplies=supplies)
    for unit, supply in sorted(result['supplies'].items()):
        print(f"{unit:<14} {supply}")
    print(f"\nValid: {result['valid']}")
    return engine


def main():
    """Run the complete walkthrough."""
    print("=" * 70)
    print("       TOKEN SALE - INTERACTIVE WALKTHROUGH")
    print("=" * 70)

    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")
    wait_for_enter()

    ledger = step_01_setup()
    supplies = {"SALE": ledger.total_supply("SALE"), "BUSD": ledger.total_supply("BUSD")}
    wait_for_enter()

    engine = step_02_deploy(ledger)
    wait_for_enter()

    engine = step_03_purchases(engine)
    wait_for_enter()

    engine = step_04_rejections(engine)
    wait_for_enter()

    engine = step_05_end_sale(engine)
    wait_for_enter()

    engine = step_06_unlocks(engine)
    wait_for_enter()

    engine = step_07_share_release(engine)
    wait_for_enter()

    engine = step_08_wrap_up(engine, supplies)

    print("\n" + "=" * 70)
    print("       WALKTHROUGH COMPLETE")
    print("=" * 70)
    print("""
    Next steps:
      - See tokensale/units/*.py for the sale operations
      - Run tests: pytest tests/
    """)
    return engine


if __name__ == "__main__":
    main()
