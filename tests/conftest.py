"""
conftest.py - Shared pytest fixtures for token sale tests

Provides:
- A funded ledger (BUSD payment token, SALE sale token, owner and buyers)
- Sale engines at each phase: deployed, active (initialized) and ended
"""

import pytest
from decimal import Decimal

from tests.sale_setup import END_TIME, make_ledger, make_engine, initialize


@pytest.fixture
def ledger():
    """Funded ledger at DEPLOY_TIME, no sale registered."""
    return make_ledger()


@pytest.fixture
def engine(ledger):
    """Sale deployed but not initialized."""
    return make_engine(ledger)


@pytest.fixture
def active_engine(engine):
    """Sale initialized at DEPLOY_TIME (sale start 10:00 the same day)."""
    return initialize(engine)


@pytest.fixture
def ended_engine(active_engine):
    """Sale where alice bought 90 BUSD worth, ended at END_TIME."""
    active_engine.buy("alice", Decimal("90"))
    active_engine.end_sale("owner", END_TIME)
    return active_engine
