"""
test_demo.py - The walkthrough script runs end to end
"""

from decimal import Decimal

import demo
from tokensale import SalePhase


def test_demo_runs_in_quick_mode(monkeypatch, capsys):
    monkeypatch.setattr(demo, "QUICK_MODE", True)
    engine = demo.main()

    out = capsys.readouterr().out
    assert "WALKTHROUGH COMPLETE" in out
    assert "SPEND_CAP_EXCEEDED" in out
    assert "Valid: True" in out
    assert engine.phase() == SalePhase.FINALIZED
    assert engine.ledger.get_balance("team", "SALE") == Decimal("15000000")
