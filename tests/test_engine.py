"""
test_engine.py - Unit tests for LifecycleEngine

Tests:
- Contract registration and polling order
- step() advances time and applies contract transactions
- Cascading passes stop when nothing fires
- Bad contract results raise
- Integration with the lending pool contract (automatic defaults)
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from lending_ledger import (
    Ledger, LifecycleEngine, LedgerError, UnitStateChange,
    LoanStatus, UNIT_TYPE_TOKEN, UNIT_TYPE_LENDING_POOL,
    build_transaction, empty_pending_transaction, create_token_unit,
    lending_pool_contract,
)
from .conftest import START, deposit, borrow


class MockContract:
    """Mock SmartContract that bumps a counter in unit state a fixed number of times."""

    def __init__(self, fire_times=0):
        self.fire_times = fire_times
        self.calls = []

    def check_lifecycle(self, view, symbol, timestamp):
        self.calls.append(symbol)
        state = view.get_unit_state(symbol)
        count = state.get("count", 0)
        if count >= self.fire_times:
            return empty_pending_transaction(view)
        return build_transaction(view, [], [
            UnitStateChange(symbol, state, {**state, "count": count + 1}),
        ])


def _ledger():
    ledger = Ledger("test", START, verbose=False)
    ledger.register_unit(create_token_unit("TB", "Token B", owner="deployer"))
    ledger.register_unit(create_token_unit("TA", "Token A", owner="deployer"))
    return ledger


class TestLifecycleEngineBasic:

    def test_step_advances_time(self):
        ledger = _ledger()
        engine = LifecycleEngine(ledger)
        engine.step(START + timedelta(days=1))
        assert ledger.current_time == START + timedelta(days=1)

    def test_polls_units_in_symbol_order(self):
        ledger = _ledger()
        contract = MockContract()
        engine = LifecycleEngine(ledger, {UNIT_TYPE_TOKEN: contract})
        engine.step(START)
        assert contract.calls == ["TA", "TB"]

    def test_cascades_until_stable(self):
        ledger = _ledger()
        engine = LifecycleEngine(ledger)
        engine.register(UNIT_TYPE_TOKEN, MockContract(fire_times=3))
        executed = engine.step(START)
        assert len(executed) == 6
        assert ledger.get_unit_state("TA")["count"] == 3

    def test_max_passes_bounds_cascade(self):
        ledger = _ledger()
        engine = LifecycleEngine(ledger)
        engine.max_passes = 2
        engine.register(UNIT_TYPE_TOKEN, MockContract(fire_times=100))
        engine.step(START)
        assert ledger.get_unit_state("TA")["count"] == 2

    def test_plain_callable_contract(self):
        ledger = _ledger()
        seen = []

        def contract(view, symbol, timestamp):
            seen.append((symbol, timestamp))
            return empty_pending_transaction(view)

        engine = LifecycleEngine(ledger, {UNIT_TYPE_TOKEN: contract})
        engine.step(START)
        assert seen == [("TA", START), ("TB", START)]

    def test_non_pending_result_raises(self):
        ledger = _ledger()
        engine = LifecycleEngine(ledger, {UNIT_TYPE_TOKEN: lambda view, symbol, t: None})
        with pytest.raises(LedgerError, match="must return PendingTransaction"):
            engine.step(START)

    def test_run_over_timestamps(self):
        ledger = _ledger()
        engine = LifecycleEngine(ledger, {UNIT_TYPE_TOKEN: MockContract(fire_times=1)})
        executed = engine.run([START, START + timedelta(days=1)])
        assert len(executed) == 2
        assert ledger.current_time == START + timedelta(days=1)


class TestLendingPoolContract:

    def test_nothing_due_before_maturity(self, protocol, engine):
        ledger, tx, ty, clc = protocol
        entry_id = deposit(tx, clc, "lender1", Decimal("1000"))
        borrow(ty, clc, "borrower1", entry_id)
        assert engine.step(START + timedelta(days=30)) == []
        assert clc.get_loan_by_id(0).status == LoanStatus.ACTIVE

    def test_defaults_every_overdue_loan(self, protocol, engine, after_maturity):
        ledger, tx, ty, clc = protocol
        e0 = deposit(tx, clc, "lender1", Decimal("1000"))
        e1 = deposit(tx, clc, "lender2", Decimal("2000"))
        e2 = deposit(tx, clc, "lender1", Decimal("500"), term=12)
        borrow(ty, clc, "borrower1", e0)
        borrow(ty, clc, "borrower2", e1)
        borrow(ty, clc, "borrower1", e2)

        executed = engine.step(after_maturity)

        assert len(executed) == 1
        assert [l.status for l in clc.list_loans()] == [
            LoanStatus.DEFAULTED, LoanStatus.DEFAULTED, LoanStatus.ACTIVE,
        ]
        events = clc.get_past_events("LoanDefaulted")
        assert [e["loan_id"] for e in events] == [0, 1]
        assert clc.reconcile()["valid"]

    def test_repaid_loans_are_left_alone(self, protocol, engine, after_maturity):
        ledger, tx, ty, clc = protocol
        entry_id = deposit(tx, clc, "lender1", Decimal("1000"))
        loan_id = borrow(ty, clc, "borrower1", entry_id)
        tx.approve("borrower1", clc.address, clc.get_loan_by_id(loan_id).amount_due)
        clc.repay("borrower1", loan_id)

        assert engine.step(after_maturity) == []
        assert clc.get_loan_by_id(loan_id).status == LoanStatus.REPAID

    def test_contract_property_is_pool_contract(self, protocol):
        clc = protocol[3]
        assert clc.contract is lending_pool_contract
