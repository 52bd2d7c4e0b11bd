"""
Atomicity Conformance Tests

INVARIANT: Every protocol operation is all-or-nothing.

    ∀ operation op:
        op succeeds ⟹ its token moves, allowance changes, record transitions
                       and events are all applied
        op fails    ⟹ none of them are

A loan is never recorded without its collateral, and principal never leaves
the pool without the entry being marked MATCHED.
"""

import pytest
from hypothesis import given, settings
from hypothesis import strategies as st
from decimal import Decimal

from lending_ledger import (
    Ledger, ExecuteResult, LedgerError,
)
from lending_ledger.units.lending_pool import compute_take_collateral_loan, compute_add_to_pool
from tests.conftest import START, make_protocol, deposit, borrow


def _fingerprint(ledger):
    """Everything an operation could touch."""
    return (
        {(w, u): ledger.get_balance(w, u) for w in sorted(ledger.registered_wallets) for u in ledger.list_units()},
        {u: ledger.get_unit_state(u) for u in ledger.list_units()},
        len(ledger.transaction_log),
        len(ledger.event_log),
    )


def _protocol():
    ledger = Ledger("conformance", START, verbose=False, test_mode=True)
    tx, ty, clc = make_protocol(ledger)
    return ledger, tx, ty, clc


class TestFailedOperationsChangeNothing:

    def test_take_without_collateral_allowance(self):
        ledger, tx, ty, clc = _protocol()
        deposit(tx, clc, "lender1", Decimal("1000"))
        before = _fingerprint(ledger)
        with pytest.raises(LedgerError):
            clc.take_collateral_loan("borrower1", 0)
        assert _fingerprint(ledger) == before

    def test_take_without_collateral_funds(self):
        ledger, tx, ty, clc = _protocol()
        deposit(tx, clc, "lender1", Decimal("1000"))
        ty.transfer("borrower1", "deployer", Decimal("9500"))
        ty.approve("borrower1", clc.address, Decimal("1000"))
        before = _fingerprint(ledger)
        with pytest.raises(LedgerError):
            clc.take_collateral_loan("borrower1", 0)
        assert _fingerprint(ledger) == before

    def test_repay_by_stranger(self):
        ledger, tx, ty, clc = _protocol()
        loan_id = borrow(ty, clc, "borrower1", deposit(tx, clc, "lender1", Decimal("1000")))
        tx.approve("borrower2", clc.address, Decimal("5000"))
        before = _fingerprint(ledger)
        with pytest.raises(LedgerError):
            clc.repay("borrower2", loan_id)
        assert _fingerprint(ledger) == before

    def test_withdraw_before_maturity(self):
        ledger, tx, ty, clc = _protocol()
        entry_id = deposit(tx, clc, "lender1", Decimal("1000"))
        before = _fingerprint(ledger)
        with pytest.raises(LedgerError):
            clc.withdraw("lender1", entry_id)
        assert _fingerprint(ledger) == before


class TestLedgerLevelAtomicity:

    def test_rejected_loan_leaves_no_partial_effect(self):
        """
        A take-loan transaction whose collateral leg can no longer be paid
        is rejected as a whole: no principal leaves, no loan is recorded.
        """
        ledger, tx, ty, clc = _protocol()
        deposit(tx, clc, "lender1", Decimal("1000"))
        ty.approve("borrower1", clc.address, Decimal("1000"))
        pending = compute_take_collateral_loan(ledger, clc.symbol, "borrower1", 0)

        # Collateral vanishes between compute and execute
        ledger.set_balance("borrower1", "TY", Decimal("0"))
        before = _fingerprint(ledger)

        assert ledger.execute(pending) == ExecuteResult.REJECTED
        assert _fingerprint(ledger) == before
        assert clc.list_loans() == []

    def test_events_only_with_applied_transaction(self):
        ledger, tx, ty, clc = _protocol()
        tx.approve("lender1", clc.address, Decimal("1000"))
        pending = compute_add_to_pool(ledger, clc.symbol, "lender1", Decimal("1000"), 3)
        ledger.set_balance("lender1", "TX", Decimal("1"))

        assert ledger.execute(pending) == ExecuteResult.REJECTED
        assert clc.get_past_events("AddedToPool") == []
        assert tx.allowance("lender1", clc.address) == Decimal("1000")


class TestAtomicityProperties:

    @given(st.integers(min_value=1, max_value=5000))
    @settings(max_examples=50, deadline=None)
    def test_loan_exists_iff_collateral_posted(self, collateral_held):
        """
        PROPERTY: Whatever the borrower's collateral balance, either the
        loan and its collateral both exist or neither does.
        """
        ledger, tx, ty, clc = _protocol()
        deposit(tx, clc, "lender1", Decimal("2500"))
        ty.transfer("borrower1", "deployer", Decimal("10000") - Decimal(collateral_held))
        ty.approve("borrower1", clc.address, Decimal("2500"))

        try:
            clc.take_collateral_loan("borrower1", 0)
        except LedgerError:
            pass

        loans = clc.list_loans()
        if loans:
            assert ty.balance_of(clc.address) == Decimal("2500")
            assert tx.balance_of("borrower1") == Decimal("12500")
        else:
            assert ty.balance_of(clc.address) == Decimal("0")
            assert tx.balance_of(clc.address) == Decimal("2500")
        assert bool(loans) == (collateral_held >= 2500)
