"""
conftest.py - Shared pytest fixtures for lending ledger tests

Provides common fixtures used across unit, functional and conformance tests:
- Basic ledgers (empty, with both tokens deployed)
- A deployed LendingLedger with funded lenders and borrowers
- Comparison utilities
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from lending_ledger import (
    Ledger, FungibleAsset, LendingLedger, DurationTerm, LifecycleEngine,
    UNIT_TYPE_LENDING_POOL, lending_pool_contract,
)


START = datetime(2025, 1, 1)
SUPPLY = Decimal("1000000")

LENDERS = ("lender1", "lender2")
BORROWERS = ("borrower1", "borrower2")


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def make_protocol(
    ledger: Ledger,
    funding: Decimal = Decimal("10000"),
    **pool_kwargs,
):
    """
    Deploy TX (principal) and TY (collateral), fund the standard parties and
    deploy a LendingLedger at "clc". Returns (tx, ty, clc).
    """
    tx = FungibleAsset.deploy(ledger, "TX", "Token X", "deployer", SUPPLY)
    ty = FungibleAsset.deploy(ledger, "TY", "Token Y", "deployer", SUPPLY)
    clc = LendingLedger(ledger, tx, ty, deployer="deployer", **pool_kwargs)
    for wallet in LENDERS + BORROWERS:
        tx.transfer("deployer", wallet, funding)
        ty.transfer("deployer", wallet, funding)
    return tx, ty, clc


def deposit(tx, clc, lender, amount, term=DurationTerm.THREE_MONTHS) -> int:
    """Approve and add_to_pool in one go."""
    tx.approve(lender, clc.address, amount)
    return clc.add_to_pool(lender, amount, term)


def borrow(ty, clc, borrower, entry_id) -> int:
    """Approve exactly the required collateral and take the loan."""
    entry = clc.get_entry_by_id(entry_id)
    ratio = clc.terms.collateral_ratio
    ty.approve(borrower, clc.address, entry.principal * ratio)
    return clc.take_collateral_loan(borrower, entry_id)


def snapshot_balances(ledger: Ledger):
    """All (wallet, unit) -> balance pairs, for before/after comparisons."""
    return {
        (wallet, unit): ledger.get_balance(wallet, unit)
        for wallet in sorted(ledger.registered_wallets)
        for unit in ledger.list_units()
    }


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def ledger():
    """Empty ledger at 2025-01-01 with test mode on."""
    return Ledger("test", START, verbose=False, test_mode=True)


@pytest.fixture
def protocol(ledger):
    """(ledger, tx, ty, clc) with default pool terms and funded parties."""
    tx, ty, clc = make_protocol(ledger)
    return ledger, tx, ty, clc


@pytest.fixture
def fee_free_protocol(ledger):
    """As protocol, but with fees disabled."""
    tx, ty, clc = make_protocol(ledger, fee_rate_bps=0)
    return ledger, tx, ty, clc


@pytest.fixture
def engine(protocol):
    """LifecycleEngine with the lending pool contract registered."""
    ledger = protocol[0]
    engine = LifecycleEngine(ledger)
    engine.register(UNIT_TYPE_LENDING_POOL, lending_pool_contract)
    return engine


@pytest.fixture
def after_maturity():
    """A time past the three-month term of any entry deposited at START."""
    return START + timedelta(days=91)
