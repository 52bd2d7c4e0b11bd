"""
lending_ledger - Collateralized Leverage Lending Ledger

Lenders deposit a principal token into term entries; borrowers post a second
token as collateral to draw one entry's principal. Built on a double-entry
ledger where every operation is a single atomic transaction.

Usage:
    from decimal import Decimal
    from lending_ledger import Ledger, FungibleAsset, LendingLedger, DurationTerm

    ledger = Ledger("main", verbose=False)
    tx = FungibleAsset.deploy(ledger, "TX", "Token X", "deployer", Decimal("1000000"))
    ty = FungibleAsset.deploy(ledger, "TY", "Token Y", "deployer", Decimal("1000000"))
    clc = LendingLedger(ledger, tx, ty, deployer="deployer")

    tx.transfer("deployer", "lender1", Decimal("1000"))
    tx.approve("lender1", clc.address, Decimal("1000"))
    entry_id = clc.add_to_pool("lender1", Decimal("1000"), DurationTerm.THREE_MONTHS)

    ty.transfer("deployer", "borrower1", Decimal("1000"))
    ty.approve("borrower1", clc.address, Decimal("1000"))
    loan_id = clc.take_collateral_loan("borrower1", entry_id)
"""

# Core types
from .core import (
    LedgerView,
    SmartContract,
    Move,
    LogEvent,
    log_event,
    Transaction,
    PendingTransaction,
    TransactionOrigin,
    OriginType,
    build_transaction,
    empty_pending_transaction,
    Unit,
    UnitStateChange,
    ExecuteResult,
    to_decimal,
    LedgerError,
    InsufficientFunds,
    InsufficientAllowance,
    UnitNotRegistered,
    WalletNotRegistered,
    EntryNotFound,
    LoanNotFound,
    InvalidStatus,
    NotAuthorized,
    TermNotElapsed,
    InvalidTerm,
    StaleStateError,
    DuplicateIntent,
    SYSTEM_WALLET,
    UNIT_TYPE_TOKEN,
    UNIT_TYPE_LENDING_POOL,
    DEFAULT_TOKEN_DECIMALS,
)

# Ledger
from .ledger import Ledger, execute_or_raise

# Lifecycle
from .lifecycle_engine import LifecycleEngine

# Units
from .units import (
    FungibleAsset,
    create_token_unit,
    get_allowance,
    get_nonce,
    DurationTerm,
    EntryStatus,
    LoanStatus,
    PoolTerms,
    PoolEntry,
    Loan,
    PoolSnapshot,
    DEFAULT_COLLATERAL_RATIO,
    DEFAULT_FEE_RATE_BPS,
    SECONDS_PER_MONTH,
    create_lending_pool,
    load_pool,
    calculate_required_collateral,
    calculate_fee,
    lending_pool_contract,
)

# Facade
from .protocol import LendingLedger

__version__ = "0.1.0"

__all__ = [
    # Core
    'LedgerView',
    'SmartContract',
    'Move',
    'LogEvent',
    'log_event',
    'Transaction',
    'PendingTransaction',
    'TransactionOrigin',
    'OriginType',
    'build_transaction',
    'empty_pending_transaction',
    'Unit',
    'UnitStateChange',
    'ExecuteResult',
    'to_decimal',
    # Exceptions
    'LedgerError',
    'InsufficientFunds',
    'InsufficientAllowance',
    'UnitNotRegistered',
    'WalletNotRegistered',
    'EntryNotFound',
    'LoanNotFound',
    'InvalidStatus',
    'NotAuthorized',
    'TermNotElapsed',
    'InvalidTerm',
    'StaleStateError',
    'DuplicateIntent',
    # Constants
    'SYSTEM_WALLET',
    'UNIT_TYPE_TOKEN',
    'UNIT_TYPE_LENDING_POOL',
    'DEFAULT_TOKEN_DECIMALS',
    'DEFAULT_COLLATERAL_RATIO',
    'DEFAULT_FEE_RATE_BPS',
    'SECONDS_PER_MONTH',
    # Ledger
    'Ledger',
    'execute_or_raise',
    'LifecycleEngine',
    # Units
    'FungibleAsset',
    'create_token_unit',
    'get_allowance',
    'get_nonce',
    'DurationTerm',
    'EntryStatus',
    'LoanStatus',
    'PoolTerms',
    'PoolEntry',
    'Loan',
    'PoolSnapshot',
    'create_lending_pool',
    'load_pool',
    'calculate_required_collateral',
    'calculate_fee',
    'lending_pool_contract',
    # Facade
    'LendingLedger',
]
