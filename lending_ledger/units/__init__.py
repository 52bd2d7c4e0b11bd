"""
Units module - Factory functions and pure operations for ledger units.

- Fungible tokens (the principal and collateral assets)
- The collateralized lending pool (entries and loans)

All unit factories and related functions are re-exported here for convenience.
"""

# Fungible tokens
from .token import (
    FungibleAsset,
    create_token_unit,
    get_allowance,
    get_nonce,
    get_token_owner,
    transfer_parts,
    transfer_from_parts,
    compute_issue,
    compute_transfer,
    compute_transfer_from,
    compute_approve,
)

# Lending pool
from .lending_pool import (
    DurationTerm,
    EntryStatus,
    LoanStatus,
    PoolTerms,
    PoolEntry,
    Loan,
    PoolSnapshot,
    SECONDS_PER_MONTH,
    SECONDS_PER_YEAR,
    DEFAULT_COLLATERAL_RATIO,
    DEFAULT_FEE_RATE_BPS,
    load_pool,
    to_state_dict as pool_to_state_dict,
    calculate_required_collateral,
    calculate_fee,
    calculate_reconciliation,
    parse_term,
    create_lending_pool,
    get_entry,
    get_loan,
    compute_reconciliation,
    compute_add_to_pool,
    compute_take_collateral_loan,
    compute_repay,
    compute_default,
    compute_overdue_defaults,
    compute_withdraw,
    lending_pool_contract,
    transact as lending_pool_transact,
)

__all__ = [
    # Tokens
    'FungibleAsset',
    'create_token_unit',
    'get_allowance',
    'get_nonce',
    'get_token_owner',
    'transfer_parts',
    'transfer_from_parts',
    'compute_issue',
    'compute_transfer',
    'compute_transfer_from',
    'compute_approve',
    # Lending pool
    'DurationTerm',
    'EntryStatus',
    'LoanStatus',
    'PoolTerms',
    'PoolEntry',
    'Loan',
    'PoolSnapshot',
    'SECONDS_PER_MONTH',
    'SECONDS_PER_YEAR',
    'DEFAULT_COLLATERAL_RATIO',
    'DEFAULT_FEE_RATE_BPS',
    'load_pool',
    'pool_to_state_dict',
    'calculate_required_collateral',
    'calculate_fee',
    'calculate_reconciliation',
    'parse_term',
    'create_lending_pool',
    'get_entry',
    'get_loan',
    'compute_reconciliation',
    'compute_add_to_pool',
    'compute_take_collateral_loan',
    'compute_repay',
    'compute_default',
    'compute_overdue_defaults',
    'compute_withdraw',
    'lending_pool_contract',
    'lending_pool_transact',
]
