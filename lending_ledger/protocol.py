"""
protocol.py - LendingLedger, the public face of the lending pool

Binds a lending pool unit to a Ledger and two FungibleAsset collaborators.
Each operation reads the live state, builds one PendingTransaction with the
pure compute_* functions, and executes it. Business-rule failures raise
before anything is submitted; a transaction that loses a race with another
writer is rejected by the ledger and surfaces as StaleStateError.
"""

from __future__ import annotations
from typing import Any, Dict, List, Optional, Union
import logging

from .core import LogEvent, PendingTransaction, SmartContract
from .ledger import Ledger, execute_or_raise
from .units.token import FungibleAsset
from .units.lending_pool import (
    DurationTerm, PoolEntry, Loan, PoolTerms,
    DEFAULT_COLLATERAL_RATIO, DEFAULT_FEE_RATE_BPS,
    create_lending_pool, load_pool, get_entry, get_loan,
    compute_add_to_pool, compute_take_collateral_loan, compute_repay,
    compute_withdraw, compute_default, compute_reconciliation,
    lending_pool_contract,
)

logger = logging.getLogger(__name__)


class LendingLedger:
    """
    Two-sided collateralized lending over one principal/collateral pair.

    Lenders approve the pool address and call add_to_pool(); borrowers
    approve it for collateral and call take_collateral_loan() against an
    OPEN entry.

    Example:
        tx = FungibleAsset.deploy(ledger, "TX", "Token X", "deployer", 10**6)
        ty = FungibleAsset.deploy(ledger, "TY", "Token Y", "deployer", 10**6)
        clc = LendingLedger(ledger, tx, ty, deployer="deployer")

        tx.approve("lender1", clc.address, 1000)
        entry_id = clc.add_to_pool("lender1", 1000, DurationTerm.THREE_MONTHS)

        ty.approve("borrower1", clc.address, 1000)
        loan_id = clc.take_collateral_loan("borrower1", entry_id)
    """

    def __init__(
        self,
        ledger: Ledger,
        principal_asset: FungibleAsset,
        collateral_asset: FungibleAsset,
        deployer: str,
        address: str = "clc",
        symbol: str = "POOL",
        collateral_ratio: Any = DEFAULT_COLLATERAL_RATIO,
        fee_rate_bps: int = DEFAULT_FEE_RATE_BPS,
        allowed_terms: Optional[List[Union[DurationTerm, int]]] = None,
    ):
        """
        Register the pool wallet and pool unit on ledger.

        Args:
            ledger: Ledger holding both assets
            principal_asset: Token lenders deposit
            collateral_asset: Token borrowers post
            deployer: Owner identity, fixed for the pool's lifetime
            address: Wallet that custodies pooled tokens (the spender to approve)
            symbol: Pool unit symbol; events are emitted under it
            collateral_ratio: Collateral per unit of principal
            fee_rate_bps: Annualised borrowing fee in basis points
            allowed_terms: Offered terms (default: all)

        Raises:
            ValueError: invalid configuration or address already in use
        """
        if address in (principal_asset.symbol, collateral_asset.symbol):
            raise ValueError(f"pool address {address!r} collides with a token symbol")
        if ledger.is_registered(address):
            raise ValueError(f"pool address {address!r} is already registered")

        unit = create_lending_pool(
            symbol=symbol,
            name=f"Collateralized lending {principal_asset.symbol}/{collateral_asset.symbol}",
            principal_unit=principal_asset.symbol,
            collateral_unit=collateral_asset.symbol,
            pool_wallet=address,
            owner=deployer,
            collateral_ratio=collateral_ratio,
            fee_rate_bps=fee_rate_bps,
            allowed_terms=allowed_terms,
        )
        ledger.ensure_wallet(deployer)
        ledger.register_wallet(address)
        ledger.register_unit(unit)

        self.ledger = ledger
        self.principal_asset = principal_asset
        self.collateral_asset = collateral_asset
        self.address = address
        self.symbol = symbol

    # ========================================================================
    # OPERATIONS
    # ========================================================================

    def add_to_pool(self, caller: str, amount: Any, term: Union[DurationTerm, int]) -> int:
        """
        Deposit amount of the principal asset for term. Returns the entry id.

        The caller must have approved self.address for at least amount.
        """
        self.ledger.ensure_wallet(caller)
        pending = compute_add_to_pool(self.ledger, self.symbol, caller, amount, term)
        self._submit(pending)
        entry_id = self._event_arg(pending, "AddedToPool", "entry_id")
        logger.debug("%s: %s added %s for %s -> entry %d", self.symbol, caller, amount, term, entry_id)
        return entry_id

    def take_collateral_loan(self, caller: str, entry_id: int) -> int:
        """
        Post collateral and draw the full principal of an OPEN entry.

        Returns the loan id. Of several callers racing for the same entry,
        exactly one succeeds; the others get InvalidStatus or StaleStateError.
        """
        self.ledger.ensure_wallet(caller)
        pending = compute_take_collateral_loan(self.ledger, self.symbol, caller, entry_id)
        self._submit(pending)
        loan_id = self._event_arg(pending, "CollateralLoanTaken", "loan_id")
        logger.debug("%s: %s took entry %d -> loan %d", self.symbol, caller, entry_id, loan_id)
        return loan_id

    def repay(self, caller: str, loan_id: int) -> Loan:
        """Return principal plus fee and reclaim collateral. Returns the REPAID loan."""
        self._submit(compute_repay(self.ledger, self.symbol, caller, loan_id))
        logger.debug("%s: %s repaid loan %d", self.symbol, caller, loan_id)
        return self.get_loan_by_id(loan_id)

    def withdraw(self, caller: str, entry_id: int) -> PoolEntry:
        """
        Collect a matured entry's payout. Returns the WITHDRAWN entry.

        An entry whose loan is still ACTIVE at maturity is not rejected: the
        loan is marked DEFAULTED in the same transaction and the lender
        receives its collateral. Before maturity every withdrawal fails
        with TermNotElapsed.
        """
        self._submit(compute_withdraw(self.ledger, self.symbol, caller, entry_id))
        logger.debug("%s: %s withdrew entry %d", self.symbol, caller, entry_id)
        return self.get_entry_by_id(entry_id)

    def mark_default(self, caller: str, loan_id: int) -> Loan:
        """Record a matured, unpaid loan as DEFAULTED. Anyone may call this."""
        self._submit(compute_default(self.ledger, self.symbol, loan_id, caller))
        logger.debug("%s: %s marked loan %d defaulted", self.symbol, caller, loan_id)
        return self.get_loan_by_id(loan_id)

    # ========================================================================
    # READS
    # ========================================================================

    def get_loan_by_id(self, loan_id: int) -> Loan:
        """Raises LoanNotFound for ids never issued."""
        return get_loan(self.ledger, self.symbol, loan_id)

    def get_entry_by_id(self, entry_id: int) -> PoolEntry:
        """Raises EntryNotFound for ids never issued."""
        return get_entry(self.ledger, self.symbol, entry_id)

    def list_entries(self) -> List[PoolEntry]:
        return list(load_pool(self.ledger, self.symbol).entries)

    def list_loans(self) -> List[Loan]:
        return list(load_pool(self.ledger, self.symbol).loans)

    @property
    def terms(self) -> PoolTerms:
        return load_pool(self.ledger, self.symbol).terms

    def owner(self) -> str:
        return self.terms.owner

    def get_past_events(self, name: Optional[str] = None) -> List[LogEvent]:
        """Events emitted by this pool, oldest first, optionally by name."""
        return self.ledger.get_past_events(name, emitter=self.symbol)

    def reconcile(self) -> Dict[str, Any]:
        """Compare the pool address's balances with its open obligations."""
        return compute_reconciliation(self.ledger, self.symbol)

    @property
    def contract(self) -> SmartContract:
        """Lifecycle contract that records overdue defaults."""
        return lending_pool_contract

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _submit(self, pending: PendingTransaction) -> None:
        execute_or_raise(self.ledger, pending)

    @staticmethod
    def _event_arg(pending: PendingTransaction, name: str, key: str) -> Any:
        for event in pending.events:
            if event.name == name:
                return event[key]
        raise LookupError(f"{name} not emitted")
