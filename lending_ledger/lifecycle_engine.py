"""
lifecycle_engine.py - Lifecycle Engine

Polls unit contracts after each clock advance so time-driven transitions
(loan defaults at maturity) are recorded without a caller.

Execution order each step():
1. Advance ledger time
2. Run smart contract polling over every unit, in symbol order
3. Repeat until no contract produces a transaction (cascading effects)

The transaction log is the audit trail - no separate event status tracking needed.
"""

from __future__ import annotations
from datetime import datetime
from typing import Dict, Iterable, List, Optional
import logging

from .core import (
    PendingTransaction, Transaction,
    ExecuteResult, LedgerError,
    SmartContract,
)
from .ledger import Ledger

logger = logging.getLogger(__name__)


class LifecycleEngine:
    """
    Smart contract polling driven by the ledger clock.

    Example:
        engine = LifecycleEngine(ledger)
        engine.register(UNIT_TYPE_LENDING_POOL, lending_pool_contract)
        engine.step(maturity)   # defaults every overdue loan
    """

    def __init__(
        self,
        ledger: Ledger,
        contracts: Optional[Dict[str, SmartContract]] = None,
    ):
        """
        Args:
            ledger: The ledger to operate on
            contracts: Smart contracts for polling (unit_type -> contract)
        """
        self.ledger = ledger
        self.contracts: Dict[str, SmartContract] = contracts or {}

        # Safety limit for cascading events
        self.max_passes = 10
        self.verbose = ledger.verbose

    def register(self, unit_type: str, contract: SmartContract) -> None:
        """
        Register a smart contract for a unit type.

        Args:
            unit_type: Type of unit (e.g., "LENDING_POOL")
            contract: Callable or object with check_lifecycle
        """
        self.contracts[unit_type] = contract

    def step(self, timestamp: datetime) -> List[Transaction]:
        """
        Advance time and execute everything the contracts find due.

        Returns:
            List of executed transactions

        Raises:
            LedgerError: a contract returned something other than a
                PendingTransaction, or its transaction was rejected
        """
        self.ledger.advance_time(timestamp)
        executed: List[Transaction] = []

        for _ in range(self.max_passes):
            pass_executed = self._process_smart_contracts(timestamp)
            executed.extend(pass_executed)
            if not pass_executed:
                break

        return executed

    def _process_smart_contracts(self, timestamp: datetime) -> List[Transaction]:
        """Run smart contract polling for event discovery."""
        executed: List[Transaction] = []

        # Sorted for deterministic iteration order
        for symbol in self.ledger.list_units():
            unit = self.ledger.get_unit(symbol)
            contract = self.contracts.get(unit.unit_type)

            if not contract:
                continue

            if hasattr(contract, 'check_lifecycle'):
                pending = contract.check_lifecycle(self.ledger, symbol, timestamp)
            else:
                pending = contract(self.ledger, symbol, timestamp)

            if not isinstance(pending, PendingTransaction):
                raise LedgerError(
                    f"Contract for {symbol} must return PendingTransaction, got {type(pending)}"
                )

            if pending.is_empty():
                continue

            exec_result = self.ledger.execute(pending)

            if exec_result == ExecuteResult.REJECTED:
                raise LedgerError(
                    f"Lifecycle event failed for {symbol}: {self.ledger.last_rejection}"
                )

            if exec_result == ExecuteResult.APPLIED:
                if self.verbose:
                    logger.info("[LIFECYCLE] %s: %s", symbol, pending.origin.event_type)
                executed.append(self.ledger.transaction_log[-1])

        return executed

    def run(self, timestamps: Iterable[datetime]) -> List[Transaction]:
        """Run the engine through a sequence of timestamps."""
        all_transactions: List[Transaction] = []
        for timestamp in timestamps:
            all_transactions.extend(self.step(timestamp))
        return all_transactions
