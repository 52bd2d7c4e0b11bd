"""
lending_pool.py - Collateralized Lending Pool Unit

Lenders deposit a principal token into term entries; a borrower posts a
second token as collateral to draw the full principal of one OPEN entry.
Entries and loans live in the pool unit's state as two append-only lists
addressed by their position (ids are 0-based and never reused).

ARCHITECTURE (Pure Function Pattern):
=====================================

1. FROZEN DATACLASSES (explicit inputs):
   - PoolTerms: configuration fixed at creation
   - PoolEntry / Loan: one record each, replaced (never mutated) on transition
   - PoolSnapshot: terms + all entries + all loans at one point in time

2. PURE CALCULATION FUNCTIONS (calculate_*):
   - calculate_required_collateral, calculate_fee, calculate_reconciliation
   - No LedgerView, all inputs explicit

3. ADAPTER FUNCTIONS (load_pool / to_state_dict):
   - The only place pool state is read from or written back to a view

4. CONVENIENCE FUNCTIONS (compute_*):
   - Load, validate, calculate, and return a PendingTransaction that moves
     tokens and transitions records in one atomic step

Lifecycle:
    Entry: OPEN -> MATCHED (loan taken) -> WITHDRAWN
           OPEN -> WITHDRAWN (matured, never borrowed)
    Loan:  ACTIVE -> REPAID | DEFAULTED

Key Formulas:
    required_collateral = principal * collateral_ratio      (rounded up)
    fee = principal * fee_rate_bps / 10000 * duration / 365 days (rounded up)
    matures_at = deposited_at + duration

Pool wallet reconciliation:
    principal held  = sum(OPEN principal) + sum(principal + fee of REPAID, not WITHDRAWN)
    collateral held = sum(ACTIVE collateral) + sum(DEFAULTED collateral, not WITHDRAWN)
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from decimal import Decimal, ROUND_UP
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange, LogEvent,
    TransactionOrigin, OriginType,
    build_transaction, empty_pending_transaction, log_event, to_decimal,
    UNIT_TYPE_LENDING_POOL,
    EntryNotFound, LoanNotFound, InvalidStatus, NotAuthorized,
    TermNotElapsed, InvalidTerm, InsufficientFunds,
    _freeze_state,
)
from .token import transfer_from_parts


SECONDS_PER_DAY = 24 * 60 * 60
SECONDS_PER_MONTH = 30 * SECONDS_PER_DAY
SECONDS_PER_YEAR = 365 * SECONDS_PER_DAY

DEFAULT_COLLATERAL_RATIO = Decimal("1")
DEFAULT_FEE_RATE_BPS = 500
BASIS_POINTS = Decimal("10000")


class DurationTerm(int, Enum):
    """Deposit terms, valued in months."""
    ONE_MONTH = 1
    THREE_MONTHS = 3
    SIX_MONTHS = 6
    TWELVE_MONTHS = 12

    @property
    def seconds(self) -> int:
        return self.value * SECONDS_PER_MONTH


class EntryStatus(str, Enum):
    OPEN = "OPEN"
    MATCHED = "MATCHED"
    WITHDRAWN = "WITHDRAWN"


class LoanStatus(str, Enum):
    ACTIVE = "ACTIVE"
    REPAID = "REPAID"
    DEFAULTED = "DEFAULTED"


# ============================================================================
# FROZEN DATACLASSES
# ============================================================================

@dataclass(frozen=True, slots=True)
class PoolTerms:
    """
    Pool configuration - set at creation, never changes.

    The pool wallet is the address that holds deposited principal and posted
    collateral; lenders and borrowers approve it as spender.
    """
    principal_unit: str
    collateral_unit: str
    pool_wallet: str
    owner: str
    collateral_ratio: Decimal     # collateral per unit of principal (1 = 100%)
    fee_rate_bps: int             # annualised fee in basis points
    allowed_terms: Tuple[DurationTerm, ...]


@dataclass(frozen=True, slots=True)
class PoolEntry:
    """A lender's deposit of principal for a fixed term."""
    entry_id: int
    lender: str
    principal: Decimal
    term: DurationTerm
    duration_seconds: int
    deposited_at: datetime
    status: EntryStatus
    loan_id: Optional[int] = None
    withdrawn_at: Optional[datetime] = None

    @property
    def matures_at(self) -> datetime:
        return self.deposited_at + timedelta(seconds=self.duration_seconds)

    def is_matured(self, now: datetime) -> bool:
        return now >= self.matures_at


@dataclass(frozen=True, slots=True)
class Loan:
    """A borrower's draw against exactly one entry."""
    loan_id: int
    borrower: str
    entry_id: int
    collateral_amount: Decimal
    principal_amount: Decimal
    fee: Decimal
    taken_at: datetime
    status: LoanStatus
    settled_at: Optional[datetime] = None

    @property
    def amount_due(self) -> Decimal:
        return self.principal_amount + self.fee


@dataclass(frozen=True, slots=True)
class PoolSnapshot:
    """Terms plus every entry and loan, as loaded from one state read."""
    terms: PoolTerms
    entries: Tuple[PoolEntry, ...]
    loans: Tuple[Loan, ...]

    def entry(self, entry_id: int) -> PoolEntry:
        if not isinstance(entry_id, int) or isinstance(entry_id, bool) or not 0 <= entry_id < len(self.entries):
            raise EntryNotFound(f"no pool entry with id {entry_id!r}")
        return self.entries[entry_id]

    def loan(self, loan_id: int) -> Loan:
        if not isinstance(loan_id, int) or isinstance(loan_id, bool) or not 0 <= loan_id < len(self.loans):
            raise LoanNotFound(f"no loan with id {loan_id!r}")
        return self.loans[loan_id]

    def with_entry(self, entry: PoolEntry) -> PoolSnapshot:
        """Return a snapshot with entry appended or replaced at its id."""
        entries = list(self.entries)
        if entry.entry_id == len(entries):
            entries.append(entry)
        else:
            entries[entry.entry_id] = entry
        return replace(self, entries=tuple(entries))

    def with_loan(self, loan: Loan) -> PoolSnapshot:
        """Return a snapshot with loan appended or replaced at its id."""
        loans = list(self.loans)
        if loan.loan_id == len(loans):
            loans.append(loan)
        else:
            loans[loan.loan_id] = loan
        return replace(self, loans=tuple(loans))


# ============================================================================
# ADAPTER FUNCTIONS
# ============================================================================

def _entry_from_dict(raw: Dict[str, Any]) -> PoolEntry:
    return PoolEntry(
        entry_id=raw['entry_id'],
        lender=raw['lender'],
        principal=to_decimal(raw['principal']),
        term=DurationTerm(raw['term']),
        duration_seconds=raw['duration_seconds'],
        deposited_at=raw['deposited_at'],
        status=EntryStatus(raw['status']),
        loan_id=raw.get('loan_id'),
        withdrawn_at=raw.get('withdrawn_at'),
    )


def _entry_to_dict(entry: PoolEntry) -> Dict[str, Any]:
    return {
        'entry_id': entry.entry_id,
        'lender': entry.lender,
        'principal': entry.principal,
        'term': entry.term.value,
        'duration_seconds': entry.duration_seconds,
        'deposited_at': entry.deposited_at,
        'status': entry.status.value,
        'loan_id': entry.loan_id,
        'withdrawn_at': entry.withdrawn_at,
    }


def _loan_from_dict(raw: Dict[str, Any]) -> Loan:
    return Loan(
        loan_id=raw['loan_id'],
        borrower=raw['borrower'],
        entry_id=raw['entry_id'],
        collateral_amount=to_decimal(raw['collateral_amount']),
        principal_amount=to_decimal(raw['principal_amount']),
        fee=to_decimal(raw['fee']),
        taken_at=raw['taken_at'],
        status=LoanStatus(raw['status']),
        settled_at=raw.get('settled_at'),
    )


def _loan_to_dict(loan: Loan) -> Dict[str, Any]:
    return {
        'loan_id': loan.loan_id,
        'borrower': loan.borrower,
        'entry_id': loan.entry_id,
        'collateral_amount': loan.collateral_amount,
        'principal_amount': loan.principal_amount,
        'fee': loan.fee,
        'taken_at': loan.taken_at,
        'status': loan.status.value,
        'settled_at': loan.settled_at,
    }


def load_pool(view: LedgerView, symbol: str) -> PoolSnapshot:
    """
    Load a lending pool from ledger state as typed frozen dataclasses.

    This is the ONLY function that reads pool state from a LedgerView.

    Example:
        pool = load_pool(view, "POOL")
        entry = pool.entry(0)
    """
    raw = view.get_unit_state(symbol)
    terms = PoolTerms(
        principal_unit=raw['principal_unit'],
        collateral_unit=raw['collateral_unit'],
        pool_wallet=raw['pool_wallet'],
        owner=raw['owner'],
        collateral_ratio=to_decimal(raw.get('collateral_ratio', DEFAULT_COLLATERAL_RATIO)),
        fee_rate_bps=raw.get('fee_rate_bps', DEFAULT_FEE_RATE_BPS),
        allowed_terms=tuple(DurationTerm(t) for t in raw.get('allowed_terms', ())),
    )
    return PoolSnapshot(
        terms=terms,
        entries=tuple(_entry_from_dict(e) for e in raw.get('entries', [])),
        loans=tuple(_loan_from_dict(l) for l in raw.get('loans', [])),
    )


def to_state_dict(pool: PoolSnapshot) -> Dict[str, Any]:
    """Inverse of load_pool(): the dict stored as the pool unit's state."""
    terms = pool.terms
    return {
        'principal_unit': terms.principal_unit,
        'collateral_unit': terms.collateral_unit,
        'pool_wallet': terms.pool_wallet,
        'owner': terms.owner,
        'collateral_ratio': terms.collateral_ratio,
        'fee_rate_bps': terms.fee_rate_bps,
        'allowed_terms': [t.value for t in terms.allowed_terms],
        'entries': [_entry_to_dict(e) for e in pool.entries],
        'loans': [_loan_to_dict(l) for l in pool.loans],
    }


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_required_collateral(principal: Decimal, collateral_ratio: Decimal, decimal_places: int) -> Decimal:
    """
    Collateral a borrower must post to draw principal.

    Rounded up to the collateral token's precision so the pool is never
    under-collateralised by rounding.

    Example:
        calculate_required_collateral(Decimal("1000"), Decimal("1.5"), 18)
        # Decimal("1500.000000000000000000")
    """
    quantizer = Decimal(10) ** -decimal_places
    return (principal * collateral_ratio).quantize(quantizer, rounding=ROUND_UP)


def calculate_fee(principal: Decimal, fee_rate_bps: int, duration_seconds: int, decimal_places: int) -> Decimal:
    """
    Flat fee for borrowing principal over the entry's full term.

    fee = principal * bps / 10000 * duration / 365 days, rounded up.

    Example:
        calculate_fee(Decimal("1000"), 500, DurationTerm.TWELVE_MONTHS.seconds, 18)
        # 1000 * 5% * 360/365 = Decimal("49.315068493150684932")
    """
    if fee_rate_bps == 0:
        return Decimal("0")
    quantizer = Decimal(10) ** -decimal_places
    fee = (
        principal
        * Decimal(fee_rate_bps) / BASIS_POINTS
        * Decimal(duration_seconds) / Decimal(SECONDS_PER_YEAR)
    )
    return fee.quantize(quantizer, rounding=ROUND_UP)


def calculate_reconciliation(pool: PoolSnapshot) -> Tuple[Decimal, Decimal]:
    """
    Principal and collateral the pool wallet must hold for this snapshot.

    Returns:
        (expected_principal, expected_collateral)
    """
    principal = Decimal("0")
    collateral = Decimal("0")
    for entry in pool.entries:
        if entry.status == EntryStatus.OPEN:
            principal += entry.principal
        elif entry.status == EntryStatus.MATCHED:
            loan = pool.loans[entry.loan_id]
            if loan.status == LoanStatus.REPAID:
                principal += loan.amount_due
            elif loan.status == LoanStatus.DEFAULTED:
                collateral += loan.collateral_amount
    for loan in pool.loans:
        if loan.status == LoanStatus.ACTIVE:
            collateral += loan.collateral_amount
    return principal, collateral


def parse_term(term: Union[DurationTerm, int], allowed_terms: Iterable[DurationTerm]) -> DurationTerm:
    """
    Accept a DurationTerm or its month count.

    Raises:
        InvalidTerm: not a known term, or not offered by this pool
    """
    if isinstance(term, bool):
        raise InvalidTerm(f"invalid term {term!r}")
    try:
        parsed = DurationTerm(term)
    except ValueError:
        raise InvalidTerm(f"invalid term {term!r}; expected one of {[t.value for t in DurationTerm]}")
    if parsed not in tuple(allowed_terms):
        raise InvalidTerm(f"term {parsed.value} months is not offered by this pool")
    return parsed


# ============================================================================
# FACTORY
# ============================================================================

def create_lending_pool(
    symbol: str,
    name: str,
    principal_unit: str,
    collateral_unit: str,
    pool_wallet: str,
    owner: str,
    collateral_ratio: Any = DEFAULT_COLLATERAL_RATIO,
    fee_rate_bps: int = DEFAULT_FEE_RATE_BPS,
    allowed_terms: Optional[Iterable[Union[DurationTerm, int]]] = None,
) -> Unit:
    """
    Create a lending pool unit.

    The pool unit is never held in wallets; its balances stay at zero and
    all of its data is state. Token balances live in pool_wallet.

    Args:
        symbol: Pool unit symbol (e.g., "POOL")
        name: Human-readable name
        principal_unit: Token lenders deposit and borrowers draw
        collateral_unit: Token borrowers post as collateral
        pool_wallet: Wallet that custodies both tokens
        owner: Deploying identity, fixed for the pool's lifetime
        collateral_ratio: Collateral required per unit of principal (> 0)
        fee_rate_bps: Annualised borrowing fee in basis points (>= 0)
        allowed_terms: Terms offered (default: all DurationTerm values)

    Raises:
        ValueError: invalid configuration

    Example:
        pool = create_lending_pool("POOL", "Leverage pool", "TX", "TY",
                                   pool_wallet="clc", owner="deployer")
        ledger.register_unit(pool)
    """
    if principal_unit == collateral_unit:
        raise ValueError("principal and collateral must be different units")
    if not pool_wallet or not pool_wallet.strip():
        raise ValueError("pool_wallet cannot be empty")
    if not owner or not owner.strip():
        raise ValueError("owner cannot be empty")
    collateral_ratio = to_decimal(collateral_ratio)
    if collateral_ratio <= 0:
        raise ValueError(f"collateral_ratio must be positive, got {collateral_ratio}")
    if isinstance(fee_rate_bps, bool) or not isinstance(fee_rate_bps, int) or fee_rate_bps < 0:
        raise ValueError(f"fee_rate_bps must be a non-negative integer, got {fee_rate_bps!r}")

    if allowed_terms is None:
        terms = tuple(DurationTerm)
    else:
        terms = tuple(sorted({parse_term(t, DurationTerm) for t in allowed_terms}))
    if not terms:
        raise ValueError("allowed_terms cannot be empty")

    pool = PoolSnapshot(
        terms=PoolTerms(
            principal_unit=principal_unit,
            collateral_unit=collateral_unit,
            pool_wallet=pool_wallet,
            owner=owner,
            collateral_ratio=collateral_ratio,
            fee_rate_bps=fee_rate_bps,
            allowed_terms=terms,
        ),
        entries=(),
        loans=(),
    )
    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_LENDING_POOL,
        min_balance=Decimal("0"),
        max_balance=Decimal("0"),
        decimal_places=0,
        _frozen_state=_freeze_state(to_state_dict(pool)),
    )


# ============================================================================
# HELPERS
# ============================================================================

def _pool_change(symbol: str, pool: PoolSnapshot, new_pool: PoolSnapshot) -> UnitStateChange:
    """old_state comes from the snapshot new_pool was derived from, not a fresh read."""
    return UnitStateChange(
        unit=symbol,
        old_state=to_state_dict(pool),
        new_state=to_state_dict(new_pool),
    )


def _pay_out(view: LedgerView, unit: str, source: str, dest: str, amount: Decimal, contract_id: str) -> Tuple[List[Move], List[LogEvent]]:
    """Pool wallet sends its own funds; nothing moves for a zero amount."""
    if amount <= 0:
        return [], []
    held = view.get_balance(source, unit)
    if held < amount:
        raise InsufficientFunds(f"pool wallet {source} holds {held} {unit}, owes {amount}")
    move = Move(amount, unit, source, dest, contract_id)
    event = log_event("Transfer", unit, **{'from': source, 'to': dest, 'value': amount})
    return [move], [event]


def _origin(origin_type: OriginType, source_id: str, symbol: str, event_type: str) -> TransactionOrigin:
    return TransactionOrigin(origin_type, source_id, symbol, event_type)


def _default_event(symbol: str, loan: Loan, timestamp: datetime) -> LogEvent:
    return log_event(
        "LoanDefaulted", symbol,
        borrower=loan.borrower,
        loan_id=loan.loan_id,
        entry_id=loan.entry_id,
        collateral_amount=loan.collateral_amount,
        timestamp=timestamp,
    )


# ============================================================================
# READS
# ============================================================================

def get_entry(view: LedgerView, symbol: str, entry_id: int) -> PoolEntry:
    """Raises EntryNotFound for unknown ids."""
    return load_pool(view, symbol).entry(entry_id)


def get_loan(view: LedgerView, symbol: str, loan_id: int) -> Loan:
    """Raises LoanNotFound for unknown ids."""
    return load_pool(view, symbol).loan(loan_id)


def compute_reconciliation(view: LedgerView, symbol: str) -> Dict[str, Any]:
    """
    Compare the pool wallet's token balances with what its records say it owes.

    Returns:
        Dict with 'valid', 'principal_expected', 'principal_held',
        'collateral_expected', 'collateral_held'.
    """
    pool = load_pool(view, symbol)
    terms = pool.terms
    principal_expected, collateral_expected = calculate_reconciliation(pool)
    principal_held = view.get_balance(terms.pool_wallet, terms.principal_unit)
    collateral_held = view.get_balance(terms.pool_wallet, terms.collateral_unit)
    return {
        'valid': principal_held == principal_expected and collateral_held == collateral_expected,
        'principal_expected': principal_expected,
        'principal_held': principal_held,
        'collateral_expected': collateral_expected,
        'collateral_held': collateral_held,
    }


# ============================================================================
# ADD TO POOL
# ============================================================================

def compute_add_to_pool(
    view: LedgerView,
    symbol: str,
    lender: str,
    amount: Any,
    term: Union[DurationTerm, int],
) -> PendingTransaction:
    """
    Lender deposits amount of the principal token for term.

    The deposit is pulled with transfer-from semantics: the lender must have
    approved the pool wallet for at least amount.

    Returns:
        PendingTransaction with the principal pull, the allowance decrement,
        a new OPEN entry, and an AddedToPool event.

    Raises:
        ValueError: amount not positive
        InvalidTerm: term not offered
        InsufficientAllowance / InsufficientFunds: lender cannot cover amount
    """
    pool = load_pool(view, symbol)
    terms = pool.terms
    amount = to_decimal(amount)
    if amount <= 0:
        raise ValueError(f"amount must be positive, got {amount}")
    parsed_term = parse_term(term, terms.allowed_terms)
    if lender == terms.pool_wallet:
        raise NotAuthorized("the pool wallet cannot lend to itself")

    moves, token_change, transfer_event = transfer_from_parts(
        view, terms.principal_unit, terms.pool_wallet, lender, terms.pool_wallet,
        amount, f"add_to_pool_{symbol}",
    )

    now = view.current_time
    entry = PoolEntry(
        entry_id=len(pool.entries),
        lender=lender,
        principal=amount,
        term=parsed_term,
        duration_seconds=parsed_term.seconds,
        deposited_at=now,
        status=EntryStatus.OPEN,
    )
    events = [
        transfer_event,
        log_event(
            "AddedToPool", symbol,
            lender=lender, amount=amount, timestamp=now, entry_id=entry.entry_id,
        ),
    ]
    return build_transaction(
        view, moves,
        [token_change, _pool_change(symbol, pool, pool.with_entry(entry))],
        origin=_origin(OriginType.USER_ACTION, lender, symbol, "ADD_TO_POOL"),
        events=events,
    )


# ============================================================================
# TAKE COLLATERAL LOAN
# ============================================================================

def compute_take_collateral_loan(
    view: LedgerView,
    symbol: str,
    borrower: str,
    entry_id: int,
) -> PendingTransaction:
    """
    Borrower posts collateral and draws the full principal of an OPEN entry.

    The entry must not have matured yet; a loan against a matured entry
    would be in default the moment it was taken.

    Returns:
        PendingTransaction with the collateral pull, the principal payout,
        a new ACTIVE loan, the entry moved to MATCHED, and a
        CollateralLoanTaken event.

    Raises:
        EntryNotFound: unknown entry_id
        InvalidStatus: entry is not OPEN, or has matured
        NotAuthorized: borrower is the entry's lender
        InsufficientAllowance / InsufficientFunds: collateral not covered
    """
    pool = load_pool(view, symbol)
    terms = pool.terms
    entry = pool.entry(entry_id)
    now = view.current_time

    if entry.status != EntryStatus.OPEN:
        raise InvalidStatus(f"entry {entry_id} is {entry.status.value}, not OPEN")
    if entry.is_matured(now):
        raise InvalidStatus(f"entry {entry_id} matured at {entry.matures_at}")
    if borrower == entry.lender:
        raise NotAuthorized(f"{borrower} cannot borrow from their own entry {entry_id}")
    if borrower == terms.pool_wallet:
        raise NotAuthorized("the pool wallet cannot borrow")

    collateral_unit = view.get_unit(terms.collateral_unit)
    principal_unit = view.get_unit(terms.principal_unit)
    collateral = calculate_required_collateral(
        entry.principal, terms.collateral_ratio, collateral_unit.decimal_places or 0,
    )
    fee = calculate_fee(
        entry.principal, terms.fee_rate_bps, entry.duration_seconds, principal_unit.decimal_places or 0,
    )

    contract_id = f"take_loan_{symbol}"
    moves, token_change, collateral_event = transfer_from_parts(
        view, terms.collateral_unit, terms.pool_wallet, borrower, terms.pool_wallet,
        collateral, contract_id,
    )
    payout_moves, payout_events = _pay_out(
        view, terms.principal_unit, terms.pool_wallet, borrower, entry.principal, contract_id,
    )

    loan = Loan(
        loan_id=len(pool.loans),
        borrower=borrower,
        entry_id=entry.entry_id,
        collateral_amount=collateral,
        principal_amount=entry.principal,
        fee=fee,
        taken_at=now,
        status=LoanStatus.ACTIVE,
    )
    new_pool = (
        pool
        .with_loan(loan)
        .with_entry(replace(entry, status=EntryStatus.MATCHED, loan_id=loan.loan_id))
    )
    events = [
        collateral_event,
        *payout_events,
        log_event(
            "CollateralLoanTaken", symbol,
            borrower=borrower,
            principal_amount=entry.principal,
            collateral_amount=collateral,
            timestamp=now,
            entry_id=entry.entry_id,
            loan_id=loan.loan_id,
        ),
    ]
    return build_transaction(
        view, moves + payout_moves,
        [token_change, _pool_change(symbol, pool, new_pool)],
        origin=_origin(OriginType.USER_ACTION, borrower, symbol, "TAKE_COLLATERAL_LOAN"),
        events=events,
    )


# ============================================================================
# REPAY
# ============================================================================

def compute_repay(view: LedgerView, symbol: str, borrower: str, loan_id: int) -> PendingTransaction:
    """
    Borrower returns principal plus fee and gets the full collateral back.

    Allowed until a default has been recorded, even past maturity.

    Raises:
        LoanNotFound: unknown loan_id
        NotAuthorized: caller is not the loan's borrower
        InvalidStatus: loan is not ACTIVE
        InsufficientAllowance / InsufficientFunds: repayment not covered
    """
    pool = load_pool(view, symbol)
    terms = pool.terms
    loan = pool.loan(loan_id)
    if borrower != loan.borrower:
        raise NotAuthorized(f"only {loan.borrower} may repay loan {loan_id}")
    if loan.status != LoanStatus.ACTIVE:
        raise InvalidStatus(f"loan {loan_id} is {loan.status.value}, not ACTIVE")

    now = view.current_time
    contract_id = f"repay_{symbol}"
    moves, token_change, repay_event = transfer_from_parts(
        view, terms.principal_unit, terms.pool_wallet, borrower, terms.pool_wallet,
        loan.amount_due, contract_id,
    )
    return_moves, return_events = _pay_out(
        view, terms.collateral_unit, terms.pool_wallet, borrower, loan.collateral_amount, contract_id,
    )

    repaid = replace(loan, status=LoanStatus.REPAID, settled_at=now)
    events = [
        repay_event,
        *return_events,
        log_event(
            "LoanRepaid", symbol,
            borrower=borrower, loan_id=loan_id, amount=loan.principal_amount,
            fee=loan.fee, timestamp=now,
        ),
    ]
    return build_transaction(
        view, moves + return_moves,
        [token_change, _pool_change(symbol, pool, pool.with_loan(repaid))],
        origin=_origin(OriginType.USER_ACTION, borrower, symbol, "REPAY"),
        events=events,
    )


# ============================================================================
# DEFAULT
# ============================================================================

def compute_default(
    view: LedgerView,
    symbol: str,
    loan_id: int,
    caller: Optional[str] = None,
) -> PendingTransaction:
    """
    Record that an ACTIVE loan was not repaid by its entry's maturity.

    No tokens move: the collateral stays in the pool wallet until the
    lender withdraws it. Anyone may trigger this; caller=None marks a
    lifecycle (automatic) trigger.

    Raises:
        LoanNotFound: unknown loan_id
        InvalidStatus: loan is not ACTIVE
        TermNotElapsed: the entry has not matured
    """
    pool = load_pool(view, symbol)
    loan = pool.loan(loan_id)
    if loan.status != LoanStatus.ACTIVE:
        raise InvalidStatus(f"loan {loan_id} is {loan.status.value}, not ACTIVE")
    entry = pool.entry(loan.entry_id)
    now = view.current_time
    if not entry.is_matured(now):
        raise TermNotElapsed(f"loan {loan_id} is not due until {entry.matures_at}")

    defaulted = replace(loan, status=LoanStatus.DEFAULTED, settled_at=now)
    if caller is None:
        origin = _origin(OriginType.LIFECYCLE, f"{symbol}_contract", symbol, "DEFAULT")
    else:
        origin = _origin(OriginType.USER_ACTION, caller, symbol, "DEFAULT")
    return build_transaction(
        view, [],
        [_pool_change(symbol, pool, pool.with_loan(defaulted))],
        origin=origin,
        events=[_default_event(symbol, loan, now)],
    )


def compute_overdue_defaults(view: LedgerView, symbol: str) -> PendingTransaction:
    """Default every ACTIVE loan whose entry has matured, in one transaction."""
    pool = load_pool(view, symbol)
    now = view.current_time
    new_pool = pool
    events = []
    for loan in pool.loans:
        if loan.status != LoanStatus.ACTIVE:
            continue
        if not pool.entries[loan.entry_id].is_matured(now):
            continue
        new_pool = new_pool.with_loan(replace(loan, status=LoanStatus.DEFAULTED, settled_at=now))
        events.append(_default_event(symbol, loan, now))

    if not events:
        return empty_pending_transaction(view)
    return build_transaction(
        view, [],
        [_pool_change(symbol, pool, new_pool)],
        origin=_origin(OriginType.LIFECYCLE, f"{symbol}_contract", symbol, "DEFAULT"),
        events=events,
    )


# ============================================================================
# WITHDRAW
# ============================================================================

def compute_withdraw(view: LedgerView, symbol: str, lender: str, entry_id: int) -> PendingTransaction:
    """
    Lender collects what a matured entry is owed.

    Payout by state:
        OPEN                      -> principal
        MATCHED, loan REPAID      -> principal + fee
        MATCHED, loan DEFAULTED   -> collateral
        MATCHED, loan ACTIVE      -> default recorded now, then collateral

    Raises:
        EntryNotFound: unknown entry_id
        NotAuthorized: caller is not the entry's lender
        InvalidStatus: entry already WITHDRAWN
        TermNotElapsed: entry has not matured
    """
    pool = load_pool(view, symbol)
    terms = pool.terms
    entry = pool.entry(entry_id)
    if lender != entry.lender:
        raise NotAuthorized(f"only {entry.lender} may withdraw entry {entry_id}")
    if entry.status == EntryStatus.WITHDRAWN:
        raise InvalidStatus(f"entry {entry_id} was already withdrawn")
    now = view.current_time
    if not entry.is_matured(now):
        raise TermNotElapsed(f"entry {entry_id} matures at {entry.matures_at}")

    events: List[LogEvent] = []
    new_pool = pool
    if entry.status == EntryStatus.OPEN:
        unit, amount = terms.principal_unit, entry.principal
    else:
        loan = pool.loans[entry.loan_id]
        if loan.status == LoanStatus.REPAID:
            unit, amount = terms.principal_unit, loan.amount_due
        else:
            if loan.status == LoanStatus.ACTIVE:
                new_pool = new_pool.with_loan(
                    replace(loan, status=LoanStatus.DEFAULTED, settled_at=now)
                )
                events.append(_default_event(symbol, loan, now))
            unit, amount = terms.collateral_unit, loan.collateral_amount

    moves, payout_events = _pay_out(
        view, unit, terms.pool_wallet, lender, amount, f"withdraw_{symbol}",
    )
    events.extend(payout_events)
    events.append(log_event(
        "Withdrawn", symbol,
        lender=lender, entry_id=entry_id, unit=unit, amount=amount, timestamp=now,
    ))
    new_pool = new_pool.with_entry(
        replace(entry, status=EntryStatus.WITHDRAWN, withdrawn_at=now)
    )
    return build_transaction(
        view, moves,
        [_pool_change(symbol, pool, new_pool)],
        origin=_origin(OriginType.USER_ACTION, lender, symbol, "WITHDRAW"),
        events=events,
    )


# ============================================================================
# ROUTER AND SMART CONTRACT
# ============================================================================

def transact(
    view: LedgerView,
    symbol: str,
    event_type: str,
    event_date: datetime,
    **kwargs
) -> PendingTransaction:
    """
    Unified entry point for lending pool operations.

    Args:
        view: Read-only ledger access
        symbol: Lending pool symbol
        event_type: One of
            - ADD_TO_POOL: requires 'caller', 'amount', 'term'
            - TAKE_COLLATERAL_LOAN: requires 'caller', 'entry_id'
            - REPAY: requires 'caller', 'loan_id'
            - WITHDRAW: requires 'caller', 'entry_id'
            - DEFAULT: requires 'loan_id'; 'caller' optional
        event_date: When the event occurs (must not be after the view's time)
        **kwargs: Event-specific parameters

    Example:
        pending = transact(view, "POOL", "ADD_TO_POOL", view.current_time,
                           caller="lender1", amount=Decimal("1000"), term=3)
    """
    if event_date > view.current_time:
        raise ValueError(f"event_date {event_date} is after ledger time {view.current_time}")

    def require(name: str) -> Any:
        value = kwargs.get(name)
        if value is None:
            raise ValueError(f"Missing '{name}' parameter for {event_type} event on {symbol}")
        return value

    if event_type == 'ADD_TO_POOL':
        return compute_add_to_pool(view, symbol, require('caller'), require('amount'), require('term'))
    elif event_type == 'TAKE_COLLATERAL_LOAN':
        return compute_take_collateral_loan(view, symbol, require('caller'), require('entry_id'))
    elif event_type == 'REPAY':
        return compute_repay(view, symbol, require('caller'), require('loan_id'))
    elif event_type == 'WITHDRAW':
        return compute_withdraw(view, symbol, require('caller'), require('entry_id'))
    elif event_type == 'DEFAULT':
        return compute_default(view, symbol, require('loan_id'), kwargs.get('caller'))
    else:
        raise ValueError(f"Unknown event type '{event_type}' for lending pool {symbol}")


def lending_pool_contract(view: LedgerView, symbol: str, timestamp: datetime) -> PendingTransaction:
    """
    SmartContract function for LifecycleEngine: records overdue defaults.

    Returns an empty transaction when no ACTIVE loan has passed maturity.
    """
    return compute_overdue_defaults(view, symbol)
