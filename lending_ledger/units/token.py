"""
token.py - Fungible Asset (ERC-20 style) Units

A token is a ledger unit whose balances are the holders' balances and whose
state carries the issuing owner and the allowance table:

    state = {
        'owner': 'deployer',
        'allowances': {owner_wallet: {spender_wallet: Decimal}},
        'nonces': {wallet: int},
    }

Every transfer, transfer_from, approve and issue advances the acting
wallet's nonce, so two identical calls are two distinct intents and the
second is applied rather than deduplicated.

Pulling funds on someone's behalf (transfer_from) is a move plus a state
change that decrements the allowance. Both land in the same transaction, so
the allowance is consumed exactly when the funds move.

Pure functions:
    get_allowance(view, token, owner, spender) -> Decimal
    get_nonce(view, token, wallet) -> int
    transfer_from_parts(view, token, spender, from_wallet, to, amount) -> (moves, change, event)
    compute_transfer / compute_transfer_from / compute_approve / compute_issue -> PendingTransaction

FungibleAsset wraps these for a Ledger with the familiar token surface.
"""
from __future__ import annotations
from decimal import Decimal
from typing import Any, Dict, List, Tuple
import logging

from ..core import (
    LedgerView, Move, PendingTransaction, Unit, UnitStateChange, LogEvent,
    TransactionOrigin, OriginType,
    build_transaction, log_event, to_decimal,
    SYSTEM_WALLET, UNIT_TYPE_TOKEN, DEFAULT_TOKEN_DECIMALS,
    InsufficientFunds, InsufficientAllowance, NotAuthorized,
    _freeze_state,
)
from ..ledger import execute_or_raise

logger = logging.getLogger(__name__)


# =============================================================================
# FACTORY
# =============================================================================

def create_token_unit(
    symbol: str,
    name: str,
    owner: str,
    decimal_places: int = DEFAULT_TOKEN_DECIMALS,
) -> Unit:
    """
    Create a fungible token unit.

    Balances may never go negative; supply enters circulation only through
    compute_issue() by the owner.

    Args:
        symbol: Token symbol (e.g., "TX")
        name: Human-readable name (e.g., "Token X")
        owner: Wallet that deployed the token and may issue supply
        decimal_places: Smallest representable fraction (default 18)

    Example:
        ledger.register_unit(create_token_unit("TX", "Token X", owner="deployer"))
    """
    if not owner or not owner.strip():
        raise ValueError("owner cannot be empty")
    if decimal_places < 0:
        raise ValueError(f"decimal_places cannot be negative, got {decimal_places}")

    return Unit(
        symbol=symbol,
        name=name,
        unit_type=UNIT_TYPE_TOKEN,
        min_balance=Decimal("0"),
        decimal_places=decimal_places,
        _frozen_state=_freeze_state({
            'owner': owner,
            'allowances': {},
            'nonces': {},
        }),
    )


# =============================================================================
# READS
# =============================================================================

def get_token_owner(view: LedgerView, token: str) -> str:
    """Return the wallet that owns (deployed) the token."""
    return view.get_unit_state(token)['owner']


def get_allowance(view: LedgerView, token: str, owner: str, spender: str) -> Decimal:
    """Amount spender may still pull from owner. Zero if never approved."""
    allowances = view.get_unit_state(token).get('allowances', {})
    return allowances.get(owner, {}).get(spender, Decimal("0"))


def get_nonce(view: LedgerView, token: str, wallet: str) -> int:
    """Number of token operations wallet has initiated."""
    return view.get_unit_state(token).get('nonces', {}).get(wallet, 0)


def _validate_amount(view: LedgerView, token: str, amount: Any, allow_zero: bool = False) -> Decimal:
    amount = to_decimal(amount)
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValueError(f"amount must be positive, got {amount}")
    unit = view.get_unit(token)
    if unit.round(amount) != amount:
        raise ValueError(
            f"amount {amount} has more precision than {token} supports "
            f"({unit.decimal_places} decimal places)"
        )
    return amount


def _require_balance(view: LedgerView, token: str, wallet: str, amount: Decimal) -> None:
    balance = view.get_balance(wallet, token)
    if balance < amount:
        raise InsufficientFunds(f"{wallet} has {balance} {token}, needs {amount}")


def _transfer_event(token: str, source: str, dest: str, amount: Decimal) -> LogEvent:
    return log_event("Transfer", token, **{'from': source, 'to': dest, 'value': amount})


def _with_nonce(state: Dict[str, Any], wallet: str) -> Dict[str, Any]:
    nonces = dict(state.get('nonces', {}))
    nonces[wallet] = nonces.get(wallet, 0) + 1
    return {**state, 'nonces': nonces}


def _nonce_change(view: LedgerView, token: str, wallet: str) -> UnitStateChange:
    state = view.get_unit_state(token)
    return UnitStateChange(unit=token, old_state=state, new_state=_with_nonce(state, wallet))


# =============================================================================
# BUILDING BLOCKS
# =============================================================================

def transfer_parts(
    view: LedgerView,
    token: str,
    source: str,
    dest: str,
    amount: Any,
    contract_id: str,
) -> Tuple[List[Move], LogEvent]:
    """
    Moves and event for a direct transfer by the holder.

    Raises:
        ValueError: amount not positive or finer than the token's precision
        InsufficientFunds: source balance below amount
    """
    amount = _validate_amount(view, token, amount)
    _require_balance(view, token, source, amount)
    moves = [Move(amount, token, source, dest, contract_id)]
    return moves, _transfer_event(token, source, dest, amount)


def transfer_from_parts(
    view: LedgerView,
    token: str,
    spender: str,
    from_wallet: str,
    to: str,
    amount: Any,
    contract_id: str,
) -> Tuple[List[Move], UnitStateChange, LogEvent]:
    """
    Moves, allowance change and event for spender pulling from from_wallet.

    Protocol operations combine these with their own state changes into a
    single transaction.

    Raises:
        ValueError: amount not positive or finer than the token's precision
        InsufficientAllowance: from_wallet has not approved enough for spender
        InsufficientFunds: from_wallet balance below amount
    """
    amount = _validate_amount(view, token, amount)
    state = view.get_unit_state(token)
    allowances: Dict[str, Dict[str, Decimal]] = state.get('allowances', {})
    allowed = allowances.get(from_wallet, {}).get(spender, Decimal("0"))
    if allowed < amount:
        raise InsufficientAllowance(
            f"{from_wallet} allows {spender} {allowed} {token}, needs {amount}"
        )
    _require_balance(view, token, from_wallet, amount)

    new_allowances = {owner: dict(spenders) for owner, spenders in allowances.items()}
    new_allowances[from_wallet][spender] = allowed - amount
    new_state = _with_nonce({**state, 'allowances': new_allowances}, spender)

    moves = [Move(amount, token, from_wallet, to, contract_id)]
    change = UnitStateChange(unit=token, old_state=state, new_state=new_state)
    return moves, change, _transfer_event(token, from_wallet, to, amount)


# =============================================================================
# TOKEN OPERATIONS
# =============================================================================

def compute_issue(view: LedgerView, token: str, caller: str, to: str, amount: Any) -> PendingTransaction:
    """
    Owner issues new supply to a wallet (from the system wallet).

    Raises:
        NotAuthorized: caller is not the token owner
    """
    owner = get_token_owner(view, token)
    if caller != owner:
        raise NotAuthorized(f"only {owner} may issue {token}")
    amount = _validate_amount(view, token, amount)
    moves = [Move(amount, token, SYSTEM_WALLET, to, f"issue_{token}")]
    origin = TransactionOrigin(OriginType.SYSTEM, caller, token, "ISSUE")
    return build_transaction(
        view, moves, [_nonce_change(view, token, caller)], origin=origin,
        events=[_transfer_event(token, SYSTEM_WALLET, to, amount)],
    )


def compute_transfer(view: LedgerView, token: str, caller: str, to: str, amount: Any) -> PendingTransaction:
    """Holder sends amount to another wallet."""
    moves, event = transfer_parts(view, token, caller, to, amount, f"transfer_{token}")
    origin = TransactionOrigin(OriginType.USER_ACTION, caller, token, "TRANSFER")
    return build_transaction(
        view, moves, [_nonce_change(view, token, caller)], origin=origin, events=[event],
    )


def compute_transfer_from(
    view: LedgerView,
    token: str,
    caller: str,
    from_wallet: str,
    to: str,
    amount: Any,
) -> PendingTransaction:
    """Caller spends from_wallet's funds within its allowance."""
    moves, change, event = transfer_from_parts(
        view, token, caller, from_wallet, to, amount, f"transfer_from_{token}"
    )
    origin = TransactionOrigin(OriginType.USER_ACTION, caller, token, "TRANSFER_FROM")
    return build_transaction(view, moves, [change], origin=origin, events=[event])


def compute_approve(view: LedgerView, token: str, caller: str, spender: str, amount: Any) -> PendingTransaction:
    """
    Set (not add to) the amount spender may pull from caller.

    Zero revokes the approval.
    """
    amount = _validate_amount(view, token, amount, allow_zero=True)
    if caller == spender:
        raise ValueError("cannot approve self as spender")
    state = view.get_unit_state(token)
    allowances = {owner: dict(spenders) for owner, spenders in state.get('allowances', {}).items()}
    allowances.setdefault(caller, {})[spender] = amount
    new_state = _with_nonce({**state, 'allowances': allowances}, caller)
    origin = TransactionOrigin(OriginType.USER_ACTION, caller, token, "APPROVE")
    return build_transaction(
        view, [],
        [UnitStateChange(unit=token, old_state=state, new_state=new_state)],
        origin=origin,
        events=[log_event("Approval", token, owner=caller, spender=spender, value=amount)],
    )


# =============================================================================
# FACADE
# =============================================================================

class FungibleAsset:
    """
    Token collaborator bound to a Ledger.

    Every mutating call either applies fully and returns True, or raises and
    leaves the ledger untouched. Wallets are registered on first use.

    Example:
        tx = FungibleAsset.deploy(ledger, "TX", "Token X", owner="deployer",
                                  initial_supply=Decimal("1000000"))
        tx.transfer("deployer", "lender1", Decimal("1000"))
        tx.approve("lender1", "clc", Decimal("1000"))
    """

    def __init__(self, ledger, symbol: str):
        self.ledger = ledger
        self.symbol = symbol
        # Fails fast on unknown symbols
        ledger.get_unit(symbol)

    @classmethod
    def deploy(
        cls,
        ledger,
        symbol: str,
        name: str,
        owner: str,
        initial_supply: Any = Decimal("0"),
        decimal_places: int = DEFAULT_TOKEN_DECIMALS,
    ) -> FungibleAsset:
        """Register the token and issue initial_supply to its owner."""
        ledger.ensure_wallet(owner)
        ledger.register_unit(create_token_unit(symbol, name, owner, decimal_places))
        asset = cls(ledger, symbol)
        if to_decimal(initial_supply) > 0:
            asset.issue(owner, owner, initial_supply)
        return asset

    @property
    def address(self) -> str:
        return self.symbol

    def owner(self) -> str:
        return get_token_owner(self.ledger, self.symbol)

    def balance_of(self, wallet: str) -> Decimal:
        if not self.ledger.is_registered(wallet):
            return Decimal("0")
        return self.ledger.get_balance(wallet, self.symbol)

    def allowance(self, owner: str, spender: str) -> Decimal:
        return get_allowance(self.ledger, self.symbol, owner, spender)

    def nonce(self, wallet: str) -> int:
        return get_nonce(self.ledger, self.symbol, wallet)

    def total_supply(self) -> Decimal:
        return self.ledger.circulating_supply(self.symbol)

    def issue(self, caller: str, to: str, amount: Any) -> bool:
        self.ledger.ensure_wallet(to)
        return self._submit(compute_issue(self.ledger, self.symbol, caller, to, amount))

    def transfer(self, caller: str, to: str, amount: Any) -> bool:
        self.ledger.ensure_wallet(caller)
        self.ledger.ensure_wallet(to)
        return self._submit(compute_transfer(self.ledger, self.symbol, caller, to, amount))

    def transfer_from(self, caller: str, from_wallet: str, to: str, amount: Any) -> bool:
        self.ledger.ensure_wallet(from_wallet)
        self.ledger.ensure_wallet(to)
        return self._submit(
            compute_transfer_from(self.ledger, self.symbol, caller, from_wallet, to, amount)
        )

    def approve(self, caller: str, spender: str, amount: Any) -> bool:
        self.ledger.ensure_wallet(caller)
        return self._submit(compute_approve(self.ledger, self.symbol, caller, spender, amount))

    def _submit(self, pending: PendingTransaction) -> bool:
        execute_or_raise(self.ledger, pending)
        logger.debug("%s %s applied", self.symbol, pending.origin.event_type)
        return True
