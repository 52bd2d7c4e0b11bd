"""
test_token.py - Unit tests for fungible token units

Tests:
- Factory function (create_token_unit) validation
- Pure compute functions against a FakeView
- transfer_from_parts: allowance consumption and failure modes
- FungibleAsset facade on a real Ledger
- Conservation (circulating supply never changes after issuance)
"""

import pytest
from datetime import datetime
from decimal import Decimal

from tests.fake_view import FakeView, token
from lending_ledger import (
    Ledger, FungibleAsset, ExecuteResult,
    InsufficientFunds, InsufficientAllowance, NotAuthorized, UnitNotRegistered, DuplicateIntent,
    SYSTEM_WALLET, UNIT_TYPE_TOKEN,
    create_token_unit, get_allowance, get_nonce,
)
from lending_ledger.units.token import (
    compute_transfer, compute_transfer_from, compute_approve, compute_issue,
    transfer_from_parts,
)


def _view(balances=None, allowances=None, units=None):
    return FakeView(
        balances=balances or {},
        states={'TX': {'owner': 'deployer', 'allowances': allowances or {}}},
        time=datetime(2025, 1, 1),
        units=units or {'TX': token('TX')},
    )


# ============================================================================
# FACTORY
# ============================================================================

class TestCreateTokenUnit:

    def test_create_basic_token(self):
        unit = create_token_unit("TX", "Token X", owner="deployer")
        assert unit.symbol == "TX"
        assert unit.unit_type == UNIT_TYPE_TOKEN
        assert unit.min_balance == Decimal("0")
        assert unit.decimal_places == 18
        assert unit.state == {'owner': 'deployer', 'allowances': {}, 'nonces': {}}

    def test_custom_decimals(self):
        assert create_token_unit("TX", "Token X", "deployer", decimal_places=6).decimal_places == 6

    def test_empty_owner_raises(self):
        with pytest.raises(ValueError, match="owner"):
            create_token_unit("TX", "Token X", owner="  ")

    def test_negative_decimals_raises(self):
        with pytest.raises(ValueError, match="decimal_places"):
            create_token_unit("TX", "Token X", "deployer", decimal_places=-1)


# ============================================================================
# PURE FUNCTIONS
# ============================================================================

class TestComputeTransfer:

    def test_single_move(self):
        view = _view({'alice': {'TX': Decimal("100")}})
        pending = compute_transfer(view, "TX", "alice", "bob", Decimal("40"))
        assert len(pending.moves) == 1
        move = pending.moves[0]
        assert (move.source, move.dest, move.quantity) == ("alice", "bob", Decimal("40"))
        assert pending.events[0].name == "Transfer"
        assert pending.events[0]["from"] == "alice"

    def test_insufficient_funds(self):
        view = _view({'alice': {'TX': Decimal("10")}})
        with pytest.raises(InsufficientFunds):
            compute_transfer(view, "TX", "alice", "bob", Decimal("40"))

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-1")])
    def test_non_positive_amount(self, amount):
        view = _view({'alice': {'TX': Decimal("10")}})
        with pytest.raises(ValueError, match="positive"):
            compute_transfer(view, "TX", "alice", "bob", amount)

    def test_amount_finer_than_precision(self):
        view = _view({'alice': {'TX': Decimal("10")}}, units={'TX': token('TX', decimal_places=2)})
        with pytest.raises(ValueError, match="precision"):
            compute_transfer(view, "TX", "alice", "bob", Decimal("1.001"))


class TestComputeApprove:

    def test_sets_allowance(self):
        view = _view()
        pending = compute_approve(view, "TX", "alice", "clc", Decimal("500"))
        new_state = pending.state_changes[0].new_state
        assert new_state['allowances'] == {'alice': {'clc': Decimal("500")}}
        assert pending.moves == ()
        assert pending.events[0].name == "Approval"

    def test_replaces_not_adds(self):
        view = _view(allowances={'alice': {'clc': Decimal("500")}})
        pending = compute_approve(view, "TX", "alice", "clc", Decimal("100"))
        assert pending.state_changes[0].new_state['allowances']['alice']['clc'] == Decimal("100")

    def test_zero_revokes(self):
        view = _view(allowances={'alice': {'clc': Decimal("500")}})
        pending = compute_approve(view, "TX", "alice", "clc", 0)
        assert pending.state_changes[0].new_state['allowances']['alice']['clc'] == Decimal("0")

    def test_self_approval_raises(self):
        with pytest.raises(ValueError, match="self"):
            compute_approve(_view(), "TX", "alice", "alice", Decimal("1"))


class TestTransferFromParts:

    def test_consumes_allowance(self):
        view = _view({'alice': {'TX': Decimal("100")}}, {'alice': {'clc': Decimal("60")}})
        moves, change, event = transfer_from_parts(
            view, "TX", "clc", "alice", "clc", Decimal("40"), "pull",
        )
        assert moves[0].source == "alice" and moves[0].dest == "clc"
        assert change.new_state['allowances']['alice']['clc'] == Decimal("20")
        assert change.old_state['allowances']['alice']['clc'] == Decimal("60")
        assert event["value"] == Decimal("40")

    def test_other_allowances_untouched(self):
        view = _view(
            {'alice': {'TX': Decimal("100")}},
            {'alice': {'clc': Decimal("60"), 'dex': Decimal("5")}, 'bob': {'clc': Decimal("1")}},
        )
        _, change, _ = transfer_from_parts(view, "TX", "clc", "alice", "clc", Decimal("60"), "pull")
        assert change.new_state['allowances'] == {
            'alice': {'clc': Decimal("0"), 'dex': Decimal("5")},
            'bob': {'clc': Decimal("1")},
        }

    def test_insufficient_allowance(self):
        view = _view({'alice': {'TX': Decimal("100")}}, {'alice': {'clc': Decimal("10")}})
        with pytest.raises(InsufficientAllowance):
            transfer_from_parts(view, "TX", "clc", "alice", "clc", Decimal("40"), "pull")

    def test_no_allowance_at_all(self):
        view = _view({'alice': {'TX': Decimal("100")}})
        with pytest.raises(InsufficientAllowance):
            transfer_from_parts(view, "TX", "clc", "alice", "clc", Decimal("1"), "pull")

    def test_allowance_but_no_funds(self):
        view = _view({'alice': {'TX': Decimal("5")}}, {'alice': {'clc': Decimal("100")}})
        with pytest.raises(InsufficientFunds):
            transfer_from_parts(view, "TX", "clc", "alice", "clc", Decimal("40"), "pull")

    def test_compute_transfer_from_is_one_transaction(self):
        view = _view({'alice': {'TX': Decimal("100")}}, {'alice': {'clc': Decimal("60")}})
        pending = compute_transfer_from(view, "TX", "clc", "alice", "bob", Decimal("60"))
        assert len(pending.moves) == 1
        assert len(pending.state_changes) == 1


class TestComputeIssue:

    def test_owner_issues_from_system(self):
        pending = compute_issue(_view(), "TX", "deployer", "alice", Decimal("1000"))
        assert pending.moves[0].source == SYSTEM_WALLET
        assert pending.moves[0].dest == "alice"

    def test_non_owner_cannot_issue(self):
        with pytest.raises(NotAuthorized):
            compute_issue(_view(), "TX", "mallory", "mallory", Decimal("1000"))


# ============================================================================
# FACADE
# ============================================================================

class TestFungibleAsset:

    @pytest.fixture
    def asset(self, ledger):
        return FungibleAsset.deploy(ledger, "TX", "Token X", "deployer", Decimal("1000000"))

    def test_deploy_issues_supply_to_owner(self, ledger, asset):
        assert asset.owner() == "deployer"
        assert asset.balance_of("deployer") == Decimal("1000000")
        assert asset.total_supply() == Decimal("1000000")
        assert asset.address == "TX"

    def test_unknown_symbol_raises(self, ledger):
        with pytest.raises(UnitNotRegistered):
            FungibleAsset(ledger, "NOPE")

    def test_transfer_registers_recipient(self, ledger, asset):
        assert asset.transfer("deployer", "alice", Decimal("250")) is True
        assert asset.balance_of("alice") == Decimal("250")
        assert asset.balance_of("deployer") == Decimal("999750")

    def test_balance_of_unknown_wallet_is_zero(self, asset):
        assert asset.balance_of("nobody") == Decimal("0")

    def test_approve_then_transfer_from(self, ledger, asset):
        asset.transfer("deployer", "alice", Decimal("100"))
        asset.approve("alice", "bob", Decimal("60"))
        assert asset.allowance("alice", "bob") == Decimal("60")

        asset.transfer_from("bob", "alice", "carol", Decimal("45"))

        assert asset.balance_of("carol") == Decimal("45")
        assert asset.balance_of("alice") == Decimal("55")
        assert asset.allowance("alice", "bob") == Decimal("15")
        assert get_allowance(ledger, "TX", "alice", "bob") == Decimal("15")

    def test_transfer_from_beyond_allowance_changes_nothing(self, ledger, asset):
        asset.transfer("deployer", "alice", Decimal("100"))
        asset.approve("alice", "bob", Decimal("10"))
        with pytest.raises(InsufficientAllowance):
            asset.transfer_from("bob", "alice", "bob", Decimal("11"))
        assert asset.balance_of("alice") == Decimal("100")
        assert asset.allowance("alice", "bob") == Decimal("10")

    def test_supply_is_conserved(self, ledger, asset):
        asset.transfer("deployer", "alice", Decimal("100"))
        asset.approve("alice", "bob", Decimal("60"))
        asset.transfer_from("bob", "alice", "carol", Decimal("60"))
        assert asset.total_supply() == Decimal("1000000")
        assert ledger.verify_double_entry()["valid"]

    def test_events_emitted_under_token_symbol(self, ledger, asset):
        asset.transfer("deployer", "alice", Decimal("1"))
        transfers = ledger.get_past_events("Transfer", emitter="TX")
        assert [(e["from"], e["to"]) for e in transfers] == [
            (SYSTEM_WALLET, "deployer"), ("deployer", "alice"),
        ]


# ============================================================================
# REPEATED OPERATIONS
# ============================================================================

class TestNonces:

    def test_transfer_advances_sender_nonce(self):
        view = _view({'alice': {'TX': Decimal("100")}})
        pending = compute_transfer(view, "TX", "alice", "bob", Decimal("40"))
        change = pending.state_changes[0]
        assert change.new_state['nonces'] == {'alice': 1}
        assert change.new_state['allowances'] == {}

    def test_approve_advances_owner_nonce(self):
        pending = compute_approve(_view(), "TX", "alice", "clc", Decimal("5"))
        assert pending.state_changes[0].new_state['nonces'] == {'alice': 1}

    def test_transfer_from_advances_spender_nonce(self):
        view = _view({'alice': {'TX': Decimal("100")}}, {'alice': {'clc': Decimal("60")}})
        _, change, _ = transfer_from_parts(view, "TX", "clc", "alice", "clc", Decimal("10"), "pull")
        assert change.new_state['nonces'] == {'clc': 1}

    def test_issue_advances_owner_nonce(self):
        pending = compute_issue(_view(), "TX", "deployer", "alice", Decimal("1"))
        assert pending.state_changes[0].new_state['nonces'] == {'deployer': 1}


class TestRepeatedOperations:

    @pytest.fixture
    def asset(self, ledger):
        return FungibleAsset.deploy(ledger, "TX", "Token X", "deployer", Decimal("1000000"))

    def test_identical_transfers_both_apply(self, asset):
        assert asset.transfer("deployer", "alice", Decimal("100")) is True
        assert asset.transfer("deployer", "alice", Decimal("100")) is True
        assert asset.balance_of("alice") == Decimal("200")
        assert asset.balance_of("deployer") == Decimal("999800")

    def test_approve_revoke_cycle_ends_revoked(self, asset):
        for amount in ("100", "0", "100", "0"):
            asset.approve("deployer", "clc", Decimal(amount))
        assert asset.allowance("deployer", "clc") == Decimal("0")
        assert asset.nonce("deployer") == 4

    def test_revoked_allowance_cannot_be_pulled(self, asset):
        for amount in ("100", "0", "100", "0"):
            asset.approve("deployer", "clc", Decimal(amount))
        with pytest.raises(InsufficientAllowance):
            asset.transfer_from("clc", "deployer", "clc", Decimal("1"))

    def test_identical_transfer_from_after_reapproval(self, asset):
        asset.approve("deployer", "clc", Decimal("100"))
        asset.transfer_from("clc", "deployer", "carol", Decimal("50"))
        asset.approve("deployer", "clc", Decimal("100"))
        asset.transfer_from("clc", "deployer", "carol", Decimal("50"))
        assert asset.balance_of("carol") == Decimal("100")
        assert asset.allowance("deployer", "clc") == Decimal("50")

    def test_identical_issues_both_apply(self, asset):
        asset.issue("deployer", "alice", Decimal("10"))
        asset.issue("deployer", "alice", Decimal("10"))
        assert asset.balance_of("alice") == Decimal("20")
        assert asset.total_supply() == Decimal("1000020")

    def test_resubmitted_pending_raises(self, ledger, asset):
        pending = compute_transfer(ledger, "TX", "deployer", "alice", Decimal("5"))
        assert asset._submit(pending) is True
        with pytest.raises(DuplicateIntent):
            asset._submit(pending)
        assert asset.balance_of("alice") == Decimal("5")
        assert get_nonce(ledger, "TX", "deployer") == 2


class TestNonFiniteAmounts:

    @pytest.mark.parametrize("amount", ["NaN", "Infinity", "-Infinity", "sNaN", "abc"])
    def test_rejected_with_value_error(self, amount):
        view = _view({'alice': {'TX': Decimal("100")}})
        with pytest.raises(ValueError):
            compute_transfer(view, "TX", "alice", "bob", amount)
