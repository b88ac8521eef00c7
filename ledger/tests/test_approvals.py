"""
Unit Tests for Deposit / Withdrawal Approvals

Tests cover:
1. Deposit approve / reject
2. Withdrawal pre-debit, approve, reject refund
3. One-time resolution
4. Subadmin ownership rules
5. Concurrent requests
6. Status notifications
"""

import pytest
from concurrent.futures import ThreadPoolExecutor
from decimal import Decimal
from uuid import uuid4

from ledger import (
    Decision,
    InsufficientBalanceError,
    InvalidStateTransitionError,
    NotFoundError,
    Role,
    TransactionStatus,
    UnauthorizedActionError,
    User,
    ValidationError,
)


class TestDeposits:
    """Tests for deposit requests."""

    def test_request_does_not_move_balance(self, approvals, ledger_service, player):
        """Test that a deposit request stays pending and off the balance."""
        response = approvals.request_deposit(player.id, Decimal("500"))

        assert response.transaction.status == TransactionStatus.PENDING
        assert ledger_service.get_user(player.id).wallet_balance == Decimal("1000.00")

    def test_approve_credits(self, approvals, ledger_service, player, admin):
        request = approvals.request_deposit(player.id, Decimal("500"))

        response = approvals.resolve_transaction(request.transaction.id, Decision.APPROVE, admin)

        assert response.transaction.status == TransactionStatus.APPROVED
        assert response.transaction.approved_by == admin.id
        assert response.user.wallet_balance == Decimal("1500.00")
        assert ledger_service.verify_balance(player.id) is True

    def test_reject_leaves_balance(self, approvals, ledger_service, player, admin):
        request = approvals.request_deposit(player.id, Decimal("500"))

        response = approvals.resolve_transaction(request.transaction.id, Decision.REJECT, admin, "No receipt")

        assert response.transaction.status == TransactionStatus.REJECTED
        assert response.transaction.remarks == "No receipt"
        assert response.user.wallet_balance == Decimal("1000.00")

    @pytest.mark.parametrize("amount", [Decimal("0"), Decimal("-5"), Decimal("10.001"), Decimal("1e30")])
    def test_invalid_amount_rejected(self, approvals, player, amount):
        with pytest.raises(ValidationError):
            approvals.request_deposit(player.id, amount)


class TestWithdrawals:
    """Tests for withdrawal requests."""

    def test_request_debits_immediately(self, approvals, ledger_service, player):
        """Test that a withdrawal request pre-debits the wallet."""
        response = approvals.request_withdrawal(player.id, Decimal("300"))

        assert response.transaction.status == TransactionStatus.PENDING
        assert response.transaction.amount == Decimal("-300.00")
        assert response.user.wallet_balance == Decimal("700.00")

    def test_reject_refunds(self, approvals, ledger_service, player, admin):
        """Test 1000 -> request 300 -> 700 -> reject -> 1000."""
        request = approvals.request_withdrawal(player.id, Decimal("300"))

        response = approvals.resolve_transaction(request.transaction.id, Decision.REJECT, admin)

        assert response.user.wallet_balance == Decimal("1000.00")
        assert response.transaction.status == TransactionStatus.REJECTED
        assert ledger_service.verify_balance(player.id) is True

    def test_approve_keeps_debit(self, approvals, ledger_service, player, admin):
        request = approvals.request_withdrawal(player.id, Decimal("300"))

        response = approvals.resolve_transaction(request.transaction.id, Decision.APPROVE, admin)

        assert response.user.wallet_balance == Decimal("700.00")
        assert ledger_service.verify_balance(player.id) is True

    def test_insufficient_balance(self, approvals, ledger_service, storage, player):
        before = len(storage.list_entries(user_id=player.id))

        with pytest.raises(InsufficientBalanceError):
            approvals.request_withdrawal(player.id, Decimal("1000.01"))

        assert len(storage.list_entries(user_id=player.id)) == before

    def test_concurrent_requests_never_overdraw(self, approvals, ledger_service, player):
        """Test that ten parallel 300 withdrawals against 1000 let exactly three through."""
        def attempt(_):
            try:
                approvals.request_withdrawal(player.id, Decimal("300"))
                return True
            except InsufficientBalanceError:
                return False

        with ThreadPoolExecutor(max_workers=10) as pool:
            outcomes = list(pool.map(attempt, range(10)))

        assert outcomes.count(True) == 3
        assert ledger_service.get_user(player.id).wallet_balance == Decimal("100.00")
        assert ledger_service.verify_balance(player.id) is True


class TestResolution:
    """Tests for one-time resolution and authorization."""

    def test_second_resolution_fails(self, approvals, ledger_service, player, admin):
        """Test that a resolved transaction cannot be resolved again."""
        request = approvals.request_withdrawal(player.id, Decimal("300"))
        approvals.resolve_transaction(request.transaction.id, Decision.REJECT, admin)

        with pytest.raises(InvalidStateTransitionError):
            approvals.resolve_transaction(request.transaction.id, Decision.REJECT, admin)

        # No double refund
        assert ledger_service.get_user(player.id).wallet_balance == Decimal("1000.00")

    def test_concurrent_resolution_applies_once(self, approvals, ledger_service, player, admin):
        request = approvals.request_deposit(player.id, Decimal("200"))

        def attempt(_):
            try:
                approvals.resolve_transaction(request.transaction.id, Decision.APPROVE, admin)
                return True
            except InvalidStateTransitionError:
                return False

        with ThreadPoolExecutor(max_workers=5) as pool:
            outcomes = list(pool.map(attempt, range(5)))

        assert outcomes.count(True) == 1
        assert ledger_service.get_user(player.id).wallet_balance == Decimal("1200.00")

    def test_unknown_transaction(self, approvals, admin):
        with pytest.raises(NotFoundError):
            approvals.resolve_transaction(uuid4(), Decision.APPROVE, admin)

    def test_adjustments_are_not_resolvable(self, approvals, storage, player, admin):
        opening = storage.list_entries(user_id=player.id)[0]

        with pytest.raises(ValidationError):
            approvals.resolve_transaction(opening.id, Decision.REJECT, admin)

    def test_subadmin_resolves_own_players(self, approvals, player, subadmin):
        request = approvals.request_deposit(player.id, Decimal("50"))

        response = approvals.resolve_transaction(request.transaction.id, Decision.APPROVE, subadmin)

        assert response.user.wallet_balance == Decimal("1050.00")

    def test_subadmin_cannot_resolve_other_players(self, approvals, storage, admin, subadmin):
        stranger = storage.save_user(User(name="Stranger"))
        request = approvals.request_deposit(stranger.id, Decimal("50"))

        with pytest.raises(UnauthorizedActionError):
            approvals.resolve_transaction(request.transaction.id, Decision.APPROVE, subadmin)

    def test_subadmin_cannot_resolve_own_transaction(self, approvals, subadmin, admin):
        """Test that a subadmin's own request needs someone else to resolve it."""
        request = approvals.request_deposit(subadmin.id, Decimal("50"))
        assert request.transaction.is_subadmin_transaction is True

        with pytest.raises(UnauthorizedActionError):
            approvals.resolve_transaction(request.transaction.id, Decision.APPROVE, subadmin)

        response = approvals.resolve_transaction(request.transaction.id, Decision.APPROVE, admin)
        assert response.user.wallet_balance == Decimal("50.00")

    def test_player_cannot_resolve(self, approvals, make_player, player):
        other = make_player("Other")
        request = approvals.request_deposit(other.id, Decimal("50"))

        with pytest.raises(UnauthorizedActionError):
            approvals.resolve_transaction(request.transaction.id, Decision.APPROVE, player)

    def test_resolution_notifies_owner(self, approvals, connect, player, admin):
        owner = connect(player.id)
        bystander = connect()
        request = approvals.request_withdrawal(player.id, Decimal("300"))

        approvals.resolve_transaction(request.transaction.id, Decision.REJECT, admin)

        events = owner.of_type("transaction_status")
        assert len(events) == 1
        assert events[0]["status"] == "rejected"
        assert events[0]["transaction_type"] == "withdrawal"
        assert Decimal(events[0]["new_balance"]) == Decimal("1000.00")
        assert bystander.payloads == []

    def test_roles_recorded_on_subadmin_requests(self, approvals, storage):
        desk = storage.save_user(User(name="Desk 2", role=Role.SUBADMIN))

        response = approvals.request_deposit(desk.id, Decimal("10"))

        assert response.transaction.is_subadmin_transaction is True
