import logging
from decimal import Decimal
from typing import Optional
from uuid import UUID

from notifications import Notifier, TransactionStatusEvent, WalletUpdateEvent

from .accounts import require_active, require_manager_of
from .errors import (
    InsufficientBalanceError,
    InvalidStateTransitionError,
    NotFoundError,
    UnauthorizedActionError,
    ValidationError,
)
from .models import (
    Decision,
    LedgerEntry,
    Role,
    TransactionKind,
    TransactionResponse,
    TransactionStatus,
    User,
    parse_amount,
)
from .service import LedgerService
from .dispatch import send_to_user


logger = logging.getLogger(__name__)


class ApprovalService:
    """Deposit and withdrawal requests plus manual balance adjustments."""

    def __init__(self, ledger: LedgerService, notifier: Optional[Notifier] = None):
        self.ledger = ledger
        self.storage = ledger.storage
        self.notifier = notifier

    def request_deposit(self, user_id: UUID, amount: Decimal) -> TransactionResponse:
        amount = self._positive(amount)
        with self.ledger.mutation(user_id) as user:
            require_active(user)
            entry = self.storage.add_entry(LedgerEntry(
                user_id=user.id,
                kind=TransactionKind.DEPOSIT,
                amount=amount,
                status=TransactionStatus.PENDING,
                reference="Deposit request",
                is_subadmin_transaction=user.role == Role.SUBADMIN,
            ))

        logger.info("Deposit request %s for %s by user %s", entry.id, amount, user_id)
        return TransactionResponse(transaction=entry, user=user, message="Deposit request submitted")

    def request_withdrawal(self, user_id: UUID, amount: Decimal) -> TransactionResponse:
        amount = self._positive(amount)
        with self.ledger.mutation(user_id) as user:
            require_active(user)
            if user.wallet_balance < amount:
                raise InsufficientBalanceError(
                    f"Balance {user.wallet_balance} is insufficient to withdraw {amount}"
                )
            # pre-debited now so concurrent requests cannot exceed the balance
            user, entry = self.ledger.apply(user, LedgerEntry(
                user_id=user.id,
                kind=TransactionKind.WITHDRAWAL,
                amount=-amount,
                status=TransactionStatus.PENDING,
                reference="Withdrawal request",
                is_subadmin_transaction=user.role == Role.SUBADMIN,
            ))

        logger.info("Withdrawal request %s for %s by user %s", entry.id, amount, user_id)
        return TransactionResponse(transaction=entry, user=user, message="Withdrawal request submitted")

    def resolve_transaction(
        self,
        transaction_id: UUID,
        decision: Decision,
        actor: User,
        remarks: Optional[str] = None,
    ) -> TransactionResponse:
        require_active(actor)
        entry = self.storage.get_entry(transaction_id)
        if not entry:
            raise NotFoundError(f"Transaction {transaction_id} not found")
        if entry.kind not in (TransactionKind.DEPOSIT, TransactionKind.WITHDRAWAL):
            raise ValidationError(f"{entry.kind.value} transactions are not subject to approval")

        with self.ledger.mutation(entry.user_id) as user:
            self._authorize_resolution(actor, user, entry)
            # re-read under the user lock; a concurrent resolver may have won
            entry = self.storage.get_entry(transaction_id)
            if not entry.can_resolve():
                raise InvalidStateTransitionError(
                    f"Transaction {transaction_id} is already {entry.status.value}"
                )

            approve = Decision(decision) == Decision.APPROVE
            status = TransactionStatus.APPROVED if approve else TransactionStatus.REJECTED
            delta = Decimal("0.00")
            if entry.kind == TransactionKind.DEPOSIT and approve:
                delta = entry.amount
            elif entry.kind == TransactionKind.WITHDRAWAL and not approve:
                delta = -entry.amount

            user, entry = self.ledger.transition(
                user, entry, status,
                balance_delta=delta,
                approved_by=actor.id,
                remarks=remarks or f"{status.value} by {actor.name}",
            )

        logger.info(
            "Transaction %s (%s) %s by %s", entry.id, entry.kind.value, entry.status.value, actor.id
        )
        send_to_user(self.notifier, user.id, TransactionStatusEvent(
            user_id=user.id,
            transaction_id=entry.id,
            transaction_type=entry.kind.value,
            status=entry.status.value,
            amount=abs(entry.amount),
            new_balance=user.wallet_balance,
            message=f"Your {entry.kind.value} request for {abs(entry.amount)} has been {entry.status.value}",
        ))
        return TransactionResponse(transaction=entry, user=user, message=f"Transaction {entry.status.value}")

    def adjust_balance(
        self,
        user_id: UUID,
        amount: Decimal,
        actor: User,
        remarks: Optional[str] = None,
    ) -> TransactionResponse:
        require_active(actor)
        amount = parse_amount(amount)
        if amount == 0:
            raise ValidationError("Adjustment amount must be non-zero")

        with self.ledger.mutation(user_id) as user:
            require_manager_of(actor, user)
            user, entry = self.ledger.apply(user, LedgerEntry(
                user_id=user.id,
                kind=TransactionKind.ADJUSTMENT,
                amount=amount,
                status=TransactionStatus.APPROVED,
                reference="Manual adjustment",
                remarks=remarks or f"Adjustment by {actor.name}",
                approved_by=actor.id,
            ))

        logger.info("Balance of user %s adjusted by %s (actor %s)", user_id, amount, actor.id)
        verb = "credited with" if amount > 0 else "debited by"
        send_to_user(self.notifier, user.id, WalletUpdateEvent(
            user_id=user.id,
            amount=amount,
            new_balance=user.wallet_balance,
            transaction_id=entry.id,
            message=f"Your wallet has been {verb} {abs(amount)}",
        ))
        return TransactionResponse(transaction=entry, user=user, message="Balance adjusted")

    def _authorize_resolution(self, actor: User, user: User, entry: LedgerEntry) -> None:
        if actor.role == Role.ADMIN:
            return
        if actor.role != Role.SUBADMIN:
            raise UnauthorizedActionError("Only admins and subadmins can resolve transactions")
        if entry.is_subadmin_transaction and entry.user_id == actor.id:
            raise UnauthorizedActionError("Cannot approve or reject your own transaction")
        require_manager_of(actor, user)

    @staticmethod
    def _positive(amount: Decimal) -> Decimal:
        amount = parse_amount(amount)
        if amount <= 0:
            raise ValidationError("Amount must be greater than zero")
        return amount
