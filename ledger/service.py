import logging
from contextlib import contextmanager
from decimal import Decimal
from typing import Iterator, Optional
from uuid import UUID

from .accounts import require_admin
from .errors import (
    FatalLedgerInconsistencyError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from .models import (
    LedgerEntry,
    LedgerHistoryResponse,
    Role,
    TransactionStatus,
    User,
    UserBalance,
    to_money,
    utcnow,
)
from .settings import get_settings
from .storage import InMemoryStorage, StoragePort


logger = logging.getLogger(__name__)


def user_lock_key(user_id: UUID) -> tuple:
    return ("user", user_id)


class LedgerService:
    """Single writer of wallet balances.

    Every balance change goes through :meth:`mutation`, which serializes on
    the user's lock and opens a storage unit of work, and then through
    :meth:`apply` or :meth:`transition`, which write the balance and its
    ledger entry as one pair.
    """

    def __init__(self, storage: Optional[StoragePort] = None):
        self.storage = storage or InMemoryStorage()
        self.currency = get_settings().currency

    def get_user(self, user_id: UUID) -> User:
        user = self.storage.get_user(user_id)
        if not user:
            raise NotFoundError(f"User {user_id} not found")
        return user

    @contextmanager
    def mutation(self, user_id: UUID) -> Iterator[User]:
        with self.storage.lock(user_lock_key(user_id)):
            try:
                with self.storage.atomic():
                    user = self.get_user(user_id)
                    if user.ledger_frozen:
                        raise FatalLedgerInconsistencyError(
                            user_id, f"Ledger for user {user_id} is frozen pending reconciliation"
                        )
                    yield user
            except FatalLedgerInconsistencyError as exc:
                self._freeze(user_id, exc)
                raise

    def apply(self, user: User, entry: LedgerEntry) -> tuple[User, LedgerEntry]:
        """Append an immediately-applied entry and move the balance by its amount."""
        if entry.user_id != user.id:
            raise ValidationError("Ledger entry does not belong to this user")
        amount = to_money(entry.amount)
        new_balance = to_money(user.wallet_balance + amount)
        if new_balance < 0:
            raise InsufficientBalanceError(
                f"Balance {user.wallet_balance} is insufficient for {-amount}"
            )

        entry.amount = amount
        entry.balance_after = new_balance
        user.wallet_balance = new_balance
        return self._write_pair(user, entry, new=True)

    def transition(
        self,
        user: User,
        entry: LedgerEntry,
        status: TransactionStatus,
        balance_delta: Decimal = Decimal("0.00"),
        approved_by: Optional[UUID] = None,
        remarks: Optional[str] = None,
    ) -> tuple[User, LedgerEntry]:
        """Move a pending entry to its final status, applying ``balance_delta`` with it."""
        new_balance = to_money(user.wallet_balance + balance_delta)
        if new_balance < 0:
            raise InsufficientBalanceError(f"Balance {user.wallet_balance} cannot absorb {balance_delta}")

        entry.status = status
        entry.approved_by = approved_by
        entry.resolved_at = utcnow()
        if remarks:
            entry.remarks = remarks
        if balance_delta:
            entry.balance_after = new_balance
        user.wallet_balance = new_balance
        return self._write_pair(user, entry, new=False)

    def _write_pair(self, user: User, entry: LedgerEntry, new: bool) -> tuple[User, LedgerEntry]:
        try:
            stored_entry = self.storage.add_entry(entry) if new else self.storage.update_entry(entry)
            stored_user = self.storage.save_user(user)
        except Exception as exc:
            raise FatalLedgerInconsistencyError(
                user.id, f"Balance and ledger entry {entry.id} for user {user.id} did not commit together"
            ) from exc
        return stored_user, stored_entry

    def _freeze(self, user_id: UUID, exc: FatalLedgerInconsistencyError) -> None:
        logger.critical("Freezing ledger for user %s: %s", user_id, exc)
        user = self.storage.get_user(user_id)
        if user and not user.ledger_frozen:
            user.ledger_frozen = True
            self.storage.save_user(user)

    def applied_total(self, user_id: UUID) -> Decimal:
        entries = self.storage.list_entries(user_id=user_id)
        return to_money(sum((e.amount for e in entries if e.is_applied), Decimal("0")))

    def verify_balance(self, user_id: UUID) -> bool:
        user = self.get_user(user_id)
        return user.wallet_balance == self.applied_total(user_id)

    def reconcile(self, user_id: UUID, actor: User) -> UserBalance:
        require_admin(actor)
        with self.storage.lock(user_lock_key(user_id)):
            user = self.get_user(user_id)
            projected = self.applied_total(user_id)
            if user.wallet_balance != projected:
                logger.warning(
                    "Reconciling user %s: cached balance %s, ledger total %s",
                    user_id, user.wallet_balance, projected,
                )
            user.wallet_balance = projected
            user.ledger_frozen = False
            self.storage.save_user(user)
        logger.info("Ledger for user %s reconciled by %s", user_id, actor.id)
        return self.get_balance(user_id)

    def get_balance(self, user_id: UUID) -> UserBalance:
        user = self.get_user(user_id)
        entries = self.storage.list_entries(user_id=user_id)
        last_entry = max(entries, key=lambda e: e.created_at) if entries else None

        return UserBalance(
            user_id=user_id,
            currency=self.currency,
            current_balance=user.wallet_balance,
            applied_total=to_money(sum((e.amount for e in entries if e.is_applied), Decimal("0"))),
            total_entries=len(entries),
            ledger_frozen=user.ledger_frozen,
            last_transaction_at=last_entry.created_at if last_entry else None,
        )

    def get_ledger_history(self, user_id: UUID, limit: int = 50, offset: int = 0) -> LedgerHistoryResponse:
        user = self.get_user(user_id)
        all_entries = self.storage.list_entries(user_id=user_id)
        all_entries.sort(key=lambda e: e.created_at, reverse=True)
        paginated = all_entries[offset:offset + limit]

        return LedgerHistoryResponse(
            user_id=user_id,
            entries=paginated,
            total_count=len(all_entries),
            current_balance=user.wallet_balance,
        )

    def list_transactions(
        self,
        actor: User,
        status: Optional[TransactionStatus] = None,
    ) -> list[LedgerEntry]:
        entries = self.storage.list_entries(status=status)
        if actor.role == Role.SUBADMIN:
            owned = {u.id for u in self.storage.list_users(subadmin_id=actor.id)}
            entries = [
                e for e in entries
                if e.user_id in owned or (e.is_subadmin_transaction and e.user_id == actor.id)
            ]
        elif actor.role == Role.PLAYER:
            entries = [e for e in entries if e.user_id == actor.id]
        entries.sort(key=lambda e: e.created_at, reverse=True)
        return entries
